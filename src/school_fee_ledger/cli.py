from __future__ import annotations

import argparse
import logging
import os
from datetime import date
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from .config import AppConfig, load_config
from .demo import DEMO_STUDENTS, demo_opening_payment
from .dues import derive_dues, total_outstanding
from .fees import CLASSES, annual_fee_for, fee_structure_for, normalize_class
from .logging_config import configure_logging
from .models import PaymentMode, PendingFee, RecordedBy, Student
from .payments import parse_allocation_args, record_payment
from .reports import compute_stats, defaulters, newest_first, student_history, transaction_rows, write_transactions_csv
from .roles import Capability, Role, require
from .store import DuplicateApplication, DuplicateStudent, SqliteFeeStore, StaleStudent
from .util.dates import parse_date
from .util.money import format_amount, parse_amount


logger = logging.getLogger("school_fee_ledger")

# Errors the user can fix by changing their input; everything else is logged with a traceback.
_USER_ERRORS = (ValueError, LookupError, PermissionError, DuplicateApplication, StaleStudent)


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="school_fee_ledger")
    p.add_argument(
        "--env-file",
        default=".env",
        help="Path to a dotenv file (default: .env). If missing, env vars must already be set.",
    )
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging for this tool")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", default="config.yaml", help="Path to YAML config (default: config.yaml)")

    roles = [r.value for r in Role]
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("seed", parents=[common], help="Load the demo students (existing admission numbers are skipped)")
    sub.add_parser("list-classes", parents=[common], help="List classes and their annual fee for the academic year")

    add = sub.add_parser("add-student", parents=[common], help="Admit a student")
    add.add_argument("student_id", help="Admission number")
    add.add_argument("--name", required=True)
    add.add_argument("--class", dest="class_name", required=True, help=f"One of: {', '.join(CLASSES)}")
    add.add_argument("--father", default="")
    add.add_argument("--mother", default="")
    add.add_argument("--dob", default="", help="Date of birth (YYYY-MM-DD or DD/MM/YYYY)")
    add.add_argument("--fee", default="", help="Current-year fee (default: the class fee; override for scholarships)")
    add.add_argument(
        "--pending",
        action="append",
        default=[],
        metavar="YEAR=AMOUNT",
        help="Carried-over dues from a previous year (repeatable, oldest first)",
    )
    add.add_argument("--role", choices=roles, default=Role.ADMIN.value)

    edit = sub.add_parser("edit-student", parents=[common], help="Edit a student's profile or fee")
    edit.add_argument("student_id")
    edit.add_argument("--name", default="")
    edit.add_argument("--class", dest="class_name", default="")
    edit.add_argument("--fee", default="", help="Override the current-year fee")
    edit.add_argument("--role", choices=roles, default=Role.ADMIN.value)

    remove = sub.add_parser("remove-student", parents=[common], help="Delete a student (payment history is kept)")
    remove.add_argument("student_id")
    remove.add_argument("--role", choices=roles, default=Role.ADMIN.value)

    sub.add_parser("students", parents=[common], help="List students with their total due")

    dues = sub.add_parser("dues", parents=[common], help="Show a student's due buckets")
    dues.add_argument("student_id")

    pay = sub.add_parser("pay", parents=[common], help="Record a payment")
    pay.add_argument("student_id")
    pay.add_argument("--amount", required=True)
    pay.add_argument("--mode", choices=[m.value for m in PaymentMode], default=PaymentMode.CASH.value)
    pay.add_argument("--by-id", required=True, help="User id of the person recording the payment")
    pay.add_argument("--by-name", required=True, help="Name of the person recording the payment")
    pay.add_argument("--role", choices=roles, default=Role.ACCOUNTANT.value)
    pay.add_argument(
        "--allocate",
        action="append",
        default=None,
        metavar="YEAR=AMOUNT",
        help="Manual allocation (repeatable). Must add up to --amount exactly. Default: oldest dues first.",
    )
    pay.add_argument("--date", default="", help="Payment date (default: today)")
    pay.add_argument("--payment-id", default="", help="Explicit payment id; re-using one is rejected")

    history = sub.add_parser("history", parents=[common], help="Payment history for a student, newest first")
    history.add_argument("student_id")

    report = sub.add_parser("report", parents=[common], help="Collection and outstanding reports")
    report.add_argument("kind", choices=["stats", "defaulters", "transactions"])
    report.add_argument("--search", default="", help="defaulters: match name, admission number or class")
    report.add_argument("--overdue", action="store_true", help="defaulters: only students with previous-year dues")
    report.add_argument("--class", dest="class_name", default="", help="defaulters: only this class")
    report.add_argument("--since", default="", help="transactions: on/after this date")
    report.add_argument("--until", default="", help="transactions: on/before this date")
    report.add_argument("--csv", default="", help="transactions: also write a CSV file here")
    report.add_argument("--today", default="", help="stats: reference date (default: today)")
    report.add_argument("--role", choices=roles, default=Role.ADMIN.value)

    return p


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)

    env_path = Path(args.env_file)
    if env_path.exists():
        load_dotenv(env_path)

    # Default logging: can be overridden once config is loaded.
    configure_logging(level=os.getenv("LOG_LEVEL", "INFO"), verbose=args.verbose)

    cfg = load_config(args.config)
    configure_logging(level=cfg.logging.level, file_path=cfg.logging.file_path, verbose=args.verbose)

    if args.cmd == "list-classes":
        # Print only; no ledger needed.
        for c in CLASSES:
            fs = fee_structure_for(c, cfg.fees)
            parts = ", ".join(f"{comp.name} {format_amount(comp.amount, cfg.school.currency_symbol)}" for comp in fs.components)
            print(f"{c}\t{format_amount(fs.annual_fee, cfg.school.currency_symbol)}\t{parts}")
        return 0

    store = SqliteFeeStore(cfg.state.db_path)
    run_id = store.record_run_start()
    logger.debug("Run started (run_id=%s cmd=%s)", run_id, args.cmd)
    try:
        rc = _dispatch(args, cfg, store)
        store.record_run_finish(run_id, ok=True, message=args.cmd)
        return rc
    except _USER_ERRORS as e:
        store.record_run_finish(run_id, ok=False, message=str(e))
        raise SystemExit(f"❌ {e}")
    except SystemExit as e:
        store.record_run_finish(run_id, ok=False, message=str(e))
        raise
    except Exception as e:
        store.record_run_finish(run_id, ok=False, message=str(e))
        logger.exception("Command failed (run_id=%s cmd=%s)", run_id, args.cmd)
        raise
    finally:
        store.close()


def _dispatch(args: argparse.Namespace, cfg: AppConfig, store: SqliteFeeStore) -> int:
    year = cfg.school.academic_year
    sym = cfg.school.currency_symbol

    if args.cmd == "seed":
        added: list[str] = []
        for s in DEMO_STUDENTS:
            try:
                store.add_student(s.model_copy(update={"current_year_fee": annual_fee_for(s.class_name, cfg.fees)}))
            except DuplicateStudent:
                logger.info("Skipping existing student %s", s.id)
                continue
            added.append(s.id)
        opening = demo_opening_payment(date.today(), store.next_receipt_no(), academic_year=year)
        if opening.student_id in added and not store.has_payment(opening.id):
            store.append_payment(opening)
        print(f"Seeded {len(added)} student(s).")
        return 0

    if args.cmd == "add-student":
        require(Role(args.role), Capability.MANAGE_STUDENTS)
        fee = parse_amount(args.fee) if args.fee else annual_fee_for(args.class_name, cfg.fees)
        student = Student(
            id=args.student_id.strip(),
            name=args.name.strip(),
            father_name=args.father.strip(),
            mother_name=args.mother.strip(),
            dob=parse_date(args.dob) if args.dob else None,
            class_name=normalize_class(args.class_name),
            previous_pending=[PendingFee(year=a.year, amount=a.amount) for a in parse_allocation_args(args.pending)],
            current_year_fee=fee,
        )
        store.add_student(student)
        logger.info("Admitted student %s (%s, class %s)", student.id, student.name, student.class_name)
        print(f"Added {student.id}: total due {format_amount(total_outstanding(student), sym)}")
        return 0

    if args.cmd == "edit-student":
        require(Role(args.role), Capability.EDIT_STUDENTS)
        if args.fee:
            require(Role(args.role), Capability.MANAGE_FEES)
        student = store.get_student(args.student_id)
        update: dict = {}
        if args.name:
            update["name"] = args.name.strip()
        if args.class_name:
            # Validates the class even when the fee is given explicitly.
            class_fee = annual_fee_for(args.class_name, cfg.fees)
            update["class_name"] = normalize_class(args.class_name)
            if not args.fee:
                update["current_year_fee"] = class_fee
        if args.fee:
            update["current_year_fee"] = parse_amount(args.fee)
        if not update:
            raise SystemExit("Nothing to change. Pass --name, --class and/or --fee.")
        # Round-trip through validation so a negative fee is rejected.
        edited = Student.model_validate({**student.model_dump(), **update})
        store.put_student(edited)
        logger.info("Updated student %s fields=%s", edited.id, ",".join(sorted(update)))
        print(f"Updated {edited.id}: total due {format_amount(total_outstanding(edited), sym)}")
        return 0

    if args.cmd == "remove-student":
        require(Role(args.role), Capability.MANAGE_STUDENTS)
        store.delete_student(args.student_id)
        logger.info("Removed student %s", args.student_id)
        print(f"Removed {args.student_id}")
        return 0

    if args.cmd == "students":
        for s in store.list_students():
            print(f"{s.id}\t{s.name}\t{s.class_name}\t{format_amount(total_outstanding(s), sym)}")
        return 0

    if args.cmd == "dues":
        s = store.get_student(args.student_id)
        buckets = derive_dues(s, academic_year=year)
        print(f"{s.id}\t{s.name}\tclass {s.class_name}")
        if not buckets:
            print("No dues.")
        for b in buckets:
            label = "current" if b.year == year else "previous"
            print(f"- {b.year}\t{format_amount(b.amount, sym)}\t({label})")
        print(f"Total outstanding: {format_amount(total_outstanding(s), sym)}")
        return 0

    if args.cmd == "pay":
        require(Role(args.role), Capability.RECORD_PAYMENT)
        allocations = parse_allocation_args(args.allocate) if args.allocate is not None else None
        result = record_payment(
            store,
            args.student_id,
            parse_amount(args.amount),
            mode=PaymentMode(args.mode),
            recorded_by=RecordedBy(user_id=args.by_id, user_name=args.by_name),
            allocations=allocations,
            on=parse_date(args.date) if args.date else None,
            payment_id=args.payment_id or None,
            academic_year=year,
            overpayment=cfg.ledger.overpayment_policy,
        )
        p = result.payment
        print(f"✅ {p.receipt_no}\t{p.id}\t{p.student_name}\t{format_amount(p.amount, sym)}\t{p.mode.value}")
        for a in p.allocations:
            print(f"- {a.year}\t{format_amount(a.amount, sym)}")
        for w in result.warnings:
            print(f"⚠️  {w}")
        print(f"Remaining due: {format_amount(total_outstanding(result.student), sym)}")
        return 0

    if args.cmd == "history":
        s = store.get_student(args.student_id)
        payments = student_history(store.list_payments(student_id=s.id), s.id)
        if not payments:
            print("No payments.")
        for p in payments:
            allocs = ", ".join(f"{a.year} {format_amount(a.amount, sym)}" for a in p.allocations)
            print(f"{p.date.isoformat()}\t{p.receipt_no}\t{format_amount(p.amount, sym)}\t{p.mode.value}\t{allocs}")
        return 0

    if args.cmd == "report":
        require(Role(args.role), Capability.VIEW_REPORTS)
        return _report(args, cfg, store)

    raise AssertionError("Unhandled command")


def _report(args: argparse.Namespace, cfg: AppConfig, store: SqliteFeeStore) -> int:
    sym = cfg.school.currency_symbol

    if args.kind == "stats":
        today = parse_date(args.today) if args.today else date.today()
        stats = compute_stats(store.list_students(), store.list_payments(), today=today)
        print(f"{cfg.school.name} ({cfg.school.academic_year})")
        print(f"Total students:    {stats.total_students}")
        print(f"Total outstanding: {format_amount(stats.total_outstanding, sym)}")
        print(f"Collected today:   {format_amount(stats.collected_today, sym)}")
        print(f"Collected month:   {format_amount(stats.collected_month, sym)}")
        return 0

    if args.kind == "defaulters":
        rows = defaulters(
            store.list_students(),
            search=args.search,
            overdue_only=args.overdue,
            class_name=args.class_name or None,
        )
        if not rows:
            print("No defaulters.")
        for r in rows:
            s = r.student
            print(f"{s.id}\t{s.name}\tclass {s.class_name}\t{format_amount(r.total_due, sym)}\t{r.due_label}")
        return 0

    payments = newest_first(
        store.list_payments(
            date_from=parse_date(args.since) if args.since else None,
            date_to=parse_date(args.until) if args.until else None,
        )
    )
    for row in transaction_rows(payments):
        print("\t".join(row))
    if args.csv:
        out = write_transactions_csv(payments, args.csv)
        print(f"✅ CSV written: {out}")
    return 0
