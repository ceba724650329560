#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path


def _ensure_src_on_path() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    src = repo_root / "src"
    if str(src) not in sys.path:
        sys.path.insert(0, str(src))


def _read_json(path: str) -> object:
    p = Path(path)
    if not p.exists():
        raise SystemExit(f"File not found: {p}")
    return json.loads(p.read_text(encoding="utf-8"))


def _student_from_export(row: dict) -> dict:
    """Map a camelCase student export (web app / spreadsheet) onto Student fields."""
    return {
        "id": row["id"],
        "name": row.get("name", ""),
        "father_name": row.get("fatherName", ""),
        "mother_name": row.get("motherName", ""),
        "dob": row.get("dob") or None,
        "class_name": str(row.get("class", "")),
        "previous_pending": [
            {"year": p["year"], "amount": p.get("amount", 0), "description": p.get("description", "")}
            for p in row.get("previousPending", [])
        ],
        "current_year_fee": row.get("currentYearFee", 0),
        "paid_amount": row.get("paidAmount", 0),
    }


def main(argv: list[str] | None = None) -> int:
    _ensure_src_on_path()

    from school_fee_ledger.dues import (
        OverpaymentPolicy,
        apply_payment,
        auto_allocate,
        derive_dues,
        total_outstanding,
    )
    from school_fee_ledger.fees import ACADEMIC_YEAR
    from school_fee_ledger.models import Student
    from school_fee_ledger.util.money import parse_amount

    p = argparse.ArgumentParser(
        prog="preview_allocation",
        description=(
            "Preview dues and automatic allocation for students in a JSON export.\n"
            "Nothing is written to the ledger DB."
        ),
    )
    sub = p.add_subparsers(dest="cmd", required=True)

    convert = sub.add_parser("convert", help="Convert a camelCase students export into ledger Student JSON")
    convert.add_argument("--file", required=True, help="Path to the exported students JSON array")
    convert.add_argument("--out", default="", help="Optional output JSON path (otherwise prints to stdout)")

    alloc = sub.add_parser("allocate", help="Show how an amount would be allocated for one student")
    alloc.add_argument("--file", required=True, help="Path to the exported students JSON array")
    alloc.add_argument("--student", required=True, help="Admission number")
    alloc.add_argument("--amount", required=True)
    alloc.add_argument("--academic-year", default=ACADEMIC_YEAR)
    alloc.add_argument(
        "--overpayment",
        choices=[o.value for o in OverpaymentPolicy],
        default=OverpaymentPolicy.REJECT.value,
    )

    args = p.parse_args(argv)

    rows = _read_json(args.file)
    if not isinstance(rows, list):
        raise SystemExit("Expected a JSON array of students.")
    students = [Student.model_validate(_student_from_export(r)) for r in rows]

    if args.cmd == "convert":
        out_json = json.dumps([s.model_dump(mode="json") for s in students], indent=2, sort_keys=False)
        if args.out:
            Path(args.out).write_text(out_json, encoding="utf-8")
        else:
            print(out_json)
        return 0

    if args.cmd == "allocate":
        matches = [s for s in students if s.id == args.student]
        if not matches:
            raise SystemExit(f"Student not found: {args.student}")
        student = matches[0]
        dues = derive_dues(student, academic_year=args.academic_year)
        try:
            allocations = auto_allocate(
                parse_amount(args.amount),
                dues,
                academic_year=args.academic_year,
                overpayment=OverpaymentPolicy(args.overpayment),
            )
        except ValueError as e:
            raise SystemExit(str(e))
        after = apply_payment(student, allocations, academic_year=args.academic_year)
        payload = {
            "dues": [d.model_dump(mode="json") for d in dues],
            "allocations": [a.model_dump(mode="json") for a in allocations],
            "outstanding_before": str(total_outstanding(student)),
            "outstanding_after": str(total_outstanding(after)),
        }
        print(json.dumps(payload, indent=2, sort_keys=False))
        return 0

    raise AssertionError("Unhandled command")


if __name__ == "__main__":
    raise SystemExit(main())
