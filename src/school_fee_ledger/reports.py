from __future__ import annotations

import csv
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Iterable, Optional, Union

from .dues import ZERO, total_outstanding
from .fees import normalize_class
from .models import Payment, Student


@dataclass(frozen=True)
class Stats:
    total_students: int
    total_outstanding: Decimal
    collected_today: Decimal
    collected_month: Decimal


@dataclass(frozen=True)
class DefaulterRow:
    student: Student
    total_due: Decimal
    due_label: str  # "Overdue" when carrying previous-year entries, else "Now"


TRANSACTION_COLUMNS = ["Date", "Receipt", "Student", "Student ID", "Class", "Amount", "Mode", "Recorded By"]


def compute_stats(students: Iterable[Student], payments: Iterable[Payment], *, today: Optional[date] = None) -> Stats:
    today = today or date.today()
    students = list(students)
    payments = list(payments)
    return Stats(
        total_students=len(students),
        # Unclamped: students in credit reduce the school-wide figure.
        total_outstanding=sum((total_outstanding(s) for s in students), ZERO),
        collected_today=sum((p.amount for p in payments if p.date == today), ZERO),
        collected_month=sum(
            (p.amount for p in payments if (p.date.year, p.date.month) == (today.year, today.month)),
            ZERO,
        ),
    )


def _matches(student: Student, query: str) -> bool:
    q = query.strip().lower()
    return q in student.name.lower() or q in student.id.lower() or q in student.class_name.lower()


def defaulters(
    students: Iterable[Student],
    *,
    search: str = "",
    overdue_only: bool = False,
    class_name: Optional[str] = None,
) -> list[DefaulterRow]:
    """Students with something left to pay, largest total due first."""
    rows: list[DefaulterRow] = []
    for s in students:
        due = total_outstanding(s)
        if due <= 0:
            continue
        label = "Overdue" if s.previous_pending else "Now"
        rows.append(DefaulterRow(student=s, total_due=due, due_label=label))

    if search:
        rows = [r for r in rows if _matches(r.student, search)]
    if overdue_only:
        rows = [r for r in rows if r.student.previous_pending]
    if class_name:
        wanted = normalize_class(class_name)
        rows = [r for r in rows if normalize_class(r.student.class_name) == wanted]

    rows.sort(key=lambda r: r.total_due, reverse=True)
    return rows


def student_history(payments: Iterable[Payment], student_id: str) -> list[Payment]:
    return newest_first(p for p in payments if p.student_id == student_id)


def newest_first(payments: Iterable[Payment]) -> list[Payment]:
    # Stable: payments on the same date keep their recorded order, reversed.
    return list(reversed(sorted(payments, key=lambda p: p.date)))


def transaction_rows(payments: Iterable[Payment]) -> list[list[str]]:
    return [
        [
            p.date.isoformat(),
            p.receipt_no,
            p.student_name,
            p.student_id,
            p.student_class,
            f"{p.amount:.2f}",
            p.mode.value,
            f"{p.recorded_by.user_name} ({p.recorded_by.user_id})",
        ]
        for p in newest_first(payments)
    ]


def write_transactions_csv(payments: Iterable[Payment], path: Union[str, Path]) -> Path:
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    with out.open("w", encoding="utf-8", newline="") as f:
        w = csv.writer(f)
        w.writerow(TRANSACTION_COLUMNS)
        w.writerows(transaction_rows(payments))
    return out
