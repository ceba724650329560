"""
Dues & allocation engine.

Everything here is a pure function of its arguments: students and allocations go in,
new values come out. Persistence belongs to the caller (see `payments.record_payment`).
"""

from __future__ import annotations

from collections import Counter, defaultdict
from decimal import Decimal
from enum import Enum
from typing import Iterable, Sequence

from .fees import ACADEMIC_YEAR
from .models import Allocation, DueBucket, PendingFee, Student
from .util.money import quantize


ZERO = Decimal("0.00")


class OverpaymentPolicy(str, Enum):
    REJECT = "reject"
    CREDIT_CURRENT_YEAR = "credit_current_year"


class InvalidAmount(ValueError):
    def __init__(self, amount: Decimal) -> None:
        super().__init__(f"Payment amount must be greater than zero (got {amount})")
        self.amount = amount


class AllocationMismatch(ValueError):
    def __init__(self, expected: Decimal, actual: Decimal) -> None:
        super().__init__(f"Allocation ({actual}) must match amount ({expected})")
        self.expected = expected
        self.actual = actual


class InvalidAllocation(ValueError):
    def __init__(self, year: str, amount: Decimal) -> None:
        super().__init__(f"Allocation to {year} must be greater than zero (got {amount})")
        self.year = year
        self.amount = amount


class OverpaymentUnresolved(ValueError):
    def __init__(self, amount: Decimal, outstanding: Decimal) -> None:
        super().__init__(f"Amount {amount} exceeds outstanding dues {outstanding}")
        self.amount = amount
        self.outstanding = outstanding


def derive_dues(student: Student, *, academic_year: str = ACADEMIC_YEAR) -> list[DueBucket]:
    """
    Buckets open for allocation: every positive previous-year entry in entry order,
    then the current year if anything is left to pay on it.

    Duplicate years are kept as separate buckets.
    """
    dues = [DueBucket(year=p.year, amount=p.amount) for p in student.previous_pending if p.amount > 0]
    current = student.current_year_due
    if current > 0:
        dues.append(DueBucket(year=academic_year, amount=current))
    return dues


def total_outstanding(student: Student) -> Decimal:
    """
    Headline "total due" for dashboards and reports.

    Unclamped: settled or over-allocated previous entries and a current-year credit all
    count, so the result is negative when the student is in credit.
    """
    prev = sum((p.amount for p in student.previous_pending), ZERO)
    return prev + student.current_year_due


def dues_total(dues: Iterable[DueBucket]) -> Decimal:
    return sum((d.amount for d in dues), ZERO)


def auto_allocate(
    amount: Decimal,
    dues: Sequence[DueBucket],
    *,
    academic_year: str = ACADEMIC_YEAR,
    overpayment: OverpaymentPolicy = OverpaymentPolicy.REJECT,
) -> list[Allocation]:
    """
    Fill buckets oldest-first: previous years in entry order, current year last.

    Anything beyond the sum of `dues` is either rejected or credited to `academic_year`,
    depending on `overpayment`. It is never dropped.
    """
    amount = quantize(amount)
    if amount <= 0:
        raise InvalidAmount(amount)

    outstanding = dues_total(dues)
    policy = OverpaymentPolicy(overpayment)
    if amount > outstanding and policy is OverpaymentPolicy.REJECT:
        raise OverpaymentUnresolved(amount, outstanding)

    remaining = amount
    out: list[Allocation] = []
    for bucket in dues:
        if remaining <= 0:
            break
        pay = min(remaining, bucket.amount)
        if pay > 0:
            out.append(Allocation(year=bucket.year, amount=pay))
        remaining -= pay

    if remaining > 0:
        # CREDIT_CURRENT_YEAR: merge the excess into the current-year line.
        for i, a in enumerate(out):
            if a.year == academic_year:
                out[i] = Allocation(year=academic_year, amount=a.amount + remaining)
                break
        else:
            out.append(Allocation(year=academic_year, amount=remaining))

    return out


def allocation_total(allocations: Iterable[Allocation]) -> Decimal:
    return sum((a.amount for a in allocations), ZERO)


def validate_manual_allocation(amount: Decimal, allocations: Sequence[Allocation]) -> None:
    # Every line positive and the sum exact; years are not checked against the student's buckets.
    for a in allocations:
        if a.amount <= 0:
            raise InvalidAllocation(a.year, a.amount)
    expected = quantize(amount)
    actual = allocation_total(allocations)
    if actual != expected:
        raise AllocationMismatch(expected=expected, actual=actual)


def unknown_allocation_years(dues: Sequence[DueBucket], allocations: Sequence[Allocation]) -> list[str]:
    """Years in `allocations` with no matching due bucket, in allocation order."""
    open_years = {d.year for d in dues}
    out: list[str] = []
    for a in allocations:
        if a.year not in open_years and a.year not in out:
            out.append(a.year)
    return out


def duplicate_years(student: Student) -> list[str]:
    counts = Counter(p.year for p in student.previous_pending)
    return [year for year, n in counts.items() if n > 1]


def apply_payment(
    student: Student,
    allocations: Sequence[Allocation],
    *,
    academic_year: str = ACADEMIC_YEAR,
) -> Student:
    """
    Return a new Student with `allocations` applied.

    The k-th allocation for a year settles the k-th previous-pending entry of that year
    (with one entry per year: first match wins). Entries are not clamped at zero.
    Current-year allocations are added to `paid_amount`.

    Not idempotent: applying the same allocations twice credits them twice.
    """
    by_year: dict[str, list[Decimal]] = defaultdict(list)
    paid = student.paid_amount
    for a in allocations:
        if a.year == academic_year:
            paid += a.amount
        else:
            by_year[a.year].append(a.amount)

    pending: list[PendingFee] = []
    for p in student.previous_pending:
        queue = by_year.get(p.year)
        if queue:
            pending.append(p.model_copy(update={"amount": p.amount - queue.pop(0)}))
        else:
            pending.append(p)

    return student.model_copy(update={"previous_pending": pending, "paid_amount": paid})
