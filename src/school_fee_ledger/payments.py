from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Optional, Sequence

from .dues import (
    InvalidAmount,
    OverpaymentPolicy,
    apply_payment,
    auto_allocate,
    derive_dues,
    duplicate_years,
    unknown_allocation_years,
    validate_manual_allocation,
)
from .fees import ACADEMIC_YEAR
from .models import Allocation, Payment, PaymentMode, RecordedBy, Student
from .store import DuplicateApplication, FeeStore
from .util.money import quantize


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentResult:
    payment: Payment
    student: Student
    warnings: list[str] = field(default_factory=list)


def new_payment_id() -> str:
    return f"PAY-{uuid.uuid4().hex[:12].upper()}"


def parse_allocation_args(values: Sequence[str]) -> list[Allocation]:
    """
    Parse CLI-style allocation overrides: ["2024-25=5000", "2025-26=1500.50"].
    Order is kept; a repeated year stays a separate allocation.
    """
    out: list[Allocation] = []
    for raw in values:
        year, sep, amount = (raw or "").partition("=")
        if not sep or not year.strip() or not amount.strip():
            raise ValueError(f"Allocation must look like YEAR=AMOUNT (got {raw!r})")
        out.append(Allocation(year=year.strip(), amount=amount.strip().replace(",", "")))
    return out


def record_payment(
    store: FeeStore,
    student_id: str,
    amount: Decimal,
    *,
    mode: PaymentMode,
    recorded_by: RecordedBy,
    allocations: Optional[Sequence[Allocation]] = None,
    on: Optional[date] = None,
    payment_id: Optional[str] = None,
    academic_year: str = ACADEMIC_YEAR,
    overpayment: OverpaymentPolicy = OverpaymentPolicy.REJECT,
) -> PaymentResult:
    """
    Record one payment end to end.

    Dues are derived from a single student snapshot; allocation is automatic unless
    `allocations` is given, in which case it must sum exactly to `amount`. The payment
    and the updated student are then written in one store transaction. Nothing is
    written if any step fails.
    """
    amount = quantize(amount)
    if amount <= 0:
        raise InvalidAmount(amount)

    snapshot = store.get_student(student_id)
    pid = payment_id or new_payment_id()
    if store.has_payment(pid):
        raise DuplicateApplication(pid)

    warnings: list[str] = []
    dues = derive_dues(snapshot, academic_year=academic_year)

    dupes = duplicate_years(snapshot)
    if dupes:
        warnings.append(f"Student {snapshot.id} has duplicate pending years: {', '.join(dupes)}")

    if allocations is None:
        final = auto_allocate(amount, dues, academic_year=academic_year, overpayment=overpayment)
    else:
        final = list(allocations)
        validate_manual_allocation(amount, final)
        unknown = unknown_allocation_years(dues, final)
        if unknown:
            warnings.append(f"Allocated to years with nothing due: {', '.join(unknown)}")

    for w in warnings:
        logger.warning(w)

    updated = apply_payment(snapshot, final, academic_year=academic_year)

    payment = Payment(
        id=pid,
        student_id=snapshot.id,
        student_name=snapshot.name,
        student_class=snapshot.class_name,
        date=on or date.today(),
        amount=amount,
        mode=PaymentMode(mode),
        allocations=final,
        recorded_by=recorded_by,
        receipt_no=store.next_receipt_no(),
    )

    store.record_payment(payment, updated, expected=snapshot)
    logger.info(
        "Recorded payment id=%s receipt=%s student=%s amount=%s allocations=%s",
        payment.id,
        payment.receipt_no,
        snapshot.id,
        amount,
        ",".join(f"{a.year}:{a.amount}" for a in final),
    )
    return PaymentResult(payment=payment, student=updated, warnings=warnings)
