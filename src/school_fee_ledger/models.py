from __future__ import annotations

import datetime as dt
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Annotated, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field

from .util.money import quantize


def _money(value: object) -> Decimal:
    try:
        return quantize(Decimal(str(value)))
    except InvalidOperation as e:
        raise ValueError(f"not a money amount: {value!r}") from e


# Two-place decimal; accepts str, int, float or Decimal input.
Money = Annotated[Decimal, BeforeValidator(_money)]


class PendingFee(BaseModel):
    model_config = ConfigDict(frozen=True)

    year: str
    # Goes negative when a payment over-allocates to this year; anything <= 0 counts as settled.
    amount: Money
    description: str = ""


class Student(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str  # admission number
    name: str
    father_name: str = ""
    mother_name: str = ""
    dob: Optional[dt.date] = None
    class_name: str

    previous_pending: list[PendingFee] = Field(default_factory=list)
    current_year_fee: Money = Field(default=Decimal("0.00"), ge=0)
    # Cumulative paid toward the current academic year only. May exceed the fee (credit).
    paid_amount: Money = Field(default=Decimal("0.00"), ge=0)

    @property
    def current_year_due(self) -> Decimal:
        return self.current_year_fee - self.paid_amount


class DueBucket(BaseModel):
    model_config = ConfigDict(frozen=True)

    year: str
    amount: Money


class Allocation(BaseModel):
    model_config = ConfigDict(frozen=True)

    year: str
    amount: Money


class RecordedBy(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    user_name: str


class PaymentMode(str, Enum):
    CASH = "Cash"
    UPI = "UPI"
    CHEQUE = "Cheque"
    CARD = "Card"


class Payment(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    student_id: str
    # Snapshot of the student at payment time
    student_name: str
    student_class: str

    date: dt.date
    amount: Money = Field(gt=0)
    mode: PaymentMode
    allocations: list[Allocation] = Field(default_factory=list)
    recorded_by: RecordedBy
    receipt_no: str

    @property
    def allocated_total(self) -> Decimal:
        return sum((a.amount for a in self.allocations), Decimal("0.00"))
