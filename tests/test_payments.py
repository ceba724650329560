from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from school_fee_ledger.dues import (
    AllocationMismatch,
    InvalidAllocation,
    InvalidAmount,
    OverpaymentPolicy,
    OverpaymentUnresolved,
    apply_payment,
    auto_allocate,
    derive_dues,
)
from school_fee_ledger.models import Allocation, Payment, PaymentMode, PendingFee, RecordedBy, Student
from school_fee_ledger.payments import parse_allocation_args, record_payment
from school_fee_ledger.store import DuplicateApplication, StaleStudent, UnknownStudent


CLERK = RecordedBy(user_id="u2", user_name="Angela Martin")


def _milhouse() -> Student:
    return Student(
        id="ADM003",
        name="Milhouse Van Houten",
        class_name="4",
        previous_pending=[PendingFee(year="2024-25", amount="5000")],
        current_year_fee="20000",
        paid_amount="0",
    )


def test_auto_allocated_payment_is_persisted_with_student(store) -> None:
    store.add_student(_milhouse())

    result = record_payment(
        store,
        "ADM003",
        Decimal("25000"),
        mode=PaymentMode.UPI,
        recorded_by=CLERK,
        on=date(2025, 6, 14),
        payment_id="PAY-1",
    )

    p = result.payment
    assert p.receipt_no == "REC-0001"
    assert (p.student_name, p.student_class, p.date) == ("Milhouse Van Houten", "4", date(2025, 6, 14))
    assert [(a.year, a.amount) for a in p.allocations] == [
        ("2024-25", Decimal("5000.00")),
        ("2025-26", Decimal("20000.00")),
    ]
    assert result.warnings == []

    stored = store.get_student("ADM003")
    assert stored == result.student
    assert stored.previous_pending[0].amount == Decimal("0.00")
    assert stored.paid_amount == Decimal("20000.00")
    assert store.list_payments(student_id="ADM003") == [p]


def test_manual_allocation_mismatch_writes_nothing(store) -> None:
    store.add_student(_milhouse())

    with pytest.raises(AllocationMismatch):
        record_payment(
            store,
            "ADM003",
            Decimal("6000"),
            mode=PaymentMode.CASH,
            recorded_by=CLERK,
            allocations=[Allocation(year="2024-25", amount="5000"), Allocation(year="2025-26", amount="999.99")],
        )

    assert store.get_student("ADM003") == _milhouse()
    assert store.list_payments() == []


def test_negative_allocation_line_writes_nothing(store) -> None:
    store.add_student(_milhouse())

    with pytest.raises(InvalidAllocation):
        record_payment(
            store,
            "ADM003",
            Decimal("100"),
            mode=PaymentMode.CASH,
            recorded_by=CLERK,
            allocations=[Allocation(year="2019-20", amount="600"), Allocation(year="2025-26", amount="-500")],
        )

    assert store.get_student("ADM003") == _milhouse()
    assert store.list_payments() == []


def test_manual_allocation_to_unknown_year_is_accepted_with_warning(store, caplog) -> None:
    store.add_student(_milhouse())

    caplog.set_level("WARNING")
    result = record_payment(
        store,
        "ADM003",
        Decimal("1000"),
        mode=PaymentMode.CHEQUE,
        recorded_by=CLERK,
        allocations=[Allocation(year="2020-21", amount="400"), Allocation(year="2025-26", amount="600")],
    )

    assert result.warnings == ["Allocated to years with nothing due: 2020-21"]
    assert "2020-21" in caplog.text
    assert result.student.paid_amount == Decimal("600.00")
    assert result.student.previous_pending[0].amount == Decimal("5000.00")


def test_overpayment_rejected_by_default(store) -> None:
    store.add_student(_milhouse())
    with pytest.raises(OverpaymentUnresolved):
        record_payment(store, "ADM003", Decimal("25000.01"), mode=PaymentMode.CASH, recorded_by=CLERK)
    assert store.list_payments() == []


def test_overpayment_credited_when_configured(store) -> None:
    store.add_student(_milhouse())
    result = record_payment(
        store,
        "ADM003",
        Decimal("26000"),
        mode=PaymentMode.CARD,
        recorded_by=CLERK,
        overpayment=OverpaymentPolicy.CREDIT_CURRENT_YEAR,
    )
    assert result.payment.allocated_total == result.payment.amount
    assert store.get_student("ADM003").paid_amount == Decimal("21000.00")


def test_unknown_student_is_fatal(store) -> None:
    with pytest.raises(UnknownStudent):
        record_payment(store, "NOPE", Decimal("10"), mode=PaymentMode.CASH, recorded_by=CLERK)


@pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-5")])
def test_non_positive_amount_rejected(store, amount: Decimal) -> None:
    store.add_student(_milhouse())
    with pytest.raises(InvalidAmount):
        record_payment(store, "ADM003", amount, mode=PaymentMode.CASH, recorded_by=CLERK)


def test_reusing_payment_id_is_rejected_and_not_double_credited(store) -> None:
    store.add_student(_milhouse())
    record_payment(store, "ADM003", Decimal("1000"), mode=PaymentMode.CASH, recorded_by=CLERK, payment_id="PAY-X")

    with pytest.raises(DuplicateApplication):
        record_payment(store, "ADM003", Decimal("1000"), mode=PaymentMode.CASH, recorded_by=CLERK, payment_id="PAY-X")

    assert store.get_student("ADM003").previous_pending[0].amount == Decimal("4000.00")
    assert len(store.list_payments()) == 1


def test_receipts_are_sequential(store) -> None:
    store.add_student(_milhouse())
    receipts = [
        record_payment(store, "ADM003", Decimal("100"), mode=PaymentMode.CASH, recorded_by=CLERK).payment.receipt_no
        for _ in range(3)
    ]
    assert receipts == ["REC-0001", "REC-0002", "REC-0003"]


def test_stale_snapshot_is_not_written(store) -> None:
    snapshot = _milhouse()
    store.add_student(snapshot)

    # Someone edits the student after dues were computed from `snapshot`.
    store.put_student(snapshot.model_copy(update={"current_year_fee": Decimal("15000.00")}))

    allocations = auto_allocate(Decimal("1000"), derive_dues(snapshot))
    payment = Payment(
        id="PAY-S",
        student_id=snapshot.id,
        student_name=snapshot.name,
        student_class=snapshot.class_name,
        date=date(2025, 7, 1),
        amount="1000",
        mode=PaymentMode.CASH,
        allocations=allocations,
        recorded_by=CLERK,
        receipt_no=store.next_receipt_no(),
    )
    with pytest.raises(StaleStudent):
        store.record_payment(payment, apply_payment(snapshot, allocations), expected=snapshot)

    assert store.has_payment("PAY-S") is False
    assert store.get_student("ADM003").current_year_fee == Decimal("15000.00")


def test_duplicate_pending_years_warn(store) -> None:
    s = _milhouse().model_copy(
        update={"previous_pending": [PendingFee(year="2024-25", amount="100"), PendingFee(year="2024-25", amount="200")]}
    )
    store.add_student(s)
    result = record_payment(store, "ADM003", Decimal("250"), mode=PaymentMode.CASH, recorded_by=CLERK)
    assert result.warnings == ["Student ADM003 has duplicate pending years: 2024-25"]
    assert [p.amount for p in result.student.previous_pending] == [Decimal("0.00"), Decimal("50.00")]


def test_parse_allocation_args() -> None:
    allocs = parse_allocation_args(["2024-25=5,000", " 2025-26 = 1500.50 ", "2024-25=1"])
    assert [(a.year, a.amount) for a in allocs] == [
        ("2024-25", Decimal("5000.00")),
        ("2025-26", Decimal("1500.50")),
        ("2024-25", Decimal("1.00")),
    ]


@pytest.mark.parametrize("bad", ["2024-25", "=100", "2024-25=", "2024-25=abc"])
def test_parse_allocation_args_rejects_junk(bad: str) -> None:
    with pytest.raises(ValueError):
        parse_allocation_args([bad])
