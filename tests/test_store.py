from __future__ import annotations

from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from school_fee_ledger.models import Allocation, Payment, PaymentMode, PendingFee, RecordedBy, Student
from school_fee_ledger.store import DuplicateApplication, DuplicateStudent, SqliteFeeStore, UnknownStudent


def _student(student_id: str = "ADM001") -> Student:
    return Student(
        id=student_id,
        name="Bart Simpson",
        father_name="Homer Simpson",
        mother_name="Marge Simpson",
        dob=date(2015, 4, 1),
        class_name="4",
        previous_pending=[PendingFee(year="2023-24", amount="2000", description="2023-24 Tuition Balance")],
        current_year_fee="20000",
        paid_amount="5000",
    )


def _payment(payment_id: str, on: date, receipt_no: str, student_id: str = "ADM001") -> Payment:
    return Payment(
        id=payment_id,
        student_id=student_id,
        student_name="Bart Simpson",
        student_class="4",
        date=on,
        amount="500",
        mode=PaymentMode.CASH,
        allocations=[Allocation(year="2023-24", amount="500")],
        recorded_by=RecordedBy(user_id="u2", user_name="Angela Martin"),
        receipt_no=receipt_no,
    )


def test_student_round_trips_with_exact_amounts(store) -> None:
    store.add_student(_student())
    loaded = store.get_student("ADM001")
    assert loaded == _student()
    assert loaded.previous_pending[0].amount == Decimal("2000.00")
    assert loaded.dob == date(2015, 4, 1)


def test_add_student_rejects_existing_admission_number(store) -> None:
    store.add_student(_student())
    with pytest.raises(DuplicateStudent):
        store.add_student(_student())


def test_put_student_upserts(store) -> None:
    store.add_student(_student())
    store.put_student(_student().model_copy(update={"class_name": "5"}))
    assert store.get_student("ADM001").class_name == "5"
    assert [s.id for s in store.list_students()] == ["ADM001"]


def test_missing_student_raises(store) -> None:
    with pytest.raises(UnknownStudent):
        store.get_student("ADM404")
    with pytest.raises(UnknownStudent):
        store.delete_student("ADM404")


def test_delete_student_keeps_payment_history(store) -> None:
    store.add_student(_student())
    store.append_payment(_payment("PAY-1", date(2025, 6, 1), "REC-0001"))
    store.delete_student("ADM001")
    assert store.list_students() == []
    assert [p.id for p in store.list_payments(student_id="ADM001")] == ["PAY-1"]


def test_payments_are_append_only(store) -> None:
    store.append_payment(_payment("PAY-1", date(2025, 6, 1), "REC-0001"))
    with pytest.raises(DuplicateApplication):
        store.append_payment(_payment("PAY-1", date(2025, 6, 2), "REC-0002"))
    assert store.has_payment("PAY-1") is True
    assert len(store.list_payments()) == 1


def test_list_payments_filters(store) -> None:
    store.append_payment(_payment("PAY-3", date(2025, 7, 1), "REC-0001"))
    store.append_payment(_payment("PAY-1", date(2025, 5, 1), "REC-0002"))
    store.append_payment(_payment("PAY-2", date(2025, 6, 1), "REC-0003", student_id="ADM002"))

    assert [p.id for p in store.list_payments()] == ["PAY-1", "PAY-2", "PAY-3"]
    assert [p.id for p in store.list_payments(student_id="ADM001")] == ["PAY-1", "PAY-3"]
    assert [p.id for p in store.list_payments(date_from=date(2025, 6, 1))] == ["PAY-2", "PAY-3"]
    assert [p.id for p in store.list_payments(date_to=date(2025, 6, 1))] == ["PAY-1", "PAY-2"]


def test_record_payment_rejects_mismatched_student(store) -> None:
    store.add_student(_student("ADM002"))
    with pytest.raises(ValueError):
        store.record_payment(_payment("PAY-1", date(2025, 6, 1), "REC-0001"), _student("ADM002"))
    assert store.list_payments() == []


def test_record_payment_rolls_back_on_duplicate(store) -> None:
    store.add_student(_student())
    store.append_payment(_payment("PAY-1", date(2025, 6, 1), "REC-0001"))

    changed = _student().model_copy(update={"paid_amount": Decimal("9999.00")})
    with pytest.raises(DuplicateApplication):
        store.record_payment(_payment("PAY-1", date(2025, 6, 2), "REC-0002"), changed)

    assert store.get_student("ADM001").paid_amount == Decimal("5000.00")


def test_next_receipt_no(store) -> None:
    assert store.next_receipt_no() == "REC-0001"
    store.append_payment(_payment("PAY-1", date(2025, 6, 1), store.next_receipt_no()))
    assert store.next_receipt_no() == "REC-0002"


def test_store_creates_backup(tmp_path: Path) -> None:
    db_path = tmp_path / "ledger.db"
    s = SqliteFeeStore(str(db_path))
    try:
        rid = s.record_run_start()
        s.record_run_finish(rid, ok=True, message="test")
    finally:
        s.close()

    bak = tmp_path / "ledger.db.bak"
    assert db_path.exists()
    assert bak.exists()
    assert bak.stat().st_size > 0


def test_store_restores_from_backup_when_db_corrupted(tmp_path: Path) -> None:
    db_path = tmp_path / "ledger.db"

    # Create a valid DB + backup that already holds a student.
    s1 = SqliteFeeStore(str(db_path))
    try:
        s1.add_student(_student())
        rid = s1.record_run_start()
        s1.record_run_finish(rid, ok=True, message="test")
    finally:
        s1.close()

    assert (tmp_path / "ledger.db.bak").exists()

    # Corrupt the main DB file.
    db_path.write_bytes(b"not a sqlite db")

    s2 = SqliteFeeStore(str(db_path))
    try:
        assert s2.get_student("ADM001") == _student()
        assert s2.has_payment("nope") is False
    finally:
        s2.close()

    quarantined = list(tmp_path.glob("ledger.db.corrupt-*"))
    assert quarantined, "expected quarantined corrupted db file to be created"
