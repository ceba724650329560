from __future__ import annotations

from datetime import date

from .fees import ACADEMIC_YEAR
from .models import Allocation, Payment, PaymentMode, PendingFee, RecordedBy, Student


# Sample roll used by `school_fee_ledger seed` for trying the CLI out.
DEMO_STUDENTS: tuple[Student, ...] = (
    Student(
        id="ADM001",
        name="Bart Simpson",
        father_name="Homer Simpson",
        mother_name="Marge Simpson",
        dob=date(2015, 4, 1),
        class_name="4",
        previous_pending=[
            PendingFee(year="2023-24", amount="2000"),
            PendingFee(year="2024-25", amount="0"),
        ],
        current_year_fee="20000",
        paid_amount="5000",
    ),
    Student(
        id="ADM002",
        name="Lisa Simpson",
        father_name="Homer Simpson",
        mother_name="Marge Simpson",
        dob=date(2017, 5, 12),
        class_name="2",
        current_year_fee="20000",
        paid_amount="20000",
    ),
    Student(
        id="ADM003",
        name="Milhouse Van Houten",
        father_name="Kirk Van Houten",
        mother_name="Luann Van Houten",
        dob=date(2015, 6, 1),
        class_name="4",
        previous_pending=[PendingFee(year="2024-25", amount="5000")],
        current_year_fee="20000",
        paid_amount="0",
    ),
)


def demo_opening_payment(on: date, receipt_no: str, academic_year: str = ACADEMIC_YEAR) -> Payment:
    # Accounts for ADM001's paid_amount above.
    return Payment(
        id="PAY-1001",
        student_id="ADM001",
        student_name="Bart Simpson",
        student_class="4",
        date=on,
        amount="5000",
        mode=PaymentMode.CASH,
        allocations=[Allocation(year=academic_year, amount="5000")],
        recorded_by=RecordedBy(user_id="u2", user_name="Angela Martin"),
        receipt_no=receipt_no,
    )
