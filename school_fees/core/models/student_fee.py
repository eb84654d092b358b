"""Student fee: one billing obligation for a student for a period. Amount columns are kept consistent by the services."""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from school_fees.core.enums import StudentFeeStatus
from school_fees.db.session import Base


class StudentFee(Base):
    """
    final_amount = base_amount - discount_amount + late_fee_amount
    balance = final_amount - amount_paid (forced to 0 when waived)

    period_key identifies the billed period: "YYYY-MM" for monthly fees, the structure's
    period type ("one_time" or "term") otherwise. (student, structure, period_key) is unique so
    regeneration never duplicates an obligation.
    """

    __tablename__ = "student_fees"
    __table_args__ = (
        UniqueConstraint(
            "student_id",
            "fee_structure_id",
            "period_key",
            name="uq_student_fee_student_structure_period",
        ),
        CheckConstraint(
            "status IN ('pending','partial','paid','overdue','waived')",
            name="chk_student_fee_status",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    school_id = Column(UUID(as_uuid=True), ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(UUID(as_uuid=True), ForeignKey("students.id", ondelete="RESTRICT"), nullable=False, index=True)
    # NULL for ad-hoc (custom) fees
    fee_structure_id = Column(
        UUID(as_uuid=True),
        ForeignKey("fee_structures.id", ondelete="RESTRICT"),
        nullable=True,
    )
    fee_category_id = Column(
        UUID(as_uuid=True),
        ForeignKey("fee_categories.id", ondelete="RESTRICT"),
        nullable=False,
    )
    academic_year = Column(String(20), nullable=False)
    fee_month = Column(String(7), nullable=True)
    period_key = Column(String(50), nullable=False)
    custom_name = Column(String(255), nullable=True)

    base_amount = Column(Numeric(12, 2), nullable=False)
    discount_amount = Column(Numeric(12, 2), nullable=False, default=0)
    discount_forfeited = Column(Boolean, nullable=False, default=False)
    late_fee_amount = Column(Numeric(12, 2), nullable=False, default=0)
    final_amount = Column(Numeric(12, 2), nullable=False)
    amount_paid = Column(Numeric(12, 2), nullable=False, default=0)
    balance = Column(Numeric(12, 2), nullable=False)
    due_date = Column(Date, nullable=False)
    status = Column(String(20), nullable=False, default=StudentFeeStatus.pending.value)

    # Set by the late-fee sweep; never cleared, so a removed late fee is not re-applied.
    overdue_at = Column(DateTime(timezone=True), nullable=True)
    late_fee_assessed_at = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    fee_structure = relationship("FeeStructure")
    fee_category = relationship("FeeCategory")
    student = relationship("Student")
