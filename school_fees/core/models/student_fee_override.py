"""Student fee override: custom base amount for one student and category in an academic year."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, Numeric, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from school_fees.db.session import Base


class StudentFeeOverride(Base):
    __tablename__ = "student_fee_overrides"
    __table_args__ = (
        UniqueConstraint(
            "student_id",
            "fee_category_id",
            "academic_year",
            name="uq_student_fee_override_student_category_year",
        ),
        CheckConstraint("override_amount >= 0", name="chk_student_fee_override_amount"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    school_id = Column(UUID(as_uuid=True), ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(UUID(as_uuid=True), ForeignKey("students.id", ondelete="CASCADE"), nullable=False)
    fee_category_id = Column(
        UUID(as_uuid=True),
        ForeignKey("fee_categories.id", ondelete="CASCADE"),
        nullable=False,
    )
    academic_year = Column(String(20), nullable=False)
    override_amount = Column(Numeric(12, 2), nullable=False)
    reason = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_by = Column(UUID(as_uuid=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    fee_category = relationship("FeeCategory")
