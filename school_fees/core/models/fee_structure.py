"""Fee structure: amount per category, grade and period for an academic year."""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from school_fees.db.session import Base


class FeeStructure(Base):
    """
    Billing rule. grade_level_id NULL means school-wide (every grade).
    Due date rule: monthly structures fall due on due_day of the billed month;
    one-time and term structures fall due on due_date.
    """

    __tablename__ = "fee_structures"
    __table_args__ = (
        CheckConstraint("period_type IN ('one_time','monthly','term')", name="chk_fee_structure_period_type"),
        CheckConstraint("amount >= 0", name="chk_fee_structure_amount"),
        # At most one active structure per (school, year, grade, category, period)
        Index(
            "uq_fee_structure_active",
            "school_id",
            "academic_year",
            "grade_level_id",
            "fee_category_id",
            "period_type",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active"),
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    school_id = Column(UUID(as_uuid=True), ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True)
    academic_year = Column(String(20), nullable=False)
    grade_level_id = Column(UUID(as_uuid=True), ForeignKey("grade_levels.id", ondelete="SET NULL"), nullable=True)
    fee_category_id = Column(
        UUID(as_uuid=True),
        ForeignKey("fee_categories.id", ondelete="RESTRICT"),
        nullable=False,
    )
    period_type = Column(String(20), nullable=False)
    period_name = Column(String(50), nullable=True)
    amount = Column(Numeric(12, 2), nullable=False)
    due_date = Column(Date, nullable=True)
    due_day = Column(Integer, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    fee_category = relationship("FeeCategory")
