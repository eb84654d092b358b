"""Fee adjustment: immutable audit trail of admin overrides on a student fee."""

import uuid
from datetime import datetime

from sqlalchemy import JSON, CheckConstraint, Column, DateTime, ForeignKey, String, Text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import relationship

from school_fees.db.session import Base


class FeeAdjustment(Base):
    """Append-only. previous_value/new_value hold the touched fields before and after the override."""

    __tablename__ = "fee_adjustments"
    __table_args__ = (
        CheckConstraint(
            "adjustment_type IN ('remove_late_fee','reduce_late_fee','custom_discount','waive','restore_discount')",
            name="chk_fee_adjustment_type",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    school_id = Column(UUID(as_uuid=True), ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True)
    student_fee_id = Column(
        UUID(as_uuid=True),
        ForeignKey("student_fees.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    adjustment_type = Column(String(30), nullable=False)
    admin_id = Column(UUID(as_uuid=True), nullable=False)
    reason = Column(Text, nullable=False)
    previous_value = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=True)
    new_value = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    student_fee = relationship("StudentFee", backref="adjustments")
