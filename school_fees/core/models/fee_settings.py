"""Per-school fee policy: late fees, grace period, forfeiture, partial payments."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.dialects.postgresql import UUID

from school_fees.db.session import Base


class FeeSettings(Base):
    """One row per school. Absent row means every policy takes its column default."""

    __tablename__ = "fee_settings"
    __table_args__ = (
        CheckConstraint("late_fee_type IN ('fixed','percentage')", name="chk_fee_settings_late_fee_type"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    school_id = Column(
        UUID(as_uuid=True), ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    enable_late_fees = Column(Boolean, nullable=False, default=True)
    late_fee_type = Column(String(10), nullable=False, default="fixed")
    late_fee_value = Column(Numeric(12, 2), nullable=False, default=0)
    grace_days = Column(Integer, nullable=False, default=0)
    enable_sibling_discounts = Column(Boolean, nullable=False, default=True)
    discount_forfeiture_enabled = Column(Boolean, nullable=False, default=True)
    admin_can_restore_discounts = Column(Boolean, nullable=False, default=True)
    allow_partial_payments = Column(Boolean, nullable=False, default=True)
    min_partial_payment_percent = Column(Numeric(5, 2), nullable=False, default=0)
    overpayment_tolerance = Column(Numeric(12, 2), nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
