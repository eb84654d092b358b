import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, Numeric, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID

from school_fees.db.session import Base


class SiblingDiscountTier(Base):
    """Discount percent keyed by sibling ordinal. The highest ordinal configured also covers every later sibling."""

    __tablename__ = "sibling_discount_tiers"
    __table_args__ = (
        UniqueConstraint("school_id", "sibling_ordinal", name="uq_sibling_tier_school_ordinal"),
        CheckConstraint("sibling_ordinal >= 1", name="chk_sibling_tier_ordinal"),
        CheckConstraint("discount_percent >= 0 AND discount_percent <= 100", name="chk_sibling_tier_percent"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    school_id = Column(UUID(as_uuid=True), ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True)
    sibling_ordinal = Column(Integer, nullable=False)
    discount_percent = Column(Numeric(5, 2), nullable=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
