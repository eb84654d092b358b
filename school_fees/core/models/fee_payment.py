"""Fee payment: money already collected out-of-band, recorded against a student fee."""

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Numeric, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from school_fees.db.session import Base


class FeePayment(Base):
    """Payment against a student fee. Supports partial payments."""

    __tablename__ = "fee_payments"
    __table_args__ = (
        CheckConstraint("amount > 0", name="chk_fee_payment_amount"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    school_id = Column(UUID(as_uuid=True), ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True)
    student_fee_id = Column(
        UUID(as_uuid=True),
        ForeignKey("student_fees.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    amount = Column(Numeric(12, 2), nullable=False)
    payment_method = Column(String(30), nullable=False, default="cash")
    payment_reference = Column(String(100), nullable=True)
    payment_date = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    received_by = Column(UUID(as_uuid=True), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    student_fee = relationship("StudentFee", backref="payments")
