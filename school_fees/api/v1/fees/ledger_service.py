"""Payment ledger: record, correct and reverse payments against a student fee."""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from school_fees.core.enums import StudentFeeStatus
from school_fees.core.exceptions import ConflictError, NotFoundError, ValidationError
from school_fees.core.models import FeePayment, FeeSettings, StudentFee

from . import catalog_service
from .fee_math import ZERO, derive_status, load_student_fee, money, percent_of, recompute_totals, to_decimal
from .schemas import PaymentCreate, PaymentUpdate

logger = logging.getLogger(__name__)


def _check_amount(amount: Optional[Decimal]) -> Decimal:
    if amount is None or to_decimal(amount) <= ZERO:
        raise ValidationError("Payment amount must be greater than zero", field="amount")
    return money(amount)


def _check_against_fee(fee: StudentFee, amount: Decimal, balance: Decimal, fee_settings: FeeSettings) -> None:
    """balance is the outstanding amount the payment is applied to."""
    if fee.status == StudentFeeStatus.waived.value:
        raise ConflictError("Cannot record a payment against a waived fee")
    if amount > balance + to_decimal(fee_settings.overpayment_tolerance):
        raise ValidationError("Payment amount cannot exceed remaining balance", field="amount")
    if amount < balance:
        if not fee_settings.allow_partial_payments:
            raise ValidationError("Partial payments are not allowed; pay the full balance", field="amount")
        minimum = percent_of(fee.final_amount, fee_settings.min_partial_payment_percent)
        if amount < minimum:
            raise ValidationError(f"Partial payment must be at least {minimum}", field="amount")


async def _sum_payments(db: AsyncSession, student_fee_id: UUID) -> Decimal:
    total = (
        await db.execute(
            select(func.coalesce(func.sum(FeePayment.amount), 0)).where(
                FeePayment.student_fee_id == student_fee_id
            )
        )
    ).scalar()
    return money(total or 0)


async def _resync(db: AsyncSession, fee: StudentFee) -> None:
    """amount_paid from the payment rows, then totals and status from scratch."""
    fee.amount_paid = await _sum_payments(db, fee.id)
    recompute_totals(fee)
    fee.status = derive_status(fee)


async def get_payment(db: AsyncSession, school_id: UUID, payment_id: UUID) -> FeePayment:
    payment = (
        await db.execute(
            select(FeePayment).where(FeePayment.id == payment_id, FeePayment.school_id == school_id)
        )
    ).scalar_one_or_none()
    if not payment:
        raise NotFoundError("Payment not found")
    return payment


async def record_payment(
    db: AsyncSession,
    school_id: UUID,
    payload: PaymentCreate,
    received_by: Optional[UUID],
) -> Tuple[FeePayment, StudentFee]:
    """Read balance, validate and write in one transaction under a row lock on the fee."""
    amount = _check_amount(payload.amount)
    fee_settings = await catalog_service.get_fee_settings(db, school_id)
    fee = await load_student_fee(db, school_id, payload.student_fee_id, for_update=True)
    _check_against_fee(fee, amount, to_decimal(fee.balance), fee_settings)

    payment = FeePayment(
        school_id=school_id,
        student_fee_id=fee.id,
        amount=amount,
        payment_method=(payload.payment_method or "cash").strip().lower(),
        payment_reference=(payload.payment_reference or "").strip() or None,
        payment_date=payload.payment_date or datetime.now(timezone.utc),
        received_by=received_by,
        notes=payload.notes,
    )
    db.add(payment)
    fee.amount_paid = money(to_decimal(fee.amount_paid) + amount)
    recompute_totals(fee)
    fee.status = derive_status(fee)
    await db.commit()
    await db.refresh(payment)
    await db.refresh(fee)
    logger.info("Payment %s of %s recorded on fee %s by %s", payment.id, amount, fee.id, received_by)
    return payment, fee


async def update_payment(
    db: AsyncSession,
    school_id: UUID,
    payment_id: UUID,
    payload: PaymentUpdate,
    actor_id: Optional[UUID] = None,
) -> Tuple[FeePayment, StudentFee]:
    payment = await get_payment(db, school_id, payment_id)
    fee = await load_student_fee(db, school_id, payment.student_fee_id, for_update=True)
    data = payload.model_dump(exclude_unset=True)

    if "amount" in data:
        amount = _check_amount(data.pop("amount"))
        # Outstanding amount as if this payment had never been made
        balance_without = to_decimal(fee.balance) + to_decimal(payment.amount)
        fee_settings = await catalog_service.get_fee_settings(db, school_id)
        _check_against_fee(fee, amount, balance_without, fee_settings)
        payment.amount = amount
    for field, value in data.items():
        if value is None and field not in ("payment_reference", "notes"):
            continue
        setattr(payment, field, value)

    await db.flush()
    await _resync(db, fee)
    await db.commit()
    await db.refresh(payment)
    await db.refresh(fee)
    logger.info("Payment %s updated by %s", payment.id, actor_id)
    return payment, fee


async def delete_payment(
    db: AsyncSession, school_id: UUID, payment_id: UUID, actor_id: Optional[UUID] = None
) -> StudentFee:
    """Reverse a payment; the fee's amount_paid, balance and status are recomputed from the remaining rows."""
    payment = await get_payment(db, school_id, payment_id)
    fee = await load_student_fee(db, school_id, payment.student_fee_id, for_update=True)
    await db.delete(payment)
    await db.flush()
    await _resync(db, fee)
    await db.commit()
    await db.refresh(fee)
    logger.info("Payment %s deleted from fee %s by %s", payment_id, fee.id, actor_id)
    return fee


async def list_payments(db: AsyncSession, school_id: UUID, student_fee_id: UUID) -> List[FeePayment]:
    await load_student_fee(db, school_id, student_fee_id)
    result = await db.execute(
        select(FeePayment)
        .where(FeePayment.student_fee_id == student_fee_id, FeePayment.school_id == school_id)
        .order_by(FeePayment.payment_date.desc(), FeePayment.created_at.desc())
    )
    return list(result.scalars().all())
