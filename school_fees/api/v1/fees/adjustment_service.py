"""Admin overrides on a student fee, each recorded as one append-only FeeAdjustment."""

import logging
from decimal import Decimal
from typing import List
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from school_fees.core.enums import AdjustmentType, StudentFeeStatus
from school_fees.core.exceptions import ConflictError, ValidationError
from school_fees.core.models import FeeAdjustment, StudentFee
from school_fees.roster.directory import RosterDirectory

from . import catalog_service, sibling_resolver
from .fee_math import ZERO, derive_status, load_student_fee, money, percent_of, recompute_totals, snapshot, to_decimal
from .schemas import FeeAdjustmentRequest

logger = logging.getLogger(__name__)

TOTAL_FIELDS = ("final_amount", "balance", "status")

TOUCHED_FIELDS = {
    AdjustmentType.REMOVE_LATE_FEE: ("late_fee_amount",),
    AdjustmentType.REDUCE_LATE_FEE: ("late_fee_amount",),
    AdjustmentType.CUSTOM_DISCOUNT: ("discount_amount",),
    AdjustmentType.WAIVE: (),
    AdjustmentType.RESTORE_DISCOUNT: ("discount_forfeited", "discount_amount"),
}


async def _restored_discount(
    db: AsyncSession, roster: RosterDirectory, fee: StudentFee
) -> Decimal:
    """Discount the fee would carry had it never been forfeited."""
    if fee.fee_structure_id is None:
        return ZERO
    category = await catalog_service.get_category(db, fee.school_id, fee.fee_category_id)
    fee_settings = await catalog_service.get_fee_settings(db, fee.school_id)
    if not category.is_discountable or not fee_settings.enable_sibling_discounts:
        return ZERO
    percent = await sibling_resolver.resolve(db, roster, fee.school_id, fee.student_id, fee.academic_year)
    return percent_of(fee.base_amount, percent)


async def adjust_fee(
    db: AsyncSession,
    roster: RosterDirectory,
    school_id: UUID,
    fee_id: UUID,
    admin_id: UUID,
    payload: FeeAdjustmentRequest,
) -> StudentFee:
    """
    Apply one override and append its audit row in the same transaction.
    The reason is checked before anything is read or changed.
    """
    reason = (payload.reason or "").strip()
    if not reason:
        raise ValidationError("Reason is required for fee adjustments", field="reason")

    adj_type = payload.type
    fee = await load_student_fee(db, school_id, fee_id, for_update=True)
    if fee.status == StudentFeeStatus.waived.value:
        raise ConflictError("Fee is already waived")

    fields = TOUCHED_FIELDS[adj_type] + TOTAL_FIELDS
    before = snapshot(fee, fields)

    if adj_type == AdjustmentType.REMOVE_LATE_FEE:
        fee.late_fee_amount = ZERO

    elif adj_type == AdjustmentType.REDUCE_LATE_FEE:
        if payload.new_late_fee is None:
            raise ValidationError("new_late_fee is required", field="new_late_fee")
        new_late_fee = money(payload.new_late_fee)
        if new_late_fee < ZERO or new_late_fee >= to_decimal(fee.late_fee_amount):
            raise ValidationError(
                "new_late_fee must be at least zero and below the current late fee", field="new_late_fee"
            )
        fee.late_fee_amount = new_late_fee

    elif adj_type == AdjustmentType.CUSTOM_DISCOUNT:
        if payload.custom_discount is None:
            raise ValidationError("custom_discount is required", field="custom_discount")
        discount = money(payload.custom_discount)
        if discount < ZERO or discount > to_decimal(fee.base_amount):
            raise ValidationError("custom_discount must be between 0 and the base amount", field="custom_discount")
        fee.discount_amount = discount

    elif adj_type == AdjustmentType.WAIVE:
        fee.status = StudentFeeStatus.waived.value

    elif adj_type == AdjustmentType.RESTORE_DISCOUNT:
        fee_settings = await catalog_service.get_fee_settings(db, school_id)
        if not fee_settings.admin_can_restore_discounts:
            raise ConflictError("Restoring forfeited discounts is disabled for this school")
        if not fee.discount_forfeited:
            raise ConflictError("Discount has not been forfeited")
        fee.discount_amount = await _restored_discount(db, roster, fee)
        fee.discount_forfeited = False

    recompute_totals(fee)
    fee.status = derive_status(fee)
    if to_decimal(fee.balance) < ZERO:
        await db.rollback()
        raise ValidationError("Adjustment would make the balance negative", field="type")

    db.add(
        FeeAdjustment(
            school_id=school_id,
            student_fee_id=fee.id,
            adjustment_type=adj_type.value,
            admin_id=admin_id,
            reason=reason,
            previous_value=before,
            new_value=snapshot(fee, fields),
        )
    )
    await db.commit()
    await db.refresh(fee)
    logger.info("Fee %s adjusted (%s) by %s", fee.id, adj_type.value, admin_id)
    return fee


async def get_fee_adjustments(db: AsyncSession, school_id: UUID, fee_id: UUID) -> List[FeeAdjustment]:
    """Full audit history, oldest first. Display only; current state lives on the fee."""
    await load_student_fee(db, school_id, fee_id)
    result = await db.execute(
        select(FeeAdjustment)
        .where(FeeAdjustment.student_fee_id == fee_id, FeeAdjustment.school_id == school_id)
        .order_by(FeeAdjustment.created_at, FeeAdjustment.id)
    )
    return list(result.scalars().all())
