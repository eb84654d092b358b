"""Late-fee sweep: mark overdue fees, charge the late fee and forfeit discounts once per fee."""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from school_fees.core.enums import LateFeeType, StudentFeeStatus
from school_fees.core.models import StudentFee
from school_fees.roster.directory import RosterDirectory

from . import catalog_service
from .fee_math import ZERO, derive_status, money, percent_of, recompute_totals, to_decimal
from .schemas import GlobalLateFeeResult, LateFeeResult, SchoolLateFeeResult

logger = logging.getLogger(__name__)

OPEN_STATUSES = (
    StudentFeeStatus.pending.value,
    StudentFeeStatus.partial.value,
    StudentFeeStatus.overdue.value,
)


async def apply_late_fees(db: AsyncSession, school_id: UUID, today: Optional[date] = None) -> LateFeeResult:
    """
    Single-school sweep. Safe to re-run any number of times a day.

    Every unpaid fee past its due date is marked overdue. Once the grace period has also passed,
    the fee is assessed exactly once: the late fee is charged (fixed or percentage of final_amount)
    and the discount is forfeited when the school's policy says so. late_fee_assessed_at records
    the assessment so a late fee an admin removed is never charged again.
    """
    today = today or date.today()
    fee_settings = await catalog_service.get_fee_settings(db, school_id)
    grace_cutoff = today - timedelta(days=int(fee_settings.grace_days or 0))
    now = datetime.now(timezone.utc)

    fees = (
        await db.execute(
            select(StudentFee)
            .where(
                StudentFee.school_id == school_id,
                StudentFee.status.in_(OPEN_STATUSES),
                StudentFee.balance > 0,
                StudentFee.due_date < today,
            )
            .with_for_update()
        )
    ).scalars().all()

    fees_updated = 0
    discounts_forfeited = 0
    for fee in fees:
        changed = False
        if fee.overdue_at is None:
            fee.overdue_at = now
            changed = True

        assess = (
            fee.due_date < grace_cutoff
            and fee.late_fee_assessed_at is None
            and to_decimal(fee.late_fee_amount) == ZERO
        )
        if assess:
            if fee_settings.enable_late_fees:
                if fee_settings.late_fee_type == LateFeeType.PERCENTAGE.value:
                    late_fee = percent_of(fee.final_amount, fee_settings.late_fee_value)
                else:
                    late_fee = money(fee_settings.late_fee_value)
                fee.late_fee_amount = late_fee
            if fee_settings.discount_forfeiture_enabled and not fee.discount_forfeited:
                fee.discount_forfeited = True
                fee.discount_amount = ZERO
                discounts_forfeited += 1
            fee.late_fee_assessed_at = now
            changed = True

        if changed:
            recompute_totals(fee)
            fee.status = derive_status(fee)
            fees_updated += 1

    await db.commit()
    logger.info(
        "Late-fee sweep for school %s on %s: %d fees updated, %d discounts forfeited",
        school_id,
        today.isoformat(),
        fees_updated,
        discounts_forfeited,
    )
    return LateFeeResult(fees_updated=fees_updated, discounts_forfeited=discounts_forfeited)


async def apply_late_fees_global(
    db: AsyncSession, roster: RosterDirectory, today: Optional[date] = None
) -> GlobalLateFeeResult:
    """Sweep every active school. A failing school is rolled back and reported; the others proceed."""
    schools = await roster.list_active_schools()
    logger.info("Global late-fee sweep started for %d schools", len(schools))

    results: List[SchoolLateFeeResult] = []
    total_updated = 0
    total_forfeited = 0
    for school in schools:
        try:
            res = await apply_late_fees(db, school.id, today=today)
        except Exception as e:
            await db.rollback()
            logger.exception("Late-fee sweep failed for school %s", school.id)
            results.append(
                SchoolLateFeeResult(school_id=school.id, school_name=school.name, success=False, error=str(e))
            )
            continue
        total_updated += res.fees_updated
        total_forfeited += res.discounts_forfeited
        results.append(
            SchoolLateFeeResult(
                school_id=school.id,
                school_name=school.name,
                success=True,
                fees_updated=res.fees_updated,
                discounts_forfeited=res.discounts_forfeited,
            )
        )

    return GlobalLateFeeResult(
        schools_processed=len(schools),
        total_fees_updated=total_updated,
        total_discounts_forfeited=total_forfeited,
        schools=results,
    )
