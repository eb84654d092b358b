"""Sibling discount: the student's ordinal among enrolled siblings mapped to the school's tier table."""

from datetime import date, timedelta
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from school_fees.core.config import settings
from school_fees.core.models import SiblingDiscountTier
from school_fees.roster.directory import RosterDirectory, RosterStudent

from .fee_math import ZERO


def academic_year_end(academic_year: str) -> Optional[date]:
    """Last day of a "YYYY-YYYY" academic year, or None when the label has another shape."""
    try:
        end_year = int(academic_year.strip().split("-")[1])
    except (IndexError, ValueError):
        return None
    return date(end_year, settings.academic_year_start_month, 1) - timedelta(days=1)


def sibling_ordinal(family: List[RosterStudent], student_id: UUID) -> int:
    """1-based rank by enrollment date (id breaks ties). 0 when the student is not in the family."""
    ranked = sorted(family, key=lambda s: (s.enrolled_on, str(s.id)))
    for idx, member in enumerate(ranked, start=1):
        if member.id == student_id:
            return idx
    return 0


def tier_percent(tiers: List[SiblingDiscountTier], ordinal: int) -> Decimal:
    """Highest configured tier whose ordinal is <= the student's; the last tier covers all later siblings."""
    best = None
    for tier in tiers:
        if tier.sibling_ordinal <= ordinal and (best is None or tier.sibling_ordinal > best.sibling_ordinal):
            best = tier
    return Decimal(best.discount_percent) if best is not None else ZERO


async def resolve(
    db: AsyncSession,
    roster: RosterDirectory,
    school_id: UUID,
    student_id: UUID,
    academic_year: str,
) -> Decimal:
    """
    Discount percent for the student in the given academic year. Read-only.

    Siblings are active students of the same school sharing the roster family key and
    enrolled by the end of the academic year; later enrollments do not count yet.
    Returns 0 when the school has no tiers or the student has no siblings.
    """
    tiers = list(
        (
            await db.execute(
                select(SiblingDiscountTier).where(SiblingDiscountTier.school_id == school_id)
            )
        ).scalars().all()
    )
    if not tiers:
        return ZERO

    student = await roster.get_student(school_id, student_id)
    if student is None or not student.family_key:
        return ZERO

    family = await roster.list_family(school_id, student.family_key)
    year_end = academic_year_end(academic_year)
    if year_end is not None:
        family = [s for s in family if s.enrolled_on <= year_end]
    if len(family) < 2:
        return ZERO

    ordinal = sibling_ordinal(family, student_id)
    if ordinal == 0:
        return ZERO
    return tier_percent(tiers, ordinal)
