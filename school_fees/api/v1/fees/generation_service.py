"""Fee generation: enrollment billing, monthly batches (one school / all schools) and ad-hoc fees."""

import calendar
import logging
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from school_fees.core.config import settings
from school_fees.core.enums import PeriodType, StudentFeeStatus
from school_fees.core.exceptions import NotFoundError, ValidationError
from school_fees.core.models import FeeCategory, FeeStructure, StudentFee
from school_fees.roster.directory import RosterDirectory, RosterStudent

from . import catalog_service, sibling_resolver
from .fee_math import ZERO, money, percent_of, recompute_totals
from .schemas import (
    AllSchoolsGenerationResult,
    CustomStudentFeeCreate,
    GenerationResult,
    SchoolGenerationResult,
)

logger = logging.getLogger(__name__)


def next_month(today: date) -> Tuple[int, int]:
    if today.month == 12:
        return today.year + 1, 1
    return today.year, today.month + 1


def format_fee_month(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"


def parse_fee_month(fee_month: str) -> Tuple[int, int]:
    try:
        year_s, month_s = fee_month.split("-")
        year, month = int(year_s), int(month_s)
    except ValueError:
        raise ValidationError("fee_month must be YYYY-MM", field="fee_month")
    if not 1 <= month <= 12:
        raise ValidationError("fee_month must be YYYY-MM", field="fee_month")
    return year, month


def derive_academic_year(today: date) -> str:
    start = settings.academic_year_start_month
    if today.month >= start:
        return f"{today.year}-{today.year + 1}"
    return f"{today.year - 1}-{today.year}"


async def resolve_academic_year(
    roster: RosterDirectory, school_id: UUID, academic_year: Optional[str], today: date
) -> str:
    if academic_year:
        return academic_year.strip()
    current = await roster.current_academic_year(school_id)
    return current or derive_academic_year(today)


def _terms(fs: FeeStructure, category: FeeCategory) -> Dict:
    """Plain copy of the structure fields generation needs; survives session rollback."""
    return {
        "id": fs.id,
        "fee_category_id": fs.fee_category_id,
        "grade_level_id": fs.grade_level_id,
        "period_type": fs.period_type,
        "period_name": fs.period_name,
        "amount": money(fs.amount),
        "due_date": fs.due_date,
        "due_day": fs.due_day,
        "is_discountable": bool(category.is_discountable),
    }


def period_key_for(terms: Dict, fee_month: Optional[str]) -> str:
    """
    Billing-period identity. Non-monthly structures bill once per structure, so the key is the
    period type; period_name is a display label and may be edited after billing.
    """
    if terms["period_type"] == PeriodType.MONTHLY.value:
        return fee_month
    return terms["period_type"]


def due_date_for(terms: Dict, fee_month: Optional[str]) -> date:
    if terms["period_type"] == PeriodType.MONTHLY.value:
        year, month = parse_fee_month(fee_month)
        day = terms["due_day"] or settings.default_due_day
        return date(year, month, min(day, calendar.monthrange(year, month)[1]))
    if terms["due_date"] is None:
        raise ValidationError("Fee structure has no due date", field="due_date")
    return terms["due_date"]


async def applicable_structures(
    db: AsyncSession,
    school_id: UUID,
    academic_year: str,
    grade_level_id: Optional[UUID],
    category_ids: Optional[List[UUID]] = None,
    period_type: Optional[str] = None,
) -> List[Dict]:
    """
    Active structures billed to a student of the given grade: the grade's own structures plus
    school-wide ones. A grade structure shadows a school-wide one for the same category and period.
    Structures of inactive categories are never billed.
    """
    stmt = (
        select(FeeStructure, FeeCategory)
        .join(FeeCategory, FeeCategory.id == FeeStructure.fee_category_id)
        .where(
            FeeStructure.school_id == school_id,
            FeeStructure.academic_year == academic_year,
            FeeStructure.is_active.is_(True),
            FeeCategory.is_active.is_(True),
        )
        .order_by(FeeCategory.display_order, FeeCategory.name)
    )
    if grade_level_id is not None:
        stmt = stmt.where(
            (FeeStructure.grade_level_id == grade_level_id) | FeeStructure.grade_level_id.is_(None)
        )
    else:
        stmt = stmt.where(FeeStructure.grade_level_id.is_(None))
    if category_ids:
        stmt = stmt.where(FeeStructure.fee_category_id.in_(category_ids))
    if period_type:
        stmt = stmt.where(FeeStructure.period_type == period_type)

    rows = (await db.execute(stmt)).all()
    picked: Dict[Tuple[UUID, str], Dict] = {}
    for fs, cat in rows:
        key = (fs.fee_category_id, fs.period_type)
        current = picked.get(key)
        if current is None or (current["grade_level_id"] is None and fs.grade_level_id is not None):
            picked[key] = _terms(fs, cat)
    return list(picked.values())


async def _find_existing(
    db: AsyncSession, student_id: UUID, fee_structure_id: UUID, period_key: str
) -> Optional[StudentFee]:
    return (
        await db.execute(
            select(StudentFee).where(
                StudentFee.student_id == student_id,
                StudentFee.fee_structure_id == fee_structure_id,
                StudentFee.period_key == period_key,
            )
        )
    ).scalar_one_or_none()


async def generate(
    db: AsyncSession,
    school_id: UUID,
    student: RosterStudent,
    terms: Dict,
    academic_year: str,
    fee_month: Optional[str],
    discount_percent: Decimal,
    override_amount: Optional[Decimal] = None,
    due_date: Optional[date] = None,
) -> Tuple[StudentFee, bool]:
    """
    Idempotent core: one StudentFee per (student, structure, period). Returns (fee, created);
    an existing row is returned unchanged.
    """
    if terms["period_type"] == PeriodType.MONTHLY.value and not fee_month:
        raise ValidationError("fee_month is required for monthly structures", field="fee_month")
    period_key = period_key_for(terms, fee_month)

    existing = await _find_existing(db, student.id, terms["id"], period_key)
    if existing:
        return existing, False

    base = money(override_amount) if override_amount is not None else terms["amount"]
    discount = percent_of(base, discount_percent) if terms["is_discountable"] else ZERO
    fee = StudentFee(
        school_id=school_id,
        student_id=student.id,
        fee_structure_id=terms["id"],
        fee_category_id=terms["fee_category_id"],
        academic_year=academic_year,
        fee_month=fee_month if terms["period_type"] == PeriodType.MONTHLY.value else None,
        period_key=period_key,
        base_amount=base,
        discount_amount=discount,
        discount_forfeited=False,
        late_fee_amount=ZERO,
        amount_paid=ZERO,
        due_date=due_date or due_date_for(terms, fee_month),
        status=StudentFeeStatus.pending.value,
    )
    recompute_totals(fee)
    db.add(fee)
    try:
        await db.commit()
    except IntegrityError:
        # A concurrent run inserted the same obligation first
        await db.rollback()
        existing = await _find_existing(db, student.id, terms["id"], period_key)
        if existing is None:
            raise
        return existing, False
    return fee, True


async def _discount_percent(
    db: AsyncSession, roster: RosterDirectory, school_id: UUID, student_id: UUID, academic_year: str
) -> Decimal:
    fee_settings = await catalog_service.get_fee_settings(db, school_id)
    if not fee_settings.enable_sibling_discounts:
        return ZERO
    return await sibling_resolver.resolve(db, roster, school_id, student_id, academic_year)


async def generate_fee_for_new_student(
    db: AsyncSession,
    roster: RosterDirectory,
    school_id: UUID,
    student_id: UUID,
    grade_level_id: Optional[UUID] = None,
    category_ids: Optional[List[UUID]] = None,
    academic_year: Optional[str] = None,
    fee_month: Optional[str] = None,
    due_date: Optional[date] = None,
    today: Optional[date] = None,
) -> Tuple[List[StudentFee], List[StudentFee]]:
    """Bill a newly enrolled student every applicable structure. Returns (created, existing)."""
    today = today or date.today()
    student = await roster.get_student(school_id, student_id)
    if student is None:
        raise NotFoundError("Student not found")
    grade = grade_level_id or student.grade_level_id
    academic_year = await resolve_academic_year(roster, school_id, academic_year, today)
    fee_month = fee_month or format_fee_month(today.year, today.month)

    structures = await applicable_structures(db, school_id, academic_year, grade, category_ids)
    if not structures:
        raise ValidationError(
            "No active fee structure found for this grade level; configure fee structures first",
            field="grade_level_id",
        )

    percent = await _discount_percent(db, roster, school_id, student.id, academic_year)
    overrides = await catalog_service.override_amounts(db, school_id, student.id, academic_year)

    created_ids: List[UUID] = []
    existing_ids: List[UUID] = []
    for terms in structures:
        fee, created = await generate(
            db,
            school_id,
            student,
            terms,
            academic_year,
            fee_month,
            percent,
            override_amount=overrides.get(terms["fee_category_id"]),
            due_date=due_date,
        )
        (created_ids if created else existing_ids).append(fee.id)

    logger.info(
        "Enrollment fees for student %s: %d created, %d existing", student.id, len(created_ids), len(existing_ids)
    )
    return await _load_fees(db, created_ids), await _load_fees(db, existing_ids)


async def _load_fees(db: AsyncSession, ids: List[UUID]) -> List[StudentFee]:
    if not ids:
        return []
    result = await db.execute(
        select(StudentFee).where(StudentFee.id.in_(ids)).execution_options(populate_existing=True)
    )
    by_id = {f.id: f for f in result.scalars().all()}
    return [by_id[i] for i in ids if i in by_id]


async def generate_for_structure(
    db: AsyncSession,
    roster: RosterDirectory,
    school_id: UUID,
    fee_structure_id: UUID,
    student_ids: Optional[List[UUID]] = None,
    fee_month: Optional[str] = None,
    today: Optional[date] = None,
) -> GenerationResult:
    """Bill one structure to the listed students, or to every active student it applies to."""
    today = today or date.today()
    fs = await catalog_service.get_structure(db, school_id, fee_structure_id)
    if not fs.is_active:
        raise ValidationError("Fee structure is inactive", field="fee_structure_id")
    category = await catalog_service.get_category(db, school_id, fs.fee_category_id)
    if not category.is_active:
        raise ValidationError("Fee category is inactive", field="fee_structure_id")
    terms = _terms(fs, category)
    academic_year = fs.academic_year
    if terms["period_type"] == PeriodType.MONTHLY.value and not fee_month:
        fee_month = format_fee_month(*next_month(today))

    if student_ids:
        students = []
        for sid in student_ids:
            s = await roster.get_student(school_id, sid)
            if s is None:
                raise NotFoundError(f"Student {sid} not found")
            students.append(s)
    else:
        students = await roster.list_active_students(school_id, terms["grade_level_id"])

    fees_created = 0
    total_amount = ZERO
    processed = 0
    for student in students:
        if terms["grade_level_id"] is not None and student.grade_level_id != terms["grade_level_id"]:
            continue
        processed += 1
        percent = await _discount_percent(db, roster, school_id, student.id, academic_year)
        overrides = await catalog_service.override_amounts(db, school_id, student.id, academic_year)
        fee, created = await generate(
            db,
            school_id,
            student,
            terms,
            academic_year,
            fee_month,
            percent,
            override_amount=overrides.get(terms["fee_category_id"]),
        )
        if created:
            fees_created += 1
            total_amount += fee.final_amount

    return GenerationResult(
        fees_created=fees_created, students_processed=processed, total_amount=money(total_amount)
    )


async def generate_monthly_fees(
    db: AsyncSession,
    roster: RosterDirectory,
    school_id: UUID,
    month: Optional[int] = None,
    year: Optional[int] = None,
    academic_year: Optional[str] = None,
    grade_level_id: Optional[UUID] = None,
    section_id: Optional[UUID] = None,
    category_ids: Optional[List[UUID]] = None,
    today: Optional[date] = None,
) -> GenerationResult:
    """
    Bill every active student in scope for their current grade's monthly structures.
    Defaults to next month. Re-running for the same month creates nothing new.
    """
    today = today or date.today()
    if month is None:
        default_year, month = next_month(today)
        year = year or default_year
    year = year or today.year
    fee_month = format_fee_month(year, month)
    academic_year = await resolve_academic_year(roster, school_id, academic_year, today)

    students = await roster.list_active_students(school_id, grade_level_id, section_id)
    fee_settings = await catalog_service.get_fee_settings(db, school_id)
    discounts_enabled = bool(fee_settings.enable_sibling_discounts)

    structures_by_grade: Dict[Optional[UUID], List[Dict]] = {}
    fees_created = 0
    processed = 0
    total_amount = ZERO
    for student in students:
        grade = student.grade_level_id
        if grade not in structures_by_grade:
            structures_by_grade[grade] = await applicable_structures(
                db, school_id, academic_year, grade, category_ids, PeriodType.MONTHLY.value
            )
        structures = structures_by_grade[grade]
        if not structures:
            continue
        processed += 1

        percent = ZERO
        if discounts_enabled:
            percent = await sibling_resolver.resolve(db, roster, school_id, student.id, academic_year)
        overrides = await catalog_service.override_amounts(db, school_id, student.id, academic_year)
        for terms in structures:
            fee, created = await generate(
                db,
                school_id,
                student,
                terms,
                academic_year,
                fee_month,
                percent,
                override_amount=overrides.get(terms["fee_category_id"]),
            )
            if created:
                fees_created += 1
                total_amount += fee.final_amount

    logger.info(
        "Monthly generation %s for school %s: %d fees created, %d students processed",
        fee_month,
        school_id,
        fees_created,
        processed,
    )
    return GenerationResult(
        fees_created=fees_created, students_processed=processed, total_amount=money(total_amount)
    )


async def generate_monthly_fees_all_schools(
    db: AsyncSession,
    roster: RosterDirectory,
    month: Optional[int] = None,
    year: Optional[int] = None,
    today: Optional[date] = None,
) -> AllSchoolsGenerationResult:
    """Run the monthly batch for every active school; one school's failure never stops the rest."""
    schools = await roster.list_active_schools()
    logger.info("Monthly generation started for %d schools", len(schools))

    results: List[SchoolGenerationResult] = []
    total_created = 0
    grand_total = ZERO
    for school in schools:
        try:
            res = await generate_monthly_fees(db, roster, school.id, month=month, year=year, today=today)
        except Exception as e:
            await db.rollback()
            logger.exception("Monthly generation failed for school %s", school.id)
            results.append(
                SchoolGenerationResult(school_id=school.id, school_name=school.name, success=False, error=str(e))
            )
            continue
        total_created += res.fees_created
        grand_total += res.total_amount
        results.append(
            SchoolGenerationResult(
                school_id=school.id,
                school_name=school.name,
                success=True,
                fees_created=res.fees_created,
                students_processed=res.students_processed,
                total_amount=res.total_amount,
            )
        )

    return AllSchoolsGenerationResult(
        total_fees_created=total_created, grand_total=money(grand_total), schools=results
    )


async def create_custom_fee(
    db: AsyncSession,
    roster: RosterDirectory,
    school_id: UUID,
    payload: CustomStudentFeeCreate,
) -> StudentFee:
    """Ad-hoc obligation outside any structure. No sibling discount applies."""
    student = await roster.get_student(school_id, payload.student_id)
    if student is None:
        raise NotFoundError("Student not found")
    category = await catalog_service.get_category(db, school_id, payload.fee_category_id)
    amount = money(payload.amount)
    if amount < ZERO:
        raise ValidationError("Fee amount cannot be negative", field="amount")

    fee = StudentFee(
        school_id=school_id,
        student_id=student.id,
        fee_structure_id=None,
        fee_category_id=category.id,
        academic_year=payload.academic_year.strip(),
        fee_month=None,
        period_key="custom",
        custom_name=payload.custom_name.strip(),
        base_amount=amount,
        discount_amount=ZERO,
        discount_forfeited=False,
        late_fee_amount=ZERO,
        amount_paid=ZERO,
        due_date=payload.due_date,
        status=StudentFeeStatus.pending.value,
        notes=(payload.reason or "").strip() or None,
    )
    recompute_totals(fee)
    db.add(fee)
    await db.commit()
    await db.refresh(fee)
    logger.info("Custom fee %s created for student %s", fee.id, student.id)
    return fee
