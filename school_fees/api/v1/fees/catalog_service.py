"""Fee catalog: settings, categories, structures, sibling tiers and per-student overrides."""

import logging
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from school_fees.core.enums import PeriodType
from school_fees.core.exceptions import ConflictError, NotFoundError, ValidationError
from school_fees.core.models import (
    FeeCategory,
    FeeSettings,
    FeeStructure,
    SiblingDiscountTier,
    Student,
    StudentFee,
    StudentFeeOverride,
)

from .schemas import (
    FeeCategoryCreate,
    FeeCategoryUpdate,
    FeeSettingsUpdate,
    FeeStructureCreate,
    FeeStructureUpdate,
    SiblingDiscountTierItem,
    StudentFeeOverrideCreate,
    StudentFeeOverrideUpdate,
)

logger = logging.getLogger(__name__)

SETTINGS_DEFAULTS = {
    "enable_late_fees": True,
    "late_fee_type": "fixed",
    "late_fee_value": Decimal("0"),
    "grace_days": 0,
    "enable_sibling_discounts": True,
    "discount_forfeiture_enabled": True,
    "admin_can_restore_discounts": True,
    "allow_partial_payments": True,
    "min_partial_payment_percent": Decimal("0"),
    "overpayment_tolerance": Decimal("0"),
}


# --- Settings ---
async def get_fee_settings(db: AsyncSession, school_id: UUID) -> FeeSettings:
    """Stored settings, or an unsaved instance carrying the defaults."""
    row = (
        await db.execute(select(FeeSettings).where(FeeSettings.school_id == school_id))
    ).scalar_one_or_none()
    if row is None:
        row = FeeSettings(school_id=school_id, **SETTINGS_DEFAULTS)
    return row


async def update_fee_settings(db: AsyncSession, school_id: UUID, payload: FeeSettingsUpdate) -> FeeSettings:
    row = (
        await db.execute(select(FeeSettings).where(FeeSettings.school_id == school_id))
    ).scalar_one_or_none()
    if row is None:
        row = FeeSettings(school_id=school_id, **SETTINGS_DEFAULTS)
        db.add(row)
    for field, value in payload.model_dump(exclude_unset=True).items():
        if value is None:
            continue
        setattr(row, field, value.value if hasattr(value, "value") else value)
    await db.commit()
    await db.refresh(row)
    logger.info("Fee settings updated for school %s", school_id)
    return row


# --- Fee Category ---
async def get_category(db: AsyncSession, school_id: UUID, category_id: UUID) -> FeeCategory:
    cat = (
        await db.execute(
            select(FeeCategory).where(FeeCategory.id == category_id, FeeCategory.school_id == school_id)
        )
    ).scalar_one_or_none()
    if not cat:
        raise NotFoundError("Fee category not found")
    return cat


async def list_categories(db: AsyncSession, school_id: UUID, active_only: bool = True) -> List[FeeCategory]:
    stmt = select(FeeCategory).where(FeeCategory.school_id == school_id)
    if active_only:
        stmt = stmt.where(FeeCategory.is_active.is_(True))
    stmt = stmt.order_by(FeeCategory.display_order, FeeCategory.name)
    return list((await db.execute(stmt)).scalars().all())


async def _code_taken(db: AsyncSession, school_id: UUID, code: str, exclude_id: Optional[UUID] = None) -> bool:
    stmt = select(FeeCategory.id).where(FeeCategory.school_id == school_id, FeeCategory.code == code)
    if exclude_id is not None:
        stmt = stmt.where(FeeCategory.id != exclude_id)
    return (await db.execute(stmt.limit(1))).scalar_one_or_none() is not None


async def create_category(db: AsyncSession, school_id: UUID, payload: FeeCategoryCreate) -> FeeCategory:
    code = payload.code.strip().upper()
    if await _code_taken(db, school_id, code):
        raise ConflictError(f"Fee category code '{code}' already exists")
    cat = FeeCategory(
        school_id=school_id,
        name=payload.name.strip(),
        code=code,
        description=payload.description,
        is_mandatory=payload.is_mandatory,
        is_discountable=payload.is_discountable,
        display_order=payload.display_order,
        is_active=True,
    )
    db.add(cat)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(f"Fee category code '{code}' already exists")
    await db.refresh(cat)
    return cat


async def update_category(
    db: AsyncSession, school_id: UUID, category_id: UUID, payload: FeeCategoryUpdate
) -> FeeCategory:
    cat = await get_category(db, school_id, category_id)
    data = payload.model_dump(exclude_unset=True)
    if data.get("code") is not None:
        data["code"] = data["code"].strip().upper()
        if await _code_taken(db, school_id, data["code"], exclude_id=cat.id):
            raise ConflictError(f"Fee category code '{data['code']}' already exists")
    if data.get("name") is not None:
        data["name"] = data["name"].strip()
    for field, value in data.items():
        if value is None and field != "description":
            continue
        setattr(cat, field, value)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Fee category code already exists")
    await db.refresh(cat)
    return cat


async def delete_category(db: AsyncSession, school_id: UUID, category_id: UUID) -> None:
    """Hard delete only while unreferenced; referenced categories must be deactivated instead."""
    cat = await get_category(db, school_id, category_id)
    used_by_fee = (
        await db.execute(select(StudentFee.id).where(StudentFee.fee_category_id == cat.id).limit(1))
    ).scalar_one_or_none()
    used_by_structure = (
        await db.execute(select(FeeStructure.id).where(FeeStructure.fee_category_id == cat.id).limit(1))
    ).scalar_one_or_none()
    if used_by_fee or used_by_structure:
        raise ConflictError(
            "Fee category is referenced by existing fees or structures; deactivate it (is_active=false) instead"
        )
    await db.delete(cat)
    await db.commit()


# --- Fee Structure ---
async def get_structure(db: AsyncSession, school_id: UUID, structure_id: UUID) -> FeeStructure:
    fs = (
        await db.execute(
            select(FeeStructure).where(FeeStructure.id == structure_id, FeeStructure.school_id == school_id)
        )
    ).scalar_one_or_none()
    if not fs:
        raise NotFoundError("Fee structure not found")
    return fs


async def list_structures(
    db: AsyncSession,
    school_id: UUID,
    academic_year: Optional[str] = None,
    grade_level_id: Optional[UUID] = None,
    active_only: bool = True,
) -> List[FeeStructure]:
    stmt = select(FeeStructure).where(FeeStructure.school_id == school_id)
    if academic_year:
        stmt = stmt.where(FeeStructure.academic_year == academic_year)
    if grade_level_id is not None:
        stmt = stmt.where(FeeStructure.grade_level_id == grade_level_id)
    if active_only:
        stmt = stmt.where(FeeStructure.is_active.is_(True))
    stmt = stmt.order_by(FeeStructure.academic_year, FeeStructure.grade_level_id, FeeStructure.created_at)
    return list((await db.execute(stmt)).scalars().all())


async def _active_duplicate(
    db: AsyncSession,
    school_id: UUID,
    academic_year: str,
    grade_level_id: Optional[UUID],
    fee_category_id: UUID,
    period_type: str,
    exclude_id: Optional[UUID] = None,
) -> bool:
    stmt = select(FeeStructure.id).where(
        FeeStructure.school_id == school_id,
        FeeStructure.academic_year == academic_year,
        FeeStructure.fee_category_id == fee_category_id,
        FeeStructure.period_type == period_type,
        FeeStructure.is_active.is_(True),
    )
    if grade_level_id is None:
        stmt = stmt.where(FeeStructure.grade_level_id.is_(None))
    else:
        stmt = stmt.where(FeeStructure.grade_level_id == grade_level_id)
    if exclude_id is not None:
        stmt = stmt.where(FeeStructure.id != exclude_id)
    return (await db.execute(stmt.limit(1))).scalar_one_or_none() is not None


def _check_due_rule(period_type: str, due_date, due_day) -> None:
    if period_type != PeriodType.MONTHLY.value and due_date is None:
        raise ValidationError("due_date is required for one-time and term structures", field="due_date")


async def create_structure(db: AsyncSession, school_id: UUID, payload: FeeStructureCreate) -> FeeStructure:
    cat = await get_category(db, school_id, payload.fee_category_id)
    if not cat.is_active:
        raise ValidationError("Fee category is inactive", field="fee_category_id")
    period_type = payload.period_type.value
    academic_year = payload.academic_year.strip()
    _check_due_rule(period_type, payload.due_date, payload.due_day)
    if await _active_duplicate(
        db, school_id, academic_year, payload.grade_level_id, cat.id, period_type
    ):
        raise ConflictError(
            "An active fee structure already exists for this academic year, grade, category and period"
        )
    fs = FeeStructure(
        school_id=school_id,
        academic_year=academic_year,
        grade_level_id=payload.grade_level_id,
        fee_category_id=cat.id,
        period_type=period_type,
        period_name=payload.period_name,
        amount=payload.amount,
        due_date=payload.due_date,
        due_day=payload.due_day,
        is_active=True,
    )
    db.add(fs)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(
            "An active fee structure already exists for this academic year, grade, category and period"
        )
    await db.refresh(fs)
    return fs


async def update_structure(
    db: AsyncSession, school_id: UUID, structure_id: UUID, payload: FeeStructureUpdate
) -> FeeStructure:
    """Amount changes apply to future generation only; existing student fees keep their snapshot."""
    fs = await get_structure(db, school_id, structure_id)
    data = payload.model_dump(exclude_unset=True)
    if data.get("is_active") is True and not fs.is_active:
        if await _active_duplicate(
            db, school_id, fs.academic_year, fs.grade_level_id, fs.fee_category_id, fs.period_type, exclude_id=fs.id
        ):
            raise ConflictError("Another active fee structure already covers this grade, category and period")
    for field, value in data.items():
        if value is None and field not in ("due_date", "due_day", "period_name"):
            continue
        setattr(fs, field, value)
    _check_due_rule(fs.period_type, fs.due_date, fs.due_day)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Another active fee structure already covers this grade, category and period")
    await db.refresh(fs)
    return fs


async def delete_structure(db: AsyncSession, school_id: UUID, structure_id: UUID) -> None:
    fs = await get_structure(db, school_id, structure_id)
    in_use = (
        await db.execute(select(StudentFee.id).where(StudentFee.fee_structure_id == fs.id).limit(1))
    ).scalar_one_or_none()
    if in_use:
        raise ConflictError("Fee structure has generated student fees; deactivate it (is_active=false) instead")
    await db.delete(fs)
    await db.commit()


# --- Sibling discount tiers ---
async def list_sibling_tiers(db: AsyncSession, school_id: UUID) -> List[SiblingDiscountTier]:
    result = await db.execute(
        select(SiblingDiscountTier)
        .where(SiblingDiscountTier.school_id == school_id)
        .order_by(SiblingDiscountTier.sibling_ordinal)
    )
    return list(result.scalars().all())


async def replace_sibling_tiers(
    db: AsyncSession, school_id: UUID, tiers: List[SiblingDiscountTierItem]
) -> List[SiblingDiscountTier]:
    """Replace the school's tier table. Non-increasing percentages are not required."""
    ordinals = [t.sibling_ordinal for t in tiers]
    if len(ordinals) != len(set(ordinals)):
        raise ValidationError("Sibling ordinals must be unique", field="tiers")
    await db.execute(delete(SiblingDiscountTier).where(SiblingDiscountTier.school_id == school_id))
    for t in tiers:
        db.add(
            SiblingDiscountTier(
                school_id=school_id,
                sibling_ordinal=t.sibling_ordinal,
                discount_percent=t.discount_percent,
            )
        )
    await db.commit()
    return await list_sibling_tiers(db, school_id)


# --- Student fee overrides ---
async def get_override(db: AsyncSession, school_id: UUID, override_id: UUID) -> StudentFeeOverride:
    ov = (
        await db.execute(
            select(StudentFeeOverride).where(
                StudentFeeOverride.id == override_id,
                StudentFeeOverride.school_id == school_id,
            )
        )
    ).scalar_one_or_none()
    if not ov:
        raise NotFoundError("Fee override not found")
    return ov


async def list_overrides(
    db: AsyncSession,
    school_id: UUID,
    student_id: Optional[UUID] = None,
    academic_year: Optional[str] = None,
    fee_category_id: Optional[UUID] = None,
    is_active: Optional[bool] = True,
) -> List[StudentFeeOverride]:
    stmt = select(StudentFeeOverride).where(StudentFeeOverride.school_id == school_id)
    if student_id is not None:
        stmt = stmt.where(StudentFeeOverride.student_id == student_id)
    if academic_year:
        stmt = stmt.where(StudentFeeOverride.academic_year == academic_year)
    if fee_category_id is not None:
        stmt = stmt.where(StudentFeeOverride.fee_category_id == fee_category_id)
    if is_active is not None:
        stmt = stmt.where(StudentFeeOverride.is_active.is_(is_active))
    stmt = stmt.order_by(StudentFeeOverride.created_at.desc())
    return list((await db.execute(stmt)).scalars().all())


async def create_override(
    db: AsyncSession,
    school_id: UUID,
    payload: StudentFeeOverrideCreate,
    created_by: Optional[UUID],
) -> StudentFeeOverride:
    student_ok = (
        await db.execute(
            select(func.count(Student.id)).where(Student.id == payload.student_id, Student.school_id == school_id)
        )
    ).scalar()
    if not student_ok:
        raise NotFoundError("Student not found")
    await get_category(db, school_id, payload.fee_category_id)
    academic_year = payload.academic_year.strip()
    taken = (
        await db.execute(
            select(StudentFeeOverride.id).where(
                StudentFeeOverride.student_id == payload.student_id,
                StudentFeeOverride.fee_category_id == payload.fee_category_id,
                StudentFeeOverride.academic_year == academic_year,
            )
        )
    ).scalar_one_or_none()
    if taken:
        raise ConflictError("An override already exists for this student, category, and academic year")
    ov = StudentFeeOverride(
        school_id=school_id,
        student_id=payload.student_id,
        fee_category_id=payload.fee_category_id,
        academic_year=academic_year,
        override_amount=payload.override_amount,
        reason=(payload.reason or "").strip() or None,
        is_active=True,
        created_by=created_by,
    )
    db.add(ov)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("An override already exists for this student, category, and academic year")
    await db.refresh(ov)
    return ov


async def update_override(
    db: AsyncSession, school_id: UUID, override_id: UUID, payload: StudentFeeOverrideUpdate
) -> StudentFeeOverride:
    ov = await get_override(db, school_id, override_id)
    for field, value in payload.model_dump(exclude_unset=True).items():
        if value is None and field != "reason":
            continue
        setattr(ov, field, value)
    await db.commit()
    await db.refresh(ov)
    return ov


async def delete_override(db: AsyncSession, school_id: UUID, override_id: UUID) -> None:
    ov = await get_override(db, school_id, override_id)
    await db.delete(ov)
    await db.commit()


async def override_amounts(
    db: AsyncSession, school_id: UUID, student_id: UUID, academic_year: str
) -> dict:
    """fee_category_id -> override amount for the student's active overrides."""
    result = await db.execute(
        select(StudentFeeOverride.fee_category_id, StudentFeeOverride.override_amount).where(
            StudentFeeOverride.school_id == school_id,
            StudentFeeOverride.student_id == student_id,
            StudentFeeOverride.academic_year == academic_year,
            StudentFeeOverride.is_active.is_(True),
        )
    )
    return {cat_id: amount for cat_id, amount in result.all()}
