"""Read-side reporting over student fees: lists, history, by-grade browse and export, dashboard."""

import io
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID

from openpyxl import Workbook
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from school_fees.core.enums import StudentFeeStatus
from school_fees.core.exceptions import NotFoundError
from school_fees.core.models import FeeCategory, GradeLevel, Student, StudentFee
from school_fees.core.schemas import Page

from .fee_math import ZERO, money, to_decimal
from .schemas import FeeDashboard, FeeTotals, StudentFeeHistory, StudentFeeResponse, StudentFeeWithDetails

EXPORT_HEADERS = [
    "Student number",
    "Student name",
    "Grade",
    "Fee",
    "Category code",
    "Academic year",
    "Month",
    "Due date",
    "Base amount",
    "Discount",
    "Late fee",
    "Final amount",
    "Amount paid",
    "Balance",
    "Status",
]


def _detail_stmt(school_id: UUID):
    return (
        select(StudentFee, Student, GradeLevel.name, FeeCategory)
        .join(Student, Student.id == StudentFee.student_id)
        .outerjoin(GradeLevel, GradeLevel.id == Student.grade_level_id)
        .join(FeeCategory, FeeCategory.id == StudentFee.fee_category_id)
        .where(StudentFee.school_id == school_id)
    )


def _to_details(fee: StudentFee, student: Student, grade_name: Optional[str], category: FeeCategory) -> StudentFeeWithDetails:
    base = StudentFeeResponse.model_validate(fee).model_dump()
    return StudentFeeWithDetails(
        **base,
        student_name=f"{student.first_name} {student.last_name}".strip(),
        student_number=student.student_number,
        grade_level_id=student.grade_level_id,
        grade_name=grade_name,
        section_id=student.section_id,
        fee_category_name=category.name,
        fee_category_code=category.code,
    )


async def _paged(db: AsyncSession, stmt, page: int, limit: int) -> Page[StudentFeeWithDetails]:
    total = (await db.execute(select(func.count()).select_from(stmt.subquery()))).scalar() or 0
    stmt = stmt.order_by(StudentFee.due_date.desc(), StudentFee.created_at.desc())
    rows = (await db.execute(stmt.offset((page - 1) * limit).limit(limit))).all()
    return Page[StudentFeeWithDetails](
        items=[_to_details(*row) for row in rows], total=total, page=page, limit=limit
    )


async def list_student_fees(
    db: AsyncSession,
    school_id: UUID,
    student_id: Optional[UUID] = None,
    academic_year: Optional[str] = None,
    status_filter: Optional[str] = None,
    fee_month: Optional[str] = None,
    page: int = 1,
    limit: int = 50,
) -> Page[StudentFeeWithDetails]:
    stmt = _detail_stmt(school_id)
    if student_id is not None:
        stmt = stmt.where(StudentFee.student_id == student_id)
    if academic_year:
        stmt = stmt.where(StudentFee.academic_year == academic_year)
    if status_filter:
        stmt = stmt.where(StudentFee.status == status_filter)
    if fee_month:
        stmt = stmt.where(StudentFee.fee_month == fee_month)
    return await _paged(db, stmt, page, limit)


async def get_fee(db: AsyncSession, school_id: UUID, fee_id: UUID) -> StudentFeeWithDetails:
    row = (await db.execute(_detail_stmt(school_id).where(StudentFee.id == fee_id))).first()
    if not row:
        raise NotFoundError("Student fee not found")
    return _to_details(*row)


def _totals(fees: List[StudentFeeWithDetails]) -> FeeTotals:
    billed = paid = due = ZERO
    for f in fees:
        billed += to_decimal(f.final_amount)
        paid += to_decimal(f.amount_paid)
        due += to_decimal(f.balance)
    return FeeTotals(total_billed=money(billed), total_paid=money(paid), total_due=money(due))


async def get_student_fee_history(
    db: AsyncSession,
    school_id: UUID,
    student_id: UUID,
    academic_year: Optional[str] = None,
    status_filter: Optional[str] = None,
) -> StudentFeeHistory:
    """Every fee of one student with billed/paid/due totals over the same rows."""
    exists = (
        await db.execute(
            select(Student.id).where(Student.id == student_id, Student.school_id == school_id)
        )
    ).scalar_one_or_none()
    if not exists:
        raise NotFoundError("Student not found")
    stmt = _detail_stmt(school_id).where(StudentFee.student_id == student_id)
    if academic_year:
        stmt = stmt.where(StudentFee.academic_year == academic_year)
    if status_filter:
        stmt = stmt.where(StudentFee.status == status_filter)
    stmt = stmt.order_by(StudentFee.due_date.desc(), StudentFee.created_at.desc())
    items = [_to_details(*row) for row in (await db.execute(stmt)).all()]
    return StudentFeeHistory(items=items, total=len(items), summary=_totals(items))


def _by_grade_stmt(
    school_id: UUID,
    grade_level_id: Optional[UUID],
    section_id: Optional[UUID],
    fee_month: Optional[str],
    status_filter: Optional[str],
    academic_year: Optional[str],
):
    stmt = _detail_stmt(school_id)
    if grade_level_id is not None:
        stmt = stmt.where(Student.grade_level_id == grade_level_id)
    if section_id is not None:
        stmt = stmt.where(Student.section_id == section_id)
    if fee_month:
        stmt = stmt.where(StudentFee.fee_month == fee_month)
    if status_filter:
        stmt = stmt.where(StudentFee.status == status_filter)
    if academic_year:
        stmt = stmt.where(StudentFee.academic_year == academic_year)
    return stmt


async def get_fees_by_grade(
    db: AsyncSession,
    school_id: UUID,
    grade_level_id: Optional[UUID] = None,
    section_id: Optional[UUID] = None,
    fee_month: Optional[str] = None,
    status_filter: Optional[str] = None,
    academic_year: Optional[str] = None,
    page: int = 1,
    limit: int = 50,
) -> Page[StudentFeeWithDetails]:
    stmt = _by_grade_stmt(school_id, grade_level_id, section_id, fee_month, status_filter, academic_year)
    return await _paged(db, stmt, page, limit)


async def export_fees_by_grade(
    db: AsyncSession,
    school_id: UUID,
    grade_level_id: Optional[UUID] = None,
    section_id: Optional[UUID] = None,
    fee_month: Optional[str] = None,
    status_filter: Optional[str] = None,
    academic_year: Optional[str] = None,
) -> bytes:
    """Same rows as get_fees_by_grade, unpaged, as an .xlsx workbook."""
    stmt = _by_grade_stmt(school_id, grade_level_id, section_id, fee_month, status_filter, academic_year)
    stmt = stmt.order_by(GradeLevel.display_order, Student.first_name, Student.last_name, StudentFee.due_date)
    rows = (await db.execute(stmt)).all()

    wb = Workbook()
    ws = wb.active
    ws.title = "Fees"
    ws.append(EXPORT_HEADERS)
    for row in rows:
        d = _to_details(*row)
        ws.append(
            [
                d.student_number or "",
                d.student_name or "",
                d.grade_name or "",
                d.custom_name or d.fee_category_name or "",
                d.fee_category_code or "",
                d.academic_year,
                d.fee_month or "",
                d.due_date.isoformat(),
                float(d.base_amount),
                float(d.discount_amount),
                float(d.late_fee_amount),
                float(d.final_amount),
                float(d.amount_paid),
                float(d.balance),
                d.status.value,
            ]
        )
    bio = io.BytesIO()
    wb.save(bio)
    return bio.getvalue()


async def get_dashboard(db: AsyncSession, school_id: UUID, academic_year: Optional[str] = None) -> FeeDashboard:
    stmt = (
        select(
            StudentFee.status,
            func.count(StudentFee.id),
            func.coalesce(func.sum(StudentFee.final_amount), 0),
            func.coalesce(func.sum(StudentFee.amount_paid), 0),
            func.coalesce(func.sum(StudentFee.balance), 0),
        )
        .where(StudentFee.school_id == school_id)
        .group_by(StudentFee.status)
    )
    if academic_year:
        stmt = stmt.where(StudentFee.academic_year == academic_year)

    counts: Dict[str, int] = {s.value: 0 for s in StudentFeeStatus}
    total_fees = collected = pending = overdue = waived = Decimal("0")
    for status_value, count, final_sum, paid_sum, balance_sum in (await db.execute(stmt)).all():
        counts[status_value] = int(count)
        total_fees += to_decimal(final_sum)
        collected += to_decimal(paid_sum)
        if status_value in (StudentFeeStatus.pending.value, StudentFeeStatus.partial.value):
            pending += to_decimal(balance_sum)
        elif status_value == StudentFeeStatus.overdue.value:
            overdue += to_decimal(balance_sum)
        elif status_value == StudentFeeStatus.waived.value:
            # Forgiven amount: what was still owed when the fee was waived
            waived += to_decimal(final_sum) - to_decimal(paid_sum)

    return FeeDashboard(
        total_fees=money(total_fees),
        total_collected=money(collected),
        total_pending=money(pending),
        total_overdue=money(overdue),
        total_waived=money(waived),
        counts=counts,
    )
