"""Fees router: settings, catalog, sibling tiers, overrides, generation, late fees, payments, adjustments, reports."""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from school_fees.auth.dependencies import require_cron_secret, resolve_tenant
from school_fees.auth.rbac import require_fee_admin
from school_fees.auth.schemas import TenantContext
from school_fees.core.enums import StudentFeeStatus
from school_fees.core.schemas import ApiResponse, Page
from school_fees.db.session import get_db
from school_fees.roster.directory import RosterDirectory, SqlRosterDirectory

from . import (
    adjustment_service,
    catalog_service,
    generation_service,
    late_fee_service,
    ledger_service,
    report_service,
)
from .schemas import (
    AllSchoolsGenerationResult,
    CronGenerateMonthlyRequest,
    CustomStudentFeeCreate,
    FeeAdjustmentRequest,
    FeeAdjustmentResponse,
    FeeCategoryCreate,
    FeeCategoryResponse,
    FeeCategoryUpdate,
    FeeDashboard,
    FeeSettingsResponse,
    FeeSettingsUpdate,
    FeeStructureCreate,
    FeeStructureResponse,
    FeeStructureUpdate,
    GeneratedFees,
    GenerateForStructureRequest,
    GenerateForStudentRequest,
    GenerateMonthlyRequest,
    GenerationResult,
    GlobalLateFeeResult,
    LateFeeResult,
    PaymentCreate,
    PaymentResponse,
    PaymentUpdate,
    PaymentWithFee,
    SiblingDiscountTierItem,
    SiblingDiscountTiersUpdate,
    StudentFeeHistory,
    StudentFeeOverrideCreate,
    StudentFeeOverrideResponse,
    StudentFeeOverrideUpdate,
    StudentFeeResponse,
    StudentFeeWithDetails,
)

router = APIRouter(prefix="/api/v1/fees", tags=["fees"])

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def get_roster(db: AsyncSession = Depends(get_db)) -> RosterDirectory:
    return SqlRosterDirectory(db)


def _deleted(entity_id: UUID) -> ApiResponse[Dict[str, Any]]:
    return ApiResponse(data={"id": str(entity_id), "deleted": True})


# --- Settings ---
@router.get("/settings", response_model=ApiResponse[FeeSettingsResponse])
async def read_fee_settings(
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(resolve_tenant),
):
    row = await catalog_service.get_fee_settings(db, tenant.school_id)
    return ApiResponse(data=FeeSettingsResponse.model_validate(row))


@router.put("/settings", response_model=ApiResponse[FeeSettingsResponse])
async def update_fee_settings(
    payload: FeeSettingsUpdate,
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(require_fee_admin),
):
    row = await catalog_service.update_fee_settings(db, tenant.school_id, payload)
    return ApiResponse(data=FeeSettingsResponse.model_validate(row))


# --- Fee Category ---
@router.get("/categories", response_model=ApiResponse[List[FeeCategoryResponse]])
async def read_categories(
    active_only: bool = Query(True, description="Return only active categories by default"),
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(resolve_tenant),
):
    rows = await catalog_service.list_categories(db, tenant.school_id, active_only=active_only)
    return ApiResponse(data=[FeeCategoryResponse.model_validate(r) for r in rows])


@router.post(
    "/categories",
    response_model=ApiResponse[FeeCategoryResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_category(
    payload: FeeCategoryCreate,
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(require_fee_admin),
):
    cat = await catalog_service.create_category(db, tenant.school_id, payload)
    return ApiResponse(data=FeeCategoryResponse.model_validate(cat))


@router.put("/categories/{category_id}", response_model=ApiResponse[FeeCategoryResponse])
async def update_category(
    category_id: UUID,
    payload: FeeCategoryUpdate,
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(require_fee_admin),
):
    cat = await catalog_service.update_category(db, tenant.school_id, category_id, payload)
    return ApiResponse(data=FeeCategoryResponse.model_validate(cat))


@router.delete("/categories/{category_id}", response_model=ApiResponse[Dict[str, Any]])
async def delete_category(
    category_id: UUID,
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(require_fee_admin),
):
    await catalog_service.delete_category(db, tenant.school_id, category_id)
    return _deleted(category_id)


# --- Fee Structure ---
@router.get("/structures", response_model=ApiResponse[List[FeeStructureResponse]])
async def read_structures(
    academic_year: Optional[str] = None,
    grade_level_id: Optional[UUID] = None,
    active_only: bool = Query(True),
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(resolve_tenant),
):
    rows = await catalog_service.list_structures(
        db, tenant.school_id, academic_year=academic_year, grade_level_id=grade_level_id, active_only=active_only
    )
    return ApiResponse(data=[FeeStructureResponse.model_validate(r) for r in rows])


@router.post(
    "/structures",
    response_model=ApiResponse[FeeStructureResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_structure(
    payload: FeeStructureCreate,
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(require_fee_admin),
):
    fs = await catalog_service.create_structure(db, tenant.school_id, payload)
    return ApiResponse(data=FeeStructureResponse.model_validate(fs))


@router.put("/structures/{structure_id}", response_model=ApiResponse[FeeStructureResponse])
async def update_structure(
    structure_id: UUID,
    payload: FeeStructureUpdate,
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(require_fee_admin),
):
    fs = await catalog_service.update_structure(db, tenant.school_id, structure_id, payload)
    return ApiResponse(data=FeeStructureResponse.model_validate(fs))


@router.delete("/structures/{structure_id}", response_model=ApiResponse[Dict[str, Any]])
async def delete_structure(
    structure_id: UUID,
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(require_fee_admin),
):
    await catalog_service.delete_structure(db, tenant.school_id, structure_id)
    return _deleted(structure_id)


# --- Sibling discount tiers ---
@router.get("/sibling-discounts", response_model=ApiResponse[List[SiblingDiscountTierItem]])
async def read_sibling_discounts(
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(resolve_tenant),
):
    tiers = await catalog_service.list_sibling_tiers(db, tenant.school_id)
    return ApiResponse(data=[SiblingDiscountTierItem.model_validate(t) for t in tiers])


@router.put("/sibling-discounts", response_model=ApiResponse[List[SiblingDiscountTierItem]])
async def replace_sibling_discounts(
    payload: SiblingDiscountTiersUpdate,
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(require_fee_admin),
):
    tiers = await catalog_service.replace_sibling_tiers(db, tenant.school_id, payload.tiers)
    return ApiResponse(data=[SiblingDiscountTierItem.model_validate(t) for t in tiers])


# --- Student fee overrides ---
@router.get("/overrides", response_model=ApiResponse[List[StudentFeeOverrideResponse]])
async def read_overrides(
    student_id: Optional[UUID] = None,
    academic_year: Optional[str] = None,
    fee_category_id: Optional[UUID] = None,
    is_active: Optional[bool] = Query(True),
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(resolve_tenant),
):
    rows = await catalog_service.list_overrides(
        db,
        tenant.school_id,
        student_id=student_id,
        academic_year=academic_year,
        fee_category_id=fee_category_id,
        is_active=is_active,
    )
    return ApiResponse(data=[StudentFeeOverrideResponse.model_validate(r) for r in rows])


@router.post(
    "/overrides",
    response_model=ApiResponse[StudentFeeOverrideResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_override(
    payload: StudentFeeOverrideCreate,
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(require_fee_admin),
):
    ov = await catalog_service.create_override(db, tenant.school_id, payload, created_by=tenant.actor_id)
    return ApiResponse(data=StudentFeeOverrideResponse.model_validate(ov))


@router.get("/overrides/{override_id}", response_model=ApiResponse[StudentFeeOverrideResponse])
async def read_override(
    override_id: UUID,
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(resolve_tenant),
):
    ov = await catalog_service.get_override(db, tenant.school_id, override_id)
    return ApiResponse(data=StudentFeeOverrideResponse.model_validate(ov))


@router.put("/overrides/{override_id}", response_model=ApiResponse[StudentFeeOverrideResponse])
async def update_override(
    override_id: UUID,
    payload: StudentFeeOverrideUpdate,
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(require_fee_admin),
):
    ov = await catalog_service.update_override(db, tenant.school_id, override_id, payload)
    return ApiResponse(data=StudentFeeOverrideResponse.model_validate(ov))


@router.delete("/overrides/{override_id}", response_model=ApiResponse[Dict[str, Any]])
async def delete_override(
    override_id: UUID,
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(require_fee_admin),
):
    await catalog_service.delete_override(db, tenant.school_id, override_id)
    return _deleted(override_id)


# --- Generation ---
@router.post("/generate", response_model=ApiResponse[GenerationResult])
async def generate_for_structure(
    payload: GenerateForStructureRequest,
    db: AsyncSession = Depends(get_db),
    roster: RosterDirectory = Depends(get_roster),
    tenant: TenantContext = Depends(require_fee_admin),
):
    result = await generation_service.generate_for_structure(
        db,
        roster,
        tenant.school_id,
        payload.fee_structure_id,
        student_ids=payload.student_ids,
        fee_month=payload.fee_month,
    )
    return ApiResponse(data=result)


@router.post(
    "/generate-for-student",
    response_model=ApiResponse[GeneratedFees],
    status_code=status.HTTP_201_CREATED,
)
async def generate_for_student(
    payload: GenerateForStudentRequest,
    db: AsyncSession = Depends(get_db),
    roster: RosterDirectory = Depends(get_roster),
    tenant: TenantContext = Depends(require_fee_admin),
):
    created, existing = await generation_service.generate_fee_for_new_student(
        db,
        roster,
        tenant.school_id,
        payload.student_id,
        grade_level_id=payload.grade_level_id,
        category_ids=payload.category_ids,
        academic_year=payload.academic_year,
        fee_month=payload.fee_month,
        due_date=payload.due_date,
    )
    return ApiResponse(
        data=GeneratedFees(
            created=[StudentFeeResponse.model_validate(f) for f in created],
            existing=[StudentFeeResponse.model_validate(f) for f in existing],
        )
    )


@router.post("/generate-monthly", response_model=ApiResponse[GenerationResult])
async def generate_monthly(
    payload: GenerateMonthlyRequest,
    db: AsyncSession = Depends(get_db),
    roster: RosterDirectory = Depends(get_roster),
    tenant: TenantContext = Depends(require_fee_admin),
):
    result = await generation_service.generate_monthly_fees(
        db,
        roster,
        tenant.school_id,
        month=payload.month,
        year=payload.year,
        academic_year=payload.academic_year,
        grade_level_id=payload.grade_level_id,
        section_id=payload.section_id,
        category_ids=payload.category_ids,
    )
    return ApiResponse(data=result)


@router.post(
    "/cron/generate-monthly",
    response_model=ApiResponse[AllSchoolsGenerationResult],
    dependencies=[Depends(require_cron_secret)],
)
async def cron_generate_monthly(
    payload: Optional[CronGenerateMonthlyRequest] = None,
    db: AsyncSession = Depends(get_db),
    roster: RosterDirectory = Depends(get_roster),
):
    payload = payload or CronGenerateMonthlyRequest()
    result = await generation_service.generate_monthly_fees_all_schools(
        db, roster, month=payload.month, year=payload.year
    )
    return ApiResponse(data=result)


@router.post(
    "/custom",
    response_model=ApiResponse[StudentFeeResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_custom_fee(
    payload: CustomStudentFeeCreate,
    db: AsyncSession = Depends(get_db),
    roster: RosterDirectory = Depends(get_roster),
    tenant: TenantContext = Depends(require_fee_admin),
):
    fee = await generation_service.create_custom_fee(db, roster, tenant.school_id, payload)
    return ApiResponse(data=StudentFeeResponse.model_validate(fee))


# --- Late fees ---
@router.post("/apply-late-fees", response_model=ApiResponse[LateFeeResult])
async def apply_late_fees(
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(require_fee_admin),
):
    result = await late_fee_service.apply_late_fees(db, tenant.school_id)
    return ApiResponse(data=result)


@router.post(
    "/cron/apply-late-fees",
    response_model=ApiResponse[GlobalLateFeeResult],
    dependencies=[Depends(require_cron_secret)],
)
async def cron_apply_late_fees(
    db: AsyncSession = Depends(get_db),
    roster: RosterDirectory = Depends(get_roster),
):
    result = await late_fee_service.apply_late_fees_global(db, roster)
    return ApiResponse(data=result)


# --- Payments ---
@router.post(
    "/payments",
    response_model=ApiResponse[PaymentWithFee],
    status_code=status.HTTP_201_CREATED,
)
async def record_payment(
    payload: PaymentCreate,
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(require_fee_admin),
):
    payment, fee = await ledger_service.record_payment(db, tenant.school_id, payload, received_by=tenant.actor_id)
    return ApiResponse(
        data=PaymentWithFee(
            payment=PaymentResponse.model_validate(payment),
            student_fee=StudentFeeResponse.model_validate(fee),
        )
    )


@router.put("/payments/{payment_id}", response_model=ApiResponse[PaymentWithFee])
async def update_payment(
    payment_id: UUID,
    payload: PaymentUpdate,
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(require_fee_admin),
):
    payment, fee = await ledger_service.update_payment(
        db, tenant.school_id, payment_id, payload, actor_id=tenant.actor_id
    )
    return ApiResponse(
        data=PaymentWithFee(
            payment=PaymentResponse.model_validate(payment),
            student_fee=StudentFeeResponse.model_validate(fee),
        )
    )


@router.delete("/payments/{payment_id}", response_model=ApiResponse[StudentFeeResponse])
async def delete_payment(
    payment_id: UUID,
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(require_fee_admin),
):
    fee = await ledger_service.delete_payment(db, tenant.school_id, payment_id, actor_id=tenant.actor_id)
    return ApiResponse(data=StudentFeeResponse.model_validate(fee))


# --- Reports ---
@router.get("/students", response_model=ApiResponse[Page[StudentFeeWithDetails]])
async def read_student_fees(
    student_id: Optional[UUID] = None,
    academic_year: Optional[str] = None,
    status_filter: Optional[StudentFeeStatus] = Query(None, alias="status"),
    fee_month: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(resolve_tenant),
):
    result = await report_service.list_student_fees(
        db,
        tenant.school_id,
        student_id=student_id,
        academic_year=academic_year,
        status_filter=status_filter.value if status_filter else None,
        fee_month=fee_month,
        page=page,
        limit=limit,
    )
    return ApiResponse(data=result)


@router.get("/by-grade", response_model=ApiResponse[Page[StudentFeeWithDetails]])
async def read_fees_by_grade(
    grade_level_id: Optional[UUID] = None,
    section_id: Optional[UUID] = None,
    fee_month: Optional[str] = None,
    status_filter: Optional[StudentFeeStatus] = Query(None, alias="status"),
    academic_year: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(resolve_tenant),
):
    result = await report_service.get_fees_by_grade(
        db,
        tenant.school_id,
        grade_level_id=grade_level_id,
        section_id=section_id,
        fee_month=fee_month,
        status_filter=status_filter.value if status_filter else None,
        academic_year=academic_year,
        page=page,
        limit=limit,
    )
    return ApiResponse(data=result)


@router.get("/by-grade/export")
async def export_fees_by_grade(
    grade_level_id: Optional[UUID] = None,
    section_id: Optional[UUID] = None,
    fee_month: Optional[str] = None,
    status_filter: Optional[StudentFeeStatus] = Query(None, alias="status"),
    academic_year: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(resolve_tenant),
):
    """Download the by-grade rows as an Excel workbook."""
    content = await report_service.export_fees_by_grade(
        db,
        tenant.school_id,
        grade_level_id=grade_level_id,
        section_id=section_id,
        fee_month=fee_month,
        status_filter=status_filter.value if status_filter else None,
        academic_year=academic_year,
    )
    filename = f"fees_{datetime.utcnow():%Y%m%d}.xlsx"
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@router.get("/dashboard", response_model=ApiResponse[FeeDashboard])
async def read_dashboard(
    academic_year: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(resolve_tenant),
):
    result = await report_service.get_dashboard(db, tenant.school_id, academic_year=academic_year)
    return ApiResponse(data=result)


@router.get("/history/{student_id}", response_model=ApiResponse[StudentFeeHistory])
async def read_student_fee_history(
    student_id: UUID,
    academic_year: Optional[str] = None,
    status_filter: Optional[StudentFeeStatus] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(resolve_tenant),
):
    result = await report_service.get_student_fee_history(
        db,
        tenant.school_id,
        student_id,
        academic_year=academic_year,
        status_filter=status_filter.value if status_filter else None,
    )
    return ApiResponse(data=result)


# --- Single fee (declared last: /{fee_id} would shadow the static paths above) ---
@router.get("/{fee_id}", response_model=ApiResponse[StudentFeeWithDetails])
async def read_fee(
    fee_id: UUID,
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(resolve_tenant),
):
    return ApiResponse(data=await report_service.get_fee(db, tenant.school_id, fee_id))


@router.get("/{fee_id}/payments", response_model=ApiResponse[List[PaymentResponse]])
async def read_fee_payments(
    fee_id: UUID,
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(resolve_tenant),
):
    rows = await ledger_service.list_payments(db, tenant.school_id, fee_id)
    return ApiResponse(data=[PaymentResponse.model_validate(p) for p in rows])


@router.put("/{fee_id}/adjust", response_model=ApiResponse[StudentFeeResponse])
async def adjust_fee(
    fee_id: UUID,
    payload: FeeAdjustmentRequest,
    db: AsyncSession = Depends(get_db),
    roster: RosterDirectory = Depends(get_roster),
    tenant: TenantContext = Depends(require_fee_admin),
):
    fee = await adjustment_service.adjust_fee(db, roster, tenant.school_id, fee_id, tenant.actor_id, payload)
    return ApiResponse(data=StudentFeeResponse.model_validate(fee))


@router.get("/{fee_id}/adjustments", response_model=ApiResponse[List[FeeAdjustmentResponse]])
async def read_fee_adjustments(
    fee_id: UUID,
    db: AsyncSession = Depends(get_db),
    tenant: TenantContext = Depends(resolve_tenant),
):
    rows = await adjustment_service.get_fee_adjustments(db, tenant.school_id, fee_id)
    return ApiResponse(data=[FeeAdjustmentResponse.model_validate(a) for a in rows])
