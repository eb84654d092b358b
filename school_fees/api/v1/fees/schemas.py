"""Fees schemas."""

from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from school_fees.core.enums import AdjustmentType, LateFeeType, PeriodType, StudentFeeStatus


# --- Settings ---
class FeeSettingsUpdate(BaseModel):
    enable_late_fees: Optional[bool] = None
    late_fee_type: Optional[LateFeeType] = None
    late_fee_value: Optional[Decimal] = Field(None, ge=0)
    grace_days: Optional[int] = Field(None, ge=0)
    enable_sibling_discounts: Optional[bool] = None
    discount_forfeiture_enabled: Optional[bool] = None
    admin_can_restore_discounts: Optional[bool] = None
    allow_partial_payments: Optional[bool] = None
    min_partial_payment_percent: Optional[Decimal] = Field(None, ge=0, le=100)
    overpayment_tolerance: Optional[Decimal] = Field(None, ge=0)


class FeeSettingsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    school_id: UUID
    enable_late_fees: bool
    late_fee_type: LateFeeType
    late_fee_value: Decimal
    grace_days: int
    enable_sibling_discounts: bool
    discount_forfeiture_enabled: bool
    admin_can_restore_discounts: bool
    allow_partial_payments: bool
    min_partial_payment_percent: Decimal
    overpayment_tolerance: Decimal


# --- Fee Category ---
class FeeCategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    code: str = Field(..., min_length=1, max_length=20)
    description: Optional[str] = None
    is_mandatory: bool = True
    is_discountable: bool = True
    display_order: int = 0


class FeeCategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    code: Optional[str] = Field(None, min_length=1, max_length=20)
    description: Optional[str] = None
    is_mandatory: Optional[bool] = None
    is_discountable: Optional[bool] = None
    display_order: Optional[int] = None
    is_active: Optional[bool] = None


class FeeCategoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    school_id: UUID
    name: str
    code: str
    description: Optional[str] = None
    is_mandatory: bool
    is_discountable: bool
    display_order: int
    is_active: bool
    created_at: datetime
    updated_at: datetime


# --- Fee Structure ---
class FeeStructureCreate(BaseModel):
    academic_year: str = Field(..., min_length=4, max_length=20)
    grade_level_id: Optional[UUID] = Field(None, description="Omit for a school-wide structure")
    fee_category_id: UUID
    period_type: PeriodType
    period_name: Optional[str] = Field(None, max_length=50)
    amount: Decimal = Field(..., ge=0)
    due_date: Optional[date] = None
    due_day: Optional[int] = Field(None, ge=1, le=28, description="Day of month for monthly structures")


class FeeStructureUpdate(BaseModel):
    amount: Optional[Decimal] = Field(None, ge=0)
    period_name: Optional[str] = Field(None, max_length=50)
    due_date: Optional[date] = None
    due_day: Optional[int] = Field(None, ge=1, le=28)
    is_active: Optional[bool] = None


class FeeStructureResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    school_id: UUID
    academic_year: str
    grade_level_id: Optional[UUID] = None
    fee_category_id: UUID
    period_type: PeriodType
    period_name: Optional[str] = None
    amount: Decimal
    due_date: Optional[date] = None
    due_day: Optional[int] = None
    is_active: bool
    created_at: datetime
    updated_at: datetime


# --- Sibling discount tiers ---
class SiblingDiscountTierItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    sibling_ordinal: int = Field(..., ge=1, description="1 = eldest enrolled; highest configured ordinal covers all later siblings")
    discount_percent: Decimal = Field(..., ge=0, le=100)


class SiblingDiscountTiersUpdate(BaseModel):
    tiers: List[SiblingDiscountTierItem]


# --- Student fee overrides ---
class StudentFeeOverrideCreate(BaseModel):
    student_id: UUID
    fee_category_id: UUID
    academic_year: str = Field(..., min_length=4, max_length=20)
    override_amount: Decimal = Field(..., ge=0)
    reason: Optional[str] = None


class StudentFeeOverrideUpdate(BaseModel):
    override_amount: Optional[Decimal] = Field(None, ge=0)
    reason: Optional[str] = None
    is_active: Optional[bool] = None


class StudentFeeOverrideResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    school_id: UUID
    student_id: UUID
    fee_category_id: UUID
    academic_year: str
    override_amount: Decimal
    reason: Optional[str] = None
    is_active: bool
    created_by: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime


# --- Student fees ---
class StudentFeeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    school_id: UUID
    student_id: UUID
    fee_structure_id: Optional[UUID] = None
    fee_category_id: UUID
    academic_year: str
    fee_month: Optional[str] = None
    period_key: str
    custom_name: Optional[str] = None
    base_amount: Decimal
    discount_amount: Decimal
    discount_forfeited: bool
    late_fee_amount: Decimal
    final_amount: Decimal
    amount_paid: Decimal
    balance: Decimal
    due_date: date
    status: StudentFeeStatus
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class StudentFeeWithDetails(StudentFeeResponse):
    student_name: Optional[str] = None
    student_number: Optional[str] = None
    grade_level_id: Optional[UUID] = None
    grade_name: Optional[str] = None
    section_id: Optional[UUID] = None
    fee_category_name: Optional[str] = None
    fee_category_code: Optional[str] = None


class CustomStudentFeeCreate(BaseModel):
    student_id: UUID
    fee_category_id: UUID
    academic_year: str = Field(..., min_length=4, max_length=20)
    custom_name: str = Field(..., min_length=1, max_length=255)
    amount: Decimal = Field(..., ge=0)
    due_date: date
    reason: Optional[str] = None


# --- Generation ---
class GenerateForStructureRequest(BaseModel):
    fee_structure_id: UUID
    student_ids: Optional[List[UUID]] = Field(None, description="Omit to bill every active student the structure applies to")
    fee_month: Optional[str] = Field(None, pattern=r"^\d{4}-(0[1-9]|1[0-2])$")


class GenerateForStudentRequest(BaseModel):
    student_id: UUID
    grade_level_id: Optional[UUID] = Field(None, description="Defaults to the student's current grade")
    category_ids: Optional[List[UUID]] = Field(None, description="Applicable category ids; omit for all")
    academic_year: Optional[str] = None
    fee_month: Optional[str] = Field(None, pattern=r"^\d{4}-(0[1-9]|1[0-2])$")
    due_date: Optional[date] = None


class GenerateMonthlyRequest(BaseModel):
    month: Optional[int] = Field(None, ge=1, le=12)
    year: Optional[int] = Field(None, ge=2000, le=2100)
    academic_year: Optional[str] = None
    grade_level_id: Optional[UUID] = None
    section_id: Optional[UUID] = None
    category_ids: Optional[List[UUID]] = None


class CronGenerateMonthlyRequest(BaseModel):
    month: Optional[int] = Field(None, ge=1, le=12)
    year: Optional[int] = Field(None, ge=2000, le=2100)


class GenerationResult(BaseModel):
    fees_created: int
    students_processed: int
    total_amount: Decimal


class GeneratedFees(BaseModel):
    created: List[StudentFeeResponse]
    existing: List[StudentFeeResponse]


class SchoolGenerationResult(BaseModel):
    school_id: UUID
    school_name: str
    success: bool
    fees_created: int = 0
    students_processed: int = 0
    total_amount: Decimal = Decimal("0")
    error: Optional[str] = None


class AllSchoolsGenerationResult(BaseModel):
    total_fees_created: int
    grand_total: Decimal
    schools: List[SchoolGenerationResult]


# --- Late fees ---
class LateFeeResult(BaseModel):
    fees_updated: int
    discounts_forfeited: int


class SchoolLateFeeResult(BaseModel):
    school_id: UUID
    school_name: str
    success: bool
    fees_updated: int = 0
    discounts_forfeited: int = 0
    error: Optional[str] = None


class GlobalLateFeeResult(BaseModel):
    schools_processed: int
    total_fees_updated: int
    total_discounts_forfeited: int
    schools: List[SchoolLateFeeResult]


# --- Payment ---
class PaymentCreate(BaseModel):
    student_fee_id: UUID
    # Sign is checked by the ledger so a non-positive amount is reported as a ValidationError
    amount: Decimal
    payment_method: str = Field("cash", max_length=30)
    payment_reference: Optional[str] = Field(None, max_length=100)
    payment_date: Optional[datetime] = None
    notes: Optional[str] = None


class PaymentUpdate(BaseModel):
    amount: Optional[Decimal] = None
    payment_method: Optional[str] = Field(None, max_length=30)
    payment_reference: Optional[str] = Field(None, max_length=100)
    payment_date: Optional[datetime] = None
    notes: Optional[str] = None


class PaymentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    school_id: UUID
    student_fee_id: UUID
    amount: Decimal
    payment_method: str
    payment_reference: Optional[str] = None
    payment_date: datetime
    received_by: Optional[UUID] = None
    notes: Optional[str] = None
    created_at: datetime


class PaymentWithFee(BaseModel):
    payment: PaymentResponse
    student_fee: StudentFeeResponse


# --- Adjustments ---
class FeeAdjustmentRequest(BaseModel):
    type: AdjustmentType
    reason: Optional[str] = Field(None, description="Required; recorded in the audit trail")
    new_late_fee: Optional[Decimal] = Field(None, ge=0)
    custom_discount: Optional[Decimal] = Field(None, ge=0)


class FeeAdjustmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    student_fee_id: UUID
    adjustment_type: AdjustmentType
    admin_id: UUID
    reason: str
    previous_value: Optional[Dict[str, object]] = None
    new_value: Optional[Dict[str, object]] = None
    created_at: datetime


# --- Reports ---
class FeeTotals(BaseModel):
    total_billed: Decimal
    total_paid: Decimal
    total_due: Decimal


class StudentFeeHistory(BaseModel):
    items: List[StudentFeeWithDetails]
    total: int
    summary: FeeTotals


class FeeDashboard(BaseModel):
    total_fees: Decimal
    total_collected: Decimal
    total_pending: Decimal
    total_overdue: Decimal
    total_waived: Decimal
    counts: Dict[str, int]
