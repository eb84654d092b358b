from datetime import date, timedelta
from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import TODAY, add_category, add_structure, add_student, set_fee_settings
from school_fees.api.v1.fees import generation_service, late_fee_service, ledger_service, report_service
from school_fees.api.v1.fees.schemas import CustomStudentFeeCreate, PaymentCreate
from school_fees.core.models import StudentFee
from school_fees.roster.directory import RosterSchool, SqlRosterDirectory

YESTERDAY = TODAY - timedelta(days=1)


async def _fee_due(db: AsyncSession, school, grade, amount: str, due_date: date, discount: str = "0") -> StudentFee:
    cat = await add_category(db, school.id, code=f"C{amount.replace('.', '')}", name="Tuition")
    student = await add_student(db, school.id, grade.id, f"Student{amount.replace('.', '')}")
    fee = await generation_service.create_custom_fee(
        db,
        SqlRosterDirectory(db),
        school.id,
        CustomStudentFeeCreate(
            student_id=student.id,
            fee_category_id=cat.id,
            academic_year="2025-2026",
            custom_name="Term fee",
            amount=Decimal(amount),
            due_date=due_date,
        ),
    )
    if discount != "0":
        fee.discount_amount = Decimal(discount)
        fee.final_amount = fee.base_amount - fee.discount_amount
        fee.balance = fee.final_amount
        await db.commit()
    return fee


@pytest.mark.asyncio
async def test_overdue_fee_charged_once(db_session: AsyncSession, school, grade) -> None:
    await set_fee_settings(db_session, school.id, late_fee_value=Decimal("5.00"))
    fee = await _fee_due(db_session, school, grade, "50.00", YESTERDAY)

    result = await late_fee_service.apply_late_fees(db_session, school.id, today=TODAY)
    assert result.fees_updated == 1
    assert result.discounts_forfeited == 1

    await db_session.refresh(fee)
    assert fee.late_fee_amount == Decimal("5.00")
    assert fee.discount_forfeited is True
    assert fee.final_amount == Decimal("55.00")
    assert fee.balance == Decimal("55.00")
    assert fee.status == "overdue"
    snapshot = (fee.late_fee_amount, fee.final_amount, fee.balance, fee.status, fee.discount_forfeited)

    again = await late_fee_service.apply_late_fees(db_session, school.id, today=TODAY)
    assert again.fees_updated == 0
    assert again.discounts_forfeited == 0
    await db_session.refresh(fee)
    assert (fee.late_fee_amount, fee.final_amount, fee.balance, fee.status, fee.discount_forfeited) == snapshot


@pytest.mark.asyncio
async def test_discount_forfeited_on_first_sweep(db_session: AsyncSession, school, grade) -> None:
    await set_fee_settings(db_session, school.id, late_fee_value=Decimal("5.00"))
    fee = await _fee_due(db_session, school, grade, "100.00", YESTERDAY, discount="10.00")

    await late_fee_service.apply_late_fees(db_session, school.id, today=TODAY)
    await db_session.refresh(fee)
    assert fee.discount_amount == Decimal("0")
    assert fee.final_amount == Decimal("105.00")
    assert fee.balance == fee.final_amount - fee.amount_paid


@pytest.mark.asyncio
async def test_percentage_late_fee(db_session: AsyncSession, school, grade) -> None:
    await set_fee_settings(
        db_session,
        school.id,
        late_fee_type="percentage",
        late_fee_value=Decimal("2.5"),
        discount_forfeiture_enabled=False,
    )
    fee = await _fee_due(db_session, school, grade, "90.00", YESTERDAY, discount="10.00")

    result = await late_fee_service.apply_late_fees(db_session, school.id, today=TODAY)
    assert result.discounts_forfeited == 0
    await db_session.refresh(fee)
    # 2.5% of 80.00
    assert fee.late_fee_amount == Decimal("2.00")
    assert fee.discount_amount == Decimal("10.00")
    assert fee.final_amount == Decimal("82.00")


@pytest.mark.asyncio
async def test_grace_period_marks_overdue_without_charging(db_session: AsyncSession, school, grade) -> None:
    await set_fee_settings(db_session, school.id, late_fee_value=Decimal("5.00"), grace_days=3)
    fee = await _fee_due(db_session, school, grade, "50.00", TODAY - timedelta(days=2))

    await late_fee_service.apply_late_fees(db_session, school.id, today=TODAY)
    await db_session.refresh(fee)
    assert fee.status == "overdue"
    assert fee.late_fee_amount == Decimal("0")
    assert fee.discount_forfeited is False

    await late_fee_service.apply_late_fees(db_session, school.id, today=TODAY + timedelta(days=2))
    await db_session.refresh(fee)
    assert fee.late_fee_amount == Decimal("5.00")
    assert fee.discount_forfeited is True


@pytest.mark.asyncio
async def test_paid_fee_is_untouched(db_session: AsyncSession, school, grade) -> None:
    await set_fee_settings(db_session, school.id, late_fee_value=Decimal("5.00"))
    fee = await _fee_due(db_session, school, grade, "100.00", YESTERDAY, discount="10.00")
    assert fee.final_amount == Decimal("90.00")

    _, fee = await ledger_service.record_payment(
        db_session,
        school.id,
        PaymentCreate(student_fee_id=fee.id, amount=Decimal("90.00")),
        received_by=None,
    )
    assert fee.status == "paid"
    assert fee.balance == Decimal("0")

    result = await late_fee_service.apply_late_fees(db_session, school.id, today=TODAY)
    assert result.fees_updated == 0
    await db_session.refresh(fee)
    assert fee.late_fee_amount == Decimal("0")
    assert fee.discount_amount == Decimal("10.00")
    assert fee.status == "paid"


@pytest.mark.asyncio
async def test_partly_paid_fee_becomes_overdue(db_session: AsyncSession, school, grade) -> None:
    await set_fee_settings(db_session, school.id, late_fee_value=Decimal("5.00"))
    fee = await _fee_due(db_session, school, grade, "100.00", YESTERDAY)
    _, fee = await ledger_service.record_payment(
        db_session,
        school.id,
        PaymentCreate(student_fee_id=fee.id, amount=Decimal("40.00")),
        received_by=None,
    )
    assert fee.status == "partial"

    result = await late_fee_service.apply_late_fees(db_session, school.id, today=TODAY)
    assert result.fees_updated == 1
    await db_session.refresh(fee)
    assert fee.status == "overdue"
    assert fee.late_fee_amount == Decimal("5.00")
    assert fee.balance == Decimal("65.00")

    dash = await report_service.get_dashboard(db_session, school.id)
    assert dash.total_overdue == Decimal("65.00")
    assert dash.total_pending == Decimal("0.00")
    assert dash.counts["overdue"] == 1

    _, fee = await ledger_service.record_payment(
        db_session,
        school.id,
        PaymentCreate(student_fee_id=fee.id, amount=Decimal("20.00")),
        received_by=None,
    )
    assert fee.status == "overdue"


@pytest.mark.asyncio
async def test_future_due_date_is_not_overdue(db_session: AsyncSession, school, grade) -> None:
    await set_fee_settings(db_session, school.id, late_fee_value=Decimal("5.00"))
    fee = await _fee_due(db_session, school, grade, "50.00", TODAY)

    result = await late_fee_service.apply_late_fees(db_session, school.id, today=TODAY)
    assert result.fees_updated == 0
    await db_session.refresh(fee)
    assert fee.status == "pending"


@pytest.mark.asyncio
async def test_global_sweep_reports_per_school(db_session: AsyncSession, school, grade) -> None:
    await set_fee_settings(db_session, school.id, late_fee_value=Decimal("5.00"))
    await _fee_due(db_session, school, grade, "50.00", YESTERDAY)
    school_id, school_name = school.id, school.name

    class TwoSchools(SqlRosterDirectory):
        async def list_active_schools(self):
            return [RosterSchool(id=school_id, name=school_name)]

    result = await late_fee_service.apply_late_fees_global(db_session, TwoSchools(db_session), today=TODAY)
    assert result.schools_processed == 1
    assert result.total_fees_updated == 1
    assert result.total_discounts_forfeited == 1
    assert result.schools[0].success is True


@pytest.mark.asyncio
async def test_cron_late_fees_requires_secret(client: AsyncClient, school) -> None:
    response = await client.post("/api/v1/fees/cron/apply-late-fees", headers={"x-cron-secret": "nope"})
    assert response.status_code == 401

    response = await client.post(
        "/api/v1/fees/cron/apply-late-fees", headers={"x-cron-secret": "cron-test-secret"}
    )
    assert response.status_code == 200
    assert response.json()["data"]["schools_processed"] == 1
