from datetime import date
from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import TODAY, add_category, add_structure, add_student, add_tiers, set_fee_settings
from school_fees.api.v1.fees import generation_service, ledger_service
from school_fees.api.v1.fees.schemas import PaymentCreate, PaymentUpdate
from school_fees.core.exceptions import ConflictError, ValidationError
from school_fees.core.models import StudentFee
from school_fees.roster.directory import SqlRosterDirectory


async def _monthly_fee(db: AsyncSession, school, grade, amount: str = "90.00") -> StudentFee:
    cat = await add_category(db, school.id)
    await add_structure(db, school.id, cat.id, grade.id, amount=amount)
    await add_student(db, school.id, grade.id, "Payer")
    await generation_service.generate_monthly_fees(
        db, SqlRosterDirectory(db), school.id, month=10, year=2025, today=TODAY
    )
    return (await db.execute(select(StudentFee))).scalar_one()


def _pay(fee: StudentFee, amount: str) -> PaymentCreate:
    return PaymentCreate(student_fee_id=fee.id, amount=Decimal(amount), payment_method="cash")


@pytest.mark.asyncio
async def test_end_to_end_discount_then_full_payment(db_session: AsyncSession, school, grade) -> None:
    await add_tiers(db_session, school.id, {2: "10"})
    cat = await add_category(db_session, school.id)
    await add_structure(db_session, school.id, cat.id, grade.id, amount="100.00")
    await add_student(db_session, school.id, grade.id, "Elder", family_key="F", enrolled_on=date(2020, 4, 1))
    younger = await add_student(db_session, school.id, grade.id, "Younger", family_key="F", enrolled_on=date(2022, 4, 1))
    await generation_service.generate_monthly_fees(
        db_session, SqlRosterDirectory(db_session), school.id, month=10, year=2025, today=TODAY
    )
    fee = (
        await db_session.execute(select(StudentFee).where(StudentFee.student_id == younger.id))
    ).scalar_one()
    assert (fee.base_amount, fee.discount_amount, fee.final_amount, fee.balance) == (
        Decimal("100.00"),
        Decimal("10.00"),
        Decimal("90.00"),
        Decimal("90.00"),
    )

    _, fee = await ledger_service.record_payment(db_session, school.id, _pay(fee, "90.00"), received_by=None)
    assert fee.status == "paid"
    assert fee.balance == Decimal("0")


@pytest.mark.asyncio
async def test_half_payment_then_delete_reverts(db_session: AsyncSession, school, grade) -> None:
    fee = await _monthly_fee(db_session, school, grade)
    before = (fee.amount_paid, fee.balance, fee.status)

    payment, fee = await ledger_service.record_payment(db_session, school.id, _pay(fee, "45.00"), received_by=None)
    assert fee.status == "partial"
    assert fee.amount_paid == Decimal("45.00")
    assert fee.balance == Decimal("45.00")

    fee = await ledger_service.delete_payment(db_session, school.id, payment.id)
    assert (fee.amount_paid, fee.balance, fee.status) == before
    assert await ledger_service.list_payments(db_session, school.id, fee.id) == []


@pytest.mark.asyncio
async def test_non_positive_and_overpayment_rejected(db_session: AsyncSession, school, grade) -> None:
    fee = await _monthly_fee(db_session, school, grade)

    for amount in ("0", "-5"):
        with pytest.raises(ValidationError) as exc:
            await ledger_service.record_payment(db_session, school.id, _pay(fee, amount), received_by=None)
        assert exc.value.field == "amount"

    with pytest.raises(ValidationError):
        await ledger_service.record_payment(db_session, school.id, _pay(fee, "90.01"), received_by=None)

    await db_session.refresh(fee)
    assert fee.amount_paid == Decimal("0")


@pytest.mark.asyncio
async def test_overpayment_tolerance(db_session: AsyncSession, school, grade) -> None:
    await set_fee_settings(db_session, school.id, overpayment_tolerance=Decimal("1.00"))
    fee = await _monthly_fee(db_session, school, grade)

    _, fee = await ledger_service.record_payment(db_session, school.id, _pay(fee, "91.00"), received_by=None)
    assert fee.status == "paid"
    assert fee.balance == Decimal("-1.00")


@pytest.mark.asyncio
async def test_partial_payment_policy(db_session: AsyncSession, school, grade) -> None:
    await set_fee_settings(db_session, school.id, min_partial_payment_percent=Decimal("50"))
    fee = await _monthly_fee(db_session, school, grade, amount="100.00")

    with pytest.raises(ValidationError):
        await ledger_service.record_payment(db_session, school.id, _pay(fee, "49.99"), received_by=None)
    _, fee = await ledger_service.record_payment(db_session, school.id, _pay(fee, "50.00"), received_by=None)
    assert fee.status == "partial"


@pytest.mark.asyncio
async def test_partial_payments_disabled(db_session: AsyncSession, school, grade) -> None:
    await set_fee_settings(db_session, school.id, allow_partial_payments=False)
    fee = await _monthly_fee(db_session, school, grade)

    with pytest.raises(ValidationError):
        await ledger_service.record_payment(db_session, school.id, _pay(fee, "10.00"), received_by=None)


@pytest.mark.asyncio
async def test_update_payment_recomputes_from_scratch(db_session: AsyncSession, school, grade) -> None:
    fee = await _monthly_fee(db_session, school, grade)
    first, _ = await ledger_service.record_payment(db_session, school.id, _pay(fee, "30.00"), received_by=None)
    await ledger_service.record_payment(db_session, school.id, _pay(fee, "20.00"), received_by=None)

    _, fee = await ledger_service.update_payment(
        db_session, school.id, first.id, PaymentUpdate(amount=Decimal("70.00"))
    )
    assert fee.amount_paid == Decimal("90.00")
    assert fee.balance == Decimal("0")
    assert fee.status == "paid"

    # 70 + 20 already covers the fee; raising the first payment further would overpay
    with pytest.raises(ValidationError):
        await ledger_service.update_payment(db_session, school.id, first.id, PaymentUpdate(amount=Decimal("75.00")))


@pytest.mark.asyncio
async def test_payment_on_waived_fee_is_conflict(db_session: AsyncSession, school, grade) -> None:
    fee = await _monthly_fee(db_session, school, grade)
    fee.status = "waived"
    fee.balance = Decimal("0")
    await db_session.commit()

    with pytest.raises(ConflictError):
        await ledger_service.record_payment(db_session, school.id, _pay(fee, "10.00"), received_by=None)


@pytest.mark.asyncio
async def test_payment_api(client: AsyncClient, db_session: AsyncSession, school, grade, admin_headers) -> None:
    fee = await _monthly_fee(db_session, school, grade)

    response = await client.post(
        "/api/v1/fees/payments",
        json={"student_fee_id": str(fee.id), "amount": "40.00", "payment_method": "Bank", "payment_reference": "TX-1"},
        headers=admin_headers,
    )
    assert response.status_code == 201
    data = response.json()["data"]
    assert data["payment"]["payment_method"] == "bank"
    assert data["student_fee"]["status"] == "partial"
    payment_id = data["payment"]["id"]

    history = await client.get(f"/api/v1/fees/{fee.id}/payments", headers=admin_headers)
    assert [p["id"] for p in history.json()["data"]] == [payment_id]

    bad = await client.post(
        "/api/v1/fees/payments",
        json={"student_fee_id": str(fee.id), "amount": "0"},
        headers=admin_headers,
    )
    assert bad.status_code == 400
    assert bad.json()["error"] == {"kind": "validation", "message": "Payment amount must be greater than zero", "field": "amount"}

    deleted = await client.delete(f"/api/v1/fees/payments/{payment_id}", headers=admin_headers)
    assert deleted.status_code == 200
    assert deleted.json()["data"]["status"] == "pending"

    missing = await client.delete(f"/api/v1/fees/payments/{payment_id}", headers=admin_headers)
    assert missing.status_code == 404
