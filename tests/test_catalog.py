from decimal import Decimal
from uuid import UUID

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import ACADEMIC_YEAR, TODAY, add_category, add_structure, add_student, auth_headers
from school_fees.api.v1.fees import catalog_service, generation_service
from school_fees.api.v1.fees.schemas import FeeStructureCreate, SiblingDiscountTierItem
from school_fees.core.exceptions import ConflictError, NotFoundError, ValidationError
from school_fees.core.models import FeeCategory
from school_fees.roster.directory import SqlRosterDirectory


@pytest.mark.asyncio
async def test_create_category_normalizes_code(client: AsyncClient, db_session: AsyncSession, admin_headers) -> None:
    response = await client.post(
        "/api/v1/fees/categories",
        json={"name": " Tuition ", "code": " tuition "},
        headers=admin_headers,
    )
    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["data"]["code"] == "TUITION"
    assert body["data"]["name"] == "Tuition"

    dup = await client.post(
        "/api/v1/fees/categories",
        json={"name": "Tuition again", "code": "TUITION"},
        headers=admin_headers,
    )
    assert dup.status_code == 409
    assert dup.json()["error"]["kind"] == "conflict"


@pytest.mark.asyncio
async def test_category_delete_blocked_when_referenced(db_session: AsyncSession, school, grade) -> None:
    cat = await add_category(db_session, school.id)
    await add_structure(db_session, school.id, cat.id, grade.id)

    with pytest.raises(ConflictError):
        await catalog_service.delete_category(db_session, school.id, cat.id)

    unused = await add_category(db_session, school.id, code="LAB", name="Lab")
    await catalog_service.delete_category(db_session, school.id, unused.id)
    remaining = (await db_session.execute(select(FeeCategory.code))).scalars().all()
    assert remaining == ["TUITION"]


@pytest.mark.asyncio
async def test_duplicate_active_structure_is_conflict(db_session: AsyncSession, school, grade) -> None:
    cat = await add_category(db_session, school.id)
    payload = FeeStructureCreate(
        academic_year=ACADEMIC_YEAR,
        grade_level_id=grade.id,
        fee_category_id=cat.id,
        period_type="monthly",
        amount=Decimal("100"),
        due_day=10,
    )
    first = await catalog_service.create_structure(db_session, school.id, payload)
    assert first.is_active is True

    with pytest.raises(ConflictError):
        await catalog_service.create_structure(db_session, school.id, payload)

    # A deactivated structure frees the slot
    first.is_active = False
    await db_session.commit()
    second = await catalog_service.create_structure(db_session, school.id, payload)
    assert second.id != first.id


@pytest.mark.asyncio
async def test_one_time_structure_requires_due_date(db_session: AsyncSession, school, grade) -> None:
    cat = await add_category(db_session, school.id, code="ADM", name="Admission")
    with pytest.raises(ValidationError) as exc:
        await catalog_service.create_structure(
            db_session,
            school.id,
            FeeStructureCreate(
                academic_year=ACADEMIC_YEAR,
                grade_level_id=grade.id,
                fee_category_id=cat.id,
                period_type="one_time",
                amount=Decimal("500"),
            ),
        )
    assert exc.value.field == "due_date"


@pytest.mark.asyncio
async def test_structure_delete_blocked_once_billed(db_session: AsyncSession, school, grade) -> None:
    cat = await add_category(db_session, school.id)
    fs = await add_structure(db_session, school.id, cat.id, grade.id)
    await add_student(db_session, school.id, grade.id, "Asha")
    await generation_service.generate_monthly_fees(
        db_session, SqlRosterDirectory(db_session), school.id, month=10, year=2025, today=TODAY
    )

    with pytest.raises(ConflictError):
        await catalog_service.delete_structure(db_session, school.id, fs.id)


@pytest.mark.asyncio
async def test_catalog_is_scoped_to_school(client: AsyncClient, db_session: AsyncSession, school) -> None:
    cat = await add_category(db_session, school.id)
    other_school_headers = auth_headers(school_id=cat.id)  # any id that is not the owning school

    response = await client.put(
        f"/api/v1/fees/categories/{cat.id}",
        json={"name": "Renamed"},
        headers=other_school_headers,
    )
    assert response.status_code == 404
    assert response.json()["error"]["kind"] == "not_found"


@pytest.mark.asyncio
async def test_replace_sibling_tiers(db_session: AsyncSession, school) -> None:
    tiers = await catalog_service.replace_sibling_tiers(
        db_session,
        school.id,
        [
            SiblingDiscountTierItem(sibling_ordinal=2, discount_percent=Decimal("10")),
            SiblingDiscountTierItem(sibling_ordinal=3, discount_percent=Decimal("20")),
        ],
    )
    assert [t.sibling_ordinal for t in tiers] == [2, 3]

    tiers = await catalog_service.replace_sibling_tiers(
        db_session, school.id, [SiblingDiscountTierItem(sibling_ordinal=2, discount_percent=Decimal("15"))]
    )
    assert [(t.sibling_ordinal, t.discount_percent) for t in tiers] == [(2, Decimal("15.00"))]

    with pytest.raises(ValidationError):
        await catalog_service.replace_sibling_tiers(
            db_session,
            school.id,
            [
                SiblingDiscountTierItem(sibling_ordinal=2, discount_percent=Decimal("5")),
                SiblingDiscountTierItem(sibling_ordinal=2, discount_percent=Decimal("8")),
            ],
        )


@pytest.mark.asyncio
async def test_sibling_tier_percent_out_of_range_rejected(client: AsyncClient, admin_headers) -> None:
    response = await client.put(
        "/api/v1/fees/sibling-discounts",
        json={"tiers": [{"sibling_ordinal": 2, "discount_percent": 120}]},
        headers=admin_headers,
    )
    assert response.status_code == 400
    assert response.json()["error"]["kind"] == "validation"


@pytest.mark.asyncio
async def test_settings_defaults_then_update(client: AsyncClient, admin_headers) -> None:
    response = await client.get("/api/v1/fees/settings", headers=admin_headers)
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["late_fee_type"] == "fixed"
    assert Decimal(data["late_fee_value"]) == Decimal("0")
    assert data["grace_days"] == 0
    assert data["discount_forfeiture_enabled"] is True

    response = await client.put(
        "/api/v1/fees/settings",
        json={"late_fee_value": "5.00", "grace_days": 3},
        headers=admin_headers,
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert Decimal(data["late_fee_value"]) == Decimal("5.00")
    assert data["grace_days"] == 3


@pytest.mark.asyncio
async def test_override_crud(client: AsyncClient, db_session: AsyncSession, school, grade, admin_headers) -> None:
    school_id = school.id
    cat = await add_category(db_session, school_id)
    student = await add_student(db_session, school_id, grade.id, "Ravi")
    payload = {
        "student_id": str(student.id),
        "fee_category_id": str(cat.id),
        "academic_year": ACADEMIC_YEAR,
        "override_amount": "40.00",
        "reason": "Staff child",
    }
    created = await client.post("/api/v1/fees/overrides", json=payload, headers=admin_headers)
    assert created.status_code == 201
    override_id = created.json()["data"]["id"]

    dup = await client.post("/api/v1/fees/overrides", json=payload, headers=admin_headers)
    assert dup.status_code == 409

    updated = await client.put(
        f"/api/v1/fees/overrides/{override_id}", json={"override_amount": "35.00"}, headers=admin_headers
    )
    assert Decimal(updated.json()["data"]["override_amount"]) == Decimal("35.00")

    deleted = await client.delete(f"/api/v1/fees/overrides/{override_id}", headers=admin_headers)
    assert deleted.json()["data"]["deleted"] is True
    with pytest.raises(NotFoundError):
        await catalog_service.get_override(db_session, school_id, UUID(override_id))
