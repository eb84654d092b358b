import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")
os.environ.setdefault("CRON_SECRET", "cron-test-secret")

from datetime import date
from decimal import Decimal
from typing import AsyncGenerator, Dict, List, Optional
from uuid import UUID, uuid4

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from school_fees.auth.security import create_access_token
from school_fees.core.models import (
    AcademicYear,
    FeeCategory,
    FeeSettings,
    FeeStructure,
    GradeLevel,
    School,
    SiblingDiscountTier,
    Student,
)
from school_fees.db.session import Base, get_db
from school_fees.main import app
from school_fees.roster.directory import RosterDirectory, RosterSchool, RosterStudent


TEST_DATABASE_URL = "sqlite+aiosqlite://"
ACADEMIC_YEAR = "2025-2026"
TODAY = date(2025, 9, 10)


@pytest.fixture()
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Fresh in-memory database per test; also overrides the FastAPI session dependency."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async_session = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    async with async_session() as session:

        async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
            yield session

        app.dependency_overrides[get_db] = override_get_db
        yield session

    app.dependency_overrides.clear()
    await engine.dispose()


@pytest.fixture()
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture()
async def school(db_session: AsyncSession) -> School:
    s = School(name="Green Valley School", is_active=True)
    db_session.add(s)
    await db_session.flush()
    db_session.add(AcademicYear(school_id=s.id, name=ACADEMIC_YEAR, is_current=True))
    await db_session.commit()
    return s


@pytest.fixture()
async def grade(db_session: AsyncSession, school: School) -> GradeLevel:
    return await add_grade(db_session, school.id, "Grade 1", 1)


def auth_headers(school_id: UUID, role: str = "ADMIN", user_id: Optional[UUID] = None) -> Dict[str, str]:
    token = create_access_token(
        subject={"user_id": str(user_id or uuid4()), "school_id": str(school_id), "role": role},
        expires_minutes=30,
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def admin_headers(school: School) -> Dict[str, str]:
    return auth_headers(school.id)


# --- factories ---
async def add_grade(db: AsyncSession, school_id: UUID, name: str, order: int = 0) -> GradeLevel:
    g = GradeLevel(school_id=school_id, name=name, display_order=order)
    db.add(g)
    await db.commit()
    return g


async def add_student(
    db: AsyncSession,
    school_id: UUID,
    grade_level_id: Optional[UUID],
    first_name: str,
    family_key: Optional[str] = None,
    enrolled_on: date = date(2024, 4, 1),
    is_active: bool = True,
) -> Student:
    s = Student(
        school_id=school_id,
        grade_level_id=grade_level_id,
        first_name=first_name,
        last_name="Test",
        student_number=f"S-{first_name.upper()}",
        family_key=family_key,
        enrolled_on=enrolled_on,
        is_active=is_active,
    )
    db.add(s)
    await db.commit()
    return s


async def add_category(
    db: AsyncSession,
    school_id: UUID,
    code: str = "TUITION",
    name: str = "Tuition",
    is_discountable: bool = True,
) -> FeeCategory:
    c = FeeCategory(
        school_id=school_id,
        name=name,
        code=code,
        is_mandatory=True,
        is_discountable=is_discountable,
        display_order=0,
        is_active=True,
    )
    db.add(c)
    await db.commit()
    return c


async def add_structure(
    db: AsyncSession,
    school_id: UUID,
    category_id: UUID,
    grade_level_id: Optional[UUID],
    amount: str = "100.00",
    period_type: str = "monthly",
    due_date: Optional[date] = None,
    due_day: Optional[int] = None,
    period_name: Optional[str] = None,
    academic_year: str = ACADEMIC_YEAR,
) -> FeeStructure:
    fs = FeeStructure(
        school_id=school_id,
        academic_year=academic_year,
        grade_level_id=grade_level_id,
        fee_category_id=category_id,
        period_type=period_type,
        period_name=period_name,
        amount=Decimal(amount),
        due_date=due_date,
        due_day=due_day,
        is_active=True,
    )
    db.add(fs)
    await db.commit()
    return fs


async def add_tiers(db: AsyncSession, school_id: UUID, tiers: Dict[int, str]) -> None:
    for ordinal, percent in tiers.items():
        db.add(SiblingDiscountTier(school_id=school_id, sibling_ordinal=ordinal, discount_percent=Decimal(percent)))
    await db.commit()


async def set_fee_settings(db: AsyncSession, school_id: UUID, **values) -> FeeSettings:
    row = FeeSettings(school_id=school_id, **values)
    db.add(row)
    await db.commit()
    return row


class InMemoryRoster(RosterDirectory):
    """Roster snapshot held in memory; stands in for the roster service in unit tests."""

    def __init__(
        self,
        students: List[RosterStudent],
        schools: Optional[List[RosterSchool]] = None,
        academic_year: Optional[str] = ACADEMIC_YEAR,
    ) -> None:
        self.students = students
        self.schools = schools or []
        self.academic_year = academic_year

    async def get_student(self, school_id, student_id):
        for s in self.students:
            if s.id == student_id and s.school_id == school_id:
                return s
        return None

    async def list_active_students(self, school_id, grade_level_id=None, section_id=None):
        return [
            s
            for s in self.students
            if s.school_id == school_id
            and s.is_active
            and (grade_level_id is None or s.grade_level_id == grade_level_id)
            and (section_id is None or s.section_id == section_id)
        ]

    async def list_family(self, school_id, family_key):
        return [s for s in self.students if s.school_id == school_id and s.family_key == family_key and s.is_active]

    async def list_active_schools(self):
        return self.schools

    async def current_academic_year(self, school_id):
        return self.academic_year
