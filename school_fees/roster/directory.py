"""
Roster collaborator consumed by the fee engine: active schools, active students in scope,
family grouping and current academic year. The engine depends only on RosterDirectory;
SqlRosterDirectory is the default implementation over the roster tables.
"""

from abc import ABC, abstractmethod
from datetime import date
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from school_fees.core.models import AcademicYear, School, Student


class RosterSchool(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str


class RosterStudent(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    school_id: UUID
    first_name: str
    last_name: str = ""
    student_number: Optional[str] = None
    grade_level_id: Optional[UUID] = None
    section_id: Optional[UUID] = None
    family_key: Optional[str] = None
    enrolled_on: date
    is_active: bool = True


class RosterDirectory(ABC):
    @abstractmethod
    async def get_student(self, school_id: UUID, student_id: UUID) -> Optional[RosterStudent]:
        ...

    @abstractmethod
    async def list_active_students(
        self,
        school_id: UUID,
        grade_level_id: Optional[UUID] = None,
        section_id: Optional[UUID] = None,
    ) -> List[RosterStudent]:
        ...

    @abstractmethod
    async def list_family(self, school_id: UUID, family_key: str) -> List[RosterStudent]:
        """Active students of the school sharing the family key."""

    @abstractmethod
    async def list_active_schools(self) -> List[RosterSchool]:
        ...

    @abstractmethod
    async def current_academic_year(self, school_id: UUID) -> Optional[str]:
        ...


class SqlRosterDirectory(RosterDirectory):
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get_student(self, school_id: UUID, student_id: UUID) -> Optional[RosterStudent]:
        student = (
            await self.db.execute(
                select(Student).where(Student.id == student_id, Student.school_id == school_id)
            )
        ).scalar_one_or_none()
        return RosterStudent.model_validate(student) if student else None

    async def list_active_students(
        self,
        school_id: UUID,
        grade_level_id: Optional[UUID] = None,
        section_id: Optional[UUID] = None,
    ) -> List[RosterStudent]:
        stmt = select(Student).where(Student.school_id == school_id, Student.is_active.is_(True))
        if grade_level_id is not None:
            stmt = stmt.where(Student.grade_level_id == grade_level_id)
        if section_id is not None:
            stmt = stmt.where(Student.section_id == section_id)
        stmt = stmt.order_by(Student.enrolled_on, Student.id)
        result = await self.db.execute(stmt)
        return [RosterStudent.model_validate(s) for s in result.scalars().all()]

    async def list_family(self, school_id: UUID, family_key: str) -> List[RosterStudent]:
        result = await self.db.execute(
            select(Student).where(
                Student.school_id == school_id,
                Student.family_key == family_key,
                Student.is_active.is_(True),
            )
        )
        return [RosterStudent.model_validate(s) for s in result.scalars().all()]

    async def list_active_schools(self) -> List[RosterSchool]:
        result = await self.db.execute(
            select(School).where(School.is_active.is_(True)).order_by(School.name)
        )
        return [RosterSchool.model_validate(s) for s in result.scalars().all()]

    async def current_academic_year(self, school_id: UUID) -> Optional[str]:
        return (
            await self.db.execute(
                select(AcademicYear.name)
                .where(AcademicYear.school_id == school_id, AcademicYear.is_current.is_(True))
                .limit(1)
            )
        ).scalar_one_or_none()
