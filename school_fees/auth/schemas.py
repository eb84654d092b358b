from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class CurrentUser(BaseModel):
    """Authenticated actor as asserted by the access token."""

    id: UUID
    school_id: UUID
    campus_id: Optional[UUID] = None
    role: str


class TenantContext(BaseModel):
    """Resolved per-request tenant. school_id is the effective (campus-aware) school id."""

    school_id: UUID
    actor_id: UUID
    role: str
