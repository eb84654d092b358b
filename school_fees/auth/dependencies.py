import secrets
from typing import Optional
from uuid import UUID

from fastapi import Depends, Header
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError

from school_fees.auth.schemas import CurrentUser, TenantContext
from school_fees.auth.security import decode_access_token
from school_fees.core.config import settings
from school_fees.core.exceptions import UnauthorizedError


oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login", auto_error=False)


def _parse_uuid(value: Optional[str]) -> Optional[UUID]:
    if not value:
        return None
    try:
        return UUID(str(value))
    except ValueError:
        return None


async def get_current_user(token: Optional[str] = Depends(oauth2_scheme)) -> CurrentUser:
    """Resolve the authenticated actor from the access token. Identity is issued by the auth service."""
    if not token:
        raise UnauthorizedError("Could not validate credentials")
    try:
        payload = decode_access_token(token)
    except JWTError:
        raise UnauthorizedError("Could not validate credentials")

    user_id = _parse_uuid(payload.get("user_id") or payload.get("sub"))
    school_id = _parse_uuid(payload.get("school_id"))
    role = payload.get("role")
    if not user_id or not school_id or not role:
        raise UnauthorizedError("Could not validate credentials")

    return CurrentUser(
        id=user_id,
        school_id=school_id,
        campus_id=_parse_uuid(payload.get("campus_id")),
        role=role,
    )


async def resolve_tenant(current_user: CurrentUser = Depends(get_current_user)) -> TenantContext:
    """
    Single place where the effective school id is decided: a campus id, when the actor is
    bound to one, takes precedence over the base school id.
    """
    effective_school_id = current_user.campus_id or current_user.school_id
    if effective_school_id is None:
        raise UnauthorizedError("No school associated with this account")
    return TenantContext(school_id=effective_school_id, actor_id=current_user.id, role=current_user.role)


async def require_cron_secret(x_cron_secret: Optional[str] = Header(None)) -> None:
    """Gate for scheduler-triggered batch endpoints."""
    expected = settings.cron_secret
    if not expected or not x_cron_secret or not secrets.compare_digest(x_cron_secret, expected):
        raise UnauthorizedError("Unauthorized")
