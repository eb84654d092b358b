from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """Success envelope shared by every endpoint: {success: true, data: ...}."""

    success: bool = True
    data: T


class Page(BaseModel, Generic[T]):
    items: List[T]
    total: int
    page: int
    limit: int


def error_body(kind: str, message: str, field: Optional[str] = None) -> Dict[str, Any]:
    error: Dict[str, Any] = {"kind": kind, "message": message}
    if field:
        error["field"] = field
    return {"success": False, "error": error}
