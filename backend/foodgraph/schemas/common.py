"""Common API response schemas."""

from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """Consistent JSON envelope for API responses."""

    data: T


class ApiErrorDetail(BaseModel):
    """Error payload carried in HTTPException details."""

    kind: str
    message: str
    batch_id: str | None = None
    mention_count: int | None = None
