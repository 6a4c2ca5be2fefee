"""Shared response schemas."""

from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

T = TypeVar("T")


class CamelModel(BaseModel):
    """Base schema accepting and emitting camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


class PaginationMeta(CamelModel):
    """Pagination metadata."""

    total: int = Field(..., description="Total matching items")
    limit: int = Field(..., description="Page size")
    offset: int = Field(..., description="Items skipped")
    has_more: bool = Field(..., description="Whether more items follow")

    @classmethod
    def build(cls, total: int, limit: int, offset: int) -> "PaginationMeta":
        return cls(total=total, limit=limit, offset=offset, has_more=offset + limit < total)


class APIResponse(CamelModel, Generic[T]):
    """Response envelope shared by every endpoint."""

    success: bool = True
    data: T | None = None
    error: str | None = None
    message: str | None = None
    pagination: PaginationMeta | None = None

    def render(self) -> dict[str, Any]:
        """JSON-ready dict with camelCase keys; empty top-level fields dropped."""
        data = self.model_dump(mode="json", by_alias=True)
        return {k: v for k, v in data.items() if v is not None or k == "success"}
