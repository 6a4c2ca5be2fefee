"""Response envelope helpers."""

from typing import Any

from fastapi import status as http_status
from fastapi.responses import JSONResponse

from approvalhub.core.schemas import APIResponse, PaginationMeta


def envelope(
    data: Any = None,
    *,
    message: str | None = None,
    pagination: PaginationMeta | None = None,
    status_code: int = http_status.HTTP_200_OK,
) -> JSONResponse:
    """Successful response wrapped in the standard envelope."""
    body = APIResponse(data=data, message=message, pagination=pagination)
    return JSONResponse(status_code=status_code, content=body.render())


def error_envelope(
    error: str, *, status_code: int, data: Any = None
) -> JSONResponse:
    """Error response wrapped in the standard envelope."""
    body = APIResponse(success=False, error=error, data=data)
    return JSONResponse(status_code=status_code, content=body.render())


def paginated(items: list[Any], total: int, limit: int, offset: int) -> JSONResponse:
    """List response with pagination metadata."""
    return envelope(items, pagination=PaginationMeta.build(total, limit, offset))
