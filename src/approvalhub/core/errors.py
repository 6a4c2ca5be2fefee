"""Service error taxonomy.

Services raise these; the API layer renders them into the response envelope
with the matching HTTP status.
"""

from typing import Any


class ServiceError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(self, message: str | None = None, *, data: Any = None):
        self.message = message or self.default_message
        self.data = data
        super().__init__(self.message)


class BadRequestError(ServiceError):
    status_code = 400
    default_message = "Bad request"


class UnauthorizedError(ServiceError):
    status_code = 401
    default_message = "Invalid or missing service token"


class ForbiddenError(ServiceError):
    status_code = 403
    default_message = "Insufficient permissions"


class NotFoundError(ServiceError):
    """Resource is absent or owned by another service identity."""

    status_code = 404
    default_message = "Resource not found"


class ConflictError(ServiceError):
    status_code = 409
    default_message = "Conflict"


class RateLimitedError(ServiceError):
    status_code = 429
    default_message = "Rate limit exceeded"


class InternalError(ServiceError):
    status_code = 500
