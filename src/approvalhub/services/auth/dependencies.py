"""Authentication dependencies for FastAPI."""

import logging
from typing import Annotated

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from approvalhub.core.errors import ForbiddenError, RateLimitedError, UnauthorizedError
from approvalhub.services.auth.gate import (
    ServiceAuthContext,
    ServiceAuthGate,
    get_auth_gate,
)
from approvalhub.services.security.rate_limiter import RateLimiter, get_rate_limiter

logger = logging.getLogger(__name__)

# Security scheme
bearer_scheme = HTTPBearer(auto_error=False)


async def get_service_context(
    request: Request,
    credentials: Annotated[
        HTTPAuthorizationCredentials | None, Depends(bearer_scheme)
    ],
    gate: Annotated[ServiceAuthGate, Depends(get_auth_gate)],
    limiter: Annotated[RateLimiter, Depends(get_rate_limiter)],
) -> ServiceAuthContext:
    """Authenticate the calling service and apply its rate limit.

    Raises:
        UnauthorizedError: If the credential is missing or invalid
        RateLimitedError: If the service exceeded its per-minute quota
    """
    context = await gate.authenticate(credentials.credentials if credentials else None)
    if context is None:
        raise UnauthorizedError("Invalid or missing service token")

    request.state.service_id = context.service_id

    result = limiter.check(context.service_id, context.rate_limit)
    if not result.allowed:
        logger.warning(
            f"Rate limit exceeded for service {context.service_id}",
            extra={"service_id": context.service_id, "limit": result.limit},
        )
        raise RateLimitedError(
            data={"retryAfter": round(result.retry_after or 0, 3), "limit": result.limit}
        )
    return context


ServiceContext = Annotated[ServiceAuthContext, Depends(get_service_context)]


def require_permission(permission: str):
    """Dependency factory for permission checks.

    Args:
        permission: Required permission string

    Returns:
        Dependency function
    """

    async def permission_checker(context: ServiceContext) -> ServiceAuthContext:
        if not context.has_permission(permission):
            logger.info(
                f"Service {context.service_id} lacks permission {permission}",
                extra={"service_id": context.service_id, "permission": permission},
            )
            raise ForbiddenError("Insufficient permissions")
        return context

    return permission_checker
