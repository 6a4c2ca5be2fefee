"""Health check endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse, Response

from approvalhub.api.responses import envelope
from approvalhub.services.health import HealthChecker, HealthStatus, get_health_checker

router = APIRouter(prefix="/health", tags=["Health"])

Checker = Annotated[HealthChecker, Depends(get_health_checker)]


@router.get("")
async def health(checker: Checker) -> JSONResponse:
    """Overall health with per-component detail. No authentication."""
    result = await checker.check_all()
    code = (
        status.HTTP_503_SERVICE_UNAVAILABLE
        if result.status == HealthStatus.UNHEALTHY
        else status.HTTP_200_OK
    )
    return envelope(result.model_dump(mode="json"), status_code=code)


@router.head("")
async def health_head(checker: Checker) -> Response:
    """Liveness check without a body."""
    result = await checker.check_all()
    if result.status == HealthStatus.UNHEALTHY:
        return Response(status_code=status.HTTP_503_SERVICE_UNAVAILABLE)
    return Response(status_code=status.HTTP_200_OK)
