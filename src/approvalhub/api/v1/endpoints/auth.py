"""Service credential validation endpoints."""

import logging
from typing import Any

from fastapi import APIRouter, Body, Query
from fastapi.responses import JSONResponse
from pydantic import Field

from approvalhub.api.responses import envelope
from approvalhub.core.schemas import CamelModel
from approvalhub.services.auth import ServiceAuthContext, ServiceContext

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["Authentication"])


class ValidateRequest(CamelModel):
    """Optional permission to check."""

    required_permission: str | None = Field(
        None, description="Permission to check for the calling service"
    )


def _describe(context: ServiceAuthContext, permission: str | None) -> dict[str, Any]:
    data: dict[str, Any] = {
        "valid": True,
        "service": {
            "id": context.service_id,
            "name": context.service_name,
            "permissions": list(context.permissions),
            "rateLimit": context.rate_limit,
        },
    }
    if permission:
        data["requiredPermission"] = permission
        data["hasPermission"] = context.has_permission(permission)
    return data


@router.get("/validate")
async def get_service_info(
    context: ServiceContext,
    required_permission: str | None = Query(
        None, alias="requiredPermission", description="Permission to check"
    ),
) -> JSONResponse:
    """Describe the calling service identity."""
    return envelope(_describe(context, required_permission))


@router.post("/validate")
async def validate_service_token(
    context: ServiceContext,
    request: ValidateRequest | None = Body(None),
) -> JSONResponse:
    """Validate the bearer credential, optionally probing one permission."""
    permission = request.required_permission if request else None
    return envelope(_describe(context, permission))
