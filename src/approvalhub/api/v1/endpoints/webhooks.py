"""Webhook registration endpoints."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse

from approvalhub.api.responses import envelope, paginated
from approvalhub.services.auth import ServiceAuthContext, require_permission
from approvalhub.services.webhook import (
    WebhookDispatcher,
    WebhookService,
    get_webhook_dispatcher,
    get_webhook_service,
)
from approvalhub.services.webhook.schemas import DeliveryStatus, WebhookCreate, WebhookUpdate

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/webhooks", tags=["Webhooks"])

Webhooks = Annotated[WebhookService, Depends(get_webhook_service)]
Reader = Annotated[ServiceAuthContext, Depends(require_permission("webhooks:read"))]
Creator = Annotated[ServiceAuthContext, Depends(require_permission("webhooks:create"))]
Updater = Annotated[ServiceAuthContext, Depends(require_permission("webhooks:update"))]
Deleter = Annotated[ServiceAuthContext, Depends(require_permission("webhooks:delete"))]
Manager = Annotated[ServiceAuthContext, Depends(require_permission("webhooks:manage"))]


@router.get("")
async def list_webhooks(
    service: Reader,
    webhooks: Webhooks,
    is_active: bool | None = Query(None, alias="isActive"),
    limit: int = Query(20, ge=1),
    offset: int = Query(0, ge=0),
) -> JSONResponse:
    """List registrations with seven-day delivery stats.

    Requires: webhooks:read
    """
    views, total, limit, offset = await webhooks.list_webhooks(
        service, is_active=is_active, limit=limit, offset=offset
    )
    return paginated(views, total, limit, offset)


@router.post("")
async def create_webhook(
    service: Creator, webhooks: Webhooks, request: WebhookCreate
) -> JSONResponse:
    """Register a callback URL. The signing secret is returned once.

    Requires: webhooks:create
    """
    view = await webhooks.register(service, request)
    return envelope(
        view, message="Webhook created successfully", status_code=status.HTTP_201_CREATED
    )


@router.get("/{webhook_id}")
async def get_webhook(webhook_id: str, service: Reader, webhooks: Webhooks) -> JSONResponse:
    """Requires: webhooks:read"""
    return envelope(await webhooks.get_webhook(service, webhook_id))


@router.put("/{webhook_id}")
async def update_webhook(
    webhook_id: str, service: Updater, webhooks: Webhooks, request: WebhookUpdate
) -> JSONResponse:
    """Requires: webhooks:update"""
    view = await webhooks.update_webhook(service, webhook_id, request)
    return envelope(view, message="Webhook updated successfully")


@router.delete("/{webhook_id}")
async def delete_webhook(webhook_id: str, service: Deleter, webhooks: Webhooks) -> JSONResponse:
    """Requires: webhooks:delete"""
    await webhooks.delete_webhook(service, webhook_id)
    return envelope(message="Webhook deleted successfully")


@router.post("/{webhook_id}/test")
async def test_webhook(
    webhook_id: str,
    service: Manager,
    dispatcher: Annotated[WebhookDispatcher, Depends(get_webhook_dispatcher)],
) -> JSONResponse:
    """Send a signed test event synchronously and report the outcome.

    Requires: webhooks:manage
    """
    result = await dispatcher.test(service, webhook_id)
    message = (
        "Test webhook delivered successfully"
        if result.status == DeliveryStatus.SUCCESS
        else "Test webhook delivery failed"
    )
    return envelope(result, message=message)
