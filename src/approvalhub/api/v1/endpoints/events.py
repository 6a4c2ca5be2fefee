"""Event log endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse

from approvalhub.api.responses import envelope, paginated
from approvalhub.services.auth import ServiceAuthContext, require_permission
from approvalhub.services.webhook import WebhookService, get_webhook_service
from approvalhub.services.webhook.schemas import EventCreate

router = APIRouter(prefix="/events", tags=["Events"])

Webhooks = Annotated[WebhookService, Depends(get_webhook_service)]


@router.get("")
async def list_events(
    service: Annotated[ServiceAuthContext, Depends(require_permission("events:read"))],
    webhooks: Webhooks,
    event_type: str | None = Query(None, alias="eventType"),
    approval_id: str | None = Query(None, alias="approvalId"),
    limit: int = Query(20, ge=1),
    offset: int = Query(0, ge=0),
) -> JSONResponse:
    """List events with per-event delivery stats.

    Requires: events:read
    """
    views, total, limit, offset = await webhooks.list_events(
        service, event_type=event_type, approval_id=approval_id, limit=limit, offset=offset
    )
    return paginated(views, total, limit, offset)


@router.post("")
async def create_event(
    service: Annotated[ServiceAuthContext, Depends(require_permission("events:create"))],
    webhooks: Webhooks,
    request: EventCreate,
) -> JSONResponse:
    """Record an event manually and queue it for delivery.

    Requires: events:create
    """
    view = await webhooks.create_event(service, request)
    return envelope(
        view, message="Event created successfully", status_code=status.HTTP_201_CREATED
    )
