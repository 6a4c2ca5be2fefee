"""Event log writes and hand-off to the delivery queue."""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from approvalhub.models.webhook import WebhookEvent
from approvalhub.repositories.webhook import WebhookEventRepository

logger = logging.getLogger(__name__)

EventSink = Callable[[str], None]


def build_event_payload(
    event_type: str,
    service_id: str,
    service_name: str | None,
    approval: dict[str, Any] | None = None,
    **extra: Any,
) -> dict[str, Any]:
    """Standard payload envelope for a workflow event.

    Args:
        event_type: Event type string
        service_id: Owning service identity
        service_name: Owning service name
        approval: Snapshot of the approval, if the event concerns one
        extra: Additional top-level fields

    Returns:
        JSON-serializable payload
    """
    payload: dict[str, Any] = {
        "eventType": event_type,
        "serviceId": service_id,
        "serviceName": service_name,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if approval is not None:
        payload["approval"] = approval
    payload.update(extra)
    return payload


async def record_event(
    session: AsyncSession,
    *,
    service_id: str,
    event_type: str,
    payload: dict[str, Any],
    approval_id: str | None = None,
) -> WebhookEvent:
    """Insert an event row in the caller's transaction.

    Args:
        session: Open session; the caller commits
        service_id: Owning service identity
        event_type: Event type string
        payload: Event payload
        approval_id: Related approval, if any

    Returns:
        The flushed WebhookEvent
    """
    return await WebhookEventRepository(session).create({
        "service_id": service_id,
        "event_type": event_type,
        "approval_id": approval_id,
        "payload": payload,
    })


def enqueue_delivery(event_id: str) -> None:
    """Queue an event for webhook delivery on the Celery high queue."""
    from approvalhub.tasks.webhook_tasks import deliver_webhook_event

    deliver_webhook_event.delay(event_id)


def publish_events(sink: EventSink, event_ids: Iterable[str]) -> None:
    """Hand committed events to the sink.

    Delivery is best-effort from the caller's point of view; a failing
    sink is logged and the events stay in the log for manual re-dispatch.
    """
    for event_id in event_ids:
        try:
            sink(event_id)
        except Exception:
            logger.exception(
                f"Failed to enqueue webhook delivery for event {event_id}",
                extra={"event_id": event_id},
            )
