"""Webhook delivery tasks.

Handles outbound callbacks in background:
- Delivery of committed workflow events to subscribers
- Periodic sweep re-attempting failed deliveries
"""

from typing import Any

from approvalhub.services.webhook.dispatcher import get_webhook_dispatcher
from approvalhub.tasks.base import async_task, get_task_logger

logger = get_task_logger("webhook_tasks")


@async_task(queue="high", max_retries=3)
async def deliver_webhook_event(self, event_id: str) -> dict[str, Any]:
    """Deliver one event to every subscribed webhook.

    @param event_id - Committed WebhookEvent ID
    @returns Summary of attempts
    """
    results = await get_webhook_dispatcher().dispatch(event_id)
    delivered = sum(1 for r in results if r.status.value == "SUCCESS")
    logger.info(
        f"Event {event_id}: {delivered}/{len(results)} deliveries succeeded",
        extra={"event_id": event_id},
    )
    return {
        "event_id": event_id,
        "attempts": len(results),
        "delivered": delivered,
    }


@async_task(queue="normal", max_retries=0)
async def retry_failed_deliveries(self) -> dict[str, Any]:
    """Re-attempt failed deliveries whose retry time has passed.

    @returns Number of attempts made
    """
    attempted = await get_webhook_dispatcher().retry_due()
    if attempted:
        logger.info(f"Retried {attempted} webhook deliveries")
    return {"attempted": attempted}
