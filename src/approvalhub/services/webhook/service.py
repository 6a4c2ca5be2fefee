"""Webhook registrations and the event log."""

import logging
from typing import Any, Callable
from urllib.parse import urlsplit

from sqlalchemy.ext.asyncio import AsyncSession

from approvalhub.core.errors import BadRequestError, NotFoundError
from approvalhub.infrastructure.database import AsyncSessionLocal
from approvalhub.models.webhook import ServiceWebhook, WebhookEvent
from approvalhub.repositories.approval import ServiceApprovalRepository
from approvalhub.repositories.webhook import (
    ServiceWebhookRepository,
    WebhookDeliveryRepository,
    WebhookEventRepository,
    summarize_statuses,
)
from approvalhub.services.auth.gate import ServiceAuthContext
from approvalhub.services.stats.service import webhook_delivery_stats
from approvalhub.services.webhook.events import (
    EventSink,
    build_event_payload,
    enqueue_delivery,
    publish_events,
    record_event,
)
from approvalhub.services.webhook.schemas import (
    EVENT_TYPE_VALUES,
    MAX_RETRY_COUNT,
    MAX_TIMEOUT_SECONDS,
    MIN_RETRY_COUNT,
    MIN_TIMEOUT_SECONDS,
    DeliveryStats,
    DeliveryView,
    EventCreate,
    EventView,
    WebhookCreate,
    WebhookUpdate,
    WebhookView,
)
from approvalhub.services.webhook.signing import generate_secret

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100
RECENT_DELIVERIES = 50


def validate_url(url: str | None) -> str:
    """Require an absolute http(s) URL with a host."""
    if not url or not url.strip():
        raise BadRequestError("URL is required")
    parts = urlsplit(url.strip())
    if parts.scheme not in ("http", "https") or not parts.hostname:
        raise BadRequestError("Invalid URL format")
    return url.strip()


def validate_events(events: list[str] | None) -> list[str]:
    """Require a non-empty subset of the known event types."""
    if not events:
        raise BadRequestError("At least one event type is required")
    invalid = [e for e in events if e not in EVENT_TYPE_VALUES]
    if invalid:
        raise BadRequestError(f"Invalid event types: {', '.join(invalid)}")
    return list(dict.fromkeys(events))


def validate_retry_count(value: int) -> int:
    if not MIN_RETRY_COUNT <= value <= MAX_RETRY_COUNT:
        raise BadRequestError(
            f"Retry count must be between {MIN_RETRY_COUNT} and {MAX_RETRY_COUNT}"
        )
    return value


def validate_timeout(value: int) -> int:
    if not MIN_TIMEOUT_SECONDS <= value <= MAX_TIMEOUT_SECONDS:
        raise BadRequestError(
            f"Timeout must be between {MIN_TIMEOUT_SECONDS} and {MAX_TIMEOUT_SECONDS} seconds"
        )
    return value


def _page(limit: int, offset: int) -> tuple[int, int]:
    return max(1, min(limit, MAX_PAGE_SIZE)), max(0, offset)


class WebhookService:
    """Registration CRUD and the per-service event log."""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] | None = None,
        event_sink: EventSink | None = None,
    ):
        """Initialize webhook service.

        Args:
            session_factory: Async session factory (defaults to AsyncSessionLocal)
            event_sink: Receives ids of manually created events
        """
        self._session_factory = session_factory or AsyncSessionLocal
        self.event_sink = event_sink or enqueue_delivery

    @staticmethod
    def _view(webhook: ServiceWebhook, **extra: Any) -> WebhookView:
        return WebhookView(
            id=webhook.id,
            name=webhook.name,
            url=webhook.url,
            events=list(webhook.events or []),
            retry_count=webhook.retry_count,
            timeout=webhook.timeout,
            is_active=webhook.is_active,
            created_at=webhook.created_at,
            updated_at=webhook.updated_at,
            **extra,
        )

    # -------------------------------------------------------------------------
    # Registrations
    # -------------------------------------------------------------------------

    async def register(self, service: ServiceAuthContext, data: WebhookCreate) -> WebhookView:
        """Register a webhook. The secret is only returned here.

        Raises:
            BadRequestError: On an invalid name, URL, event list or limit
        """
        if not data.name or not data.name.strip():
            raise BadRequestError("Name is required")
        url = validate_url(data.url)
        events = validate_events(data.events)
        retry_count = validate_retry_count(data.retry_count)
        timeout = validate_timeout(data.timeout)

        async with self._session_factory() as session:
            webhook = await ServiceWebhookRepository(session).create({
                "service_id": service.service_id,
                "name": data.name.strip(),
                "url": url,
                "events": events,
                "secret": generate_secret(),
                "retry_count": retry_count,
                "timeout": timeout,
                "is_active": True,
            })
            await session.commit()

        logger.info(
            f"Registered webhook {webhook.id} for {len(events)} event type(s)",
            extra={"service_id": service.service_id, "webhook_id": webhook.id},
        )
        return self._view(webhook, secret=webhook.secret)

    async def list_webhooks(
        self,
        service: ServiceAuthContext,
        *,
        is_active: bool | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[WebhookView], int, int, int]:
        """List registrations with recent delivery stats.

        Returns:
            Tuple of (views, total, effective limit, effective offset)
        """
        limit, offset = _page(limit, offset)
        async with self._session_factory() as session:
            rows, total = await ServiceWebhookRepository(session).list_for_service(
                service.service_id, is_active=is_active, skip=offset, limit=limit
            )
            views = [
                self._view(row, stats=await webhook_delivery_stats(session, row.id))
                for row in rows
            ]
        return views, total, limit, offset

    async def get_webhook(self, service: ServiceAuthContext, webhook_id: str) -> WebhookView:
        """Get a registration with stats and its latest deliveries.

        Raises:
            NotFoundError: If absent or foreign
        """
        async with self._session_factory() as session:
            webhook = await ServiceWebhookRepository(session).get_owned(
                webhook_id, service.service_id
            )
            if webhook is None:
                raise NotFoundError("Webhook not found")
            deliveries = await WebhookDeliveryRepository(session).get_recent(
                webhook.id, RECENT_DELIVERIES
            )
            return self._view(
                webhook,
                stats=await webhook_delivery_stats(session, webhook.id),
                recent_deliveries=[DeliveryView.model_validate(d) for d in deliveries],
            )

    async def update_webhook(
        self, service: ServiceAuthContext, webhook_id: str, data: WebhookUpdate
    ) -> WebhookView:
        """Partially update a registration. The secret is never regenerated.

        Raises:
            NotFoundError: If absent or foreign
            BadRequestError: On invalid values
        """
        changes: dict[str, Any] = {}
        provided = data.model_dump(exclude_unset=True)
        if "name" in provided:
            if not data.name or not data.name.strip():
                raise BadRequestError("Name cannot be empty")
            changes["name"] = data.name.strip()
        if "url" in provided:
            changes["url"] = validate_url(data.url)
        if "events" in provided:
            changes["events"] = validate_events(data.events)
        if data.retry_count is not None:
            changes["retry_count"] = validate_retry_count(data.retry_count)
        if data.timeout is not None:
            changes["timeout"] = validate_timeout(data.timeout)
        if data.is_active is not None:
            changes["is_active"] = data.is_active

        async with self._session_factory() as session:
            repo = ServiceWebhookRepository(session)
            webhook = await repo.get_owned(webhook_id, service.service_id)
            if webhook is None:
                raise NotFoundError("Webhook not found")
            if changes:
                await repo.update(webhook, changes)
                await session.refresh(webhook)
            await session.commit()

        logger.info(
            f"Updated webhook {webhook_id}: {sorted(changes)}",
            extra={"service_id": service.service_id, "webhook_id": webhook_id},
        )
        return self._view(webhook)

    async def delete_webhook(self, service: ServiceAuthContext, webhook_id: str) -> None:
        """Delete a registration and its delivery history.

        Raises:
            NotFoundError: If absent or foreign
        """
        async with self._session_factory() as session:
            repo = ServiceWebhookRepository(session)
            webhook = await repo.get_owned(webhook_id, service.service_id)
            if webhook is None:
                raise NotFoundError("Webhook not found")
            await WebhookDeliveryRepository(session).delete_for_webhook(webhook.id)
            await repo.delete(webhook)
            await session.commit()

        logger.info(
            f"Deleted webhook {webhook_id}",
            extra={"service_id": service.service_id, "webhook_id": webhook_id},
        )

    # -------------------------------------------------------------------------
    # Event log
    # -------------------------------------------------------------------------

    async def list_events(
        self,
        service: ServiceAuthContext,
        *,
        event_type: str | None = None,
        approval_id: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[EventView], int, int, int]:
        """List the service's events with per-event delivery stats.

        Returns:
            Tuple of (views, total, effective limit, effective offset)
        """
        limit, offset = _page(limit, offset)
        async with self._session_factory() as session:
            rows, total = await WebhookEventRepository(session).list_for_service(
                service.service_id,
                event_type=event_type,
                approval_id=approval_id,
                skip=offset,
                limit=limit,
            )
            counts = await WebhookDeliveryRepository(session).status_counts_by_event(
                [row.id for row in rows]
            )
        views = [
            self._event_view(row, DeliveryStats(**summarize_statuses(counts.get(row.id, {}))))
            for row in rows
        ]
        return views, total, limit, offset

    @staticmethod
    def _event_view(event: WebhookEvent, stats: DeliveryStats | None = None) -> EventView:
        return EventView(
            id=event.id,
            event_type=event.event_type,
            service_id=event.service_id,
            approval_id=event.approval_id,
            payload=event.payload,
            created_at=event.created_at,
            stats=stats,
        )

    async def create_event(self, service: ServiceAuthContext, data: EventCreate) -> EventView:
        """Record an event manually and queue it for delivery.

        Raises:
            BadRequestError: On a missing or unknown event type
            NotFoundError: If the approval is absent or foreign
        """
        if not data.event_type:
            raise BadRequestError("Event type is required")
        if data.event_type not in EVENT_TYPE_VALUES:
            raise BadRequestError(f"Invalid event type: {data.event_type}")

        async with self._session_factory() as session:
            if data.approval_id:
                owned = await ServiceApprovalRepository(session).get_owned_ids(
                    service.service_id, [data.approval_id]
                )
                if not owned:
                    raise NotFoundError("Approval not found")

            payload = data.payload or build_event_payload(
                data.event_type, service.service_id, service.service_name
            )
            event = await record_event(
                session,
                service_id=service.service_id,
                event_type=data.event_type,
                payload=payload,
                approval_id=data.approval_id,
            )
            await session.commit()

        publish_events(self.event_sink, [event.id])
        return self._event_view(event)


_webhook_service: WebhookService | None = None


def get_webhook_service() -> WebhookService:
    """Get singleton webhook service instance."""
    global _webhook_service
    if _webhook_service is None:
        _webhook_service = WebhookService()
    return _webhook_service
