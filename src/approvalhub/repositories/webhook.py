"""Repositories for webhook registrations, events and deliveries."""

from datetime import datetime
from typing import Any, Sequence

from sqlalchemy import and_, delete, desc, func, select, update

from approvalhub.models.webhook import ServiceWebhook, WebhookDelivery, WebhookEvent
from approvalhub.repositories.base import BaseRepository


def _rate(successful: int, total: int) -> float:
    return round(successful / total * 100, 2) if total else 0.0


def summarize_statuses(counts: dict[str, int]) -> dict[str, Any]:
    """Turn status counts into a delivery stats summary.

    @param counts - Mapping of delivery status to count
    @returns Dict matching DeliveryStats fields
    """
    successful = counts.get("SUCCESS", 0)
    failed = counts.get("FAILED", 0)
    pending = counts.get("PENDING", 0)
    total = successful + failed + pending
    return {
        "total_deliveries": total,
        "successful_deliveries": successful,
        "failed_deliveries": failed,
        "pending_deliveries": pending,
        "success_rate": _rate(successful, total),
    }


class ServiceWebhookRepository(BaseRepository[ServiceWebhook]):
    """Repository for webhook registrations."""

    model = ServiceWebhook

    async def get_owned(self, webhook_id: str, service_id: str) -> ServiceWebhook | None:
        """Get registration owned by a service.

        @param webhook_id - Webhook ID
        @param service_id - Owning service identity ID
        @returns ServiceWebhook or None when absent or foreign
        """
        return await self.get_one_by_filter(id=webhook_id, service_id=service_id)

    async def list_for_service(
        self,
        service_id: str,
        *,
        is_active: bool | None = None,
        skip: int = 0,
        limit: int = 20,
    ) -> tuple[Sequence[ServiceWebhook], int]:
        """List a service's registrations, newest first.

        @param service_id - Owning service identity ID
        @param is_active - Optional active flag filter
        @param skip - Pagination offset
        @param limit - Maximum results
        @returns Tuple of (registrations, total count)
        """
        items = await self.get_by_filter(
            skip=skip,
            limit=limit,
            order_by=desc(self.model.created_at),
            service_id=service_id,
            is_active=is_active,
        )
        total = await self.count(service_id=service_id, is_active=is_active)
        return items, total

    async def get_subscribers(
        self, service_id: str, event_type: str
    ) -> list[ServiceWebhook]:
        """Get active registrations of a service subscribed to an event type.

        Subscription membership is checked in Python so the query stays
        portable across JSON column implementations.

        @param service_id - Owning service identity ID
        @param event_type - Event type string
        @returns List of matching registrations
        """
        stmt = select(self.model).where(
            and_(self.model.service_id == service_id, self.model.is_active.is_(True))
        )
        result = await self.session.execute(stmt)
        return [hook for hook in result.scalars().all() if event_type in (hook.events or [])]


class WebhookEventRepository(BaseRepository[WebhookEvent]):
    """Repository for the event log."""

    model = WebhookEvent

    async def list_for_service(
        self,
        service_id: str,
        *,
        event_type: str | None = None,
        approval_id: str | None = None,
        skip: int = 0,
        limit: int = 20,
    ) -> tuple[Sequence[WebhookEvent], int]:
        """List a service's events, newest first.

        @param service_id - Owning service identity ID
        @param event_type - Optional event type filter
        @param approval_id - Optional approval filter
        @param skip - Pagination offset
        @param limit - Maximum results
        @returns Tuple of (events, total count)
        """
        filters = {
            "service_id": service_id,
            "event_type": event_type,
            "approval_id": approval_id,
        }
        items = await self.get_by_filter(
            skip=skip, limit=limit, order_by=desc(self.model.created_at), **filters
        )
        total = await self.count(**filters)
        return items, total

    async def detach_approvals(self, approval_ids: list[str]) -> int:
        """Clear the approval reference of events about deleted approvals.

        @param approval_ids - Approval IDs being deleted
        @returns Number of updated events
        """
        if not approval_ids:
            return 0
        stmt = (
            update(self.model)
            .where(self.model.approval_id.in_(approval_ids))
            .values(approval_id=None)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount


class WebhookDeliveryRepository(BaseRepository[WebhookDelivery]):
    """Repository for delivery attempts."""

    model = WebhookDelivery

    async def status_counts(
        self, *, webhook_id: str | None = None, since: datetime | None = None
    ) -> dict[str, int]:
        """Count deliveries per status.

        @param webhook_id - Optional webhook filter
        @param since - Optional lower bound on created_at
        @returns Mapping of status to count
        """
        stmt = select(self.model.status, func.count()).group_by(self.model.status)
        if webhook_id:
            stmt = stmt.where(self.model.webhook_id == webhook_id)
        if since:
            stmt = stmt.where(self.model.created_at >= since)
        result = await self.session.execute(stmt)
        return {status: count for status, count in result.all()}

    async def status_counts_by_event(
        self, event_ids: list[str]
    ) -> dict[str, dict[str, int]]:
        """Count deliveries per status for each event.

        @param event_ids - Event IDs
        @returns Mapping of event ID to status counts
        """
        if not event_ids:
            return {}
        stmt = (
            select(self.model.event_id, self.model.status, func.count())
            .where(self.model.event_id.in_(event_ids))
            .group_by(self.model.event_id, self.model.status)
        )
        result = await self.session.execute(stmt)
        counts: dict[str, dict[str, int]] = {}
        for event_id, status, count in result.all():
            counts.setdefault(event_id, {})[status] = count
        return counts

    async def get_recent(
        self, webhook_id: str, limit: int = 50
    ) -> Sequence[WebhookDelivery]:
        """Get the newest delivery attempts of a webhook.

        @param webhook_id - Webhook ID
        @param limit - Maximum results
        @returns List of deliveries, newest first
        """
        return await self.get_by_filter(
            limit=limit, order_by=desc(self.model.created_at), webhook_id=webhook_id
        )

    async def get_due_retries(
        self, now: datetime, limit: int = 100
    ) -> Sequence[WebhookDelivery]:
        """Get failed deliveries whose retry time has come.

        @param now - Reference time
        @param limit - Maximum results
        @returns List of deliveries, oldest retry first
        """
        stmt = (
            select(self.model)
            .where(
                and_(
                    self.model.status == "FAILED",
                    self.model.next_retry_at.is_not(None),
                    self.model.next_retry_at <= now,
                )
            )
            .order_by(self.model.next_retry_at)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def claim_retry(
        self, delivery_id: str, scheduled_at: datetime, lease_until: datetime
    ) -> bool:
        """Take ownership of a scheduled retry for a limited time.

        Moves ``next_retry_at`` to ``lease_until`` only if it still holds the
        value the caller read, so concurrent sweeps retry a delivery once. A
        claim whose attempt never gets recorded becomes due again when the
        lease runs out.

        @param delivery_id - Delivery ID
        @param scheduled_at - next_retry_at value observed by the caller
        @param lease_until - When the claim lapses
        @returns True if this caller claimed the retry
        """
        stmt = (
            update(self.model)
            .where(
                and_(
                    self.model.id == delivery_id,
                    self.model.next_retry_at == scheduled_at,
                )
            )
            .values(next_retry_at=lease_until)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def release_retry(self, delivery_id: str) -> int:
        """Clear the schedule of a delivery whose retry has been recorded or dropped.

        @param delivery_id - Delivery ID
        @returns Number of updated rows
        """
        stmt = (
            update(self.model)
            .where(self.model.id == delivery_id)
            .values(next_retry_at=None)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount

    async def delete_for_webhook(self, webhook_id: str) -> int:
        """Delete all delivery rows of a webhook.

        @param webhook_id - Webhook ID
        @returns Number of deleted rows
        """
        stmt = delete(self.model).where(self.model.webhook_id == webhook_id)
        result = await self.session.execute(
            stmt.execution_options(synchronize_session=False)
        )
        return result.rowcount
