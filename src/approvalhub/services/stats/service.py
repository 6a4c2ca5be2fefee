"""Delivery and usage statistics."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from approvalhub.core.config import get_settings
from approvalhub.infrastructure.database import AsyncSessionLocal
from approvalhub.repositories.approval import ServiceApprovalRepository
from approvalhub.repositories.webhook import WebhookDeliveryRepository, summarize_statuses
from approvalhub.services.stats.schemas import (
    ApprovalStats,
    DeliveryStats,
    DistributionEntry,
    PerformanceStats,
    PriorityCounts,
    RecentApproval,
    StatsDistribution,
    StatsOverview,
    TimeRange,
    UrgencyCounts,
)

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400
RECENT_WINDOW_DAYS = 7
RECENT_LIMIT = 10


def _percent(part: int, whole: int) -> float:
    return round(part / whole * 100, 2) if whole else 0.0


async def webhook_delivery_stats(
    session: AsyncSession,
    webhook_id: str,
    *,
    window_days: int | None = None,
    now: datetime | None = None,
) -> DeliveryStats:
    """Delivery counters of one registration over a bounded window.

    Args:
        session: Open session
        webhook_id: Registration ID
        window_days: Window length (defaults to settings)
        now: Reference time

    Returns:
        DeliveryStats
    """
    days = window_days if window_days is not None else get_settings().webhook_stats_window_days
    since = (now or datetime.now(timezone.utc)) - timedelta(days=days)
    counts = await WebhookDeliveryRepository(session).status_counts(
        webhook_id=webhook_id, since=since
    )
    return DeliveryStats(**summarize_statuses(counts))


def _distribution(counts: dict[Any, int], total: int) -> list[DistributionEntry]:
    return [
        DistributionEntry(key=str(key), count=count, percentage=_percent(count, total))
        for key, count in sorted(counts.items(), key=lambda item: str(item[0]))
    ]


class ApprovalStatsService:
    """Aggregates a service's approvals for the stats endpoint."""

    def __init__(self, session_factory: Callable[[], AsyncSession] | None = None):
        self._session_factory = session_factory or AsyncSessionLocal

    async def get_stats(
        self,
        service_id: str,
        *,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        now: datetime | None = None,
    ) -> ApprovalStats:
        """Compute statistics for one service.

        Args:
            service_id: Owning service identity
            start_date: Optional lower bound on created_at
            end_date: Optional upper bound on created_at
            now: Reference time (overdue and recent windows)

        Returns:
            ApprovalStats
        """
        now = now or datetime.now(timezone.utc)
        window = {"date_from": start_date, "date_to": end_date}

        async with self._session_factory() as session:
            repo = ServiceApprovalRepository(session)
            by_status = await repo.count_grouped("status", service_id, **window)
            by_priority = await repo.count_grouped("priority", service_id, **window)
            by_urgency = await repo.count_grouped("urgency", service_id, **window)
            by_type = await repo.count_grouped("approval_type", service_id, **window)
            by_levels = await repo.count_grouped("total_levels", service_id, **window)
            overdue = await repo.count_overdue(service_id, now, **window)
            spans = await repo.get_completion_spans(service_id, **window)
            average_levels = await repo.average_levels(service_id, **window)
            recent = await repo.get_recent(
                service_id, now - timedelta(days=RECENT_WINDOW_DAYS), RECENT_LIMIT
            )

        total = sum(by_status.values())
        approved = by_status.get("APPROVED", 0)
        rejected = by_status.get("REJECTED", 0)

        average_days = 0.0
        if spans:
            seconds = sum((done - created).total_seconds() for created, done in spans)
            average_days = round(seconds / len(spans) / SECONDS_PER_DAY, 2)

        return ApprovalStats(
            overview=StatsOverview(
                total=total,
                pending=by_status.get("PENDING", 0),
                approved=approved,
                rejected=rejected,
                cancelled=by_status.get("CANCELLED", 0),
                approval_rate=_percent(approved, approved + rejected),
            ),
            priority=PriorityCounts(
                high=by_priority.get("HIGH", 0),
                normal=by_priority.get("NORMAL", 0),
                low=by_priority.get("LOW", 0),
            ),
            urgency=UrgencyCounts(
                urgent=by_urgency.get("URGENT", 0),
                normal=by_urgency.get("NORMAL", 0),
                low=by_urgency.get("LOW", 0),
            ),
            performance=PerformanceStats(
                overdue=overdue,
                average_approval_time=average_days,
                average_levels=round(average_levels, 2),
            ),
            distribution=StatsDistribution(
                by_type=_distribution(by_type, total),
                by_priority=_distribution(by_priority, total),
                by_urgency=_distribution(by_urgency, total),
                by_levels=_distribution(by_levels, total),
            ),
            recent=[
                RecentApproval(
                    id=row.id,
                    title=row.title,
                    status=row.status,
                    priority=row.priority,
                    urgency=row.urgency,
                    progress=f"{row.current_level}/{row.total_levels}",
                    created_at=row.created_at,
                )
                for row in recent
            ],
            time_range=TimeRange(start_date=start_date, end_date=end_date),
        )


_stats_service: ApprovalStatsService | None = None


def get_approval_stats_service() -> ApprovalStatsService:
    """Get singleton stats service instance."""
    global _stats_service
    if _stats_service is None:
        _stats_service = ApprovalStatsService()
    return _stats_service
