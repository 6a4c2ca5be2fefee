"""Tests for approval and delivery statistics."""

from datetime import datetime, timedelta, timezone

import pytest

from approvalhub.models import WebhookDelivery, WebhookEvent
from approvalhub.repositories.webhook import summarize_statuses
from approvalhub.services.approval import ApprovalCreate, ApprovalWorkflowEngine
from approvalhub.services.stats import ApprovalStatsService, webhook_delivery_stats
from approvalhub.services.webhook import WebhookService
from approvalhub.services.webhook.schemas import WebhookCreate


def approval(levels: int = 1, **extra) -> ApprovalCreate:
    data = {
        "title": "Expense claim",
        "approvers": [{"userId": f"u{i}", "level": i} for i in range(1, levels + 1)],
    }
    data.update(extra)
    return ApprovalCreate.model_validate(data)


@pytest.fixture
def engine(session_factory, sink):
    return ApprovalWorkflowEngine(session_factory=session_factory, event_sink=sink)


@pytest.fixture
def stats(session_factory):
    return ApprovalStatsService(session_factory=session_factory)


class TestSummarizeStatuses:
    def test_empty(self):
        assert summarize_statuses({}) == {
            "total_deliveries": 0,
            "successful_deliveries": 0,
            "failed_deliveries": 0,
            "pending_deliveries": 0,
            "success_rate": 0.0,
        }

    def test_rate_rounded(self):
        summary = summarize_statuses({"SUCCESS": 2, "FAILED": 1})

        assert summary["total_deliveries"] == 3
        assert summary["success_rate"] == 66.67


class TestApprovalStats:
    """Tests for ApprovalStatsService."""

    @pytest.mark.asyncio
    async def test_empty_service(self, stats):
        result = await stats.get_stats("svc-primary")

        assert result.overview.total == 0
        assert result.overview.approval_rate == 0.0
        assert result.performance.average_approval_time == 0.0
        assert result.recent == []

    @pytest.mark.asyncio
    async def test_counts_and_rates(self, engine, stats, service, other_service):
        approved = await engine.create(service, approval(priority="HIGH"))
        await engine.approve(service, approved.id)
        rejected = await engine.create(service, approval(levels=2, urgency="URGENT"))
        await engine.reject(service, rejected.id)
        cancelled = await engine.create(service, approval(type="TASK"))
        await engine.cancel(service, cancelled.id)
        await engine.create(
            service,
            approval(dueDate=(datetime.now(timezone.utc) - timedelta(days=1)).isoformat()),
        )
        await engine.create(other_service, approval())

        result = await stats.get_stats(service.service_id)

        assert result.overview.total == 4
        assert result.overview.pending == 1
        assert result.overview.approved == 1
        assert result.overview.rejected == 1
        assert result.overview.cancelled == 1
        assert result.overview.approval_rate == 50.0
        assert result.priority.high == 1
        assert result.priority.normal == 3
        assert result.urgency.urgent == 1
        assert result.performance.overdue == 1
        assert result.performance.average_levels == 1.25
        assert result.performance.average_approval_time >= 0

        by_type = {e.key: e for e in result.distribution.by_type}
        assert by_type["CUSTOM"].count == 3
        assert by_type["TASK"].percentage == 25.0
        assert {e.key for e in result.distribution.by_levels} == {"1", "2"}

        assert len(result.recent) == 4
        progress = {r.id: r.progress for r in result.recent}
        assert progress[approved.id] == "2/1"
        assert progress[rejected.id] == "1/2"

    @pytest.mark.asyncio
    async def test_time_range(self, engine, stats, service):
        await engine.create(service, approval())
        future = datetime.now(timezone.utc) + timedelta(days=1)

        result = await stats.get_stats(service.service_id, start_date=future)

        assert result.overview.total == 0
        assert result.time_range.start_date == future


class TestWebhookDeliveryStats:
    @pytest.mark.asyncio
    async def test_window_excludes_old_deliveries(self, session_factory, sink, service):
        webhooks = WebhookService(session_factory=session_factory, event_sink=sink)
        hook = await webhooks.register(
            service,
            WebhookCreate(
                name="stats", url="https://example.com/hook", events=["approval.created"]
            ),
        )
        now = datetime.now(timezone.utc)

        async with session_factory() as session:
            event = WebhookEvent(
                service_id=service.service_id, event_type="approval.created", payload={}
            )
            session.add(event)
            await session.flush()
            session.add_all([
                WebhookDelivery(webhook_id=hook.id, event_id=event.id, status="SUCCESS"),
                WebhookDelivery(webhook_id=hook.id, event_id=event.id, status="FAILED"),
                WebhookDelivery(
                    webhook_id=hook.id,
                    event_id=event.id,
                    status="FAILED",
                    created_at=now - timedelta(days=8),
                ),
            ])
            await session.commit()

            result = await webhook_delivery_stats(session, hook.id, window_days=7, now=now)

        assert result.total_deliveries == 2
        assert result.successful_deliveries == 1
        assert result.failed_deliveries == 1
        assert result.success_rate == 50.0
