"""Tests for approval workflow engine."""

import asyncio
from datetime import datetime, timezone

import pytest
from sqlalchemy import select

from approvalhub.core.errors import BadRequestError, ConflictError, NotFoundError
from approvalhub.models import ServiceApproval, ServiceApprovalDecision, WebhookEvent
from approvalhub.services.approval import (
    ApprovalCreate,
    ApprovalStatus,
    ApprovalUpdate,
    ApprovalWorkflowEngine,
    StaticApproverDirectory,
)
from approvalhub.services.approval.schemas import (
    DEFAULT_CANCEL_COMMENT,
    ApprovalListFilters,
    ApprovalPriority,
    ApprovalType,
    DecisionValue,
)


def make_create(levels: int = 2, **overrides) -> ApprovalCreate:
    data = {
        "title": "Publish quarterly report",
        "description": "Needs sign-off",
        "type": "DOCUMENT",
        "approvers": [
            {"userId": f"user-{level}", "level": level, "role": "reviewer"}
            for level in range(1, levels + 1)
        ],
    }
    data.update(overrides)
    return ApprovalCreate.model_validate(data)


async def events_of(session_factory, approval_id: str | None = None) -> list[WebhookEvent]:
    async with session_factory() as session:
        stmt = select(WebhookEvent).order_by(WebhookEvent.created_at)
        if approval_id is not None:
            stmt = stmt.where(WebhookEvent.approval_id == approval_id)
        return list((await session.execute(stmt)).scalars().all())


@pytest.fixture
def engine(session_factory, sink):
    return ApprovalWorkflowEngine(session_factory=session_factory, event_sink=sink)


class TestCreate:
    """Tests for approval creation."""

    @pytest.mark.asyncio
    async def test_create_approval(self, engine, service, sink, session_factory):
        """Test creating a multi-level approval."""
        view = await engine.create(service, make_create(levels=3))

        assert view.status == ApprovalStatus.PENDING
        assert view.current_level == 1
        assert view.total_levels == 3
        assert view.approval_type == ApprovalType.DOCUMENT
        assert view.service_type == "api"
        assert view.completed_at is None
        assert [d.level for d in view.decisions] == [1, 2, 3]
        assert all(d.decision == DecisionValue.PENDING for d in view.decisions)
        assert view.workflow.next_approver["userId"] == "user-1"
        assert view.workflow.is_complete is False

        events = await events_of(session_factory, view.id)
        assert [e.event_type for e in events] == ["approval.created"]
        assert sink.event_ids == [events[0].id]
        assert events[0].payload["approval"]["id"] == view.id
        assert events[0].payload["serviceName"] == "Primary Service"

    @pytest.mark.asyncio
    async def test_default_metadata(self, engine, service):
        view = await engine.create(service, make_create())

        assert view.metadata == {"source": "service-api", "serviceName": "Primary Service"}

    @pytest.mark.asyncio
    async def test_approvers_sorted_by_level(self, engine, service):
        data = make_create(approvers=[
            {"userId": "second", "level": 2},
            {"userId": "first", "level": 1},
        ])
        view = await engine.create(service, data)

        assert [a.user_id for a in view.workflow.approvers] == ["first", "second"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "overrides",
        [
            {"title": "   "},
            {"approvers": []},
            {"approvers": [{"userId": "a", "level": 1}, {"userId": "b", "level": 3}]},
            {"approvers": [{"userId": "a", "level": 2}]},
            {"approvers": [{"userId": "a", "level": 1}, {"userId": "b", "level": 1}]},
            {"approvers": [{"userId": "", "level": 1}]},
        ],
    )
    async def test_invalid_input_persists_nothing(
        self, engine, service, sink, session_factory, overrides
    ):
        """Validation failures leave no approval, decision or event behind."""
        with pytest.raises(BadRequestError):
            await engine.create(service, make_create(**overrides))

        async with session_factory() as session:
            assert (await session.execute(select(ServiceApproval))).first() is None
            assert (await session.execute(select(ServiceApprovalDecision))).first() is None
        assert await events_of(session_factory) == []
        assert sink.event_ids == []

    @pytest.mark.asyncio
    async def test_unknown_approver_rejected(self, session_factory, sink, service):
        engine = ApprovalWorkflowEngine(
            session_factory=session_factory,
            directory=StaticApproverDirectory({"user-1"}),
            event_sink=sink,
        )

        with pytest.raises(BadRequestError, match="user-2"):
            await engine.create(service, make_create(levels=2))


class TestTransitions:
    """Tests for approve / reject / cancel."""

    @pytest.mark.asyncio
    async def test_approve_through_all_levels(self, engine, service, session_factory):
        """Each approval advances one level; the last one completes."""
        created = await engine.create(service, make_create(levels=2))

        first = await engine.approve(service, created.id, comments="looks fine")
        assert first.status == ApprovalStatus.PENDING
        assert first.current_level == 2
        assert first.decisions[0].decision == DecisionValue.APPROVED
        assert first.decisions[0].comments == "looks fine"
        assert first.decisions[0].decision_date is not None
        assert first.workflow.next_approver["userId"] == "user-2"

        final = await engine.approve(service, created.id)
        assert final.status == ApprovalStatus.APPROVED
        assert final.current_level == 3
        assert final.completed_at is not None
        assert final.workflow.is_complete is True
        assert final.workflow.next_approver is None

        events = await events_of(session_factory, created.id)
        assert [e.event_type for e in events] == [
            "approval.created",
            "approval.updated",
            "approval.approved",
        ]
        assert events[1].payload["decision"] == {
            "action": "approve",
            "level": 1,
            "approverId": "user-1",
            "comments": "looks fine",
        }

    @pytest.mark.asyncio
    async def test_reject_ends_workflow(self, engine, service, session_factory):
        created = await engine.create(service, make_create(levels=3))
        await engine.approve(service, created.id)

        view = await engine.reject(service, created.id, comments="budget")

        assert view.status == ApprovalStatus.REJECTED
        assert view.current_level == 2
        assert view.completed_at is not None
        assert view.decisions[1].decision == DecisionValue.REJECTED
        assert view.decisions[2].decision == DecisionValue.PENDING

        events = await events_of(session_factory, created.id)
        assert events[-1].event_type == "approval.rejected"

    @pytest.mark.asyncio
    async def test_cancel_uses_default_comment(self, engine, service, session_factory):
        created = await engine.create(service, make_create())

        view = await engine.cancel(service, created.id)

        assert view.status == ApprovalStatus.CANCELLED
        assert view.decisions[0].decision == DecisionValue.PENDING
        assert view.decisions[0].comments == DEFAULT_CANCEL_COMMENT
        events = await events_of(session_factory, created.id)
        assert events[-1].event_type == "approval.cancelled"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("action", ["approve", "reject", "cancel"])
    async def test_terminal_approval_conflicts(self, engine, service, sink, action):
        """No transition leaves a terminal status."""
        created = await engine.create(service, make_create(levels=1))
        await engine.reject(service, created.id)
        emitted = len(sink.event_ids)

        with pytest.raises(ConflictError):
            await getattr(engine, action)(service, created.id)
        assert len(sink.event_ids) == emitted

    @pytest.mark.asyncio
    async def test_expected_level_mismatch(self, engine, service):
        created = await engine.create(service, make_create(levels=2))
        await engine.approve(service, created.id, expected_level=1)

        with pytest.raises(ConflictError):
            await engine.approve(service, created.id, expected_level=1)

        view = await engine.get(service, created.id)
        assert view.current_level == 2

    @pytest.mark.asyncio
    async def test_concurrent_approvals_single_winner(self, engine, service, session_factory):
        """Two approvals racing on one level: one wins, the other conflicts."""
        created = await engine.create(service, make_create(levels=2))

        results = await asyncio.gather(
            engine.approve(service, created.id),
            engine.approve(service, created.id),
            return_exceptions=True,
        )

        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, Exception)]
        assert len(winners) == 1
        assert len(losers) == 1
        assert isinstance(losers[0], ConflictError)

        view = await engine.get(service, created.id)
        assert view.current_level == 2
        events = await events_of(session_factory, created.id)
        assert [e.event_type for e in events] == ["approval.created", "approval.updated"]

    @pytest.mark.asyncio
    async def test_foreign_approval_not_found(self, engine, service, other_service):
        created = await engine.create(service, make_create())

        with pytest.raises(NotFoundError):
            await engine.approve(other_service, created.id)
        with pytest.raises(NotFoundError):
            await engine.get(other_service, created.id)


class TestEditAndDelete:
    """Tests for update, bulk operations and deletion."""

    @pytest.mark.asyncio
    async def test_update_fields(self, engine, service, session_factory):
        created = await engine.create(service, make_create())

        view = await engine.update(
            service,
            created.id,
            ApprovalUpdate.model_validate({"title": "Renamed", "priority": "HIGH"}),
        )

        assert view.title == "Renamed"
        assert view.priority == ApprovalPriority.HIGH
        events = await events_of(session_factory, created.id)
        assert events[-1].event_type == "approval.updated"
        assert events[-1].payload["changes"] == ["priority", "title"]

    @pytest.mark.asyncio
    async def test_update_terminal_approval_allowed(self, engine, service):
        created = await engine.create(service, make_create(levels=1))
        await engine.approve(service, created.id)

        view = await engine.update(
            service, created.id, ApprovalUpdate(description="archived")
        )
        assert view.description == "archived"
        assert view.status == ApprovalStatus.APPROVED

    @pytest.mark.asyncio
    async def test_update_requires_fields(self, engine, service):
        created = await engine.create(service, make_create())

        with pytest.raises(BadRequestError):
            await engine.update(service, created.id, ApprovalUpdate())
        with pytest.raises(BadRequestError):
            await engine.update(service, created.id, ApprovalUpdate(title=" "))

    @pytest.mark.asyncio
    async def test_bulk_update_all_or_nothing(self, engine, service, other_service):
        mine = await engine.create(service, make_create())
        theirs = await engine.create(other_service, make_create())

        with pytest.raises(NotFoundError):
            await engine.bulk_update(
                service, [mine.id, theirs.id], ApprovalUpdate(title="Changed")
            )
        assert (await engine.get(service, mine.id)).title == "Publish quarterly report"

        updated = await engine.bulk_update(service, [mine.id], ApprovalUpdate(title="Changed"))
        assert updated == 1
        assert (await engine.get(service, mine.id)).title == "Changed"

    @pytest.mark.asyncio
    async def test_delete_keeps_detached_events(self, engine, service, session_factory):
        created = await engine.create(service, make_create())
        await engine.approve(service, created.id)

        await engine.delete(service, created.id)

        with pytest.raises(NotFoundError):
            await engine.get(service, created.id)
        async with session_factory() as session:
            decisions = await session.execute(
                select(ServiceApprovalDecision).where(
                    ServiceApprovalDecision.approval_id == created.id
                )
            )
            assert decisions.first() is None
        events = await events_of(session_factory)
        assert len(events) == 2
        assert all(e.approval_id is None for e in events)
        assert events[0].payload["approval"]["id"] == created.id

    @pytest.mark.asyncio
    async def test_bulk_delete(self, engine, service, other_service):
        first = await engine.create(service, make_create())
        second = await engine.create(service, make_create())
        theirs = await engine.create(other_service, make_create())

        with pytest.raises(NotFoundError):
            await engine.bulk_delete(service, [first.id, theirs.id])

        assert await engine.bulk_delete(service, [first.id, second.id]) == 2
        _, total, _, _ = await engine.list_approvals(service)
        assert total == 0


class TestListing:
    """Tests for filtered listing."""

    @pytest.mark.asyncio
    async def test_list_filters_and_pagination(self, engine, service, other_service):
        for i in range(3):
            await engine.create(service, make_create(title=f"Doc {i}", priority="HIGH"))
        await engine.create(service, make_create(title="Task", type="TASK"))
        await engine.create(other_service, make_create(title="Foreign"))

        views, total, limit, offset = await engine.list_approvals(service, limit=2)
        assert total == 4
        assert len(views) == 2
        assert (limit, offset) == (2, 0)

        views, total, _, _ = await engine.list_approvals(
            service, ApprovalListFilters(approval_type=ApprovalType.TASK)
        )
        assert total == 1
        assert views[0].title == "Task"

        views, total, _, _ = await engine.list_approvals(
            service, ApprovalListFilters(priority=ApprovalPriority.HIGH), sort_by="title", sort_order="asc"
        )
        assert [v.title for v in views] == ["Doc 0", "Doc 1", "Doc 2"]

    @pytest.mark.asyncio
    async def test_page_size_capped(self, engine, service):
        _, _, limit, _ = await engine.list_approvals(service, limit=1000)
        assert limit == 100

    @pytest.mark.asyncio
    async def test_date_range_filter(self, engine, service):
        await engine.create(service, make_create())

        future = datetime(2999, 1, 1, tzinfo=timezone.utc)
        _, total, _, _ = await engine.list_approvals(
            service, ApprovalListFilters(date_from=future)
        )
        assert total == 0
