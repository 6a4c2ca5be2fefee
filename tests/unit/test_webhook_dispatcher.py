"""Tests for signed webhook delivery and bounded retries."""

import asyncio
import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from sqlalchemy import select

from approvalhub.core.config import Settings
from approvalhub.core.errors import BadRequestError, NotFoundError
from approvalhub.models import WebhookDelivery
from approvalhub.repositories.webhook import WebhookDeliveryRepository
from approvalhub.services.approval import ApprovalCreate, ApprovalWorkflowEngine
from approvalhub.services.webhook import WebhookDispatcher, WebhookService, verify_signature
from approvalhub.services.webhook.schemas import (
    DeliveryStatus,
    WebhookCreate,
    WebhookUpdate,
)


def approval_data() -> ApprovalCreate:
    return ApprovalCreate.model_validate({
        "title": "Contract review",
        "approvers": [{"userId": "alice", "level": 1}],
    })


async def deliveries(session_factory) -> list[WebhookDelivery]:
    async with session_factory() as session:
        result = await session.execute(
            select(WebhookDelivery).order_by(WebhookDelivery.attempt_count)
        )
        return list(result.scalars().all())


@pytest.fixture
def webhooks(session_factory, sink):
    return WebhookService(session_factory=session_factory, event_sink=sink)


@pytest.fixture
def engine(session_factory, sink):
    return ApprovalWorkflowEngine(session_factory=session_factory, event_sink=sink)


@pytest.fixture
def dispatcher(session_factory, http_client):
    return WebhookDispatcher(
        session_factory=session_factory,
        client=http_client,
        settings=Settings(webhook_retry_delay_seconds=300),
    )


async def register(webhooks, service, **overrides):
    data = {
        "name": "Receiver",
        "url": "https://hooks.example.com/approvals",
        "events": ["approval.created", "approval.approved"],
        "retryCount": 3,
        "timeout": 10,
    }
    data.update(overrides)
    return await webhooks.register(service, WebhookCreate.model_validate(data))


class TestDispatch:
    """Tests for first-attempt delivery."""

    @pytest.mark.asyncio
    async def test_signed_delivery(
        self, webhooks, engine, dispatcher, service, sink, receiver, session_factory
    ):
        """The receiver can verify the body with the registration secret."""
        hook = await register(webhooks, service)
        approval = await engine.create(service, approval_data())

        results = await dispatcher.dispatch(sink.event_ids[-1])

        assert [r.status for r in results] == [DeliveryStatus.SUCCESS]
        request = receiver.requests[0]
        assert str(request.url) == hook.url
        assert request.headers["X-Approval-Event"] == "approval.created"
        assert request.headers["X-Approval-Webhook-ID"] == hook.id
        assert request.headers["X-Approval-Delivery-Attempt"] == "1"
        assert request.headers["Content-Type"] == "application/json"
        assert verify_signature(
            hook.secret, request.content, request.headers["X-Approval-Signature"]
        )

        body = json.loads(request.content)
        assert body["eventType"] == "approval.created"
        assert body["eventId"] == sink.event_ids[-1]
        assert body["webhookId"] == hook.id
        assert body["approval"]["id"] == approval.id

        [delivery] = await deliveries(session_factory)
        assert delivery.status == "SUCCESS"
        assert delivery.response_code == 200
        assert delivery.attempt_count == 1
        assert delivery.delivered_at is not None
        assert delivery.next_retry_at is None

    @pytest.mark.asyncio
    async def test_only_active_subscribers_of_owner(
        self, webhooks, engine, dispatcher, service, other_service, sink, receiver
    ):
        await register(webhooks, service, name="subscribed")
        await register(webhooks, service, name="other-events", events=["approval.rejected"])
        inactive = await register(webhooks, service, name="inactive")
        await webhooks.update_webhook(service, inactive.id, WebhookUpdate(is_active=False))
        await register(webhooks, other_service, name="foreign")

        await engine.create(service, approval_data())
        results = await dispatcher.dispatch(sink.event_ids[-1])

        assert len(results) == 1
        assert len(receiver.requests) == 1

    @pytest.mark.asyncio
    async def test_unknown_event_is_noop(self, dispatcher, receiver):
        assert await dispatcher.dispatch("missing-event") == []
        assert receiver.requests == []

    @pytest.mark.asyncio
    async def test_connection_error_recorded(
        self, webhooks, engine, service, sink, session_factory
    ):
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        dispatcher = WebhookDispatcher(
            session_factory=session_factory,
            client=httpx.AsyncClient(transport=httpx.MockTransport(refuse)),
        )
        await register(webhooks, service)
        await engine.create(service, approval_data())

        [result] = await dispatcher.dispatch(sink.event_ids[-1])

        assert result.status == DeliveryStatus.FAILED
        assert result.response_code is None
        assert "ConnectError" in result.error
        [delivery] = await deliveries(session_factory)
        assert "connection refused" in delivery.response_body
        assert delivery.next_retry_at is not None

    @pytest.mark.asyncio
    async def test_timeout_recorded(
        self, webhooks, engine, dispatcher, service, sink, session_factory
    ):
        async def too_slow(*args, **kwargs):
            raise asyncio.TimeoutError

        dispatcher._post = too_slow
        await register(webhooks, service, timeout=5)
        await engine.create(service, approval_data())

        [result] = await dispatcher.dispatch(sink.event_ids[-1])

        assert result.status == DeliveryStatus.FAILED
        assert result.error == "Timed out after 5s"

    @pytest.mark.asyncio
    async def test_response_body_truncated(
        self, webhooks, engine, service, sink, session_factory, http_client
    ):
        dispatcher = WebhookDispatcher(
            session_factory=session_factory,
            client=http_client,
            settings=Settings(webhook_response_snippet_chars=1),
        )
        await register(webhooks, service)
        await engine.create(service, approval_data())

        await dispatcher.dispatch(sink.event_ids[-1])

        [delivery] = await deliveries(session_factory)
        assert delivery.response_body == "o"

    @pytest.mark.asyncio
    async def test_request_uses_registration_timeout(
        self, webhooks, engine, dispatcher, service, sink, receiver
    ):
        """The HTTP client limit follows the registration, not the client default."""
        await register(webhooks, service, timeout=45)
        await engine.create(service, approval_data())

        await dispatcher.dispatch(sink.event_ids[-1])

        assert receiver.requests[0].extensions["timeout"] == {
            "connect": 45,
            "read": 45,
            "write": 45,
            "pool": 45,
        }


class TestRetries:
    """Tests for the retry sweep."""

    @pytest.mark.asyncio
    async def test_attempts_bounded_by_retry_count(
        self, webhooks, engine, dispatcher, service, sink, receiver, session_factory
    ):
        """A failing receiver sees exactly retry_count attempts."""
        receiver.status = 500
        await register(webhooks, service, retryCount=3)
        await engine.create(service, approval_data())

        await dispatcher.dispatch(sink.event_ids[-1])
        now = datetime.now(timezone.utc)
        for step in range(1, 4):
            dispatcher._now = lambda step=step: now + timedelta(seconds=301 * step)
            await dispatcher.retry_due()

        rows = await deliveries(session_factory)
        assert [d.attempt_count for d in rows] == [1, 2, 3]
        assert all(d.status == "FAILED" for d in rows)
        assert [d.next_retry_at is None for d in rows] == [True, True, True]
        assert [r.headers["X-Approval-Delivery-Attempt"] for r in receiver.requests] == [
            "1",
            "2",
            "3",
        ]

    @pytest.mark.asyncio
    async def test_not_due_yet(
        self, webhooks, engine, dispatcher, service, sink, receiver
    ):
        receiver.status = 503
        await register(webhooks, service)
        await engine.create(service, approval_data())
        await dispatcher.dispatch(sink.event_ids[-1])

        assert await dispatcher.retry_due() == 0
        assert len(receiver.requests) == 1

    @pytest.mark.asyncio
    async def test_retry_succeeds(
        self, webhooks, engine, dispatcher, service, sink, receiver, session_factory
    ):
        receiver.status = 500
        await register(webhooks, service)
        await engine.create(service, approval_data())
        await dispatcher.dispatch(sink.event_ids[-1])
        [before] = await deliveries(session_factory)

        receiver.status = 204
        later = datetime.now(timezone.utc) + timedelta(seconds=301)
        dispatcher._now = lambda: later
        assert await dispatcher.retry_due() == 1
        assert await dispatcher.retry_due() == 0

        first, second = await deliveries(session_factory)
        assert (first.status, second.status) == ("FAILED", "SUCCESS")
        # The earlier attempt keeps its outcome; only its schedule is cleared
        assert (first.id, first.response_code, first.response_body, first.attempt_count) == (
            before.id,
            before.response_code,
            before.response_body,
            before.attempt_count,
        )
        assert first.delivered_at is None
        assert first.next_retry_at is None
        assert second.event_id == first.event_id

    @pytest.mark.asyncio
    async def test_crashed_retry_is_attempted_after_lease(
        self, webhooks, engine, dispatcher, service, sink, receiver, session_factory
    ):
        """A retry whose attempt blows up is not lost; it comes due again."""
        receiver.status = 500
        await register(webhooks, service, retryCount=3)
        await engine.create(service, approval_data())
        await dispatcher.dispatch(sink.event_ids[-1])

        start = datetime.now(timezone.utc)
        attempt = dispatcher._attempt

        async def crash(*args, **kwargs):
            raise RuntimeError("database went away")

        dispatcher._attempt = crash
        dispatcher._now = lambda: start + timedelta(seconds=301)
        assert await dispatcher.retry_due() == 0

        [first] = await deliveries(session_factory)
        assert first.next_retry_at is not None

        dispatcher._attempt = attempt
        dispatcher._now = lambda: start + timedelta(seconds=601)
        assert await dispatcher.retry_due() == 0

        dispatcher._now = lambda: start + timedelta(seconds=902)
        assert await dispatcher.retry_due() == 1
        dispatcher._now = lambda: start + timedelta(seconds=1203)
        assert await dispatcher.retry_due() == 1

        rows = await deliveries(session_factory)
        assert [d.attempt_count for d in rows] == [1, 2, 3]
        assert all(d.next_retry_at is None for d in rows)
        assert len(receiver.requests) == 3

    @pytest.mark.asyncio
    async def test_one_failing_retry_does_not_stop_sweep(
        self, webhooks, engine, dispatcher, service, sink, receiver, session_factory
    ):
        receiver.status = 500
        broken = await register(webhooks, service, name="broken")
        healthy = await register(webhooks, service, name="healthy")
        await engine.create(service, approval_data())
        await dispatcher.dispatch(sink.event_ids[-1])

        attempt = dispatcher._attempt

        async def flaky(session, client, webhook, event, number):
            if webhook.id == broken.id:
                raise RuntimeError("boom")
            return await attempt(session, client, webhook, event, number)

        dispatcher._attempt = flaky
        later = datetime.now(timezone.utc) + timedelta(seconds=301)
        dispatcher._now = lambda: later

        assert await dispatcher.retry_due() == 1

        rows = await deliveries(session_factory)
        by_hook = {
            hook.id: [d for d in rows if d.webhook_id == hook.id] for hook in (broken, healthy)
        }
        assert [d.attempt_count for d in by_hook[healthy.id]] == [1, 2]
        [leased] = by_hook[broken.id]
        assert leased.next_retry_at is not None

    @pytest.mark.asyncio
    async def test_claim_taken_once(
        self, webhooks, engine, dispatcher, service, sink, receiver, session_factory
    ):
        receiver.status = 500
        await register(webhooks, service)
        await engine.create(service, approval_data())
        await dispatcher.dispatch(sink.event_ids[-1])
        [row] = await deliveries(session_factory)
        lease = datetime.now(timezone.utc) + timedelta(seconds=600)

        async with session_factory() as session:
            repo = WebhookDeliveryRepository(session)
            assert await repo.claim_retry(row.id, row.next_retry_at, lease) is True
            assert await repo.claim_retry(row.id, row.next_retry_at, lease) is False
            await session.commit()

    @pytest.mark.asyncio
    async def test_zero_retry_count_never_retries(
        self, webhooks, engine, dispatcher, service, sink, receiver, session_factory
    ):
        receiver.status = 500
        await register(webhooks, service, retryCount=0)
        await engine.create(service, approval_data())
        await dispatcher.dispatch(sink.event_ids[-1])

        [delivery] = await deliveries(session_factory)
        assert delivery.next_retry_at is None

    @pytest.mark.asyncio
    async def test_deactivated_webhook_dropped(
        self, webhooks, engine, dispatcher, service, sink, receiver
    ):
        receiver.status = 500
        hook = await register(webhooks, service)
        await engine.create(service, approval_data())
        await dispatcher.dispatch(sink.event_ids[-1])
        await webhooks.update_webhook(service, hook.id, WebhookUpdate(is_active=False))

        later = datetime.now(timezone.utc) + timedelta(seconds=301)
        dispatcher._now = lambda: later
        assert await dispatcher.retry_due() == 0
        assert len(receiver.requests) == 1


class TestWebhookTest:
    """Tests for synthetic test deliveries."""

    @pytest.mark.asyncio
    async def test_sends_signed_test_event(self, webhooks, dispatcher, service, receiver):
        hook = await register(webhooks, service)

        result = await dispatcher.test(service, hook.id)

        assert result.status == DeliveryStatus.SUCCESS
        assert result.response_code == 200
        assert result.payload["test"] is True
        assert result.payload["webhookName"] == "Receiver"
        request = receiver.requests[0]
        assert request.headers["X-Approval-Signature"] == result.signature
        assert verify_signature(hook.secret, request.content, result.signature)

    @pytest.mark.asyncio
    async def test_failure_reported_not_raised(self, webhooks, dispatcher, service, receiver):
        receiver.status = 410
        hook = await register(webhooks, service)

        result = await dispatcher.test(service, hook.id)

        assert result.status == DeliveryStatus.FAILED
        assert result.response_code == 410

    @pytest.mark.asyncio
    async def test_inactive_or_foreign(self, webhooks, dispatcher, service, other_service):
        hook = await register(webhooks, service)

        with pytest.raises(NotFoundError):
            await dispatcher.test(other_service, hook.id)

        await webhooks.update_webhook(service, hook.id, WebhookUpdate(is_active=False))
        with pytest.raises(BadRequestError):
            await dispatcher.test(service, hook.id)
