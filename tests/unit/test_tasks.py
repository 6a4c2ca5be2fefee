"""Tests for Celery wiring of webhook delivery."""

from unittest.mock import AsyncMock, MagicMock, patch

from approvalhub.core.celery_app import celery_app
from approvalhub.services.webhook import enqueue_delivery, publish_events
from approvalhub.services.webhook.schemas import DeliveryResult, DeliveryStatus
from approvalhub.tasks.webhook_tasks import deliver_webhook_event, retry_failed_deliveries


def result(status: DeliveryStatus) -> DeliveryResult:
    return DeliveryResult(
        delivery_id="d1",
        webhook_id="w1",
        status=status,
        response_code=200 if status == DeliveryStatus.SUCCESS else 500,
        response_time_ms=12,
        attempt=1,
    )


class TestCeleryConfig:
    def test_routes(self):
        routes = celery_app.conf.task_routes

        assert routes["approvalhub.tasks.webhook_tasks.deliver_webhook_event"]["queue"] == "high"
        assert routes["approvalhub.tasks.webhook_tasks.retry_failed_deliveries"]["queue"] == "normal"

    def test_retry_sweep_scheduled(self):
        entry = celery_app.conf.beat_schedule["retry-failed-webhook-deliveries"]

        assert entry["task"] == "approvalhub.tasks.webhook_tasks.retry_failed_deliveries"
        assert entry["schedule"] == 60.0


class TestWebhookTasks:
    def test_deliver_summarizes_attempts(self):
        dispatcher = MagicMock()
        dispatcher.dispatch = AsyncMock(
            return_value=[result(DeliveryStatus.SUCCESS), result(DeliveryStatus.FAILED)]
        )

        with patch(
            "approvalhub.tasks.webhook_tasks.get_webhook_dispatcher", return_value=dispatcher
        ):
            summary = deliver_webhook_event.apply(args=["evt-1"]).get()

        dispatcher.dispatch.assert_awaited_once_with("evt-1")
        assert summary == {"event_id": "evt-1", "attempts": 2, "delivered": 1}

    def test_retry_sweep(self):
        dispatcher = MagicMock()
        dispatcher.retry_due = AsyncMock(return_value=4)

        with patch(
            "approvalhub.tasks.webhook_tasks.get_webhook_dispatcher", return_value=dispatcher
        ):
            summary = retry_failed_deliveries.apply().get()

        assert summary == {"attempted": 4}


class TestEventHandOff:
    def test_enqueue_uses_delay(self):
        with patch.object(deliver_webhook_event, "delay") as delay:
            enqueue_delivery("evt-9")

        delay.assert_called_once_with("evt-9")

    def test_failing_sink_does_not_raise(self):
        calls = []

        def sink(event_id: str) -> None:
            calls.append(event_id)
            if event_id == "bad":
                raise ConnectionError("broker down")

        publish_events(sink, ["bad", "good"])

        assert calls == ["bad", "good"]
