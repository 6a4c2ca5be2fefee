"""Webhook registration, event log and signed delivery."""

from approvalhub.services.webhook.dispatcher import (
    WebhookDispatcher,
    get_webhook_dispatcher,
    reset_webhook_dispatcher,
)
from approvalhub.services.webhook.events import (
    build_event_payload,
    enqueue_delivery,
    publish_events,
    record_event,
)
from approvalhub.services.webhook.schemas import WebhookEventType
from approvalhub.services.webhook.service import WebhookService, get_webhook_service
from approvalhub.services.webhook.signing import (
    canonical_json,
    generate_secret,
    sign_payload,
    verify_signature,
)

__all__ = [
    # Delivery
    "WebhookDispatcher",
    "get_webhook_dispatcher",
    "reset_webhook_dispatcher",
    # Event log
    "WebhookEventType",
    "build_event_payload",
    "enqueue_delivery",
    "publish_events",
    "record_event",
    # Registry
    "WebhookService",
    "get_webhook_service",
    # Signing
    "canonical_json",
    "generate_secret",
    "sign_payload",
    "verify_signature",
]
