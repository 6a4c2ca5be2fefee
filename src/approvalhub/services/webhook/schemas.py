"""Webhook registration, event and delivery schemas."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import Field

from approvalhub.core.schemas import CamelModel
from approvalhub.services.stats.schemas import DeliveryStats


class WebhookEventType(str, Enum):
    """Closed set of event types a webhook can subscribe to."""

    APPROVAL_CREATED = "approval.created"
    APPROVAL_UPDATED = "approval.updated"
    APPROVAL_APPROVED = "approval.approved"
    APPROVAL_REJECTED = "approval.rejected"
    APPROVAL_CANCELLED = "approval.cancelled"
    APPROVAL_ESCALATED = "approval.escalated"
    APPROVAL_DELEGATED = "approval.delegated"


EVENT_TYPE_VALUES = frozenset(e.value for e in WebhookEventType)


class DeliveryStatus(str, Enum):
    """Outcome of one delivery attempt."""

    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


# Registration limits
MIN_RETRY_COUNT = 0
MAX_RETRY_COUNT = 10
MIN_TIMEOUT_SECONDS = 5
MAX_TIMEOUT_SECONDS = 300


# =============================================================================
# Requests
# =============================================================================


class WebhookCreate(CamelModel):
    """Request to register a webhook."""

    name: str = Field("", description="Display name")
    url: str = Field("", description="HTTP(S) callback URL")
    events: list[str] = Field(default_factory=list, description="Subscribed event types")
    retry_count: int = Field(3, description="Maximum delivery attempts (0-10)")
    timeout: int = Field(30, description="Per-attempt timeout in seconds (5-300)")


class WebhookUpdate(CamelModel):
    """Partial update of a registration. The secret never changes."""

    name: str | None = Field(None, description="Display name")
    url: str | None = Field(None, description="HTTP(S) callback URL")
    events: list[str] | None = Field(None, description="Subscribed event types")
    retry_count: int | None = Field(None, description="Maximum delivery attempts")
    timeout: int | None = Field(None, description="Per-attempt timeout in seconds")
    is_active: bool | None = Field(None, description="Enable or disable deliveries")


class EventCreate(CamelModel):
    """Manually recorded event."""

    event_type: str = Field("", description="Event type")
    approval_id: str | None = Field(None, description="Related approval")
    payload: dict[str, Any] | None = Field(None, description="Custom payload")


# =============================================================================
# Responses
# =============================================================================


class DeliveryView(CamelModel):
    """One delivery attempt."""

    id: str
    webhook_id: str
    event_id: str
    status: DeliveryStatus
    response_code: int | None = None
    response_body: str | None = None
    attempt_count: int
    delivered_at: datetime | None = None
    next_retry_at: datetime | None = None
    created_at: datetime


class WebhookView(CamelModel):
    """Registration as returned to callers."""

    id: str
    name: str
    url: str
    events: list[str]
    retry_count: int
    timeout: int
    is_active: bool
    created_at: datetime
    updated_at: datetime
    secret: str | None = Field(None, description="Only present on creation")
    stats: DeliveryStats | None = None
    recent_deliveries: list[DeliveryView] | None = None


class EventView(CamelModel):
    """Event log entry."""

    id: str
    event_type: str
    service_id: str
    approval_id: str | None = None
    payload: dict[str, Any]
    created_at: datetime
    stats: DeliveryStats | None = None


class DeliveryResult(CamelModel):
    """Outcome of a single delivery attempt."""

    delivery_id: str
    webhook_id: str
    status: DeliveryStatus
    response_code: int | None = None
    response_time_ms: int
    attempt: int
    error: str | None = None


class WebhookTestResult(CamelModel):
    """Result of a synthetic test delivery."""

    webhook_id: str
    webhook_name: str
    url: str
    event_id: str
    delivery_id: str
    status: DeliveryStatus
    response_code: int | None = None
    response_time: int = Field(..., description="Milliseconds")
    signature: str
    payload: dict[str, Any]
    error: str | None = None
