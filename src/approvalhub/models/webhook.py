"""Webhook registration, event and delivery models."""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from approvalhub.models.base import Base, JSONType, TimestampMixin, generate_id, utcnow


class ServiceWebhook(Base, TimestampMixin):
    """Subscription of a service identity to a set of event types."""

    __tablename__ = "service_webhooks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    service_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("service_identities.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    events: Mapped[list[str]] = mapped_column(JSONType, nullable=False)
    secret: Mapped[str] = mapped_column(String(128), nullable=False)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    timeout: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint("retry_count BETWEEN 0 AND 10", name="ck_webhook_retry_count"),
        CheckConstraint("timeout BETWEEN 5 AND 300", name="ck_webhook_timeout"),
    )


class WebhookEvent(Base):
    """Immutable record of a workflow fact.

    ``approval_id`` is nulled when the approval is deleted; the payload
    snapshot keeps the historical value.
    """

    __tablename__ = "webhook_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    service_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("service_identities.id"), nullable=False, index=True
    )
    event_type: Mapped[str] = mapped_column(String(40), nullable=False, index=True)
    approval_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("service_approvals.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    payload: Mapped[dict] = mapped_column(JSONType, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False, index=True
    )


class WebhookDelivery(Base):
    """One delivery attempt of an event to a webhook. Append-only."""

    __tablename__ = "webhook_deliveries"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    webhook_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("service_webhooks.id"), nullable=False, index=True
    )
    event_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("webhook_events.id"), nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(String(10), nullable=False, default="PENDING")
    response_code: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    response_body: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    delivered_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    next_retry_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False, index=True
    )

    __table_args__ = (
        Index("idx_delivery_retry", "status", "next_retry_at"),
        CheckConstraint(
            "status IN ('PENDING', 'SUCCESS', 'FAILED')",
            name="ck_delivery_status",
        ),
    )
