"""Database models for the approval hub."""

from approvalhub.models.approval import ServiceApproval, ServiceApprovalDecision
from approvalhub.models.base import Base, TimestampMixin
from approvalhub.models.service import ServiceIdentity
from approvalhub.models.webhook import ServiceWebhook, WebhookDelivery, WebhookEvent

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    # Identity
    "ServiceIdentity",
    # Workflow
    "ServiceApproval",
    "ServiceApprovalDecision",
    # Webhooks
    "ServiceWebhook",
    "WebhookEvent",
    "WebhookDelivery",
]
