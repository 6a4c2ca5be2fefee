"""Data access repositories."""

from approvalhub.repositories.approval import (
    ServiceApprovalDecisionRepository,
    ServiceApprovalRepository,
)
from approvalhub.repositories.base import BaseRepository
from approvalhub.repositories.service import ServiceIdentityRepository
from approvalhub.repositories.webhook import (
    ServiceWebhookRepository,
    WebhookDeliveryRepository,
    WebhookEventRepository,
)

__all__ = [
    "BaseRepository",
    "ServiceIdentityRepository",
    "ServiceApprovalRepository",
    "ServiceApprovalDecisionRepository",
    "ServiceWebhookRepository",
    "WebhookEventRepository",
    "WebhookDeliveryRepository",
]
