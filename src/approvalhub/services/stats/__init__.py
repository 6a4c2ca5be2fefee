"""Delivery and usage statistics module."""

from approvalhub.services.stats.schemas import ApprovalStats
from approvalhub.services.stats.service import (
    ApprovalStatsService,
    get_approval_stats_service,
    webhook_delivery_stats,
)

__all__ = [
    "ApprovalStats",
    "ApprovalStatsService",
    "get_approval_stats_service",
    "webhook_delivery_stats",
]
