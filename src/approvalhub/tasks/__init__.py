"""Celery tasks for background processing.

This module provides async task execution for:
- Webhook delivery of workflow events
- Retry sweeps of failed deliveries
"""

from approvalhub.core.celery_app import celery_app

__all__ = ["celery_app"]
