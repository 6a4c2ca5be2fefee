"""Celery application configuration.

Provides task queue infrastructure with Redis broker for:
- Webhook delivery (high priority)
- Retry sweep of failed deliveries (scheduled)
"""

from celery import Celery
from kombu import Exchange, Queue

from approvalhub.core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "approvalhub",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "approvalhub.tasks.webhook_tasks",
    ],
)

default_exchange = Exchange("default", type="direct")
priority_exchange = Exchange("priority", type="direct")

# Priority: high (5) > normal (0) > low (-5)
celery_app.conf.task_queues = (
    # High: webhook deliveries triggered by workflow transitions
    Queue(
        "high",
        exchange=priority_exchange,
        routing_key="high",
        queue_arguments={"x-max-priority": 5},
    ),
    # Normal: retry sweeps
    Queue(
        "normal",
        exchange=default_exchange,
        routing_key="normal",
        queue_arguments={"x-max-priority": 0},
    ),
    Queue(
        "low",
        exchange=default_exchange,
        routing_key="low",
        queue_arguments={"x-max-priority": -5},
    ),
)

celery_app.conf.task_default_queue = "normal"
celery_app.conf.task_default_exchange = "default"
celery_app.conf.task_default_routing_key = "normal"

celery_app.conf.task_routes = {
    "approvalhub.tasks.webhook_tasks.deliver_webhook_event": {"queue": "high"},
    "approvalhub.tasks.webhook_tasks.retry_failed_deliveries": {"queue": "normal"},
}

celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # Timezone
    timezone="UTC",
    enable_utc=True,

    # Task execution
    task_acks_late=True,  # Acknowledge after task completes
    task_reject_on_worker_lost=True,  # Requeue if worker dies
    task_track_started=True,

    # Result backend
    result_expires=86400,
    result_extended=True,

    # Worker configuration
    worker_prefetch_multiplier=4,
    worker_max_tasks_per_child=1000,

    # Logging
    worker_hijack_root_logger=False,

    # Broker settings
    broker_connection_retry_on_startup=True,
    broker_connection_max_retries=10,
    broker_pool_limit=10,

    beat_scheduler="celery.beat:PersistentScheduler",
    beat_schedule_filename=".celery-beat-schedule",
)

celery_app.conf.beat_schedule = {
    "retry-failed-webhook-deliveries": {
        "task": "approvalhub.tasks.webhook_tasks.retry_failed_deliveries",
        "schedule": settings.webhook_retry_sweep_seconds,
        "options": {"queue": "normal"},
    },
}
