"""Celery app for webhook fan-out, retry sweeps and event-id purging."""
from __future__ import annotations

import os

from celery import Celery
from kombu import Queue

from core.config import settings
from core.logging_config import get_logger
from .beat import CELERY_BEAT_SCHEDULE


logger = get_logger(__name__)

TASK_MODULES = ("infrastructure.tasks.tasks",)

# emit runs ahead of the sweep; purge can wait
WEBHOOK_ROUTES = {
    "webhooks.emit_event": {"queue": "high"},
    "webhooks.retry_pending": {"queue": "default"},
    "webhooks.purge_processed_events": {"queue": "low"},
}

_EAGER_ENVIRONMENTS = {"development", "dev", "test", "testing"}


def _broker_url() -> str | None:
    return settings.redis.url or os.getenv("CELERY_BROKER_URL")


def _backend_url() -> str | None:
    return settings.redis.url or os.getenv("CELERY_RESULT_BACKEND")


celery_app = Celery("payment_gateway", include=list(TASK_MODULES))

celery_app.conf.update(
    broker_url=_broker_url(),
    result_backend=_backend_url(),
    accept_content=["json"],
    task_serializer="json",
    result_serializer="json",
    enable_utc=True,
    timezone="UTC",
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    result_expires=3600,
    task_default_queue="default",
    task_queues=tuple(Queue(name) for name in ("high", "default", "low")),
    task_routes=WEBHOOK_ROUTES,
    beat_schedule=CELERY_BEAT_SCHEDULE,
)

if (settings.ENVIRONMENT or "production").lower() in _EAGER_ENVIRONMENTS:
    celery_app.conf.task_always_eager = True


@celery_app.on_after_configure.connect
def _log_configuration(sender, **kwargs):
    logger.info(
        "celery_configured",
        broker=sender.conf.broker_url,
        queues=[q.name for q in sender.conf.task_queues],
        eager=bool(sender.conf.task_always_eager),
    )
