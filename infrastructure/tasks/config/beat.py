"""Celery beat schedule configuration.

The retry sweep picks up pending webhook deliveries whose ``next_retry_at``
has passed; the purge keeps the inbound dedupe table bounded.
"""
from __future__ import annotations

from celery.schedules import crontab

CELERY_BEAT_SCHEDULE = {
    "webhooks-retry-pending": {
        "task": "webhooks.retry_pending",
        "schedule": 60.0,
    },
    "webhooks-purge-processed-events": {
        "task": "webhooks.purge_processed_events",
        "schedule": crontab(hour=3, minute=0),
    },
}
