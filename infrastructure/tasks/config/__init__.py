from .beat import CELERY_BEAT_SCHEDULE
from .celery import WEBHOOK_ROUTES, celery_app

__all__ = ["CELERY_BEAT_SCHEDULE", "WEBHOOK_ROUTES", "celery_app"]
