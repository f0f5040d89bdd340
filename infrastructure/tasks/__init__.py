"""Background webhook work: fan-out, retry sweeps and dedupe-table purging."""
from .config.celery import celery_app
from .utils.dispatcher import TaskDispatcher

__all__ = ["TaskDispatcher", "celery_app"]
