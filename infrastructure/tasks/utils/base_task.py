"""Base class for webhook Celery jobs"""
from __future__ import annotations

from typing import Any, Optional

from celery import Task
from core.logging_config import get_logger

logger = get_logger(__name__)

# Task kwargs safe to log; event data may carry personal fields
_LOGGED_KWARGS = ("event_type", "older_than")


def _summary(kwargs: Optional[dict[str, Any]]) -> dict[str, Any]:
    kwargs = kwargs or {}
    return {key: kwargs[key] for key in _LOGGED_KWARGS if key in kwargs}


class BaseTask(Task):
    """Structured lifecycle logging without task payloads."""

    def on_failure(self, exc, task_id, args, kwargs, einfo):  # type: ignore[override]
        logger.error(
            "celery_task_failure",
            task_id=task_id,
            task_name=self.name,
            error=str(exc),
            error_type=type(exc).__name__,
            **_summary(kwargs),
        )
        super().on_failure(exc, task_id, args, kwargs, einfo)

    def on_success(self, retval, task_id, args, kwargs):  # type: ignore[override]
        logger.info(
            "celery_task_success",
            task_id=task_id,
            task_name=self.name,
            **_summary(kwargs),
        )
        super().on_success(retval, task_id, args, kwargs)
