"""Queue-backed event publisher: callers never import Celery task modules."""
from __future__ import annotations

from typing import Any, Dict

from ..config.celery import celery_app


class TaskDispatcher:
    """Hands events to a worker by task name; delivery happens out of process."""

    async def publish(self, event_type: str, data: Dict[str, Any]) -> None:
        """EventPublisher implementation: emit the webhook from a worker."""
        self.emit_webhook_event(event_type, data)

    def emit_webhook_event(self, event_type: str, data: Dict[str, Any]) -> None:
        celery_app.send_task("webhooks.emit_event", kwargs={"event_type": event_type, "data": data})

