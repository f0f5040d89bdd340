"""
Event publisher port used by use-cases that fan out internal events.

The in-process ``WebhookDispatcher`` and the Celery ``TaskDispatcher`` both
satisfy it, so callers do not care whether delivery happens inline.
"""
from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class EventPublisher(Protocol):
    async def publish(self, event_type: str, data: dict[str, Any]) -> None: ...
