"""Webhook delivery Celery tasks.

Each task runs its coroutine with ``asyncio.run`` on a private engine so no
connection pool outlives the event loop it was created on.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, TypeVar

from celery import shared_task

from ..utils.base_task import BaseTask
from application.services.webhook_dispatcher import WebhookDispatcher
from application.services.webhook_receiver import WebhookReceiver
from core.config import settings
from core.logging_config import get_logger
from infrastructure.database import build_session_factory
from infrastructure.external.webhooks import HttpxWebhookTransport
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork

logger = get_logger(__name__)

T = TypeVar("T")


def _run(work: Callable[[Callable[..., SQLAlchemyUnitOfWork], HttpxWebhookTransport], Awaitable[T]]) -> T:
    async def _main() -> T:
        engine, session_factory = build_session_factory(settings.database.url)
        transport = HttpxWebhookTransport()

        def uow_factory(**kwargs) -> SQLAlchemyUnitOfWork:
            return SQLAlchemyUnitOfWork(session_factory=session_factory, **kwargs)

        try:
            return await work(uow_factory, transport)
        finally:
            await transport.aclose()
            await engine.dispose()

    return asyncio.run(_main())


@shared_task(name="webhooks.retry_pending", bind=True, base=BaseTask)
def retry_pending(self) -> dict[str, int]:
    """Periodic sweep over due pending deliveries."""

    async def _work(uow_factory, transport):
        return await WebhookDispatcher(uow_factory, transport).retry_pending()

    result = _run(_work)
    return result.model_dump()


@shared_task(name="webhooks.purge_processed_events", bind=True, base=BaseTask)
def purge_processed_events(self, older_than: str | None = None) -> int:
    cutoff = datetime.fromisoformat(older_than) if older_than else None
    if cutoff is not None and cutoff.tzinfo is None:
        cutoff = cutoff.replace(tzinfo=timezone.utc)

    async def _work(uow_factory, transport):
        return await WebhookReceiver(uow_factory).purge_processed(cutoff)

    return _run(_work)


@shared_task(name="webhooks.emit_event", bind=True, base=BaseTask)
def emit_event(self, event_type: str, data: dict[str, Any]) -> dict[str, Any]:
    """Fire-and-forget emission; delivery failures are retried by the sweep, not by Celery."""

    async def _work(uow_factory, transport):
        return await WebhookDispatcher(uow_factory, transport).emit(event_type, data)

    result = _run(_work)
    logger.info("webhook_emit_task_done", event_type=event_type, event_id=result.event_id)
    return result.model_dump(mode="json")
