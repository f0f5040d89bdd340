"""
Outbound webhook dispatcher.

``emit`` creates one delivery row per subscribed endpoint and makes the
first attempt immediately; ``retry_pending`` is the periodic sweep. Each
attempt first claims its row with a conditional update (status pending and
the expected attempt count, no live lease), which also leases the row via
``next_retry_at`` so a concurrent sweep skips it. Subscribers dedupe on
``event_id``.
"""
from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional, Union

from application.dtos.webhooks import EmitResult, RetrySweepResult, WebhookDeliveryDTO
from application.ports.webhook_transport import WebhookTransport
from core.logging_config import get_logger
from core.settings import WebhookEndpoint, WebhookSettings, webhook_settings
from core.signatures import hmac_sign, minify_json, utc_isoformat
from domain.common.exceptions import DomainValidationException, WebhookDeliveryFailedError
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.webhook.entity import DeliveryStatus, WebhookDelivery, WebhookEventType


logger = get_logger(__name__)

ENDPOINT_NOT_FOUND = "Endpoint configuration not found"
# extra lease time on top of the request timeout
LEASE_MARGIN_SECONDS = 30


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WebhookDispatcher:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        transport: WebhookTransport,
        settings: Optional[WebhookSettings] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._uow_factory = uow_factory
        self.transport = transport
        self.settings = settings or webhook_settings
        self._clock = clock

    @staticmethod
    def build_payload(event_type: str, event_id: str, data: dict[str, Any], now: datetime) -> dict[str, Any]:
        return {"event": event_type, "event_id": event_id, "timestamp": utc_isoformat(now), "data": data}

    def signed_headers(self, body: bytes, secret: str, event_id: str, timestamp: str) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            self.settings.signature_header: hmac_sign(body, secret, timestamp),
            self.settings.timestamp_header: timestamp,
            self.settings.event_id_header: event_id,
        }

    async def publish(self, event_type: str, data: dict[str, Any]) -> None:
        await self.emit(event_type, data)

    async def emit(
        self,
        event_type: Union[str, WebhookEventType],
        data: dict[str, Any],
        *,
        event_id: Optional[str] = None,
    ) -> EmitResult:
        try:
            event_type = WebhookEventType(event_type).value
        except ValueError:
            raise DomainValidationException(
                f"Unknown webhook event type: {event_type}", field="event_type"
            ) from None

        now = self._clock()
        event_id = event_id or str(uuid.uuid4())
        payload = self.build_payload(event_type, event_id, data, now)

        targets: dict[str, WebhookEndpoint] = {}
        for _, endpoint in self.settings.subscribers_for(event_type):
            targets.setdefault(endpoint.url, endpoint)
        if not targets:
            logger.info("webhook_no_subscribers", event_type=event_type, event_id=event_id)
            return EmitResult(event_id=event_id, event_type=event_type)

        async with self._uow_factory() as uow:
            created = [
                await uow.webhook_deliveries.create(
                    WebhookDelivery(
                        id=None,
                        event_type=event_type,
                        event_id=event_id,
                        payload=payload,
                        target_url=url,
                        max_attempts=self.settings.max_attempts,
                        created_at=now,
                        updated_at=now,
                    )
                )
                for url in targets
            ]
        logger.info(
            "webhook_event_emitted",
            event_type=event_type,
            event_id=event_id,
            subscribers=len(created),
        )

        delivered = await asyncio.gather(
            *(self.deliver(delivery, targets[delivery.target_url]) for delivery in created)
        )
        return EmitResult(
            event_id=event_id,
            event_type=event_type,
            deliveries=[WebhookDeliveryDTO.model_validate(d) for d in delivered],
        )

    async def deliver(self, delivery: WebhookDelivery, endpoint: WebhookEndpoint) -> WebhookDelivery:
        """Make one attempt. Returns the row as this attempt left it, or unchanged if another worker holds it."""
        expected = delivery.attempt_count
        attempt_no = expected + 1
        now = self._clock()
        lease_until = now + timedelta(seconds=self.settings.timeout_seconds + LEASE_MARGIN_SECONDS)

        async with self._uow_factory() as uow:
            claimed = await uow.webhook_deliveries.claim(delivery.id, expected, now, lease_until)
        if not claimed:
            logger.info(
                "webhook_delivery_claim_lost",
                delivery_id=delivery.id,
                event_id=delivery.event_id,
                attempt_no=attempt_no,
            )
            return delivery

        body = minify_json(delivery.payload).encode("utf-8")
        timestamp = utc_isoformat(now)
        headers = self.signed_headers(body, endpoint.secret, delivery.event_id, timestamp)

        try:
            resp = await self.transport.post(
                delivery.target_url, body, headers, timeout=self.settings.timeout_seconds
            )
        except WebhookDeliveryFailedError as exc:
            delivery.record_failure(exc.message, self._clock(), self.settings.retry_delays)
        else:
            if resp.ok:
                delivery.record_success(resp.status_code, resp.body, self._clock())
            else:
                delivery.record_failure(
                    f"HTTP {resp.status_code}",
                    self._clock(),
                    self.settings.retry_delays,
                    status_code=resp.status_code,
                    body=resp.body,
                )

        async with self._uow_factory() as uow:
            await uow.webhook_deliveries.save_attempt(delivery, attempt_no)

        log = logger.info if delivery.status is DeliveryStatus.DELIVERED else logger.warning
        log(
            "webhook_delivery_attempted",
            delivery_id=delivery.id,
            event_id=delivery.event_id,
            event_type=delivery.event_type,
            target_url=delivery.target_url,
            attempt_no=attempt_no,
            status=delivery.status.value,
            status_code=delivery.response_status_code,
            error=delivery.last_error,
            next_retry_at=delivery.next_retry_at.isoformat() if delivery.next_retry_at else None,
        )
        return delivery

    async def retry_pending(self, now: Optional[datetime] = None) -> RetrySweepResult:
        now = now or self._clock()
        async with self._uow_factory(readonly=True) as uow:
            due = await uow.webhook_deliveries.list_due(now, self.settings.sweep_batch_size)

        result = RetrySweepResult(due=len(due))
        for delivery in due:
            found = self.settings.endpoint_for_url(delivery.target_url)
            if found is None:
                delivery.record_permanent_failure(ENDPOINT_NOT_FOUND, now)
                async with self._uow_factory() as uow:
                    await uow.webhook_deliveries.mark_failed(delivery)
                logger.warning(
                    "webhook_endpoint_missing",
                    delivery_id=delivery.id,
                    event_id=delivery.event_id,
                    target_url=delivery.target_url,
                )
                result.failed += 1
                continue
            _, endpoint = found
            if not endpoint.enabled:
                result.skipped += 1
                continue

            before = delivery.attempt_count
            updated = await self.deliver(delivery, endpoint)
            if updated.attempt_count == before:
                result.skipped += 1
                continue
            result.attempted += 1
            if updated.status is DeliveryStatus.DELIVERED:
                result.delivered += 1
            elif updated.status is DeliveryStatus.FAILED:
                result.failed += 1

        if due:
            logger.info("webhook_retry_sweep_completed", **result.model_dump())
        return result

    async def get_delivery_status(self, event_id: str) -> list[WebhookDeliveryDTO]:
        async with self._uow_factory(readonly=True) as uow:
            deliveries = await uow.webhook_deliveries.list_by_event_id(event_id)
        return [WebhookDeliveryDTO.model_validate(d) for d in deliveries]
