"""
Receiver for signed events posted to this service.

Verification is freshness first, then HMAC. Accepted event ids are stored
in ``processed_events`` under a unique constraint, so a redelivery from any
instance is recognised as a duplicate.
"""
from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from typing import Callable, Mapping, Optional

from application.dtos.webhooks import InboundEventResult
from core.logging_config import get_logger
from core.settings import WebhookSettings, webhook_settings
from core.signatures import VerificationResult, verify_signed_payload
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.webhook.entity import ProcessedEvent
from shared.codes.payment_codes import ErrorKind


logger = get_logger(__name__)


class WebhookReceiver:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        settings: Optional[WebhookSettings] = None,
    ) -> None:
        self._uow_factory = uow_factory
        self.settings = settings or webhook_settings

    def verify(self, headers: Mapping[str, str], raw_body: bytes) -> VerificationResult:
        lowered = {k.lower(): v for k, v in headers.items()}
        return verify_signed_payload(
            raw_body,
            lowered.get(self.settings.signature_header.lower()),
            self.settings.inbound_secret,
            lowered.get(self.settings.timestamp_header.lower()),
            tolerance_seconds=self.settings.tolerance_seconds,
        )

    async def receive(self, headers: Mapping[str, str], raw_body: bytes, *, source: Optional[str] = None) -> InboundEventResult:
        lowered = {k.lower(): v for k, v in headers.items()}
        event_id = lowered.get(self.settings.event_id_header.lower())
        if not event_id:
            return InboundEventResult(
                accepted=False, error_kind=ErrorKind.VALIDATION_ERROR, reason="missing event id header"
            )

        verification = self.verify(lowered, raw_body)
        if not verification:
            logger.warning(
                "inbound_event_rejected",
                event_id=event_id,
                error_kind=verification.error_kind.value if verification.error_kind else None,
                reason=verification.reason,
            )
            return InboundEventResult(
                accepted=False,
                event_id=event_id,
                error_kind=verification.error_kind,
                reason=verification.reason,
            )

        try:
            body = json.loads(raw_body or b"{}")
        except ValueError:
            return InboundEventResult(
                accepted=False, event_id=event_id, error_kind=ErrorKind.VALIDATION_ERROR, reason="body is not JSON"
            )
        event_type = body.get("event") if isinstance(body, dict) else None

        async with self._uow_factory() as uow:
            fresh = await uow.processed_events.mark_processed(
                ProcessedEvent(event_id=event_id, event_type=event_type, source=source)
            )
        if not fresh:
            logger.info("inbound_event_duplicate", event_id=event_id, event_type=event_type)
            return InboundEventResult(
                accepted=True,
                event_id=event_id,
                event_type=event_type,
                duplicate=True,
                error_kind=ErrorKind.DUPLICATE_EVENT,
            )

        logger.info("inbound_event_accepted", event_id=event_id, event_type=event_type, source=source)
        return InboundEventResult(accepted=True, event_id=event_id, event_type=event_type)

    async def purge_processed(self, older_than: Optional[datetime] = None) -> int:
        cutoff = older_than or datetime.now(timezone.utc) - timedelta(
            days=self.settings.processed_event_retention_days
        )
        async with self._uow_factory() as uow:
            removed = await uow.processed_events.purge_older_than(cutoff)
        logger.info("processed_events_purged", removed=removed, cutoff=cutoff.isoformat())
        return removed
