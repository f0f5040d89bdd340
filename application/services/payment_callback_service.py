"""
Inbound payment callback handling at the HTTP boundary.

Every path ends in the provider's acknowledgement. Rejected, unparseable,
replayed and failing callbacks are logged but still acknowledged so the
provider stops retrying.
"""
from __future__ import annotations

from typing import Optional

from application.dtos.payments import CallbackAck, InboundCallback
from application.ports.event_publisher import EventPublisher
from application.services.callback_normalizer import CallbackNormalizer
from application.services.transaction_reconciler import ReconcileOutcome, TransactionReconciler
from core.logging_config import get_logger
from domain.payment.events import PaymentSucceeded
from domain.webhook.entity import WebhookEventType


logger = get_logger(__name__)

DEFAULT_ACK = CallbackAck.of_json({"status": "OK"})


class PaymentCallbackService:
    def __init__(
        self,
        normalizer: CallbackNormalizer,
        reconciler: TransactionReconciler,
        publisher: Optional[EventPublisher] = None,
    ) -> None:
        self.normalizer = normalizer
        self.reconciler = reconciler
        self.publisher = publisher

    async def handle(
        self,
        callback: InboundCallback,
        provider: Optional[str] = None,
        *,
        fallback_ack: Optional[CallbackAck] = None,
    ) -> CallbackAck:
        ack = fallback_ack
        try:
            normalized = self.normalizer.normalize(callback, provider)
            ack = normalized.ack
            if not normalized.accepted:
                return ack
            outcome = await self.reconciler.apply(normalized.event)
            logger.info(
                "payment_callback_processed",
                provider=normalized.provider,
                transaction_id=outcome.transaction_id,
                outcome=outcome.status.value,
            )
            await self._publish(outcome)
            return ack
        except Exception:
            logger.error(
                "payment_callback_failed",
                provider=provider,
                path=callback.path,
                exc_info=True,
            )
            return ack or self._safe_ack(callback, provider)

    def _safe_ack(self, callback: InboundCallback, provider: Optional[str]) -> CallbackAck:
        try:
            return self.normalizer.acknowledgement(callback, provider)
        except Exception:
            logger.error("payment_callback_ack_unavailable", provider=provider, exc_info=True)
            return DEFAULT_ACK

    async def _publish(self, outcome: ReconcileOutcome) -> None:
        event = outcome.domain_event
        if self.publisher is None or not outcome.applied or not isinstance(event, PaymentSucceeded):
            return
        data = {
            "account_id": event.account_id,
            "transaction_id": event.transaction_id,
            "credit_amount": event.credit_amount,
            "balance": outcome.balance,
            "provider": event.provider,
            "payment_reference": event.payment_reference,
        }
        try:
            await self.publisher.publish(WebhookEventType.TOKEN_BALANCE_UPDATED.value, data)
        except Exception:
            # credit is committed; delivery bookkeeping handles retries
            logger.error(
                "balance_update_publish_failed",
                transaction_id=event.transaction_id,
                exc_info=True,
            )
