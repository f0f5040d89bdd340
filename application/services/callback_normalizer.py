"""
Turns an inbound provider callback into a canonical event.

Provider identity comes from the endpoint (provider-specific routes) or from
structural sniffing of the body (universal route). Authenticity is checked
before parsing; an unverified callback never yields an event.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from application.dtos.payments import CallbackAck, CanonicalCallbackEvent, InboundCallback
from application.ports.payment_gateway import GatewayResolver
from core.logging_config import get_logger
from core.signatures import VerificationResult


logger = get_logger(__name__)


@dataclass
class NormalizedCallback:
    provider: str
    verification: VerificationResult
    ack: CallbackAck
    event: Optional[CanonicalCallbackEvent] = None

    @property
    def accepted(self) -> bool:
        return self.verification.valid and self.event is not None


class CallbackNormalizer:
    def __init__(self, selector: GatewayResolver) -> None:
        self.selector = selector

    def detect_provider(self, callback: InboundCallback) -> str:
        data = callback.data
        invoice = data.get("invoice")
        if (data.get("trxId") and data.get("paidAmount") is not None) or (
            isinstance(invoice, dict) and invoice.get("ref")
        ):
            return "winpay"
        if data.get("order_id") and data.get("transaction_status"):
            return "midtrans"
        if data.get("external_id") or data.get("reference_id"):
            return "xendit"
        if (data.get("transaction_id") or data.get("transactionId")) and data.get("status"):
            return "manual"
        return self.selector.active_provider()

    def acknowledgement(self, callback: InboundCallback, provider: Optional[str] = None) -> CallbackAck:
        name = provider or self.detect_provider(callback)
        return self.selector.resolve(name).get_acknowledgement(callback)

    def normalize(self, callback: InboundCallback, provider: Optional[str] = None) -> NormalizedCallback:
        name = provider or self.detect_provider(callback)
        gateway = self.selector.resolve(name)
        ack = gateway.get_acknowledgement(callback)

        verification = gateway.verify_callback_signature(callback)
        if not verification:
            logger.warning(
                "payment_callback_rejected",
                provider=name,
                path=callback.path,
                error_kind=verification.error_kind.value if verification.error_kind else None,
                reason=verification.reason,
            )
            return NormalizedCallback(provider=name, verification=verification, ack=ack)

        try:
            event = gateway.parse_callback(callback)
        except (KeyError, TypeError, ValueError):
            logger.warning("payment_callback_unparseable", provider=name, path=callback.path, exc_info=True)
            event = None
        if event is None:
            logger.info("payment_callback_ignored", provider=name, path=callback.path)
        return NormalizedCallback(provider=name, verification=verification, ack=ack, event=event)
