"""
Manual adapter: bank transfer or cash confirmed by an operator.

There is no remote API. Creation returns transfer instructions, and the
"callback" is an admin confirmation posted to the same callback endpoint.
"""
from __future__ import annotations

from typing import Optional

from application.dtos.payments import (
    CallbackAck,
    CancelPayment,
    CancelResult,
    CanonicalCallbackEvent,
    CreatePayment,
    InboundCallback,
    ManualInstructions,
    PaymentMethodInfo,
    PaymentMethodType,
    PaymentQuery,
    PaymentResult,
    PaymentStatusResult,
)
from core.logging_config import get_logger
from core.settings import PaymentSettings
from core.signatures import VerificationResult, constant_time_equals, parse_timestamp
from domain.payment.entity import PaymentStatus
from infrastructure.external.payments.base import BasePaymentClient, first_present, to_int_amount


logger = get_logger(__name__)


def reference_code(transaction_id: str) -> str:
    """``PAY-`` plus the last 8 characters of the id without dashes."""
    return "PAY-" + transaction_id.replace("-", "")[-8:].upper()


class ManualClient(BasePaymentClient):
    provider = "manual"

    def __init__(self, *, settings: Optional[PaymentSettings] = None, **kwargs):
        super().__init__(settings=settings, **kwargs)
        self._cfg = self.settings.manual
        if not self._cfg.admin_token:
            logger.warning("manual_admin_token_missing", detail="manual confirmations will be rejected")

    def list_available_methods(self) -> list[PaymentMethodInfo]:
        cfg = self._cfg
        return [
            PaymentMethodInfo(
                id="manual_transfer",
                name="Manual Bank Transfer",
                description=f"Transfer to {cfg.bank_name} - {cfg.bank_account_number} ({cfg.bank_account_name})",
                type=PaymentMethodType.MANUAL,
            ),
            PaymentMethodInfo(
                id="manual_cash",
                name="Cash Payment",
                description=f"Pay at {cfg.company_name} office",
                type=PaymentMethodType.MANUAL,
            ),
        ]

    async def _create_payment(self, req: CreatePayment) -> PaymentResult:
        minutes = req.expiry_minutes or self._cfg.expiry_hours * 60
        expires_at = self._expires_at(minutes)
        code = reference_code(req.transaction_id)
        return PaymentResult(
            success=True,
            provider=self.provider,
            gateway_transaction_id=req.transaction_id,
            manual_instructions=ManualInstructions(
                bank_name=self._cfg.bank_name,
                account_number=self._cfg.bank_account_number,
                account_name=self._cfg.bank_account_name,
                amount=req.amount,
                reference_code=code,
                instructions=self._cfg.instructions,
            ),
            expires_at=expires_at,
            raw={
                "provider": self.provider,
                "transactionId": req.transaction_id,
                "amount": req.amount,
                "expiry": expires_at.isoformat(),
                "referenceCode": code,
            },
        )

    async def _check_status(self, query: PaymentQuery) -> PaymentStatusResult:
        # Status lives in our own store until an operator confirms it
        return PaymentStatusResult(
            success=True,
            status=PaymentStatus.PENDING,
            raw={
                "provider": self.provider,
                "transactionId": query.transaction_id,
                "message": "Manual payment requires admin verification",
            },
        )

    async def _cancel(self, req: CancelPayment) -> CancelResult:
        return CancelResult(
            success=True,
            raw={
                "provider": self.provider,
                "transactionId": req.transaction_id,
                "message": "Transaction marked for cancellation",
            },
        )

    def parse_callback(self, callback: InboundCallback) -> Optional[CanonicalCallbackEvent]:
        data = callback.data
        transaction_id = first_present(data, "transaction_id", "transactionId")
        if not transaction_id:
            return None
        return CanonicalCallbackEvent(
            transaction_id=str(transaction_id),
            provider=self.provider,
            gateway_transaction_id=str(transaction_id),
            status=self._map_status(data.get("status")),
            paid_amount=to_int_amount(data.get("amount")),
            channel=data.get("channel") or "bank_transfer",
            paid_at=parse_timestamp(first_present(data, "paid_at", "confirmedAt")),
            payment_method=self.provider,
            raw=data,
        )

    def verify_callback_signature(self, callback: InboundCallback) -> VerificationResult:
        expected = self._cfg.admin_token
        if not expected:
            return VerificationResult.invalid("manual admin token not configured")
        if not constant_time_equals(callback.header("x-admin-token"), expected):
            return VerificationResult.invalid("admin token mismatch")
        return VerificationResult.ok()

    def get_acknowledgement(self, callback: Optional[InboundCallback] = None) -> CallbackAck:
        return CallbackAck.of_json({"success": True, "message": "Manual payment confirmation received"})
