"""
Exceptions for payment providers mapped to unified BusinessException variants.

Adapters raise these internally; ``BasePaymentClient._guard`` turns them into
failed results tagged with ``exc.kind`` so nothing escapes the adapter.
"""
from __future__ import annotations

from typing import Optional
from domain.common.exceptions import PaymentException
from shared.codes.payment_codes import PaymentCode, ErrorKind


class PaymentProviderError(PaymentException):
    """Provider answered, but refused or returned an unexpected payload."""

    kind = ErrorKind.GATEWAY_REJECTED

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        provider_code: str | None = None,
        details: Optional[dict] = None,
        raw: Optional[dict] = None,
    ):
        full_details = {"provider": provider, "provider_code": provider_code}
        if details:
            full_details.update(details)
        super().__init__(
            code=PaymentCode.PROVIDER_ERROR,
            message=message,
            error_type="PaymentProviderError",
            details=full_details,
        )
        self.raw = raw


class GatewayUnavailableError(PaymentException):
    """Network failure or timeout talking to the provider. Retryable."""

    kind = ErrorKind.GATEWAY_UNAVAILABLE

    def __init__(self, message: str, *, provider: str, details: Optional[dict] = None):
        full_details = {"provider": provider}
        if details:
            full_details.update(details)
        super().__init__(
            code=PaymentCode.GATEWAY_UNAVAILABLE,
            message=message,
            error_type="GatewayUnavailable",
            details=full_details,
        )
        self.raw = None

