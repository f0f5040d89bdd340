"""
Payment gateway port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements adapters.
Operations never raise for provider-side problems: failures come back as
result objects tagged with an ``ErrorKind``.
"""
from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from application.dtos.payments import (
    CallbackAck,
    CancelPayment,
    CancelResult,
    CanonicalCallbackEvent,
    CreatePayment,
    InboundCallback,
    PaymentMethodInfo,
    PaymentQuery,
    PaymentResult,
    PaymentStatusResult,
)
from core.signatures import VerificationResult


@runtime_checkable
class PaymentGateway(Protocol):
    """Gateway protocol for third-party payment providers."""

    provider: str

    def list_available_methods(self) -> list[PaymentMethodInfo]: ...

    async def create_payment(self, req: CreatePayment) -> PaymentResult: ...

    async def check_status(self, query: PaymentQuery) -> PaymentStatusResult: ...

    async def cancel(self, req: CancelPayment) -> CancelResult: ...

    def parse_callback(self, callback: InboundCallback) -> Optional[CanonicalCallbackEvent]: ...

    def verify_callback_signature(self, callback: InboundCallback) -> VerificationResult: ...

    def get_acknowledgement(self, callback: Optional[InboundCallback] = None) -> CallbackAck: ...

    async def aclose(self) -> None: ...


@runtime_checkable
class GatewayResolver(Protocol):
    """Chooses the adapter for a call; implemented by the infrastructure selector."""

    def active_provider(self, provider: Optional[str] = None) -> str: ...

    def resolve(self, provider: Optional[str] = None) -> PaymentGateway: ...
