"""
Base payment client implementing shared concerns: http, retry, logging, mapping.

Concrete providers subclass and implement provider-specific logic. Provider
operations are wrapped by ``_guard`` so business exceptions raised inside an
adapter come back as failed results tagged with an ``ErrorKind``.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional, TypeVar
from contextlib import asynccontextmanager

import httpx
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential, retry_if_exception_type

from core.logging_config import get_logger
from core.settings import PaymentSettings, payment_settings
from core.signatures import VerificationResult
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
from application.ports.payment_gateway import PaymentGateway
from domain.common.exceptions import PaymentException
from domain.payment.entity import PaymentStatus
from infrastructure.external.payments.exceptions import (
    GatewayUnavailableError,
    PaymentProviderError,
)
from shared.codes.payment_codes import PROVIDER_STATUS_TO_INTERNAL, ErrorKind


logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class ProviderResponse:
    status_code: int
    data: dict[str, Any] = field(default_factory=dict)
    text: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


def first_present(data: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            return value
    return None


def to_int_amount(value: Any) -> Optional[int]:
    """Provider amount ("100000.00", 100000, "100000") -> int rupiah."""
    if value is None or value == "":
        return None
    try:
        return int(round(float(value)))
    except (TypeError, ValueError):
        return None


class BasePaymentClient(PaymentGateway):
    provider: str = "base"

    def __init__(
        self,
        *,
        settings: Optional[PaymentSettings] = None,
        timeouts: Optional[dict[str, float]] = None,
        retry: Optional[dict[str, Any]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        settings = settings or payment_settings
        self._settings: PaymentSettings = settings
        self._timeouts_cfg = timeouts or settings.timeouts.model_dump()
        self._retry_cfg = retry or {"max": settings.retry.max, "base": settings.retry.base_backoff}
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def settings(self) -> PaymentSettings:
        return self._settings

    @property
    def timeouts(self) -> httpx.Timeout:
        return httpx.Timeout(
            connect=self._timeouts_cfg["connect"],
            read=self._timeouts_cfg["read"],
            write=self._timeouts_cfg["write"],
            timeout=self._timeouts_cfg["total"],
        )

    @asynccontextmanager
    async def client(self):
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeouts, transport=self._transport)
        try:
            yield self._client
        finally:
            # Keep open for reuse; explicit aclose() will close.
            ...

    async def aclose(self) -> None:
        """Close underlying HTTP client if created."""
        if self._client is not None:
            try:
                await self._client.aclose()
            finally:
                self._client = None

    async def _retry(self, fn: Callable[[], Awaitable[T]]) -> T:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(int(self._retry_cfg["max"]) + 1),
            wait=wait_exponential(multiplier=self._retry_cfg["base"], min=0.1, max=2.0),
            retry=retry_if_exception_type((httpx.TimeoutException, httpx.TransportError)),
            reraise=True,
        ):
            with attempt:
                return await fn()

    async def _request(
        self,
        method: str,
        url: str,
        *,
        json: Any = None,
        content: Optional[bytes] = None,
        headers: Optional[dict[str, str]] = None,
        auth: Optional[httpx.Auth | tuple[str, str]] = None,
        idempotent: bool = False,
    ) -> ProviderResponse:
        """Send one provider call. Only idempotent calls are retried."""

        async def _send() -> httpx.Response:
            async with self.client() as c:
                return await c.request(method, url, json=json, content=content, headers=headers, auth=auth)

        try:
            resp = await (self._retry(_send) if idempotent else _send())
        except httpx.TimeoutException as exc:
            raise GatewayUnavailableError(
                f"Timeout calling {self.provider}", provider=self.provider, details={"url": url}
            ) from exc
        except httpx.TransportError as exc:
            raise GatewayUnavailableError(
                f"Network error calling {self.provider}: {exc}", provider=self.provider, details={"url": url}
            ) from exc

        try:
            data = resp.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {"data": data}
        self._log("provider_http_response", method=method, url=url, status_code=resp.status_code)

        if resp.status_code >= 500:
            raise GatewayUnavailableError(
                f"{self.provider} responded HTTP {resp.status_code}",
                provider=self.provider,
                details={"url": url, "status_code": resp.status_code},
            )
        return ProviderResponse(status_code=resp.status_code, data=data, text=resp.text)

    async def _guard(
        self,
        operation: str,
        fn: Callable[[], Awaitable[T]],
        on_error: Callable[[str, ErrorKind, Optional[dict]], T],
    ) -> T:
        try:
            return await fn()
        except PaymentException as exc:
            logger.warning(
                "payment_provider_operation_failed",
                provider=self.provider,
                operation=operation,
                error_kind=exc.kind.value,
                error=exc.message,
            )
            return on_error(exc.message, exc.kind, getattr(exc, "raw", None))
        except (KeyError, TypeError, ValueError) as exc:
            logger.error(
                "payment_provider_unexpected_payload",
                provider=self.provider,
                operation=operation,
                exc_info=True,
            )
            return on_error(f"Unexpected {self.provider} response: {exc}", ErrorKind.GATEWAY_REJECTED, None)

    def _rejected(self, message: str, resp: ProviderResponse, code_key: str = "responseCode") -> PaymentProviderError:
        return PaymentProviderError(
            message,
            provider=self.provider,
            provider_code=str(resp.data.get(code_key) or resp.status_code),
            raw=resp.data,
        )

    # Public operations wrap the provider hooks below
    async def create_payment(self, req: CreatePayment) -> PaymentResult:
        self._log("payment_create_request", transaction_id=req.transaction_id, method_type=req.method_type.value)
        result = await self._guard(
            "create_payment",
            lambda: self._create_payment(req),
            lambda msg, kind, raw: PaymentResult.failure(self.provider, msg, kind, raw),
        )
        self._log(
            "payment_create_response",
            transaction_id=req.transaction_id,
            success=result.success,
            error_kind=result.error_kind.value if result.error_kind else None,
            gateway_transaction_id=result.gateway_transaction_id,
        )
        return result

    async def check_status(self, query: PaymentQuery) -> PaymentStatusResult:
        return await self._guard(
            "check_status",
            lambda: self._check_status(query),
            lambda msg, kind, raw: PaymentStatusResult.failure(msg, kind, raw),
        )

    async def cancel(self, req: CancelPayment) -> CancelResult:
        return await self._guard(
            "cancel",
            lambda: self._cancel(req),
            lambda msg, kind, raw: CancelResult.failure(msg, kind, raw),
        )

    # Provider hooks
    def list_available_methods(self) -> list[PaymentMethodInfo]:  # type: ignore[override]
        raise NotImplementedError

    async def _create_payment(self, req: CreatePayment) -> PaymentResult:
        raise NotImplementedError

    async def _check_status(self, query: PaymentQuery) -> PaymentStatusResult:
        raise NotImplementedError

    async def _cancel(self, req: CancelPayment) -> CancelResult:
        raise NotImplementedError

    def parse_callback(self, callback: InboundCallback) -> Optional[CanonicalCallbackEvent]:  # type: ignore[override]
        raise NotImplementedError

    def verify_callback_signature(self, callback: InboundCallback) -> VerificationResult:  # type: ignore[override]
        raise NotImplementedError

    def get_acknowledgement(self, callback: Optional[InboundCallback] = None) -> CallbackAck:  # type: ignore[override]
        return CallbackAck.of_json({"status": "OK"})

    # Helpers
    def _map_status(self, provider_status: Any) -> PaymentStatus:
        mapping = PROVIDER_STATUS_TO_INTERNAL.get(self.provider, {})
        return PaymentStatus(mapping.get(str(provider_status or ""), PaymentStatus.PENDING.value))

    def _default_expiry(self, req: CreatePayment) -> int:
        if req.expiry_minutes:
            return req.expiry_minutes
        return self._settings.va_expiry_minutes

    @staticmethod
    def _expires_at(minutes: int) -> datetime:
        return datetime.now(timezone.utc) + timedelta(minutes=minutes)

    def _log(self, event: str, **kwargs) -> None:
        logger.info(
            event,
            provider=self.provider,
            **kwargs,
        )
