"""
Outbound webhook transport port.

Implementations POST a pre-serialized body and report the subscriber's
answer. Network failures and timeouts raise ``WebhookDeliveryFailedError``;
any HTTP answer, 2xx or not, is returned as a ``TransportResponse``.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class TransportResponse:
    status_code: int
    body: str = ""
    reason: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


@runtime_checkable
class WebhookTransport(Protocol):
    async def post(
        self,
        url: str,
        body: bytes,
        headers: dict[str, str],
        *,
        timeout: float,
    ) -> TransportResponse: ...

    async def aclose(self) -> None: ...
