"""
httpx implementation of the webhook transport.
"""
from __future__ import annotations

from typing import Optional

import httpx

from application.ports.webhook_transport import TransportResponse, WebhookTransport
from core.logging_config import get_logger
from domain.common.exceptions import WebhookDeliveryFailedError


logger = get_logger(__name__)


class HttpxWebhookTransport(WebhookTransport):
    """Single pooled AsyncClient; per-call timeout bounds each attempt."""

    def __init__(self, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(transport=self._transport, follow_redirects=False)
        return self._client

    async def post(
        self,
        url: str,
        body: bytes,
        headers: dict[str, str],
        *,
        timeout: float,
    ) -> TransportResponse:
        try:
            resp = await self._get_client().post(url, content=body, headers=headers, timeout=timeout)
        except httpx.TimeoutException as exc:
            raise WebhookDeliveryFailedError(f"Timeout after {timeout:g}s", url=url) from exc
        except httpx.HTTPError as exc:
            raise WebhookDeliveryFailedError(f"{type(exc).__name__}: {exc}", url=url) from exc
        return TransportResponse(status_code=resp.status_code, body=resp.text, reason=resp.reason_phrase)

    async def aclose(self) -> None:
        if self._client is not None:
            try:
                await self._client.aclose()
            finally:
                self._client = None
