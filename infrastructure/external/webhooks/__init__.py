from typing import Optional

from .http_transport import HttpxWebhookTransport

_transport: Optional[HttpxWebhookTransport] = None


def get_webhook_transport() -> HttpxWebhookTransport:
    global _transport
    if _transport is None:
        _transport = HttpxWebhookTransport()
    return _transport


async def close_webhook_transport() -> None:
    global _transport
    if _transport is not None:
        await _transport.aclose()
        _transport = None


__all__ = ["HttpxWebhookTransport", "get_webhook_transport", "close_webhook_transport"]
