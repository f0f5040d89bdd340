"""
Registry and selector for payment gateway clients.

Adapters are stateless apart from configuration and a pooled HTTP client,
so one instance per provider is cached for the process lifetime.
"""
from __future__ import annotations

import threading
from typing import Callable, Optional

from core.logging_config import get_logger
from core.settings import PaymentSettings, payment_settings
from application.ports.payment_gateway import PaymentGateway
from domain.common.exceptions import PaymentConfigurationError

from .manual_client import ManualClient
from .midtrans_client import MidtransClient
from .winpay_client import WinpayClient
from .xendit_client import XenditClient


logger = get_logger(__name__)

MANUAL = "manual"

GatewayFactory = Callable[[PaymentSettings], PaymentGateway]

PROVIDERS: dict[str, GatewayFactory] = {
    "winpay": lambda s: WinpayClient(settings=s),
    "xendit": lambda s: XenditClient(settings=s),
    "midtrans": lambda s: MidtransClient(settings=s),
    MANUAL: lambda s: ManualClient(settings=s),
}


class GatewaySelector:
    """Resolve the active adapter: explicit override, configured default, or manual when disabled."""

    def __init__(
        self,
        settings: Optional[PaymentSettings] = None,
        registry: Optional[dict[str, GatewayFactory]] = None,
    ) -> None:
        self.settings = settings or payment_settings
        self._registry = dict(registry or PROVIDERS)
        self._instances: dict[str, PaymentGateway] = {}
        self._lock = threading.Lock()

    @property
    def providers(self) -> list[str]:
        return sorted(self._registry)

    def active_provider(self, provider: Optional[str] = None) -> str:
        if provider:
            return provider.strip().lower()
        if not self.settings.enabled:
            return MANUAL
        return self.settings.provider or MANUAL

    def resolve(self, provider: Optional[str] = None) -> PaymentGateway:
        name = self.active_provider(provider)
        cached = self._instances.get(name)
        if cached is not None:
            return cached
        factory = self._registry.get(name)
        if factory is None:
            raise PaymentConfigurationError(f"Unsupported payment provider: {name}", provider=name, setting="provider")
        with self._lock:
            if name not in self._instances:
                self._instances[name] = factory(self.settings)
                logger.info("payment_gateway_initialized", provider=name)
            return self._instances[name]

    def register(self, name: str, factory: GatewayFactory) -> None:
        with self._lock:
            self._registry[name.lower()] = factory
            self._instances.pop(name.lower(), None)

    def cached(self) -> list[PaymentGateway]:
        with self._lock:
            return list(self._instances.values())

    def clear_cache(self) -> list[PaymentGateway]:
        """Drop cached adapters and return them so callers can close them."""
        with self._lock:
            dropped = list(self._instances.values())
            self._instances.clear()
        return dropped

    async def aclose_all(self) -> None:
        for gateway in self.clear_cache():
            await gateway.aclose()


_selector: Optional[GatewaySelector] = None


def get_gateway_selector() -> GatewaySelector:
    global _selector
    if _selector is None:
        _selector = GatewaySelector()
    return _selector


def get_payment_gateway(provider: Optional[str] = None) -> PaymentGateway:
    return get_gateway_selector().resolve(provider)


def clear_gateway_cache() -> None:
    get_gateway_selector().clear_cache()


async def close_gateways() -> None:
    await get_gateway_selector().aclose_all()


__all__ = [
    "GatewaySelector",
    "PROVIDERS",
    "get_gateway_selector",
    "get_payment_gateway",
    "clear_gateway_cache",
    "close_gateways",
    "ManualClient",
    "MidtransClient",
    "WinpayClient",
    "XenditClient",
]
