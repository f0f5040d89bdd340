"""
Payment and webhook settings using pydantic-settings v2 with nested env keys.

Kept apart from core.config.Settings so gateway credentials and delivery
policy can be overridden (or injected in tests) without touching app config.

Examples:
    PAYMENT__PROVIDER=winpay
    PAYMENT__WINPAY__PARTNER_ID=...
    PAYMENT__TIMEOUTS__TOTAL=10
    WEBHOOK__RETRY_DELAYS=[60,300,900]
    WEBHOOK__ENDPOINTS='{"huba": {"url": "...", "secret": "...", "events": ["user.verified"]}}'
"""
from __future__ import annotations

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field, field_validator, model_validator

from core.config import settings as app_settings


class PaymentTimeouts(BaseModel):
    connect: float = 5.0
    read: float = 15.0
    write: float = 15.0
    total: float = 30.0


class PaymentRetry(BaseModel):
    max: int = 2
    base_backoff: float = 0.2


class WinpaySettings(BaseModel):
    # SNAP (virtual account) credentials
    partner_id: Optional[str] = None
    private_key: Optional[str] = None
    private_key_path: Optional[str] = None
    # Winpay public key used to verify SNAP callbacks
    public_key: Optional[str] = None
    public_key_path: Optional[str] = None
    # Checkout page credentials
    checkout_key: Optional[str] = None
    checkout_secret: Optional[str] = None
    back_url: Optional[str] = None

    snap_base_url: Optional[str] = None
    checkout_base_url: Optional[str] = None


class XenditSettings(BaseModel):
    secret_key: Optional[str] = None
    public_key: Optional[str] = None
    webhook_token: Optional[str] = None
    base_url: str = "https://api.xendit.co"


class MidtransSettings(BaseModel):
    server_key: Optional[str] = None
    client_key: Optional[str] = None
    merchant_id: Optional[str] = None
    base_url: Optional[str] = None
    snap_url: Optional[str] = None


class ManualSettings(BaseModel):
    bank_name: str = "BCA"
    bank_account_number: str = "1234567890"
    bank_account_name: str = "PT KGITON DIGITAL INDONESIA"
    company_name: str = "KGiTON"
    instructions: str = "Transfer to the account above and send proof of payment via WhatsApp."
    expiry_hours: int = 24
    admin_token: Optional[str] = None


class PaymentSettings(BaseSettings):
    provider: str = "winpay"
    enabled: bool = True
    sandbox: bool = True

    checkout_expiry_minutes: int = 120
    va_expiry_minutes: int = 1440
    success_redirect_url: Optional[str] = None
    failure_redirect_url: Optional[str] = None
    callback_url: Optional[str] = None

    # Paid vs. requested amount difference tolerated without a warning
    amount_tolerance: int = 1
    # Freshness window for signed inbound callbacks
    tolerance_seconds: int = 300

    timeouts: PaymentTimeouts = Field(default_factory=PaymentTimeouts)
    retry: PaymentRetry = Field(default_factory=PaymentRetry)

    winpay: WinpaySettings = Field(default_factory=WinpaySettings)
    xendit: XenditSettings = Field(default_factory=XenditSettings)
    midtrans: MidtransSettings = Field(default_factory=MidtransSettings)
    manual: ManualSettings = Field(default_factory=ManualSettings)

    model_config = SettingsConfigDict(
        env_prefix="PAYMENT__",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        env_nested_delimiter="__",
    )

    @field_validator("provider")
    @classmethod
    def _lower_provider(cls, v: str) -> str:
        return (v or "").strip().lower()

    @model_validator(mode="after")
    def _derive_urls(self):
        base = app_settings.APP_URL
        if not self.success_redirect_url:
            self.success_redirect_url = f"{base}/payment/success"
        if not self.failure_redirect_url:
            self.failure_redirect_url = f"{base}/payment/failed"
        if not self.callback_url:
            self.callback_url = f"{base}/api/v1/webhooks/payment/callback"
        return self


class WebhookEndpoint(BaseModel):
    url: str
    secret: str
    enabled: bool = True
    events: list[str] = Field(default_factory=list)


class WebhookSettings(BaseSettings):
    max_attempts: int = 5
    retry_delays: list[int] = Field(default_factory=lambda: [60, 300, 900, 3600, 7200])
    timeout_seconds: float = 30.0
    tolerance_seconds: int = 300
    sweep_batch_size: int = 100

    signature_header: str = "x-kgiton-signature"
    timestamp_header: str = "x-kgiton-timestamp"
    event_id_header: str = "x-kgiton-event-id"

    # Secret shared with producers that post signed events to us
    inbound_secret: Optional[str] = None
    processed_event_retention_days: int = 7

    endpoints: dict[str, WebhookEndpoint] = Field(default_factory=dict)

    model_config = SettingsConfigDict(
        env_prefix="WEBHOOK__",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        env_nested_delimiter="__",
    )

    @field_validator("retry_delays")
    @classmethod
    def _non_empty_delays(cls, v: list[int]) -> list[int]:
        if not v:
            raise ValueError("retry_delays must contain at least one delay")
        if any(d <= 0 for d in v):
            raise ValueError("retry_delays must be positive seconds")
        return v

    def subscribers_for(self, event_type: str) -> list[tuple[str, WebhookEndpoint]]:
        """Enabled endpoints subscribed to ``event_type``, in config order."""
        return [
            (name, ep)
            for name, ep in self.endpoints.items()
            if ep.enabled and event_type in ep.events
        ]

    def endpoint_for_url(self, url: str) -> Optional[tuple[str, WebhookEndpoint]]:
        for name, ep in self.endpoints.items():
            if ep.url == url:
                return name, ep
        return None


payment_settings = PaymentSettings()
webhook_settings = WebhookSettings()
