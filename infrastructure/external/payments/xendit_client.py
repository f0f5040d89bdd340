"""
Xendit adapter: invoices, fixed virtual accounts, e-wallet charges and QRIS.

Authentication is HTTP Basic with the secret key as username. Callbacks are
authenticated by the static ``x-callback-token`` header.
"""
from __future__ import annotations

from typing import Any, Optional

import httpx

from application.dtos.payments import (
    CallbackAck,
    CancelPayment,
    CancelResult,
    CanonicalCallbackEvent,
    CreatePayment,
    EWalletPayment,
    EWalletType,
    InboundCallback,
    PaymentMethodInfo,
    PaymentMethodType,
    PaymentQuery,
    PaymentResult,
    PaymentStatusResult,
    QrPayment,
    VirtualAccountBank,
    VirtualAccountInfo,
)
from core.settings import PaymentSettings
from core.signatures import VerificationResult, constant_time_equals, parse_timestamp, utc_isoformat
from domain.common.exceptions import PaymentConfigurationError, UnsupportedPaymentMethodError
from shared.codes.payment_codes import ErrorKind
from infrastructure.external.payments.base import BasePaymentClient, first_present, to_int_amount


QR_API_VERSION = "2022-07-31"

BANK_CODES: dict[VirtualAccountBank, str] = {
    VirtualAccountBank.BRI: "BRI",
    VirtualAccountBank.BNI: "BNI",
    VirtualAccountBank.BCA: "BCA",
    VirtualAccountBank.MANDIRI: "MANDIRI",
    VirtualAccountBank.PERMATA: "PERMATA",
    VirtualAccountBank.BSI: "BSI",
    VirtualAccountBank.CIMB: "CIMB",
    VirtualAccountBank.SINARMAS: "SAHABAT_SAMPOERNA",
}

EWALLET_CHANNELS: dict[EWalletType, str] = {
    EWalletType.OVO: "ID_OVO",
    EWalletType.DANA: "ID_DANA",
    EWalletType.GOPAY: "ID_GOPAY",
    EWalletType.SHOPEEPAY: "ID_SHOPEEPAY",
    EWalletType.LINKAJA: "ID_LINKAJA",
}

_METHODS = [
    ("xendit_invoice", "Xendit Invoice", "All payment methods in one page", PaymentMethodType.CHECKOUT_PAGE, None, None),
    ("va_bri", "Virtual Account BRI", "Bank Rakyat Indonesia", PaymentMethodType.VIRTUAL_ACCOUNT, VirtualAccountBank.BRI, None),
    ("va_bni", "Virtual Account BNI", "Bank Negara Indonesia", PaymentMethodType.VIRTUAL_ACCOUNT, VirtualAccountBank.BNI, None),
    ("va_bca", "Virtual Account BCA", "Bank Central Asia", PaymentMethodType.VIRTUAL_ACCOUNT, VirtualAccountBank.BCA, None),
    ("va_mandiri", "Virtual Account Mandiri", "Bank Mandiri", PaymentMethodType.VIRTUAL_ACCOUNT, VirtualAccountBank.MANDIRI, None),
    ("va_permata", "Virtual Account Permata", "Bank Permata", PaymentMethodType.VIRTUAL_ACCOUNT, VirtualAccountBank.PERMATA, None),
    ("ewallet_ovo", "OVO", "OVO e-Wallet", PaymentMethodType.EWALLET, None, EWalletType.OVO),
    ("ewallet_dana", "DANA", "DANA e-Wallet", PaymentMethodType.EWALLET, None, EWalletType.DANA),
    ("ewallet_shopeepay", "ShopeePay", "ShopeePay e-Wallet", PaymentMethodType.EWALLET, None, EWalletType.SHOPEEPAY),
    ("qris", "QRIS", "Scan QR Code", PaymentMethodType.QRIS, None, None),
]


class XenditClient(BasePaymentClient):
    provider = "xendit"

    def __init__(
        self,
        *,
        settings: Optional[PaymentSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(settings=settings, transport=transport)
        cfg = self.settings.xendit
        if not cfg.secret_key:
            raise PaymentConfigurationError(
                "XENDIT secret_key not configured", provider=self.provider, setting="secret_key"
            )
        self._cfg = cfg
        self._base = cfg.base_url.rstrip("/")
        self._auth = (cfg.secret_key, "")

    def list_available_methods(self) -> list[PaymentMethodInfo]:
        return [
            PaymentMethodInfo(id=mid, name=name, description=desc, type=mtype, bank=bank, ewallet=wallet)
            for mid, name, desc, mtype, bank, wallet in _METHODS
        ]

    async def _post(self, path: str, body: dict[str, Any], headers: Optional[dict[str, str]] = None):
        resp = await self._request("POST", f"{self._base}{path}", json=body, headers=headers, auth=self._auth)
        if not resp.ok:
            raise self._rejected(
                resp.data.get("message") or f"Xendit responded HTTP {resp.status_code}", resp, code_key="error_code"
            )
        return resp.data

    async def _create_payment(self, req: CreatePayment) -> PaymentResult:
        if req.method_type == PaymentMethodType.CHECKOUT_PAGE:
            return await self._create_invoice(req)
        if req.method_type == PaymentMethodType.VIRTUAL_ACCOUNT:
            return await self._create_va(req)
        if req.method_type == PaymentMethodType.EWALLET:
            return await self._create_ewallet(req)
        if req.method_type == PaymentMethodType.QRIS:
            return await self._create_qris(req)
        raise UnsupportedPaymentMethodError(self.provider, req.method_type.value)

    async def _create_invoice(self, req: CreatePayment) -> PaymentResult:
        minutes = req.expiry_minutes or self.settings.checkout_expiry_minutes
        body = {
            "external_id": req.transaction_id,
            "amount": req.amount,
            "payer_email": req.customer.email,
            "description": ", ".join(item.name for item in req.items) or f"Top-up {req.transaction_id}",
            "invoice_duration": minutes * 60,
            "customer": {
                "given_names": req.customer.name,
                "email": req.customer.email,
                "mobile_number": req.customer.phone,
            },
            "success_redirect_url": req.redirect_url,
            "failure_redirect_url": req.metadata.get("failure_redirect_url") or self.settings.failure_redirect_url,
            "items": [{"name": i.name, "quantity": i.quantity, "price": i.price} for i in req.items],
        }
        data = await self._post("/v2/invoices", body)
        return PaymentResult(
            success=True,
            provider=self.provider,
            gateway_transaction_id=str(data["id"]),
            redirect_url=data["invoice_url"],
            expires_at=parse_timestamp(data.get("expiry_date")) or self._expires_at(minutes),
            raw=data,
        )

    async def _create_va(self, req: CreatePayment) -> PaymentResult:
        bank_code = BANK_CODES.get(req.bank)
        if bank_code is None:
            raise UnsupportedPaymentMethodError(self.provider, f"virtual_account:{req.bank}")
        minutes = self._default_expiry(req)
        body = {
            "external_id": req.transaction_id,
            "bank_code": bank_code,
            "name": req.customer.name,
            "expected_amount": req.amount,
            "is_closed": True,
            "is_single_use": True,
            "expiration_date": utc_isoformat(self._expires_at(minutes)),
        }
        data = await self._post("/callback_virtual_accounts", body)
        return PaymentResult(
            success=True,
            provider=self.provider,
            gateway_transaction_id=str(data["id"]),
            virtual_account=VirtualAccountInfo(
                number=str(data["account_number"]),
                holder_name=data.get("name") or req.customer.name,
                bank_code=data.get("bank_code") or bank_code,
            ),
            expires_at=parse_timestamp(data.get("expiration_date")) or self._expires_at(minutes),
            raw=data,
        )

    async def _create_ewallet(self, req: CreatePayment) -> PaymentResult:
        channel = EWALLET_CHANNELS.get(req.ewallet)
        if channel is None:
            raise UnsupportedPaymentMethodError(self.provider, f"ewallet:{req.ewallet}")
        body = {
            "reference_id": req.transaction_id,
            "currency": "IDR",
            "amount": req.amount,
            "checkout_method": "ONE_TIME_PAYMENT",
            "channel_code": channel,
            "channel_properties": {
                "mobile_number": req.customer.phone,
                "success_redirect_url": req.redirect_url,
            },
        }
        data = await self._post("/ewallets/charges", body)
        actions = data.get("actions") or {}
        return PaymentResult(
            success=True,
            provider=self.provider,
            gateway_transaction_id=str(data["id"]),
            ewallet=EWalletPayment(
                type=req.ewallet,
                deeplink_url=first_present(actions, "mobile_deeplink_checkout_url", "desktop_web_checkout_url"),
                qr_string=actions.get("qr_checkout_string"),
            ),
            expires_at=parse_timestamp(data.get("expiration_date")),
            raw=data,
        )

    async def _create_qris(self, req: CreatePayment) -> PaymentResult:
        body = {
            "reference_id": req.transaction_id,
            "type": "DYNAMIC",
            "currency": "IDR",
            "amount": req.amount,
        }
        data = await self._post("/qr_codes", body, headers={"api-version": QR_API_VERSION})
        return PaymentResult(
            success=True,
            provider=self.provider,
            gateway_transaction_id=str(data["id"]),
            qr=QrPayment(qr_string=data["qr_string"]),
            expires_at=parse_timestamp(data.get("expires_at")),
            raw=data,
        )

    async def _check_status(self, query: PaymentQuery) -> PaymentStatusResult:
        if not query.gateway_transaction_id:
            return PaymentStatusResult.failure("gateway_transaction_id is required for Xendit status check", ErrorKind.VALIDATION_ERROR)
        resp = await self._request(
            "GET",
            f"{self._base}/v2/invoices/{query.gateway_transaction_id}",
            auth=self._auth,
            idempotent=True,
        )
        if not resp.ok:
            raise self._rejected(resp.data.get("message") or "Invoice lookup failed", resp, code_key="error_code")
        data = resp.data
        return PaymentStatusResult(
            success=True,
            status=self._map_status(data.get("status")),
            paid_amount=to_int_amount(data.get("paid_amount")),
            paid_at=parse_timestamp(data.get("paid_at")),
            payment_method=data.get("payment_method"),
            raw=data,
        )

    async def _cancel(self, req: CancelPayment) -> CancelResult:
        if not req.gateway_transaction_id:
            return CancelResult.failure("gateway_transaction_id is required for Xendit cancel", ErrorKind.VALIDATION_ERROR)
        data = await self._post(f"/invoices/{req.gateway_transaction_id}/expire!", {})
        return CancelResult(success=True, raw=data)

    def parse_callback(self, callback: InboundCallback) -> Optional[CanonicalCallbackEvent]:
        data = callback.data
        transaction_id = first_present(data, "external_id", "reference_id")
        if not transaction_id:
            return None
        return CanonicalCallbackEvent(
            transaction_id=str(transaction_id),
            provider=self.provider,
            gateway_transaction_id=data.get("id"),
            status=self._map_status(data.get("status")),
            paid_amount=to_int_amount(first_present(data, "amount", "paid_amount")),
            channel=first_present(data, "bank_code", "channel_code"),
            paid_at=parse_timestamp(first_present(data, "paid_at", "updated")),
            payment_method=first_present(data, "payment_method", "channel_code") or self.provider,
            raw=data,
        )

    def verify_callback_signature(self, callback: InboundCallback) -> VerificationResult:
        if not self._cfg.webhook_token:
            return VerificationResult.invalid("xendit webhook token not configured")
        if not constant_time_equals(callback.header("x-callback-token"), self._cfg.webhook_token):
            return VerificationResult.invalid("callback token mismatch")
        return VerificationResult.ok()

    def get_acknowledgement(self, callback: Optional[InboundCallback] = None) -> CallbackAck:
        return CallbackAck.of_json({"status": "OK"})
