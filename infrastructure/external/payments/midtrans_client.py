"""
Midtrans adapter: Snap page plus Core API charges (bank transfer, Mandiri
e-channel, GoPay/ShopeePay, QRIS).

Notifications are authenticated with
``signature_key == sha512(order_id + status_code + gross_amount + server_key)``.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
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
from core.signatures import VerificationResult, constant_time_equals, parse_timestamp, sha512_hex
from domain.common.exceptions import PaymentConfigurationError, UnsupportedPaymentMethodError
from infrastructure.external.payments.base import BasePaymentClient, ProviderResponse, first_present, to_int_amount


CORE_URLS = {True: "https://api.sandbox.midtrans.com/v2", False: "https://api.midtrans.com/v2"}
SNAP_URLS = {True: "https://app.sandbox.midtrans.com/snap/v1", False: "https://app.midtrans.com/snap/v1"}

JAKARTA = timezone(timedelta(hours=7))

ECHANNEL = "echannel"

BANK_CODES: dict[VirtualAccountBank, str] = {
    VirtualAccountBank.BRI: "bri",
    VirtualAccountBank.BNI: "bni",
    VirtualAccountBank.BCA: "bca",
    VirtualAccountBank.MANDIRI: ECHANNEL,
    VirtualAccountBank.PERMATA: "permata",
    VirtualAccountBank.BSI: "bsi",
    VirtualAccountBank.CIMB: "cimb",
}

EWALLET_CODES: dict[EWalletType, str] = {
    EWalletType.GOPAY: "gopay",
    EWalletType.SHOPEEPAY: "shopeepay",
}

_METHODS = [
    ("midtrans_snap", "Midtrans Snap", "All payment methods in one page", PaymentMethodType.CHECKOUT_PAGE, None, None),
    ("va_bri", "Virtual Account BRI", "Bank Rakyat Indonesia", PaymentMethodType.VIRTUAL_ACCOUNT, VirtualAccountBank.BRI, None),
    ("va_bni", "Virtual Account BNI", "Bank Negara Indonesia", PaymentMethodType.VIRTUAL_ACCOUNT, VirtualAccountBank.BNI, None),
    ("va_bca", "Virtual Account BCA", "Bank Central Asia", PaymentMethodType.VIRTUAL_ACCOUNT, VirtualAccountBank.BCA, None),
    ("va_mandiri", "Mandiri Bill Payment", "Bank Mandiri e-Channel", PaymentMethodType.VIRTUAL_ACCOUNT, VirtualAccountBank.MANDIRI, None),
    ("va_permata", "Virtual Account Permata", "Bank Permata", PaymentMethodType.VIRTUAL_ACCOUNT, VirtualAccountBank.PERMATA, None),
    ("ewallet_gopay", "GoPay", "GoPay e-Wallet", PaymentMethodType.EWALLET, None, EWalletType.GOPAY),
    ("ewallet_shopeepay", "ShopeePay", "ShopeePay e-Wallet", PaymentMethodType.EWALLET, None, EWalletType.SHOPEEPAY),
    ("qris", "QRIS", "Scan QR Code", PaymentMethodType.QRIS, None, None),
]


def midtrans_time(value: Any) -> Optional[datetime]:
    """Midtrans sends "YYYY-MM-DD HH:MM:SS" in Asia/Jakarta local time."""
    if isinstance(value, str) and value and "T" not in value and "+" not in value:
        try:
            return datetime.strptime(value, "%Y-%m-%d %H:%M:%S").replace(tzinfo=JAKARTA).astimezone(timezone.utc)
        except ValueError:
            return None
    return parse_timestamp(value)


def _find_action(actions: Any, name: str) -> Optional[str]:
    for action in actions or []:
        if isinstance(action, dict) and action.get("name") == name:
            return action.get("url")
    return None


class MidtransClient(BasePaymentClient):
    provider = "midtrans"

    def __init__(
        self,
        *,
        settings: Optional[PaymentSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(settings=settings, transport=transport)
        cfg = self.settings.midtrans
        if not cfg.server_key:
            raise PaymentConfigurationError(
                "MIDTRANS server_key not configured", provider=self.provider, setting="server_key"
            )
        self._cfg = cfg
        self._core = (cfg.base_url or CORE_URLS[self.settings.sandbox]).rstrip("/")
        self._snap = (cfg.snap_url or SNAP_URLS[self.settings.sandbox]).rstrip("/")
        self._auth = (cfg.server_key, "")

    def list_available_methods(self) -> list[PaymentMethodInfo]:
        return [
            PaymentMethodInfo(id=mid, name=name, description=desc, type=mtype, bank=bank, ewallet=wallet)
            for mid, name, desc, mtype, bank, wallet in _METHODS
        ]

    @staticmethod
    def _customer(req: CreatePayment) -> dict[str, Any]:
        return {
            "first_name": req.customer.name,
            "email": req.customer.email,
            "phone": req.customer.phone,
        }

    async def _charge(self, body: dict[str, Any]) -> dict[str, Any]:
        resp = await self._request("POST", f"{self._core}/charge", json=body, auth=self._auth)
        data = resp.data
        # Core API reports business errors in the body with HTTP 200
        status_code = str(data.get("status_code") or resp.status_code)
        if not resp.ok or not status_code.startswith("2"):
            raise self._rejected(data.get("status_message") or "Midtrans charge failed", resp, code_key="status_code")
        return data

    async def _create_payment(self, req: CreatePayment) -> PaymentResult:
        if req.method_type == PaymentMethodType.CHECKOUT_PAGE:
            return await self._create_snap(req)
        if req.method_type == PaymentMethodType.VIRTUAL_ACCOUNT:
            return await self._create_va(req)
        if req.method_type == PaymentMethodType.EWALLET:
            return await self._create_ewallet(req)
        if req.method_type == PaymentMethodType.QRIS:
            return await self._create_qris(req)
        raise UnsupportedPaymentMethodError(self.provider, req.method_type.value)

    async def _create_snap(self, req: CreatePayment) -> PaymentResult:
        minutes = req.expiry_minutes or self.settings.checkout_expiry_minutes
        body = {
            "transaction_details": {"order_id": req.transaction_id, "gross_amount": req.amount},
            "customer_details": self._customer(req),
            "item_details": [
                {"id": i.id, "name": i.name, "price": i.price, "quantity": i.quantity} for i in req.items
            ],
            "callbacks": {"finish": req.redirect_url},
            "expiry": {"unit": "minutes", "duration": minutes},
        }
        resp = await self._request("POST", f"{self._snap}/transactions", json=body, auth=self._auth)
        if not resp.ok or not resp.data.get("redirect_url"):
            messages = resp.data.get("error_messages") or []
            raise self._rejected("; ".join(messages) or "Failed to create Snap transaction", resp)
        return PaymentResult(
            success=True,
            provider=self.provider,
            gateway_transaction_id=req.transaction_id,
            redirect_url=resp.data["redirect_url"],
            expires_at=self._expires_at(minutes),
            raw=resp.data,
        )

    async def _create_va(self, req: CreatePayment) -> PaymentResult:
        bank_code = BANK_CODES.get(req.bank)
        if bank_code is None:
            raise UnsupportedPaymentMethodError(self.provider, f"virtual_account:{req.bank}")
        minutes = self._default_expiry(req)
        body: dict[str, Any] = {
            "transaction_details": {"order_id": req.transaction_id, "gross_amount": req.amount},
            "customer_details": self._customer(req),
            "custom_expiry": {"expiry_duration": minutes, "unit": "minute"},
        }
        if bank_code == ECHANNEL:
            body["payment_type"] = ECHANNEL
            body["echannel"] = {
                "bill_info1": "Token Top-up",
                "bill_info2": req.items[0].name if req.items else "Payment",
            }
        else:
            body["payment_type"] = "bank_transfer"
            body["bank_transfer"] = {"bank": bank_code}

        data = await self._charge(body)
        va_numbers = data.get("va_numbers") or []
        bank = bank_code
        if va_numbers:
            number = va_numbers[0]["va_number"]
            bank = va_numbers[0].get("bank") or bank_code
        elif data.get("permata_va_number"):
            number = data["permata_va_number"]
        elif data.get("bill_key"):
            number = f"{data.get('biller_code')}-{data['bill_key']}"
        else:
            raise self._rejected("Midtrans response carries no virtual account number", ProviderResponse(status_code=200, data=data))
        return PaymentResult(
            success=True,
            provider=self.provider,
            gateway_transaction_id=data.get("transaction_id"),
            virtual_account=VirtualAccountInfo(number=str(number), holder_name=req.customer.name, bank_code=bank),
            expires_at=midtrans_time(data.get("expiry_time")) or self._expires_at(minutes),
            raw=data,
        )

    async def _create_ewallet(self, req: CreatePayment) -> PaymentResult:
        code = EWALLET_CODES.get(req.ewallet)
        if code is None:
            raise UnsupportedPaymentMethodError(self.provider, f"ewallet:{req.ewallet}")
        body = {
            "payment_type": code,
            "transaction_details": {"order_id": req.transaction_id, "gross_amount": req.amount},
            "customer_details": self._customer(req),
            code: {"enable_callback": True, "callback_url": req.redirect_url},
        }
        data = await self._charge(body)
        actions = data.get("actions")
        return PaymentResult(
            success=True,
            provider=self.provider,
            gateway_transaction_id=data.get("transaction_id"),
            ewallet=EWalletPayment(
                type=req.ewallet,
                deeplink_url=_find_action(actions, "deeplink-redirect") or _find_action(actions, "deeplink"),
                qr_string=_find_action(actions, "generate-qr-code"),
            ),
            expires_at=midtrans_time(data.get("expiry_time")),
            raw=data,
        )

    async def _create_qris(self, req: CreatePayment) -> PaymentResult:
        body = {
            "payment_type": "qris",
            "transaction_details": {"order_id": req.transaction_id, "gross_amount": req.amount},
            "customer_details": self._customer(req),
        }
        data = await self._charge(body)
        qr_url = _find_action(data.get("actions"), "generate-qr-code")
        qr_string = data.get("qr_string") or qr_url
        if not qr_string:
            raise self._rejected("Midtrans response carries no QR code", ProviderResponse(status_code=200, data=data))
        return PaymentResult(
            success=True,
            provider=self.provider,
            gateway_transaction_id=data.get("transaction_id"),
            qr=QrPayment(qr_string=qr_string, qr_image_url=qr_url),
            expires_at=midtrans_time(data.get("expiry_time")),
            raw=data,
        )

    async def _check_status(self, query: PaymentQuery) -> PaymentStatusResult:
        resp = await self._request(
            "GET", f"{self._core}/{query.transaction_id}/status", auth=self._auth, idempotent=True
        )
        data = resp.data
        if not resp.ok or str(data.get("status_code", "")).startswith("404"):
            raise self._rejected(data.get("status_message") or "Status lookup failed", resp, code_key="status_code")
        return PaymentStatusResult(
            success=True,
            status=self._map_status(data.get("transaction_status")),
            paid_amount=to_int_amount(data.get("gross_amount")),
            paid_at=midtrans_time(data.get("settlement_time")),
            payment_method=data.get("payment_type"),
            raw=data,
        )

    async def _cancel(self, req: CancelPayment) -> CancelResult:
        resp = await self._request("POST", f"{self._core}/{req.transaction_id}/cancel", json={}, auth=self._auth)
        if not resp.ok:
            raise self._rejected(resp.data.get("status_message") or "Cancel failed", resp, code_key="status_code")
        return CancelResult(success=True, raw=resp.data)

    def parse_callback(self, callback: InboundCallback) -> Optional[CanonicalCallbackEvent]:
        data = callback.data
        order_id = data.get("order_id")
        if not order_id:
            return None
        return CanonicalCallbackEvent(
            transaction_id=str(order_id),
            provider=self.provider,
            gateway_transaction_id=data.get("transaction_id"),
            status=self._map_status(data.get("transaction_status")),
            paid_amount=to_int_amount(data.get("gross_amount")),
            channel=first_present(data, "bank", "acquirer"),
            paid_at=midtrans_time(data.get("settlement_time")),
            payment_method=data.get("payment_type"),
            raw=data,
        )

    def verify_callback_signature(self, callback: InboundCallback) -> VerificationResult:
        data = callback.data
        received = data.get("signature_key")
        if not received:
            return VerificationResult.invalid("missing signature_key")
        expected = sha512_hex(
            f"{data.get('order_id')}{data.get('status_code')}{data.get('gross_amount')}{self._cfg.server_key}"
        )
        if not constant_time_equals(str(received), expected):
            return VerificationResult.invalid("signature mismatch")
        return VerificationResult.ok()

    def get_acknowledgement(self, callback: Optional[InboundCallback] = None) -> CallbackAck:
        return CallbackAck.of_json({"status": "OK"})
