"""
Winpay adapter: SNAP virtual accounts (RSA-signed) and the hosted checkout page.

SNAP requests are signed with the merchant private key over
``POST:{path}:{sha256(minified body)}:{X-TIMESTAMP}``; checkout requests carry
an HMAC of the timestamp keyed with the checkout secret. Timestamps use the
Asia/Jakarta offset.
"""
from __future__ import annotations

import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional

import httpx

from application.dtos.payments import (
    CallbackAck,
    CancelPayment,
    CancelResult,
    CanonicalCallbackEvent,
    CreatePayment,
    InboundCallback,
    PaymentMethodInfo,
    PaymentMethodType,
    PaymentQuery,
    PaymentResult,
    PaymentStatusResult,
    VirtualAccountBank,
    VirtualAccountInfo,
)
from core.settings import PaymentSettings
from core.signatures import (
    VerificationResult,
    hmac_sha256_hex,
    load_private_key,
    load_public_key,
    minify_json,
    parse_timestamp,
    sign_snap_request,
    verify_signed_payload,
    verify_snap_signature,
)
from domain.common.exceptions import PaymentConfigurationError, UnsupportedPaymentMethodError
from shared.codes.payment_codes import ErrorKind
from domain.payment.entity import PaymentStatus
from infrastructure.external.payments.base import (
    BasePaymentClient,
    ProviderResponse,
    first_present,
    to_int_amount,
)


JAKARTA = timezone(timedelta(hours=7))

SNAP_URLS = {True: "https://sandbox-api.bmstaging.id/snap", False: "https://snap.winpay.id"}
CHECKOUT_URLS = {True: "https://checkout.bmstaging.id", False: "https://checkout.winpay.id"}

CREATE_VA_PATH = "/v1.0/transfer-va/create-va"
STATUS_VA_PATH = "/v1.0/transfer-va/status"
DELETE_VA_PATH = "/v1.0/transfer-va/delete-va"

RC_CHECKOUT_CREATED = "2010300"
RC_VA_CREATED = "2002700"
RC_VA_STATUS = "2002600"
RC_VA_DELETED = "2003100"
RC_CALLBACK_OK = "2002500"

BANK_CHANNELS: dict[VirtualAccountBank, str] = {
    VirtualAccountBank.BRI: "BRI",
    VirtualAccountBank.BNI: "BNI",
    VirtualAccountBank.BCA: "BCA",
    VirtualAccountBank.MANDIRI: "MANDIRI",
    VirtualAccountBank.PERMATA: "PERMATA",
    VirtualAccountBank.BSI: "BSI",
    VirtualAccountBank.CIMB: "CIMB",
    VirtualAccountBank.SINARMAS: "SINARMAS",
    VirtualAccountBank.MUAMALAT: "MUAMALAT",
    VirtualAccountBank.INDOMARET: "INDOMARET",
    VirtualAccountBank.ALFAMART: "ALFAMART",
}

_VA_METHODS = [
    (VirtualAccountBank.BRI, "Virtual Account BRI", "Bank Rakyat Indonesia"),
    (VirtualAccountBank.BNI, "Virtual Account BNI", "Bank Negara Indonesia"),
    (VirtualAccountBank.BCA, "Virtual Account BCA", "Bank Central Asia"),
    (VirtualAccountBank.MANDIRI, "Virtual Account Mandiri", "Bank Mandiri"),
    (VirtualAccountBank.PERMATA, "Virtual Account Permata", "Bank Permata"),
    (VirtualAccountBank.BSI, "Virtual Account BSI", "Bank Syariah Indonesia"),
    (VirtualAccountBank.CIMB, "Virtual Account CIMB", "Bank CIMB Niaga"),
]


def jakarta_timestamp(dt: Optional[datetime] = None) -> str:
    current = (dt or datetime.now(timezone.utc)).astimezone(JAKARTA)
    return current.strftime("%Y-%m-%dT%H:%M:%S+07:00")


def external_id() -> str:
    return str(int(time.time() * 1000))


def _read_key(inline: Optional[str], path: Optional[str]) -> Optional[str]:
    if inline:
        return inline
    if path:
        key_path = Path(path)
        if not key_path.exists():
            raise PaymentConfigurationError(f"Key file not found: {path}", provider="winpay", setting="key_path")
        return key_path.read_text(encoding="utf-8")
    return None


class WinpayClient(BasePaymentClient):
    provider = "winpay"

    def __init__(
        self,
        *,
        settings: Optional[PaymentSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(settings=settings, transport=transport)
        cfg = self.settings.winpay
        self._cfg = cfg
        self._snap_base = (cfg.snap_base_url or SNAP_URLS[self.settings.sandbox]).rstrip("/")
        self._checkout_base = (cfg.checkout_base_url or CHECKOUT_URLS[self.settings.sandbox]).rstrip("/")

        private_pem = _read_key(cfg.private_key, cfg.private_key_path)
        public_pem = _read_key(cfg.public_key, cfg.public_key_path)
        self._private_key = load_private_key(private_pem) if private_pem else None
        self._public_key = load_public_key(public_pem) if public_pem else None

        self._snap_ready = bool(cfg.partner_id and self._private_key)
        self._checkout_ready = bool(cfg.checkout_key and cfg.checkout_secret)
        if not (self._snap_ready or self._checkout_ready):
            raise PaymentConfigurationError(
                "Winpay requires SNAP (partner_id + private key) or checkout (key + secret) credentials",
                provider=self.provider,
            )

    # ------------------------------------------------------------------ #
    # Methods
    # ------------------------------------------------------------------ #

    def list_available_methods(self) -> list[PaymentMethodInfo]:
        methods = [
            PaymentMethodInfo(
                id="checkout_page",
                name="Winpay Checkout Page",
                description="All payment methods in one page (VA, QRIS, eWallet)",
                type=PaymentMethodType.CHECKOUT_PAGE,
                enabled=self._checkout_ready,
            )
        ]
        for bank, name, description in _VA_METHODS:
            methods.append(
                PaymentMethodInfo(
                    id=f"va_{bank.value}",
                    name=name,
                    description=description,
                    type=PaymentMethodType.VIRTUAL_ACCOUNT,
                    bank=bank,
                    enabled=self._snap_ready,
                )
            )
        return methods

    # ------------------------------------------------------------------ #
    # Outbound
    # ------------------------------------------------------------------ #

    def _snap_headers(self, path: str, body: dict[str, Any]) -> dict[str, str]:
        if not self._snap_ready:
            raise PaymentConfigurationError(
                "Winpay SNAP credentials are not configured", provider=self.provider, setting="partner_id"
            )
        timestamp = jakarta_timestamp()
        return {
            "Content-Type": "application/json",
            "X-TIMESTAMP": timestamp,
            "X-SIGNATURE": sign_snap_request("POST", path, body, timestamp, self._private_key),
            "X-PARTNER-ID": self._cfg.partner_id,
            "X-EXTERNAL-ID": external_id(),
            "CHANNEL-ID": "WEB",
        }

    async def _snap_post(self, path: str, body: dict[str, Any], *, idempotent: bool = False) -> ProviderResponse:
        # the signed digest covers the exact bytes sent
        headers = self._snap_headers(path, body)
        return await self._request(
            "POST",
            f"{self._snap_base}{path}",
            content=minify_json(body).encode("utf-8"),
            headers=headers,
            idempotent=idempotent,
        )

    def _checkout_headers(self) -> dict[str, str]:
        if not self._checkout_ready:
            raise PaymentConfigurationError(
                "Winpay checkout credentials are not configured", provider=self.provider, setting="checkout_key"
            )
        timestamp = jakarta_timestamp()
        return {
            "Content-Type": "application/json",
            "X-Winpay-Timestamp": timestamp,
            "X-Winpay-Signature": hmac_sha256_hex(timestamp, self._cfg.checkout_secret),
            "X-Winpay-Key": self._cfg.checkout_key,
        }

    async def _create_payment(self, req: CreatePayment) -> PaymentResult:
        if req.method_type == PaymentMethodType.CHECKOUT_PAGE:
            return await self._create_checkout(req)
        if req.method_type == PaymentMethodType.VIRTUAL_ACCOUNT:
            return await self._create_va(req)
        raise UnsupportedPaymentMethodError(self.provider, req.method_type.value)

    async def _create_checkout(self, req: CreatePayment) -> PaymentResult:
        interval = req.expiry_minutes or self.settings.checkout_expiry_minutes
        back_url = req.redirect_url or self._cfg.back_url or self.settings.success_redirect_url
        products = [
            {"name": item.name, "qty": item.quantity, "price": item.price} for item in req.items
        ] or [{"name": "Top-up", "qty": 1, "price": req.amount}]
        body = {
            "customer": {
                "name": req.customer.name,
                "email": req.customer.email,
                "phone": req.customer.phone,
            },
            "invoice": {"ref": req.transaction_id, "products": products},
            "back_url": f"{back_url}?transaction_id={req.transaction_id}",
            "interval": interval,
        }
        resp = await self._request(
            "POST", f"{self._checkout_base}/api/create", json=body, headers=self._checkout_headers()
        )
        data = resp.data
        response_data = data.get("responseData")
        if data.get("responseCode") != RC_CHECKOUT_CREATED or not response_data:
            raise self._rejected(data.get("responseMessage") or "Failed to create checkout", resp)
        return PaymentResult(
            success=True,
            provider=self.provider,
            gateway_transaction_id=str(response_data["id"]),
            redirect_url=response_data["redirect_url"],
            expires_at=self._expires_at(interval),
            raw=data,
        )

    async def _create_va(self, req: CreatePayment) -> PaymentResult:
        channel = BANK_CHANNELS.get(req.bank)
        if channel is None:
            raise UnsupportedPaymentMethodError(self.provider, f"virtual_account:{req.bank}")
        minutes = self._default_expiry(req)
        body = {
            "virtualAccountName": req.customer.name[:24],
            "trxId": req.transaction_id,
            "totalAmount": {"value": "%.2f" % req.amount, "currency": "IDR"},
            "virtualAccountTrxType": "c",
            "expiredDate": jakarta_timestamp(self._expires_at(minutes)),
            "additionalInfo": {"channel": channel},
        }
        resp = await self._snap_post(CREATE_VA_PATH, body)
        data = resp.data
        va = data.get("virtualAccountData")
        if data.get("responseCode") != RC_VA_CREATED or not va:
            raise self._rejected(data.get("responseMessage") or "Failed to create VA", resp)
        return PaymentResult(
            success=True,
            provider=self.provider,
            gateway_transaction_id=str(va["additionalInfo"]["contractId"]),
            virtual_account=VirtualAccountInfo(
                number=str(va["virtualAccountNo"]).strip(),
                holder_name=va.get("virtualAccountName") or body["virtualAccountName"],
                bank_code=channel,
            ),
            expires_at=parse_timestamp(va.get("expiredDate")) or self._expires_at(minutes),
            raw=data,
        )

    async def _check_status(self, query: PaymentQuery) -> PaymentStatusResult:
        extra = query.additional_data
        va_number = extra.get("virtualAccountNo")
        contract_id = extra.get("contractId") or query.gateway_transaction_id
        channel = extra.get("channel")
        if not (va_number and contract_id and channel):
            return PaymentStatusResult.failure("Missing required data for status check", ErrorKind.VALIDATION_ERROR)
        body = {
            "virtualAccountNo": va_number,
            "additionalInfo": {"contractId": contract_id, "channel": channel, "trxId": query.transaction_id},
        }
        resp = await self._snap_post(STATUS_VA_PATH, body, idempotent=True)
        data = resp.data
        va = data.get("virtualAccountData")
        if data.get("responseCode") != RC_VA_STATUS or not va:
            raise self._rejected(data.get("responseMessage") or "Status check failed", resp)
        status = self._map_status(va.get("paymentFlagStatus"))
        paid = status is PaymentStatus.SUCCESS
        return PaymentStatusResult(
            success=True,
            status=status,
            paid_amount=to_int_amount((va.get("totalAmount") or {}).get("value")) if paid else None,
            paid_at=parse_timestamp(va.get("transactionDate")),
            reference_number=va.get("referenceNo"),
            payment_method=PaymentMethodType.VIRTUAL_ACCOUNT.value,
            raw=data,
        )

    async def _cancel(self, req: CancelPayment) -> CancelResult:
        extra = req.additional_data
        if extra.get("is_checkout") or extra.get("isCheckout"):
            resp = await self._request(
                "DELETE",
                f"{self._checkout_base}/api/invoice/ref/{req.transaction_id}",
                headers=self._checkout_headers(),
            )
            code = str(resp.data.get("responseCode") or "")
            if not code.startswith("200"):
                raise self._rejected(resp.data.get("responseMessage") or "Failed to cancel checkout", resp)
            return CancelResult(success=True, raw=resp.data)

        va_number = extra.get("virtualAccountNo")
        contract_id = extra.get("contractId") or req.gateway_transaction_id
        channel = extra.get("channel")
        if not (va_number and contract_id and channel):
            return CancelResult.failure("Missing required data for cancellation", ErrorKind.VALIDATION_ERROR)
        body = {
            "virtualAccountNo": va_number,
            "trxId": req.transaction_id,
            "additionalInfo": {"contractId": contract_id, "channel": channel},
        }
        resp = await self._snap_post(DELETE_VA_PATH, body)
        if resp.data.get("responseCode") != RC_VA_DELETED:
            raise self._rejected(resp.data.get("responseMessage") or "Failed to delete VA", resp)
        return CancelResult(success=True, raw=resp.data)

    # ------------------------------------------------------------------ #
    # Inbound
    # ------------------------------------------------------------------ #

    @staticmethod
    def is_va_callback(data: dict[str, Any]) -> bool:
        return bool(data.get("trxId")) and data.get("paidAmount") is not None

    @staticmethod
    def is_checkout_callback(data: dict[str, Any]) -> bool:
        # top-level ref is the provider invoice number, ours is invoice.ref
        invoice = data.get("invoice")
        return isinstance(invoice, dict) and bool(invoice.get("ref"))

    def parse_callback(self, callback: InboundCallback) -> Optional[CanonicalCallbackEvent]:
        data = callback.data
        if self.is_va_callback(data):
            info = data.get("additionalInfo") or {}
            paid = data.get("paidAmount") or {}
            return CanonicalCallbackEvent(
                transaction_id=str(data["trxId"]),
                provider=self.provider,
                gateway_transaction_id=first_present(info, "contractId") or data.get("paymentRequestId"),
                status=PaymentStatus.SUCCESS,
                paid_amount=to_int_amount(paid.get("value") if isinstance(paid, dict) else paid),
                channel=info.get("channel"),
                reference_number=str(data["referenceNo"]) if data.get("referenceNo") is not None else None,
                paid_at=parse_timestamp(data.get("trxDateTime")),
                payment_method=PaymentMethodType.VIRTUAL_ACCOUNT.value,
                raw=data,
            )
        if self.is_checkout_callback(data):
            invoice = data["invoice"]
            return CanonicalCallbackEvent(
                transaction_id=str(invoice["ref"]),
                provider=self.provider,
                gateway_transaction_id=data.get("uuid"),
                status=PaymentStatus.SUCCESS,
                paid_amount=to_int_amount(data.get("amount")),
                channel=data.get("channel"),
                payment_method=PaymentMethodType.CHECKOUT_PAGE.value,
                fee=to_int_amount(data.get("fee")),
                net_amount=to_int_amount(data.get("nett_amount")),
                raw=data,
            )
        return None

    def verify_callback_signature(self, callback: InboundCallback) -> VerificationResult:
        tolerance = self.settings.tolerance_seconds
        if self.is_va_callback(callback.data):
            if self._public_key is None:
                return VerificationResult.invalid("winpay public key not configured")
            return verify_snap_signature(
                "POST",
                callback.path,
                callback.body,
                callback.header("x-timestamp"),
                callback.header("x-signature"),
                self._public_key,
                tolerance_seconds=tolerance,
            )
        return verify_signed_payload(
            callback.raw_body,
            callback.header("x-winpay-signature"),
            self._cfg.checkout_secret,
            callback.header("x-winpay-timestamp"),
            tolerance_seconds=tolerance,
        )

    def get_acknowledgement(self, callback: Optional[InboundCallback] = None) -> CallbackAck:
        if callback is not None and (
            callback.path.rstrip("/").endswith("/checkout") or self.is_checkout_callback(callback.data)
        ):
            return CallbackAck.of_text("ACCEPTED")
        return CallbackAck.of_json({"responseCode": RC_CALLBACK_OK, "responseMessage": "Successful"})
