import json
from datetime import datetime, timedelta, timezone

import pytest

from application.dtos.payments import (
    CancelPayment,
    CreatePayment,
    EWalletType,
    InboundCallback,
    PaymentMethodType,
    PaymentQuery,
    VirtualAccountBank,
)
from core.settings import PaymentSettings
from core.signatures import (
    build_string_to_sign,
    hmac_sha256_hex,
    hmac_sign,
    load_private_key,
    load_public_key,
    minify_json,
    parse_timestamp,
    rsa_sign,
    rsa_verify,
)
from domain.common.exceptions import PaymentConfigurationError
from domain.payment.entity import PaymentStatus
from infrastructure.external.payments.winpay_client import (
    CREATE_VA_PATH,
    DELETE_VA_PATH,
    STATUS_VA_PATH,
    WinpayClient,
    jakarta_timestamp,
)
from shared.codes.payment_codes import ErrorKind


@pytest.fixture
def winpay_cfg(rsa_pems):
    private_pem, public_pem = rsa_pems
    return PaymentSettings(
        provider="winpay",
        winpay={
            "partner_id": "PARTNER-1",
            "private_key": private_pem,
            "public_key": public_pem,
            "checkout_key": "ck-1",
            "checkout_secret": "cs-1",
            "snap_base_url": "https://snap.test",
            "checkout_base_url": "https://checkout.test",
        },
    )


def _va_created(number="8888800012345678", contract="ci-001"):
    return 200, {
        "responseCode": "2002700",
        "responseMessage": "Successful",
        "virtualAccountData": {
            "virtualAccountNo": f"  {number}",
            "virtualAccountName": "Budi Santoso",
            "additionalInfo": {"contractId": contract},
        },
    }


def test_requires_some_credentials():
    with pytest.raises(PaymentConfigurationError):
        WinpayClient(settings=PaymentSettings(provider="winpay"))


@pytest.mark.asyncio
async def test_create_va_bri_signs_request_and_defaults_expiry(winpay_cfg, rsa_pems, customer, recorder):
    rec = recorder(_va_created())
    client = WinpayClient(settings=winpay_cfg, transport=rec.transport())
    before = datetime.now(timezone.utc)

    result = await client.create_payment(
        CreatePayment(
            transaction_id="txn-1",
            amount=100000,
            method_type=PaymentMethodType.VIRTUAL_ACCOUNT,
            bank=VirtualAccountBank.BRI,
            customer=customer,
        )
    )

    assert result.success
    assert result.instrument == "virtual_account"
    assert result.virtual_account.number == "8888800012345678"
    assert result.virtual_account.bank_code == "BRI"
    assert result.gateway_transaction_id == "ci-001"
    assert abs((result.expires_at - (before + timedelta(minutes=1440))).total_seconds()) < 60

    req = rec.last
    assert str(req.url) == "https://snap.test" + CREATE_VA_PATH
    body = rec.last_json()
    assert body["trxId"] == "txn-1"
    assert body["totalAmount"] == {"value": "100000.00", "currency": "IDR"}
    assert body["additionalInfo"] == {"channel": "BRI"}
    assert body["virtualAccountTrxType"] == "c"
    expired = parse_timestamp(body["expiredDate"])
    assert abs((expired - (before + timedelta(minutes=1440))).total_seconds()) < 60
    assert body["expiredDate"].endswith("+07:00")

    # signature covers the exact bytes sent
    assert req.content == minify_json(body).encode()
    string_to_sign = build_string_to_sign("POST", CREATE_VA_PATH, body, req.headers["X-TIMESTAMP"])
    assert rsa_verify(string_to_sign, req.headers["X-SIGNATURE"], load_public_key(rsa_pems[1]))
    assert req.headers["X-PARTNER-ID"] == "PARTNER-1"
    assert req.headers["CHANNEL-ID"] == "WEB"
    await client.aclose()


@pytest.mark.asyncio
async def test_create_checkout_page(winpay_cfg, customer, recorder):
    rec = recorder((200, {
        "responseCode": "2010300",
        "responseData": {"id": "inv-1", "redirect_url": "https://checkout.test/pay/inv-1"},
    }))
    client = WinpayClient(settings=winpay_cfg, transport=rec.transport())

    result = await client.create_payment(
        CreatePayment(
            transaction_id="txn-2",
            amount=50000,
            method_type=PaymentMethodType.CHECKOUT_PAGE,
            customer=customer,
            redirect_url="https://app.test/done",
        )
    )

    assert result.success
    assert result.redirect_url == "https://checkout.test/pay/inv-1"
    req = rec.last
    assert str(req.url) == "https://checkout.test/api/create"
    ts = req.headers["X-Winpay-Timestamp"]
    assert req.headers["X-Winpay-Signature"] == hmac_sha256_hex(ts, "cs-1")
    body = rec.last_json()
    assert body["invoice"]["ref"] == "txn-2"
    assert body["interval"] == 120
    assert body["back_url"] == "https://app.test/done?transaction_id=txn-2"


@pytest.mark.asyncio
async def test_create_rejected_and_unavailable(winpay_cfg, customer, recorder):
    req = CreatePayment(
        transaction_id="txn-3",
        amount=10000,
        method_type=PaymentMethodType.VIRTUAL_ACCOUNT,
        bank=VirtualAccountBank.BNI,
        customer=customer,
    )
    rejected = WinpayClient(
        settings=winpay_cfg,
        transport=recorder((200, {"responseCode": "4002701", "responseMessage": "Invalid field"})).transport(),
    )
    result = await rejected.create_payment(req)
    assert not result.success
    assert result.error_kind is ErrorKind.GATEWAY_REJECTED
    assert result.error == "Invalid field"

    down = WinpayClient(settings=winpay_cfg, transport=recorder((503, {})).transport())
    result = await down.create_payment(req)
    assert not result.success
    assert result.error_kind is ErrorKind.GATEWAY_UNAVAILABLE


@pytest.mark.asyncio
async def test_unsupported_method(winpay_cfg, customer, recorder):
    client = WinpayClient(settings=winpay_cfg, transport=recorder((200, {})).transport())
    result = await client.create_payment(
        CreatePayment(
            transaction_id="txn-4",
            amount=10000,
            method_type=PaymentMethodType.EWALLET,
            ewallet=EWalletType.OVO,
            customer=customer,
        )
    )
    assert result.error_kind is ErrorKind.UNSUPPORTED_METHOD


@pytest.mark.asyncio
async def test_status_requires_gateway_context(winpay_cfg, recorder):
    rec = recorder((200, {
        "responseCode": "2002600",
        "virtualAccountData": {"paymentFlagStatus": "00", "totalAmount": {"value": "100000.00"}},
    }))
    client = WinpayClient(settings=winpay_cfg, transport=rec.transport())

    missing = await client.check_status(PaymentQuery(transaction_id="txn-1"))
    assert missing.error_kind is ErrorKind.VALIDATION_ERROR
    assert rec.requests == []

    result = await client.check_status(
        PaymentQuery(
            transaction_id="txn-1",
            gateway_transaction_id="ci-001",
            additional_data={"virtualAccountNo": "8888800012345678", "channel": "BRI"},
        )
    )
    assert result.success
    assert result.status is PaymentStatus.SUCCESS
    assert result.paid_amount == 100000
    assert rec.last.url.path.endswith(STATUS_VA_PATH)


@pytest.mark.asyncio
async def test_cancel_va_and_checkout(winpay_cfg, recorder):
    rec = recorder((200, {"responseCode": "2003100"}), (200, {"responseCode": "2000000"}))
    client = WinpayClient(settings=winpay_cfg, transport=rec.transport())

    va = await client.cancel(
        CancelPayment(
            transaction_id="txn-1",
            additional_data={"virtualAccountNo": "888", "contractId": "ci-001", "channel": "BRI"},
        )
    )
    assert va.success
    assert rec.last.url.path.endswith(DELETE_VA_PATH)

    checkout = await client.cancel(CancelPayment(transaction_id="txn-2", additional_data={"is_checkout": True}))
    assert checkout.success
    assert rec.last.method == "DELETE"
    assert rec.last.url.path == "/api/invoice/ref/txn-2"


def _va_callback(private_pem, path="/api/v1/webhooks/winpay/va", ts=None):
    body = {
        "trxId": "txn-1",
        "virtualAccountNo": "8888800012345678",
        "paidAmount": {"value": "100000.00", "currency": "IDR"},
        "referenceNo": "ref-9",
        "trxDateTime": "2024-05-01T19:00:00+07:00",
        "additionalInfo": {"contractId": "ci-001", "channel": "BRI"},
    }
    ts = ts or jakarta_timestamp()
    signature = rsa_sign(build_string_to_sign("POST", path, body, ts), load_private_key(private_pem))
    raw = json.dumps(body).encode()
    return InboundCallback(
        headers={"X-Timestamp": ts, "X-Signature": signature},
        raw_body=raw,
        body=body,
        path=path,
    )


def test_va_callback_verify_and_parse(winpay_cfg, rsa_pems):
    client = WinpayClient(settings=winpay_cfg)
    callback = _va_callback(rsa_pems[0])

    assert client.verify_callback_signature(callback).valid
    event = client.parse_callback(callback)
    assert event.transaction_id == "txn-1"
    assert event.status is PaymentStatus.SUCCESS
    assert event.paid_amount == 100000
    assert event.channel == "BRI"
    assert event.gateway_transaction_id == "ci-001"
    assert client.get_acknowledgement(callback).body == {"responseCode": "2002500", "responseMessage": "Successful"}


def test_va_callback_stale_or_tampered(winpay_cfg, rsa_pems):
    client = WinpayClient(settings=winpay_cfg)
    old = jakarta_timestamp(datetime.now(timezone.utc) - timedelta(minutes=10))
    stale = client.verify_callback_signature(_va_callback(rsa_pems[0], ts=old))
    assert stale.error_kind is ErrorKind.TIMESTAMP_STALE

    callback = _va_callback(rsa_pems[0])
    callback.body["paidAmount"]["value"] = "1.00"
    assert client.verify_callback_signature(callback).error_kind is ErrorKind.SIGNATURE_INVALID


def test_checkout_callback_hmac_and_text_ack(winpay_cfg):
    client = WinpayClient(settings=winpay_cfg)
    body = {"uuid": "inv-1", "invoice": {"ref": "txn-2"}, "amount": 50000, "channel": "QRIS"}
    raw = json.dumps(body).encode()
    ts = datetime.now(timezone.utc).isoformat()
    callback = InboundCallback(
        headers={"X-Winpay-Timestamp": ts, "X-Winpay-Signature": hmac_sign(raw, "cs-1", ts)},
        raw_body=raw,
        body=body,
        path="/api/v1/webhooks/winpay/checkout",
    )

    assert client.verify_callback_signature(callback).valid
    event = client.parse_callback(callback)
    assert event.transaction_id == "txn-2"
    assert event.paid_amount == 50000
    ack = client.get_acknowledgement(callback)
    assert ack.media_type == "text/plain"
    assert ack.body == "ACCEPTED"


def test_checkout_callback_ignores_provider_ref(winpay_cfg):
    client = WinpayClient(settings=winpay_cfg)
    with_invoice = InboundCallback(body={"ref": "WP-778812", "invoice": {"ref": "txn-3"}, "amount": 50000})
    assert client.parse_callback(with_invoice).transaction_id == "txn-3"

    provider_ref_only = InboundCallback(body={"ref": "WP-778812", "amount": 50000})
    assert client.parse_callback(provider_ref_only) is None


def test_methods_reflect_configured_credentials(rsa_pems):
    cfg = PaymentSettings(provider="winpay", winpay={"checkout_key": "ck", "checkout_secret": "cs"})
    methods = {m.id: m for m in WinpayClient(settings=cfg).list_available_methods()}
    assert methods["checkout_page"].enabled
    assert not methods["va_bri"].enabled
