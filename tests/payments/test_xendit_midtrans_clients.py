import base64
import json

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
from core.signatures import sha512_hex
from domain.common.exceptions import PaymentConfigurationError
from domain.payment.entity import PaymentStatus
from infrastructure.external.payments.midtrans_client import MidtransClient, midtrans_time
from infrastructure.external.payments.xendit_client import XenditClient
from shared.codes.payment_codes import ErrorKind


@pytest.fixture
def xendit_cfg():
    return PaymentSettings(
        provider="xendit",
        xendit={"secret_key": "xnd_secret", "webhook_token": "cb-token", "base_url": "https://xendit.test"},
    )


@pytest.fixture
def midtrans_cfg():
    return PaymentSettings(
        provider="midtrans",
        midtrans={"server_key": "SB-Mid-server", "base_url": "https://core.test/v2", "snap_url": "https://snap.test/v1"},
    )


# --------------------------------------------------------------------------- #
# Xendit
# --------------------------------------------------------------------------- #

def test_xendit_requires_secret_key():
    with pytest.raises(PaymentConfigurationError):
        XenditClient(settings=PaymentSettings(provider="xendit"))


@pytest.mark.asyncio
async def test_xendit_invoice_uses_basic_auth(xendit_cfg, customer, recorder):
    rec = recorder((200, {"id": "inv_1", "invoice_url": "https://checkout.xendit.co/web/inv_1"}))
    client = XenditClient(settings=xendit_cfg, transport=rec.transport())

    result = await client.create_payment(
        CreatePayment(
            transaction_id="txn-1",
            amount=75000,
            method_type=PaymentMethodType.CHECKOUT_PAGE,
            customer=customer,
            expiry_minutes=30,
        )
    )

    assert result.success
    assert result.redirect_url == "https://checkout.xendit.co/web/inv_1"
    assert result.gateway_transaction_id == "inv_1"
    req = rec.last
    assert str(req.url) == "https://xendit.test/v2/invoices"
    assert req.headers["Authorization"] == "Basic " + base64.b64encode(b"xnd_secret:").decode()
    body = rec.last_json()
    assert body["external_id"] == "txn-1"
    assert body["invoice_duration"] == 1800


@pytest.mark.asyncio
async def test_xendit_va_and_ewallet(xendit_cfg, customer, recorder):
    rec = recorder(
        (200, {"id": "va_1", "account_number": "9999000011", "bank_code": "BNI", "name": "Budi"}),
        (200, {"id": "ewc_1", "actions": {"mobile_deeplink_checkout_url": "ovo://pay"}}),
    )
    client = XenditClient(settings=xendit_cfg, transport=rec.transport())

    va = await client.create_payment(
        CreatePayment(
            transaction_id="txn-2",
            amount=20000,
            method_type=PaymentMethodType.VIRTUAL_ACCOUNT,
            bank=VirtualAccountBank.BNI,
            customer=customer,
        )
    )
    assert va.virtual_account.number == "9999000011"
    assert rec.last_json()["expected_amount"] == 20000

    wallet = await client.create_payment(
        CreatePayment(
            transaction_id="txn-3",
            amount=20000,
            method_type=PaymentMethodType.EWALLET,
            ewallet=EWalletType.OVO,
            customer=customer,
        )
    )
    assert wallet.ewallet.deeplink_url == "ovo://pay"
    assert rec.last_json()["channel_code"] == "ID_OVO"


@pytest.mark.asyncio
async def test_xendit_error_body_is_rejection(xendit_cfg, customer, recorder):
    rec = recorder((400, {"error_code": "API_VALIDATION_ERROR", "message": "amount is too low"}))
    client = XenditClient(settings=xendit_cfg, transport=rec.transport())
    result = await client.create_payment(
        CreatePayment(transaction_id="t", amount=1, method_type=PaymentMethodType.QRIS, customer=customer)
    )
    assert not result.success
    assert result.error_kind is ErrorKind.GATEWAY_REJECTED
    assert result.error == "amount is too low"


@pytest.mark.asyncio
async def test_xendit_status_and_cancel_need_gateway_id(xendit_cfg, recorder):
    rec = recorder((200, {"id": "inv_1", "status": "PAID", "paid_amount": 75000}))
    client = XenditClient(settings=xendit_cfg, transport=rec.transport())

    assert (await client.check_status(PaymentQuery(transaction_id="t"))).error_kind is ErrorKind.VALIDATION_ERROR
    assert (await client.cancel(CancelPayment(transaction_id="t"))).error_kind is ErrorKind.VALIDATION_ERROR

    status = await client.check_status(PaymentQuery(transaction_id="t", gateway_transaction_id="inv_1"))
    assert status.status is PaymentStatus.SUCCESS
    assert status.paid_amount == 75000

    await client.cancel(CancelPayment(transaction_id="t", gateway_transaction_id="inv_1"))
    assert rec.last.url.path == "/invoices/inv_1/expire!"


def test_xendit_callback_token(xendit_cfg):
    client = XenditClient(settings=xendit_cfg)
    body = {"id": "inv_1", "external_id": "txn-1", "status": "EXPIRED", "amount": 75000}
    good = InboundCallback(headers={"X-Callback-Token": "cb-token"}, body=body, raw_body=json.dumps(body).encode())
    bad = InboundCallback(headers={"X-Callback-Token": "nope"}, body=body)

    assert client.verify_callback_signature(good).valid
    assert client.verify_callback_signature(bad).error_kind is ErrorKind.SIGNATURE_INVALID
    event = client.parse_callback(good)
    assert event.transaction_id == "txn-1"
    assert event.status is PaymentStatus.EXPIRED
    assert client.get_acknowledgement(good).body == {"status": "OK"}


# --------------------------------------------------------------------------- #
# Midtrans
# --------------------------------------------------------------------------- #

@pytest.mark.asyncio
async def test_midtrans_bank_transfer_va(midtrans_cfg, customer, recorder):
    rec = recorder((200, {
        "status_code": "201",
        "transaction_id": "mt-1",
        "va_numbers": [{"bank": "bri", "va_number": "1234567890"}],
        "expiry_time": "2024-05-02 19:00:00",
    }))
    client = MidtransClient(settings=midtrans_cfg, transport=rec.transport())

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
    assert result.virtual_account.number == "1234567890"
    assert result.gateway_transaction_id == "mt-1"
    # naive provider times are Jakarta local
    assert result.expires_at == midtrans_time("2024-05-02 19:00:00")
    assert result.expires_at.hour == 12
    body = rec.last_json()
    assert str(rec.last.url) == "https://core.test/v2/charge"
    assert body["payment_type"] == "bank_transfer"
    assert body["bank_transfer"] == {"bank": "bri"}


@pytest.mark.asyncio
async def test_midtrans_mandiri_uses_echannel(midtrans_cfg, customer, recorder):
    rec = recorder((200, {"status_code": "201", "transaction_id": "mt-2", "biller_code": "70012", "bill_key": "9900"}))
    client = MidtransClient(settings=midtrans_cfg, transport=rec.transport())

    result = await client.create_payment(
        CreatePayment(
            transaction_id="txn-2",
            amount=100000,
            method_type=PaymentMethodType.VIRTUAL_ACCOUNT,
            bank=VirtualAccountBank.MANDIRI,
            customer=customer,
        )
    )
    assert result.virtual_account.number == "70012-9900"
    assert rec.last_json()["payment_type"] == "echannel"


@pytest.mark.asyncio
async def test_midtrans_body_status_code_rejects(midtrans_cfg, customer, recorder):
    rec = recorder((200, {"status_code": "406", "status_message": "duplicate order_id"}))
    client = MidtransClient(settings=midtrans_cfg, transport=rec.transport())
    result = await client.create_payment(
        CreatePayment(transaction_id="txn-3", amount=5000, method_type=PaymentMethodType.QRIS, customer=customer)
    )
    assert not result.success
    assert result.error == "duplicate order_id"


def test_midtrans_signature_key(midtrans_cfg):
    client = MidtransClient(settings=midtrans_cfg)
    body = {
        "order_id": "txn-1",
        "status_code": "200",
        "gross_amount": "100000.00",
        "transaction_status": "settlement",
        "transaction_id": "mt-1",
        "payment_type": "bank_transfer",
    }
    body["signature_key"] = sha512_hex("txn-1" + "200" + "100000.00" + "SB-Mid-server")
    callback = InboundCallback(body=body)

    assert client.verify_callback_signature(callback).valid
    event = client.parse_callback(callback)
    assert event.status is PaymentStatus.SUCCESS
    assert event.paid_amount == 100000

    forged = InboundCallback(body=dict(body, gross_amount="1.00"))
    assert not client.verify_callback_signature(forged).valid


def test_midtrans_notification_without_amount(midtrans_cfg):
    client = MidtransClient(settings=midtrans_cfg)
    event = client.parse_callback(InboundCallback(body={"order_id": "txn-1", "transaction_status": "expire"}))
    assert event.status is PaymentStatus.EXPIRED
    assert event.paid_amount is None
