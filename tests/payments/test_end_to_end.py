import json

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from api.dependencies import get_gateway_resolver, get_uow_factory, get_webhook_transport_dep
from application.dtos.payments import PaymentCustomer, PaymentMethodType, TopUpRequest, VirtualAccountBank
from application.ports.webhook_transport import TransportResponse
from application.services.payment_service import PaymentApplicationService, PaymentFacade
from core.settings import PaymentSettings
from core.signatures import build_string_to_sign, load_private_key, rsa_sign
from domain.payment.entity import PaymentStatus
from infrastructure.external.payments import GatewaySelector
from infrastructure.external.payments.manual_client import ManualClient
from infrastructure.external.payments.winpay_client import WinpayClient, jakarta_timestamp
from main import app


VA_CALLBACK_PATH = "/api/v1/webhooks/winpay/va"


class NullTransport:
    async def post(self, url, body, headers, *, timeout):
        return TransportResponse(status_code=200)

    async def aclose(self):
        pass


@pytest_asyncio.fixture
async def serve(uow_factory):
    clients = []

    async def _serve(selector):
        app.dependency_overrides[get_uow_factory] = lambda: uow_factory
        app.dependency_overrides[get_gateway_resolver] = lambda: selector
        app.dependency_overrides[get_webhook_transport_dep] = lambda: NullTransport()
        client = AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
        clients.append(client)
        return client

    try:
        yield _serve
    finally:
        for client in clients:
            await client.aclose()
        app.dependency_overrides.clear()


async def _state(uow_factory, transaction_id):
    async with uow_factory(readonly=True) as uow:
        txn = await uow.transactions.get_by_id(transaction_id)
        account = await uow.accounts.get(txn.account_id)
    return txn.status, account.balance


@pytest.mark.asyncio
async def test_bri_virtual_account_paid_once(serve, uow_factory, account, rsa_pems, recorder):
    private_pem, public_pem = rsa_pems
    provider_api = recorder((200, {
        "responseCode": "2002700",
        "responseMessage": "Successful",
        "virtualAccountData": {
            "virtualAccountNo": "  8888800012345678",
            "virtualAccountName": "Budi Santoso",
            "additionalInfo": {"contractId": "ci-100"},
        },
    }))
    cfg = PaymentSettings(
        provider="winpay",
        winpay={
            "partner_id": "PARTNER-1",
            "private_key": private_pem,
            "public_key": public_pem,
            "snap_base_url": "https://snap.test",
        },
    )
    selector = GatewaySelector(
        settings=cfg,
        registry={"winpay": lambda s: WinpayClient(settings=s, transport=provider_api.transport())},
    )
    service = PaymentApplicationService(uow_factory, PaymentFacade(selector))

    created = await service.create_top_up(
        TopUpRequest(
            account_id=1,
            amount=100000,
            credit_amount=1000,
            method_type=PaymentMethodType.VIRTUAL_ACCOUNT,
            bank=VirtualAccountBank.BRI,
            customer=PaymentCustomer(name="Budi Santoso", email="budi@example.com"),
        )
    )
    txn_id = created.transaction.id
    assert created.payment.virtual_account.number == "8888800012345678"
    assert provider_api.last_json()["trxId"] == txn_id
    assert await _state(uow_factory, txn_id) == (PaymentStatus.PENDING, 0)

    body = {
        "trxId": txn_id,
        "virtualAccountNo": "8888800012345678",
        "paidAmount": {"value": "100000.00", "currency": "IDR"},
        "referenceNo": "ref-100",
        "trxDateTime": "2024-05-01T19:00:00+07:00",
        "additionalInfo": {"contractId": "ci-100", "channel": "BRI"},
    }
    ts = jakarta_timestamp()
    headers = {
        "Content-Type": "application/json",
        "X-TIMESTAMP": ts,
        "X-SIGNATURE": rsa_sign(build_string_to_sign("POST", VA_CALLBACK_PATH, body, ts), load_private_key(private_pem)),
    }
    client = await serve(selector)

    for _ in range(2):
        resp = await client.post(VA_CALLBACK_PATH, content=json.dumps(body), headers=headers)
        assert resp.status_code == 200
        assert resp.json() == {"responseCode": "2002500", "responseMessage": "Successful"}
        assert await _state(uow_factory, txn_id) == (PaymentStatus.SUCCESS, 1000)

    fetched = (await client.get(f"/api/v1/payments/{txn_id}")).json()["data"]
    assert fetched["status"] == "success"


@pytest.mark.asyncio
async def test_manual_confirmation_without_admin_token_is_not_applied(serve, uow_factory, account):
    selector = GatewaySelector(
        settings=PaymentSettings(provider="manual"),
        registry={"manual": lambda s: ManualClient(settings=s)},
    )
    client = await serve(selector)
    created = await client.post(
        "/api/v1/payments",
        json={
            "account_id": 1,
            "amount": 25000,
            "credit_amount": 250,
            "method_type": "manual",
            "customer": {"name": "Budi Santoso"},
        },
    )
    txn_id = created.json()["data"]["transaction"]["id"]

    confirmation = {"transaction_id": txn_id, "status": "confirmed"}
    for path in ("/api/v1/webhooks/payment/callback", "/api/v1/webhooks/payment/manual"):
        resp = await client.post(path, json=confirmation, headers={"X-Internal-Source": "true"})
        assert resp.status_code == 200

    assert await _state(uow_factory, txn_id) == (PaymentStatus.PENDING, 0)
