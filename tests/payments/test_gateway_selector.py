from datetime import datetime, timedelta, timezone

import pytest

from application.dtos.payments import (
    CreatePayment,
    InboundCallback,
    PaymentMethodType,
    PaymentQuery,
    PaymentResult,
    VirtualAccountBank,
)
from application.services.payment_service import PaymentFacade
from core.settings import PaymentSettings
from domain.common.exceptions import PaymentConfigurationError
from domain.payment.entity import PaymentStatus
from infrastructure.external.payments import GatewaySelector, clear_gateway_cache, get_payment_gateway
from infrastructure.external.payments.manual_client import ManualClient, reference_code
from shared.codes.payment_codes import ErrorKind


class CapturingGateway:
    """Records the request the facade hands over."""

    provider = "capture"

    def __init__(self, settings=None):
        self.seen: list[CreatePayment] = []
        self.closed = False

    async def create_payment(self, req):
        self.seen.append(req)
        return PaymentResult.failure(self.provider, "not really", ErrorKind.GATEWAY_REJECTED)

    async def aclose(self):
        self.closed = True


def test_selector_precedence():
    cfg = PaymentSettings(provider="xendit", xendit={"secret_key": "x"})
    selector = GatewaySelector(settings=cfg)
    assert selector.active_provider() == "xendit"
    assert selector.active_provider("Manual") == "manual"

    disabled = GatewaySelector(settings=PaymentSettings(provider="xendit", enabled=False))
    assert disabled.active_provider() == "manual"
    assert isinstance(disabled.resolve(), ManualClient)


def test_selector_caches_one_instance_per_provider():
    selector = GatewaySelector(settings=PaymentSettings(provider="manual"))
    first = selector.resolve()
    assert selector.resolve("manual") is first
    assert selector.cached() == [first]
    assert selector.clear_cache() == [first]
    assert selector.resolve() is not first


def test_unknown_or_misconfigured_provider_is_configuration_error():
    selector = GatewaySelector(settings=PaymentSettings(provider="paypal"))
    with pytest.raises(PaymentConfigurationError):
        selector.resolve()
    with pytest.raises(PaymentConfigurationError):
        GatewaySelector(settings=PaymentSettings(provider="midtrans")).resolve()


@pytest.mark.asyncio
async def test_aclose_all_closes_cached_adapters():
    selector = GatewaySelector(settings=PaymentSettings(provider="capture"), registry={"capture": CapturingGateway})
    gateway = selector.resolve()
    await selector.aclose_all()
    assert gateway.closed
    assert selector.cached() == []


@pytest.mark.asyncio
async def test_facade_applies_default_expiry_and_redirect(customer):
    cfg = PaymentSettings(provider="capture", checkout_expiry_minutes=120, va_expiry_minutes=1440)
    selector = GatewaySelector(settings=cfg, registry={"capture": CapturingGateway})
    facade = PaymentFacade(selector, settings=cfg)

    await facade.create_payment(
        CreatePayment(transaction_id="a", amount=1000, method_type=PaymentMethodType.CHECKOUT_PAGE, customer=customer)
    )
    await facade.create_payment(
        CreatePayment(
            transaction_id="b",
            amount=1000,
            method_type=PaymentMethodType.VIRTUAL_ACCOUNT,
            bank=VirtualAccountBank.BCA,
            customer=customer,
        )
    )
    await facade.create_payment(
        CreatePayment(
            transaction_id="c",
            amount=1000,
            method_type=PaymentMethodType.CHECKOUT_PAGE,
            customer=customer,
            expiry_minutes=15,
            redirect_url="https://shop.test/back",
        )
    )

    checkout, va, explicit = selector.resolve().seen
    assert checkout.expiry_minutes == 120
    assert checkout.redirect_url == cfg.success_redirect_url
    assert va.expiry_minutes == 1440
    assert explicit.expiry_minutes == 15
    assert explicit.redirect_url == "https://shop.test/back"


def test_reference_code():
    assert reference_code("1b9d6bcd-bbfd-4b2d-9b5d-ab8dfbbd4bed") == "PAY-FBBD4BED"


@pytest.mark.asyncio
async def test_manual_adapter_instructions_and_pending_status(customer):
    cfg = PaymentSettings(provider="manual", manual={"expiry_hours": 48, "bank_name": "BCA"})
    client = ManualClient(settings=cfg)
    before = datetime.now(timezone.utc)

    result = await client.create_payment(
        CreatePayment(transaction_id="txn-12345678", amount=25000, method_type=PaymentMethodType.MANUAL, customer=customer)
    )
    assert result.success
    assert result.instrument == "manual_instructions"
    assert result.manual_instructions.reference_code == "PAY-12345678"
    assert result.manual_instructions.amount == 25000
    assert abs((result.expires_at - (before + timedelta(hours=48))).total_seconds()) < 60

    status = await client.check_status(PaymentQuery(transaction_id="txn-12345678"))
    assert status.success and status.status is PaymentStatus.PENDING


def test_manual_confirmation_requires_admin_token():
    client = ManualClient(settings=PaymentSettings(provider="manual", manual={"admin_token": "s3cret"}))
    body = {"transaction_id": "txn-1", "status": "confirmed", "amount": 25000}
    assert client.verify_callback_signature(InboundCallback(headers={"X-Admin-Token": "s3cret"}, body=body)).valid
    assert not client.verify_callback_signature(InboundCallback(headers={"X-Admin-Token": "nope"}, body=body)).valid

    event = client.parse_callback(InboundCallback(body=body))
    assert event.status is PaymentStatus.SUCCESS
    assert event.channel == "bank_transfer"
    assert event.paid_amount == 25000


def test_manual_confirmation_rejected_without_admin_token():
    client = ManualClient(settings=PaymentSettings(provider="manual"))
    body = {"transaction_id": "txn-1", "status": "confirmed"}
    for headers in ({"X-Internal-Source": "true"}, {"X-Admin-Token": ""}, {}):
        result = client.verify_callback_signature(InboundCallback(headers=headers, body=body))
        assert not result.valid
        assert result.error_kind is ErrorKind.SIGNATURE_INVALID

    # no amount in the confirmation means nothing to compare against
    assert client.parse_callback(InboundCallback(body=body)).paid_amount is None


def test_module_helpers_use_environment_settings():
    clear_gateway_cache()
    gateway = get_payment_gateway()
    assert isinstance(gateway, ManualClient)
    assert get_payment_gateway("manual") is gateway
    clear_gateway_cache()
    assert get_payment_gateway() is not gateway
