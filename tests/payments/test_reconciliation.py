import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest

from application.dtos.payments import (
    CallbackAck,
    CanonicalCallbackEvent,
    InboundCallback,
    PaymentCustomer,
    PaymentMethodType,
    PaymentResult,
    TopUpRequest,
)
from application.services.callback_normalizer import CallbackNormalizer
from application.services.payment_callback_service import PaymentCallbackService
from application.services.payment_service import PaymentApplicationService, PaymentFacade
from application.services.transaction_reconciler import ReconcileStatus, TransactionReconciler
from domain.common.exceptions import BalanceAccountNotFoundException, PaymentFailedException
from domain.payment.entity import PaymentStatus, Transaction
from domain.payment.events import PaymentFailed, PaymentSucceeded
from infrastructure.external.payments import GatewaySelector
from shared.codes.payment_codes import ErrorKind


class RecordingPublisher:
    def __init__(self, fail=False):
        self.published = []
        self.fail = fail

    async def publish(self, event_type, data, event_id=None):
        if self.fail:
            raise RuntimeError("broker down")
        self.published.append((event_type, data))
        return []


class RejectingGateway:
    provider = "flaky"

    def __init__(self, settings=None):
        pass

    async def create_payment(self, req):
        return PaymentResult.failure(self.provider, "upstream 503", ErrorKind.GATEWAY_UNAVAILABLE)


async def _pending(uow_factory, txn_id="txn-1", amount=50000, credit=500, expires_at=None):
    async with uow_factory() as uow:
        return await uow.transactions.create(
            Transaction(
                id=txn_id,
                account_id=1,
                amount=amount,
                credit_amount=credit,
                method_type="manual",
                provider="manual",
                expires_at=expires_at,
            )
        )


async def _balance(uow_factory):
    async with uow_factory(readonly=True) as uow:
        return (await uow.accounts.get(1)).balance


def _event(txn_id="txn-1", status=PaymentStatus.SUCCESS, paid=50000):
    return CanonicalCallbackEvent(
        transaction_id=txn_id,
        provider="manual",
        gateway_transaction_id=txn_id,
        status=status,
        paid_amount=paid,
        channel="bank_transfer",
    )


def _manual_callback(txn_id="txn-1", status="confirmed", token="admin-secret", amount=50000):
    body = {"transaction_id": txn_id, "status": status, "amount": amount}
    return InboundCallback(
        headers={"X-Admin-Token": token},
        raw_body=json.dumps(body).encode(),
        body=body,
        path="/api/v1/webhooks/payment/manual",
    )


@pytest.mark.asyncio
async def test_success_credits_once_and_replay_is_noop(uow_factory, account, payment_cfg):
    await _pending(uow_factory)
    reconciler = TransactionReconciler(uow_factory, settings=payment_cfg)

    first = await reconciler.apply(_event())
    assert first.status is ReconcileStatus.APPLIED
    assert isinstance(first.domain_event, PaymentSucceeded)
    assert first.domain_event.credit_amount == 500
    assert first.balance == 500

    replay = await reconciler.apply(_event())
    assert replay.status is ReconcileStatus.ALREADY_TERMINAL
    assert replay.domain_event is None
    assert await _balance(uow_factory) == 500

    async with uow_factory(readonly=True) as uow:
        txn = await uow.transactions.get_by_id("txn-1")
    assert txn.status is PaymentStatus.SUCCESS
    assert txn.payment_reference == "MANUAL-txn-1"
    assert txn.paid_at is not None


@pytest.mark.asyncio
async def test_concurrent_callbacks_credit_exactly_once(uow_factory, account, payment_cfg):
    await _pending(uow_factory)
    reconciler = TransactionReconciler(uow_factory, settings=payment_cfg)

    outcomes = await asyncio.gather(*(reconciler.apply(_event()) for _ in range(8)))

    applied = [o for o in outcomes if o.status is ReconcileStatus.APPLIED]
    assert len(applied) == 1
    assert all(o.status is ReconcileStatus.ALREADY_TERMINAL for o in outcomes if o is not applied[0])
    assert await _balance(uow_factory) == 500


@pytest.mark.asyncio
async def test_pending_transaction_does_not_expire_on_its_own(uow_factory, account, payment_cfg):
    past = datetime.now(timezone.utc) - timedelta(hours=3)
    await _pending(uow_factory, expires_at=past)

    async with uow_factory(readonly=True) as uow:
        txn = await uow.transactions.get_by_id("txn-1")
    assert txn.status is PaymentStatus.PENDING

    outcome = await TransactionReconciler(uow_factory, settings=payment_cfg).apply(_event())
    assert outcome.applied
    assert await _balance(uow_factory) == 500


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, reference",
    [
        (PaymentStatus.FAILED, "FAILED-txn-1"),
        (PaymentStatus.EXPIRED, "EXPIRED-txn-1"),
        (PaymentStatus.CANCELLED, "CANCELLED-txn-1"),
    ],
)
async def test_terminal_failure_states(uow_factory, account, payment_cfg, status, reference):
    await _pending(uow_factory)
    reconciler = TransactionReconciler(uow_factory, settings=payment_cfg)

    outcome = await reconciler.apply(_event(status=status))
    assert outcome.applied
    assert outcome.transaction_status is status

    late_success = await reconciler.apply(_event())
    assert late_success.status is ReconcileStatus.ALREADY_TERMINAL
    assert await _balance(uow_factory) == 0

    async with uow_factory(readonly=True) as uow:
        txn = await uow.transactions.get_by_id("txn-1")
    assert txn.status is status
    assert txn.payment_reference == reference


@pytest.mark.asyncio
async def test_amount_mismatch_still_settles(uow_factory, account, payment_cfg):
    await _pending(uow_factory)
    outcome = await TransactionReconciler(uow_factory, settings=payment_cfg).apply(_event(paid=1))
    assert outcome.applied
    assert outcome.domain_event.paid_amount == 1
    assert await _balance(uow_factory) == 500


@pytest.mark.asyncio
async def test_unknown_and_pending_events(uow_factory, account, payment_cfg):
    reconciler = TransactionReconciler(uow_factory, settings=payment_cfg)
    assert (await reconciler.apply(_event("missing"))).status is ReconcileStatus.NOT_FOUND

    await _pending(uow_factory)
    ignored = await reconciler.apply(_event(status=PaymentStatus.PENDING))
    assert ignored.status is ReconcileStatus.IGNORED
    assert await _balance(uow_factory) == 0


def _callback_service(uow_factory, payment_cfg, publisher):
    selector = GatewaySelector(settings=payment_cfg)
    return PaymentCallbackService(
        CallbackNormalizer(selector),
        TransactionReconciler(uow_factory, settings=payment_cfg),
        publisher,
    )


@pytest.mark.asyncio
async def test_callback_service_publishes_balance_update(uow_factory, account, payment_cfg):
    await _pending(uow_factory)
    publisher = RecordingPublisher()
    service = _callback_service(uow_factory, payment_cfg, publisher)

    ack = await service.handle(_manual_callback(), "manual")
    assert ack.body["success"] is True

    await service.handle(_manual_callback(), "manual")
    assert len(publisher.published) == 1
    event_type, data = publisher.published[0]
    assert event_type == "token.balance_updated"
    assert data["account_id"] == 1
    assert data["credit_amount"] == 500
    assert data["balance"] == 500
    assert data["payment_reference"] == "MANUAL-txn-1"


@pytest.mark.asyncio
async def test_callback_service_rejects_bad_token_but_acknowledges(uow_factory, account, payment_cfg):
    await _pending(uow_factory)
    publisher = RecordingPublisher()
    service = _callback_service(uow_factory, payment_cfg, publisher)

    ack = await service.handle(_manual_callback(token="wrong"), "manual")
    assert isinstance(ack, CallbackAck)
    assert publisher.published == []
    assert await _balance(uow_factory) == 0


@pytest.mark.asyncio
async def test_callback_service_detects_provider_from_body(uow_factory, account, payment_cfg):
    await _pending(uow_factory)
    service = _callback_service(uow_factory, payment_cfg, RecordingPublisher())

    await service.handle(_manual_callback(status="failed"))

    async with uow_factory(readonly=True) as uow:
        txn = await uow.transactions.get_by_id("txn-1")
    assert txn.status is PaymentStatus.FAILED


@pytest.mark.asyncio
async def test_publish_failure_keeps_credit(uow_factory, account, payment_cfg):
    await _pending(uow_factory)
    service = _callback_service(uow_factory, payment_cfg, RecordingPublisher(fail=True))

    ack = await service.handle(_manual_callback(), "manual")
    assert ack.body["success"] is True
    assert await _balance(uow_factory) == 500


@pytest.mark.asyncio
async def test_failure_event_is_not_published(uow_factory, account, payment_cfg):
    await _pending(uow_factory)
    reconciler = TransactionReconciler(uow_factory, settings=payment_cfg)
    outcome = await reconciler.apply(_event(status=PaymentStatus.FAILED))
    assert isinstance(outcome.domain_event, PaymentFailed)

    publisher = RecordingPublisher()
    await _callback_service(uow_factory, payment_cfg, publisher)._publish(outcome)
    assert publisher.published == []


def _top_up(account_id=1):
    return TopUpRequest(
        account_id=account_id,
        amount=25000,
        credit_amount=250,
        method_type=PaymentMethodType.MANUAL,
        customer=PaymentCustomer(name="Budi Santoso", email="budi@example.com"),
    )


@pytest.mark.asyncio
async def test_create_top_up_with_manual_provider(uow_factory, account, payment_cfg):
    selector = GatewaySelector(settings=payment_cfg)
    service = PaymentApplicationService(uow_factory, PaymentFacade(selector, settings=payment_cfg))

    created = await service.create_top_up(_top_up())
    txn = created.transaction
    assert txn.status is PaymentStatus.PENDING
    assert txn.provider == "manual"
    assert txn.credit_amount == 250
    assert created.payment.manual_instructions.amount == 25000
    assert txn.expires_at is not None

    stored = await service.get_transaction(txn.id)
    assert stored.id == txn.id
    assert stored.gateway_transaction_id == created.payment.gateway_transaction_id


@pytest.mark.asyncio
async def test_create_top_up_unknown_account(uow_factory, payment_cfg):
    selector = GatewaySelector(settings=payment_cfg)
    service = PaymentApplicationService(uow_factory, PaymentFacade(selector, settings=payment_cfg))
    with pytest.raises(BalanceAccountNotFoundException):
        await service.create_top_up(_top_up(account_id=42))


@pytest.mark.asyncio
async def test_gateway_failure_leaves_transaction_pending(uow_factory, account, payment_cfg):
    selector = GatewaySelector(settings=payment_cfg, registry={"flaky": RejectingGateway})
    service = PaymentApplicationService(uow_factory, PaymentFacade(selector, settings=payment_cfg))

    with pytest.raises(PaymentFailedException) as exc_info:
        await service.create_top_up(_top_up().model_copy(update={"provider": "flaky"}))

    assert exc_info.value.kind is ErrorKind.GATEWAY_UNAVAILABLE
    txn_id = exc_info.value.details["transaction_id"]
    stored = await service.get_transaction(txn_id)
    assert stored.status is PaymentStatus.PENDING
