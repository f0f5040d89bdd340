import json
from datetime import datetime, timedelta, timezone

import pytest

from application.services.webhook_receiver import WebhookReceiver
from core.settings import WebhookSettings
from core.signatures import hmac_sign, utc_isoformat
from shared.codes.payment_codes import ErrorKind


SECRET = "inbound-secret"


@pytest.fixture
def receiver(uow_factory):
    return WebhookReceiver(uow_factory, settings=WebhookSettings(inbound_secret=SECRET))


def _signed(event_id="evt-1", body=None, secret=SECRET, at=None):
    raw = json.dumps(body or {"event": "user.verified", "data": {"user_id": 7}}).encode()
    ts = utc_isoformat(at or datetime.now(timezone.utc))
    headers = {
        "X-Kgiton-Signature": hmac_sign(raw, secret, ts),
        "X-Kgiton-Timestamp": ts,
    }
    if event_id:
        headers["X-Kgiton-Event-Id"] = event_id
    return headers, raw


@pytest.mark.asyncio
async def test_accepts_then_flags_duplicate(receiver):
    headers, raw = _signed()

    first = await receiver.receive(headers, raw, source="10.0.0.1")
    assert first.accepted and not first.duplicate
    assert first.event_type == "user.verified"

    again = await receiver.receive(headers, raw)
    assert again.accepted and again.duplicate
    assert again.error_kind is ErrorKind.DUPLICATE_EVENT


@pytest.mark.asyncio
async def test_bad_signature_is_rejected_and_not_recorded(receiver, uow_factory):
    headers, raw = _signed(secret="wrong")
    result = await receiver.receive(headers, raw)
    assert not result.accepted
    assert result.error_kind is ErrorKind.SIGNATURE_INVALID

    async with uow_factory(readonly=True) as uow:
        assert not await uow.processed_events.exists("evt-1")


@pytest.mark.asyncio
async def test_stale_timestamp(receiver):
    headers, raw = _signed(at=datetime.now(timezone.utc) - timedelta(minutes=6))
    result = await receiver.receive(headers, raw)
    assert result.error_kind is ErrorKind.TIMESTAMP_STALE


@pytest.mark.asyncio
async def test_missing_event_id(receiver):
    headers, raw = _signed(event_id=None)
    result = await receiver.receive(headers, raw)
    assert not result.accepted
    assert result.error_kind is ErrorKind.VALIDATION_ERROR


@pytest.mark.asyncio
async def test_no_secret_configured_rejects_everything(uow_factory):
    headers, raw = _signed()
    result = await WebhookReceiver(uow_factory, settings=WebhookSettings(inbound_secret=None)).receive(headers, raw)
    assert not result.accepted


@pytest.mark.asyncio
async def test_purge_forgets_old_event_ids(receiver):
    headers, raw = _signed()
    await receiver.receive(headers, raw)

    assert await receiver.purge_processed() == 0
    assert await receiver.purge_processed(datetime.now(timezone.utc) + timedelta(minutes=1)) == 1

    # signature still fresh, so the same id is accepted again
    result = await receiver.receive(headers, raw)
    assert result.accepted and not result.duplicate
