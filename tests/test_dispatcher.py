import logging

import pytest

from inquiry_relay.delivery_store import FailedDeliveryStore
from inquiry_relay.dispatcher import DeliveryDispatcher
from inquiry_relay.models import Channel
from inquiry_relay.prometheus import RelayMetrics
from inquiry_relay.relay_db import RelayDb
from inquiry_relay.sender import NotificationSender

ADMIN = "office@example.com"
USER = "jan.kowalski@example.com"


async def _dispatcher(tmp_path, transport):
    db = RelayDb(str(tmp_path / "dispatch.db"))
    await db.init_db()
    store = FailedDeliveryStore(db, timeout=5.0)
    sender = NotificationSender(transport, operator_address=ADMIN, send_timeout=2.0)
    metrics = RelayMetrics()
    return DeliveryDispatcher(sender, store, metrics), store, metrics


def _data():
    return {"firstName": "Jan", "email": USER, "companyName": "Test Co", "startDate": "2024-01-01", "package": "basic"}


@pytest.mark.asyncio
async def test_both_channels_delivered(tmp_path, transport):
    dispatcher, store, metrics = await _dispatcher(tmp_path, transport)

    outcome = await dispatcher.dispatch(_data(), "virtual-office", "en")

    assert outcome.submission_accepted is True
    assert outcome.delivered == [Channel.CONFIRMATION, Channel.NOTIFICATION]
    assert outcome.queued == []
    assert await store.fetch_pending(10) == []

    confirmation = transport.to(USER)[0]
    assert confirmation[1] == "Virtual Office Inquiry Confirmation - Gliwicka 111"
    notification = transport.to(ADMIN)[0]
    assert notification[1] == "New submission: virtual office"
    assert b'ir_deliveries_total{channel="confirmation",outcome="sent"} 1.0' in metrics.generate_latest()


@pytest.mark.asyncio
async def test_failed_confirmation_is_queued_alone(tmp_path, transport):
    dispatcher, store, _ = await _dispatcher(tmp_path, transport)
    transport.fail_for.add(USER)

    outcome = await dispatcher.dispatch(_data(), "virtual-office", "pl")

    assert outcome.submission_accepted is True
    assert outcome.delivered == [Channel.NOTIFICATION]
    assert outcome.queued == [Channel.CONFIRMATION]
    records = await store.fetch_pending(10)
    assert len(records) == 1
    record = records[0]
    assert record.channel is Channel.CONFIRMATION
    assert record.retry_count == 0
    assert record.last_error == f"SMTP unavailable for {USER}"
    assert record.payload.data == _data()
    assert record.payload.locale == "pl"
    assert len(transport.to(ADMIN)) == 1


@pytest.mark.asyncio
async def test_both_channels_failing_creates_two_records(tmp_path, transport):
    dispatcher, store, _ = await _dispatcher(tmp_path, transport)
    transport.fail_all = True

    outcome = await dispatcher.dispatch(_data(), "coworking", "en")

    assert outcome.submission_accepted is True
    assert outcome.delivered == []
    records = await store.fetch_pending(10)
    assert sorted(r.channel.value for r in records) == ["confirmation", "notification"]


@pytest.mark.asyncio
async def test_enqueue_failure_does_not_raise(tmp_path, transport, monkeypatch):
    dispatcher, store, _ = await _dispatcher(tmp_path, transport)
    transport.fail_all = True

    async def broken(*args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(store, "enqueue", broken)
    outcome = await dispatcher.dispatch(_data(), "coworking", "en")

    assert outcome.submission_accepted is True
    assert outcome.queued == []
    assert outcome.unqueued == [Channel.CONFIRMATION, Channel.NOTIFICATION]


@pytest.mark.asyncio
async def test_failure_log_masks_personal_data(tmp_path, transport, caplog):
    dispatcher, _, _ = await _dispatcher(tmp_path, transport)
    transport.fail_for.add(ADMIN)

    with caplog.at_level(logging.ERROR, logger="DeliveryDispatcher"):
        await dispatcher.dispatch(_data(), "virtual-office", "en")

    text = caplog.text
    assert "Failed to send notification" in text
    assert "[REDACTED]" in text
    assert "Test Co" in text
    assert "Jan" not in text
    assert "jan.kowalski" not in text


@pytest.mark.asyncio
async def test_slow_send_counts_as_failure(tmp_path, transport):
    db = RelayDb(str(tmp_path / "slow.db"))
    await db.init_db()
    store = FailedDeliveryStore(db, timeout=5.0)
    sender = NotificationSender(transport, operator_address=ADMIN, send_timeout=0.05)
    transport.delay = 0.5

    outcome = await DeliveryDispatcher(sender, store).dispatch(_data(), "coworking", "en")

    assert outcome.queued == [Channel.CONFIRMATION, Channel.NOTIFICATION]
    records = await store.fetch_pending(10)
    assert all("timed out" in r.last_error for r in records)
