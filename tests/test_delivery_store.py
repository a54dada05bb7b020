import pytest

from inquiry_relay.delivery_store import FailedDeliveryStore
from inquiry_relay.models import Channel, DeliveryPayload, DeliveryStatus
from inquiry_relay.relay_db import RelayDb


async def _store(tmp_path):
    db = RelayDb(str(tmp_path / "queue.db"))
    await db.init_db()
    return db, FailedDeliveryStore(db, timeout=5.0)


def _payload(email="anna@example.com"):
    return DeliveryPayload(
        data={"email": email, "phone": "123", "companyName": "ACME"},
        form_type="coworking",
        locale="en",
    )


@pytest.mark.asyncio
async def test_enqueue_creates_pending_record(tmp_path):
    _, store = await _store(tmp_path)
    record_id = await store.enqueue(Channel.CONFIRMATION, _payload(), "Connection refused")

    record = await store.get(record_id)
    assert record.channel is Channel.CONFIRMATION
    assert record.status is DeliveryStatus.PENDING
    assert record.retry_count == 0
    assert record.last_error == "Connection refused"
    # Stored unmasked so the send can be replayed
    assert record.payload.data["email"] == "anna@example.com"
    assert record.payload.form_type == "coworking"
    assert record.payload.locale == "en"
    assert record.created_at is not None


@pytest.mark.asyncio
async def test_fetch_pending_oldest_first_with_limit(tmp_path):
    _, store = await _store(tmp_path)
    ids = [await store.enqueue(Channel.NOTIFICATION, _payload(f"u{i}@example.com"), "boom") for i in range(4)]
    await store.mark_sent(ids[0])

    pending = await store.fetch_pending(2)
    assert [r.id for r in pending] == ids[1:3]
    assert [r.id for r in await store.fetch_pending(10)] == ids[1:]


@pytest.mark.asyncio
async def test_mark_failed_counts_until_exhausted(tmp_path):
    _, store = await _store(tmp_path)
    record_id = await store.enqueue(Channel.CONFIRMATION, _payload(), "first")

    first = await store.mark_failed(record_id, "second", 3)
    assert (first.retry_count, first.status, first.exhausted) == (1, DeliveryStatus.PENDING, False)
    second = await store.mark_failed(record_id, "third", 3)
    assert (second.retry_count, second.status) == (2, DeliveryStatus.PENDING)
    third = await store.mark_failed(record_id, "fourth", 3)
    assert (third.retry_count, third.status, third.exhausted) == (3, DeliveryStatus.FAILED, True)

    record = await store.get(record_id)
    assert record.last_error == "fourth"
    assert await store.fetch_pending(10) == []

    # Terminal records are left alone
    assert await store.mark_failed(record_id, "late", 3) is None
    assert (await store.get(record_id)).retry_count == 3


@pytest.mark.asyncio
async def test_mark_sent_is_terminal(tmp_path):
    _, store = await _store(tmp_path)
    record_id = await store.enqueue(Channel.NOTIFICATION, _payload(), "timeout")

    assert await store.mark_sent(record_id) is True
    record = await store.get(record_id)
    assert record.status is DeliveryStatus.SENT
    assert record.retry_count == 0

    assert await store.mark_sent(record_id) is False
    assert await store.mark_failed(record_id, "again", 3) is None
    assert (await store.get(record_id)).status is DeliveryStatus.SENT


@pytest.mark.asyncio
async def test_single_retry_budget_fails_on_first_error(tmp_path):
    _, store = await _store(tmp_path)
    record_id = await store.enqueue(Channel.CONFIRMATION, _payload(), "x")
    result = await store.mark_failed(record_id, "y", 1)
    assert result.status is DeliveryStatus.FAILED
    assert result.retry_count == 1


@pytest.mark.asyncio
async def test_list_count_and_purge(tmp_path):
    _, store = await _store(tmp_path)
    pending = await store.enqueue(Channel.CONFIRMATION, _payload(), "a")
    sent = await store.enqueue(Channel.CONFIRMATION, _payload(), "b")
    failed = await store.enqueue(Channel.NOTIFICATION, _payload(), "c")
    await store.mark_sent(sent)
    await store.mark_failed(failed, "c2", 1)

    assert await store.count_by_status() == {"pending": 1, "sent": 1, "failed": 1}
    assert [r.id for r in await store.list_records(DeliveryStatus.FAILED)] == [failed]
    assert len(await store.list_records()) == 3

    assert await store.purge_finished_before("1970-01-01 00:00:00") == 0
    assert await store.purge_finished_before("9999-12-31 00:00:00") == 2
    assert [r.id for r in await store.list_records()] == [pending]
    assert await store.count_by_status() == {"pending": 1, "sent": 0, "failed": 0}
