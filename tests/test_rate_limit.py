import asyncio

import pytest

from inquiry_relay.errors import AdmissionRejected
from inquiry_relay.rate_limit import RateLimiter
from inquiry_relay.relay_db import RelayDb

WINDOW = 60000


async def _limiter(tmp_path, name="limits.db"):
    db = RelayDb(str(tmp_path / name))
    await db.init_db()
    return db, RateLimiter(db, timeout=5.0)


def _freeze(monkeypatch, now_ms):
    monkeypatch.setattr("inquiry_relay.rate_limit.time.time", lambda: now_ms / 1000)


@pytest.mark.asyncio
async def test_hundred_admitted_then_rejected(tmp_path, monkeypatch):
    db, limiter = await _limiter(tmp_path)
    _freeze(monkeypatch, 1_700_000_000_000)

    results = [await limiter.allow("abc123", 100, WINDOW) for _ in range(100)]
    assert all(results)
    assert await limiter.allow("abc123", 100, WINDOW) is False

    counter = await db.rate_limits.get("abc123")
    assert counter["count"] == 100
    attempts = await db.duplicate_attempts.list_for("abc123")
    assert len(attempts) == 1
    assert await limiter.count_duplicate_attempts() == 1


@pytest.mark.asyncio
async def test_first_request_opens_window(tmp_path, monkeypatch):
    db, limiter = await _limiter(tmp_path)
    now = 1_700_000_000_000
    _freeze(monkeypatch, now)

    assert await limiter.allow("fresh", 5, WINDOW) is True
    counter = await db.rate_limits.get("fresh")
    assert counter == {"identifier": "fresh", "count": 1, "reset_time": now + WINDOW}


@pytest.mark.asyncio
async def test_expired_window_resets_counter(tmp_path, monkeypatch):
    db, limiter = await _limiter(tmp_path)
    start = 1_700_000_000_000
    _freeze(monkeypatch, start)
    assert await limiter.allow("id1", 2, WINDOW)
    assert await limiter.allow("id1", 2, WINDOW)
    assert not await limiter.allow("id1", 2, WINDOW)

    later = start + WINDOW + 1000
    _freeze(monkeypatch, later)
    assert await limiter.allow("id1", 2, WINDOW)
    counter = await db.rate_limits.get("id1")
    assert counter["count"] == 1
    assert counter["reset_time"] == later + WINDOW


@pytest.mark.asyncio
async def test_window_still_open_at_reset_time(tmp_path, monkeypatch):
    _, limiter = await _limiter(tmp_path)
    start = 1_700_000_000_000
    _freeze(monkeypatch, start)
    assert await limiter.allow("edge", 1, WINDOW)

    _freeze(monkeypatch, start + WINDOW)
    assert await limiter.allow("edge", 1, WINDOW) is False


@pytest.mark.asyncio
async def test_identities_are_counted_separately(tmp_path):
    _, limiter = await _limiter(tmp_path)
    assert await limiter.allow("a", 1, WINDOW)
    assert not await limiter.allow("a", 1, WINDOW)
    assert await limiter.allow("b", 1, WINDOW)


@pytest.mark.asyncio
async def test_concurrent_requests_never_exceed_limit(tmp_path):
    db, limiter = await _limiter(tmp_path)

    results = await asyncio.gather(*(limiter.allow("burst", 4, WINDOW) for _ in range(12)))

    assert results.count(True) == 4
    assert (await db.rate_limits.get("burst"))["count"] == 4
    assert len(await db.duplicate_attempts.list_for("burst")) == 8


@pytest.mark.asyncio
async def test_storage_error_admits_request(tmp_path, monkeypatch):
    db, limiter = await _limiter(tmp_path)

    async def broken(*args, **kwargs):
        raise RuntimeError("database is locked")

    monkeypatch.setattr(db.rate_limits, "hit", broken)
    assert await limiter.allow("anyone", 1, WINDOW) is True
    assert await db.duplicate_attempts.list_for("anyone") == []


@pytest.mark.asyncio
async def test_check_raises_admission_rejected(tmp_path):
    _, limiter = await _limiter(tmp_path)
    await limiter.check("c", 1, WINDOW)
    with pytest.raises(AdmissionRejected) as exc_info:
        await limiter.check("c", 1, WINDOW)
    assert exc_info.value.identity == "c"
