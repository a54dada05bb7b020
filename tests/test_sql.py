import pytest

from inquiry_relay.relay_db import RelayDb
from inquiry_relay.sql import SqliteAdapter, create_adapter


def test_create_adapter_sqlite_forms(tmp_path):
    path = str(tmp_path / "a.db")
    assert isinstance(create_adapter(path), SqliteAdapter)
    assert create_adapter(f"sqlite:{path}").db_path == path
    assert isinstance(create_adapter(":memory:"), SqliteAdapter)


def test_create_adapter_rejects_unknown():
    with pytest.raises(ValueError):
        create_adapter("mysql://localhost/db")
    with pytest.raises(ValueError):
        create_adapter("relay.db")


def test_postgres_placeholders():
    pytest.importorskip("psycopg")
    adapter = create_adapter("postgresql://user:pw@localhost/relay")
    converted = adapter._convert_placeholders(
        "SELECT :a::text, x FROM t WHERE id = :id AND s = :status"
    )
    assert converted == "SELECT %(a)s::text, x FROM t WHERE id = %(id)s AND s = %(status)s"


@pytest.mark.asyncio
async def test_init_db_creates_tables_idempotently(tmp_path):
    db = RelayDb(str(tmp_path / "schema.db"))
    await db.init_db()
    await db.init_db()

    rows = await db.adapter.fetch_all("SELECT name FROM sqlite_master WHERE type = 'table'")
    names = {row["name"] for row in rows}
    assert {"rate_limits", "duplicate_attempts", "failed_emails", "form_submissions"} <= names
    assert await db.ping() is True


@pytest.mark.asyncio
async def test_json_columns_round_trip(tmp_path):
    db = RelayDb(str(tmp_path / "json.db"))
    await db.init_db()
    payload = {"data": {"email": "a@example.com", "services": ["desk"]}, "form_type": "coworking", "locale": "pl"}

    record_id = await db.failed_emails.insert("notification", payload, "boom")

    row = await db.failed_emails.get(record_id)
    assert row["payload"] == payload
    assert row["status"] == "pending"
    assert row["retry_count"] == 0
