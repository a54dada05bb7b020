import asyncio

import pytest

from inquiry_relay.config import RelayConfig

ADMIN = "office@example.com"
USER = "jan.kowalski@example.com"


class DummyTransport:
    """Records messages; addresses in ``fail_for`` (or everything with ``fail_all``) raise."""

    def __init__(self):
        self.sent = []
        self.fail_for = set()
        self.fail_all = False
        self.delay = 0.0
        self.smtp_ok = True

    async def send_email(self, to, subject, text):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_all or to in self.fail_for:
            raise RuntimeError(f"SMTP unavailable for {to}")
        self.sent.append((to, subject, text))
        return f"<id-{len(self.sent)}@test>"

    async def verify_connection(self):
        return self.smtp_ok

    def to(self, address):
        return [m for m in self.sent if m[0] == address]


@pytest.fixture
def transport():
    return DummyTransport()


@pytest.fixture
def config(tmp_path):
    return RelayConfig(
        database_url=str(tmp_path / "relay.db"),
        admin_email=ADMIN,
        ip_salt="test-salt",
        retry_interval_seconds=0,
        send_timeout=2.0,
        storage_timeout=5.0,
    )


@pytest.fixture
def form_data():
    return {
        "firstName": "Jan",
        "lastName": "Kowalski",
        "email": USER,
        "phone": "+48 600 000 000",
        "companyName": "Test Co",
        "startDate": "2024-01-01",
        "package": "basic",
        "gdprConsent": True,
    }
