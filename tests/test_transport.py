import asyncio
import dataclasses

import aiosmtplib
import pytest

from inquiry_relay import transport as transport_module
from inquiry_relay.config import RelayConfig
from inquiry_relay.errors import ConfigurationError, TransientDeliveryFailure
from inquiry_relay.sender import NotificationSender
from inquiry_relay.transport import MockTransport, SmtpTransport, create_transport


class FakeSMTP:
    instances = []
    refuse = False
    reject_login = False

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.calls = []
        FakeSMTP.instances.append(self)

    async def connect(self):
        self.calls.append("connect")
        if FakeSMTP.refuse:
            raise aiosmtplib.SMTPConnectError("Connection refused")

    async def login(self, user, password):
        self.calls.append(("login", user, password))
        if FakeSMTP.reject_login:
            raise aiosmtplib.SMTPAuthenticationError(535, "Authentication failed")

    async def send_message(self, msg, sender=None):
        self.calls.append(("send", msg, sender))
        return {}, "OK"

    async def noop(self):
        self.calls.append("noop")

    async def quit(self):
        self.calls.append("quit")

    def close(self):
        self.calls.append("close")


@pytest.fixture
def fake_smtp(monkeypatch):
    FakeSMTP.instances = []
    FakeSMTP.refuse = False
    FakeSMTP.reject_login = False
    monkeypatch.setattr(transport_module.aiosmtplib, "SMTP", FakeSMTP)
    return FakeSMTP


def _config(**overrides):
    base = RelayConfig(
        smtp_host="smtp.example.com",
        smtp_user="mailer@example.com",
        smtp_password="secret",
        smtp_from="noreply@example.com",
    )
    return dataclasses.replace(base, **overrides)


@pytest.mark.asyncio
async def test_send_uses_header_from_and_envelope_user(fake_smtp):
    receipt = await SmtpTransport(_config()).send_email("anna@example.com", "Hello", "Body text")

    smtp = fake_smtp.instances[0]
    assert smtp.calls[0] == "connect"
    assert smtp.calls[1] == ("login", "mailer@example.com", "secret")
    _, msg, sender = smtp.calls[2]
    assert sender == "mailer@example.com"
    assert msg["From"] == "noreply@example.com"
    assert msg["To"] == "anna@example.com"
    assert msg["Subject"] == "Hello"
    assert msg.get_content().strip() == "Body text"
    assert receipt == msg["Message-ID"]
    assert smtp.calls[-1] == "quit"


@pytest.mark.asyncio
async def test_port_465_uses_implicit_tls(fake_smtp):
    await SmtpTransport(_config(smtp_port=465)).send_email("a@example.com", "s", "t")
    kwargs = fake_smtp.instances[0].kwargs
    assert kwargs["use_tls"] is True
    assert kwargs["start_tls"] is False
    assert kwargs["validate_certs"] is True


@pytest.mark.asyncio
async def test_other_ports_use_starttls_and_insecure_flag(fake_smtp):
    await SmtpTransport(_config(smtp_port=587, smtp_tls_insecure=True)).send_email("a@example.com", "s", "t")
    kwargs = fake_smtp.instances[0].kwargs
    assert kwargs["use_tls"] is False
    assert kwargs["start_tls"] is None
    assert kwargs["validate_certs"] is False


@pytest.mark.asyncio
async def test_no_login_without_credentials(fake_smtp):
    await SmtpTransport(_config(smtp_user=None, smtp_password=None)).send_email("a@example.com", "s", "t")
    assert not any(isinstance(c, tuple) and c[0] == "login" for c in fake_smtp.instances[0].calls)


@pytest.mark.asyncio
async def test_verify_connection(fake_smtp):
    smtp_transport = SmtpTransport(_config())
    assert await smtp_transport.verify_connection() is True
    assert "noop" in fake_smtp.instances[0].calls

    fake_smtp.refuse = True
    assert await smtp_transport.verify_connection() is False


@pytest.mark.asyncio
async def test_session_closed_when_login_fails(fake_smtp):
    fake_smtp.reject_login = True
    smtp_transport = SmtpTransport(_config())

    with pytest.raises(aiosmtplib.SMTPAuthenticationError):
        await smtp_transport.send_email("a@example.com", "s", "t")
    assert await smtp_transport.verify_connection() is False

    assert len(fake_smtp.instances) == 2
    for smtp in fake_smtp.instances:
        assert smtp.calls[-1] == "close"
        assert not any(isinstance(c, tuple) and c[0] == "send" for c in smtp.calls)


@pytest.mark.asyncio
async def test_session_closed_when_connect_fails(fake_smtp):
    fake_smtp.refuse = True
    assert await SmtpTransport(_config()).verify_connection() is False
    assert fake_smtp.instances[0].calls == ["connect", "close"]


def test_smtp_transport_requires_host():
    with pytest.raises(ConfigurationError):
        SmtpTransport(RelayConfig())


def test_create_transport_selects_mock():
    assert isinstance(create_transport(RelayConfig(mock_email=True)), MockTransport)
    assert isinstance(create_transport(_config()), SmtpTransport)


@pytest.mark.asyncio
async def test_mock_transport_records_messages():
    mock = MockTransport()
    first = await mock.send_email("a@example.com", "s1", "t1")
    second = await mock.send_email("b@example.com", "s2", "t2")
    assert (first, second) == ("mock-1", "mock-2")
    assert [m.to for m in mock.sent] == ["a@example.com", "b@example.com"]
    assert await mock.verify_connection() is True


class HangingTransport:
    async def send_email(self, to, subject, text):
        await asyncio.sleep(10)

    async def verify_connection(self):
        await asyncio.sleep(10)
        return True


class BrokenTransport:
    async def send_email(self, to, subject, text):
        raise aiosmtplib.SMTPRecipientsRefused([])

    async def verify_connection(self):
        return False


@pytest.mark.asyncio
async def test_sender_timeout_is_a_delivery_failure():
    sender = NotificationSender(HangingTransport(), operator_address="ops@example.com", send_timeout=0.05)
    with pytest.raises(TransientDeliveryFailure) as exc_info:
        await sender.send_alert("ops@example.com", "s", "t")
    assert exc_info.value.channel == "alert"
    assert "timed out" in str(exc_info.value)
    assert await sender.verify_connection() is False


@pytest.mark.asyncio
async def test_sender_wraps_transport_errors():
    sender = NotificationSender(BrokenTransport(), operator_address="ops@example.com")
    with pytest.raises(TransientDeliveryFailure) as exc_info:
        await sender.send_alert("ops@example.com", "s", "t")
    assert isinstance(exc_info.value.__cause__, aiosmtplib.SMTPRecipientsRefused)


@pytest.mark.asyncio
async def test_mock_transport_keeps_only_recent_messages():
    mock = MockTransport(max_sent=2)
    for n in range(3):
        await mock.send_email(f"user{n}@example.com", "s", "t")
    assert [m.receipt for m in mock.sent] == ["mock-2", "mock-3"]
