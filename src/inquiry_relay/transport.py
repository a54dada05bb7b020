# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Mail transports used by the notification sender.

Two implementations share the :class:`MailTransport` protocol:

- :class:`SmtpTransport` opens one SMTP session per message with aiosmtplib.
  Sessions are never shared, so concurrent sends need no locking.
- :class:`MockTransport` accepts every message without network I/O and keeps
  it in memory. It is selected with ``MOCK_EMAIL=true``.

TLS behavior based on port:
    - Port 465: Direct TLS (implicit TLS)
    - Any other port: STARTTLS when the server offers it
"""

from __future__ import annotations

import asyncio
import itertools
from collections import deque
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import make_msgid
from typing import Protocol

import aiosmtplib

from .config import RelayConfig
from .errors import ConfigurationError
from .logger import get_logger

logger = get_logger("MailTransport")

CONNECT_TIMEOUT = 10.0
MOCK_OUTBOX_SIZE = 1000


class MailTransport(Protocol):
    async def send_email(self, to: str, subject: str, text: str) -> str:
        """Send a plain-text message, return a receipt (the Message-ID)."""
        ...

    async def verify_connection(self) -> bool: ...


class SmtpTransport:
    """Send plain-text mail through a single SMTP server.

    The header ``From`` is ``smtp_from`` when configured, otherwise the
    authenticated user, which is always used as envelope sender.
    """

    def __init__(self, config: RelayConfig):
        if not config.smtp_host:
            raise ConfigurationError("SMTP_HOST is required unless MOCK_EMAIL is enabled")
        self.host = config.smtp_host
        self.port = config.smtp_port
        self.user = config.smtp_user
        self.password = config.smtp_password
        self.from_address = config.sender_address
        self.validate_certs = not config.smtp_tls_insecure

    def _client(self) -> aiosmtplib.SMTP:
        if self.port == 465:
            return aiosmtplib.SMTP(
                hostname=self.host,
                port=self.port,
                use_tls=True,
                start_tls=False,
                validate_certs=self.validate_certs,
                timeout=CONNECT_TIMEOUT,
            )
        # start_tls=None upgrades only when the server advertises STARTTLS
        return aiosmtplib.SMTP(
            hostname=self.host,
            port=self.port,
            use_tls=False,
            start_tls=None,
            validate_certs=self.validate_certs,
            timeout=CONNECT_TIMEOUT,
        )

    async def _open(self) -> aiosmtplib.SMTP:
        smtp = self._client()

        async def _do_connect():
            await smtp.connect()
            if self.user and self.password:
                await smtp.login(self.user, self.password)

        try:
            await asyncio.wait_for(_do_connect(), timeout=CONNECT_TIMEOUT + 5)
        except BaseException:
            smtp.close()
            raise
        return smtp

    def _build_message(self, to: str, subject: str, text: str) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = self.from_address or ""
        msg["To"] = to
        msg["Subject"] = subject
        msg["Message-ID"] = make_msgid()
        msg.set_content(text)
        return msg

    async def send_email(self, to: str, subject: str, text: str) -> str:
        msg = self._build_message(to, subject, text)
        envelope_sender = self.user or self.from_address
        smtp = await self._open()
        try:
            await smtp.send_message(msg, sender=envelope_sender)
        finally:
            try:
                await smtp.quit()
            except aiosmtplib.SMTPException:
                smtp.close()
        logger.debug("Message %s sent to %s", msg["Message-ID"], to)
        return str(msg["Message-ID"])

    async def verify_connection(self) -> bool:
        """Open a session and issue NOOP. Returns False on any SMTP or network error."""
        try:
            smtp = await self._open()
            try:
                await smtp.noop()
            finally:
                await smtp.quit()
        except (aiosmtplib.SMTPException, OSError, asyncio.TimeoutError) as exc:
            logger.warning("SMTP connection check failed for %s:%s: %s", self.host, self.port, exc)
            return False
        return True


@dataclass
class SentMessage:
    to: str
    subject: str
    text: str
    receipt: str


class MockTransport:
    """In-memory transport: every message is accepted and recorded in ``sent``.

    Only the last ``max_sent`` messages are kept.
    """

    def __init__(self, max_sent: int = MOCK_OUTBOX_SIZE) -> None:
        self.sent: deque[SentMessage] = deque(maxlen=max_sent)
        self._ids = itertools.count(1)

    async def send_email(self, to: str, subject: str, text: str) -> str:
        receipt = f"mock-{next(self._ids)}"
        self.sent.append(SentMessage(to=to, subject=subject, text=text, receipt=receipt))
        logger.info("Mock email %s accepted (subject=%r)", receipt, subject)
        return receipt

    async def verify_connection(self) -> bool:
        return True


def create_transport(config: RelayConfig) -> MailTransport:
    """Return the transport selected by the configuration."""
    if config.mock_email:
        logger.info("MOCK_EMAIL enabled, messages will not leave the process")
        return MockTransport()
    return SmtpTransport(config)
