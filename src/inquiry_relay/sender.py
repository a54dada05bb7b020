# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Render and send the messages produced by the relay.

:class:`NotificationSender` is the only component that talks to a
:class:`~inquiry_relay.transport.MailTransport`. Every send is bounded by the
configured timeout and any failure surfaces as
:class:`~inquiry_relay.errors.TransientDeliveryFailure`, so callers handle a
single exception type per channel.
"""

from __future__ import annotations

import asyncio

from . import templates
from .errors import TransientDeliveryFailure
from .logger import get_logger
from .models import Channel, DeliveryPayload
from .transport import MailTransport

logger = get_logger("NotificationSender")


class NotificationSender:
    """Send confirmation, operator notification and alert messages."""

    def __init__(self, transport: MailTransport, *, operator_address: str, send_timeout: float = 30.0):
        self.transport = transport
        self.operator_address = operator_address
        self.send_timeout = send_timeout

    async def _deliver(self, channel: str, to: str, subject: str, text: str) -> str:
        try:
            return await asyncio.wait_for(
                self.transport.send_email(to, subject, text), timeout=self.send_timeout
            )
        except asyncio.TimeoutError as exc:
            raise TransientDeliveryFailure(
                channel, f"Send timed out after {self.send_timeout}s"
            ) from exc
        except Exception as exc:
            raise TransientDeliveryFailure(channel, str(exc) or type(exc).__name__) from exc

    async def send_confirmation(self, payload: DeliveryPayload) -> str:
        to = payload.data.get("email")
        if not to:
            raise TransientDeliveryFailure(Channel.CONFIRMATION.value, "Submission has no email address")
        return await self._deliver(
            Channel.CONFIRMATION.value,
            to,
            templates.confirmation_subject(payload.form_type, payload.locale),
            templates.confirmation_body(payload.data, payload.form_type, payload.locale),
        )

    async def send_notification(self, payload: DeliveryPayload) -> str:
        return await self._deliver(
            Channel.NOTIFICATION.value,
            self.operator_address,
            templates.notification_subject(payload.form_type, payload.locale),
            templates.notification_body(payload.data, payload.form_type, payload.locale),
        )

    async def send(self, channel: Channel, payload: DeliveryPayload) -> str:
        if Channel(channel) is Channel.CONFIRMATION:
            return await self.send_confirmation(payload)
        return await self.send_notification(payload)

    async def send_alert(self, to: str, subject: str, text: str) -> str:
        return await self._deliver("alert", to, subject, text)

    async def verify_connection(self) -> bool:
        try:
            return await asyncio.wait_for(self.transport.verify_connection(), timeout=self.send_timeout)
        except asyncio.TimeoutError:
            logger.warning("SMTP connection check timed out after %ss", self.send_timeout)
            return False
