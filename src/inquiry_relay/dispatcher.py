# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Dual-channel dispatch of a freshly accepted submission.

Every submission produces a confirmation for the submitter and a
notification for the operator. Both are sent concurrently and judged
independently: a failed channel is queued for retry with the full payload
while the other channel is unaffected. Nothing here can fail the
submission itself.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

from .delivery_store import FailedDeliveryStore
from .logger import get_logger
from .models import Channel, DeliveryPayload
from .prometheus import RelayMetrics
from .security import mask_payload
from .sender import NotificationSender

logger = get_logger("DeliveryDispatcher")

CHANNELS = (Channel.CONFIRMATION, Channel.NOTIFICATION)


@dataclass
class DispatchOutcome:
    """Result of one dispatch. ``submission_accepted`` is always True."""

    submission_accepted: bool = True
    delivered: list[Channel] = field(default_factory=list)
    queued: list[Channel] = field(default_factory=list)
    unqueued: list[Channel] = field(default_factory=list)


class DeliveryDispatcher:
    def __init__(
        self,
        sender: NotificationSender,
        store: FailedDeliveryStore,
        metrics: RelayMetrics | None = None,
    ):
        self.sender = sender
        self.store = store
        self.metrics = metrics

    async def dispatch(self, data: dict[str, Any], form_type: str, locale: str) -> DispatchOutcome:
        """Send both channels and queue whichever failed.

        Args:
            data: Sanitized, unmasked submission fields.
            form_type: Form identifier, selects templates.
            locale: Language of the rendered messages.
        """
        payload = DeliveryPayload(data=data, form_type=form_type, locale=locale)
        results = await asyncio.gather(
            self.sender.send_confirmation(payload),
            self.sender.send_notification(payload),
            return_exceptions=True,
        )

        outcome = DispatchOutcome()
        for channel, result in zip(CHANNELS, results, strict=True):
            if isinstance(result, BaseException) and not isinstance(result, Exception):
                raise result
            if not isinstance(result, Exception):
                outcome.delivered.append(channel)
                self._count(channel, "sent")
                continue
            error = str(result) or type(result).__name__
            logger.error(
                "Failed to send %s for %s form: %s; payload=%s",
                channel.value,
                form_type,
                error,
                mask_payload(data),
            )
            try:
                await self.store.enqueue(channel, payload, error)
            except Exception as exc:
                logger.error("Could not queue failed %s delivery: %s", channel.value, exc)
                outcome.unqueued.append(channel)
                continue
            outcome.queued.append(channel)
            self._count(channel, "queued")
        return outcome

    def _count(self, channel: Channel, outcome: str) -> None:
        if self.metrics is not None:
            self.metrics.inc_delivery(channel.value, outcome)
