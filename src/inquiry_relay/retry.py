# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Retry sweep over the failed delivery queue.

A sweep takes the oldest pending records (up to ``batch_size``) and replays
each one on its original channel:

- success: the record is marked ``sent``;
- failure: ``retry_count`` is incremented; when it reaches ``max_retries``
  the record turns ``failed`` and one alert is sent to the operator.

Records are isolated from each other: an error while handling one of them
is logged and the sweep moves on. Records are replayed one at a time unless
``concurrency`` is greater than one.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from . import templates
from .delivery_store import FailedDeliveryStore
from .errors import PermanentDeliveryFailure, TransientDeliveryFailure
from .logger import get_logger
from .models import FailedDeliveryRecord
from .prometheus import RelayMetrics
from .sender import NotificationSender

logger = get_logger("RetryProcessor")


@dataclass
class SweepReport:
    """Counters of a single sweep."""

    fetched: int = 0
    sent: int = 0
    retried: int = 0
    failed: int = 0
    escalated: int = 0
    errors: int = 0
    skipped: int = 0

    def as_dict(self) -> dict[str, int]:
        return dict(self.__dict__)


class RetryProcessor:
    def __init__(
        self,
        store: FailedDeliveryStore,
        sender: NotificationSender,
        metrics: RelayMetrics | None = None,
        *,
        batch_size: int = 50,
        concurrency: int = 1,
    ):
        self.store = store
        self.sender = sender
        self.metrics = metrics
        self.batch_size = batch_size
        self.concurrency = max(1, concurrency)

    async def sweep(
        self,
        max_retries: int,
        operator_address: str,
        stop_event: asyncio.Event | None = None,
    ) -> SweepReport:
        """Replay pending deliveries once.

        Args:
            max_retries: Failed attempts after which a record is retired.
            operator_address: Recipient of escalation alerts.
            stop_event: When set, records not yet started are left pending.

        Raises:
            Exception: Only when the pending records cannot be fetched.
        """
        records = await self.store.fetch_pending(self.batch_size)
        report = SweepReport(fetched=len(records))
        if not records:
            logger.debug("No pending deliveries")
            return report

        logger.info("Retrying %d pending deliveries", len(records))
        if self.concurrency == 1:
            for index, record in enumerate(records):
                if stop_event is not None and stop_event.is_set():
                    report.skipped = len(records) - index
                    break
                await self._process_guarded(record, max_retries, operator_address, report)
        else:
            semaphore = asyncio.Semaphore(self.concurrency)

            async def worker(record: FailedDeliveryRecord) -> None:
                async with semaphore:
                    if stop_event is not None and stop_event.is_set():
                        report.skipped += 1
                        return
                    await self._process_guarded(record, max_retries, operator_address, report)

            await asyncio.gather(*(worker(record) for record in records))

        logger.info(
            "Sweep finished: sent=%d retried=%d failed=%d errors=%d skipped=%d",
            report.sent,
            report.retried,
            report.failed,
            report.errors,
            report.skipped,
        )
        return report

    async def _process_guarded(
        self,
        record: FailedDeliveryRecord,
        max_retries: int,
        operator_address: str,
        report: SweepReport,
    ) -> None:
        try:
            await self._process(record, max_retries, operator_address, report)
        except Exception:
            logger.exception("Error while retrying delivery %s", record.id)
            report.errors += 1

    async def _process(
        self,
        record: FailedDeliveryRecord,
        max_retries: int,
        operator_address: str,
        report: SweepReport,
    ) -> None:
        channel = record.channel.value
        try:
            await self.sender.send(record.channel, record.payload)
        except TransientDeliveryFailure as exc:
            await self._record_failure(record, exc.reason, max_retries, operator_address, report)
            return

        if not await self.store.mark_sent(record.id):
            logger.warning("Delivery %s was no longer pending when marked sent", record.id)
        report.sent += 1
        self._count(channel, "sent")
        logger.info("Delivery %s (%s) sent on retry", record.id, channel)

    async def _record_failure(
        self,
        record: FailedDeliveryRecord,
        error: str,
        max_retries: int,
        operator_address: str,
        report: SweepReport,
    ) -> None:
        channel = record.channel.value
        result = await self.store.mark_failed(record.id, error, max_retries)
        if result is None:
            logger.warning("Delivery %s was no longer pending, skipping", record.id)
            return
        if not result.exhausted:
            report.retried += 1
            self._count(channel, "retry")
            logger.warning(
                "Retry %d/%d of delivery %s (%s) failed: %s",
                result.retry_count,
                max_retries,
                record.id,
                channel,
                error,
            )
            return

        report.failed += 1
        self._count(channel, "failed")
        failure = PermanentDeliveryFailure(record.id, channel, result.retry_count, error)
        logger.error(str(failure))
        if await self._escalate(failure, operator_address):
            report.escalated += 1

    async def _escalate(self, failure: PermanentDeliveryFailure, operator_address: str) -> bool:
        try:
            await self.sender.send_alert(
                operator_address,
                templates.escalation_subject(failure.channel),
                templates.escalation_body(failure.record_id, failure.retry_count, failure.reason),
            )
        except TransientDeliveryFailure as exc:
            logger.error("Could not send escalation alert for delivery %s: %s", failure.record_id, exc)
            return False
        if self.metrics is not None:
            self.metrics.inc_escalation()
        return True

    def _count(self, channel: str, outcome: str) -> None:
        if self.metrics is not None:
            self.metrics.inc_retry(channel, outcome)
