# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Durable queue of deliveries that could not be sent.

Records move through a small state machine::

    pending --(retry fails, count < max)--> pending
    pending --(retry fails, count >= max)--> failed   (terminal)
    pending --(retry succeeds)-----------> sent       (terminal)

``retry_count`` only grows. Transitions are guarded on ``status = 'pending'``
so two overlapping sweeps can never move a terminal record again.
"""

from __future__ import annotations

import asyncio
from typing import Any

from .logger import get_logger
from .models import Channel, DeliveryPayload, DeliveryStatus, FailedDeliveryRecord, MarkFailedResult
from .relay_db import RelayDb

logger = get_logger("FailedDeliveryStore")


class FailedDeliveryStore:
    """Typed access to the ``failed_emails`` table.

    Every call is bounded by ``timeout`` seconds; storage errors propagate.
    """

    def __init__(self, db: RelayDb, timeout: float = 10.0):
        self.db = db
        self.timeout = timeout

    async def _bounded(self, coro):
        return await asyncio.wait_for(coro, timeout=self.timeout)

    async def enqueue(self, channel: Channel, payload: DeliveryPayload, error: str) -> int:
        """Queue a failed delivery with retry_count 0, return the record id."""
        record_id = await self._bounded(
            self.db.failed_emails.insert(Channel(channel).value, payload.model_dump(), error)
        )
        logger.info("Queued failed %s delivery as record %s", Channel(channel).value, record_id)
        return record_id

    async def fetch_pending(self, limit: int) -> list[FailedDeliveryRecord]:
        """Pending records, oldest first, at most ``limit``."""
        rows = await self._bounded(self.db.failed_emails.fetch_pending(limit))
        return [FailedDeliveryRecord.from_row(row) for row in rows]

    async def mark_sent(self, record_id: int) -> bool:
        """Retire a record as delivered. Returns False if it was not pending."""
        updated = await self._bounded(self.db.failed_emails.mark_sent(record_id))
        return bool(updated)

    async def mark_failed(self, record_id: int, error: str, max_retries: int) -> MarkFailedResult | None:
        """Count a failed retry; the record turns failed once the count reaches ``max_retries``.

        Returns None when the record is no longer pending.
        """
        row = await self._bounded(self.db.failed_emails.mark_failed(record_id, error, max_retries))
        if row is None:
            return None
        return MarkFailedResult(retry_count=row["retry_count"], status=row["status"])

    async def get(self, record_id: int) -> FailedDeliveryRecord | None:
        row = await self._bounded(self.db.failed_emails.get(record_id))
        return FailedDeliveryRecord.from_row(row) if row else None

    async def list_records(
        self, status: DeliveryStatus | None = None, limit: int = 100
    ) -> list[FailedDeliveryRecord]:
        value = DeliveryStatus(status).value if status is not None else None
        rows = await self._bounded(self.db.failed_emails.list_by_status(value, limit))
        return [FailedDeliveryRecord.from_row(row) for row in rows]

    async def count_by_status(self) -> dict[str, int]:
        counts: dict[str, Any] = await self._bounded(self.db.failed_emails.count_by_status())
        return {status.value: int(counts.get(status.value, 0)) for status in DeliveryStatus}

    async def purge_finished_before(self, threshold: str) -> int:
        return await self._bounded(self.db.failed_emails.purge_finished_before(threshold))
