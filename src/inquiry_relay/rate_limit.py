# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Fixed-window rate limiter keyed by hashed caller identity.

Each identity owns one counter row in ``rate_limits``. A request opens a new
window when none exists or the previous one has ended (``now > reset_time``),
otherwise it is counted while the counter is below the limit. Rejected
requests are appended to ``duplicate_attempts``.

The check and the increment run as one SQL statement, so concurrent requests
for the same identity can never push the counter past the limit.

Example:
    Using the rate limiter::

        limiter = RateLimiter(db, timeout=10.0)
        try:
            await limiter.check(identity, limit=100, window_ms=60000)
        except AdmissionRejected:
            ...  # answer 429
"""

from __future__ import annotations

import asyncio
import time

from .errors import AdmissionRejected
from .logger import get_logger
from .relay_db import RelayDb

logger = get_logger("RateLimiter")


class RateLimiter:
    """Admission control over the ``rate_limits`` table.

    Storage errors never block a caller: they are logged and the request is
    admitted.

    Attributes:
        db: Database handle owning the rate limit tables.
        timeout: Seconds allowed for each storage call.
    """

    def __init__(self, db: RelayDb, timeout: float = 10.0):
        self.db = db
        self.timeout = timeout

    async def allow(self, identity: str, limit: int, window_ms: int) -> bool:
        """Count one request for ``identity`` and tell whether it is admitted.

        Args:
            identity: Opaque hashed caller identity.
            limit: Maximum requests accepted per window.
            window_ms: Window length in milliseconds.

        Returns:
            True when admitted, False when the identity exhausted its quota
            for the current window.
        """
        now_ms = int(time.time() * 1000)
        try:
            counter = await asyncio.wait_for(
                self.db.rate_limits.hit(identity, now_ms=now_ms, window_ms=window_ms, limit=limit),
                timeout=self.timeout,
            )
        except Exception as exc:
            logger.error("Rate limit check failed for %s, admitting request: %s", identity, exc)
            return True

        if counter is not None:
            return True

        logger.warning("Rate limit exceeded for %s (limit=%s, window=%sms)", identity, limit, window_ms)
        try:
            await asyncio.wait_for(self.db.duplicate_attempts.add(identity), timeout=self.timeout)
        except Exception as exc:
            logger.error("Could not record duplicate attempt for %s: %s", identity, exc)
        return False

    async def count_duplicate_attempts(self) -> int:
        return await asyncio.wait_for(self.db.duplicate_attempts.count(), timeout=self.timeout)

    async def check(self, identity: str, limit: int, window_ms: int) -> None:
        """Like :meth:`allow`, raising :class:`AdmissionRejected` on rejection."""
        if not await self.allow(identity, limit, window_ms):
            raise AdmissionRejected(identity)
