# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Rate limit counters table manager."""

from __future__ import annotations

from typing import Any

from ..sql import BigInteger, Integer, String, Table


class RateLimitsTable(Table):
    """Rate limit counters: one fixed-window counter per hashed identity.

    Fields:
    - identifier: Hashed caller identity
    - count: Requests accepted in the current window
    - reset_time: Window end, epoch milliseconds
    """

    name = "rate_limits"

    def configure(self) -> None:
        c = self.columns
        c.column("identifier", String, primary_key=True)
        c.column("count", Integer, nullable=False, default=0)
        c.column("reset_time", BigInteger, nullable=False)

    async def hit(
        self, identifier: str, *, now_ms: int, window_ms: int, limit: int
    ) -> dict[str, Any] | None:
        """Count one request against the identifier's window.

        Opens a fresh window when none exists or the current one has ended,
        otherwise increments the counter while it is below ``limit``. The
        whole decision runs as one statement. Returns the updated counter, or
        None when the request exceeded the limit and nothing was written.
        """
        return await self.execute_returning(
            """
            INSERT INTO rate_limits (identifier, count, reset_time)
            VALUES (:identifier, 1, :reset_time)
            ON CONFLICT (identifier) DO UPDATE SET
                count = CASE WHEN :now_ms > rate_limits.reset_time
                             THEN 1 ELSE rate_limits.count + 1 END,
                reset_time = CASE WHEN :now_ms > rate_limits.reset_time
                                  THEN :reset_time ELSE rate_limits.reset_time END
            WHERE :now_ms > rate_limits.reset_time OR rate_limits.count < :limit
            RETURNING count, reset_time
            """,
            {
                "identifier": identifier,
                "reset_time": now_ms + window_ms,
                "now_ms": now_ms,
                "limit": limit,
            },
        )

    async def get(self, identifier: str) -> dict[str, Any] | None:
        return await self.fetch_one(
            "SELECT identifier, count, reset_time FROM rate_limits WHERE identifier = :identifier",
            {"identifier": identifier},
        )

    async def purge_expired(self, before_ms: int) -> int:
        """Delete counters whose window ended before ``before_ms``."""
        return await self.execute(
            "DELETE FROM rate_limits WHERE reset_time < :before_ms",
            {"before_ms": before_ms},
        )


__all__ = ["RateLimitsTable"]
