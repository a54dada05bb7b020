# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Duplicate attempts table manager: audit trail of rate-limited requests."""

from __future__ import annotations

from typing import Any

from ..sql import Integer, String, Table, Timestamp


class DuplicateAttemptsTable(Table):
    """Append-only log of requests rejected by the rate limiter."""

    name = "duplicate_attempts"
    indexes = (
        "CREATE INDEX IF NOT EXISTS idx_duplicate_attempts_hash ON duplicate_attempts(ip_hash)",
    )

    def configure(self) -> None:
        c = self.columns
        c.column("id", Integer, primary_key=True)
        c.column("ip_hash", String, nullable=False)
        c.column("attempted_at", Timestamp, default="CURRENT_TIMESTAMP")

    async def add(self, ip_hash: str) -> None:
        await self.execute(
            "INSERT INTO duplicate_attempts (ip_hash) VALUES (:ip_hash)",
            {"ip_hash": ip_hash},
        )

    async def list_for(self, ip_hash: str) -> list[dict[str, Any]]:
        return await self.fetch_all(
            """
            SELECT id, ip_hash, attempted_at FROM duplicate_attempts
            WHERE ip_hash = :ip_hash
            ORDER BY id ASC
            """,
            {"ip_hash": ip_hash},
        )

    async def purge_before(self, threshold: str) -> int:
        """Delete attempts recorded before ``threshold`` (UTC, ``YYYY-MM-DD HH:MM:SS``)."""
        return await self.execute(
            "DELETE FROM duplicate_attempts WHERE attempted_at < :threshold",
            {"threshold": threshold},
        )


__all__ = ["DuplicateAttemptsTable"]
