# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Failed emails table manager: durable queue of deliveries awaiting retry."""

from __future__ import annotations

from typing import Any

from ..sql import Integer, Json, String, Table, Timestamp

_SELECT = """
    SELECT id, email_type, payload, error, retry_count, status, created_at, updated_at
    FROM failed_emails
"""


class FailedEmailsTable(Table):
    """Failed emails table: one row per delivery that could not be sent.

    Fields:
    - id: Autoincrement identifier
    - email_type: Channel, "confirmation" or "notification"
    - payload: JSON with data, form_type and locale needed to replay the send
    - error: Last error message
    - retry_count: Failed retry attempts so far
    - status: "pending", "sent" or "failed"
    """

    name = "failed_emails"
    indexes = (
        "CREATE INDEX IF NOT EXISTS idx_failed_emails_status ON failed_emails(status, created_at)",
    )

    def configure(self) -> None:
        c = self.columns
        c.column("id", Integer, primary_key=True)
        c.column("email_type", String, nullable=False)
        c.column("payload", Json, nullable=False)
        c.column("error", String)
        c.column("retry_count", Integer, nullable=False, default=0)
        c.column("status", String, nullable=False, default="'pending'")
        c.column("created_at", Timestamp, default="CURRENT_TIMESTAMP")
        c.column("updated_at", Timestamp, default="CURRENT_TIMESTAMP")

    async def insert(self, email_type: str, payload: dict[str, Any], error: str) -> int:
        """Insert a pending record, return its id."""
        values = self._encode_json_fields(
            {"email_type": email_type, "payload": payload, "error": error}
        )
        row = await self.execute_returning(
            """
            INSERT INTO failed_emails (email_type, payload, error, retry_count, status)
            VALUES (:email_type, :payload, :error, 0, 'pending')
            RETURNING id
            """,
            values,
        )
        return int(row["id"])  # type: ignore[index]

    async def fetch_pending(self, limit: int) -> list[dict[str, Any]]:
        """Pending records, oldest first."""
        return await self.fetch_all(
            _SELECT
            + """
            WHERE status = 'pending'
            ORDER BY created_at ASC, id ASC
            LIMIT :limit
            """,
            {"limit": limit},
        )

    async def get(self, record_id: int) -> dict[str, Any] | None:
        return await self.fetch_one(_SELECT + " WHERE id = :id", {"id": record_id})

    async def list_by_status(self, status: str | None, limit: int) -> list[dict[str, Any]]:
        if status is None:
            return await self.fetch_all(
                _SELECT + " ORDER BY created_at ASC, id ASC LIMIT :limit", {"limit": limit}
            )
        return await self.fetch_all(
            _SELECT + " WHERE status = :status ORDER BY created_at ASC, id ASC LIMIT :limit",
            {"status": status, "limit": limit},
        )

    async def mark_sent(self, record_id: int) -> int:
        return await self.execute(
            """
            UPDATE failed_emails
            SET status = 'sent', updated_at = CURRENT_TIMESTAMP
            WHERE id = :id AND status = 'pending'
            """,
            {"id": record_id},
        )

    async def mark_failed(
        self, record_id: int, error: str, max_retries: int
    ) -> dict[str, Any] | None:
        """Increment retry_count and store the error in a single statement.

        The record turns "failed" when the incremented count reaches
        ``max_retries``. Returns the new retry_count and status, or None if
        the record is not pending anymore.
        """
        return await self.execute_returning(
            """
            UPDATE failed_emails
            SET retry_count = retry_count + 1,
                error = :error,
                status = CASE WHEN retry_count + 1 >= :max_retries
                              THEN 'failed' ELSE 'pending' END,
                updated_at = CURRENT_TIMESTAMP
            WHERE id = :id AND status = 'pending'
            RETURNING retry_count, status
            """,
            {"id": record_id, "error": error, "max_retries": max_retries},
        )

    async def count_by_status(self) -> dict[str, int]:
        rows = await self.db.adapter.fetch_all(
            "SELECT status, COUNT(*) AS cnt FROM failed_emails GROUP BY status"
        )
        return {row["status"]: int(row["cnt"]) for row in rows}

    async def hourly_metrics(self, since: str) -> list[dict[str, Any]]:
        """Per-hour failures and their retry counts for records created since ``since``."""
        rows = await self.db.adapter.fetch_all(
            f"""
            SELECT {self.hour_bucket('created_at')} AS bucket,
                   COUNT(*) AS failures,
                   AVG(retry_count) AS avg_retry_count,
                   MAX(retry_count) AS max_retry_count,
                   SUM(retry_count) AS total_retries
            FROM failed_emails
            WHERE created_at >= :since
            GROUP BY bucket
            ORDER BY bucket
            """,
            {"since": since},
        )
        return [
            {
                "hour": f"{row['bucket']}:00:00",
                "count": int(row["failures"]),
                "avg_retry_count": float(row["avg_retry_count"] or 0),
                "max_retry_count": int(row["max_retry_count"] or 0),
                "total_retries": int(row["total_retries"] or 0),
            }
            for row in rows
        ]

    async def purge_finished_before(self, threshold: str) -> int:
        """Delete sent/failed records last updated before ``threshold``."""
        return await self.execute(
            """
            DELETE FROM failed_emails
            WHERE status IN ('sent', 'failed') AND updated_at < :threshold
            """,
            {"threshold": threshold},
        )


__all__ = ["FailedEmailsTable"]
