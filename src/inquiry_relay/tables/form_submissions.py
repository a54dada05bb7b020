# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Form submissions table manager."""

from __future__ import annotations

from typing import Any

from ..sql import Integer, Json, String, Table, Timestamp


class FormSubmissionsTable(Table):
    """Accepted form submissions.

    Fields:
    - id: Submission identifier (``sub_<epoch ms>_<random>``)
    - form_type / locale: Which form and in which language it was filled in
    - payload: JSON with the sanitized form data
    - ip_hash: Hashed caller identity used by the rate limiter
    - session_id / analytics_consent: Supplied by the analytics collector
    - status: "received", then "dispatched" when both notifications went out,
      "queued" when one was left for retry, "dispatch_error" when dispatch broke
    - processing_time_ms: Time from admission to the end of dispatch
    - email_latency_ms: Time spent dispatching both notifications
    """

    name = "form_submissions"
    indexes = (
        "CREATE INDEX IF NOT EXISTS idx_form_submissions_type ON form_submissions(form_type)",
    )

    def configure(self) -> None:
        c = self.columns
        c.column("id", String, primary_key=True)
        c.column("form_type", String, nullable=False)
        c.column("locale", String, nullable=False)
        c.column("payload", Json, nullable=False)
        c.column("ip_hash", String)
        c.column("session_id", String)
        c.column("analytics_consent", Integer, nullable=False, default=0)
        c.column("status", String, nullable=False, default="'received'")
        c.column("processing_time_ms", Integer)
        c.column("email_latency_ms", Integer)
        c.column("created_at", Timestamp, default="CURRENT_TIMESTAMP")

    async def insert(self, record: dict[str, Any]) -> None:
        values = self._encode_json_fields(record)
        values["analytics_consent"] = 1 if record.get("analytics_consent") else 0
        await self.execute(
            """
            INSERT INTO form_submissions
                (id, form_type, locale, payload, ip_hash, session_id, analytics_consent)
            VALUES
                (:id, :form_type, :locale, :payload, :ip_hash, :session_id, :analytics_consent)
            """,
            {
                "id": values["id"],
                "form_type": values["form_type"],
                "locale": values["locale"],
                "payload": values["payload"],
                "ip_hash": values.get("ip_hash"),
                "session_id": values.get("session_id"),
                "analytics_consent": values["analytics_consent"],
            },
        )

    async def get(self, submission_id: str) -> dict[str, Any] | None:
        row = await self.fetch_one(
            "SELECT * FROM form_submissions WHERE id = :id", {"id": submission_id}
        )
        if row is not None:
            row["analytics_consent"] = bool(row.get("analytics_consent"))
        return row

    async def record_timings(
        self,
        submission_id: str,
        *,
        processing_time_ms: int,
        email_latency_ms: int,
        status: str = "dispatched",
    ) -> None:
        await self.execute(
            """
            UPDATE form_submissions
            SET processing_time_ms = :processing_time_ms,
                email_latency_ms = :email_latency_ms,
                status = :status
            WHERE id = :id
            """,
            {
                "id": submission_id,
                "processing_time_ms": processing_time_ms,
                "email_latency_ms": email_latency_ms,
                "status": status,
            },
        )

    async def metrics(self) -> dict[str, Any]:
        """Average processing time and mail latency over all submissions."""
        row = await self.db.adapter.fetch_one(
            """
            SELECT AVG(processing_time_ms) AS avg_processing_time_ms,
                   AVG(email_latency_ms) AS avg_email_latency_ms,
                   COUNT(*) AS total
            FROM form_submissions
            """
        )
        row = row or {}
        return {
            "avg_processing_time_ms": _as_float(row.get("avg_processing_time_ms")),
            "avg_email_latency_ms": _as_float(row.get("avg_email_latency_ms")),
            "total": int(row.get("total") or 0),
        }

    async def hourly_metrics(self, since: str) -> list[dict[str, Any]]:
        """Per-hour volume, timings and errors of submissions created since ``since``.

        A submission counts as an error unless both notifications went out on
        the first attempt.
        """
        rows = await self.db.adapter.fetch_all(
            f"""
            SELECT {self.hour_bucket('created_at')} AS bucket,
                   COUNT(*) AS submissions,
                   AVG(processing_time_ms) AS avg_processing_time_ms,
                   MAX(processing_time_ms) AS max_processing_time_ms,
                   AVG(email_latency_ms) AS avg_email_latency_ms,
                   MAX(email_latency_ms) AS max_email_latency_ms,
                   SUM(CASE WHEN status = 'dispatched' THEN 0 ELSE 1 END) AS errors
            FROM form_submissions
            WHERE created_at >= :since
            GROUP BY bucket
            ORDER BY bucket
            """,
            {"since": since},
        )
        return [
            {
                "hour": f"{row['bucket']}:00:00",
                "count": int(row["submissions"]),
                "avg_processing_time_ms": _as_float(row["avg_processing_time_ms"]),
                "max_processing_time_ms": _as_float(row["max_processing_time_ms"]),
                "avg_email_latency_ms": _as_float(row["avg_email_latency_ms"]),
                "max_email_latency_ms": _as_float(row["max_email_latency_ms"]),
                "errors": int(row["errors"] or 0),
            }
            for row in rows
        ]


def _as_float(value: Any) -> float | None:
    return float(value) if value is not None else None


__all__ = ["FormSubmissionsTable"]
