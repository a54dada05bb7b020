# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Pydantic models shared by the delivery pipeline.

Models:
    - Channel: Which of the two notifications a delivery belongs to
    - DeliveryStatus: Lifecycle state of a queued delivery
    - DeliveryPayload: Everything needed to replay a send
    - FailedDeliveryRecord: A row of the failed delivery queue
    - MarkFailedResult: Outcome of a failed retry attempt
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Channel(str, Enum):
    """Notification channels produced for every submission.

    Attributes:
        CONFIRMATION: Message addressed to the person who filled in the form.
        NOTIFICATION: Internal message addressed to the operator.
    """

    CONFIRMATION = "confirmation"
    NOTIFICATION = "notification"


class DeliveryStatus(str, Enum):
    """Status of a failed delivery record. SENT and FAILED are terminal."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class DeliveryPayload(BaseModel):
    """Unmasked submission data plus the context needed to render it again."""

    model_config = ConfigDict(extra="ignore")

    data: dict[str, Any]
    form_type: str
    locale: str = "pl"


class FailedDeliveryRecord(BaseModel):
    """A delivery waiting in, or retired from, the failed delivery queue."""

    id: int
    channel: Channel
    payload: DeliveryPayload
    last_error: str | None = None
    retry_count: Annotated[int, Field(ge=0)] = 0
    status: DeliveryStatus = DeliveryStatus.PENDING
    created_at: str | None = None
    updated_at: str | None = None

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def timestamp_as_text(cls, v: Any) -> str | None:
        """SQLite returns text, PostgreSQL returns datetime objects."""
        if isinstance(v, datetime):
            return v.isoformat(sep=" ")
        return v

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> FailedDeliveryRecord:
        return cls(
            id=row["id"],
            channel=row["email_type"],
            payload=row["payload"],
            last_error=row.get("error"),
            retry_count=row.get("retry_count") or 0,
            status=row.get("status") or DeliveryStatus.PENDING,
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )


class MarkFailedResult(BaseModel):
    """State of a record after a failed retry attempt."""

    retry_count: int
    status: DeliveryStatus

    @property
    def exhausted(self) -> bool:
        return self.status == DeliveryStatus.FAILED
