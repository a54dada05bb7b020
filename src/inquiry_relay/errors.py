# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Exceptions raised along the submission and delivery pipeline."""

from __future__ import annotations


class RelayError(RuntimeError):
    """Base class of every error raised by the relay."""

    code = "relay_error"


class ConfigurationError(RelayError):
    """Raised when a required setting is missing or invalid."""

    code = "configuration_error"


class AdmissionRejected(RelayError):
    """The caller exceeded its submission quota for the current window."""

    code = "rate_limited"

    def __init__(self, identity: str):
        super().__init__(f"Rate limit exceeded for {identity}")
        self.identity = identity


class PersistenceFailure(RelayError):
    """The submission could not be stored; nothing downstream can proceed."""

    code = "persistence_failure"


class TransientDeliveryFailure(RelayError):
    """A single send attempt failed. The message text is the underlying reason."""

    code = "delivery_failed"

    def __init__(self, channel: str, reason: str):
        super().__init__(reason)
        self.channel = channel
        self.reason = reason


class PermanentDeliveryFailure(RelayError):
    """A queued delivery exhausted its retry budget."""

    code = "delivery_exhausted"

    def __init__(self, record_id: int, channel: str, retry_count: int, reason: str):
        super().__init__(
            f"Email with ID {record_id} failed after {retry_count} attempts. Last error: {reason}"
        )
        self.record_id = record_id
        self.channel = channel
        self.retry_count = retry_count
        self.reason = reason
