# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Table managers for the inquiry relay database."""

from .duplicate_attempts import DuplicateAttemptsTable
from .failed_emails import FailedEmailsTable
from .form_submissions import FormSubmissionsTable
from .rate_limits import RateLimitsTable

__all__ = [
    "DuplicateAttemptsTable",
    "FailedEmailsTable",
    "FormSubmissionsTable",
    "RateLimitsTable",
]
