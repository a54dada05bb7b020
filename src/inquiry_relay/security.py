# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Identity hashing, submission sanitizing and PII masking."""

from __future__ import annotations

import hashlib
import re
import secrets
import time
from typing import Any

from .errors import ConfigurationError
from .logger import get_logger

logger = get_logger("Security")

REDACTED = "[REDACTED]"
DEFAULT_SALT = "default-salt"

# Compared case-insensitively
PII_FIELDS = frozenset(
    {
        "name",
        "firstname",
        "lastname",
        "fullname",
        "contactname",
        "email",
        "phone",
        "message",
        "comments",
        "additionalinfo",
    }
)

CONSENT_FIELDS = ("gdprConsent", "marketingConsent")

_SCRIPT_RE = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
_JS_SCHEME_RE = re.compile(r"javascript:", re.IGNORECASE)
_EVENT_HANDLER_RE = re.compile(r"on\w+\s*=", re.IGNORECASE)


def hash_identity(ip: str, salt: str | None, *, production: bool = False) -> str:
    """Return an opaque 16 hex chars identity for a client address.

    Raises:
        ConfigurationError: If no salt is configured in production.
    """
    if not salt:
        message = "IP_SALT environment variable is not set"
        if production:
            raise ConfigurationError(message)
        logger.warning(message)
    digest = hashlib.sha256((ip + (salt or DEFAULT_SALT)).encode("utf-8")).hexdigest()
    return digest[:16]


def sanitize_submission(data: dict[str, Any]) -> dict[str, Any]:
    """Drop consent flags and strip markup that could run in a mail client."""
    sanitized = {k: v for k, v in data.items() if k not in CONSENT_FIELDS}
    for key, value in sanitized.items():
        if isinstance(value, str):
            value = _SCRIPT_RE.sub("", value.strip())
            value = _JS_SCHEME_RE.sub("", value)
            sanitized[key] = _EVENT_HANDLER_RE.sub("", value)
    return sanitized


def mask_payload(data: dict[str, Any]) -> dict[str, Any]:
    """Copy of ``data`` safe for logs: personal fields replaced by a marker."""
    return {
        key: REDACTED if key.lower() in PII_FIELDS and value not in (None, "") else value
        for key, value in data.items()
    }


def generate_submission_id() -> str:
    return f"sub_{int(time.time() * 1000)}_{secrets.token_hex(5)[:9]}"
