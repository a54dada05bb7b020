# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Configuration of the inquiry relay.

Settings are read once at startup into a :class:`RelayConfig` that is passed
down to every component. Values come from an INI file, with environment
variables as fallbacks.

Example:
    Configuration file format (config.ini)::

        [storage]
        database_url = /data/inquiry_relay.db

        [smtp]
        host = smtp.example.com
        port = 587
        user = mailer@example.com
        password = secret
        from = noreply@example.com

        [delivery]
        admin_email = office@example.com
        max_retries = 3
        retry_batch_size = 50
        retry_concurrency = 1
        retry_interval_seconds = 300

        [rate_limit]
        count = 100
        window_ms = 60000

    Environment variables (used when the option is missing from the file):
      INQUIRY_RELAY_CONFIG - Path to config.ini (default: config.ini)
      DATABASE_URL, SMTP_HOST, SMTP_PORT, SMTP_USER, SMTP_PASS, SMTP_FROM,
      SMTP_TLS_INSECURE, MOCK_EMAIL, ADMIN_EMAIL, EMAIL_MAX_RETRIES,
      RETRY_BATCH_SIZE, RETRY_CONCURRENCY, RETRY_INTERVAL_SECONDS,
      SEND_TIMEOUT_SECONDS, STORAGE_TIMEOUT_SECONDS, RETENTION_DAYS, METRICS_WINDOW_HOURS,
      RATE_LIMIT_COUNT, RATE_LIMIT_WINDOW_MS, IP_SALT, ENVIRONMENT,
      API_TOKEN, HOST, PORT, LOG_LEVEL

    Loading::

        config = load_config()
        pipeline = SubmissionPipeline(config)
"""

from __future__ import annotations

import configparser
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from .errors import ConfigurationError
from .logger import get_logger

logger = get_logger("RelayConfig")

DEFAULT_ADMIN_EMAIL = "admin@gliwicka111.pl"


@dataclass
class RelayConfig:
    """Explicit settings for every component of the relay.

    Attributes:
        max_retries: Failed retry attempts after which a delivery is retired.
        admin_email: Operator address for notifications and escalation alerts.
        rate_limit_count: Submissions accepted per identity and window.
        rate_limit_window_ms: Fixed window length in milliseconds.
        retry_batch_size: Pending records fetched per sweep.
        retry_concurrency: Records replayed in parallel within a sweep.
        retry_interval_seconds: Period of the background sweep, 0 disables it.
        send_timeout: Seconds allowed for a single mail transport call.
        storage_timeout: Seconds allowed for a single storage call.
        retention_days: Age after which finished records are purged, 0 keeps them.
        metrics_window_hours: Hours covered by the windowed admin metrics.
        api_token: Secret for the operator endpoints, mandatory in production.
    """

    database_url: str = "/data/inquiry_relay.db"

    # Delivery
    max_retries: int = 3
    admin_email: str = DEFAULT_ADMIN_EMAIL
    retry_batch_size: int = 50
    retry_concurrency: int = 1
    retry_interval_seconds: float = 300.0
    send_timeout: float = 30.0
    storage_timeout: float = 10.0
    retention_days: int = 90
    metrics_window_hours: int = 24

    # Rate limiting
    rate_limit_count: int = 100
    rate_limit_window_ms: int = 60000

    # SMTP
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_user: str | None = None
    smtp_password: str | None = None
    smtp_from: str | None = None
    smtp_tls_insecure: bool = False
    mock_email: bool = False

    # Security
    ip_salt: str | None = None
    environment: str = "development"

    # Server
    api_token: str | None = None
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def sender_address(self) -> str | None:
        """Header From: SMTP_FROM when set, else the authenticated user."""
        return self.smtp_from or self.smtp_user

    def validate(self) -> RelayConfig:
        """Check bounds and production requirements, raising ConfigurationError on the first violation."""
        positive = {
            "max_retries": self.max_retries,
            "rate_limit_count": self.rate_limit_count,
            "rate_limit_window_ms": self.rate_limit_window_ms,
            "retry_batch_size": self.retry_batch_size,
            "retry_concurrency": self.retry_concurrency,
        }
        for name, value in positive.items():
            if value < 1:
                raise ConfigurationError(f"{name} must be >= 1, got {value}")
        if self.send_timeout <= 0 or self.storage_timeout <= 0:
            raise ConfigurationError("timeouts must be positive")
        if self.retry_interval_seconds < 0 or self.retention_days < 0:
            raise ConfigurationError("retry_interval_seconds and retention_days must be >= 0")
        if not self.admin_email:
            raise ConfigurationError("admin_email is required")
        if self.metrics_window_hours < 1:
            raise ConfigurationError(f"metrics_window_hours must be >= 1, got {self.metrics_window_hours}")
        if self.is_production and not self.api_token:
            raise ConfigurationError("API_TOKEN is required in production")
        return self


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = str(value).strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    logger.warning(f"Invalid boolean value {value!r}, using default {default}")
    return default


def load_config(
    config_path: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> RelayConfig:
    """Build a validated RelayConfig from an INI file and the environment.

    Args:
        config_path: INI file to read. Defaults to ``INQUIRY_RELAY_CONFIG``
            or ``config.ini``; a missing file is not an error.
        environ: Environment mapping, ``os.environ`` when omitted.

    Raises:
        ConfigurationError: If a value cannot be parsed or is out of range.
    """
    env = os.environ if environ is None else environ
    path = Path(config_path or env.get("INQUIRY_RELAY_CONFIG", "config.ini"))
    parser = configparser.ConfigParser()
    if path.exists():
        parser.read(path)
    elif config_path:
        raise ConfigurationError(f"Config file not found: {path}")

    def get(section: str, option: str, env_name: str) -> str | None:
        if parser.has_option(section, option):
            return parser.get(section, option).strip()
        value = env.get(env_name)
        return value if value not in (None, "") else None

    def get_int(section: str, option: str, env_name: str, default: int) -> int:
        value = get(section, option, env_name)
        if value is None:
            return default
        try:
            return int(value)
        except ValueError as e:
            raise ConfigurationError(f"{env_name} must be an integer, got {value!r}") from e

    def get_float(section: str, option: str, env_name: str, default: float) -> float:
        value = get(section, option, env_name)
        if value is None:
            return default
        try:
            return float(value)
        except ValueError as e:
            raise ConfigurationError(f"{env_name} must be a number, got {value!r}") from e

    defaults = RelayConfig()
    config = RelayConfig(
        database_url=get("storage", "database_url", "DATABASE_URL") or defaults.database_url,
        # Delivery
        max_retries=get_int("delivery", "max_retries", "EMAIL_MAX_RETRIES", defaults.max_retries),
        admin_email=get("delivery", "admin_email", "ADMIN_EMAIL") or defaults.admin_email,
        retry_batch_size=get_int("delivery", "retry_batch_size", "RETRY_BATCH_SIZE", defaults.retry_batch_size),
        retry_concurrency=get_int("delivery", "retry_concurrency", "RETRY_CONCURRENCY", defaults.retry_concurrency),
        retry_interval_seconds=get_float(
            "delivery", "retry_interval_seconds", "RETRY_INTERVAL_SECONDS", defaults.retry_interval_seconds
        ),
        send_timeout=get_float("delivery", "send_timeout_seconds", "SEND_TIMEOUT_SECONDS", defaults.send_timeout),
        storage_timeout=get_float(
            "delivery", "storage_timeout_seconds", "STORAGE_TIMEOUT_SECONDS", defaults.storage_timeout
        ),
        retention_days=get_int("delivery", "retention_days", "RETENTION_DAYS", defaults.retention_days),
        metrics_window_hours=get_int(
            "server", "metrics_window_hours", "METRICS_WINDOW_HOURS", defaults.metrics_window_hours
        ),
        # Rate limiting
        rate_limit_count=get_int("rate_limit", "count", "RATE_LIMIT_COUNT", defaults.rate_limit_count),
        rate_limit_window_ms=get_int("rate_limit", "window_ms", "RATE_LIMIT_WINDOW_MS", defaults.rate_limit_window_ms),
        # SMTP
        smtp_host=get("smtp", "host", "SMTP_HOST"),
        smtp_port=get_int("smtp", "port", "SMTP_PORT", defaults.smtp_port),
        smtp_user=get("smtp", "user", "SMTP_USER"),
        smtp_password=get("smtp", "password", "SMTP_PASS"),
        smtp_from=get("smtp", "from", "SMTP_FROM"),
        smtp_tls_insecure=_parse_bool(get("smtp", "tls_insecure", "SMTP_TLS_INSECURE"), False),
        mock_email=_parse_bool(get("smtp", "mock", "MOCK_EMAIL"), False),
        # Security
        ip_salt=get("security", "ip_salt", "IP_SALT"),
        environment=get("security", "environment", "ENVIRONMENT") or defaults.environment,
        # Server
        api_token=get("server", "api_token", "API_TOKEN"),
        host=get("server", "host", "HOST") or defaults.host,
        port=get_int("server", "port", "PORT", defaults.port),
        log_level=get("logging", "level", "LOG_LEVEL") or defaults.log_level,
    )
    return config.validate()
