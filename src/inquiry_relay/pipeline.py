# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Submission pipeline: admission, persistence, dispatch and retries.

:class:`SubmissionPipeline` wires every component from one
:class:`~inquiry_relay.config.RelayConfig` and exposes the two public
operations of the relay:

- :meth:`SubmissionPipeline.submit` admits a validated form submission,
  stores it and dispatches both notifications;
- :meth:`SubmissionPipeline.process_failed_deliveries` runs one retry sweep.

It also owns the optional background loop that sweeps every
``retry_interval_seconds``, plus health, statistics and retention helpers
used by the HTTP API and the CLI.

Example:
    Running the pipeline inside an application::

        pipeline = SubmissionPipeline(load_config())
        await pipeline.start()
        result = await pipeline.submit(data, "coworking", "en", client_ip="203.0.113.7")
        await pipeline.stop()
"""

from __future__ import annotations

import asyncio
import math
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from . import templates
from .config import RelayConfig
from .delivery_store import FailedDeliveryStore
from .dispatcher import DeliveryDispatcher
from .errors import AdmissionRejected, ConfigurationError, PersistenceFailure
from .logger import get_logger
from .prometheus import RelayMetrics
from .rate_limit import RateLimiter
from .relay_db import RelayDb
from .retry import RetryProcessor, SweepReport
from .security import DEFAULT_SALT, generate_submission_id, hash_identity, sanitize_submission
from .sender import NotificationSender
from .transport import MailTransport, create_transport

TEST_EMAIL_SUBJECT = "Test email - Gliwicka 111"
TEST_EMAIL_BODY = "This is a test message sent by the inquiry relay to verify the SMTP configuration."


@dataclass
class SubmissionResult:
    """What the caller of :meth:`SubmissionPipeline.submit` gets back."""

    success: bool
    message: str
    status_code: int = 200
    submission_id: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {"success": self.success, "message": self.message}


class SubmissionPipeline:
    """Orchestrates the relay components.

    Args:
        config: Validated relay configuration.
        db: Database handle, built from ``config.database_url`` when omitted.
        transport: Mail transport, chosen by :func:`create_transport` when omitted.
        metrics: Prometheus metrics, a private registry when omitted.

    Raises:
        ConfigurationError: If running in production without ``IP_SALT``.
    """

    def __init__(
        self,
        config: RelayConfig,
        *,
        db: RelayDb | None = None,
        transport: MailTransport | None = None,
        metrics: RelayMetrics | None = None,
    ):
        if config.is_production and not config.ip_salt:
            raise ConfigurationError("IP_SALT environment variable is required in production")
        self.config = config
        self.logger = get_logger("SubmissionPipeline")
        if not config.ip_salt:
            self.logger.warning("IP_SALT environment variable is not set, using the default salt")
        self._ip_salt = config.ip_salt or DEFAULT_SALT
        self.db = db or RelayDb(config.database_url)
        self.metrics = metrics or RelayMetrics()
        self.transport = transport or create_transport(config)

        self.sender = NotificationSender(
            self.transport,
            operator_address=config.admin_email,
            send_timeout=config.send_timeout,
        )
        self.limiter = RateLimiter(self.db, timeout=config.storage_timeout)
        self.store = FailedDeliveryStore(self.db, timeout=config.storage_timeout)
        self.dispatcher = DeliveryDispatcher(self.sender, self.store, self.metrics)
        self.retry = RetryProcessor(
            self.store,
            self.sender,
            self.metrics,
            batch_size=config.retry_batch_size,
            concurrency=config.retry_concurrency,
        )

        self._initialized = False
        self._stop = asyncio.Event()
        self._wake_event = asyncio.Event()
        self._task_retry: asyncio.Task | None = None

    async def init(self) -> None:
        """Create the schema once."""
        if self._initialized:
            return
        await self.db.init_db()
        self._initialized = True

    # ------------------------------------------------------------------ submit
    async def submit(
        self,
        data: dict[str, Any],
        form_type: str,
        locale: str | None = None,
        *,
        client_ip: str | None = None,
        identity: str | None = None,
        session_id: str | None = None,
        analytics_consent: bool = False,
    ) -> SubmissionResult:
        """Admit, store and dispatch one validated submission.

        Args:
            data: Validated form fields.
            form_type: Form identifier (``coworking``, ``meeting-room``...).
            locale: ``pl`` or ``en``; anything else falls back to ``pl``.
            client_ip: Caller address, hashed into the rate limit identity.
            identity: Already hashed identity, takes precedence over ``client_ip``.
            session_id: Analytics session supplied by the client.
            analytics_consent: Whether the client consented to analytics.

        Returns:
            Success once the submission is stored, whatever happened to the
            notifications. 429 when rate limited, 500 when it could not be stored.
        """
        started = time.monotonic()
        locale = templates.normalize_locale(locale)
        if identity is None:
            identity = hash_identity(
                client_ip or "unknown", self._ip_salt, production=self.config.is_production
            )

        try:
            await self.limiter.check(
                identity, self.config.rate_limit_count, self.config.rate_limit_window_ms
            )
        except AdmissionRejected:
            self.metrics.inc_rate_limited()
            return SubmissionResult(False, templates.result_message("rate_limited", locale), 429)

        clean = sanitize_submission(data)
        try:
            submission_id = await self._persist(
                clean, form_type, locale, identity, session_id, analytics_consent
            )
        except PersistenceFailure as exc:
            self.logger.error("Submission for %s form rejected: %s", form_type, exc)
            return SubmissionResult(False, templates.result_message("server_error", locale), 500)
        self.metrics.inc_submission(form_type)

        mail_started = time.monotonic()
        try:
            outcome = await self.dispatcher.dispatch(clean, form_type, locale)
        except Exception:
            self.logger.exception("Dispatch of submission %s failed", submission_id)
            dispatch_status = "dispatch_error"
        else:
            dispatch_status = "queued" if outcome.queued or outcome.unqueued else "dispatched"
            self.logger.info(
                "Submission %s (%s) accepted: delivered=%s queued=%s",
                submission_id,
                form_type,
                [c.value for c in outcome.delivered],
                [c.value for c in outcome.queued],
            )
        finished = time.monotonic()

        try:
            await asyncio.wait_for(
                self.db.submissions.record_timings(
                    submission_id,
                    processing_time_ms=int((finished - started) * 1000),
                    email_latency_ms=int((finished - mail_started) * 1000),
                    status=dispatch_status,
                ),
                timeout=self.config.storage_timeout,
            )
        except Exception as exc:
            self.logger.warning("Could not record timings of submission %s: %s", submission_id, exc)

        return SubmissionResult(
            True, templates.result_message("success", locale), 200, submission_id
        )

    async def _persist(
        self,
        data: dict[str, Any],
        form_type: str,
        locale: str,
        identity: str,
        session_id: str | None,
        analytics_consent: bool,
    ) -> str:
        submission_id = generate_submission_id()
        record = {
            "id": submission_id,
            "form_type": form_type,
            "locale": locale,
            "payload": data,
            "ip_hash": identity,
            "session_id": session_id,
            "analytics_consent": analytics_consent,
        }
        try:
            await asyncio.wait_for(
                self.db.submissions.insert(record), timeout=self.config.storage_timeout
            )
        except Exception as exc:
            raise PersistenceFailure(f"Could not store submission: {exc}") from exc
        return submission_id

    # ------------------------------------------------------------------ retries
    async def process_failed_deliveries(self) -> SweepReport:
        """Run one retry sweep with the configured bound and operator address."""
        report = await self.retry.sweep(
            self.config.max_retries, self.config.admin_email, stop_event=self._stop
        )
        await self._refresh_pending_gauge()
        return report

    async def _refresh_pending_gauge(self) -> None:
        try:
            counts = await self.store.count_by_status()
        except Exception as exc:
            self.logger.warning("Could not refresh pending deliveries gauge: %s", exc)
            return
        self.metrics.set_pending(counts["pending"])

    async def apply_retention(self) -> dict[str, int]:
        """Purge finished deliveries, old duplicate attempts and ended rate limit windows."""
        if self.config.retention_days <= 0:
            return {}
        threshold = datetime.now(timezone.utc) - timedelta(days=self.config.retention_days)
        threshold_str = threshold.strftime("%Y-%m-%d %H:%M:%S")
        now_ms = int(time.time() * 1000)
        timeout = self.config.storage_timeout
        removed = {
            "failed_deliveries": await self.store.purge_finished_before(threshold_str),
            "duplicate_attempts": await asyncio.wait_for(
                self.db.duplicate_attempts.purge_before(threshold_str), timeout=timeout
            ),
            "rate_limits": await asyncio.wait_for(
                self.db.rate_limits.purge_expired(now_ms), timeout=timeout
            ),
        }
        if any(removed.values()):
            self.logger.info("Retention purge removed %s", removed)
        return removed

    # --------------------------------------------------------------- lifecycle
    async def start(self) -> None:
        """Initialize storage and start the background retry loop."""
        await self.init()
        self._stop.clear()
        if self.config.retry_interval_seconds > 0:
            self._task_retry = asyncio.create_task(self._retry_loop(), name="retry-loop")
        else:
            self.logger.info("Background retry loop disabled")

    async def stop(self) -> None:
        """Stop the retry loop after the record in progress and release storage."""
        self._stop.set()
        self._wake_event.set()
        if self._task_retry is not None:
            await asyncio.gather(self._task_retry, return_exceptions=True)
            self._task_retry = None
        await self.db.close()
        self._initialized = False

    def run_now(self) -> None:
        """Wake the retry loop for an immediate sweep."""
        self._wake_event.set()

    async def _retry_loop(self) -> None:
        while not self._stop.is_set():
            try:
                await self.process_failed_deliveries()
                await self.apply_retention()
            except Exception as exc:
                self.logger.exception("Unhandled error in retry loop: %s", exc)
            await self._wait_for_wakeup(self.config.retry_interval_seconds)

    async def _wait_for_wakeup(self, timeout: float) -> None:
        if self._stop.is_set():
            return
        if math.isinf(timeout):
            await self._wake_event.wait()
        else:
            try:
                await asyncio.wait_for(self._wake_event.wait(), timeout=max(0.0, timeout))
            except asyncio.TimeoutError:
                return
        self._wake_event.clear()

    # ------------------------------------------------------------------- admin
    async def health(self) -> dict[str, Any]:
        """Check database and SMTP; ``degraded`` when only mail is down."""
        try:
            database = await asyncio.wait_for(self.db.ping(), timeout=self.config.storage_timeout)
        except Exception as exc:
            self.logger.warning("Database health check failed: %s", exc)
            database = False
        smtp = await self.sender.verify_connection()
        if not database:
            status = "unhealthy"
        elif not smtp:
            status = "degraded"
        else:
            status = "healthy"
        return {
            "status": status,
            "checks": {"database": database, "smtp": smtp},
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    async def stats(self) -> dict[str, Any]:
        """All-time submission averages, queue counters and the windowed metrics."""
        timeout = self.config.storage_timeout
        submissions = await asyncio.wait_for(self.db.submissions.metrics(), timeout=timeout)
        return {
            "submissions": submissions,
            "duplicate_attempts": await self.limiter.count_duplicate_attempts(),
            "failed_deliveries": await self.store.count_by_status(),
            "window": await self.window_metrics(),
        }

    async def window_metrics(self) -> dict[str, Any]:
        """Hourly submission and failure metrics over the last ``metrics_window_hours``.

        Averages are taken over the hourly averages, peaks over the hourly
        maxima. ``error_rate`` is the share of submissions whose notifications
        did not all go out on the first attempt; ``retry_rate`` is the number
        of retries per failed delivery.
        """
        hours = self.config.metrics_window_hours
        since = (datetime.now(timezone.utc) - timedelta(hours=hours)).strftime("%Y-%m-%d %H:%M:%S")
        timeout = self.config.storage_timeout
        submissions, failures = await asyncio.gather(
            asyncio.wait_for(self.db.submissions.hourly_metrics(since), timeout=timeout),
            asyncio.wait_for(self.db.failed_emails.hourly_metrics(since), timeout=timeout),
        )

        total_submissions = sum(h["count"] for h in submissions)
        total_failures = sum(h["count"] for h in failures)
        return {
            "window_hours": hours,
            "submissions": {
                "average_processing_time_ms": _mean(h["avg_processing_time_ms"] for h in submissions),
                "peak_processing_time_ms": _peak(h["max_processing_time_ms"] for h in submissions),
                "average_email_latency_ms": _mean(h["avg_email_latency_ms"] for h in submissions),
                "peak_email_latency_ms": _peak(h["max_email_latency_ms"] for h in submissions),
                "hourly_volume": [{"hour": h["hour"], "count": h["count"]} for h in submissions],
                "error_rate": (
                    sum(h["errors"] for h in submissions) / total_submissions if total_submissions else 0.0
                ),
            },
            "failed_deliveries": {
                "average_retry_count": _mean(h["avg_retry_count"] for h in failures),
                "peak_retry_count": int(_peak(h["max_retry_count"] for h in failures)),
                "hourly_volume": [{"hour": h["hour"], "count": h["count"]} for h in failures],
                "retry_rate": (
                    sum(h["total_retries"] for h in failures) / total_failures if total_failures else 0.0
                ),
            },
        }

    async def verify_smtp(self) -> bool:
        return await self.sender.verify_connection()

    async def send_test_email(self, to: str) -> str:
        """Send a test message, raising TransientDeliveryFailure on error."""
        return await self.sender.send_alert(to, TEST_EMAIL_SUBJECT, TEST_EMAIL_BODY)


def _mean(values) -> float:
    present = [v for v in values if v is not None]
    return sum(present) / len(present) if present else 0.0


def _peak(values) -> float:
    return max((v for v in values if v is not None), default=0.0)
