# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Prometheus metrics for monitoring the inquiry relay.

All metrics use the ``ir_`` prefix (inquiry relay).

Metrics exposed:
    - ``ir_submissions_total``: Accepted submissions per known form type,
      everything else under ``other``.
    - ``ir_rate_limited_total``: Submissions rejected by the rate limiter.
    - ``ir_deliveries_total``: First delivery attempts per channel and outcome
      (``sent`` or ``queued``).
    - ``ir_retries_total``: Retry attempts per channel and outcome (``sent``,
      ``retry`` or ``failed``).
    - ``ir_escalations_total``: Alerts sent to the operator.
    - ``ir_failed_deliveries_pending``: Records waiting in the retry queue.

Example:
    Accessing metrics via the REST API::

        GET /metrics
"""

from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest

from .templates import SERVICE_NAMES


class RelayMetrics:
    """Prometheus metrics collector for the relay.

    Attributes:
        registry: The Prometheus CollectorRegistry holding all metrics.
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """Initialize metrics with an optional custom registry.

        Args:
            registry: Optional Prometheus CollectorRegistry. A private one is
                created when omitted, so several relays can coexist in tests.
        """
        self.registry = registry or CollectorRegistry()
        self.submissions = Counter(
            "ir_submissions_total",
            "Accepted form submissions",
            ["form_type"],
            registry=self.registry,
        )
        self.rate_limited = Counter(
            "ir_rate_limited_total",
            "Submissions rejected by the rate limiter",
            registry=self.registry,
        )
        self.deliveries = Counter(
            "ir_deliveries_total",
            "First delivery attempts",
            ["channel", "outcome"],
            registry=self.registry,
        )
        self.retries = Counter(
            "ir_retries_total",
            "Retry attempts of queued deliveries",
            ["channel", "outcome"],
            registry=self.registry,
        )
        self.escalations = Counter(
            "ir_escalations_total",
            "Operator alerts for exhausted deliveries",
            registry=self.registry,
        )
        self.pending = Gauge(
            "ir_failed_deliveries_pending",
            "Failed deliveries waiting for retry",
            registry=self.registry,
        )

    def inc_submission(self, form_type: str) -> None:
        # Unknown form types share one series
        label = form_type if form_type in SERVICE_NAMES else "other"
        self.submissions.labels(form_type=label).inc()

    def inc_rate_limited(self) -> None:
        self.rate_limited.inc()

    def inc_delivery(self, channel: str, outcome: str) -> None:
        self.deliveries.labels(channel=channel, outcome=outcome).inc()

    def inc_retry(self, channel: str, outcome: str) -> None:
        self.retries.labels(channel=channel, outcome=outcome).inc()

    def inc_escalation(self) -> None:
        self.escalations.inc()

    def set_pending(self, value: int) -> None:
        self.pending.set(value)

    def generate_latest(self) -> bytes:
        """Export all metrics in Prometheus text exposition format."""
        return generate_latest(self.registry)
