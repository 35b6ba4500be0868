"""Metrics collector: Prometheus counters, gauges, histograms.

Exposed series:
- ``webhook_relay_dispatched_total`` counter (event_type)
- ``webhook_relay_deliveries_total`` counter (outcome)
- ``webhook_relay_delivery_duration_seconds`` histogram
- ``webhook_relay_queue_depth`` gauge (status)
- ``webhook_relay_secret_rotations_total`` counter (kind)
- ``webhook_relay_cron_histogram`` / ``webhook_relay_cron_last_execution_gauge``
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import TYPE_CHECKING

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping

_PREFIX = "webhook_relay"

# Seconds; the last bucket covers the hard request timeout
_DELIVERY_BUCKETS = (0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)


class MetricsCollector:
    """Low-level Prometheus collector that owns the registry.

    Use :class:`WebhookMetrics` for the high-level tracking interface.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self._registry = registry or CollectorRegistry()

    @property
    def registry(self) -> CollectorRegistry:
        """Return the underlying Prometheus registry."""
        return self._registry

    def gauge(self, name: str, doc: str, labels: tuple[str, ...] = ()) -> Gauge:
        """Register and return a Gauge."""
        return Gauge(name, doc, labels, registry=self._registry)

    def histogram(
        self,
        name: str,
        doc: str,
        labels: tuple[str, ...] = (),
        buckets: tuple[float, ...] = Histogram.DEFAULT_BUCKETS,
    ) -> Histogram:
        """Register and return a Histogram."""
        return Histogram(name, doc, labels, registry=self._registry, buckets=buckets)

    def counter(self, name: str, doc: str, labels: tuple[str, ...] = ()) -> Counter:
        """Register and return a Counter."""
        return Counter(name, doc, labels, registry=self._registry)


class WebhookMetrics:
    """High-level relay metrics used by the dispatcher, worker and cron jobs."""

    def __init__(self, collector: MetricsCollector | None = None) -> None:
        self._collector = collector or MetricsCollector()

        self._dispatched = self._collector.counter(
            f"{_PREFIX}_dispatched",
            "Delivery attempts enqueued by the dispatcher",
            ("event_type",),
        )
        self._deliveries = self._collector.counter(
            f"{_PREFIX}_deliveries",
            "Completed HTTP delivery attempts by outcome",
            ("outcome",),
        )
        self._delivery_duration = self._collector.histogram(
            f"{_PREFIX}_delivery_duration_seconds",
            "Duration of outbound webhook HTTP calls",
            buckets=_DELIVERY_BUCKETS,
        )
        self._queue_depth = self._collector.gauge(
            f"{_PREFIX}_queue_depth",
            "Delivery attempts per status",
            ("status",),
        )
        self._rotations = self._collector.counter(
            f"{_PREFIX}_secret_rotations",
            "Secret rotations and revocations",
            ("kind",),
        )

        # Cron metrics
        self._cron_histogram = self._collector.histogram(
            f"{_PREFIX}_cron_histogram",
            "Duration of cron job executions",
            ("job_name",),
        )
        self._cron_last = self._collector.gauge(
            f"{_PREFIX}_cron_last_execution_gauge",
            "Timestamp of last cron execution",
            ("job_name",),
        )

    @property
    def registry(self) -> CollectorRegistry:
        """Return the underlying Prometheus registry."""
        return self._collector.registry

    # -- Counters --

    def inc_dispatched(self, event_type: str, count: int = 1) -> None:
        """Count attempts enqueued for *event_type*."""
        if count:
            self._dispatched.labels(event_type=event_type).inc(count)

    def inc_delivery(self, outcome: str) -> None:
        """Count one completed attempt (``delivered``, ``retry``, ``dead_lettered``...)."""
        self._deliveries.labels(outcome=outcome).inc()

    def inc_rotation(self, kind: str) -> None:
        """Count a secret ``rotated`` or ``revoked`` event."""
        self._rotations.labels(kind=kind).inc()

    # -- Gauges --

    def set_queue_depth(self, counts: Mapping[str, int]) -> None:
        """Publish per-status attempt counts."""
        for status, count in counts.items():
            self._queue_depth.labels(status=status).set(count)

    # -- Operation trackers (context managers) --

    @contextmanager
    def track_delivery(self) -> Iterator[None]:
        """Track the duration of one outbound HTTP call."""
        start = time.monotonic()
        try:
            yield
        finally:
            self._delivery_duration.observe(time.monotonic() - start)

    @contextmanager
    def track_cron(self, job_name: str) -> Iterator[None]:
        """Track the duration of a cron job and record last execution time."""
        start = time.monotonic()
        try:
            yield
        finally:
            self._cron_histogram.labels(job_name=job_name).observe(time.monotonic() - start)
            self._cron_last.labels(job_name=job_name).set(time.time())
