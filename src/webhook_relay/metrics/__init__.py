"""Metrics: Prometheus metrics collection and exposure."""

from __future__ import annotations

from webhook_relay.metrics.collector import MetricsCollector, WebhookMetrics

__all__ = ["MetricsCollector", "WebhookMetrics"]
