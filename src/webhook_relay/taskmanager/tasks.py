"""Cron job handlers for queue and retention maintenance.

- ``reclaim_leases``: return attempts held by dead workers to the queue
- ``secret_cleanup``: purge secrets whose grace period ended
- ``delivery_retention``: delete finished attempts past retention
- ``audit_retention``: delete audit entries past retention
- ``calculate_metrics``: publish queue depth per status

Handlers let errors propagate; the ``TaskManager`` logs them and records
the failure on the job's state.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from webhook_relay.engine.client import WebhookEngine
    from webhook_relay.metrics.collector import WebhookMetrics

logger = logging.getLogger(__name__)


async def task_reclaim_stale_leases(engine: WebhookEngine) -> None:
    """Release delivery leases older than ``delivery.lease_timeout``."""
    await engine.deliveries.reclaim_stale_leases()


async def task_cleanup_expired_secrets(engine: WebhookEngine) -> None:
    """Purge superseded secrets past their grace period."""
    result = await engine.secrets.cleanup_expired()
    if result.errors:
        logger.warning(
            "Secret cleanup: %d purged, %d webhooks failed", result.cleaned, result.errors
        )


async def task_purge_deliveries(engine: WebhookEngine) -> None:
    """Delete finished delivery attempts older than ``delivery.retention_days``."""
    await engine.deliveries.purge_finished(engine.config.delivery.retention_days)


async def task_purge_audit_log(engine: WebhookEngine) -> None:
    """Delete audit entries older than ``audit.retention_days``."""
    await engine.audit.purge_older_than(engine.config.audit.retention_days)


async def task_calculate_metrics(engine: WebhookEngine, metrics: WebhookMetrics) -> None:
    """Count attempts per status and push them to the queue depth gauge."""
    metrics.set_queue_depth(await engine.deliveries.count_by_status())
