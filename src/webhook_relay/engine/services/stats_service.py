"""Delivery analytics: per-webhook health and workspace reports."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from sqlalchemy import func, select

from webhook_relay.engine.models.delivery import (
    FAILURE_STATUSES,
    TERMINAL_STATUSES,
    DeliveryAttempt,
    DeliveryStatus,
)

if TYPE_CHECKING:
    from datetime import datetime

    from webhook_relay.engine.client import WebhookEngine

# A webhook is healthy when it is active, has fewer failures than this...
_MAX_HEALTHY_FAILURES = 5
# ...and delivers more than this percentage of finished attempts.
_MIN_HEALTHY_SUCCESS_RATE = 80.0


@dataclass(frozen=True)
class WebhookHealth:
    """Delivery history summary for one webhook."""

    webhook_id: str
    is_active: bool
    total: int
    delivered: int
    failed: int
    pending: int
    success_rate: float
    avg_response_time_ms: float | None
    consecutive_failures: int
    last_delivery_at: datetime | None
    last_failure_at: datetime | None
    last_error: str | None
    is_healthy: bool


@dataclass(frozen=True)
class WorkspaceReport:
    """Health of every webhook in a workspace."""

    workspace_id: str
    total_webhooks: int
    active_webhooks: int
    healthy_webhooks: int
    total_deliveries: int
    success_rate: float
    webhooks: list[WebhookHealth] = field(default_factory=list)


@dataclass(frozen=True)
class ReplayStats:
    """Replays queued for one webhook and how they went."""

    webhook_id: str
    total: int
    delivered: int
    failed: int
    pending: int
    success_rate: float
    avg_response_time_ms: float | None
    first_replay_at: datetime | None
    last_replay_at: datetime | None


def _rate(delivered: int, finished: int) -> float:
    if finished == 0:
        return 100.0
    return round(delivered * 100.0 / finished, 2)


class DeliveryStats:
    """Read-only analytics derived from delivery attempt history."""

    def __init__(self, engine: WebhookEngine) -> None:
        self._engine = engine

    async def webhook_health(self, workspace_id: str, webhook_id: str) -> WebhookHealth:
        """Success rate, last failure and failure streak for one webhook.

        Raises:
            NotFoundError: Missing or owned by another workspace.
        """
        webhook = await self._engine.registry.get(workspace_id, webhook_id)
        async with self._engine.datastore.session() as session:
            rows = (
                await session.execute(
                    select(DeliveryAttempt.status, func.count(DeliveryAttempt.sequence))
                    .where(DeliveryAttempt.webhook_id == webhook_id)
                    .group_by(DeliveryAttempt.status)
                )
            ).all()
            counts = {str(status): count for status, count in rows}

            avg_ms = (
                await session.execute(
                    select(func.avg(DeliveryAttempt.response_time_ms)).where(
                        DeliveryAttempt.webhook_id == webhook_id,
                        DeliveryAttempt.response_time_ms.is_not(None),
                    )
                )
            ).scalar_one()

            recent = (
                await session.execute(
                    select(DeliveryAttempt)
                    .where(
                        DeliveryAttempt.webhook_id == webhook_id,
                        DeliveryAttempt.status.in_(TERMINAL_STATUSES),
                    )
                    .order_by(DeliveryAttempt.sequence.desc())
                    .limit(100)
                )
            ).scalars().all()

        delivered = counts.get(DeliveryStatus.DELIVERED, 0)
        failed = sum(counts.get(s, 0) for s in FAILURE_STATUSES)
        pending = counts.get(DeliveryStatus.PENDING, 0) + counts.get(DeliveryStatus.DELIVERING, 0)

        streak = 0
        for attempt in recent:
            if attempt.status not in FAILURE_STATUSES:
                break
            streak += 1
        last_delivery = next((a for a in recent if a.status == DeliveryStatus.DELIVERED), None)
        last_failure = next((a for a in recent if a.status in FAILURE_STATUSES), None)

        success_rate = _rate(delivered, delivered + failed)
        return WebhookHealth(
            webhook_id=webhook.id,
            is_active=webhook.is_active,
            total=sum(counts.values()),
            delivered=delivered,
            failed=failed,
            pending=pending,
            success_rate=success_rate,
            avg_response_time_ms=round(float(avg_ms), 1) if avg_ms is not None else None,
            consecutive_failures=streak,
            last_delivery_at=last_delivery.delivered_at if last_delivery else None,
            last_failure_at=last_failure.updated_at if last_failure else None,
            last_error=last_failure.last_error if last_failure else None,
            is_healthy=(
                webhook.is_active
                and failed < _MAX_HEALTHY_FAILURES
                and success_rate > _MIN_HEALTHY_SUCCESS_RATE
            ),
        )

    async def workspace_report(self, workspace_id: str) -> WorkspaceReport:
        """Health of every webhook in *workspace_id*."""
        webhooks = await self._engine.registry.list(workspace_id, page_size=1000)
        health = [await self.webhook_health(workspace_id, w.id) for w in webhooks]
        delivered = sum(h.delivered for h in health)
        failed = sum(h.failed for h in health)
        return WorkspaceReport(
            workspace_id=workspace_id,
            total_webhooks=len(health),
            active_webhooks=sum(1 for h in health if h.is_active),
            healthy_webhooks=sum(1 for h in health if h.is_healthy),
            total_deliveries=sum(h.total for h in health),
            success_rate=_rate(delivered, delivered + failed),
            webhooks=health,
        )

    async def replay_stats(self, workspace_id: str, webhook_id: str) -> ReplayStats:
        """Outcome summary of the replays queued for one webhook.

        Raises:
            NotFoundError: Missing or owned by another workspace.
        """
        await self._engine.registry.get(workspace_id, webhook_id)
        replays = DeliveryAttempt.replayed_from.is_not(None)
        async with self._engine.datastore.session() as session:
            rows = (
                await session.execute(
                    select(DeliveryAttempt.status, func.count(DeliveryAttempt.sequence))
                    .where(DeliveryAttempt.webhook_id == webhook_id, replays)
                    .group_by(DeliveryAttempt.status)
                )
            ).all()
            avg_ms, first_at, last_at = (
                await session.execute(
                    select(
                        func.avg(DeliveryAttempt.response_time_ms),
                        func.min(DeliveryAttempt.created_at),
                        func.max(DeliveryAttempt.created_at),
                    ).where(DeliveryAttempt.webhook_id == webhook_id, replays)
                )
            ).one()

        counts = {str(status): count for status, count in rows}
        delivered = counts.get(DeliveryStatus.DELIVERED, 0)
        failed = sum(counts.get(s, 0) for s in FAILURE_STATUSES)
        return ReplayStats(
            webhook_id=webhook_id,
            total=sum(counts.values()),
            delivered=delivered,
            failed=failed,
            pending=sum(counts.values()) - delivered - failed,
            success_rate=_rate(delivered, delivered + failed),
            avg_response_time_ms=round(float(avg_ms), 1) if avg_ms is not None else None,
            first_replay_at=first_at,
            last_replay_at=last_at,
        )
