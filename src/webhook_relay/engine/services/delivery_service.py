"""Delivery queue: durable attempts, leasing, retry scheduling and dead-lettering.

State machine per attempt::

    pending --lease--> delivering --2xx--> delivered
                           |
                           +--failure, attempts < max--> pending (next_retry_at = now + backoff)
                           +--failure, attempts == max--> dead_lettered

Attempts of one webhook are handed out strictly in enqueue order: only the
oldest open attempt of each webhook is ever claimable.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, func, select, update

from webhook_relay.engine.models.audit_log import AuditAction
from webhook_relay.engine.models.base import new_id
from webhook_relay.engine.models.delivery import (
    FAILURE_STATUSES,
    OPEN_STATUSES,
    TERMINAL_STATUSES,
    DeliveryAttempt,
    DeliveryStatus,
)
from webhook_relay.engine.models.webhook import Webhook
from webhook_relay.errors.definitions import (
    ErrDeliveryNotFound,
    ErrDeliveryNotTerminal,
    ErrNoActiveSecret,
)
from webhook_relay.errors.webhook_errors import ConcurrencyConflict, TerminalDeliveryFailure
from webhook_relay.notifications.signature import sign

if TYPE_CHECKING:
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession

    from webhook_relay.engine.client import WebhookEngine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryOutcome:
    """Result of one HTTP call to a subscriber."""

    success: bool
    status_code: int | None = None
    error: str | None = None
    response_time_ms: int | None = None


@dataclass(frozen=True)
class DueAttempt:
    """An attempt ready to be leased."""

    id: str
    webhook_id: str
    workspace_id: str


@dataclass(frozen=True)
class ReplayEligibility:
    allowed: bool
    reason: str | None = None


class DeliveryQueue:
    """Persistence side of delivery: enqueue, lease, complete, replay."""

    def __init__(self, engine: WebhookEngine) -> None:
        self._engine = engine
        self._config = engine.config.delivery

    # ------------------------------------------------------------------
    # Scheduling policy
    # ------------------------------------------------------------------

    def backoff(self, attempts: int) -> timedelta:
        """Delay before the next try after *attempts* failed tries.

        Uses ``schedule[attempts - 1]``; the last entry repeats once the
        schedule is exhausted.
        """
        schedule = self._config.backoff_schedule
        index = min(max(attempts, 1) - 1, len(schedule) - 1)
        return timedelta(seconds=schedule[index])

    # ------------------------------------------------------------------
    # Enqueue
    # ------------------------------------------------------------------

    def build(
        self,
        webhook: Webhook,
        *,
        event_type: str,
        envelope: dict[str, Any],
        body: str,
        signature: str,
        secret_id: str | None,
        max_attempts: int | None = None,
        replayed_from: str | None = None,
    ) -> DeliveryAttempt:
        """A new pending attempt, due immediately (not yet persisted)."""
        now = self._engine.now()
        return DeliveryAttempt(
            id=new_id(),
            webhook_id=webhook.id,
            workspace_id=webhook.workspace_id,
            event_type=event_type,
            payload=envelope,
            body=body,
            signature=signature,
            secret_id=secret_id,
            status=DeliveryStatus.PENDING,
            attempts=0,
            max_attempts=max_attempts or self._config.max_attempts,
            next_retry_at=now,
            replayed_from=replayed_from,
            created_at=now,
            updated_at=now,
        )

    async def enqueue(self, attempts: list[DeliveryAttempt]) -> list[DeliveryAttempt]:
        """Persist *attempts* in order, skipping webhooks deleted meanwhile.

        Returns:
            The attempts actually stored.
        """
        if not attempts:
            return []
        async with self._engine.datastore.transaction() as session:
            existing = set(
                (
                    await session.execute(
                        select(Webhook.id).where(
                            Webhook.id.in_({a.webhook_id for a in attempts})
                        )
                    )
                ).scalars()
            )
            stored = [a for a in attempts if a.webhook_id in existing]
            for attempt in stored:
                session.add(attempt)
                # One flush per row keeps the sequence in list order
                await session.flush()
        for attempt in attempts:
            if attempt.webhook_id not in existing:
                logger.info(
                    "Webhook %s vanished before enqueue; dropped attempt", attempt.webhook_id
                )
        return stored

    # ------------------------------------------------------------------
    # Leasing
    # ------------------------------------------------------------------

    async def lease(self, attempt_id: str, worker_id: str) -> DeliveryAttempt:
        """Take the exclusive lease on a due pending attempt.

        Compare-and-set on ``status`` and ``next_retry_at``: exactly one
        concurrent caller wins, and an attempt rescheduled since it was listed
        as due is not taken early.

        Raises:
            ConcurrencyConflict: Another worker holds the lease (or it is no
                longer pending or due).
        """
        now = self._engine.now()
        async with self._engine.datastore.transaction() as session:
            result = await session.execute(
                update(DeliveryAttempt)
                .where(
                    DeliveryAttempt.id == attempt_id,
                    DeliveryAttempt.status == DeliveryStatus.PENDING,
                    DeliveryAttempt.next_retry_at <= now,
                )
                .values(
                    status=DeliveryStatus.DELIVERING,
                    locked_at=now,
                    locked_by=worker_id,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if (result.rowcount or 0) != 1:  # type: ignore[union-attr]
                msg = f"delivery {attempt_id} is already leased or finished"
                raise ConcurrencyConflict(msg)
            attempt = (
                await session.execute(
                    select(DeliveryAttempt).where(DeliveryAttempt.id == attempt_id)
                )
            ).scalar_one()
        return attempt

    async def due(self, limit: int | None = None) -> list[DueAttempt]:
        """Up to *limit* attempts that are due now, at most one per webhook.

        An attempt is due when it is pending, ``next_retry_at <= now`` and it is
        the oldest open attempt of its webhook. Nothing is leased.
        """
        now = self._engine.now()
        head = (
            select(
                DeliveryAttempt.webhook_id,
                func.min(DeliveryAttempt.sequence).label("head_sequence"),
            )
            .where(DeliveryAttempt.status.in_(OPEN_STATUSES))
            .group_by(DeliveryAttempt.webhook_id)
            .subquery()
        )
        stmt = (
            select(DeliveryAttempt.id, DeliveryAttempt.webhook_id, DeliveryAttempt.workspace_id)
            .join(head, DeliveryAttempt.sequence == head.c.head_sequence)
            .where(
                DeliveryAttempt.status == DeliveryStatus.PENDING,
                DeliveryAttempt.next_retry_at <= now,
            )
            .order_by(DeliveryAttempt.next_retry_at, DeliveryAttempt.sequence)
            .limit(limit or self._config.batch_size)
        )
        async with self._engine.datastore.session() as session:
            rows = (await session.execute(stmt)).all()
        return [DueAttempt(*row) for row in rows]

    async def claim_due(self, worker_id: str, limit: int | None = None) -> list[DeliveryAttempt]:
        """Lease up to *limit* due attempts, at most one per webhook.

        Lost lease races are skipped.
        """
        claimed: list[DeliveryAttempt] = []
        for candidate in await self.due(limit):
            try:
                claimed.append(await self.lease(candidate.id, worker_id))
            except ConcurrencyConflict:
                logger.debug("Lost lease race for delivery %s", candidate.id)
        return claimed

    async def reclaim_stale_leases(self) -> int:
        """Return attempts leased longer than ``lease_timeout`` to ``pending``.

        A worker that died mid-call never completed its attempt; the attempt
        counter is left alone so the retry budget still bounds it.

        Returns:
            Number of attempts released.
        """
        now = self._engine.now()
        cutoff = now - timedelta(seconds=self._config.lease_timeout)
        async with self._engine.datastore.transaction() as session:
            result = await session.execute(
                update(DeliveryAttempt)
                .where(
                    DeliveryAttempt.status == DeliveryStatus.DELIVERING,
                    DeliveryAttempt.locked_at < cutoff,
                )
                .values(
                    status=DeliveryStatus.PENDING,
                    locked_at=None,
                    locked_by=None,
                    next_retry_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
        released = result.rowcount or 0  # type: ignore[union-attr]
        if released:
            logger.warning("Reclaimed %d stale delivery leases", released)
        return released

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    async def complete(
        self,
        attempt_id: str,
        worker_id: str,
        outcome: DeliveryOutcome,
    ) -> DeliveryAttempt | None:
        """Record the outcome of a leased attempt and advance its state.

        Returns:
            The updated attempt, or ``None`` if its webhook was deleted while
            the call was in flight.

        Raises:
            ConcurrencyConflict: The lease expired and was taken by someone else.
        """
        failure: TerminalDeliveryFailure | None = None
        async with self._engine.datastore.transaction() as session:
            attempt = (
                await session.execute(
                    select(DeliveryAttempt)
                    .where(DeliveryAttempt.id == attempt_id)
                    .with_for_update()
                )
            ).scalar_one_or_none()
            if attempt is None:
                logger.info("Delivery %s was purged while in flight", attempt_id)
                return None
            if attempt.status != DeliveryStatus.DELIVERING or attempt.locked_by != worker_id:
                msg = f"worker {worker_id} no longer holds the lease on delivery {attempt_id}"
                raise ConcurrencyConflict(msg)

            now = self._engine.now()
            attempt.attempts += 1
            attempt.last_status_code = outcome.status_code
            attempt.response_time_ms = outcome.response_time_ms
            attempt.locked_at = None
            attempt.locked_by = None
            attempt.updated_at = now

            if outcome.success:
                attempt.status = DeliveryStatus.DELIVERED
                attempt.delivered_at = now
                attempt.next_retry_at = None
                attempt.last_error = None
                result_label = "delivered"
            elif attempt.attempts < attempt.max_attempts:
                attempt.status = DeliveryStatus.PENDING
                attempt.next_retry_at = now + self.backoff(attempt.attempts)
                attempt.last_error = outcome.error
                result_label = "retry"
            else:
                attempt.status = DeliveryStatus.DEAD_LETTERED
                attempt.next_retry_at = None
                attempt.last_error = outcome.error
                result_label = "dead_lettered"
                failure = TerminalDeliveryFailure(attempt.id, attempt.attempts, outcome.error)
                session.add(
                    self._engine.audit.entry(
                        workspace_id=attempt.workspace_id,
                        webhook_id=attempt.webhook_id,
                        action=AuditAction.DELIVERY_FAILED,
                        changes={
                            "delivery_id": attempt.id,
                            "event_type": attempt.event_type,
                            "attempts": attempt.attempts,
                            "last_error": outcome.error,
                            "last_status_code": outcome.status_code,
                        },
                    )
                )
                await self._maybe_auto_disable(session, attempt.webhook_id)

        if self._engine.metrics is not None:
            self._engine.metrics.inc_delivery(result_label)
        if failure is not None:
            logger.warning("%s", failure.message)
        elif result_label == "retry":
            logger.info(
                "Delivery %s failed (attempt %d/%d), retry at %s: %s",
                attempt.id,
                attempt.attempts,
                attempt.max_attempts,
                attempt.next_retry_at,
                outcome.error,
            )
        return attempt

    async def _maybe_auto_disable(self, session: AsyncSession, webhook_id: str) -> None:
        """Deactivate a webhook whose last N finished attempts all failed."""
        threshold = self._config.auto_disable_after
        if threshold <= 0:
            return
        recent = (
            await session.execute(
                select(DeliveryAttempt.status)
                .where(
                    DeliveryAttempt.webhook_id == webhook_id,
                    DeliveryAttempt.status.in_(TERMINAL_STATUSES),
                )
                .order_by(DeliveryAttempt.sequence.desc())
                .limit(threshold)
            )
        ).scalars().all()
        if len(recent) < threshold or any(s not in FAILURE_STATUSES for s in recent):
            return
        webhook = await session.get(Webhook, webhook_id, with_for_update=True)
        if webhook is None or not webhook.is_active:
            return
        webhook.is_active = False
        webhook.updated_at = self._engine.now()
        session.add(
            self._engine.audit.entry(
                workspace_id=webhook.workspace_id,
                webhook_id=webhook.id,
                action=AuditAction.WEBHOOK_AUTO_DISABLED,
                changes={
                    "consecutive_failures": threshold,
                    "is_active": {"old": True, "new": False},
                },
            )
        )
        logger.warning(
            "Webhook %s auto-disabled after %d consecutive failed deliveries",
            webhook_id,
            threshold,
        )

    # ------------------------------------------------------------------
    # Read API
    # ------------------------------------------------------------------

    async def get(self, workspace_id: str, delivery_id: str) -> DeliveryAttempt:
        """Fetch one attempt owned by *workspace_id*.

        Raises:
            NotFoundError: Missing or owned by another workspace.
        """
        async with self._engine.datastore.session() as session:
            attempt = (
                await session.execute(
                    select(DeliveryAttempt).where(
                        DeliveryAttempt.id == delivery_id,
                        DeliveryAttempt.workspace_id == workspace_id,
                    )
                )
            ).scalar_one_or_none()
        if attempt is None:
            raise ErrDeliveryNotFound
        return attempt

    async def list(
        self,
        workspace_id: str,
        *,
        webhook_id: str | None = None,
        status: str | None = None,
        event_type: str | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> list[DeliveryAttempt]:
        """Attempts of a workspace, newest first."""
        stmt = select(DeliveryAttempt).where(DeliveryAttempt.workspace_id == workspace_id)
        if webhook_id is not None:
            stmt = stmt.where(DeliveryAttempt.webhook_id == webhook_id)
        if status is not None:
            stmt = stmt.where(DeliveryAttempt.status == status)
        if event_type is not None:
            stmt = stmt.where(DeliveryAttempt.event_type == event_type)
        stmt = (
            stmt.order_by(DeliveryAttempt.sequence.desc())
            .offset((max(page, 1) - 1) * page_size)
            .limit(page_size)
        )
        async with self._engine.datastore.session() as session:
            return list((await session.execute(stmt)).scalars().all())

    async def count_by_status(self, workspace_id: str | None = None) -> dict[str, int]:
        """Attempt counts per status (every status present, zeros included)."""
        stmt = select(DeliveryAttempt.status, func.count(DeliveryAttempt.sequence)).group_by(
            DeliveryAttempt.status
        )
        if workspace_id is not None:
            stmt = stmt.where(DeliveryAttempt.workspace_id == workspace_id)
        async with self._engine.datastore.session() as session:
            rows = (await session.execute(stmt)).all()
        counts = {str(status): 0 for status in DeliveryStatus}
        counts.update({status: count for status, count in rows})
        return counts

    # ------------------------------------------------------------------
    # Replay and retention
    # ------------------------------------------------------------------

    async def replay(
        self,
        workspace_id: str,
        delivery_id: str,
        replayed_by: str | None = None,
        *,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> DeliveryAttempt:
        """Queue a finished attempt again as a new single-shot attempt.

        The original envelope is resent, signed with the webhook's current
        secret.

        Raises:
            NotFoundError: Unknown delivery or the webhook has no active secret.
            ValidationError: The original attempt is still pending or in flight.
        """
        original = await self.get(workspace_id, delivery_id)
        if not original.is_terminal:
            raise ErrDeliveryNotTerminal
        webhook = await self._engine.registry.get(workspace_id, original.webhook_id)
        secret = await self._engine.secrets.get_current_secret(webhook.id)
        if secret is None:
            raise ErrNoActiveSecret

        attempt = self.build(
            webhook,
            event_type=original.event_type,
            envelope=original.payload,
            body=original.body,
            signature=sign(original.body, secret.secret_hash),
            secret_id=secret.id,
            max_attempts=1,
            replayed_from=original.id,
        )
        async with self._engine.datastore.transaction() as session:
            session.add(attempt)
            session.add(
                self._engine.audit.entry(
                    workspace_id=workspace_id,
                    webhook_id=webhook.id,
                    action=AuditAction.DELIVERY_REPLAYED,
                    changed_by=replayed_by,
                    changes={"original_delivery_id": original.id, "delivery_id": attempt.id},
                    ip_address=ip_address,
                    user_agent=user_agent,
                )
            )
        logger.info("Replaying delivery %s as %s", original.id, attempt.id)
        return attempt

    async def can_replay(self, workspace_id: str, delivery_id: str) -> ReplayEligibility:
        """Whether :meth:`replay` would accept *delivery_id* right now.

        Raises:
            NotFoundError: Unknown delivery.
        """
        attempt = await self.get(workspace_id, delivery_id)
        if not attempt.is_terminal:
            return ReplayEligibility(False, ErrDeliveryNotTerminal.message)
        if await self._engine.secrets.get_current_secret(attempt.webhook_id) is None:
            return ReplayEligibility(False, ErrNoActiveSecret.message)
        return ReplayEligibility(True)

    async def replay_history(self, workspace_id: str, delivery_id: str) -> list[DeliveryAttempt]:
        """Replays queued directly from *delivery_id*, newest first.

        Raises:
            NotFoundError: Unknown delivery.
        """
        original = await self.get(workspace_id, delivery_id)
        async with self._engine.datastore.session() as session:
            rows = await session.execute(
                select(DeliveryAttempt)
                .where(
                    DeliveryAttempt.workspace_id == workspace_id,
                    DeliveryAttempt.replayed_from == original.id,
                )
                .order_by(DeliveryAttempt.sequence.desc())
            )
            return list(rows.scalars().all())

    async def replay_chain(self, workspace_id: str, delivery_id: str) -> list[DeliveryAttempt]:
        """The first attempt of *delivery_id*'s lineage and every replay of it, oldest first.

        Replays of replays are followed in both directions. When the first
        attempt was purged, the chain starts at the oldest one still stored.

        Raises:
            NotFoundError: Unknown delivery.
        """
        start = await self.get(workspace_id, delivery_id)
        seen = {start.id}
        async with self._engine.datastore.session() as session:
            root = start
            while root.replayed_from is not None and root.replayed_from not in seen:
                parent = await session.get(DeliveryAttempt, root.replayed_from)
                if parent is None or parent.workspace_id != workspace_id:
                    break
                seen.add(parent.id)
                root = parent

            chain = [root]
            seen = {root.id}
            frontier = [root.id]
            while frontier:
                children = [
                    child
                    for child in (
                        await session.execute(
                            select(DeliveryAttempt).where(
                                DeliveryAttempt.workspace_id == workspace_id,
                                DeliveryAttempt.replayed_from.in_(frontier),
                            )
                        )
                    ).scalars()
                    if child.id not in seen
                ]
                seen.update(child.id for child in children)
                chain.extend(children)
                frontier = [child.id for child in children]
        return sorted(chain, key=lambda attempt: attempt.sequence)

    async def purge_finished(self, older_than_days: int) -> int:
        """Retention sweep: delete finished attempts last touched before the cutoff.

        Returns:
            Number of attempts removed.
        """
        cutoff: datetime = self._engine.now() - timedelta(days=older_than_days)
        async with self._engine.datastore.transaction() as session:
            result = await session.execute(
                delete(DeliveryAttempt).where(
                    DeliveryAttempt.status.in_(TERMINAL_STATUSES),
                    DeliveryAttempt.updated_at < cutoff,
                )
            )
        removed = result.rowcount or 0  # type: ignore[union-attr]
        if removed:
            logger.info(
                "Purged %d finished deliveries older than %d days", removed, older_than_days
            )
        return removed
