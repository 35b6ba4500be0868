"""Audit log service: append-only writer and filtered reader."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, func, select

from webhook_relay.engine.models.audit_log import AuditLogEntry

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from webhook_relay.engine.client import WebhookEngine

logger = logging.getLogger(__name__)


class AuditLog:
    """Compliance trail of rotations, revocations and delivery outcomes.

    There is no update or delete-by-id operation; entries only
    leave the table through :meth:`purge_older_than`.
    """

    def __init__(self, engine: WebhookEngine) -> None:
        self._engine = engine

    def entry(
        self,
        *,
        workspace_id: str,
        action: str,
        webhook_id: str | None = None,
        changed_by: str | None = None,
        changes: dict[str, Any] | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuditLogEntry:
        """Build an entry stamped with the engine clock, not yet persisted.

        Services add it to their own session so the audit row commits (or
        rolls back) together with the change it describes.
        """
        return AuditLogEntry(
            workspace_id=workspace_id,
            webhook_id=webhook_id,
            action=str(action),
            changed_by=changed_by,
            changes=changes or {},
            ip_address=ip_address,
            user_agent=user_agent,
            created_at=self._engine.now(),
        )

    async def record(self, *, session: AsyncSession | None = None, **fields: Any) -> AuditLogEntry:
        """Append one entry.

        Args:
            session: Join an open transaction instead of committing on its own.
            **fields: Keyword arguments accepted by :meth:`entry`.

        Returns:
            The appended entry.
        """
        item = self.entry(**fields)
        if session is not None:
            session.add(item)
            return item
        async with self._engine.datastore.transaction() as own:
            own.add(item)
        logger.debug("audit %s webhook=%s", item.action, item.webhook_id)
        return item

    async def list(
        self,
        workspace_id: str,
        *,
        webhook_id: str | None = None,
        action: str | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> list[AuditLogEntry]:
        """Entries for a workspace, newest first.

        Args:
            workspace_id: Tenant scope.
            webhook_id: Only entries about this webhook.
            action: Only entries with this action.
            page: 1-based page number.
            page_size: Entries per page.
        """
        stmt = select(AuditLogEntry).where(AuditLogEntry.workspace_id == workspace_id)
        if webhook_id is not None:
            stmt = stmt.where(AuditLogEntry.webhook_id == webhook_id)
        if action is not None:
            stmt = stmt.where(AuditLogEntry.action == str(action))
        stmt = (
            stmt.order_by(AuditLogEntry.created_at.desc(), AuditLogEntry.id)
            .offset((max(page, 1) - 1) * page_size)
            .limit(page_size)
        )
        async with self._engine.datastore.session() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def count(self, workspace_id: str, *, action: str | None = None) -> int:
        """Number of entries in a workspace (optionally for one action)."""
        stmt = select(func.count(AuditLogEntry.id)).where(
            AuditLogEntry.workspace_id == workspace_id
        )
        if action is not None:
            stmt = stmt.where(AuditLogEntry.action == str(action))
        async with self._engine.datastore.session() as session:
            return (await session.execute(stmt)).scalar_one()

    async def purge_older_than(self, days: int) -> int:
        """Retention sweep: delete entries created more than *days* ago.

        Returns:
            Number of entries removed.
        """
        cutoff = self._engine.now() - timedelta(days=days)
        async with self._engine.datastore.transaction() as session:
            result = await session.execute(
                delete(AuditLogEntry).where(AuditLogEntry.created_at < cutoff)
            )
        removed = result.rowcount or 0  # type: ignore[union-attr]
        if removed:
            logger.info("Purged %d audit entries older than %d days", removed, days)
        return removed
