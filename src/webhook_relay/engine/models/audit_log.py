"""AuditLogEntry model: append-only compliance trail."""

from __future__ import annotations

import enum
from datetime import datetime  # noqa: TC003 - SQLAlchemy needs this at runtime for Mapped[datetime]
from typing import Any

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from webhook_relay.engine.models.base import Base, UTCDateTime, new_id
from webhook_relay.utils.crypto import utcnow


class AuditAction(enum.StrEnum):
    """Recorded audit actions."""

    WEBHOOK_CREATED = "webhook_created"
    WEBHOOK_UPDATED = "webhook_updated"
    WEBHOOK_DELETED = "webhook_deleted"
    WEBHOOK_AUTO_DISABLED = "webhook_auto_disabled"
    SECRET_ROTATED = "secret_rotated"
    SECRET_REVOKED = "secret_revoked"
    DELIVERY_FAILED = "delivery_failed"
    DELIVERY_REPLAYED = "delivery_replayed"


class AuditLogEntry(Base):
    """Immutable record of an administrative action or delivery outcome.

    ``webhook_id`` is a plain column, not a foreign key: entries outlive the
    webhook they describe.
    """

    __tablename__ = "webhook_audit_logs"
    __table_args__ = (
        Index("ix_webhook_audit_logs_workspace_created", "workspace_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    workspace_id: Mapped[str] = mapped_column(String(64), nullable=False)
    webhook_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    action: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    changed_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    changes: Mapped[dict[str, Any]] = mapped_column(nullable=False, default=dict)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<AuditLogEntry action={self.action} webhook={self.webhook_id}>"
