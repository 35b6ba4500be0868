"""Webhook model: tenant-scoped subscriptions."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from webhook_relay.engine.models.base import Base, TimestampMixin, new_id

if TYPE_CHECKING:
    from webhook_relay.engine.models.delivery import DeliveryAttempt
    from webhook_relay.engine.models.webhook_secret import WebhookSecret


class Webhook(Base, TimestampMixin):
    """A workspace's registered HTTP endpoint and the event types it wants.

    ``events`` holds exact event types (``contact.created``) and wildcard
    patterns (``*``, ``contact.*``). Deleting a webhook removes its secrets
    and deliveries; audit entries survive.
    """

    __tablename__ = "webhooks"
    __table_args__ = (Index("ix_webhooks_workspace_active", "workspace_id", "is_active"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    workspace_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    url: Mapped[str] = mapped_column(Text, nullable=False, comment="Subscriber callback URL")
    events: Mapped[list[str]] = mapped_column(nullable=False, default=list)
    description: Mapped[str | None] = mapped_column(Text, nullable=True, default=None)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_by: Mapped[str | None] = mapped_column(String(64), nullable=True, default=None)
    updated_by: Mapped[str | None] = mapped_column(String(64), nullable=True, default=None)

    secrets: Mapped[list[WebhookSecret]] = relationship(
        back_populates="webhook",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="raise",
    )
    deliveries: Mapped[list[DeliveryAttempt]] = relationship(
        back_populates="webhook",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="raise",
    )

    def __repr__(self) -> str:
        return f"<Webhook id={self.id} workspace={self.workspace_id} url={self.url[:30]}>"
