"""WebhookSecret model: one generation of signing material."""

from __future__ import annotations

from datetime import datetime  # noqa: TC003 - SQLAlchemy needs this at runtime for Mapped[datetime]
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, ForeignKey, Index, String, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from webhook_relay.engine.models.base import Base, UTCDateTime, new_id
from webhook_relay.utils.crypto import utcnow

if TYPE_CHECKING:
    from webhook_relay.engine.models.webhook import Webhook


class WebhookSecret(Base):
    """Hashed signing secret for a webhook.

    The raw secret is never stored. ``secret_hash`` doubles as the HMAC key
    used on the wire (see :func:`webhook_relay.notifications.signature.derive_signing_key`).
    At most one row per webhook is active; superseded rows stay valid until
    ``expires_at``.
    """

    __tablename__ = "webhook_secrets"
    __table_args__ = (
        Index(
            "uq_webhook_secrets_one_active",
            "webhook_id",
            unique=True,
            sqlite_where=text("is_active = 1"),
            postgresql_where=text("is_active"),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    webhook_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("webhooks.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    secret_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    secret_prefix: Mapped[str] = mapped_column(String(32), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True, default=None)
    rotated_by: Mapped[str | None] = mapped_column(String(64), nullable=True, default=None)

    webhook: Mapped[Webhook] = relationship(back_populates="secrets", lazy="raise")

    def is_valid_at(self, now: datetime) -> bool:
        """Whether the secret is accepted for verification at *now*."""
        if self.is_active:
            return True
        return self.expires_at is not None and self.expires_at > now

    def in_grace_period(self, now: datetime) -> bool:
        """Superseded but not yet expired."""
        return not self.is_active and self.is_valid_at(now)

    def __repr__(self) -> str:
        state = "active" if self.is_active else f"expires={self.expires_at}"
        return f"<WebhookSecret id={self.id} prefix={self.secret_prefix} {state}>"
