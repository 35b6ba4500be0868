"""DeliveryAttempt model: one queued notification for one subscriber."""

from __future__ import annotations

import enum
from datetime import datetime  # noqa: TC003 - SQLAlchemy needs this at runtime for Mapped[datetime]
from typing import TYPE_CHECKING, Any

from sqlalchemy import ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from webhook_relay.engine.models.base import Base, TimestampMixin, UTCDateTime, new_id

if TYPE_CHECKING:
    from webhook_relay.engine.models.webhook import Webhook


class DeliveryStatus(enum.StrEnum):
    """Delivery state machine.

    ``pending -> delivering -> delivered``; a failed attempt goes back to
    ``pending`` until ``max_attempts`` is reached, then ``dead_lettered``.
    ``failed`` is the terminal state of a one-shot test send.
    """

    PENDING = "pending"
    DELIVERING = "delivering"
    DELIVERED = "delivered"
    FAILED = "failed"
    DEAD_LETTERED = "dead_lettered"


OPEN_STATUSES = (DeliveryStatus.PENDING, DeliveryStatus.DELIVERING)
TERMINAL_STATUSES = (
    DeliveryStatus.DELIVERED,
    DeliveryStatus.FAILED,
    DeliveryStatus.DEAD_LETTERED,
)
FAILURE_STATUSES = (DeliveryStatus.FAILED, DeliveryStatus.DEAD_LETTERED)


class DeliveryAttempt(Base, TimestampMixin):
    """A signed payload waiting for (or done with) delivery.

    ``body`` and ``signature`` are fixed when the attempt is enqueued; retries
    resend the exact same bytes. ``sequence`` gives per-webhook FIFO order.
    """

    __tablename__ = "webhook_events"
    __table_args__ = (
        Index("ix_webhook_events_due", "status", "next_retry_at"),
        Index("ix_webhook_events_webhook_sequence", "webhook_id", "sequence"),
    )

    sequence: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(36), unique=True, nullable=False, default=new_id)
    webhook_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("webhooks.id", ondelete="CASCADE"),
        nullable=False,
    )
    workspace_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(nullable=False, comment="Event envelope")
    body: Mapped[str] = mapped_column(Text, nullable=False, comment="Canonical JSON as sent")
    signature: Mapped[str] = mapped_column(String(80), nullable=False)
    secret_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=DeliveryStatus.PENDING
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    next_retry_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_status_code: Mapped[int | None] = mapped_column(Integer, nullable=True)
    response_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    locked_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    locked_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    replayed_from: Mapped[str | None] = mapped_column(String(36), nullable=True)

    webhook: Mapped[Webhook] = relationship(back_populates="deliveries", lazy="raise")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def timestamp(self) -> str:
        """Envelope timestamp, sent as ``X-Webhook-Timestamp``."""
        return str(self.payload.get("timestamp", ""))

    def __repr__(self) -> str:
        return (
            f"<DeliveryAttempt id={self.id} webhook={self.webhook_id} "
            f"event={self.event_type} status={self.status} attempts={self.attempts}>"
        )
