"""Initial schema: webhooks, secrets, delivery attempts, audit log.

Revision ID: 0001
Revises:
Create Date: 2026-10-19 00:00:00
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _ts(name: str, *, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade() -> None:
    op.create_table(
        "webhooks",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("workspace_id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("url", sa.Text(), nullable=False, comment="Subscriber callback URL"),
        sa.Column("events", sa.JSON(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_by", sa.String(64), nullable=True),
        sa.Column("updated_by", sa.String(64), nullable=True),
        _ts("created_at"),
        _ts("updated_at"),
    )
    op.create_index("ix_webhooks_workspace_id", "webhooks", ["workspace_id"])
    op.create_index("ix_webhooks_workspace_active", "webhooks", ["workspace_id", "is_active"])

    op.create_table(
        "webhook_secrets",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "webhook_id",
            sa.String(36),
            sa.ForeignKey("webhooks.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("secret_hash", sa.String(64), nullable=False),
        sa.Column("secret_prefix", sa.String(32), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        _ts("created_at"),
        _ts("expires_at", nullable=True),
        sa.Column("rotated_by", sa.String(64), nullable=True),
    )
    op.create_index("ix_webhook_secrets_webhook_id", "webhook_secrets", ["webhook_id"])
    op.create_index(
        "uq_webhook_secrets_one_active",
        "webhook_secrets",
        ["webhook_id"],
        unique=True,
        sqlite_where=sa.text("is_active = 1"),
        postgresql_where=sa.text("is_active"),
    )

    op.create_table(
        "webhook_events",
        sa.Column("sequence", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("id", sa.String(36), nullable=False, unique=True),
        sa.Column(
            "webhook_id",
            sa.String(36),
            sa.ForeignKey("webhooks.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("workspace_id", sa.String(64), nullable=False),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False, comment="Event envelope"),
        sa.Column("body", sa.Text(), nullable=False, comment="Canonical JSON as sent"),
        sa.Column("signature", sa.String(80), nullable=False),
        sa.Column("secret_id", sa.String(36), nullable=True),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("max_attempts", sa.Integer(), nullable=False),
        _ts("next_retry_at", nullable=True),
        _ts("delivered_at", nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("last_status_code", sa.Integer(), nullable=True),
        sa.Column("response_time_ms", sa.Integer(), nullable=True),
        _ts("locked_at", nullable=True),
        sa.Column("locked_by", sa.String(64), nullable=True),
        sa.Column("replayed_from", sa.String(36), nullable=True),
        _ts("created_at"),
        _ts("updated_at"),
    )
    op.create_index("ix_webhook_events_workspace_id", "webhook_events", ["workspace_id"])
    op.create_index("ix_webhook_events_due", "webhook_events", ["status", "next_retry_at"])
    op.create_index(
        "ix_webhook_events_webhook_sequence", "webhook_events", ["webhook_id", "sequence"]
    )

    op.create_table(
        "webhook_audit_logs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("workspace_id", sa.String(64), nullable=False),
        sa.Column("webhook_id", sa.String(36), nullable=True),
        sa.Column("action", sa.String(32), nullable=False),
        sa.Column("changed_by", sa.String(64), nullable=True),
        sa.Column("changes", sa.JSON(), nullable=False),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.String(255), nullable=True),
        _ts("created_at"),
    )
    op.create_index("ix_webhook_audit_logs_webhook_id", "webhook_audit_logs", ["webhook_id"])
    op.create_index("ix_webhook_audit_logs_action", "webhook_audit_logs", ["action"])
    op.create_index(
        "ix_webhook_audit_logs_workspace_created",
        "webhook_audit_logs",
        ["workspace_id", "created_at"],
    )


def downgrade() -> None:
    op.drop_table("webhook_audit_logs")
    op.drop_table("webhook_events")
    op.drop_table("webhook_secrets")
    op.drop_table("webhooks")
