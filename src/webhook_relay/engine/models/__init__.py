"""Engine data models (SQLAlchemy ORM).

Import :data:`ALL_MODELS` for migration and table creation.
"""

from webhook_relay.engine.models.audit_log import AuditAction, AuditLogEntry
from webhook_relay.engine.models.base import Base, TimestampMixin, UTCDateTime
from webhook_relay.engine.models.delivery import DeliveryAttempt, DeliveryStatus
from webhook_relay.engine.models.webhook import Webhook
from webhook_relay.engine.models.webhook_secret import WebhookSecret

ALL_MODELS: list[type[Base]] = [
    Webhook,
    WebhookSecret,
    DeliveryAttempt,
    AuditLogEntry,
]

__all__ = [
    "ALL_MODELS",
    "AuditAction",
    "AuditLogEntry",
    "Base",
    "DeliveryAttempt",
    "DeliveryStatus",
    "TimestampMixin",
    "UTCDateTime",
    "Webhook",
    "WebhookSecret",
]
