"""Notifications: event intake, signing and webhook delivery.

Provides:
- ``NotificationService``: in-process event bus feeding the dispatcher
- ``events``: event type allow-list, payload shapes and envelopes
- ``signature``: HMAC-SHA256 signing and verification
- ``webhook``: ``WebhookSender`` and the leasing ``DeliveryWorker``
"""

from __future__ import annotations

from webhook_relay.notifications.events import DomainEvent, EventType
from webhook_relay.notifications.service import NotificationService
from webhook_relay.notifications.signature import sign, verify

__all__ = [
    "DomainEvent",
    "EventType",
    "NotificationService",
    "sign",
    "verify",
]
