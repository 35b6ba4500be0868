"""Errors: typed error kinds and the admin ``Result`` wrapper."""

from webhook_relay.errors.result import Result
from webhook_relay.errors.webhook_errors import (
    ConcurrencyConflict,
    DeliveryError,
    NotFoundError,
    TerminalDeliveryFailure,
    UnauthorizedError,
    ValidationError,
    WebhookError,
)

__all__ = [
    "ConcurrencyConflict",
    "DeliveryError",
    "NotFoundError",
    "Result",
    "TerminalDeliveryFailure",
    "UnauthorizedError",
    "ValidationError",
    "WebhookError",
]
