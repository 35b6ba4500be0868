"""Pre-built error instances shared by services and the admin API."""

from __future__ import annotations

from webhook_relay.errors.webhook_errors import (
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)

# -- Authentication --------------------------------------------------------

ErrMissingWorkspace = UnauthorizedError(
    "missing workspace header", code="missing-workspace"
)
ErrEngineNotReady = UnauthorizedError("engine not initialized", code="engine-not-ready")

# -- Not Found -------------------------------------------------------------

ErrWebhookNotFound = NotFoundError("webhook not found", code="webhook-not-found")
ErrSecretNotFound = NotFoundError("webhook secret not found", code="secret-not-found")
ErrDeliveryNotFound = NotFoundError("delivery not found", code="delivery-not-found")

# -- Validation ------------------------------------------------------------

ErrInvalidURL = ValidationError(
    "url must be an absolute http(s) URL", code="invalid-url"
)
ErrHTTPSRequired = ValidationError("url must use https", code="https-required")
ErrURLTooLong = ValidationError("url is too long", code="url-too-long")
ErrEmptyEvents = ValidationError(
    "an active webhook must subscribe to at least one event", code="empty-events"
)
ErrInvalidEventType = ValidationError("unknown event type", code="invalid-event-type")
ErrInvalidName = ValidationError("name must be 1-255 characters", code="invalid-name")
ErrDescriptionTooLong = ValidationError(
    "description must be at most 500 characters", code="description-too-long"
)
ErrSecretTooShort = ValidationError("custom secret is too short", code="secret-too-short")
ErrInvalidGracePeriod = ValidationError(
    "grace period is out of range", code="invalid-grace-period"
)
ErrInvalidPayload = ValidationError(
    "event payload does not match its type", code="invalid-payload"
)

# -- Delivery --------------------------------------------------------------

ErrDeliveryNotTerminal = ValidationError(
    "only delivered, failed or dead-lettered deliveries can be replayed",
    code="delivery-not-terminal",
)
ErrNoActiveSecret = NotFoundError(
    "webhook has no active signing secret", code="no-active-secret"
)
