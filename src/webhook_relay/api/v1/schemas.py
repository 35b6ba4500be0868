"""V1 API request/response Pydantic schemas.

These are the *API-layer* schemas: thin wrappers that define the HTTP
contract.  They do NOT inherit from SQLAlchemy models; the endpoint code
maps between ORM objects and these schemas.
"""

from __future__ import annotations

from datetime import datetime  # noqa: TC003 - Pydantic needs this at runtime
from typing import Any

from pydantic import BaseModel, Field

# ---------------------------------------------------------------------------
# Generic
# ---------------------------------------------------------------------------


class ErrorResponse(BaseModel):
    """Standard error body ``{"code": "...", "message": "..."}``."""

    code: str
    message: str


class PaginatedResponse(BaseModel):
    """Generic paginated list wrapper."""

    items: list[Any]
    page: int
    page_size: int


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------


class WebhookCreateRequest(BaseModel):
    """POST /api/v1/webhooks: register a subscriber endpoint."""

    name: str
    url: str
    events: list[str]
    description: str | None = None
    is_active: bool = True
    secret: str | None = Field(None, description="Custom signing secret; generated when omitted")


class WebhookUpdateRequest(BaseModel):
    """PATCH /api/v1/webhooks/{webhook_id}: partial update."""

    name: str | None = None
    url: str | None = None
    events: list[str] | None = None
    description: str | None = None
    is_active: bool | None = None


class WebhookResponse(BaseModel):
    """Webhook as returned by the API (secrets are never included)."""

    id: str
    workspace_id: str
    name: str
    url: str
    events: list[str]
    description: str | None = None
    is_active: bool
    created_by: str | None = None
    updated_by: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class WebhookCreatedResponse(BaseModel):
    """Registration result; ``secret`` is shown exactly once."""

    webhook: WebhookResponse
    secret: str
    secret_id: str
    secret_prefix: str


# ---------------------------------------------------------------------------
# Secrets
# ---------------------------------------------------------------------------


class RotateSecretRequest(BaseModel):
    """POST /api/v1/webhooks/{webhook_id}/secrets/rotate."""

    grace_period_hours: float | None = Field(None, ge=0)
    custom_secret: str | None = None


class RotateSecretResponse(BaseModel):
    """Rotation result; ``secret`` is shown exactly once."""

    secret: str
    secret_id: str
    secret_prefix: str
    previous_secret_id: str | None = None
    grace_period_ends: datetime | None = None


class RevokeSecretRequest(BaseModel):
    """POST /api/v1/secrets/{secret_id}/revoke."""

    reason: str | None = None


class RevokeSecretResponse(BaseModel):
    """Revocation result; ``replacement`` is set when the active secret was revoked."""

    secret_id: str
    revoked_at: datetime
    replacement: RotateSecretResponse | None = None


class SecretResponse(BaseModel):
    """Secret metadata (the raw secret is never stored)."""

    id: str
    secret_prefix: str
    is_active: bool
    created_at: datetime
    expires_at: datetime | None = None
    rotated_by: str | None = None

    model_config = {"from_attributes": True}


# ---------------------------------------------------------------------------
# Deliveries
# ---------------------------------------------------------------------------


class DeliveryResponse(BaseModel):
    """One delivery attempt."""

    id: str
    webhook_id: str
    event_type: str
    status: str
    attempts: int
    max_attempts: int
    payload: dict[str, Any]
    next_retry_at: datetime | None = None
    delivered_at: datetime | None = None
    last_error: str | None = None
    last_status_code: int | None = None
    response_time_ms: int | None = None
    replayed_from: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class TestDeliveryResponse(BaseModel):
    """Outcome of POST /api/v1/webhooks/{webhook_id}/test."""

    success: bool
    status_code: int | None = None
    response_time_ms: int | None = None
    error: str | None = None
    delivery: DeliveryResponse


class VerificationResponse(BaseModel):
    """Outcome of POST /api/v1/webhooks/{webhook_id}/verify."""

    verified: bool
    status_code: int | None = None
    response_time_ms: int | None = None
    error: str | None = None

    model_config = {"from_attributes": True}


class ReplayEligibilityResponse(BaseModel):
    allowed: bool
    reason: str | None = None

    model_config = {"from_attributes": True}


class ReplayStatsResponse(BaseModel):
    """Replays queued for one webhook."""

    webhook_id: str
    total: int
    delivered: int
    failed: int
    pending: int
    success_rate: float
    avg_response_time_ms: float | None = None
    first_replay_at: datetime | None = None
    last_replay_at: datetime | None = None

    model_config = {"from_attributes": True}


class WebhookHealthResponse(BaseModel):
    """Delivery health summary for one webhook."""

    webhook_id: str
    is_active: bool
    total: int
    delivered: int
    failed: int
    pending: int
    success_rate: float
    avg_response_time_ms: float | None = None
    consecutive_failures: int
    last_delivery_at: datetime | None = None
    last_failure_at: datetime | None = None
    last_error: str | None = None
    is_healthy: bool

    model_config = {"from_attributes": True}


# ---------------------------------------------------------------------------
# Events and audit
# ---------------------------------------------------------------------------


class EmitEventRequest(BaseModel):
    """POST /api/v1/events: inject a domain event."""

    event: str
    data: dict[str, Any] = Field(default_factory=dict)


class EmitEventResponse(BaseModel):
    """Dispatch result for an injected event."""

    event: str
    deliveries: list[str]


class AuditEntryResponse(BaseModel):
    """One audit log entry."""

    id: str
    webhook_id: str | None = None
    action: str
    changed_by: str | None = None
    changes: dict[str, Any]
    ip_address: str | None = None
    user_agent: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}
