"""Domain event types for the webhook relay.

- ``EventType``: the fixed allow-list of event types subscribers can pick
- ``DomainEvent``: what the CRM layer emits (workspace + type + data)
- typed payload shapes for the common families, opaque JSON for the rest
"""

from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from webhook_relay.errors.webhook_errors import ValidationError
from webhook_relay.utils.crypto import isoformat_z

WILDCARD = "*"
TEST_EVENT = "webhook.test"
VERIFICATION_EVENT = "webhook.verification"


class EventType(enum.StrEnum):
    """Known domain event types (``<family>.<action>``)."""

    CONTACT_CREATED = "contact.created"
    CONTACT_UPDATED = "contact.updated"
    CONTACT_DELETED = "contact.deleted"
    TRANSACTION_CREATED = "transaction.created"
    TRANSACTION_UPDATED = "transaction.updated"
    TRANSACTION_DELETED = "transaction.deleted"
    PROPERTY_CREATED = "property.created"
    PROPERTY_UPDATED = "property.updated"
    PROPERTY_DELETED = "property.deleted"
    APPOINTMENT_CREATED = "appointment.created"
    APPOINTMENT_UPDATED = "appointment.updated"
    APPOINTMENT_COMPLETED = "appointment.completed"
    APPOINTMENT_CANCELLED = "appointment.cancelled"
    APPOINTMENT_DELETED = "appointment.deleted"
    DEAL_CREATED = "deal.created"
    DEAL_UPDATED = "deal.updated"
    DEAL_WON = "deal.won"
    DEAL_LOST = "deal.lost"
    DEAL_DELETED = "deal.deleted"
    CAMPAIGN_CREATED = "campaign.created"
    CAMPAIGN_UPDATED = "campaign.updated"
    CAMPAIGN_DELETED = "campaign.deleted"
    PIPELINE_CREATED = "pipeline.created"
    PIPELINE_UPDATED = "pipeline.updated"
    PIPELINE_DELETED = "pipeline.deleted"
    USER_CREATED = "user.created"
    USER_UPDATED = "user.updated"
    USER_DELETED = "user.deleted"

    @property
    def family(self) -> str:
        return self.value.split(".", 1)[0]


EVENT_FAMILIES: frozenset[str] = frozenset(e.family for e in EventType)


def is_known_event(event_type: str) -> bool:
    """Whether *event_type* is in the allow-list."""
    return event_type in EventType._value2member_map_


def is_valid_subscription(pattern: str) -> bool:
    """Whether *pattern* may appear in a webhook's ``events`` list.

    Accepts exact event types, ``*`` and ``<family>.*`` for a known family.
    """
    if pattern == WILDCARD or is_known_event(pattern):
        return True
    family, sep, rest = pattern.partition(".")
    return bool(sep) and rest == WILDCARD and family in EVENT_FAMILIES


def matches(patterns: list[str], event_type: str) -> bool:
    """Whether any subscription pattern covers *event_type*."""
    family = event_type.split(".", 1)[0]
    for pattern in patterns:
        if pattern in (WILDCARD, event_type, f"{family}.*"):
            return True
    return False


# ---------------------------------------------------------------------------
# Payload shapes
# ---------------------------------------------------------------------------


class EntityPayload(BaseModel):
    """Created/updated payloads: the entity snapshot, extra fields kept."""

    model_config = ConfigDict(extra="allow")

    id: str | int | None = None


class DeletedPayload(BaseModel):
    """Deleted payloads only need the id of the removed entity."""

    model_config = ConfigDict(extra="allow")

    id: str | int


class DealOutcomePayload(BaseModel):
    """``deal.won`` / ``deal.lost``."""

    model_config = ConfigDict(extra="allow")

    id: str | int
    value: float | None = None
    reason: str | None = None


_PAYLOAD_MODELS: dict[str, type[BaseModel]] = {
    "created": EntityPayload,
    "updated": EntityPayload,
    "deleted": DeletedPayload,
    EventType.DEAL_WON.value: DealOutcomePayload,
    EventType.DEAL_LOST.value: DealOutcomePayload,
}


def validate_payload(event_type: str, data: dict[str, Any]) -> dict[str, Any]:
    """Check *data* against the known shape for *event_type*.

    Types without a registered shape pass through as opaque JSON objects.

    Raises:
        ValidationError: Unknown event type or payload that does not fit its shape.
    """
    if not is_known_event(event_type):
        raise ValidationError(f"unknown event type: {event_type}", code="invalid-event-type")
    if not isinstance(data, dict):
        raise ValidationError("event data must be a JSON object", code="invalid-payload")
    action = event_type.split(".", 1)[1]
    model = _PAYLOAD_MODELS.get(event_type) or _PAYLOAD_MODELS.get(action)
    if model is None:
        return data
    try:
        model.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError(
            f"invalid payload for {event_type}: {exc.errors()[0]['msg']}",
            code="invalid-payload",
        ) from exc
    return data


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DomainEvent:
    """An entity change reported by the CRM layer."""

    workspace_id: str
    type: str
    data: dict[str, Any] = field(default_factory=dict)

    def envelope(self, timestamp: datetime) -> dict[str, Any]:
        """Wire envelope ``{event, data, timestamp, workspace_id}``."""
        return {
            "event": self.type,
            "data": self.data,
            "timestamp": isoformat_z(timestamp),
            "workspace_id": self.workspace_id,
        }

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a plain dict."""
        return asdict(self)
