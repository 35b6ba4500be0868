"""Tests for the event allow-list, subscription patterns and payload shapes."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from webhook_relay.errors import ValidationError
from webhook_relay.notifications.events import (
    EVENT_FAMILIES,
    DomainEvent,
    EventType,
    is_known_event,
    is_valid_subscription,
    matches,
    validate_payload,
)


class TestAllowList:
    """Known event types and families."""

    def test_known(self) -> None:
        assert is_known_event("contact.created")
        assert is_known_event("deal.won")
        assert not is_known_event("contact.exploded")
        assert not is_known_event("webhook.test")

    def test_families(self) -> None:
        assert EventType.APPOINTMENT_CANCELLED.family == "appointment"
        assert {"contact", "deal", "pipeline", "user"} <= EVENT_FAMILIES

    def test_subscription_patterns(self) -> None:
        assert is_valid_subscription("*")
        assert is_valid_subscription("contact.*")
        assert is_valid_subscription("deal.lost")
        assert not is_valid_subscription("nope.*")
        assert not is_valid_subscription("contact.")
        assert not is_valid_subscription("")


class TestMatches:
    """Pattern matching used by the dispatcher."""

    def test_exact(self) -> None:
        assert matches(["contact.created"], "contact.created")
        assert not matches(["contact.created"], "contact.updated")

    def test_family_wildcard(self) -> None:
        assert matches(["contact.*"], "contact.deleted")
        assert not matches(["contact.*"], "deal.won")

    def test_global_wildcard(self) -> None:
        assert matches(["*"], "pipeline.updated")

    def test_empty(self) -> None:
        assert not matches([], "contact.created")


class TestValidatePayload:
    """Per-type payload shapes."""

    def test_created_passes_extra_fields(self) -> None:
        data = {"id": 7, "email": "a@example.com"}
        assert validate_payload("contact.created", data) == data

    def test_deleted_requires_id(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            validate_payload("contact.deleted", {"name": "x"})
        assert exc_info.value.code == "invalid-payload"

    @pytest.mark.parametrize("event_type", ["deal.deleted", "appointment.deleted"])
    def test_deal_and_appointment_deletions(self, event_type: str) -> None:
        assert is_known_event(event_type)
        assert matches([f"{event_type.split('.')[0]}.*"], event_type)
        assert validate_payload(event_type, {"id": 12}) == {"id": 12}
        with pytest.raises(ValidationError) as exc_info:
            validate_payload(event_type, {"title": "gone"})
        assert exc_info.value.code == "invalid-payload"

    def test_deal_outcome(self) -> None:
        validate_payload("deal.won", {"id": "d1", "value": 1500.0})
        with pytest.raises(ValidationError):
            validate_payload("deal.lost", {"reason": "budget"})

    def test_unshaped_type_passes_through(self) -> None:
        assert validate_payload("appointment.completed", {"anything": True}) == {"anything": True}

    def test_unknown_type(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            validate_payload("contact.exploded", {})
        assert exc_info.value.code == "invalid-event-type"

    def test_non_object_payload(self) -> None:
        with pytest.raises(ValidationError):
            validate_payload("contact.created", ["not", "a", "dict"])  # type: ignore[arg-type]


class TestDomainEvent:
    """Envelope construction."""

    def test_envelope(self) -> None:
        e = DomainEvent("ws-1", "contact.created", {"id": 1})
        env = e.envelope(datetime(2026, 3, 1, 12, 0, 5, 123456, tzinfo=UTC))
        assert env == {
            "event": "contact.created",
            "data": {"id": 1},
            "timestamp": "2026-03-01T12:00:05.123Z",
            "workspace_id": "ws-1",
        }

    def test_frozen(self) -> None:
        e = DomainEvent("ws-1", "contact.created")
        with pytest.raises(AttributeError):
            e.type = "other"  # type: ignore[misc]

    def test_to_dict(self) -> None:
        assert DomainEvent("ws-1", "deal.won", {"id": 2}).to_dict() == {
            "workspace_id": "ws-1",
            "type": "deal.won",
            "data": {"id": 2},
        }
