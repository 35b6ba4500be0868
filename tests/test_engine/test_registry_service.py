"""Tests for WebhookRegistry: validation, tenant isolation and audit trail."""

from __future__ import annotations

import pytest

from webhook_relay.engine.models.audit_log import AuditAction
from webhook_relay.engine.models.delivery import DeliveryStatus
from webhook_relay.errors import NotFoundError, ValidationError

_WS = "ws-alpha"
_OTHER_WS = "ws-beta"


class TestCreate:
    async def test_create_returns_secret_once(self, engine, make_webhook) -> None:
        created = await make_webhook(events=["contact.created", "deal.*"])
        webhook = created.webhook

        assert webhook.workspace_id == _WS
        assert webhook.events == ["contact.created", "deal.*"]
        assert webhook.is_active
        assert webhook.created_by == "user-1"
        assert created.secret_prefix.startswith("whsec_")
        assert len(created.raw_secret) == 64

    async def test_create_is_audited(self, engine, make_webhook) -> None:
        created = await make_webhook()
        [entry] = await engine.audit.list(_WS, action=AuditAction.WEBHOOK_CREATED)
        assert entry.webhook_id == created.webhook.id
        assert entry.changes["secret_id"] == created.secret_id
        assert entry.changes["url"] == "https://hooks.example.com/crm"

    async def test_duplicate_events_collapsed(self, make_webhook) -> None:
        created = await make_webhook(events=["contact.created", "contact.created", "*"])
        assert created.webhook.events == ["contact.created", "*"]

    async def test_inactive_may_have_no_events(self, make_webhook) -> None:
        created = await make_webhook(events=[], is_active=False)
        assert created.webhook.events == []
        assert not created.webhook.is_active

    @pytest.mark.parametrize(
        ("kwargs", "code"),
        [
            ({"url": "not a url"}, "invalid-url"),
            ({"url": "ftp://hooks.example.com"}, "invalid-url"),
            ({"url": ""}, "invalid-url"),
            ({"url": "https://example.com/" + "a" * 500}, "url-too-long"),
            ({"events": []}, "empty-events"),
            ({"events": ["contact.exploded"]}, "invalid-event-type"),
            ({"events": ["nope.*"]}, "invalid-event-type"),
            ({"name": "   "}, "invalid-name"),
            ({"custom_secret": "short"}, "secret-too-short"),
        ],
    )
    async def test_validation(self, engine, make_webhook, kwargs, code) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await make_webhook(**kwargs)
        assert exc_info.value.code == code
        assert await engine.registry.count(_WS) == 0

    async def test_https_required(self, engine) -> None:
        engine.config.registry.require_https = True
        with pytest.raises(ValidationError) as exc_info:
            engine.registry.validate_url("http://hooks.example.com")
        assert exc_info.value.code == "https-required"
        assert engine.registry.validate_url(" https://hooks.example.com ") == "https://hooks.example.com"


class TestTenantIsolation:
    async def test_other_workspace_sees_nothing(self, engine, make_webhook) -> None:
        created = await make_webhook()
        with pytest.raises(NotFoundError):
            await engine.registry.get(_OTHER_WS, created.webhook.id)
        with pytest.raises(NotFoundError):
            await engine.registry.update(_OTHER_WS, created.webhook.id, name="stolen")
        with pytest.raises(NotFoundError):
            await engine.registry.delete(_OTHER_WS, created.webhook.id)
        assert await engine.registry.list(_OTHER_WS) == []

    async def test_list_scoped_and_filtered(self, engine, make_webhook) -> None:
        await make_webhook(name="a")
        await make_webhook(name="b", is_active=False)
        await make_webhook(_OTHER_WS, name="c")

        assert {w.name for w in await engine.registry.list(_WS)} == {"a", "b"}
        assert [w.name for w in await engine.registry.list(_WS, is_active=False)] == ["b"]
        assert await engine.registry.count(_WS, is_active=True) == 1
        assert len(await engine.registry.list(_WS, page=2, page_size=1)) == 1
        assert await engine.registry.list(_WS, page=3, page_size=1) == []


class TestSubscribers:
    async def test_matching(self, engine, make_webhook) -> None:
        exact = await make_webhook(name="exact", events=["contact.created"])
        family = await make_webhook(name="family", events=["contact.*"])
        everything = await make_webhook(name="all", events=["*"])
        await make_webhook(name="deals", events=["deal.won"])
        await make_webhook(name="off", events=["*"], is_active=False)
        await make_webhook(_OTHER_WS, name="foreign", events=["*"])

        subs = await engine.registry.subscribers(_WS, "contact.created")
        assert {w.id for w in subs} == {
            exact.webhook.id,
            family.webhook.id,
            everything.webhook.id,
        }
        updated = await engine.registry.subscribers(_WS, "contact.updated")
        assert {w.name for w in updated} == {"family", "all"}


class TestUpdate:
    async def test_update_records_diff(self, engine, make_webhook) -> None:
        created = await make_webhook()
        webhook = await engine.registry.update(
            _WS,
            created.webhook.id,
            updated_by="user-2",
            name="Renamed",
            events=["contact.*"],
        )
        assert webhook.name == "Renamed"
        assert webhook.updated_by == "user-2"

        [entry] = await engine.audit.list(_WS, action=AuditAction.WEBHOOK_UPDATED)
        assert entry.changed_by == "user-2"
        assert entry.changes == {
            "name": {"old": "CRM sync", "new": "Renamed"},
            "events": {"old": ["contact.created"], "new": ["contact.*"]},
        }

    async def test_noop_update_not_audited(self, engine, make_webhook) -> None:
        created = await make_webhook()
        await engine.registry.update(_WS, created.webhook.id, name="CRM sync")
        assert await engine.audit.count(_WS, action=AuditAction.WEBHOOK_UPDATED) == 0

    async def test_invalid_update_writes_nothing(self, engine, make_webhook) -> None:
        created = await make_webhook()
        with pytest.raises(ValidationError):
            await engine.registry.update(_WS, created.webhook.id, name="ok", url="bad")
        webhook = await engine.registry.get(_WS, created.webhook.id)
        assert webhook.name == "CRM sync"

    async def test_clearing_events_of_active_webhook_rejected(self, engine, make_webhook) -> None:
        created = await make_webhook()
        with pytest.raises(ValidationError):
            await engine.registry.update(_WS, created.webhook.id, events=[])
        webhook = await engine.registry.update(
            _WS, created.webhook.id, events=[], is_active=False
        )
        assert webhook.events == []

    async def test_set_active(self, engine, make_webhook) -> None:
        created = await make_webhook()
        webhook = await engine.registry.set_active(_WS, created.webhook.id, False)
        assert not webhook.is_active
        assert await engine.registry.subscribers(_WS, "contact.created") == []


class TestDelete:
    async def test_delete_purges_queue_and_secrets(self, engine, make_webhook) -> None:
        created = await make_webhook()
        await engine.dispatcher.dispatch(_WS, "contact.created", {"id": 1})
        await engine.dispatcher.dispatch(_WS, "contact.created", {"id": 2})

        purged = await engine.registry.delete(_WS, created.webhook.id, deleted_by="user-1")

        assert purged == 2
        counts = await engine.deliveries.count_by_status()
        assert counts[DeliveryStatus.PENDING] == 0
        assert await engine.secrets.list_secrets(created.webhook.id) == []
        with pytest.raises(NotFoundError):
            await engine.registry.get(_WS, created.webhook.id)

    async def test_audit_trail_survives_delete(self, engine, make_webhook) -> None:
        created = await make_webhook()
        await engine.registry.delete(_WS, created.webhook.id)
        entries = await engine.audit.list(_WS, webhook_id=created.webhook.id)
        assert {e.action for e in entries} == {
            AuditAction.WEBHOOK_DELETED,
            AuditAction.WEBHOOK_CREATED,
        }
