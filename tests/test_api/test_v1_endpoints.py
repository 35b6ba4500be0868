"""Tests for V1 REST API endpoints.

The admin facade is mocked: these tests cover routing, caller extraction,
request validation and response serialisation.
"""

from __future__ import annotations

from datetime import UTC, datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from webhook_relay.api.app import create_app
from webhook_relay.config.settings import AppConfig, DatabaseConfig
from webhook_relay.engine.services.delivery_service import ReplayEligibility
from webhook_relay.engine.services.dispatch_service import EndpointVerification, SendTestResult
from webhook_relay.engine.services.registry_service import WebhookCreated
from webhook_relay.engine.services.secret_service import RevokeResult, RotationResult
from webhook_relay.engine.services.stats_service import (
    ReplayStats,
    WebhookHealth,
    WorkspaceReport,
)
from webhook_relay.errors import Result
from webhook_relay.errors.definitions import (
    ErrDeliveryNotFound,
    ErrDeliveryNotTerminal,
    ErrWebhookNotFound,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
HEADERS = {"x-workspace-id": "ws-alpha", "x-user-id": "user-1"}


def _make_webhook(webhook_id: str = "hook-1", **overrides):
    values = {
        "id": webhook_id,
        "workspace_id": "ws-alpha",
        "name": "CRM sync",
        "url": "https://hooks.example.com/crm",
        "events": ["contact.created"],
        "description": None,
        "is_active": True,
        "created_by": "user-1",
        "updated_by": "user-1",
        "created_at": NOW,
        "updated_at": NOW,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


def _make_delivery(delivery_id: str = "dlv-1", **overrides):
    values = {
        "id": delivery_id,
        "webhook_id": "hook-1",
        "event_type": "contact.created",
        "status": "delivered",
        "attempts": 1,
        "max_attempts": 3,
        "payload": {"event": "contact.created", "data": {"id": 1}},
        "next_retry_at": None,
        "delivered_at": NOW,
        "last_error": None,
        "last_status_code": 200,
        "response_time_ms": 40,
        "replayed_from": None,
        "created_at": NOW,
        "updated_at": NOW,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


def _make_health(webhook_id: str = "hook-1") -> WebhookHealth:
    return WebhookHealth(
        webhook_id=webhook_id,
        is_active=True,
        total=4,
        delivered=3,
        failed=1,
        pending=0,
        success_rate=75.0,
        avg_response_time_ms=41.5,
        consecutive_failures=1,
        last_delivery_at=NOW,
        last_failure_at=NOW,
        last_error="HTTP 500",
        is_healthy=False,
    )


def _rotation(secret_id: str = "sec-2") -> RotationResult:
    return RotationResult(
        raw_secret="f" * 64,
        secret_id=secret_id,
        secret_prefix="whsec_ffffffff",
        grace_period_ends=NOW,
        previous_secret_id="sec-1",
    )


@pytest.fixture
def client_with_engine():
    """Test client with a mock engine attached to app.state."""
    app = create_app(config=AppConfig(db=DatabaseConfig(dsn="sqlite+aiosqlite:///:memory:")))
    engine = MagicMock()
    engine.admin = AsyncMock()
    engine.dispatcher = AsyncMock()
    app.state.engine = engine
    return TestClient(app, raise_server_exceptions=False), engine


# ===================================================================
# Caller context
# ===================================================================


class TestCaller:
    def test_missing_workspace_returns_401(self, client_with_engine) -> None:
        client, _ = client_with_engine
        resp = client.get("/api/v1/webhooks")
        assert resp.status_code == 401
        assert resp.json()["code"] == "missing-workspace"

    def test_blank_workspace_returns_401(self, client_with_engine) -> None:
        client, _ = client_with_engine
        resp = client.get("/api/v1/webhooks", headers={"x-workspace-id": "  "})
        assert resp.status_code == 401

    def test_caller_passed_to_admin(self, client_with_engine) -> None:
        client, engine = client_with_engine
        engine.admin.get_webhook.return_value = Result.success(_make_webhook())
        client.get("/api/v1/webhooks/hook-1", headers={**HEADERS, "user-agent": "crm-ui/3"})

        caller, webhook_id = engine.admin.get_webhook.call_args.args
        assert webhook_id == "hook-1"
        assert caller.workspace_id == "ws-alpha"
        assert caller.user_id == "user-1"
        assert caller.user_agent == "crm-ui/3"

    def test_engine_not_ready(self) -> None:
        app = create_app(config=AppConfig(db=DatabaseConfig(dsn="sqlite+aiosqlite:///:memory:")))
        client = TestClient(app, raise_server_exceptions=False)
        resp = client.get("/api/v1/webhooks", headers=HEADERS)
        assert resp.status_code == 401
        assert resp.json()["code"] == "engine-not-ready"


# ===================================================================
# Webhooks
# ===================================================================


class TestWebhookRoutes:
    def test_create(self, client_with_engine) -> None:
        client, engine = client_with_engine
        engine.admin.create_webhook.return_value = Result.success(
            WebhookCreated(
                webhook=_make_webhook(),
                raw_secret="a" * 64,
                secret_id="sec-1",
                secret_prefix="whsec_aaaaaaaa",
            )
        )
        resp = client.post(
            "/api/v1/webhooks",
            headers=HEADERS,
            json={
                "name": "CRM sync",
                "url": "https://hooks.example.com/crm",
                "events": ["contact.created"],
                "secret": "my-custom-secret",
            },
        )
        assert resp.status_code == 201
        body = resp.json()
        assert body["secret"] == "a" * 64
        assert body["secret_id"] == "sec-1"
        assert body["webhook"]["id"] == "hook-1"
        assert body["webhook"]["created_at"] == "2026-03-01T12:00:00Z"
        assert engine.admin.create_webhook.call_args.kwargs["custom_secret"] == "my-custom-secret"

    def test_create_rejects_missing_fields(self, client_with_engine) -> None:
        client, engine = client_with_engine
        resp = client.post("/api/v1/webhooks", headers=HEADERS, json={"name": "x"})
        assert resp.status_code == 422
        engine.admin.create_webhook.assert_not_called()

    def test_validation_error_mapped(self, client_with_engine) -> None:
        from webhook_relay.errors.definitions import ErrInvalidURL

        client, engine = client_with_engine
        engine.admin.create_webhook.return_value = Result.failure(ErrInvalidURL)
        resp = client.post(
            "/api/v1/webhooks",
            headers=HEADERS,
            json={"name": "x", "url": "nope", "events": ["*"]},
        )
        assert resp.status_code == 400
        assert resp.json() == {
            "code": "invalid-url",
            "message": "url must be an absolute http(s) URL",
        }

    def test_list(self, client_with_engine) -> None:
        client, engine = client_with_engine
        engine.admin.list_webhooks.return_value = Result.success(
            [_make_webhook("hook-1"), _make_webhook("hook-2", is_active=False)]
        )
        resp = client.get("/api/v1/webhooks?is_active=false&page=2&page_size=10", headers=HEADERS)
        assert resp.status_code == 200
        body = resp.json()
        assert [w["id"] for w in body["items"]] == ["hook-1", "hook-2"]
        assert body["page"] == 2
        kwargs = engine.admin.list_webhooks.call_args.kwargs
        assert kwargs == {"is_active": False, "page": 2, "page_size": 10}

    def test_get_not_found(self, client_with_engine) -> None:
        client, engine = client_with_engine
        engine.admin.get_webhook.return_value = Result.failure(ErrWebhookNotFound)
        resp = client.get("/api/v1/webhooks/other", headers=HEADERS)
        assert resp.status_code == 404
        assert resp.json()["code"] == "webhook-not-found"

    def test_patch_sends_only_set_fields(self, client_with_engine) -> None:
        client, engine = client_with_engine
        engine.admin.update_webhook.return_value = Result.success(_make_webhook(name="Renamed"))
        resp = client.patch("/api/v1/webhooks/hook-1", headers=HEADERS, json={"name": "Renamed"})
        assert resp.status_code == 200
        assert resp.json()["name"] == "Renamed"
        assert engine.admin.update_webhook.call_args.kwargs == {"name": "Renamed"}

    def test_activate_deactivate(self, client_with_engine) -> None:
        client, engine = client_with_engine
        engine.admin.deactivate.return_value = Result.success(_make_webhook(is_active=False))
        engine.admin.activate.return_value = Result.success(_make_webhook())
        assert not client.post("/api/v1/webhooks/hook-1/deactivate", headers=HEADERS).json()["is_active"]
        assert client.post("/api/v1/webhooks/hook-1/activate", headers=HEADERS).json()["is_active"]

    def test_delete(self, client_with_engine) -> None:
        client, engine = client_with_engine
        engine.admin.delete_webhook.return_value = Result.success(3)
        resp = client.delete("/api/v1/webhooks/hook-1", headers=HEADERS)
        assert resp.json() == {"deleted": True, "purged_deliveries": 3}


# ===================================================================
# Secrets
# ===================================================================


class TestSecretRoutes:
    def test_list_secrets(self, client_with_engine) -> None:
        client, engine = client_with_engine
        engine.admin.list_secrets.return_value = Result.success(
            [
                SimpleNamespace(
                    id="sec-1",
                    secret_prefix="whsec_12345678",
                    is_active=True,
                    created_at=NOW,
                    expires_at=None,
                    rotated_by="user-1",
                    secret_hash="must-not-leak",
                )
            ]
        )
        resp = client.get("/api/v1/webhooks/hook-1/secrets", headers=HEADERS)
        assert resp.status_code == 200
        [secret] = resp.json()
        assert secret["secret_prefix"] == "whsec_12345678"
        assert "secret_hash" not in secret

    def test_rotate_default_body(self, client_with_engine) -> None:
        client, engine = client_with_engine
        engine.admin.rotate_secret.return_value = Result.success(_rotation())
        resp = client.post("/api/v1/webhooks/hook-1/secrets/rotate", headers=HEADERS)
        assert resp.status_code == 200
        body = resp.json()
        assert body["secret"] == "f" * 64
        assert body["previous_secret_id"] == "sec-1"
        kwargs = engine.admin.rotate_secret.call_args.kwargs
        assert kwargs == {"grace_period_hours": None, "custom_secret": None}

    def test_rotate_with_grace(self, client_with_engine) -> None:
        client, engine = client_with_engine
        engine.admin.rotate_secret.return_value = Result.success(_rotation())
        client.post(
            "/api/v1/webhooks/hook-1/secrets/rotate",
            headers=HEADERS,
            json={"grace_period_hours": 48},
        )
        assert engine.admin.rotate_secret.call_args.kwargs["grace_period_hours"] == 48

    def test_rotate_negative_grace_rejected(self, client_with_engine) -> None:
        client, engine = client_with_engine
        resp = client.post(
            "/api/v1/webhooks/hook-1/secrets/rotate",
            headers=HEADERS,
            json={"grace_period_hours": -1},
        )
        assert resp.status_code == 422
        engine.admin.rotate_secret.assert_not_called()

    def test_revoke_active_returns_replacement(self, client_with_engine) -> None:
        client, engine = client_with_engine
        engine.admin.revoke_secret.return_value = Result.success(
            RevokeResult(secret_id="sec-1", revoked_at=NOW, replacement=_rotation())
        )
        resp = client.post(
            "/api/v1/secrets/sec-1/revoke", headers=HEADERS, json={"reason": "leaked"}
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["secret_id"] == "sec-1"
        assert body["replacement"]["secret_id"] == "sec-2"
        assert engine.admin.revoke_secret.call_args.args[1:] == ("sec-1", "leaked")


# ===================================================================
# Test send, health, audit
# ===================================================================


class TestWebhookExtras:
    def test_send_test(self, client_with_engine) -> None:
        client, engine = client_with_engine
        engine.admin.send_test.return_value = Result.success(
            SendTestResult(
                delivery=_make_delivery(event_type="webhook.test", max_attempts=1),
                success=True,
                status_code=200,
                response_time_ms=40,
                error=None,
            )
        )
        resp = client.post("/api/v1/webhooks/hook-1/test", headers=HEADERS)
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["delivery"]["event_type"] == "webhook.test"

    def test_verify(self, client_with_engine) -> None:
        client, engine = client_with_engine
        engine.admin.verify_endpoint.return_value = Result.success(
            EndpointVerification(verified=True, status_code=200, response_time_ms=35, error=None)
        )
        resp = client.post("/api/v1/webhooks/hook-1/verify", headers=HEADERS)
        assert resp.status_code == 200
        assert resp.json() == {
            "verified": True,
            "status_code": 200,
            "response_time_ms": 35,
            "error": None,
        }
        caller, webhook_id = engine.admin.verify_endpoint.call_args.args
        assert (caller.workspace_id, webhook_id) == ("ws-alpha", "hook-1")

    def test_verify_unknown_webhook(self, client_with_engine) -> None:
        client, engine = client_with_engine
        engine.admin.verify_endpoint.return_value = Result.failure(ErrWebhookNotFound)
        assert client.post("/api/v1/webhooks/nope/verify", headers=HEADERS).status_code == 404

    def test_replay_stats(self, client_with_engine) -> None:
        client, engine = client_with_engine
        engine.admin.replay_stats.return_value = Result.success(
            ReplayStats(
                webhook_id="hook-1",
                total=4,
                delivered=3,
                failed=1,
                pending=0,
                success_rate=75.0,
                avg_response_time_ms=41.5,
                first_replay_at=NOW,
                last_replay_at=NOW,
            )
        )
        body = client.get("/api/v1/webhooks/hook-1/replays/stats", headers=HEADERS).json()
        assert body["total"] == 4
        assert body["success_rate"] == 75.0
        assert body["first_replay_at"].startswith("2026-03-01T12:00:00")

    def test_health(self, client_with_engine) -> None:
        client, engine = client_with_engine
        engine.admin.webhook_health.return_value = Result.success(_make_health())
        body = client.get("/api/v1/webhooks/hook-1/health", headers=HEADERS).json()
        assert body["success_rate"] == 75.0
        assert body["is_healthy"] is False

    def test_webhook_audit(self, client_with_engine) -> None:
        client, engine = client_with_engine
        engine.admin.get_webhook.return_value = Result.success(_make_webhook())
        engine.admin.audit_log.return_value = Result.success(
            [
                SimpleNamespace(
                    id="aud-1",
                    webhook_id="hook-1",
                    action="secret_rotated",
                    changed_by="user-1",
                    changes={"grace_period_hours": 24},
                    ip_address="198.51.100.4",
                    user_agent="crm-ui/3",
                    created_at=NOW,
                )
            ]
        )
        resp = client.get("/api/v1/webhooks/hook-1/audit", headers=HEADERS)
        assert resp.status_code == 200
        assert resp.json()[0]["action"] == "secret_rotated"
        assert engine.admin.audit_log.call_args.kwargs["webhook_id"] == "hook-1"


# ===================================================================
# Deliveries, events, audit, report
# ===================================================================


class TestDeliveryRoutes:
    def test_list_with_filters(self, client_with_engine) -> None:
        client, engine = client_with_engine
        engine.admin.list_deliveries.return_value = Result.success([_make_delivery()])
        resp = client.get(
            "/api/v1/deliveries?status=dead_lettered&event_type=deal.won", headers=HEADERS
        )
        assert resp.status_code == 200
        assert resp.json()["items"][0]["id"] == "dlv-1"
        kwargs = engine.admin.list_deliveries.call_args.kwargs
        assert kwargs["status"] == "dead_lettered"
        assert kwargs["event_type"] == "deal.won"
        assert kwargs["webhook_id"] is None

    def test_get(self, client_with_engine) -> None:
        client, engine = client_with_engine
        engine.admin.get_delivery.return_value = Result.success(_make_delivery())
        assert client.get("/api/v1/deliveries/dlv-1", headers=HEADERS).json()["status"] == "delivered"

    def test_replay(self, client_with_engine) -> None:
        client, engine = client_with_engine
        engine.admin.replay_delivery.return_value = Result.success(
            _make_delivery("dlv-2", status="pending", replayed_from="dlv-1", max_attempts=1)
        )
        resp = client.post("/api/v1/deliveries/dlv-1/replay", headers=HEADERS)
        assert resp.status_code == 202
        assert resp.json()["replayed_from"] == "dlv-1"

    def test_replay_pending_rejected(self, client_with_engine) -> None:
        client, engine = client_with_engine
        engine.admin.replay_delivery.return_value = Result.failure(ErrDeliveryNotTerminal)
        resp = client.post("/api/v1/deliveries/dlv-1/replay", headers=HEADERS)
        assert resp.status_code == 400
        assert resp.json()["code"] == "delivery-not-terminal"

    def test_replayable(self, client_with_engine) -> None:
        client, engine = client_with_engine
        engine.admin.can_replay.return_value = Result.success(
            ReplayEligibility(False, ErrDeliveryNotTerminal.message)
        )
        body = client.get("/api/v1/deliveries/dlv-1/replayable", headers=HEADERS).json()
        assert body == {"allowed": False, "reason": ErrDeliveryNotTerminal.message}

    def test_replay_history(self, client_with_engine) -> None:
        client, engine = client_with_engine
        engine.admin.replay_history.return_value = Result.success(
            [
                _make_delivery("dlv-3", replayed_from="dlv-1"),
                _make_delivery("dlv-2", replayed_from="dlv-1"),
            ]
        )
        resp = client.get("/api/v1/deliveries/dlv-1/replays", headers=HEADERS)
        assert resp.status_code == 200
        assert [d["id"] for d in resp.json()] == ["dlv-3", "dlv-2"]

    def test_replay_chain(self, client_with_engine) -> None:
        client, engine = client_with_engine
        engine.admin.replay_chain.return_value = Result.success(
            [_make_delivery("dlv-1"), _make_delivery("dlv-2", replayed_from="dlv-1")]
        )
        body = client.get("/api/v1/deliveries/dlv-2/chain", headers=HEADERS).json()
        assert [d["id"] for d in body] == ["dlv-1", "dlv-2"]
        assert engine.admin.replay_chain.call_args.args[1] == "dlv-2"

    def test_replay_chain_unknown(self, client_with_engine) -> None:
        client, engine = client_with_engine
        engine.admin.replay_chain.return_value = Result.failure(ErrDeliveryNotFound)
        assert client.get("/api/v1/deliveries/x/chain", headers=HEADERS).status_code == 404


class TestEventRoutes:
    def test_list_event_types(self, client_with_engine) -> None:
        client, _ = client_with_engine
        body = client.get("/api/v1/events").json()
        assert "contact.created" in body["events"]
        assert body["families"]["deal"] == [
            "deal.created",
            "deal.deleted",
            "deal.lost",
            "deal.updated",
            "deal.won",
        ]
        assert body["wildcards"][0] == "*"
        assert "contact.*" in body["wildcards"]

    def test_emit(self, client_with_engine) -> None:
        client, engine = client_with_engine
        engine.dispatcher.dispatch.return_value = [_make_delivery("dlv-7")]
        resp = client.post(
            "/api/v1/events",
            headers=HEADERS,
            json={"event": "contact.created", "data": {"id": 1}},
        )
        assert resp.status_code == 202
        assert resp.json() == {"event": "contact.created", "deliveries": ["dlv-7"]}
        engine.dispatcher.dispatch.assert_awaited_once_with(
            "ws-alpha", "contact.created", {"id": 1}
        )


class TestAuditRoutes:
    def test_audit(self, client_with_engine) -> None:
        client, engine = client_with_engine
        engine.admin.audit_log.return_value = Result.success([])
        resp = client.get("/api/v1/audit?action=secret_revoked", headers=HEADERS)
        assert resp.json() == {"items": [], "page": 1, "page_size": 50}
        assert engine.admin.audit_log.call_args.kwargs["action"] == "secret_revoked"

    def test_report(self, client_with_engine) -> None:
        client, engine = client_with_engine
        engine.admin.workspace_report.return_value = Result.success(
            WorkspaceReport(
                workspace_id="ws-alpha",
                total_webhooks=1,
                active_webhooks=1,
                healthy_webhooks=0,
                total_deliveries=4,
                success_rate=75.0,
                webhooks=[_make_health()],
            )
        )
        body = client.get("/api/v1/report", headers=HEADERS).json()
        assert body["total_deliveries"] == 4
        assert body["webhooks"][0]["last_delivery_at"] == "2026-03-01T12:00:00Z"
