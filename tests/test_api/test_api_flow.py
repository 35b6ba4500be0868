"""End-to-end admin API flow against a real engine on in-memory SQLite."""

from __future__ import annotations

from fastapi.testclient import TestClient

from webhook_relay.api.app import create_app

ALPHA = {"x-workspace-id": "ws-alpha", "x-user-id": "user-1"}
BETA = {"x-workspace-id": "ws-beta", "x-user-id": "user-2"}


def test_register_emit_rotate_delete(app_config) -> None:
    with TestClient(create_app(config=app_config)) as client:
        resp = client.post(
            "/api/v1/webhooks",
            headers=ALPHA,
            json={
                "name": "CRM sync",
                "url": "https://hooks.example.com/crm",
                "events": ["contact.*"],
            },
        )
        assert resp.status_code == 201
        created = resp.json()
        webhook_id = created["webhook"]["id"]
        assert len(created["secret"]) == 64

        # Other tenants cannot see it
        assert client.get(f"/api/v1/webhooks/{webhook_id}", headers=BETA).status_code == 404
        assert client.get("/api/v1/webhooks", headers=BETA).json()["items"] == []

        resp = client.post(
            "/api/v1/events",
            headers=ALPHA,
            json={"event": "contact.updated", "data": {"id": 3, "email": "a@example.com"}},
        )
        assert resp.status_code == 202
        [delivery_id] = resp.json()["deliveries"]

        delivery = client.get(f"/api/v1/deliveries/{delivery_id}", headers=ALPHA).json()
        assert delivery["status"] == "pending"
        assert delivery["payload"]["event"] == "contact.updated"
        assert client.post(
            f"/api/v1/deliveries/{delivery_id}/replay", headers=ALPHA
        ).json()["code"] == "delivery-not-terminal"

        bad = client.post(
            "/api/v1/events", headers=ALPHA, json={"event": "contact.exploded", "data": {}}
        )
        assert bad.status_code == 400

        rotated = client.post(
            f"/api/v1/webhooks/{webhook_id}/secrets/rotate",
            headers=ALPHA,
            json={"grace_period_hours": 2},
        ).json()
        assert rotated["previous_secret_id"] == created["secret_id"]

        secrets = client.get(f"/api/v1/webhooks/{webhook_id}/secrets", headers=ALPHA).json()
        assert len(secrets) == 2
        assert sum(s["is_active"] for s in secrets) == 1

        revoked = client.post(
            f"/api/v1/secrets/{rotated['secret_id']}/revoke",
            headers=ALPHA,
            json={"reason": "pasted in chat"},
        ).json()
        assert revoked["replacement"] is not None

        actions = [
            e["action"]
            for e in client.get(f"/api/v1/webhooks/{webhook_id}/audit", headers=ALPHA).json()
        ]
        assert set(actions) == {"webhook_created", "secret_rotated", "secret_revoked"}

        health = client.get(f"/api/v1/webhooks/{webhook_id}/health", headers=ALPHA).json()
        assert health["pending"] == 1

        report = client.get("/api/v1/report", headers=ALPHA).json()
        assert report["total_webhooks"] == 1

        deleted = client.delete(f"/api/v1/webhooks/{webhook_id}", headers=ALPHA).json()
        assert deleted == {"deleted": True, "purged_deliveries": 1}
        assert client.get("/api/v1/deliveries", headers=ALPHA).json()["items"] == []
