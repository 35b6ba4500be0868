"""V1 webhook endpoints.

Registration, updates, secret rotation and revocation, test sends, endpoint
verification, per-webhook health and replay stats. Every route is scoped to
the caller's workspace.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, Query

from webhook_relay.api.dependencies import CallerDep, EngineDep  # noqa: TC001
from webhook_relay.api.v1.schemas import (
    AuditEntryResponse,
    DeliveryResponse,
    ReplayStatsResponse,
    RevokeSecretRequest,
    RevokeSecretResponse,
    RotateSecretRequest,
    RotateSecretResponse,
    SecretResponse,
    TestDeliveryResponse,
    VerificationResponse,
    WebhookCreatedResponse,
    WebhookCreateRequest,
    WebhookHealthResponse,
    WebhookResponse,
    WebhookUpdateRequest,
)

if TYPE_CHECKING:
    from webhook_relay.engine.services.secret_service import RotationResult

router = APIRouter(tags=["webhooks"])


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _webhook_resp(webhook: object) -> dict:
    return WebhookResponse.model_validate(webhook).model_dump(mode="json")


def _rotation_resp(result: RotationResult) -> RotateSecretResponse:
    return RotateSecretResponse(
        secret=result.raw_secret,
        secret_id=result.secret_id,
        secret_prefix=result.secret_prefix,
        previous_secret_id=result.previous_secret_id,
        grace_period_ends=result.grace_period_ends,
    )


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------


@router.post("/webhooks", status_code=201)
async def create_webhook(body: WebhookCreateRequest, caller: CallerDep, engine: EngineDep) -> dict:
    """Register a webhook; the response carries its secret exactly once."""
    created = (
        await engine.admin.create_webhook(
            caller,
            name=body.name,
            url=body.url,
            events=body.events,
            description=body.description,
            is_active=body.is_active,
            custom_secret=body.secret,
        )
    ).unwrap()
    return WebhookCreatedResponse(
        webhook=WebhookResponse.model_validate(created.webhook),
        secret=created.raw_secret,
        secret_id=created.secret_id,
        secret_prefix=created.secret_prefix,
    ).model_dump(mode="json")


@router.get("/webhooks")
async def list_webhooks(
    caller: CallerDep,
    engine: EngineDep,
    is_active: bool | None = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
) -> dict:
    """List the workspace's webhooks."""
    result = await engine.admin.list_webhooks(
        caller, is_active=is_active, page=page, page_size=page_size
    )
    webhooks = result.unwrap()
    return {
        "items": [_webhook_resp(w) for w in webhooks],
        "page": page,
        "page_size": page_size,
    }


@router.get("/webhooks/{webhook_id}")
async def get_webhook(webhook_id: str, caller: CallerDep, engine: EngineDep) -> dict:
    """Get one webhook."""
    return _webhook_resp((await engine.admin.get_webhook(caller, webhook_id)).unwrap())


@router.patch("/webhooks/{webhook_id}")
async def update_webhook(
    webhook_id: str,
    body: WebhookUpdateRequest,
    caller: CallerDep,
    engine: EngineDep,
) -> dict:
    """Apply a partial update."""
    changes = body.model_dump(exclude_unset=True)
    webhook = (await engine.admin.update_webhook(caller, webhook_id, **changes)).unwrap()
    return _webhook_resp(webhook)


@router.post("/webhooks/{webhook_id}/activate")
async def activate_webhook(webhook_id: str, caller: CallerDep, engine: EngineDep) -> dict:
    """Resume dispatching events to this webhook."""
    return _webhook_resp((await engine.admin.activate(caller, webhook_id)).unwrap())


@router.post("/webhooks/{webhook_id}/deactivate")
async def deactivate_webhook(webhook_id: str, caller: CallerDep, engine: EngineDep) -> dict:
    """Stop dispatching new events; queued deliveries still drain."""
    return _webhook_resp((await engine.admin.deactivate(caller, webhook_id)).unwrap())


@router.delete("/webhooks/{webhook_id}")
async def delete_webhook(webhook_id: str, caller: CallerDep, engine: EngineDep) -> dict:
    """Delete a webhook with its secrets and queued deliveries."""
    purged = (await engine.admin.delete_webhook(caller, webhook_id)).unwrap()
    return {"deleted": True, "purged_deliveries": purged}


# ---------------------------------------------------------------------------
# Secrets
# ---------------------------------------------------------------------------


@router.get("/webhooks/{webhook_id}/secrets")
async def list_secrets(webhook_id: str, caller: CallerDep, engine: EngineDep) -> list[dict]:
    """Secret metadata, newest first; raw secrets are never returned."""
    secrets = (await engine.admin.list_secrets(caller, webhook_id)).unwrap()
    return [SecretResponse.model_validate(s).model_dump(mode="json") for s in secrets]


@router.post("/webhooks/{webhook_id}/secrets/rotate")
async def rotate_secret(
    webhook_id: str,
    caller: CallerDep,
    engine: EngineDep,
    body: RotateSecretRequest | None = None,
) -> dict:
    """Issue a new secret; the previous one verifies until its grace period ends."""
    body = body or RotateSecretRequest()
    result = (
        await engine.admin.rotate_secret(
            caller,
            webhook_id,
            grace_period_hours=body.grace_period_hours,
            custom_secret=body.custom_secret,
        )
    ).unwrap()
    return _rotation_resp(result).model_dump(mode="json")


@router.post("/secrets/{secret_id}/revoke")
async def revoke_secret(
    secret_id: str,
    caller: CallerDep,
    engine: EngineDep,
    body: RevokeSecretRequest | None = None,
) -> dict:
    """Expire a secret immediately."""
    reason = body.reason if body else None
    result = (await engine.admin.revoke_secret(caller, secret_id, reason)).unwrap()
    return RevokeSecretResponse(
        secret_id=result.secret_id,
        revoked_at=result.revoked_at,
        replacement=_rotation_resp(result.replacement) if result.replacement else None,
    ).model_dump(mode="json")


# ---------------------------------------------------------------------------
# Test send, verification, health, audit
# ---------------------------------------------------------------------------


@router.post("/webhooks/{webhook_id}/test")
async def send_test(webhook_id: str, caller: CallerDep, engine: EngineDep) -> dict:
    """Deliver a ``webhook.test`` event now and report the outcome."""
    result = (await engine.admin.send_test(caller, webhook_id)).unwrap()
    return TestDeliveryResponse(
        success=result.success,
        status_code=result.status_code,
        response_time_ms=result.response_time_ms,
        error=result.error,
        delivery=DeliveryResponse.model_validate(result.delivery),
    ).model_dump(mode="json")


@router.post("/webhooks/{webhook_id}/verify")
async def verify_endpoint(webhook_id: str, caller: CallerDep, engine: EngineDep) -> dict:
    """Send a signed challenge to the webhook URL; it must echo the challenge back."""
    result = (await engine.admin.verify_endpoint(caller, webhook_id)).unwrap()
    return VerificationResponse.model_validate(result).model_dump(mode="json")


@router.get("/webhooks/{webhook_id}/health")
async def webhook_health(webhook_id: str, caller: CallerDep, engine: EngineDep) -> dict:
    """Success rate, failure streak and last error."""
    health = (await engine.admin.webhook_health(caller, webhook_id)).unwrap()
    return WebhookHealthResponse.model_validate(health).model_dump(mode="json")


@router.get("/webhooks/{webhook_id}/replays/stats")
async def replay_stats(webhook_id: str, caller: CallerDep, engine: EngineDep) -> dict:
    """How the replays queued for this webhook went."""
    stats = (await engine.admin.replay_stats(caller, webhook_id)).unwrap()
    return ReplayStatsResponse.model_validate(stats).model_dump(mode="json")


@router.get("/webhooks/{webhook_id}/audit")
async def webhook_audit(
    webhook_id: str,
    caller: CallerDep,
    engine: EngineDep,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
) -> list[dict]:
    """Audit trail of one webhook, newest first."""
    (await engine.admin.get_webhook(caller, webhook_id)).unwrap()
    entries = (
        await engine.admin.audit_log(caller, webhook_id=webhook_id, page=page, page_size=page_size)
    ).unwrap()
    return [AuditEntryResponse.model_validate(e).model_dump(mode="json") for e in entries]
