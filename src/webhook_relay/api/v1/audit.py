"""V1 audit and reporting endpoints."""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Query

from webhook_relay.api.dependencies import CallerDep, EngineDep  # noqa: TC001
from webhook_relay.api.v1.schemas import AuditEntryResponse, WebhookHealthResponse

router = APIRouter(tags=["audit"])


@router.get("/audit")
async def list_audit_entries(
    caller: CallerDep,
    engine: EngineDep,
    webhook_id: str | None = None,
    action: str | None = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
) -> dict:
    """Workspace audit trail, newest first."""
    entries = (
        await engine.admin.audit_log(
            caller, webhook_id=webhook_id, action=action, page=page, page_size=page_size
        )
    ).unwrap()
    return {
        "items": [AuditEntryResponse.model_validate(e).model_dump(mode="json") for e in entries],
        "page": page,
        "page_size": page_size,
    }


@router.get("/report")
async def workspace_report(caller: CallerDep, engine: EngineDep) -> dict:
    """Delivery health of every webhook in the workspace."""
    report = (await engine.admin.workspace_report(caller)).unwrap()
    body = asdict(report)
    body["webhooks"] = [
        WebhookHealthResponse.model_validate(h).model_dump(mode="json") for h in report.webhooks
    ]
    return body
