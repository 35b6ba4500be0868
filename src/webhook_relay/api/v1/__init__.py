"""V1 REST API routes.

Combines all sub-routers under the ``/api/v1`` prefix.
"""

from fastapi import APIRouter

from webhook_relay.api.v1.audit import router as audit_router
from webhook_relay.api.v1.deliveries import router as deliveries_router
from webhook_relay.api.v1.events import router as events_router
from webhook_relay.api.v1.webhooks import router as webhooks_router

v1_router = APIRouter(prefix="/api/v1")

v1_router.include_router(webhooks_router)
v1_router.include_router(deliveries_router)
v1_router.include_router(events_router)
v1_router.include_router(audit_router)

__all__ = ["v1_router"]
