"""FastAPI dependency injection helpers.

Provides ``Depends()``-compatible callables for engine access and the
caller's workspace context in route handlers.

Usage in a route::

    @router.get("/webhooks")
    async def list_webhooks(
        caller: Annotated[Caller, Depends(get_caller)],
        engine: Annotated[WebhookEngine, Depends(get_engine)],
    ) -> ...:
        ...
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Header, Request

from webhook_relay.engine.admin import Caller
from webhook_relay.engine.client import WebhookEngine  # noqa: TC001
from webhook_relay.errors.definitions import ErrEngineNotReady, ErrMissingWorkspace

HEADER_WORKSPACE = "x-workspace-id"
HEADER_USER = "x-user-id"

# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def get_engine(request: Request) -> WebhookEngine:
    """Retrieve the engine from ``app.state``.

    The engine is stored on ``app.state.engine`` during lifespan startup.

    Raises:
        ErrEngineNotReady: If the engine is not initialized.
    """
    engine: WebhookEngine | None = getattr(request.app.state, "engine", None)
    if engine is None:
        raise ErrEngineNotReady
    return engine


# ---------------------------------------------------------------------------
# Caller context
# ---------------------------------------------------------------------------


def get_caller(
    request: Request,
    x_workspace_id: Annotated[str, Header(alias=HEADER_WORKSPACE)] = "",
    x_user_id: Annotated[str, Header(alias=HEADER_USER)] = "",
    user_agent: Annotated[str, Header(alias="user-agent")] = "",
) -> Caller:
    """Build the acting caller from request headers.

    The upstream gateway authenticates users and forwards the workspace
    they act in; every admin route is scoped to it.

    Raises:
        ErrMissingWorkspace: No ``x-workspace-id`` header.
    """
    workspace_id = x_workspace_id.strip()
    if not workspace_id:
        raise ErrMissingWorkspace
    return Caller(
        workspace_id=workspace_id,
        user_id=x_user_id.strip() or None,
        ip_address=request.client.host if request.client else None,
        user_agent=user_agent or None,
    )


CallerDep = Annotated[Caller, Depends(get_caller)]
EngineDep = Annotated[WebhookEngine, Depends(get_engine)]
