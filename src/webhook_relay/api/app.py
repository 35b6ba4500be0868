"""FastAPI application factory."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest
from starlette.responses import Response

from webhook_relay import __version__
from webhook_relay.api.middleware.cors import setup_cors
from webhook_relay.api.v1 import v1_router
from webhook_relay.config.settings import AppConfig
from webhook_relay.engine.client import WebhookEngine
from webhook_relay.errors.webhook_errors import WebhookError
from webhook_relay.metrics.collector import WebhookMetrics
from webhook_relay.metrics.middleware import PrometheusMiddleware

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Run the engine (datastore, worker, cron jobs) for the app's lifetime."""
    engine = WebhookEngine(app.state.config, metrics=_app_metrics(app))
    try:
        await engine.initialize()
        app.state.engine = engine
        logger.info("Webhook relay engine started")
        yield
    finally:
        await engine.close()
        logger.info("Webhook relay engine stopped")


def _app_metrics(app: FastAPI) -> WebhookMetrics | None:
    return getattr(app.state, "metrics", None)


async def _webhook_error_handler(_request: Request, exc: WebhookError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"code": exc.code, "message": exc.message},
    )


def _register_base_routes(app: FastAPI) -> None:
    @app.get("/health", tags=["base"])
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/health/components", tags=["base"])
    async def health_components(request: Request) -> dict[str, str]:
        engine: WebhookEngine | None = getattr(request.app.state, "engine", None)
        if engine is None:
            return {"engine": "not_initialized"}
        return await engine.health_check()

    @app.get("/metrics", tags=["base"], include_in_schema=False)
    async def metrics_endpoint(request: Request) -> Response:
        """Prometheus exposition of the app's registry (process default when disabled)."""
        metrics = _app_metrics(request.app)
        registry = metrics.registry if metrics is not None else REGISTRY
        return Response(content=generate_latest(registry), media_type=CONTENT_TYPE_LATEST)


def create_app(*, config: AppConfig | None = None) -> FastAPI:
    """Build the relay's HTTP application.

    Args:
        config: Application config; read from the environment when omitted.
    """
    config = config or AppConfig()

    app = FastAPI(
        title="webhook-relay",
        version=__version__,
        description="Signed, durable webhook delivery with secret rotation",
        lifespan=_lifespan,
    )
    app.state.config = config

    setup_cors(app, config.server.cors_origins)
    if config.metrics.enabled:
        app.state.metrics = WebhookMetrics()
        app.add_middleware(PrometheusMiddleware, registry=app.state.metrics.registry)

    app.add_exception_handler(WebhookError, _webhook_error_handler)
    _register_base_routes(app)
    app.include_router(v1_router)
    return app
