"""Shared test fixtures for the webhook-relay test suite."""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta

import httpx
import pytest

from webhook_relay.config.settings import DatabaseEngine

WORKSPACE = "ws-alpha"
OTHER_WORKSPACE = "ws-beta"
HOOK_URL = "https://hooks.example.com/crm"


class FakeClock:
    """Controllable UTC clock passed to the engine."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 3, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float = 0, *, hours: float = 0) -> None:
        self.current += timedelta(seconds=seconds, hours=hours)


class FakeEndpoint:
    """Scriptable subscriber endpoint served through ``httpx.MockTransport``.

    ``statuses`` is consumed one per request; once empty every request gets
    ``default_status``. Set ``error`` to raise a transport error instead, or
    ``echo_challenge`` to answer verification requests like a real receiver.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.statuses: list[int] = []
        self.default_status = 200
        self.error: type[httpx.TransportError] | None = None
        self.echo_challenge = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error("connection refused", request=request)
        status = self.statuses.pop(0) if self.statuses else self.default_status
        if self.echo_challenge and status < 300:
            challenge = json.loads(request.content)["data"].get("challenge")
            return httpx.Response(status, json={"challenge": challenge})
        return httpx.Response(status, text="ok" if status < 300 else "upstream broke")

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def app_config():
    """Provide a test AppConfig: in-memory SQLite, no background loops."""
    from webhook_relay.config.settings import (
        AppConfig,
        DatabaseConfig,
        DeliveryConfig,
        NotificationsConfig,
        TaskConfig,
    )

    return AppConfig(
        debug=True,
        db=DatabaseConfig(
            engine=DatabaseEngine.SQLITE,
            dsn="sqlite+aiosqlite:///:memory:",
        ),
        delivery=DeliveryConfig(enabled=False, max_concurrency=1),
        notifications=NotificationsConfig(enabled=False),
        task=TaskConfig(enabled=False),
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def endpoint() -> FakeEndpoint:
    return FakeEndpoint()


@pytest.fixture
async def engine(app_config, clock, endpoint):
    """Initialized engine on in-memory SQLite with a fake clock and endpoint."""
    from webhook_relay.engine.client import WebhookEngine

    eng = WebhookEngine(app_config, clock=clock, transport=endpoint.transport)
    await eng.initialize()
    yield eng
    await eng.close()


@pytest.fixture
def worker(engine):
    """Delivery worker driven manually through ``run_once``."""
    from webhook_relay.notifications.webhook import DeliveryWorker

    return DeliveryWorker(engine, worker_id="worker-test")


@pytest.fixture
def make_webhook(engine):
    """Factory registering a webhook in a workspace."""

    async def _make(
        workspace_id: str = WORKSPACE,
        *,
        events: list[str] | None = None,
        url: str = HOOK_URL,
        name: str = "CRM sync",
        is_active: bool = True,
        custom_secret: str | None = None,
    ):
        return await engine.registry.create(
            workspace_id,
            name=name,
            url=url,
            events=events if events is not None else ["contact.created"],
            created_by="user-1",
            is_active=is_active,
            custom_secret=custom_secret,
        )

    return _make


@pytest.fixture
def test_client(app_config):
    """Provide a FastAPI TestClient with the app wired to test config."""
    from fastapi.testclient import TestClient

    from webhook_relay.api.app import create_app

    app = create_app(config=app_config)
    return TestClient(app, raise_server_exceptions=False)
