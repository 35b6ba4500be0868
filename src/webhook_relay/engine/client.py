"""WebhookEngine: central engine client owning all services."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from webhook_relay.errors.webhook_errors import ValidationError
from webhook_relay.notifications.events import DomainEvent, validate_payload
from webhook_relay.utils.crypto import utcnow

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    import httpx

    from webhook_relay.config.settings import AppConfig
    from webhook_relay.datastore.client import Datastore
    from webhook_relay.engine.admin import WebhookAdmin
    from webhook_relay.engine.services.audit_service import AuditLog
    from webhook_relay.engine.services.delivery_service import DeliveryQueue
    from webhook_relay.engine.services.dispatch_service import Dispatcher
    from webhook_relay.engine.services.registry_service import WebhookRegistry
    from webhook_relay.engine.services.secret_service import SecretManager
    from webhook_relay.engine.services.stats_service import DeliveryStats
    from webhook_relay.metrics.collector import WebhookMetrics
    from webhook_relay.notifications.service import NotificationService
    from webhook_relay.notifications.webhook import DeliveryWorker, WebhookSender
    from webhook_relay.taskmanager.manager import TaskManager

logger = logging.getLogger(__name__)

# Error messages
_ERR_NOT_INITIALIZED = "Engine not initialized. Call initialize() first."


class WebhookEngine:
    """Central engine that owns all services and infrastructure.

    Provides lifecycle management and the service registry every component
    reaches its collaborators through.
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        clock: Callable[[], datetime] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        metrics: WebhookMetrics | None = None,
    ) -> None:
        """Initialize engine with configuration.

        Args:
            config: Application configuration.
            clock: Returns the current UTC time; defaults to the wall clock.
                Tests pass a controllable clock to step through backoff.
            transport: Optional httpx transport for outbound deliveries.
            metrics: Shared metrics (the API exposes their registry); created
                from ``metrics.enabled`` when omitted.
        """
        self._config = config
        self._clock = clock or utcnow
        self._transport = transport
        self._initialized = False

        # Infrastructure components
        self._datastore: Datastore | None = None

        # Services
        self._audit: AuditLog | None = None
        self._secrets: SecretManager | None = None
        self._registry: WebhookRegistry | None = None
        self._deliveries: DeliveryQueue | None = None
        self._dispatcher: Dispatcher | None = None
        self._stats: DeliveryStats | None = None
        self._admin: WebhookAdmin | None = None
        self._sender: WebhookSender | None = None
        self._worker: DeliveryWorker | None = None
        self._task_manager: TaskManager | None = None
        self._metrics: WebhookMetrics | None = metrics
        self._notifications: NotificationService | None = None

        # Strong references to fire-and-forget dispatches
        self._pending: set[asyncio.Task[Any]] = set()

    async def initialize(self) -> None:
        """Initialize datastore, run migrations, and start services.

        Raises:
            RuntimeError: If already initialized.
        """
        if self._initialized:
            msg = "Engine already initialized"
            raise RuntimeError(msg)

        # Import here to avoid circular deps
        from webhook_relay.datastore.client import Datastore
        from webhook_relay.datastore.migrations import run_auto_migrate

        self._datastore = Datastore(self._config.db)
        await self._datastore.open()
        await run_auto_migrate(self._datastore.engine)

        from webhook_relay.metrics.collector import WebhookMetrics

        if self._metrics is None and self._config.metrics.enabled:
            self._metrics = WebhookMetrics()

        from webhook_relay.engine.admin import WebhookAdmin
        from webhook_relay.engine.services.audit_service import AuditLog
        from webhook_relay.engine.services.delivery_service import DeliveryQueue
        from webhook_relay.engine.services.dispatch_service import Dispatcher
        from webhook_relay.engine.services.registry_service import WebhookRegistry
        from webhook_relay.engine.services.secret_service import SecretManager
        from webhook_relay.engine.services.stats_service import DeliveryStats

        self._audit = AuditLog(self)
        self._secrets = SecretManager(self)
        self._registry = WebhookRegistry(self)
        self._deliveries = DeliveryQueue(self)
        self._dispatcher = Dispatcher(self)
        self._stats = DeliveryStats(self)
        self._admin = WebhookAdmin(self)

        from webhook_relay.notifications.webhook import DeliveryWorker, WebhookSender

        self._sender = WebhookSender(
            self._config.delivery, transport=self._transport, metrics=self._metrics
        )
        await self._sender.start()

        from webhook_relay.notifications.service import NotificationService

        if self._config.notifications.enabled:
            self._notifications = NotificationService(buffer=self._config.notifications.buffer)
            self._notifications.add_subscriber("dispatcher", self._dispatcher.dispatch_event)
            await self._notifications.start()

        if self._config.delivery.enabled:
            self._worker = DeliveryWorker(self)
            await self._worker.start()

        # Initialize task manager and register cron jobs
        from functools import partial

        from webhook_relay.taskmanager.manager import CronJob, TaskManager
        from webhook_relay.taskmanager.tasks import (
            task_calculate_metrics,
            task_cleanup_expired_secrets,
            task_purge_audit_log,
            task_purge_deliveries,
            task_reclaim_stale_leases,
        )

        if self._config.task.enabled:
            periods = self._config.task
            self._task_manager = TaskManager(metrics=self._metrics)
            self._task_manager.register(
                "reclaim_leases",
                CronJob(
                    handler=partial(task_reclaim_stale_leases, self),
                    period=periods.reclaim_leases_period,
                    run_on_start=True,
                ),
            )
            self._task_manager.register(
                "secret_cleanup",
                CronJob(
                    handler=partial(task_cleanup_expired_secrets, self),
                    period=periods.secret_cleanup_period,
                ),
            )
            self._task_manager.register(
                "delivery_retention",
                CronJob(
                    handler=partial(task_purge_deliveries, self),
                    period=periods.delivery_retention_period,
                ),
            )
            self._task_manager.register(
                "audit_retention",
                CronJob(
                    handler=partial(task_purge_audit_log, self),
                    period=periods.audit_retention_period,
                ),
            )
            if self._metrics is not None:
                self._task_manager.register(
                    "calculate_metrics",
                    CronJob(
                        handler=partial(task_calculate_metrics, self, self._metrics),
                        period=periods.calculate_metrics_period,
                    ),
                )
            await self._task_manager.start()

        self._initialized = True
        logger.info("Webhook engine initialized (%s)", self._config.db.engine)

    async def close(self) -> None:
        """Gracefully shut down all services and connections.

        Can be called multiple times (idempotent).
        """
        if not self._initialized:
            return

        # Stop background work first (depends on services); accepted events
        # are fanned out into the queue before the bus goes away
        if self._notifications is not None:
            await self._notifications.stop(
                drain_timeout=self._config.notifications.drain_timeout
            )
            self._notifications = None
        if self._task_manager is not None:
            await self._task_manager.stop()
            self._task_manager = None
        if self._worker is not None:
            await self._worker.stop()
            self._worker = None
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
            self._pending.clear()

        if self._sender is not None:
            await self._sender.close()
            self._sender = None

        # Tear down services
        self._admin = None
        self._stats = None
        self._dispatcher = None
        self._deliveries = None
        self._registry = None
        self._secrets = None
        self._audit = None

        if self._datastore is not None:
            await self._datastore.close()
            self._datastore = None

        self._initialized = False

    def now(self) -> datetime:
        """Current UTC time from the engine clock."""
        return self._clock()

    # ------------------------------------------------------------------
    # Event intake
    # ------------------------------------------------------------------

    def emit_domain_event(self, workspace_id: str, event_type: str, data: dict[str, Any]) -> bool:
        """Hand an event from the CRM to the dispatcher without waiting.

        Validation problems are logged and reported as ``False``; they never
        propagate into the caller's operation.

        Returns:
            Whether the event was accepted for dispatch.
        """
        try:
            payload = validate_payload(event_type, data)
        except ValidationError as exc:
            logger.warning(
                "Rejected %s event for workspace %s: %s", event_type, workspace_id, exc.message
            )
            return False

        event = DomainEvent(workspace_id, event_type, payload)
        if self._notifications is not None:
            return self._notifications.publish(event)

        task = asyncio.get_running_loop().create_task(self._dispatch_detached(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return True

    async def _dispatch_detached(self, event: DomainEvent) -> None:
        try:
            await self.dispatcher.dispatch_event(event)
        except Exception:
            logger.exception(
                "Dispatch of %s for workspace %s failed", event.type, event.workspace_id
            )

    async def flush_events(self) -> None:
        """Wait until every emitted event has been dispatched."""
        if self._notifications is not None:
            await self._notifications.join()
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def is_initialized(self) -> bool:
        """Check if the engine is initialized."""
        return self._initialized

    @property
    def config(self) -> AppConfig:
        """Get the application configuration."""
        return self._config

    @property
    def datastore(self) -> Datastore:
        """Get the datastore instance.

        Raises:
            RuntimeError: If engine not initialized.
        """
        if self._datastore is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._datastore

    @property
    def audit(self) -> AuditLog:
        """Get the audit log."""
        if self._audit is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._audit

    @property
    def secrets(self) -> SecretManager:
        """Get the secret manager."""
        if self._secrets is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._secrets

    @property
    def registry(self) -> WebhookRegistry:
        """Get the webhook registry."""
        if self._registry is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._registry

    @property
    def deliveries(self) -> DeliveryQueue:
        """Get the delivery queue."""
        if self._deliveries is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._deliveries

    @property
    def dispatcher(self) -> Dispatcher:
        """Get the dispatcher."""
        if self._dispatcher is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._dispatcher

    @property
    def stats(self) -> DeliveryStats:
        """Get the delivery statistics service."""
        if self._stats is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._stats

    @property
    def admin(self) -> WebhookAdmin:
        """Get the administration facade."""
        if self._admin is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._admin

    @property
    def sender(self) -> WebhookSender:
        """Get the outbound HTTP sender."""
        if self._sender is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._sender

    @property
    def metrics(self) -> WebhookMetrics | None:
        """Get the relay metrics (None if disabled)."""
        return self._metrics

    @property
    def delivery_worker(self) -> DeliveryWorker | None:
        """Get the background delivery worker (None if disabled)."""
        return self._worker

    @property
    def task_manager(self) -> TaskManager | None:
        """Get the task manager (None if not enabled)."""
        return self._task_manager

    @property
    def notification_service(self) -> NotificationService | None:
        """Get the event bus (None if not enabled)."""
        return self._notifications

    async def health_check(self) -> dict[str, str]:
        """Check health status of all engine components.

        Returns:
            Component statuses: 'ok', 'degraded', 'error', 'disabled' or 'not_initialized'.
        """
        status = {
            "engine": "ok" if self._initialized else "not_initialized",
            "datastore": "unknown",
            "sender": "unknown",
            "worker": "unknown",
            "tasks": "unknown",
        }

        if self._initialized:
            if self._datastore and await self._datastore.ping():
                status["datastore"] = "ok"
            else:
                status["datastore"] = "error"

            if self._sender and self._sender.is_open:
                status["sender"] = "ok"
            else:
                status["sender"] = "error"

            if self._worker is None:
                status["worker"] = "disabled"
            elif self._worker.is_running:
                status["worker"] = "ok"
            else:
                status["worker"] = "error"

            if self._task_manager is None:
                status["tasks"] = "disabled"
            elif not self._task_manager.is_running:
                status["tasks"] = "error"
            elif any(
                self._task_manager.state(name).last_error for name in self._task_manager.jobs
            ):
                status["tasks"] = "degraded"
            else:
                status["tasks"] = "ok"

        return status
