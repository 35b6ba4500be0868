"""Administrative facade: workspace-scoped operations returning ``Result``.

Every method is bound to the caller's workspace and reports expected failures
(not found, validation, conflicts) as a failed :class:`Result` rather than an
exception. The HTTP API and any other admin surface build on this.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from webhook_relay.errors.result import Result, capture

if TYPE_CHECKING:
    from webhook_relay.engine.client import WebhookEngine
    from webhook_relay.engine.models.audit_log import AuditLogEntry
    from webhook_relay.engine.models.delivery import DeliveryAttempt
    from webhook_relay.engine.models.webhook import Webhook
    from webhook_relay.engine.models.webhook_secret import WebhookSecret
    from webhook_relay.engine.services.delivery_service import ReplayEligibility
    from webhook_relay.engine.services.dispatch_service import (
        EndpointVerification,
        SendTestResult,
    )
    from webhook_relay.engine.services.registry_service import WebhookCreated
    from webhook_relay.engine.services.secret_service import RevokeResult, RotationResult
    from webhook_relay.engine.services.stats_service import (
        ReplayStats,
        WebhookHealth,
        WorkspaceReport,
    )


@dataclass(frozen=True)
class Caller:
    """Who is acting, and from where; recorded on audit entries."""

    workspace_id: str
    user_id: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None

    @property
    def actor(self) -> str:
        return self.user_id or "system"


class WebhookAdmin:
    """Workspace-scoped management of webhooks, secrets and deliveries."""

    def __init__(self, engine: WebhookEngine) -> None:
        self._engine = engine

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    async def create_webhook(
        self,
        caller: Caller,
        *,
        name: str,
        url: str,
        events: list[str],
        description: str | None = None,
        is_active: bool = True,
        custom_secret: str | None = None,
    ) -> Result[WebhookCreated]:
        return await capture(
            self._engine.registry.create(
                caller.workspace_id,
                name=name,
                url=url,
                events=events,
                description=description,
                is_active=is_active,
                custom_secret=custom_secret,
                created_by=caller.user_id,
                ip_address=caller.ip_address,
                user_agent=caller.user_agent,
            )
        )

    async def get_webhook(self, caller: Caller, webhook_id: str) -> Result[Webhook]:
        return await capture(self._engine.registry.get(caller.workspace_id, webhook_id))

    async def list_webhooks(
        self,
        caller: Caller,
        *,
        is_active: bool | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> Result[list[Webhook]]:
        return await capture(
            self._engine.registry.list(
                caller.workspace_id, is_active=is_active, page=page, page_size=page_size
            )
        )

    async def update_webhook(
        self, caller: Caller, webhook_id: str, **changes: Any
    ) -> Result[Webhook]:
        """Apply partial changes (``name``, ``url``, ``events``, ``description``, ``is_active``)."""
        return await capture(
            self._engine.registry.update(
                caller.workspace_id,
                webhook_id,
                updated_by=caller.user_id,
                ip_address=caller.ip_address,
                user_agent=caller.user_agent,
                **changes,
            )
        )

    async def activate(self, caller: Caller, webhook_id: str) -> Result[Webhook]:
        return await self.update_webhook(caller, webhook_id, is_active=True)

    async def deactivate(self, caller: Caller, webhook_id: str) -> Result[Webhook]:
        """Stop new dispatches; already queued attempts still drain."""
        return await self.update_webhook(caller, webhook_id, is_active=False)

    async def delete_webhook(self, caller: Caller, webhook_id: str) -> Result[int]:
        """Delete a webhook, its secrets and its queued attempts.

        Returns:
            Number of delivery attempts purged with it.
        """
        return await capture(
            self._engine.registry.delete(
                caller.workspace_id,
                webhook_id,
                deleted_by=caller.user_id,
                ip_address=caller.ip_address,
                user_agent=caller.user_agent,
            )
        )

    # ------------------------------------------------------------------
    # Secrets
    # ------------------------------------------------------------------

    async def rotate_secret(
        self,
        caller: Caller,
        webhook_id: str,
        *,
        grace_period_hours: float | None = None,
        custom_secret: str | None = None,
    ) -> Result[RotationResult]:
        return await capture(
            self._engine.secrets.rotate(
                webhook_id,
                caller.actor,
                grace_period_hours,
                custom_secret,
                workspace_id=caller.workspace_id,
                ip_address=caller.ip_address,
                user_agent=caller.user_agent,
            )
        )

    async def revoke_secret(
        self,
        caller: Caller,
        secret_id: str,
        reason: str | None = None,
    ) -> Result[RevokeResult]:
        return await capture(
            self._engine.secrets.revoke(
                secret_id,
                caller.actor,
                reason,
                workspace_id=caller.workspace_id,
                ip_address=caller.ip_address,
                user_agent=caller.user_agent,
            )
        )

    async def list_secrets(self, caller: Caller, webhook_id: str) -> Result[list[WebhookSecret]]:
        """Secret metadata of a webhook (never the raw secret)."""

        async def _list() -> list[WebhookSecret]:
            await self._engine.registry.get(caller.workspace_id, webhook_id)
            return await self._engine.secrets.list_secrets(webhook_id)

        return await capture(_list())

    # ------------------------------------------------------------------
    # Deliveries
    # ------------------------------------------------------------------

    async def send_test(self, caller: Caller, webhook_id: str) -> Result[SendTestResult]:
        return await capture(
            self._engine.dispatcher.send_test(caller.workspace_id, webhook_id, caller.user_id)
        )

    async def verify_endpoint(
        self, caller: Caller, webhook_id: str
    ) -> Result[EndpointVerification]:
        """Challenge the webhook URL; verified only when the challenge is echoed back."""
        return await capture(
            self._engine.dispatcher.verify_endpoint(
                caller.workspace_id, webhook_id, caller.user_id
            )
        )

    async def list_deliveries(
        self,
        caller: Caller,
        *,
        webhook_id: str | None = None,
        status: str | None = None,
        event_type: str | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> Result[list[DeliveryAttempt]]:
        return await capture(
            self._engine.deliveries.list(
                caller.workspace_id,
                webhook_id=webhook_id,
                status=status,
                event_type=event_type,
                page=page,
                page_size=page_size,
            )
        )

    async def get_delivery(self, caller: Caller, delivery_id: str) -> Result[DeliveryAttempt]:
        return await capture(self._engine.deliveries.get(caller.workspace_id, delivery_id))

    async def replay_delivery(self, caller: Caller, delivery_id: str) -> Result[DeliveryAttempt]:
        return await capture(
            self._engine.deliveries.replay(
                caller.workspace_id,
                delivery_id,
                caller.user_id,
                ip_address=caller.ip_address,
                user_agent=caller.user_agent,
            )
        )

    async def can_replay(self, caller: Caller, delivery_id: str) -> Result[ReplayEligibility]:
        return await capture(self._engine.deliveries.can_replay(caller.workspace_id, delivery_id))

    async def replay_history(
        self, caller: Caller, delivery_id: str
    ) -> Result[list[DeliveryAttempt]]:
        return await capture(
            self._engine.deliveries.replay_history(caller.workspace_id, delivery_id)
        )

    async def replay_chain(self, caller: Caller, delivery_id: str) -> Result[list[DeliveryAttempt]]:
        """The original delivery and every replay descended from it, oldest first."""
        return await capture(
            self._engine.deliveries.replay_chain(caller.workspace_id, delivery_id)
        )

    async def replay_stats(self, caller: Caller, webhook_id: str) -> Result[ReplayStats]:
        return await capture(self._engine.stats.replay_stats(caller.workspace_id, webhook_id))

    # ------------------------------------------------------------------
    # Health and audit
    # ------------------------------------------------------------------

    async def webhook_health(self, caller: Caller, webhook_id: str) -> Result[WebhookHealth]:
        return await capture(self._engine.stats.webhook_health(caller.workspace_id, webhook_id))

    async def workspace_report(self, caller: Caller) -> Result[WorkspaceReport]:
        return await capture(self._engine.stats.workspace_report(caller.workspace_id))

    async def audit_log(
        self,
        caller: Caller,
        *,
        webhook_id: str | None = None,
        action: str | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> Result[list[AuditLogEntry]]:
        return await capture(
            self._engine.audit.list(
                caller.workspace_id,
                webhook_id=webhook_id,
                action=action,
                page=page,
                page_size=page_size,
            )
        )
