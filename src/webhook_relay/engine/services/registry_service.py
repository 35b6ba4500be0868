"""Webhook registry: workspace-scoped CRUD over subscriptions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import AnyHttpUrl, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import delete, func, select

from webhook_relay.engine.models.audit_log import AuditAction
from webhook_relay.engine.models.delivery import DeliveryAttempt
from webhook_relay.engine.models.webhook import Webhook
from webhook_relay.engine.models.webhook_secret import WebhookSecret
from webhook_relay.errors.definitions import (
    ErrDescriptionTooLong,
    ErrEmptyEvents,
    ErrHTTPSRequired,
    ErrInvalidName,
    ErrInvalidURL,
    ErrURLTooLong,
    ErrWebhookNotFound,
)
from webhook_relay.errors.webhook_errors import ValidationError
from webhook_relay.notifications.events import is_valid_subscription, matches

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from webhook_relay.engine.client import WebhookEngine

logger = logging.getLogger(__name__)

_URL_ADAPTER: TypeAdapter[AnyHttpUrl] = TypeAdapter(AnyHttpUrl)
_MAX_NAME_LENGTH = 255


@dataclass(frozen=True)
class WebhookCreated:
    """A new webhook and its first raw secret (shown once)."""

    webhook: Webhook
    raw_secret: str
    secret_id: str
    secret_prefix: str


class WebhookRegistry:
    """Create, read, update and delete webhooks inside one workspace.

    Every lookup is filtered by ``workspace_id``; a webhook owned by another
    workspace is indistinguishable from one that does not exist.
    """

    def __init__(self, engine: WebhookEngine) -> None:
        self._engine = engine
        self._config = engine.config.registry

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_url(self, url: str) -> str:
        """Return *url* unchanged if it is an absolute http(s) URL.

        Raises:
            ValidationError: Malformed, too long, or plain http when https is required.
        """
        if not isinstance(url, str) or not url.strip():
            raise ErrInvalidURL
        url = url.strip()
        if len(url) > self._config.max_url_length:
            raise ErrURLTooLong
        try:
            parsed = _URL_ADAPTER.validate_python(url)
        except PydanticValidationError as exc:
            raise ErrInvalidURL from exc
        if self._config.require_https and parsed.scheme != "https":
            raise ErrHTTPSRequired
        return url

    def validate_events(self, events: list[str], *, is_active: bool) -> list[str]:
        """De-duplicate *events* keeping order; every entry must be allow-listed.

        Raises:
            ValidationError: Unknown event type or empty list for an active webhook.
        """
        cleaned: list[str] = []
        for event in events:
            if not is_valid_subscription(event):
                raise ValidationError(f"unknown event type: {event}", code="invalid-event-type")
            if event not in cleaned:
                cleaned.append(event)
        if is_active and not cleaned:
            raise ErrEmptyEvents
        return cleaned

    def _validate_name(self, name: str) -> str:
        name = (name or "").strip()
        if not name or len(name) > _MAX_NAME_LENGTH:
            raise ErrInvalidName
        return name

    def _validate_description(self, description: str | None) -> str | None:
        if description is not None and len(description) > self._config.max_description_length:
            raise ErrDescriptionTooLong
        return description

    # ------------------------------------------------------------------
    # Create / read
    # ------------------------------------------------------------------

    async def create(
        self,
        workspace_id: str,
        *,
        name: str,
        url: str,
        events: list[str],
        created_by: str | None = None,
        description: str | None = None,
        is_active: bool = True,
        custom_secret: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> WebhookCreated:
        """Register a webhook and issue its first signing secret atomically.

        Raises:
            ValidationError: Any field fails validation; nothing is written.
        """
        now = self._engine.now()
        webhook = Webhook(
            workspace_id=workspace_id,
            name=self._validate_name(name),
            url=self.validate_url(url),
            events=self.validate_events(events, is_active=is_active),
            description=self._validate_description(description),
            is_active=is_active,
            created_by=created_by,
            updated_by=created_by,
            created_at=now,
            updated_at=now,
        )

        async with self._engine.datastore.transaction() as session:
            session.add(webhook)
            await session.flush()
            secret, raw_secret = self._engine.secrets.new_secret_row(
                webhook.id, created_by=created_by, custom_secret=custom_secret
            )
            session.add(secret)
            await session.flush()
            session.add(
                self._engine.audit.entry(
                    workspace_id=workspace_id,
                    webhook_id=webhook.id,
                    action=AuditAction.WEBHOOK_CREATED,
                    changed_by=created_by,
                    changes={
                        "name": webhook.name,
                        "url": webhook.url,
                        "events": webhook.events,
                        "is_active": webhook.is_active,
                        "secret_id": secret.id,
                    },
                    ip_address=ip_address,
                    user_agent=user_agent,
                )
            )

        logger.info("Created webhook %s in workspace %s", webhook.id, workspace_id)
        return WebhookCreated(
            webhook=webhook,
            raw_secret=raw_secret,
            secret_id=secret.id,
            secret_prefix=secret.secret_prefix,
        )

    async def get(self, workspace_id: str, webhook_id: str) -> Webhook:
        """Fetch a webhook owned by *workspace_id*.

        Raises:
            NotFoundError: Missing or owned by another workspace.
        """
        async with self._engine.datastore.session() as session:
            return await self._get(session, workspace_id, webhook_id)

    async def list(
        self,
        workspace_id: str,
        *,
        is_active: bool | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> list[Webhook]:
        """Webhooks of a workspace, newest first."""
        stmt = select(Webhook).where(Webhook.workspace_id == workspace_id)
        if is_active is not None:
            stmt = stmt.where(Webhook.is_active.is_(is_active))
        stmt = (
            stmt.order_by(Webhook.created_at.desc(), Webhook.id)
            .offset((max(page, 1) - 1) * page_size)
            .limit(page_size)
        )
        async with self._engine.datastore.session() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def count(self, workspace_id: str, *, is_active: bool | None = None) -> int:
        """Number of webhooks in a workspace."""
        stmt = select(func.count(Webhook.id)).where(Webhook.workspace_id == workspace_id)
        if is_active is not None:
            stmt = stmt.where(Webhook.is_active.is_(is_active))
        async with self._engine.datastore.session() as session:
            return (await session.execute(stmt)).scalar_one()

    async def subscribers(self, workspace_id: str, event_type: str) -> list[Webhook]:
        """Active webhooks in *workspace_id* whose event patterns cover *event_type*."""
        async with self._engine.datastore.session() as session:
            result = await session.execute(
                select(Webhook)
                .where(Webhook.workspace_id == workspace_id, Webhook.is_active.is_(True))
                .order_by(Webhook.created_at, Webhook.id)
            )
            return [w for w in result.scalars().all() if matches(w.events, event_type)]

    # ------------------------------------------------------------------
    # Update / delete
    # ------------------------------------------------------------------

    async def update(
        self,
        workspace_id: str,
        webhook_id: str,
        *,
        updated_by: str | None = None,
        name: str | None = None,
        url: str | None = None,
        events: list[str] | None = None,
        description: str | None = None,
        is_active: bool | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> Webhook:
        """Change name, url, events, description and/or the active flag.

        ``None`` leaves a field unchanged. The resulting webhook is validated as
        a whole before anything is written.

        Raises:
            NotFoundError: Missing or owned by another workspace.
            ValidationError: The updated webhook would be invalid.
        """
        async with self._engine.datastore.transaction() as session:
            webhook = await self._get(session, workspace_id, webhook_id, lock=True)
            target_active = webhook.is_active if is_active is None else is_active
            proposed: dict[str, Any] = {
                "name": self._validate_name(name) if name is not None else webhook.name,
                "url": self.validate_url(url) if url is not None else webhook.url,
                "events": self.validate_events(
                    events if events is not None else list(webhook.events),
                    is_active=target_active,
                ),
                "description": (
                    self._validate_description(description)
                    if description is not None
                    else webhook.description
                ),
                "is_active": target_active,
            }
            diff = {
                field: {"old": getattr(webhook, field), "new": value}
                for field, value in proposed.items()
                if getattr(webhook, field) != value
            }
            if not diff:
                return webhook

            for field, value in proposed.items():
                setattr(webhook, field, value)
            webhook.updated_by = updated_by
            webhook.updated_at = self._engine.now()
            session.add(
                self._engine.audit.entry(
                    workspace_id=workspace_id,
                    webhook_id=webhook.id,
                    action=AuditAction.WEBHOOK_UPDATED,
                    changed_by=updated_by,
                    changes=diff,
                    ip_address=ip_address,
                    user_agent=user_agent,
                )
            )

        logger.info("Updated webhook %s: %s", webhook_id, ", ".join(sorted(diff)))
        return webhook

    async def set_active(
        self,
        workspace_id: str,
        webhook_id: str,
        active: bool,
        *,
        updated_by: str | None = None,
    ) -> Webhook:
        """Activate or deactivate a webhook.

        Deactivation stops new dispatches; attempts already queued still drain.
        """
        return await self.update(
            workspace_id, webhook_id, updated_by=updated_by, is_active=active
        )

    async def delete(
        self,
        workspace_id: str,
        webhook_id: str,
        *,
        deleted_by: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> int:
        """Hard-delete a webhook with all its secrets and delivery attempts.

        Queued attempts are purged, not drained. The audit trail is kept.

        Returns:
            Number of delivery attempts purged.

        Raises:
            NotFoundError: Missing or owned by another workspace.
        """
        async with self._engine.datastore.transaction() as session:
            webhook = await self._get(session, workspace_id, webhook_id, lock=True)
            purged = await session.execute(
                delete(DeliveryAttempt).where(DeliveryAttempt.webhook_id == webhook_id)
            )
            await session.execute(
                delete(WebhookSecret).where(WebhookSecret.webhook_id == webhook_id)
            )
            await session.execute(delete(Webhook).where(Webhook.id == webhook_id))
            purged_count = purged.rowcount or 0  # type: ignore[union-attr]
            session.add(
                self._engine.audit.entry(
                    workspace_id=workspace_id,
                    webhook_id=webhook_id,
                    action=AuditAction.WEBHOOK_DELETED,
                    changed_by=deleted_by,
                    changes={
                        "name": webhook.name,
                        "url": webhook.url,
                        "purged_deliveries": purged_count,
                    },
                    ip_address=ip_address,
                    user_agent=user_agent,
                )
            )

        logger.info(
            "Deleted webhook %s (%d queued deliveries purged)", webhook_id, purged_count
        )
        return purged_count

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _get(
        self,
        session: AsyncSession,
        workspace_id: str,
        webhook_id: str,
        *,
        lock: bool = False,
    ) -> Webhook:
        stmt = select(Webhook).where(
            Webhook.id == webhook_id,
            Webhook.workspace_id == workspace_id,
        )
        if lock:
            stmt = stmt.with_for_update()
        webhook = (await session.execute(stmt)).scalar_one_or_none()
        if webhook is None:
            raise ErrWebhookNotFound
        return webhook
