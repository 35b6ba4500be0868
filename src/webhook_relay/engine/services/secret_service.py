"""Secret manager: issue, rotate, revoke and verify webhook signing secrets.

Rotation keeps the superseded secret valid for a grace period so receivers
that cached it (and deliveries already signed with it) keep verifying while
subscribers roll over. Exactly one secret per webhook is active at a time:
the swap happens inside one transaction, serialized per webhook.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import delete, or_, select
from sqlalchemy.exc import SQLAlchemyError

from webhook_relay.engine.models.audit_log import AuditAction, AuditLogEntry
from webhook_relay.engine.models.webhook import Webhook
from webhook_relay.engine.models.webhook_secret import WebhookSecret
from webhook_relay.errors.definitions import (
    ErrInvalidGracePeriod,
    ErrSecretNotFound,
    ErrSecretTooShort,
    ErrWebhookNotFound,
)
from webhook_relay.notifications.signature import (
    SigningCandidate,
    VerificationResult,
    is_well_formed,
    verify_any,
)
from webhook_relay.utils.crypto import isoformat_z, random_hex, sha256_hex
from webhook_relay.utils.keyed import KeyedSemaphore

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from webhook_relay.engine.client import WebhookEngine

logger = logging.getLogger(__name__)

_DEFAULT_REVOKE_REASON = "Manual revocation"


@dataclass(frozen=True)
class RotationResult:
    """Outcome of :meth:`SecretManager.rotate`."""

    raw_secret: str
    secret_id: str
    secret_prefix: str
    grace_period_ends: datetime | None
    previous_secret_id: str | None


@dataclass(frozen=True)
class RevokeResult:
    """Outcome of :meth:`SecretManager.revoke`.

    ``replacement`` is set when the revoked secret was the active one; the
    webhook immediately gets a new active secret with no grace overlap.
    """

    secret_id: str
    revoked_at: datetime
    replacement: RotationResult | None = None


@dataclass(frozen=True)
class CleanupResult:
    """Outcome of :meth:`SecretManager.cleanup_expired`."""

    cleaned: int
    errors: int


@dataclass(frozen=True)
class SecretStats:
    """Secret counts for one webhook."""

    total: int
    active: int
    in_grace_period: int
    expired: int


class SecretManager:
    """Per-webhook signing secret lifecycle."""

    def __init__(self, engine: WebhookEngine) -> None:
        self._engine = engine
        self._config = engine.config.secrets
        self._locks = KeyedSemaphore(1)

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def generate_secret(self, length: int | None = None) -> str:
        """Random secret of *length* bytes, hex-encoded (default 32 bytes)."""
        return random_hex(length or self._config.secret_bytes)

    def _prefix(self, raw_secret: str) -> str:
        return f"{self._config.prefix}{raw_secret[:8]}"

    def _check_custom(self, custom_secret: str | None) -> None:
        if custom_secret is not None and len(custom_secret) < self._config.min_custom_length:
            raise ErrSecretTooShort

    def new_secret_row(
        self,
        webhook_id: str,
        *,
        created_by: str | None,
        custom_secret: str | None = None,
    ) -> tuple[WebhookSecret, str]:
        """Build an active secret row for *webhook_id* (caller adds it to a session).

        Raises:
            ValidationError: *custom_secret* is shorter than the configured minimum.
        """
        self._check_custom(custom_secret)
        raw = custom_secret if custom_secret is not None else self.generate_secret()
        row = WebhookSecret(
            webhook_id=webhook_id,
            secret_hash=sha256_hex(raw),
            secret_prefix=self._prefix(raw),
            is_active=True,
            created_at=self._engine.now(),
            rotated_by=created_by,
        )
        return row, raw

    # ------------------------------------------------------------------
    # Rotation
    # ------------------------------------------------------------------

    async def rotate(
        self,
        webhook_id: str,
        rotated_by: str,
        grace_period_hours: float | None = None,
        custom_secret: str | None = None,
        *,
        workspace_id: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> RotationResult:
        """Issue a new active secret; keep the previous one valid for the grace period.

        Args:
            webhook_id: Webhook to rotate.
            rotated_by: Actor recorded on the secret and the audit entry.
            grace_period_hours: How long the old secret keeps verifying
                (default from ``secrets.grace_period_hours``; 0 expires it now).
            custom_secret: Use this raw secret instead of a generated one.
            workspace_id: When given, the webhook must belong to this workspace.
            ip_address: Request origin for the audit entry.
            user_agent: Request user agent for the audit entry.

        Returns:
            The new raw secret (shown once) and the grace period end.

        Raises:
            NotFoundError: Unknown webhook (or outside *workspace_id*).
            ValidationError: Bad grace period or custom secret.
        """
        grace = grace_period_hours
        if grace is None:
            grace = self._config.grace_period_hours
        if grace < 0 or grace > self._config.max_grace_period_hours:
            raise ErrInvalidGracePeriod
        self._check_custom(custom_secret)

        async with self._locks.hold(webhook_id), self._engine.datastore.transaction() as session:
            webhook = await self._load_webhook(session, webhook_id, workspace_id)
            result = await self._swap(
                session,
                webhook,
                actor=rotated_by,
                grace=timedelta(hours=grace),
                custom_secret=custom_secret,
            )
            session.add(
                self._engine.audit.entry(
                    workspace_id=webhook.workspace_id,
                    webhook_id=webhook.id,
                    action=AuditAction.SECRET_ROTATED,
                    changed_by=rotated_by,
                    changes={
                        "old_secret_id": result.previous_secret_id,
                        "new_secret_id": result.secret_id,
                        "grace_period_hours": grace,
                        "grace_period_ends": (
                            isoformat_z(result.grace_period_ends)
                            if result.grace_period_ends
                            else None
                        ),
                        "custom_secret_provided": custom_secret is not None,
                    },
                    ip_address=ip_address,
                    user_agent=user_agent,
                )
            )

        if self._engine.metrics is not None:
            self._engine.metrics.inc_rotation("rotated")
        logger.info(
            "Rotated secret for webhook %s (%s -> %s, grace %sh)",
            webhook_id,
            result.previous_secret_id,
            result.secret_id,
            grace,
        )
        return result

    async def _swap(
        self,
        session: AsyncSession,
        webhook: Webhook,
        *,
        actor: str,
        grace: timedelta,
        custom_secret: str | None,
    ) -> RotationResult:
        """Deactivate the current secret and insert a new active one in *session*."""
        now = self._engine.now()
        current = await self._current(session, webhook.id, lock=True)
        grace_ends: datetime | None = None
        if current is not None:
            grace_ends = now + grace
            current.is_active = False
            current.expires_at = grace_ends
            # The old row must be inactive before the new active row is inserted
            await session.flush()

        row, raw = self.new_secret_row(
            webhook.id, created_by=actor, custom_secret=custom_secret
        )
        session.add(row)
        await session.flush()
        return RotationResult(
            raw_secret=raw,
            secret_id=row.id,
            secret_prefix=row.secret_prefix,
            grace_period_ends=grace_ends,
            previous_secret_id=current.id if current is not None else None,
        )

    # ------------------------------------------------------------------
    # Revocation
    # ------------------------------------------------------------------

    async def revoke(
        self,
        secret_id: str,
        revoked_by: str,
        reason: str | None = None,
        *,
        workspace_id: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> RevokeResult:
        """Expire a secret immediately, ignoring any grace period.

        Revoking the active secret issues a replacement in the same
        transaction so the webhook never ends up without a signing secret.

        Raises:
            NotFoundError: Unknown secret (or its webhook is outside *workspace_id*).
        """
        async with self._engine.datastore.session() as session:
            secret = await session.get(WebhookSecret, secret_id)
            if secret is None:
                raise ErrSecretNotFound
            webhook_id = secret.webhook_id

        async with self._locks.hold(webhook_id), self._engine.datastore.transaction() as session:
            webhook = await self._load_webhook(session, webhook_id, workspace_id)
            secret = await session.get(WebhookSecret, secret_id, with_for_update=True)
            if secret is None:
                raise ErrSecretNotFound

            now = self._engine.now()
            replacement: RotationResult | None = None
            if secret.is_active:
                replacement = await self._swap(
                    session,
                    webhook,
                    actor=revoked_by,
                    grace=timedelta(0),
                    custom_secret=None,
                )
            secret.is_active = False
            secret.expires_at = now

            changes: dict[str, object] = {
                "secret_id": secret_id,
                "reason": reason or _DEFAULT_REVOKE_REASON,
                "revoked_at": isoformat_z(now),
            }
            if replacement is not None:
                changes["replacement_secret_id"] = replacement.secret_id
            session.add(
                self._engine.audit.entry(
                    workspace_id=webhook.workspace_id,
                    webhook_id=webhook.id,
                    action=AuditAction.SECRET_REVOKED,
                    changed_by=revoked_by,
                    changes=changes,
                    ip_address=ip_address,
                    user_agent=user_agent,
                )
            )

        if self._engine.metrics is not None:
            self._engine.metrics.inc_rotation("revoked")
        logger.warning("Revoked secret %s of webhook %s by %s", secret_id, webhook_id, revoked_by)
        return RevokeResult(secret_id=secret_id, revoked_at=now, replacement=replacement)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    async def get_current_secret(self, webhook_id: str) -> WebhookSecret | None:
        """The single active secret of a webhook, if any."""
        async with self._engine.datastore.session() as session:
            return await self._current(session, webhook_id)

    async def get_active_secrets(self, webhook_id: str) -> list[WebhookSecret]:
        """Current secret plus superseded secrets still inside their grace period.

        Returns:
            Secrets accepted for verification right now, newest first.
        """
        now = self._engine.now()
        async with self._engine.datastore.session() as session:
            result = await session.execute(
                select(WebhookSecret)
                .where(
                    WebhookSecret.webhook_id == webhook_id,
                    or_(
                        WebhookSecret.is_active.is_(True),
                        WebhookSecret.expires_at > now,
                    ),
                )
                .order_by(WebhookSecret.is_active.desc(), WebhookSecret.created_at.desc())
            )
            return list(result.scalars().all())

    async def list_secrets(self, webhook_id: str) -> list[WebhookSecret]:
        """Every stored secret of a webhook (hash and prefix only), newest first."""
        async with self._engine.datastore.session() as session:
            result = await session.execute(
                select(WebhookSecret)
                .where(WebhookSecret.webhook_id == webhook_id)
                .order_by(WebhookSecret.is_active.desc(), WebhookSecret.created_at.desc())
            )
            return list(result.scalars().all())

    async def signing_candidates(self, webhook_id: str) -> list[SigningCandidate]:
        """Verification keys for every currently valid secret."""
        now = self._engine.now()
        return [
            SigningCandidate(
                secret_id=secret.id,
                key=secret.secret_hash,
                in_grace_period=secret.in_grace_period(now),
            )
            for secret in await self.get_active_secrets(webhook_id)
        ]

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    async def verify(
        self,
        webhook_id: str,
        payload: bytes | str,
        signature_header: str | None,
    ) -> VerificationResult:
        """Check a signature against every secret valid right now.

        Returns:
            Whether it matched, which secret matched, and whether that secret
            was in its grace period.
        """
        if not is_well_formed(signature_header):
            logger.debug("Malformed signature header for webhook %s", webhook_id)
        result = verify_any(payload, signature_header, await self.signing_candidates(webhook_id))
        if result.valid and result.in_grace_period:
            logger.info(
                "Webhook %s signature matched grace-period secret %s",
                webhook_id,
                result.secret_id,
            )
        return result

    # ------------------------------------------------------------------
    # Maintenance and reporting
    # ------------------------------------------------------------------

    async def cleanup_expired(self) -> CleanupResult:
        """Purge superseded secrets whose grace period has ended.

        Each webhook's secrets are purged in their own transaction; a failure
        for one webhook is logged and counted without stopping the sweep.
        Running it again is a no-op.
        """
        now = self._engine.now()
        async with self._engine.datastore.session() as session:
            result = await session.execute(
                select(WebhookSecret.webhook_id)
                .where(
                    WebhookSecret.is_active.is_(False),
                    WebhookSecret.expires_at <= now,
                )
                .distinct()
            )
            webhook_ids = list(result.scalars().all())

        cleaned = errors = 0
        for webhook_id in webhook_ids:
            try:
                async with self._engine.datastore.transaction() as session:
                    deleted = await session.execute(
                        delete(WebhookSecret).where(
                            WebhookSecret.webhook_id == webhook_id,
                            WebhookSecret.is_active.is_(False),
                            WebhookSecret.expires_at <= now,
                        )
                    )
                cleaned += deleted.rowcount or 0  # type: ignore[union-attr]
            except SQLAlchemyError:
                errors += 1
                logger.exception("Failed to purge expired secrets of webhook %s", webhook_id)
        if cleaned:
            logger.info("Cleaned up %d expired webhook secrets", cleaned)
        return CleanupResult(cleaned=cleaned, errors=errors)

    async def secret_stats(self, webhook_id: str) -> SecretStats:
        """Counts of active, in-grace and expired-but-not-purged secrets."""
        now = self._engine.now()
        secrets = await self.list_secrets(webhook_id)
        active = sum(1 for s in secrets if s.is_active)
        grace = sum(1 for s in secrets if s.in_grace_period(now))
        return SecretStats(
            total=len(secrets),
            active=active,
            in_grace_period=grace,
            expired=len(secrets) - active - grace,
        )

    async def rotation_history(self, webhook_id: str, *, limit: int = 50) -> list[AuditLogEntry]:
        """Rotation and revocation audit entries for a webhook, newest first."""
        async with self._engine.datastore.session() as session:
            result = await session.execute(
                select(AuditLogEntry)
                .where(
                    AuditLogEntry.webhook_id == webhook_id,
                    AuditLogEntry.action.in_(
                        [AuditAction.SECRET_ROTATED, AuditAction.SECRET_REVOKED]
                    ),
                )
                .order_by(AuditLogEntry.created_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _load_webhook(
        self, session: AsyncSession, webhook_id: str, workspace_id: str | None
    ) -> Webhook:
        webhook = await session.get(Webhook, webhook_id, with_for_update=True)
        if webhook is None or (workspace_id is not None and webhook.workspace_id != workspace_id):
            raise ErrWebhookNotFound
        return webhook

    async def _current(
        self, session: AsyncSession, webhook_id: str, *, lock: bool = False
    ) -> WebhookSecret | None:
        stmt = select(WebhookSecret).where(
            WebhookSecret.webhook_id == webhook_id,
            WebhookSecret.is_active.is_(True),
        )
        if lock:
            stmt = stmt.with_for_update()
        return (await session.execute(stmt)).scalar_one_or_none()

