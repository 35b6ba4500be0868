"""Dispatcher: turn a domain event into signed, queued delivery attempts."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from webhook_relay.engine.models.delivery import DeliveryAttempt, DeliveryStatus
from webhook_relay.errors.definitions import ErrNoActiveSecret
from webhook_relay.notifications.events import (
    TEST_EVENT,
    VERIFICATION_EVENT,
    DomainEvent,
    validate_payload,
)
from webhook_relay.notifications.signature import canonical_json, sign
from webhook_relay.utils.crypto import random_hex

if TYPE_CHECKING:
    from webhook_relay.engine.client import WebhookEngine

logger = logging.getLogger(__name__)

_TEST_MESSAGE = "This is a test webhook delivery"
_CHALLENGE_BYTES = 16


@dataclass(frozen=True)
class SendTestResult:
    """Outcome of a synchronous one-shot test delivery."""

    delivery: DeliveryAttempt
    success: bool
    status_code: int | None
    response_time_ms: int | None
    error: str | None


@dataclass(frozen=True)
class EndpointVerification:
    """Outcome of a challenge sent to a webhook URL."""

    verified: bool
    status_code: int | None
    response_time_ms: int | None
    error: str | None


class Dispatcher:
    """Match events to subscribers and hand signed payloads to the queue.

    Dispatch never calls subscriber endpoints itself; a slow endpoint can
    only delay its own queue, not the caller that emitted the event.
    """

    def __init__(self, engine: WebhookEngine) -> None:
        self._engine = engine

    async def dispatch(
        self,
        workspace_id: str,
        event_type: str,
        payload: dict[str, Any],
    ) -> list[DeliveryAttempt]:
        """Validate and fan out one event to every matching active webhook.

        Args:
            workspace_id: Workspace the event happened in.
            event_type: Allow-listed event type, e.g. ``contact.created``.
            payload: Event data; checked against the known shape for its type.

        Returns:
            One pending attempt per subscriber (empty when nobody subscribes).

        Raises:
            ValidationError: Unknown event type or malformed payload.
        """
        data = validate_payload(event_type, payload)
        return await self.dispatch_event(DomainEvent(workspace_id, event_type, data))

    async def dispatch_event(self, event: DomainEvent) -> list[DeliveryAttempt]:
        """Fan out an already validated event (event bus handler)."""
        subscribers = await self._engine.registry.subscribers(event.workspace_id, event.type)
        if not subscribers:
            logger.debug("No subscribers for %s in workspace %s", event.type, event.workspace_id)
            return []

        envelope = event.envelope(self._engine.now())
        body = canonical_json(envelope)
        attempts: list[DeliveryAttempt] = []
        for webhook in subscribers:
            secret = await self._engine.secrets.get_current_secret(webhook.id)
            if secret is None:
                logger.warning(
                    "Webhook %s has no active secret; skipping %s", webhook.id, event.type
                )
                continue
            attempts.append(
                self._engine.deliveries.build(
                    webhook,
                    event_type=event.type,
                    envelope=envelope,
                    body=body,
                    signature=sign(body, secret.secret_hash),
                    secret_id=secret.id,
                )
            )

        stored = await self._engine.deliveries.enqueue(attempts)
        if self._engine.metrics is not None:
            self._engine.metrics.inc_dispatched(event.type, len(stored))
        logger.info(
            "Dispatched %s in workspace %s to %d webhook(s)",
            event.type,
            event.workspace_id,
            len(stored),
        )
        return stored

    async def send_test(
        self,
        workspace_id: str,
        webhook_id: str,
        sent_by: str | None = None,
    ) -> SendTestResult:
        """Deliver a ``webhook.test`` event right now, exactly once, and record it.

        Works for inactive webhooks too, so an endpoint can be checked before
        it is switched on.

        Raises:
            NotFoundError: Unknown webhook or no active secret.
        """
        webhook = await self._engine.registry.get(workspace_id, webhook_id)
        secret = await self._engine.secrets.get_current_secret(webhook.id)
        if secret is None:
            raise ErrNoActiveSecret

        event = DomainEvent(
            workspace_id,
            TEST_EVENT,
            {
                "webhook_id": webhook.id,
                "message": _TEST_MESSAGE,
                "test": True,
                "sent_by": sent_by,
            },
        )
        envelope = event.envelope(self._engine.now())
        body = canonical_json(envelope)
        attempt = self._engine.deliveries.build(
            webhook,
            event_type=TEST_EVENT,
            envelope=envelope,
            body=body,
            signature=sign(body, secret.secret_hash),
            secret_id=secret.id,
            max_attempts=1,
        )

        outcome = await self._engine.sender.send(attempt, webhook.url)
        now = self._engine.now()
        attempt.attempts = 1
        attempt.status = DeliveryStatus.DELIVERED if outcome.success else DeliveryStatus.FAILED
        attempt.delivered_at = now if outcome.success else None
        attempt.next_retry_at = None
        attempt.last_status_code = outcome.status_code
        attempt.response_time_ms = outcome.response_time_ms
        attempt.last_error = outcome.error
        attempt.updated_at = now
        await self._engine.deliveries.enqueue([attempt])

        if self._engine.metrics is not None:
            outcome_label = "test_delivered" if outcome.success else "test_failed"
            self._engine.metrics.inc_delivery(outcome_label)
        logger.info(
            "Test delivery to webhook %s by %s: %s",
            webhook.id,
            sent_by,
            "ok" if outcome.success else outcome.error,
        )
        return SendTestResult(
            delivery=attempt,
            success=outcome.success,
            status_code=outcome.status_code,
            response_time_ms=outcome.response_time_ms,
            error=outcome.error,
        )

    async def verify_endpoint(
        self,
        workspace_id: str,
        webhook_id: str,
        requested_by: str | None = None,
    ) -> EndpointVerification:
        """Check that the webhook's URL answers a signed challenge.

        POSTs a ``webhook.verification`` event carrying a random challenge;
        the endpoint proves it is a live receiver by replying 2xx with
        ``{"challenge": "<same value>"}``. Nothing is queued or stored.

        Raises:
            NotFoundError: Unknown webhook or no active secret.
        """
        webhook = await self._engine.registry.get(workspace_id, webhook_id)
        secret = await self._engine.secrets.get_current_secret(webhook.id)
        if secret is None:
            raise ErrNoActiveSecret

        challenge = random_hex(_CHALLENGE_BYTES)
        event = DomainEvent(
            workspace_id,
            VERIFICATION_EVENT,
            {"webhook_id": webhook.id, "challenge": challenge},
        )
        envelope = event.envelope(self._engine.now())
        body = canonical_json(envelope)
        request = self._engine.deliveries.build(
            webhook,
            event_type=VERIFICATION_EVENT,
            envelope=envelope,
            body=body,
            signature=sign(body, secret.secret_hash),
            secret_id=secret.id,
            max_attempts=1,
        )
        outcome = await self._engine.sender.send_challenge(request, webhook.url, challenge)
        logger.info(
            "Verification of webhook %s requested by %s: %s",
            webhook.id,
            requested_by,
            "ok" if outcome.success else outcome.error,
        )
        return EndpointVerification(
            verified=outcome.success,
            status_code=outcome.status_code,
            response_time_ms=outcome.response_time_ms,
            error=outcome.error,
        )
