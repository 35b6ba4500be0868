"""Webhook delivery: HTTP sender and the leasing worker pool.

``WebhookSender`` performs one POST with the exact stored body and
signature. ``DeliveryWorker`` polls the queue for due attempts, leases each one
once a global and a per-workspace slot are free, sends concurrently and records
each outcome back on the queue.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
import uuid
from typing import TYPE_CHECKING

import httpx
from sqlalchemy import select

from webhook_relay.engine.models.webhook import Webhook
from webhook_relay.engine.services.delivery_service import DeliveryOutcome
from webhook_relay.errors.webhook_errors import ConcurrencyConflict, DeliveryError
from webhook_relay.utils.keyed import KeyedSemaphore

if TYPE_CHECKING:
    from webhook_relay.config.settings import DeliveryConfig
    from webhook_relay.engine.client import WebhookEngine
    from webhook_relay.engine.models.delivery import DeliveryAttempt
    from webhook_relay.engine.services.delivery_service import DueAttempt
    from webhook_relay.metrics.collector import WebhookMetrics

logger = logging.getLogger(__name__)

HEADER_SIGNATURE = "X-Webhook-Signature"
HEADER_EVENT = "X-Webhook-Event"
HEADER_DELIVERY_ID = "X-Webhook-ID"
HEADER_TIMESTAMP = "X-Webhook-Timestamp"

# Keep error strings stored on attempts readable
_MAX_ERROR_BODY = 200


def delivery_headers(attempt: DeliveryAttempt, user_agent: str) -> dict[str, str]:
    """Wire headers for one delivery attempt."""
    return {
        "Content-Type": "application/json",
        "User-Agent": user_agent,
        HEADER_SIGNATURE: attempt.signature,
        HEADER_EVENT: attempt.event_type,
        HEADER_DELIVERY_ID: attempt.id,
        HEADER_TIMESTAMP: attempt.timestamp,
    }


class WebhookSender:
    """POSTs signed bodies to subscriber URLs with a hard timeout."""

    def __init__(
        self,
        config: DeliveryConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        metrics: WebhookMetrics | None = None,
    ) -> None:
        self._config = config
        self._transport = transport
        self._metrics = metrics
        self._client: httpx.AsyncClient | None = None

    @property
    def is_open(self) -> bool:
        return self._client is not None

    async def start(self) -> None:
        """Open the pooled HTTP client."""
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            timeout=self._config.request_timeout,
            transport=self._transport,
            follow_redirects=False,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def send(self, attempt: DeliveryAttempt, url: str) -> DeliveryOutcome:
        """Deliver *attempt* once and report what happened.

        Never raises for delivery failures; they come back as an unsuccessful
        :class:`DeliveryOutcome`.
        """
        return await self._timed(attempt, url)

    async def send_challenge(
        self, attempt: DeliveryAttempt, url: str, challenge: str
    ) -> DeliveryOutcome:
        """Like :meth:`send`, but success also needs ``{"challenge": ...}`` echoed back."""
        return await self._timed(attempt, url, challenge=challenge)

    async def _timed(
        self, attempt: DeliveryAttempt, url: str, *, challenge: str | None = None
    ) -> DeliveryOutcome:
        start = time.monotonic()
        try:
            response = await self._post(attempt, url)
            if challenge is not None:
                _check_echo(response, challenge)
        except DeliveryError as exc:
            elapsed = int((time.monotonic() - start) * 1000)
            return DeliveryOutcome(
                success=False,
                status_code=exc.response_status,
                error=exc.message,
                response_time_ms=elapsed,
            )
        elapsed = int((time.monotonic() - start) * 1000)
        return DeliveryOutcome(
            success=True, status_code=response.status_code, response_time_ms=elapsed
        )

    async def _post(self, attempt: DeliveryAttempt, url: str) -> httpx.Response:
        """POST the stored body; return the 2xx response.

        Raises:
            DeliveryError: Non-2xx response, transport error or timeout.
        """
        if self._client is None:
            await self.start()
        assert self._client is not None
        headers = delivery_headers(attempt, self._config.user_agent)
        try:
            async with asyncio.timeout(self._config.request_timeout):
                if self._metrics is not None:
                    with self._metrics.track_delivery():
                        response = await self._client.post(
                            url, content=attempt.body.encode("utf-8"), headers=headers
                        )
                else:
                    response = await self._client.post(
                        url, content=attempt.body.encode("utf-8"), headers=headers
                    )
        except TimeoutError as exc:
            msg = f"timed out after {self._config.request_timeout:g}s"
            raise DeliveryError(msg) from exc
        except httpx.TimeoutException as exc:
            msg = f"timed out after {self._config.request_timeout:g}s"
            raise DeliveryError(msg) from exc
        except httpx.HTTPError as exc:
            raise DeliveryError(f"{type(exc).__name__}: {exc}") from exc

        if not 200 <= response.status_code < 300:
            snippet = response.text[:_MAX_ERROR_BODY]
            msg = f"HTTP {response.status_code}" + (f": {snippet}" if snippet else "")
            raise DeliveryError(msg, response_status=response.status_code)
        return response


def _check_echo(response: httpx.Response, challenge: str) -> None:
    """Raise unless *response* is a JSON object carrying *challenge*."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if not isinstance(body, dict) or body.get("challenge") != challenge:
        raise DeliveryError(
            "endpoint did not echo the verification challenge",
            response_status=response.status_code,
        )


class DeliveryWorker:
    """Polling worker pool that drives leased attempts through the queue.

    Usage::

        worker = DeliveryWorker(engine)
        await worker.start()      # background polling
        ...
        await worker.stop()

    Tests call :meth:`run_once` for a deterministic sweep instead.
    """

    def __init__(self, engine: WebhookEngine, *, worker_id: str | None = None) -> None:
        self._engine = engine
        self._config = engine.config.delivery
        self._worker_id = worker_id or f"worker-{uuid.uuid4().hex[:12]}"
        self._slots = asyncio.Semaphore(self._config.max_concurrency)
        self._workspace_slots = KeyedSemaphore(self._config.per_workspace_concurrency)
        self._task: asyncio.Task[None] | None = None
        self._running = False

    @property
    def worker_id(self) -> str:
        return self._worker_id

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the polling loop."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info("Delivery worker %s started", self._worker_id)

    async def stop(self) -> None:
        """Stop polling; in-flight sends are cancelled and their leases expire."""
        if not self._running:
            return
        self._running = False
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        logger.info("Delivery worker %s stopped", self._worker_id)

    async def run_once(self) -> int:
        """Lease and process every due attempt (one per webhook).

        Each attempt is leased only once a global and a workspace slot are
        free, so no lease ages while it waits for capacity.

        Returns:
            Number of attempts processed in this sweep.
        """
        candidates = await self._engine.deliveries.due()
        if not candidates:
            return 0
        results = await asyncio.gather(*(self._process(c) for c in candidates))
        return sum(results)

    async def drain(self, *, max_sweeps: int = 100) -> int:
        """Run sweeps until nothing is due (or *max_sweeps* is hit)."""
        total = 0
        for _ in range(max_sweeps):
            processed = await self.run_once()
            if processed == 0:
                break
            total += processed
        return total

    async def _loop(self) -> None:
        while self._running:
            try:
                processed = await self.run_once()
                if processed == 0:
                    await asyncio.sleep(self._config.poll_interval)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Delivery sweep failed")
                await asyncio.sleep(self._config.poll_interval)

    async def _target_url(self, webhook_id: str) -> str | None:
        async with self._engine.datastore.session() as session:
            return (
                await session.execute(select(Webhook.url).where(Webhook.id == webhook_id))
            ).scalar_one_or_none()

    async def _process(self, candidate: DueAttempt) -> bool:
        async with self._workspace_slots.hold(candidate.workspace_id), self._slots:
            try:
                attempt = await self._engine.deliveries.lease(candidate.id, self._worker_id)
            except ConcurrencyConflict:
                logger.debug("Lost lease race for delivery %s", candidate.id)
                return False
            await self._deliver(attempt, await self._target_url(attempt.webhook_id))
        return True

    async def _deliver(self, attempt: DeliveryAttempt, url: str | None) -> None:
        if url is None:
            outcome = DeliveryOutcome(success=False, error="webhook no longer exists")
        else:
            outcome = await self._engine.sender.send(attempt, url)
        try:
            await self._engine.deliveries.complete(attempt.id, self._worker_id, outcome)
        except ConcurrencyConflict as exc:
            logger.warning("Dropping outcome of delivery %s: %s", attempt.id, exc.message)
