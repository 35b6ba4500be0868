"""Notification service: in-process domain event bus.

The CRM layer publishes events without waiting; a single exchange loop
hands each event to every registered async handler (the dispatcher).
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from webhook_relay.notifications.events import DomainEvent

    EventHandler = Callable[[DomainEvent], Awaitable[object]]

logger = logging.getLogger(__name__)

_INPUT_BUFFER = 1000


class NotificationService:
    """Asyncio-based event fan-out to async handlers.

    Usage::

        svc = NotificationService()
        svc.add_subscriber("dispatcher", dispatcher.dispatch_event)
        await svc.start()
        svc.publish(DomainEvent("ws-1", "contact.created", {"id": 1}))
        await svc.join()
        await svc.stop()
    """

    def __init__(self, *, buffer: int = _INPUT_BUFFER) -> None:
        self._input: asyncio.Queue[DomainEvent] = asyncio.Queue(maxsize=buffer)
        self._subscribers: dict[str, EventHandler] = {}
        self._task: asyncio.Task[None] | None = None
        self._running = False

    @property
    def is_running(self) -> bool:
        """Whether the exchange loop is running."""
        return self._running

    @property
    def pending(self) -> int:
        """Events waiting in the input queue."""
        return self._input.qsize()

    def add_subscriber(self, key: str, handler: EventHandler) -> None:
        """Register an async handler under *key* (replaces an existing one)."""
        self._subscribers[key] = handler

    def remove_subscriber(self, key: str) -> None:
        """Unregister a handler."""
        self._subscribers.pop(key, None)

    def publish(self, event: DomainEvent) -> bool:
        """Enqueue an event without blocking.

        Returns:
            False if the buffer is full and the event was dropped.
        """
        try:
            self._input.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(
                "Event bus full, dropping %s for workspace %s", event.type, event.workspace_id
            )
            return False
        return True

    async def join(self) -> None:
        """Wait until every published event has been handled."""
        await self._input.join()

    async def start(self) -> None:
        """Start the exchange loop."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._exchange())

    async def stop(self, *, drain_timeout: float = 0) -> None:
        """Stop the exchange loop.

        Args:
            drain_timeout: Seconds to keep handling already published events
                before cancelling; whatever is still queued then is dropped.
        """
        if not self._running:
            return
        if drain_timeout > 0 and self._task is not None:
            try:
                async with asyncio.timeout(drain_timeout):
                    await self._input.join()
            except TimeoutError:
                logger.warning(
                    "Event bus stopped with %d events still queued", self._input.qsize()
                )
        self._running = False
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    async def _exchange(self) -> None:
        """Read events from input and hand them to every handler."""
        while self._running:
            try:
                event = await asyncio.wait_for(self._input.get(), timeout=1.0)
            except TimeoutError:
                continue
            try:
                for key, handler in list(self._subscribers.items()):
                    try:
                        await handler(event)
                    except asyncio.CancelledError:
                        raise
                    except Exception:
                        logger.exception("Handler %s failed for event %s", key, event.type)
            finally:
                self._input.task_done()
