"""Per-key concurrency limits that forget idle keys."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


class KeyedSemaphore:
    """A semaphore per key, created on first use and dropped once idle.

    ``KeyedSemaphore(1)`` is a per-key mutex.

    Usage::

        slots = KeyedSemaphore(5)
        async with slots.hold(workspace_id):
            ...
    """

    def __init__(self, limit: int) -> None:
        if limit < 1:
            msg = "limit must be at least 1"
            raise ValueError(msg)
        self._limit = limit
        self._entries: dict[str, tuple[asyncio.Semaphore, int]] = {}

    def __len__(self) -> int:
        """Number of keys currently held or waited on."""
        return len(self._entries)

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        semaphore, users = self._entries.get(key, (None, 0))
        if semaphore is None:
            semaphore = asyncio.Semaphore(self._limit)
        self._entries[key] = (semaphore, users + 1)
        try:
            async with semaphore:
                yield
        finally:
            semaphore, users = self._entries[key]
            if users <= 1:
                del self._entries[key]
            else:
                self._entries[key] = (semaphore, users - 1)
