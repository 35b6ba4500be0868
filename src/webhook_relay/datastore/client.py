"""Datastore client.

Owns the async SQLAlchemy engine for the relay and hands out sessions.
Services read through :meth:`Datastore.session` and write through
:meth:`Datastore.transaction`, which commits or rolls back as a unit.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from webhook_relay.datastore.engines import create_engine

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from webhook_relay.config.settings import DatabaseConfig

logger = logging.getLogger(__name__)

_ERR_NOT_OPEN = "Datastore is not open. Call open() first."


class Datastore:
    """Engine and session factory for the webhook tables.

    Usage::

        ds = Datastore(config.db)
        await ds.open()
        async with ds.transaction() as session:
            session.add(webhook)
        await ds.close()
    """

    def __init__(self, config: DatabaseConfig) -> None:
        self._config = config
        self._engine: AsyncEngine | None = None
        self._sessions: async_sessionmaker[AsyncSession] | None = None

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    @property
    def engine(self) -> AsyncEngine:
        """The underlying async engine.

        Raises:
            RuntimeError: If the datastore is not open.
        """
        if self._engine is None:
            raise RuntimeError(_ERR_NOT_OPEN)
        return self._engine

    async def open(self) -> None:
        """Create the engine and session factory; a second call is a no-op."""
        if self._engine is not None:
            return
        self._engine = create_engine(self._config)
        self._sessions = async_sessionmaker(self._engine, expire_on_commit=False)
        logger.info("Datastore opened (%s)", self._engine.dialect.name)

    async def close(self) -> None:
        """Dispose the engine and release pooled connections."""
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._sessions = None
        logger.info("Datastore closed")

    def session(self) -> AsyncSession:
        """A new session for reads; use it as an async context manager.

        Raises:
            RuntimeError: If the datastore is not open.
        """
        if self._sessions is None:
            raise RuntimeError(_ERR_NOT_OPEN)
        return self._sessions()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """Session bound to one transaction.

        Commits when the block exits normally and rolls back when it raises,
        so rotation and cascade deletes are never partially applied.
        """
        async with self.session() as session, session.begin():
            yield session

    async def ping(self) -> bool:
        """Run ``SELECT 1``; False when the database cannot be reached."""
        if self._engine is None:
            return False
        try:
            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            logger.exception("Datastore ping failed")
            return False
        return True
