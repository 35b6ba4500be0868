"""Schema bootstrap for development and tests.

Production deployments run the Alembic revisions under ``alembic/``;
``run_auto_migrate`` only creates tables that are missing and never alters
existing ones.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import inspect

from webhook_relay.engine.models import Base

if TYPE_CHECKING:
    from sqlalchemy.engine import Connection
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)


def _create_missing(connection: Connection) -> list[str]:
    existing = set(inspect(connection).get_table_names())
    missing = [t for t in Base.metadata.sorted_tables if t.name not in existing]
    Base.metadata.create_all(connection, tables=missing)
    return [t.name for t in missing]


async def run_auto_migrate(engine: AsyncEngine) -> list[str]:
    """Create the relay tables that do not exist yet.

    Returns:
        Names of the tables created, in dependency order.
    """
    async with engine.begin() as conn:
        created = await conn.run_sync(_create_missing)
    if created:
        logger.info("Created tables: %s", ", ".join(created))
    return created


async def drop_all_tables(engine: AsyncEngine) -> None:
    """Drop every relay table (tests and local resets only)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    logger.warning("Dropped all webhook relay tables")
