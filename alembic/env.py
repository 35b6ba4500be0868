"""Alembic environment for the webhook relay schema.

Runs revisions against an async engine. The database URL comes from
``sqlalchemy.url`` in ``alembic.ini`` or, when that is blank, from the
relay's own config (``WEBHOOKRELAY_DB__DSN``).
"""

from __future__ import annotations

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config

from webhook_relay.config.settings import AppConfig
from webhook_relay.engine.models import Base

alembic_cfg = context.config
if alembic_cfg.config_file_name is not None:
    fileConfig(alembic_cfg.config_file_name)

database_url = alembic_cfg.get_main_option("sqlalchemy.url") or AppConfig().db.dsn
alembic_cfg.set_main_option("sqlalchemy.url", database_url)

# SQLite cannot ALTER most constraints in place
_batch = database_url.startswith("sqlite")


def _migrate(connection: Connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=Base.metadata,
        render_as_batch=_batch,
        compare_type=True,
    )
    with context.begin_transaction():
        context.run_migrations()


async def _migrate_online() -> None:
    engine = async_engine_from_config(
        alembic_cfg.get_section(alembic_cfg.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    try:
        async with engine.connect() as connection:
            await connection.run_sync(_migrate)
    finally:
        await engine.dispose()


def _migrate_offline() -> None:
    """Emit the migration SQL to stdout without a database connection."""
    context.configure(
        url=database_url,
        target_metadata=Base.metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=_batch,
    )
    with context.begin_transaction():
        context.run_migrations()


if context.is_offline_mode():
    _migrate_offline()
else:
    asyncio.run(_migrate_online())
