"""Alembic environment for the block-list schema.

The database URL comes from `ipgate.core.config` (`DATABASE_URL` or the
`POSTGRES_*` parts), never from `alembic.ini`.
"""

from __future__ import annotations

import asyncio
from logging.config import fileConfig

from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config

from alembic import context
from ipgate.core.config import get_settings
from ipgate.db.models import Base

settings = get_settings()

config = context.config
config.set_main_option("sqlalchemy.url", settings.database_dsn)

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def _configure(**kwargs: object) -> None:
    # SQLite needs batch mode for ALTER TABLE in later revisions.
    context.configure(
        target_metadata=target_metadata,
        compare_type=True,
        render_as_batch=settings.database_dsn.startswith("sqlite"),
        **kwargs,
    )


def run_migrations_offline() -> None:
    """Emit SQL for the migrations without a live connection."""
    _configure(
        url=settings.database_dsn,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    _configure(connection=connection)
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    """Apply the migrations over an async engine."""
    connectable = async_engine_from_config(
        {"sqlalchemy.url": settings.database_dsn},
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)
    await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
