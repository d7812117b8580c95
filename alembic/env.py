# alembic/env.py
"""
Migrations run against the same database the application uses:
the URL always comes from channel_sync settings, never from alembic.ini.
"""
import asyncio
from logging.config import fileConfig

from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import create_async_engine

from alembic import context

from channel_sync import models  # noqa: F401  registers every table on Base.metadata
from channel_sync.database import Base, resolve_database_url

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def _configure(**kwargs) -> None:
    context.configure(
        target_metadata=target_metadata,
        compare_type=True,
        **kwargs,
    )
    with context.begin_transaction():
        context.run_migrations()


def _run_sync(connection: Connection) -> None:
    _configure(connection=connection)


async def _run_online() -> None:
    engine = create_async_engine(resolve_database_url(), poolclass=pool.NullPool)
    try:
        async with engine.connect() as connection:
            await connection.run_sync(_run_sync)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    _configure(url=resolve_database_url(), literal_binds=True, dialect_opts={"paramstyle": "named"})
else:
    asyncio.run(_run_online())
