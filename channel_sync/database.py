# channel_sync/database.py

# type: ignore[misc]
import os
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from channel_sync.core.config import get_settings


def resolve_database_url(url: Optional[str] = None) -> str:
    """The configured database URL, with plain postgresql:// switched to the asyncpg driver."""
    url = url or get_settings().DATABASE_URL or os.environ.get("DATABASE_URL", "")
    if not url:
        raise ValueError("DATABASE_URL is not set in environment variables")
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def engine_options(url: str) -> dict:
    # Sync sweeps run several credentials at once, each holding a session
    if url.startswith("postgresql"):
        return {"echo": False, "pool_size": 10, "max_overflow": 20, "pool_timeout": 30, "pool_recycle": 1800}
    return {"echo": False}


database_url = resolve_database_url()
engine = create_async_engine(database_url, **engine_options(database_url))

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

Base = declarative_base()
