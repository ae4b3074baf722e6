"""
Async engine and session scope for the SQL call store.

URLs in settings.yaml are written in their sync form and mapped to the
async driver here:
  postgresql:// | postgres://  → postgresql+asyncpg://
  sqlite://                    → sqlite+aiosqlite://

Usage:
    await init_db()
    async with get_session() as db:
        row = await db.get(TenantRow, tenant_id)
    await close_db()
"""
from __future__ import annotations

import structlog
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import (
    create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker,
)

from config.settings import get_settings
from database.models import Base

logger = structlog.get_logger()

_ASYNC_DRIVERS = (
    ("postgresql://", "postgresql+asyncpg://"),
    ("postgres://", "postgresql+asyncpg://"),
    ("sqlite://", "sqlite+aiosqlite://"),
)

# Postgres pool for a single API process plus its workers
_POOL_OPTIONS = {
    "pool_size": 10,
    "max_overflow": 20,
    "pool_timeout": 30,
    "pool_recycle": 1800,
    "pool_pre_ping": True,
}

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None
_url_override: Optional[str] = None


def _to_async_url(db_url: str) -> str:
    for sync_prefix, async_prefix in _ASYNC_DRIVERS:
        if db_url.startswith(sync_prefix):
            return db_url.replace(sync_prefix, async_prefix, 1)
    return db_url


def configure(db_url: str) -> None:
    """Use ``db_url`` instead of settings.database.url; call before first use."""
    global _url_override
    _url_override = db_url


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is not None:
        return _engine

    db_url = _to_async_url(_url_override or get_settings().database.url)
    options = {"echo": get_settings().debug}
    if not db_url.startswith("sqlite"):
        options.update(_POOL_OPTIONS)
    _engine = create_async_engine(db_url, **options)
    logger.info("database_engine_created",
                dialect=_engine.dialect.name,
                url=str(_engine.url).split("@")[-1])
    return _engine


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """One transaction per block: commit on exit, rollback on error."""
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(get_engine(), class_=AsyncSession,
                                              expire_on_commit=False)
    async with _session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def existing_tables() -> list[str]:
    engine = get_engine()
    async with engine.connect() as conn:
        return await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())


async def missing_tables() -> list[str]:
    """Tables the store needs that the database does not have yet."""
    return sorted(set(Base.metadata.tables) - set(await existing_tables()))


async def init_db() -> None:
    """Create tenants, call_history and call_attempts if absent."""
    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("database_initialized",
                dialect=engine.dialect.name,
                tables=list(Base.metadata.tables))


async def close_db() -> None:
    global _engine, _session_factory
    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _session_factory = None
    logger.info("database_closed")
