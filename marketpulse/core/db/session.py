"""Async engine and session factory."""
from __future__ import annotations

import structlog
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from marketpulse.core.db.models import Base

logger = structlog.get_logger()


def create_engine(database_url: str) -> AsyncEngine:
    if database_url.startswith("sqlite"):
        # One connection per session; sqlite serialises writers via its file lock.
        return create_async_engine(database_url, poolclass=NullPool, connect_args={"timeout": 30})
    return create_async_engine(database_url, pool_pre_ping=True)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


async def init_db(engine: AsyncEngine) -> None:
    """Create all tables if they don't exist (local runs and tests; prod uses alembic)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("db.initialized", url=engine.url.render_as_string(hide_password=True))


def dialect_insert(session: AsyncSession, table):
    """INSERT construct supporting ON CONFLICT for the session's dialect."""
    name = session.get_bind().dialect.name
    if name == "postgresql":
        return postgresql.insert(table)
    if name == "sqlite":
        return sqlite.insert(table)
    raise RuntimeError(f"Upserts not supported on dialect {name!r}")
