"""Database connection and session management."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from catalog_ingest.config import settings
from catalog_ingest.models import Base


def make_engine(url: str, *, echo: bool = False) -> AsyncEngine:
    """Create an async engine for the given URL.

    SQLite (aiosqlite) gets pysqlite's transaction handling turned off so that
    SQLAlchemy emits BEGIN itself; SAVEPOINTs used by the approval commit need it.
    In-memory SQLite shares a single connection across sessions.
    """
    if not url.startswith("sqlite"):
        return create_async_engine(url, echo=echo, pool_timeout=settings.database_pool_timeout)

    kwargs: dict[str, Any] = {}
    if ":memory:" in url or url.rstrip("/").endswith("sqlite+aiosqlite:"):
        kwargs["poolclass"] = StaticPool
    sqlite_engine = create_async_engine(url, echo=echo, **kwargs)

    @event.listens_for(sqlite_engine.sync_engine, "connect")
    def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(sqlite_engine.sync_engine, "begin")
    def _on_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN")

    return sqlite_engine


engine = make_engine(settings.database_url, echo=settings.database_echo)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting async database sessions."""
    async with async_session_factory() as session:
        yield session


async def init_db(target: AsyncEngine | None = None) -> None:
    """Initialize database tables."""
    async with (target or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
