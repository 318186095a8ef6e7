"""
Async engine and per-operation sessions for the task/notification tables.

The engine is built lazily from ``settings.database`` (or an explicit URL)
and shared by every SqlStore call in the process. Plain URLs are mapped to
their async drivers:

  postgresql:// , postgres://      → postgresql+asyncpg://
  mysql:// , mysql+pymysql://      → mysql+aiomysql://
  sqlite://                        → sqlite+aiosqlite://

Usage:
    await init_db()                    # API lifespan / worker startup
    async with get_session() as db:    # one transaction per store call
        ...
    await close_db()                   # shutdown
"""
from __future__ import annotations

import structlog
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator, Optional

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker,
)

from config.settings import DatabaseConfig, get_settings
from database.models import Base

logger = structlog.get_logger()

_ASYNC_DRIVERS = {
    "postgresql": "postgresql+asyncpg",
    "postgres": "postgresql+asyncpg",
    "mysql": "mysql+aiomysql",
    "mysql+pymysql": "mysql+aiomysql",
    "sqlite": "sqlite+aiosqlite",
}

_engine: Optional[AsyncEngine] = None
_sessions: Optional[async_sessionmaker[AsyncSession]] = None


def _to_async_url(db_url: str) -> str:
    """Swap a sync scheme for its async driver; async URLs pass through."""
    scheme, sep, rest = db_url.partition("://")
    if not sep or scheme not in _ASYNC_DRIVERS:
        return db_url
    return f"{_ASYNC_DRIVERS[scheme]}://{rest}"


def _redacted(engine: AsyncEngine) -> str:
    return engine.url.render_as_string(hide_password=True)


def _prepare_sqlite_path(db_url: str) -> None:
    database = make_url(db_url).database
    if database and database != ":memory:":
        Path(database).parent.mkdir(parents=True, exist_ok=True)


def _engine_options(db_url: str, cfg: DatabaseConfig) -> dict:
    if db_url.startswith("sqlite"):
        # aiosqlite runs the connection on its own thread
        return {"echo": cfg.echo, "connect_args": {"check_same_thread": False}}
    return {
        "echo": cfg.echo,
        "pool_size": cfg.pool_size,
        "max_overflow": cfg.max_overflow,
        "pool_recycle": 1800,
        "pool_pre_ping": True,
    }


def get_engine(db_url: Optional[str] = None) -> AsyncEngine:
    """Return the process-wide engine, creating it on first call."""
    global _engine
    if _engine is not None:
        return _engine

    cfg = get_settings().database
    url = _to_async_url(db_url or cfg.url)
    if url.startswith("sqlite"):
        _prepare_sqlite_path(url)
    _engine = create_async_engine(url, **_engine_options(url, cfg))
    logger.info("database_engine_created",
                dialect=_engine.dialect.name,
                url=_redacted(_engine))
    return _engine


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """One transaction: committed on exit, rolled back on error."""
    global _sessions
    if _sessions is None:
        _sessions = async_sessionmaker(get_engine(), expire_on_commit=False)
    async with _sessions() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db(db_url: Optional[str] = None) -> None:
    """Create the tasks and notifications tables if they are missing."""
    engine = get_engine(db_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("database_initialized",
                dialect=engine.dialect.name,
                tables=sorted(Base.metadata.tables))


async def close_db() -> None:
    """Dispose pooled connections; the next get_engine() starts fresh."""
    global _engine, _sessions
    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _sessions = None
    logger.info("database_closed")
