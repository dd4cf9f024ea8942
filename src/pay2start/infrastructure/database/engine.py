"""Async engine and per-request sessions.

One engine per process, created lazily from settings. Postgres (asyncpg) in
every deployed environment; SQLite (aiosqlite) is accepted for local runs
and gets foreign-key enforcement switched on per connection.

Request handlers never commit themselves: services flush, and
get_async_session commits once the handler returns (or rolls back if it
raised). Two services commit early on purpose: the signing guard (see
SigningService) and the void claim (see VoidService).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from pay2start.config import Settings, get_settings
from pay2start.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

logger = get_logger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def _create_engine(settings: Settings) -> AsyncEngine:
    if settings.database_url.startswith("sqlite"):
        engine = create_async_engine(settings.database_url, echo=settings.db_echo_sql)

        @event.listens_for(engine.sync_engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):  # noqa: ANN001
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        logger.info("database.engine_created", backend="sqlite")
        return engine

    engine = create_async_engine(
        settings.database_url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_timeout=settings.db_pool_timeout,
        pool_pre_ping=True,
        echo=settings.db_echo_sql,
    )
    logger.info(
        "database.engine_created",
        backend="postgresql",
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
    )
    return engine


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        _engine = _create_engine(get_settings())
    return _engine


def _get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            bind=get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    return _session_factory


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield a session; commit when the request succeeds, roll back when it raises."""
    async with _get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def check_database(engine: AsyncEngine | None = None) -> None:
    """Round-trip a trivial query. Raises whatever the driver raises."""
    async with (engine or get_engine()).connect() as conn:
        await conn.execute(text("SELECT 1"))


async def init_db() -> None:
    """Create missing tables in development; deployed databases use Alembic."""
    from pay2start.infrastructure.database.orm_models import Base

    if not get_settings().is_development:
        logger.info("database.skipping_create_all", reason="not in development mode")
        return

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("database.tables_created", tables=sorted(Base.metadata.tables))


async def close_db() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        logger.info("database.engine_disposed")
        _engine = None
        _session_factory = None
