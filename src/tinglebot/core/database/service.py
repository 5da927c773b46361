"""
Async engine and session management for Tinglebot.

All writes go through ``get_transaction()``: commit on clean exit, rollback
and re-raise on any exception. Rows that carry a ``version`` column are
mapped with ``version_id_col``, so a write that lost a race with another
transaction fails with ``StaleDataError`` at flush time; callers that expect
contention wrap the whole transaction in ``DatabaseRetryPolicy``.

>>> async with DatabaseService.get_transaction() as session:
...     raid = await session.scalar(select(Raid).where(Raid.raid_id == raid_id))
...     raid.current_turn += 1

Pooling follows the URL: ``QueuePool`` for PostgreSQL, ``StaticPool`` for
in-memory SQLite (every session must see the same database) and
``NullPool`` for file SQLite and the testing environment.
"""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional, Type

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.pool import NullPool, Pool, QueuePool, StaticPool

from tinglebot.core.config.config import Config
from tinglebot.core.database.base import Base
from tinglebot.core.exceptions import DatabaseInitializationError, DatabaseNotInitializedError
from tinglebot.core.logging.logger import get_logger

logger = get_logger(__name__)


def _pool_for(url: str) -> Type[Pool]:
    if url.startswith("sqlite"):
        return StaticPool if ":memory:" in url else NullPool
    if Config.is_testing():
        return NullPool
    return QueuePool


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000.0, 2)


class DatabaseService:
    """Class-level engine holder; ``initialize()`` once per process."""

    _engine: Optional[AsyncEngine] = None
    _session_factory: Optional[async_sessionmaker[AsyncSession]] = None
    _is_postgres: bool = False
    _init_lock: asyncio.Lock = asyncio.Lock()

    @classmethod
    async def initialize(cls, url: Optional[str] = None) -> None:
        """
        Create the engine and session factory. A no-op when already running.

        ``url`` overrides ``Config.DATABASE_URL``; tests pass a SQLite URL.
        """
        async with cls._init_lock:
            if cls._engine is not None:
                return

            database_url = url or Config.DATABASE_URL
            if not database_url:
                raise DatabaseInitializationError("DATABASE_URL is not configured")

            pool_class = _pool_for(database_url)
            engine_kwargs: Dict[str, Any] = {"echo": Config.DATABASE_ECHO, "poolclass": pool_class}
            if pool_class is QueuePool:
                engine_kwargs.update(
                    pool_size=Config.DATABASE_POOL_SIZE,
                    max_overflow=Config.DATABASE_MAX_OVERFLOW,
                    pool_recycle=Config.DATABASE_POOL_RECYCLE,
                    pool_pre_ping=True,
                )
            if database_url.startswith("sqlite"):
                engine_kwargs["connect_args"] = {"check_same_thread": False}

            try:
                cls._engine = create_async_engine(database_url, **engine_kwargs)
            except Exception as exc:
                logger.error("Database engine creation failed", exc_info=True)
                raise DatabaseInitializationError(f"Database initialization failed: {exc}") from exc

            cls._session_factory = async_sessionmaker(cls._engine, expire_on_commit=False)
            cls._is_postgres = database_url.startswith("postgresql")

            logger.info(
                "Database ready",
                extra={"scheme": database_url.split(":", 1)[0], "pool": pool_class.__name__},
            )

    @classmethod
    async def shutdown(cls) -> None:
        async with cls._init_lock:
            if cls._engine is None:
                return
            try:
                await cls._engine.dispose()
            finally:
                cls._engine = None
                cls._session_factory = None
            logger.info("Database engine disposed")

    @classmethod
    async def create_all(cls) -> None:
        """Create every table registered on ``Base.metadata`` (dev and tests)."""
        engine = cls._require_engine()

        import tinglebot.database.models  # noqa: F401  registers the tables

        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database schema created", extra={"tables": len(Base.metadata.tables)})

    @classmethod
    async def health_check(cls) -> bool:
        """``SELECT 1``; False instead of raising."""
        if cls._engine is None:
            return False
        try:
            async with cls._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except (OperationalError, DBAPIError) as exc:
            logger.warning("Database health check failed", extra={"error": str(exc)})
            return False
        return True

    @classmethod
    def _require_engine(cls) -> AsyncEngine:
        if cls._engine is None or cls._session_factory is None:
            raise DatabaseNotInitializedError()
        return cls._engine

    @classmethod
    async def _open(cls, session: AsyncSession) -> None:
        if cls._is_postgres and Config.DATABASE_STATEMENT_TIMEOUT_MS:
            await session.execute(
                text(f"SET LOCAL statement_timeout = {int(Config.DATABASE_STATEMENT_TIMEOUT_MS)}")
            )

    @classmethod
    @asynccontextmanager
    async def get_session(cls) -> AsyncIterator[AsyncSession]:
        """Session without automatic commit, for reads."""
        cls._require_engine()
        assert cls._session_factory is not None

        async with cls._session_factory() as session:
            await cls._open(session)
            yield session

    @classmethod
    @asynccontextmanager
    async def get_transaction(cls) -> AsyncIterator[AsyncSession]:
        """Session that commits on success and rolls back on any exception."""
        cls._require_engine()
        assert cls._session_factory is not None

        start = time.perf_counter()
        async with cls._session_factory() as session:
            try:
                await cls._open(session)
                yield session
                await session.commit()
            except StaleDataError:
                await session.rollback()
                logger.warning(
                    "Version conflict; transaction rolled back", extra={"ms": _elapsed_ms(start)}
                )
                raise
            except (OperationalError, DBAPIError):
                await session.rollback()
                logger.error("Database error; transaction rolled back", exc_info=True)
                raise
            except Exception:
                await session.rollback()
                raise
