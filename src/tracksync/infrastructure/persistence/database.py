"""Database session management."""

import logging
from collections.abc import AsyncGenerator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from tracksync.config import DatabaseSettings

logger = logging.getLogger(__name__)

# Factory for one transactional unit of work, i.e. Database.session_scope
SessionScope = Callable[[], AbstractAsyncContextManager[AsyncSession]]


class Database:
    """Async engine plus session factory.

    Services receive ``database.session_scope`` (an async context manager
    factory) and build repositories on the yielded session, so each unit of
    work commits on its own.
    """

    def __init__(self, settings: DatabaseSettings) -> None:
        """Initialize database with settings."""
        self.settings = settings
        self._is_sqlite = settings.url.startswith("sqlite")

        engine_kwargs: dict[str, Any] = {
            "echo": settings.echo,
            "pool_pre_ping": settings.pool_pre_ping,
        }

        if settings.url.startswith("postgresql"):
            engine_kwargs.update(
                {
                    "pool_size": settings.pool_size,
                    "max_overflow": settings.max_overflow,
                    "pool_timeout": settings.pool_timeout,
                    "pool_recycle": settings.pool_recycle,
                }
            )
        elif self._is_sqlite:
            # Wait up to 30s for a lock instead of failing immediately
            engine_kwargs["connect_args"] = {"timeout": 30}

        self._engine = create_async_engine(settings.url, **engine_kwargs)

        if self._is_sqlite:
            self._enable_sqlite_foreign_keys()

        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    def _enable_sqlite_foreign_keys(self) -> None:
        """Enable foreign key constraints for every SQLite connection."""

        @event.listens_for(self._engine.sync_engine, "connect")
        def set_sqlite_pragma(dbapi_conn: Any, _connection_record: Any) -> None:
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    # Hey future me, this is THE unit-of-work boundary. Commit on clean exit, rollback on ANY
    # exception (then re-raise). The sync engine relies on this: the local write commits when the
    # block exits, BEFORE any platform call starts, so a failed sync can't roll it back.
    @asynccontextmanager
    async def session_scope(self) -> AsyncGenerator[AsyncSession, None]:
        """Provide a transactional scope for database operations."""
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def close(self) -> None:
        """Dispose the engine and its connection pool."""
        await self._engine.dispose()

    async def create_tables(self) -> None:
        """Create all tables (tests and first-run bootstrap)."""
        from tracksync.infrastructure.persistence.models import Base

        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def drop_tables(self) -> None:
        """Drop all tables (for testing only)."""
        from tracksync.infrastructure.persistence.models import Base

        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
