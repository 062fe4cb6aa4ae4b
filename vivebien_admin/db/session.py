"""
Database Session Management - Async SQLAlchemy database handle.

One Database per process, opened in the application lifespan and stored on
app.state. With no DATABASE_URL the handle stays unconfigured: reports render
empty and writes fail with DatabaseNotConfiguredError.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import Request
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from vivebien_admin.config import Settings, settings
from vivebien_admin.exceptions import DatabaseNotConfiguredError
from vivebien_admin.observability.logging import get_logger

logger = get_logger(__name__)


class Database:
    """Explicit engine + session factory handle."""

    def __init__(self, config: Settings | None = None) -> None:
        self.config = config or settings
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @property
    def is_configured(self) -> bool:
        """Whether a connection string was supplied."""
        return self.config.database_configured

    @property
    def is_open(self) -> bool:
        return self._session_factory is not None

    def open(self) -> None:
        """Create the engine and session factory. No-op when unconfigured."""
        if not self.is_configured:
            logger.warning("database_not_configured")
            return
        if self._engine is not None:
            return

        engine = create_async_engine(
            self.config.async_database_url,
            pool_size=self.config.database_pool_size,
            max_overflow=self.config.database_max_overflow,
            pool_timeout=self.config.database_pool_timeout,
            pool_recycle=self.config.database_pool_recycle,
            pool_pre_ping=True,
            echo=self.config.log_level == "DEBUG",
        )
        translate_map = self.config.schema_translate_map
        if translate_map:
            engine = engine.execution_options(schema_translate_map=translate_map)

        self._engine = engine
        self._session_factory = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        logger.info("database_opened", schema=self.config.db_schema)

    async def close(self) -> None:
        """Dispose the engine (for graceful shutdown)."""
        if self._engine is not None:
            await self._engine.dispose()
            logger.info("database_closed")
        self._engine = None
        self._session_factory = None

    @property
    def engine(self) -> AsyncEngine | None:
        return self._engine

    def _factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            raise DatabaseNotConfiguredError()
        return self._session_factory

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """
        Get an async session for a single unit of work.

        Usage:
            async with database.session() as session:
                result = await session.execute(...)
        """
        factory = self._factory()
        async with factory() as session:
            yield session


def get_database(request: Request) -> Database:
    """FastAPI dependency returning the process-wide Database handle."""
    database: Database = request.app.state.database
    return database


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency for a write session.

    Usage:
        @router.post("/endpoint")
        async def endpoint(db: AsyncSession = Depends(get_db)):
            ...
    """
    database = get_database(request)
    if not database.is_open:
        raise DatabaseNotConfiguredError()
    async with database.session() as session:
        yield session
