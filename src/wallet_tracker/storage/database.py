"""Async engine and session handling for the ledger store.

PostgreSQL (asyncpg) is the production target; sqlite+aiosqlite backs local
runs and tests. Dialect-specific engine options are chosen from the URL so
callers only ever pass a DATABASE_URL.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from wallet_tracker.storage.models import Base

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)

_SQLITE_MEMORY_SUFFIX = ":memory:"


def normalize_database_url(database_url: str) -> str:
    """Map a sync PostgreSQL URL onto the asyncpg driver."""
    if database_url.startswith("postgresql://"):
        logger.warning("DATABASE_URL uses 'postgresql://'; switching to 'postgresql+asyncpg://'")
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return database_url


def engine_options(database_url: str, *, pool_size: int, max_overflow: int, echo: bool) -> dict[str, Any]:
    """Engine keyword arguments appropriate for the URL's dialect."""
    options: dict[str, Any] = {"echo": echo}
    if database_url.startswith("postgresql"):
        options.update(pool_size=pool_size, max_overflow=max_overflow, pool_pre_ping=True)
    elif database_url.endswith(_SQLITE_MEMORY_SUFFIX):
        # Every session must see the same in-memory database.
        options.update(poolclass=StaticPool, connect_args={"check_same_thread": False})
    return options


class DatabaseManager:
    """Owns the async engine and hands out sessions bound to it.

    Example:
        ```python
        db = DatabaseManager("sqlite+aiosqlite:///tracker.db")
        await db.create_schema()
        async with db.session() as session:
            record = await AddressRepository(session).get("bc1q...")
        await db.dispose()
        ```
    """

    def __init__(
        self,
        database_url: str,
        *,
        pool_size: int = 5,
        max_overflow: int = 10,
        echo: bool = False,
    ) -> None:
        """Initialize the manager; the engine is created lazily.

        Args:
            database_url: Database connection URL.
            pool_size: Connection pool size (PostgreSQL only).
            max_overflow: Connections allowed beyond the pool (PostgreSQL only).
            echo: Log emitted SQL.
        """
        self.database_url = normalize_database_url(database_url)
        self._options = engine_options(
            self.database_url,
            pool_size=pool_size,
            max_overflow=max_overflow,
            echo=echo,
        )
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            self._engine = create_async_engine(self.database_url, **self._options)
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        """Session factory shared by the sync engine and the tracker facade."""
        if self._session_factory is None:
            self._session_factory = async_sessionmaker(bind=self.engine, expire_on_commit=False)
        return self._session_factory

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Session that commits on normal exit and rolls back on any exception."""
        session = self.session_factory()
        try:
            yield session
            await session.commit()
        except BaseException:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def create_schema(self) -> None:
        """Create the addresses and transactions tables if missing.

        Alembic migrations are the production path; this serves local runs.
        """
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database schema created")

    async def dispose(self) -> None:
        """Close pooled connections; the manager can be reused afterwards."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("Database connections disposed")
