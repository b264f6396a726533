"""Storage handle for the kit database.

KitDatabase owns the async engine and session factory. It is created once
at startup, passed explicitly to every component that needs storage, and
disposed at shutdown. There is no module-level engine.

Key exports:
- KitDatabase.session()      - read session; never commits
- KitDatabase.transaction()  - write session; commits on success, rolls back on error
- KitDatabase.create_schema() / dispose() / check_connection()
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from sqlalchemy import event, text
from sqlalchemy.engine import Connection, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from kit_tracker.core.models import Base
from kit_tracker.settings import Settings

logger = logging.getLogger(__name__)


_WRITE_TRANSACTION = "kit_tracker_write_transaction"


def _configure_sqlite_connection(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
    # The driver defers BEGIN until the first DML statement; SQLAlchemy emits it instead.
    dbapi_connection.isolation_level = None


def _begin_sqlite_transaction(connection: Connection) -> None:
    """Start a SQLite transaction, taking the write lock up front for writes.

    A deferred transaction lets two writers read the same kit version before
    either one writes. BEGIN IMMEDIATE makes the second writer wait until the
    first commits, so it reads the committed version.
    """
    if connection.get_execution_options().get(_WRITE_TRANSACTION):
        connection.exec_driver_sql("BEGIN IMMEDIATE")
    else:
        connection.exec_driver_sql("BEGIN")


def _ensure_sqlite_directory(database_url: str) -> None:
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite" or not url.database or url.database == ":memory:":
        return
    Path(url.database).parent.mkdir(parents=True, exist_ok=True)


class KitDatabase:
    """Async engine plus session factory for the kit tracker schema.

    Args:
        database_url: SQLAlchemy async URL, e.g. sqlite+aiosqlite:///./data/kits.sqlite.
        echo: Echo SQL statements to the log.
        pool_pre_ping: Test pooled connections before use.
    """

    def __init__(self, database_url: str, *, echo: bool = False, pool_pre_ping: bool = True) -> None:
        """Create the engine and session factory.

        Args:
            database_url: SQLAlchemy async connection URL.
            echo: Echo SQL statements to the log.
            pool_pre_ping: Test pooled connections before use.
        """
        _ensure_sqlite_directory(database_url)
        self._engine: AsyncEngine = create_async_engine(
            database_url,
            echo=echo,
            pool_pre_ping=pool_pre_ping,
        )
        if self._engine.dialect.name == "sqlite":
            event.listen(self._engine.sync_engine, "connect", _configure_sqlite_connection)
            event.listen(self._engine.sync_engine, "begin", _begin_sqlite_transaction)

        self._session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            bind=self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        logger.info("Kit database engine initialized (dialect=%s)", self._engine.dialect.name)

    @classmethod
    def from_settings(cls, settings: Settings) -> "KitDatabase":
        """Build a KitDatabase from service settings."""
        return cls(
            settings.database_url,
            echo=settings.database_echo,
            pool_pre_ping=settings.database_pool_pre_ping,
        )

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def create_schema(self) -> None:
        """Create all kit tracker tables that do not exist yet."""
        async with self._engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)
        logger.info("Kit database schema ensured")

    async def dispose(self) -> None:
        """Dispose the engine. Call at application shutdown."""
        logger.info("Disposing kit database engine")
        await self._engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Yield a read session. Nothing is committed; the session is closed on exit.

        Yields:
            AsyncSession: A session that only observes committed data.
        """
        async with self._session_factory() as session:
            yield session

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """Yield a session inside a transaction.

        The transaction commits when the block exits normally and rolls back
        when it raises; the exception is always re-raised. On SQLite the write
        lock is taken when the transaction begins, so concurrent write
        transactions run one after another.

        Yields:
            AsyncSession: A session bound to an open transaction.
        """
        async with self._session_factory() as session:
            async with session.begin():
                await session.connection(execution_options={_WRITE_TRANSACTION: True})
                yield session

    async def check_connection(self) -> bool:
        """Return True if a trivial query succeeds."""
        try:
            async with self._engine.connect() as connection:
                await connection.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as exc:
            logger.error("Kit database connection check failed: %s", exc)
            return False
