from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import Any, AsyncIterator

from sqlalchemy import event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from slotshare.core.config import Settings, get_settings
from slotshare.core.errors import PersistenceError
from slotshare.domain.models import Base


logger = logging.getLogger(__name__)


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def _install_sqlite_hooks(engine: AsyncEngine) -> None:
    # pysqlite defers BEGIN until the first write; take the write lock up front so
    # check-then-reserve sequences serialize the same way row locks do on Postgres.
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, _connection_record) -> None:  # type: ignore[no-untyped-def]
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn) -> None:  # type: ignore[no-untyped-def]
        conn.exec_driver_sql("BEGIN IMMEDIATE")


class Database:
    """Owns the async engine and session factory for one process.

    Construct once at startup, pass by reference, and call :meth:`dispose` on
    shutdown. Use :meth:`transaction` for multi-row writes: it commits on a clean
    exit and rolls back on every other exit path, cancellation included.
    """

    def __init__(self, url: str | None = None, *, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self.url = url or self._settings.database_url
        engine_kwargs: dict[str, Any] = {"pool_pre_ping": True}
        # Configure bounded asyncpg pools for predictable latency under load.
        if not _is_sqlite(self.url):
            engine_kwargs["pool_size"] = max(1, int(self._settings.db_pool_size))
            engine_kwargs["max_overflow"] = max(0, int(self._settings.db_max_overflow))
            engine_kwargs["pool_timeout"] = self._settings.db_pool_timeout_s
            engine_kwargs["pool_recycle"] = 1800
            if self._settings.db_statement_timeout_ms > 0:
                engine_kwargs["connect_args"] = {
                    "server_settings": {
                        "statement_timeout": str(int(self._settings.db_statement_timeout_ms))
                    }
                }
        self.engine: AsyncEngine = create_async_engine(self.url, **engine_kwargs)
        if _is_sqlite(self.url):
            _install_sqlite_hooks(self.engine)
        self._sessionmaker = async_sessionmaker(self.engine, expire_on_commit=False)

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        # Plain session for reads and caller-managed commits.
        async with self._sessionmaker() as session:
            try:
                yield session
            except SQLAlchemyError as exc:
                logger.exception("db_session_failed")
                raise PersistenceError("Database operation failed") from exc

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        async with self._sessionmaker() as session:
            try:
                async with session.begin():
                    yield session
            except SQLAlchemyError as exc:
                logger.exception("db_transaction_failed")
                raise PersistenceError("Database operation failed") from exc

    async def create_all(self) -> None:
        # Dev/test bootstrap; deployed schemas are managed by Alembic.
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()
