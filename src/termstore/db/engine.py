"""Async engine and session factory for one on-disk user store."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from sqlalchemy import event, select
from sqlalchemy.ext.asyncio import (
    AsyncConnection,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from termstore.db.models import MigrationStatus
from termstore.db.paths import StoreKind

logger = logging.getLogger(__name__)


def sqlite_url(path: Path, read_only: bool = False) -> str:
    """Build an aiosqlite URL for a database file."""
    if read_only:
        return f"sqlite+aiosqlite:///file:{path}?mode=ro&uri=true"
    return f"sqlite+aiosqlite:///{path}"


def _enable_transactional_ddl(engine: AsyncEngine) -> None:
    """Make ``engine.begin()`` wrap DDL as well as DML in one transaction.

    The sqlite3 driver only opens transactions implicitly before DML, so an
    ``ALTER TABLE`` followed by a backfill would otherwise not roll back as
    a unit.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def create_engine_for(path: Path, read_only: bool = False) -> AsyncEngine:
    """Create an async engine on ``path`` with transactional DDL enabled."""
    engine = create_async_engine(sqlite_url(path, read_only=read_only), echo=False)
    _enable_transactional_ddl(engine)
    return engine


class DatabaseHandle:
    """Open connection to one user's store.

    Usage:
        async with handle.session() as session:
            result = await session.execute(...)
    """

    def __init__(self, path: Path, user_id: int, kind: StoreKind) -> None:
        self.path = Path(path)
        self.user_id = user_id
        self.kind = kind
        self.engine: AsyncEngine = create_engine_for(self.path)
        self._session_factory = async_sessionmaker(self.engine, expire_on_commit=False)
        self._closed = False

    def __repr__(self) -> str:
        """Return developer-friendly representation of DatabaseHandle."""
        return f"<DatabaseHandle user={self.user_id} kind={self.kind} path={self.path}>"

    @property
    def closed(self) -> bool:
        """True once ``close`` has been called."""
        return self._closed

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Yield a session; commit on success, roll back on error."""
        if self._closed:
            raise RuntimeError(f"Database handle for {self.path} is closed.")
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    @asynccontextmanager
    async def begin(self) -> AsyncGenerator[AsyncConnection, None]:
        """Yield a connection inside a single transaction."""
        if self._closed:
            raise RuntimeError(f"Database handle for {self.path} is closed.")
        async with self.engine.begin() as conn:
            yield conn

    async def close(self) -> None:
        """Dispose the engine and release connections."""
        if not self._closed:
            await self.engine.dispose()
            self._closed = True
            logger.info("Closed database %s", self.path)

    # ------------------------------------------------------------------
    # Migration status (read-only for callers outside the migrator)
    # ------------------------------------------------------------------

    async def get_migration_status(self, data_source: str) -> MigrationStatus | None:
        """Return the status row for ``data_source``, or None."""
        async with self.session() as s:
            stmt = select(MigrationStatus).where(MigrationStatus.data_source == data_source)
            result = await s.execute(stmt)
            return result.scalar_one_or_none()

    async def get_all_migration_statuses(self) -> list[MigrationStatus]:
        """Return every status row ordered by data source."""
        async with self.session() as s:
            stmt = select(MigrationStatus).order_by(MigrationStatus.data_source)
            result = await s.execute(stmt)
            return list(result.scalars().all())
