"""
Async database handle with separate reader and writer pools.

All writes go through a writer engine whose pool holds a single connection,
which serialises writers on SQLite (and is harmless on MySQL/PostgreSQL, where
row locks do the same job). Reads use a bounded reader pool; on SQLite the
database runs in WAL mode so readers never block the writer.
"""
import asyncio
import logging
from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, TypeVar

from sqlalchemy import event, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from shiori.core.config import Settings
from shiori.db.migrations import (
    LATEST_VERSION,
    MIGRATIONS,
    Migration,
    MigrationRequiredError,
    run_migrations,
)
from shiori.db.migrations.runner import get_schema_version, parse_version, set_schema_version

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Retries for "database is locked" on SQLite (another process holds the lock)
WRITE_RETRIES = 3
RETRY_BASE_DELAY = 0.1

SQLITE_PRAGMAS = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA busy_timeout=5000",
    "PRAGMA synchronous=NORMAL",
    "PRAGMA foreign_keys=ON",
)


def _set_sqlite_pragmas(dbapi_connection: Any, _connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    try:
        for pragma in SQLITE_PRAGMAS:
            cursor.execute(pragma)
    finally:
        cursor.close()


def is_locked_error(error: OperationalError) -> bool:
    """True if the error is SQLite's transient lock contention."""
    message = str(error.orig).lower()
    return "database is locked" in message or "database table is locked" in message


class Database:
    """
    Owns every database connection of the process.

    Use `reader()` for queries and `writer()` (or `write()`, which retries on
    lock contention) for anything that modifies data. Both yield an
    `AsyncSession`; the writer commits on success and rolls back on error.
    """

    def __init__(
        self,
        url: str,
        *,
        pool_size: int = 5,
        write_timeout: float = 10.0,
        data_dir: Path | None = None,
        echo: bool = False,
    ) -> None:
        parsed = make_url(url)
        self.url = url
        self.dialect = parsed.get_backend_name()
        self.data_dir = data_dir

        if self.dialect == "sqlite" and parsed.database in (None, "", ":memory:"):
            raise ValueError("SQLite needs a database file; in-memory databases are not supported")

        self.writer_engine: AsyncEngine = create_async_engine(
            url,
            echo=echo,
            pool_size=1,
            max_overflow=0,
            pool_timeout=write_timeout,
            pool_pre_ping=self.dialect != "sqlite",
        )
        self.reader_engine: AsyncEngine = create_async_engine(
            url,
            echo=echo,
            pool_size=pool_size,
            max_overflow=0,
            pool_pre_ping=self.dialect != "sqlite",
        )

        if self.dialect == "sqlite":
            for engine in (self.writer_engine, self.reader_engine):
                event.listen(engine.sync_engine, "connect", _set_sqlite_pragmas)

        self._reader_factory = async_sessionmaker(
            self.reader_engine, class_=AsyncSession, expire_on_commit=False,
        )
        self._writer_factory = async_sessionmaker(
            self.writer_engine, class_=AsyncSession, expire_on_commit=False,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        """Create the database handle described by `settings`."""
        return cls(
            settings.resolved_database_url,
            pool_size=settings.db_pool_size,
            write_timeout=settings.db_write_timeout,
            data_dir=settings.dir,
        )

    @property
    def sqlite_path(self) -> Path | None:
        """Database file path when running on SQLite."""
        if self.dialect != "sqlite":
            return None
        return Path(make_url(self.url).database)

    async def init(self) -> None:
        """Create the SQLite parent directory and verify connectivity."""
        if self.sqlite_path is not None:
            self.sqlite_path.parent.mkdir(parents=True, exist_ok=True)
        async with self.writer_engine.connect() as connection:
            await connection.execute(text("SELECT 1"))

    @asynccontextmanager
    async def reader(self) -> AsyncGenerator[AsyncSession]:
        """Yield a session from the reader pool. Nothing is committed."""
        async with self._reader_factory() as session:
            yield session

    @asynccontextmanager
    async def writer(self) -> AsyncGenerator[AsyncSession]:
        """
        Yield a session on the single writer connection.

        Unit-of-work: services flush, the transaction commits here once the
        block exits cleanly and rolls back if anything raises.
        """
        async with self._writer_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def write(self, fn: Callable[[AsyncSession], Awaitable[T]]) -> T:
        """
        Run `fn` in a writer transaction, retrying when SQLite is locked.

        The whole unit of work is replayed on retry, so `fn` must not have
        side effects outside the session.
        """
        for attempt in range(1, WRITE_RETRIES + 1):
            try:
                async with self.writer() as session:
                    return await fn(session)
            except OperationalError as e:
                if not is_locked_error(e) or attempt == WRITE_RETRIES:
                    raise
                delay = RETRY_BASE_DELAY * 2 ** (attempt - 1)
                logger.warning(
                    "Database is locked, retrying in %.2fs (attempt %d/%d)",
                    delay, attempt, WRITE_RETRIES,
                )
                await asyncio.sleep(delay)
        raise AssertionError("unreachable")

    async def get_schema_version(self) -> str:
        """Return the recorded schema version (0.0.0 for an empty database)."""
        async with self.reader_engine.connect() as connection:
            return await connection.run_sync(get_schema_version)

    async def set_schema_version(self, version: str) -> None:
        """Overwrite the recorded schema version."""
        async with self.writer_engine.begin() as connection:
            await connection.run_sync(set_schema_version, version)

    async def migrate(self, migrations: list[Migration] | None = None) -> str:
        """Apply pending migrations and return the resulting version."""
        async with self.writer_engine.connect() as connection:
            version = await connection.run_sync(
                run_migrations,
                MIGRATIONS if migrations is None else migrations,
                self.data_dir,
            )
            await connection.commit()
        logger.info("Database schema is at version %s", version)
        return version

    async def check_schema_version(self) -> None:
        """
        Refuse to run against an outdated schema.

        Raises:
            MigrationRequiredError: If the recorded version is behind the code.
        """
        current = await self.get_schema_version()
        if parse_version(current) < parse_version(LATEST_VERSION):
            raise MigrationRequiredError(current, LATEST_VERSION)

    async def dispose(self) -> None:
        """Close every pooled connection."""
        await self.reader_engine.dispose()
        await self.writer_engine.dispose()
