"""Database configuration and base models"""

import logging
from pathlib import Path
from typing import Callable

from sqlalchemy import Connection, event
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError, InvalidRequestError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from occ_repro.core.config import Settings
from occ_repro.core.exceptions import ConfigurationError

logger = logging.getLogger("occ-repro.models.database")

# Plain URL scheme -> async driver
ASYNC_DRIVERS = {
    "sqlite": "sqlite+aiosqlite",
    "postgresql": "postgresql+asyncpg",
    "postgres": "postgresql+asyncpg",
    "mysql": "mysql+aiomysql",
}


class Base(DeclarativeBase):
    """Base class for all database models"""

    pass


def to_async_url(connection_string: str) -> str:
    """
    Convert a plain SQLAlchemy URL to its async driver variant.

    URLs that already name a driver are returned unchanged.

    Raises:
        ConfigurationError: If the connection string is empty or unparsable
    """
    if not connection_string or not connection_string.strip():
        raise ConfigurationError("connection string required")

    try:
        url = make_url(connection_string.strip())
    except ArgumentError as e:
        raise ConfigurationError(
            "invalid connection string",
            details={"error": str(e)},
        ) from e

    if "+" not in url.drivername and url.drivername in ASYNC_DRIVERS:
        url = url.set(drivername=ASYNC_DRIVERS[url.drivername])

    return url.render_as_string(hide_password=False)


class Database:
    """
    Async engine and session factory for one backend.

    Usage:
        >>> database = Database(settings)
        >>> await database.create_schema()
        >>> async with database.session_factory() as session:
        ...     ...
        >>> await database.dispose()
    """

    def __init__(self, settings: Settings):
        if settings.connection_string is None:
            raise ConfigurationError("connection string required")

        self.settings = settings
        self.url = to_async_url(settings.connection_string)
        try:
            self.engine: AsyncEngine = create_async_engine(
                self.url,
                echo=settings.echo_sql,
                future=True,
                pool_pre_ping=True,
            )
        except (ArgumentError, InvalidRequestError) as e:
            # Unknown dialect or a driver without asyncio support
            raise ConfigurationError(
                "unsupported connection string",
                details={"error": str(e)},
            ) from e

        if self.engine.dialect.name == "sqlite":
            self._configure_sqlite()

        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

        logger.info(f"Database initialized with URL: {self.engine.url!r}")

    def _configure_sqlite(self) -> None:
        database = self.engine.url.database
        if database and database != ":memory:":
            Path(database).parent.mkdir(parents=True, exist_ok=True)

        @event.listens_for(self.engine.sync_engine, "connect")
        def set_sqlite_pragma(dbapi_conn, connection_record):
            """Set SQLite pragmas for concurrent writers"""
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA busy_timeout=30000")  # 30 seconds
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.close()

        logger.debug("SQLite WAL mode and busy timeout configured")

    async def _run_ddl(self, operation: Callable[[Connection], None]) -> None:
        # Imported here: the services package imports the models
        from occ_repro.services.retry_service import call_with_retry

        async def attempt() -> None:
            async with self.engine.begin() as conn:
                await conn.run_sync(operation)

        await call_with_retry(
            attempt,
            max_attempts=self.settings.retry_attempts,
            min_wait=self.settings.retry_min_wait,
            max_wait=self.settings.retry_max_wait,
        )

    async def create_schema(self) -> None:
        """Create tables that do not exist yet"""
        await self._run_ddl(Base.metadata.create_all)
        logger.info("Database schema created")

    async def drop_schema(self) -> None:
        """Drop tables that exist"""
        await self._run_ddl(Base.metadata.drop_all)
        logger.info("Database schema dropped")

    async def reset_schema(self) -> None:
        """Drop and recreate all tables"""
        await self.drop_schema()
        await self.create_schema()

    async def dispose(self) -> None:
        """Close database connections"""
        await self.engine.dispose()
        logger.info("Database connections closed")
