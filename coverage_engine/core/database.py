"""Async SQLAlchemy engine and session management for the record store."""

from typing import Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from coverage_engine.utils.logging import get_logger

LOGGER = get_logger(__name__)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


def create_engine_from_url(url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine for the given URL.

    SQLite needs a longer busy timeout because concurrent coverage batches
    queue on the database-level write lock.
    """
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args["timeout"] = 30
    return create_async_engine(url, echo=echo, future=True, connect_args=connect_args)


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


class DatabaseClient:
    """Database client with connection and schema management."""

    def __init__(self, engine: AsyncEngine):
        """Initialize database client.

        Args:
            engine: SQLAlchemy async engine
        """
        self.engine = engine
        self.session_maker = create_session_maker(engine)
        self._connected = False

    @classmethod
    def from_url(cls, url: str, echo: bool = False) -> "DatabaseClient":
        return cls(create_engine_from_url(url, echo=echo))

    async def connect(self) -> bool:
        """Test database connection."""
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            self._connected = True
            LOGGER.info("Database connection successful")
            return True
        except Exception:
            self._connected = False
            LOGGER.error("Database connection failed", exc_info=True)
            raise

    async def disconnect(self) -> None:
        """Close database connection."""
        await self.engine.dispose()
        self._connected = False
        LOGGER.info("Database connection closed")

    async def create_tables(self) -> None:
        """Create all record store tables that don't exist yet."""
        # Register models on Base.metadata
        from coverage_engine.database import models  # noqa: F401

        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            LOGGER.info("Database tables created/verified successfully")
        except Exception as e:
            LOGGER.error(
                "Failed to create database tables",
                exc_info=True,
                extra={"error": str(e)}
            )
            raise

    async def drop_tables(self) -> None:
        """Drop all record store tables.

        WARNING: This will delete all data!
        """
        from coverage_engine.database import models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        LOGGER.warning("All database tables dropped")

    async def health_check(self) -> dict:
        """Check database health."""
        try:
            async with self.engine.connect() as conn:
                val = await conn.scalar(text("SELECT 1"))
            self._connected = True
            return {
                "status": "healthy",
                "connected": True,
                "dialect": self.engine.dialect.name,
                "latency_test": "passed" if val == 1 else "failed",
            }
        except Exception as e:
            self._connected = False
            LOGGER.error("Database health check failed", extra={"error": str(e)})
            return {
                "status": "unhealthy",
                "connected": False,
                "error": str(e),
            }

    @property
    def is_connected(self) -> bool:
        """Check if database is connected."""
        return self._connected


_db_client: Optional[DatabaseClient] = None


def get_db_client() -> DatabaseClient:
    """Return the process-wide client, building it from settings on first use."""
    global _db_client
    if _db_client is None:
        from coverage_engine.core.config import settings

        _db_client = DatabaseClient.from_url(settings.database_url, echo=settings.store.echo)
    return _db_client


def set_db_client(client: Optional[DatabaseClient]) -> None:
    """Replace the process-wide client (used by tests and the CLI)."""
    global _db_client
    _db_client = client


async def init_database(create_tables: bool = True) -> None:
    """Initialize database connection and optionally create tables."""
    LOGGER.info("Initializing database connection...")
    client = get_db_client()
    await client.connect()
    if create_tables:
        await client.create_tables()
    LOGGER.info("Database initialization completed")


async def close_database() -> None:
    """Close database connection."""
    if _db_client is None:
        return
    try:
        LOGGER.info("Closing database connection...")
        await _db_client.disconnect()
    except Exception as e:
        LOGGER.error(
            "Error closing database",
            exc_info=True,
            extra={"error": str(e)}
        )
