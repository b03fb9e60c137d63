"""Database connection and session management."""

from collections.abc import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from productgen.config import settings


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


# SQLite connection settings for better concurrency
def set_sqlite_pragma(dbapi_connection, connection_record):
    """Set SQLite pragmas for better concurrent access."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")  # Write-Ahead Logging for better concurrency
    cursor.execute("PRAGMA busy_timeout=30000")  # Wait up to 30 seconds if locked
    cursor.execute("PRAGMA synchronous=NORMAL")  # Balance between safety and speed
    cursor.close()


def build_engine(database_url: str, null_pool: bool = False) -> AsyncEngine:
    """Create an async engine.

    Worker processes run each task on a fresh event loop, so they use
    ``null_pool=True`` to avoid reusing connections bound to a closed loop.
    """
    kwargs = {"echo": settings.debug, "pool_pre_ping": True}
    if null_pool:
        kwargs["poolclass"] = NullPool
    new_engine = create_async_engine(database_url, **kwargs)
    if database_url.startswith("sqlite"):
        event.listen(new_engine.sync_engine, "connect", set_sqlite_pragma)
    return new_engine


def build_session_maker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory with the project's defaults."""
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


engine = build_engine(settings.database_url)

async_session_maker = build_session_maker(engine)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency that provides a database session."""
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


def get_db_session():
    """
    Context manager for database sessions outside of FastAPI requests.

    Usage:
        async with get_db_session() as session:
            # use session
    """
    return async_session_maker()


async def create_tables(bind: AsyncEngine) -> None:
    """Create all tables on the given engine."""
    import productgen.models  # noqa: F401  registers mappers

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def init_db() -> None:
    """Initialize database tables."""
    await create_tables(engine)
