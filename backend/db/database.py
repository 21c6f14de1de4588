"""SQLAlchemy async database setup and engine configuration."""

import asyncio
from contextlib import AsyncExitStack, asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine, AsyncSession
from sqlalchemy.pool import StaticPool

from app.config import get_settings


def create_db_engine(database_url: str = None) -> AsyncEngine:
    """Create and configure async SQLAlchemy engine.

    Args:
        database_url: Overrides ``DATABASE_URL`` (tests, Celery workers)

    Returns:
        Async SQLAlchemy engine instance.
    """
    settings = get_settings()
    url = database_url or settings.DATABASE_URL
    kwargs = dict(echo=settings.SQLALCHEMY_ECHO)
    if ":memory:" in url:
        kwargs.update(poolclass=StaticPool, connect_args={"check_same_thread": False})
    elif not url.startswith("sqlite"):
        kwargs.update(
            pool_pre_ping=True,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
        )
    return create_async_engine(url, **kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create async session factory.

    Every engine transition opens its own short-lived session from this
    factory, so sessions are never shared between concurrent dispatches.
    """
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    """Create all tables from registered models.

    This should be called once at application startup.
    """
    from db.base import Base
    import db.models  # noqa: F401 (registers models)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db(engine: AsyncEngine) -> None:
    """Close database connections at application shutdown."""
    await engine.dispose()


class UnitOfWork:
    """Opens one short transaction per engine transition.

    SQLite allows a single writer, so on SQLite engines transactions are
    serialized in-process with an ``asyncio.Lock``. Transactions must not
    be nested.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], serialize: bool = False):
        self.session_factory = session_factory
        self._lock = asyncio.Lock() if serialize else None

    @classmethod
    def for_engine(cls, engine: AsyncEngine) -> "UnitOfWork":
        return cls(create_session_factory(engine), serialize=engine.dialect.name == "sqlite")

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """Yield a session inside ``BEGIN``; commit on success, roll back on error."""
        async with AsyncExitStack() as stack:
            if self._lock is not None:
                await stack.enter_async_context(self._lock)
            session = await stack.enter_async_context(self.session_factory())
            await stack.enter_async_context(session.begin())
            yield session
