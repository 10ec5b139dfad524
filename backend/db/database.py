"""SQLAlchemy async database setup and engine configuration."""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.config import Settings, get_settings


def create_db_engine(settings: Settings | None = None, **overrides) -> AsyncEngine:
    """Create and configure an async SQLAlchemy engine.

    SQLite (tests, local development) gets no pool sizing; PostgreSQL
    uses the configured pool.
    """
    settings = settings or get_settings()
    is_sqlite = settings.DATABASE_URL.startswith("sqlite")
    kwargs = dict(echo=settings.SQLALCHEMY_ECHO)
    if not is_sqlite:
        kwargs.update(
            pool_pre_ping=True,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_recycle=1800,
        )
    kwargs.update(overrides)
    return create_async_engine(settings.DATABASE_URL, **kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


# Global engine and session factory instances
engine = create_db_engine()
AsyncSessionLocal = create_session_factory(engine)


async def init_db(bind: AsyncEngine | None = None) -> None:
    """Create all tables. Called once at application startup."""
    from db.base import Base
    import db.models  # noqa: F401  registers the models

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Close database connections at application shutdown."""
    await engine.dispose()


@asynccontextmanager
async def worker_session_factory() -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    """Session factory bound to a fresh engine, for Celery tasks.

    Each Celery task runs its own event loop, so asyncpg connections
    from the global engine cannot be reused there.

    Usage:
        async with worker_session_factory() as session_factory:
            store = DatabaseWorkflowStore(session_factory)
    """
    worker_engine = create_db_engine()
    try:
        yield create_session_factory(worker_engine)
    finally:
        await worker_engine.dispose()
