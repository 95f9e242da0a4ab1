"""
Database Configuration Module
Async engine + session factory for the trust ledger and audit tables.

The engine is built lazily from DATABASE_URL so that importing models
(or running unit tests against their own engine) never needs a live database.
"""
import os

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base

# Base for models
Base = declarative_base()

_engine: AsyncEngine | None = None
_AsyncSessionLocal: async_sessionmaker[AsyncSession] | None = None


def build_engine(database_url: str, **kwargs) -> AsyncEngine:
    """
    Create an async engine with pooling defaults suitable for the backend.

    Connection recycling only applies to server databases; pool sizing
    (pool_size, max_overflow, pool_timeout) can be passed through kwargs.
    """
    options = {"echo": False, "pool_pre_ping": True}
    if not database_url.startswith("sqlite"):
        options["pool_recycle"] = 3600   # Recycle connections after 1 hour
    options.update(kwargs)
    return create_async_engine(database_url, **options)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory used by UnitOfWork."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def get_engine() -> AsyncEngine:
    """Process-wide engine built from DATABASE_URL on first use."""
    global _engine
    if _engine is None:
        database_url = os.getenv("DATABASE_URL")
        if not database_url:
            raise ValueError("DATABASE_URL environment variable is not set")
        _engine = build_engine(database_url)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _AsyncSessionLocal
    if _AsyncSessionLocal is None:
        _AsyncSessionLocal = build_session_factory(get_engine())
    return _AsyncSessionLocal


async def create_schema(engine: AsyncEngine) -> None:
    """Create all trust tables (idempotent)."""
    import models  # noqa: F401  registers tables on Base.metadata

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db_connections() -> None:
    """
    Gracefully close all database connections.
    Call this on application shutdown.
    """
    global _engine, _AsyncSessionLocal
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _AsyncSessionLocal = None
