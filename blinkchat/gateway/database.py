"""
Database Configuration
======================
Async SQLAlchemy 2.0 engine and session factory.
Uses asyncpg for PostgreSQL and aiosqlite for SQLite.
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from ..config import get_settings

# ── Engine (lazily initialized) ──────────────────────────────
_engine = None
_session_factory = None


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


def create_engine_for(database_url: str) -> AsyncEngine:
    """Build an async engine with pool settings suited to the driver."""
    if database_url.startswith("sqlite"):
        # SQLite pools are single-connection; size options do not apply.
        return create_async_engine(database_url, echo=False)
    return create_async_engine(
        database_url,
        echo=False,
        pool_size=5,
        max_overflow=10,
    )


def get_engine() -> AsyncEngine:
    """Get or create the async engine."""
    global _engine
    if _engine is None:
        _engine = create_engine_for(get_settings().database_url)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create the async session factory."""
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _session_factory


async def init_db(engine: AsyncEngine | None = None) -> None:
    """Create all tables (idempotent: safe to call on every startup)."""
    from . import orm  # noqa: F401  (registers tables on Base.metadata)

    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose the engine and clean up connections."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
