"""Database engine and session factory for async SQLAlchemy."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ipgate.core.config import Settings

SessionFactory = async_sessionmaker[AsyncSession]


def create_engine(settings: Settings) -> AsyncEngine:
    """Create the async engine for the configured DSN."""
    return create_async_engine(settings.database_dsn, pool_pre_ping=True)


def create_session_factory(engine: AsyncEngine) -> SessionFactory:
    """Session factory used by the block store and the admin API."""
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
