"""Database connection and session management.

Transaction Guarantees:
- Engine services open one transaction per unit of work
- All writes within a unit of work are atomic
- On any exception, the entire transaction is rolled back
- Sessions are properly closed after each unit of work
"""

import logging

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

engine = create_async_engine(
    settings.database_url_async,
    pool_size=settings.database_pool_size,
    max_overflow=settings.database_max_overflow,
    echo=settings.database_echo,
    pool_pre_ping=True,  # Check connection health before use
    pool_recycle=300,
    pool_timeout=30,
)

# Session factory - engine services open their own sessions from it
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,  # Don't expire objects after commit
    autoflush=False,         # Manual flush for better control
)


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Dependency that provides the session factory used by engine services."""
    return async_session_factory


async def init_db() -> None:
    """Initialize database (create tables if needed)."""
    from ..models import Base

    async with engine.begin() as conn:
        # In production, use Alembic migrations instead
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Close database connections."""
    await engine.dispose()
