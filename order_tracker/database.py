"""
Database Connection Module
Handles the async SQLAlchemy engine (PostgreSQL via psycopg in deployment).
"""

from typing import AsyncIterator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from order_tracker.core.config import get_settings

settings = get_settings()


def build_engine(url: str, **kwargs) -> AsyncEngine:
    """Create an async engine, sizing the pool only for server databases."""
    if not url.startswith("sqlite") and "poolclass" not in kwargs:
        kwargs.setdefault("pool_size", 5)  # Connection pool size
        kwargs.setdefault("max_overflow", 10)  # Extra connections when pool is full
    return create_async_engine(url, echo=settings.database_echo, **kwargs)


# One engine per process, shared by every request
engine = build_engine(settings.database_url)

# Session factory - creates new database sessions
async_session_maker = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False  # Objects remain accessible after commit
)


# Base class for all our models
class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncIterator[AsyncSession]:
    """
    Dependency injection for FastAPI routes.
    Yields a database session and ensures cleanup.
    """
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db(bind: AsyncEngine = engine) -> None:
    """
    Create all tables in database.
    Called once at application startup.
    """
    # Register every mapped class on Base.metadata before create_all
    import order_tracker.models  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
