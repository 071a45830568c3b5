"""
Database configuration and async session management
"""
from functools import lru_cache
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from bloodlink.core.config import get_settings
from bloodlink.models import Base


def create_engine(database_url: Optional[str] = None, echo: Optional[bool] = None) -> AsyncEngine:
    """
    Create an async engine.

    PostgreSQL (asyncpg) in deployment. An in-memory SQLite URL gets a
    StaticPool so every session shares the one connection holding the data.
    """
    settings = get_settings()
    url = database_url or settings.database_url
    echo = settings.database_echo if echo is None else echo

    if url.startswith("sqlite"):
        if ":memory:" in url or url.endswith("://"):
            return create_async_engine(
                url,
                echo=echo,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        return create_async_engine(url, echo=echo)

    return create_async_engine(
        url,
        echo=echo,
        pool_pre_ping=True,  # Verify connections before using
        pool_size=20,
        max_overflow=40,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Session factory used by every store"""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,  # Rows stay readable after commit
        autoflush=False,
    )


@lru_cache
def get_engine() -> AsyncEngine:
    """Process-wide engine built from settings"""
    return create_engine()


async def init_db(engine: AsyncEngine) -> None:
    """
    Create tables.
    Only for development and tests - use migrations in production.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_db(engine: AsyncEngine) -> None:
    """
    Drop all tables.
    WARNING: Use only in development/testing!
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
