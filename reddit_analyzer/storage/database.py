"""
Async SQLAlchemy engine and session handling.

The engine and session factory are built once from PostgresConfig at
application startup; repositories receive sessions from ``session_scope``.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from reddit_analyzer.config import PostgresConfig

logger = logging.getLogger(__name__)


def create_engine_from_config(pg_config: PostgresConfig, echo: bool = False) -> AsyncEngine:
    """Build an asyncpg-backed engine with connection pooling."""
    url = pg_config.async_url
    if url.startswith("sqlite"):
        # Local development database; SQLite pools take no sizing arguments
        return create_async_engine(url, echo=echo)

    return create_async_engine(
        url,
        echo=echo,
        pool_size=pg_config.pool_size,
        max_overflow=pg_config.max_overflow,
        pool_pre_ping=True,
        pool_recycle=3600,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        autoflush=False,
        expire_on_commit=False,
        class_=AsyncSession,
    )


@asynccontextmanager
async def session_scope(factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    """
    Provide a session wrapping one unit of work.

    Commits on successful exit, rolls back on error and always closes.
    """
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def check_connection(engine: AsyncEngine) -> bool:
    """
    Verify the database is reachable.

    Returns:
        True if a trivial query succeeds, False otherwise
    """
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("Database connection successful.")
        return True
    except (SQLAlchemyError, OSError) as e:
        logger.error(f"Failed to connect to database: {str(e)}")
        return False
