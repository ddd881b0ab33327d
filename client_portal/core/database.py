"""Async engine and per-request sessions.

One session per request. Whatever the request wrote is committed when the
handler returns and rolled back when it raises, so a refused link or a
failed passcode attempt is only persisted when the router returned an error
body instead of raising.
"""

import logging
import ssl
from collections.abc import AsyncGenerator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


def _connect_args(url: str) -> dict:
    """Driver options for hosted Postgres behind a transaction pooler."""
    if settings.environment != "production" and "pooler" not in url:
        return {}
    logger.info("Database connection uses SSL without prepared statement caching")
    return {
        "ssl": ssl.create_default_context(),
        "prepared_statement_cache_size": 0,
        "statement_cache_size": 0,
    }


engine = create_async_engine(
    settings.database_url_async,
    pool_size=settings.database_pool_size,
    max_overflow=settings.database_max_overflow,
    echo=settings.database_echo,
    pool_pre_ping=True,
    pool_recycle=300,
    connect_args=_connect_args(settings.database_url_async),
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: commit on success, roll back on any exception."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error(f"Storage error, request rolled back: {e!r}")
            raise
        except Exception as e:
            await session.rollback()
            logger.warning(f"Request failed, rolled back: {e!r}")
            raise


async def init_db() -> None:
    """Create tables for local development. Deployed schemas use migrations."""
    from ..models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    await engine.dispose()
