"""asyncpg connection pool with pgvector registration."""

import logging

import asyncpg
from pgvector.asyncpg import register_vector

from config.settings import settings

logger = logging.getLogger(__name__)


async def _init_connection(conn: asyncpg.Connection) -> None:
    """Register pgvector type on each new connection."""
    await register_vector(conn)


async def create_pool(
    dsn: str | None = None,
    min_size: int = 2,
    max_size: int = 10,
) -> asyncpg.Pool:
    """Create a connection pool. The caller owns it and must close it."""
    dsn = dsn or settings.database_url_asyncpg  # asyncpg uses plain postgresql:// URLs
    logger.info("Creating connection pool (min=%d, max=%d)...", min_size, max_size)
    return await asyncpg.create_pool(
        dsn,
        min_size=min_size,
        max_size=max_size,
        init=_init_connection,
    )
