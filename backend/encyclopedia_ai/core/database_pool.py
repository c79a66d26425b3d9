"""
Async connection pool for the article database (asyncpg).

The assistant only reads: approved articles, their authors and categories.
A small pool is enough since every agent turn performs at most one query.
"""
from typing import Optional

import asyncpg

from encyclopedia_ai.core.logging import get_logger

logger = get_logger(__name__)

_pool: Optional[asyncpg.Pool] = None


async def initialize_database_pool(database_url: str) -> bool:
    """
    Open the shared pool.

    Returns:
        True if the pool is ready, False otherwise (the assistant still
        starts; content tools then report the store as unavailable).
    """
    global _pool

    try:
        logger.info("db_pool_initializing", url_prefix=database_url[:30])
        _pool = await asyncpg.create_pool(
            database_url,
            min_size=2,
            max_size=10,
            max_queries=50000,
            max_inactive_connection_lifetime=600,
            command_timeout=10,
        )
        logger.info("db_pool_initialized")
        return True
    except Exception as e:
        logger.error(
            "db_pool_initialization_failed",
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )
        _pool = None
        return False


async def close_database_pool() -> None:
    global _pool

    if _pool is None:
        return
    try:
        await _pool.close()
        logger.info("db_pool_closed")
    except Exception as e:
        logger.error("db_pool_close_failed", error=str(e))
    finally:
        _pool = None


def get_pool() -> Optional[asyncpg.Pool]:
    return _pool
