"""
Database access for the scheduling core.

Two clients are used:
- asyncpg pool for transactional SQL (booking conversions need row locks and a
  real transaction, which the Supabase REST API cannot provide)
- Supabase client for plain schedule reads and single-row writes

Both are created lazily and cached per process. Components receive them by
injection; only service wiring should call these factories.
"""
import logging
from contextlib import asynccontextmanager
from typing import Dict, Optional

import asyncpg
from supabase import Client, create_client
from supabase.client import ClientOptions
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from therapy_scheduling import config

logger = logging.getLogger(__name__)


# =============================================================================
# Supabase client
# =============================================================================

_supabase_clients: Dict[str, Client] = {}


def get_supabase_client(schema: str = None) -> Client:
    """
    Create or get cached Supabase client for the given schema.

    Raises:
        ValueError: If SUPABASE_URL or a key is not configured
    """
    schema = schema or config.SUPABASE_SCHEMA

    if schema in _supabase_clients:
        return _supabase_clients[schema]

    if not config.SUPABASE_URL or not config.SUPABASE_KEY:
        raise ValueError("SUPABASE_URL and SUPABASE_ANON_KEY/SERVICE_ROLE_KEY must be set")

    options = ClientOptions(
        schema=schema,
        auto_refresh_token=False,  # For server/service-role usage
        persist_session=False,
    )
    client = create_client(config.SUPABASE_URL, config.SUPABASE_KEY, options=options)

    _supabase_clients[schema] = client
    logger.info(f"Created Supabase client for schema: {schema}")
    return client


# =============================================================================
# Database Pool (asyncpg for transactional SQL)
# =============================================================================

_db_pool: Optional[asyncpg.Pool] = None


@retry(
    retry=retry_if_exception_type((OSError, asyncpg.PostgresConnectionError)),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    reraise=True,
)
async def _create_pool(db_url: str) -> asyncpg.Pool:
    return await asyncpg.create_pool(
        db_url,
        min_size=config.DB_POOL_MIN_SIZE,
        max_size=config.DB_POOL_MAX_SIZE,
        command_timeout=config.DB_COMMAND_TIMEOUT,
        statement_cache_size=0,  # Disable for pgbouncer compatibility
    )


async def init_db_pool(db_url: str = None) -> asyncpg.Pool:
    """
    Initialize the connection pool used for booking transactions.

    Raises:
        ValueError: If no database URL is configured
    """
    global _db_pool

    if _db_pool is not None:
        return _db_pool

    db_url = db_url or config.DATABASE_URL
    if not db_url:
        raise ValueError("DATABASE_URL (or SUPABASE_DB_URL) must be set")

    _db_pool = await _create_pool(db_url)
    logger.info("Database connection pool initialized")
    return _db_pool


async def close_db_pool() -> None:
    """Close database connection pool."""
    global _db_pool

    if _db_pool:
        await _db_pool.close()
        _db_pool = None
        logger.info("Database connection pool closed")


@asynccontextmanager
async def get_db_connection():
    """Get a database connection from the pool."""
    pool = await init_db_pool()
    async with pool.acquire() as connection:
        yield connection
