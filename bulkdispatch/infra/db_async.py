# bulkdispatch/infra/db_async.py
"""
asyncpg connection pool for the recipient store.

One pool per process, opened in the application lifespan (or by the
migration runner) and closed on shutdown. The dispatch loop issues one
statement at a time, so the pool stays small (``PG_POOL_MAX``).
"""
from __future__ import annotations
from typing import AsyncIterator
from contextlib import asynccontextmanager

import asyncpg
from bulkdispatch.config import settings
from bulkdispatch.infra.logging_config import get_logger

logger = get_logger(__name__)

_pool: asyncpg.Pool | None = None


async def init_pool(dsn: str | None = None) -> None:
    """Open the pool. A second call is a no-op."""
    global _pool

    if _pool is not None:
        return

    _pool = await asyncpg.create_pool(
        dsn=dsn or settings.database_dsn,
        min_size=settings.pg_pool_min,
        max_size=settings.pg_pool_max,
        timeout=settings.pg_connect_timeout,
        command_timeout=60,
        server_settings={"application_name": "bulkdispatch"},
    )
    logger.info(f"asyncpg pool open (min={settings.pg_pool_min}, max={settings.pg_pool_max})")


async def close_pool() -> None:
    global _pool

    if _pool is None:
        return

    pool, _pool = _pool, None
    await pool.close()
    logger.info("asyncpg pool closed")


@asynccontextmanager
async def db_conn(autocommit: bool = True) -> AsyncIterator[asyncpg.Connection]:
    """
    Borrow a pooled connection.

    Usage:
        async with db_conn() as conn:
            n = await conn.fetchval("SELECT count(*) FROM recipients")

    Args:
        autocommit: If False the block runs inside a transaction that
                    commits on success and rolls back on error.
    """
    if _pool is None:
        raise RuntimeError("Connection pool not initialized. Call init_pool() first.")

    async with _pool.acquire() as conn:
        if autocommit:
            yield conn
        else:
            async with conn.transaction():
                yield conn


async def get_pool() -> asyncpg.Pool:
    """The open pool (health checks run raw probes on it)."""
    if _pool is None:
        raise RuntimeError("Connection pool not initialized")
    return _pool


def pool_stats() -> dict | None:
    """Size and idle connection count, or None before ``init_pool``."""
    if _pool is None:
        return None
    return {"size": _pool.get_size(), "idle": _pool.get_idle_size(), "max": _pool.get_max_size()}
