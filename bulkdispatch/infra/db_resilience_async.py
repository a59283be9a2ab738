# bulkdispatch/infra/db_resilience_async.py
"""
Retry helpers for asyncpg connections.
"""
from __future__ import annotations
import asyncio
from contextlib import asynccontextmanager

import asyncpg
from bulkdispatch.infra.db_async import db_conn
from bulkdispatch.infra.logging_config import get_logger

logger = get_logger(__name__)

_TRANSIENT_PATTERNS = (
    "connection",
    "timeout",
    "closed",
    "network",
    "deadlock",
    "too many connections",
    "server closed",
    "connection reset",
)


def is_transient_error(exc: Exception) -> bool:
    """
    Check if database error is transient (should retry).

    Transient errors: connection loss, server restarts, pool exhaustion,
    deadlocks, timeouts.
    """
    if isinstance(exc, (
        asyncpg.PostgresConnectionError,
        asyncpg.TooManyConnectionsError,
        asyncpg.DeadlockDetectedError,
        ConnectionError,
        asyncio.TimeoutError,
    )):
        return True

    if isinstance(exc, asyncpg.UniqueViolationError):
        return False

    error_message = str(exc).lower()
    return any(pattern in error_message for pattern in _TRANSIENT_PATTERNS)


@asynccontextmanager
async def safe_db_conn(autocommit: bool = True, max_retries: int = 3):
    """
    Database connection with retry on transient errors while acquiring.

    Usage:
        async with safe_db_conn() as conn:
            await conn.execute("DELETE FROM recipients")

    Only connection acquisition is retried; errors raised by the caller's
    block propagate unchanged (the statement may already have run).
    """
    delay = 0.1

    for attempt in range(max_retries + 1):
        try:
            cm = db_conn(autocommit=autocommit)
            conn = await cm.__aenter__()
        except Exception as exc:
            if not is_transient_error(exc) or attempt >= max_retries:
                if attempt >= max_retries:
                    logger.error(f"Max retries ({max_retries}) exceeded getting connection")
                raise

            logger.warning(
                f"Transient error getting connection (attempt {attempt + 1}/{max_retries}): {exc}. "
                f"Retrying in {delay:.2f}s..."
            )
            await asyncio.sleep(delay)
            delay = min(delay * 2.0, 5.0)
            continue

        try:
            yield conn
        except BaseException as exc:
            if not await cm.__aexit__(type(exc), exc, exc.__traceback__):
                raise
        else:
            await cm.__aexit__(None, None, None)
        return
