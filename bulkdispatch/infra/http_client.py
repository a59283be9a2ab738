# bulkdispatch/infra/http_client.py
"""
Shared aiohttp sessions for outbound API calls.

Transports ask for a session by profile; each profile lazily creates one
``aiohttp.ClientSession`` with its own timeouts and connection pool, reused
for the life of the process.

Profiles
~~~~~~~~
- ``send``  – message sends. The dispatch loop sends one message at a time,
  so the pool is small.
- ``probe`` – credential / connection checks by the transport supervisor.

Call ``close_all_sessions()`` once during application shutdown.
"""
from __future__ import annotations

from dataclasses import dataclass

import aiohttp

from bulkdispatch.infra.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class SessionProfile:
    total_timeout: float
    connect_timeout: float
    pool_limit: int


PROFILES: dict[str, SessionProfile] = {
    "send": SessionProfile(total_timeout=25, connect_timeout=5, pool_limit=4),
    "probe": SessionProfile(total_timeout=10, connect_timeout=5, pool_limit=1),
}

_sessions: dict[str, aiohttp.ClientSession] = {}


def get_session(profile: str) -> aiohttp.ClientSession:
    """Return the open session for ``profile``, creating it on first use."""
    session = _sessions.get(profile)
    if session is not None and not session.closed:
        return session

    spec = PROFILES[profile]
    session = aiohttp.ClientSession(
        timeout=aiohttp.ClientTimeout(total=spec.total_timeout, connect=spec.connect_timeout),
        connector=aiohttp.TCPConnector(limit=spec.pool_limit, keepalive_timeout=30),
    )
    _sessions[profile] = session
    logger.debug(f"HTTP session '{profile}' opened (pool_limit={spec.pool_limit})")
    return session


async def close_all_sessions() -> None:
    """Close every session opened by ``get_session``."""
    while _sessions:
        profile, session = _sessions.popitem()
        if not session.closed:
            await session.close()
            logger.debug(f"HTTP session '{profile}' closed")
