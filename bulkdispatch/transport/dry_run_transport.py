# bulkdispatch/transport/dry_run_transport.py
"""
Dry-run transport: never sends anything.

Every recipient is reported as existing and every send is only logged and
recorded in ``sent``. Identifiers in ``missing`` are reported as not on the
network; identifiers in ``unreachable`` make the lookup itself fail. Used in
development and for demos of the dispatch loop without a real account.
"""
from __future__ import annotations

import asyncio
from typing import AsyncIterator, Iterable

from bulkdispatch.core.errors import TransportQueryError
from bulkdispatch.core.ports import TransportEvent
from bulkdispatch.infra.logging_config import get_logger, mask_recipient

logger = get_logger(__name__)


class DryRunTransport:
    name = "dry_run"

    def __init__(self, missing: Iterable[str] = (), unreachable: Iterable[str] = ()):
        self.missing = set(missing)
        self.unreachable = set(unreachable)
        self.sent: list[tuple[str, str]] = []
        self._events: asyncio.Queue[TransportEvent] = asyncio.Queue()

    async def connect(self) -> None:
        logger.info("Dry-run transport connected (messages will NOT be sent)")
        await self._events.put(TransportEvent("connection", "open"))

    async def exists_on_network(self, identifier: str) -> str | None:
        if identifier in self.unreachable:
            raise TransportQueryError(f"lookup failed for {mask_recipient(identifier)}", retryable=True)
        return None if identifier in self.missing else identifier

    async def send(self, address: str, text: str) -> None:
        self.sent.append((address, text))
        logger.info(f"DRY_RUN: send simulated to={mask_recipient(address)}, chars={len(text)}")

    async def events(self) -> AsyncIterator[TransportEvent]:
        while True:
            yield await self._events.get()

    async def close(self) -> None:
        pass
