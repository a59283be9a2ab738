# bulkdispatch/core/ports.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, AsyncIterator, Iterable, Literal, Optional, Protocol

from bulkdispatch.core.domain import BulkInsertResult, RecipientRecord, RecipientStatus


# ============================================================================
# PERSISTENCE
# ============================================================================

class AsyncRecipientStore(Protocol):
    async def reset(self) -> None: ...

    async def bulk_insert(self, identifiers: Iterable[str]) -> BulkInsertResult: ...

    async def count_all(self) -> int: ...

    async def count_pending(self) -> int: ...

    async def count_by_status(self) -> dict[str, int]: ...

    async def pending_page(self, after: Optional[str], limit: int) -> list[RecipientRecord]:
        """
        Next page of pending records with identifier > ``after``,
        in identifier order. Re-issued per page; never holds a cursor open.
        """
        ...

    def pending_cursor(self, batch_size: int = 50) -> AsyncIterator[RecipientRecord]:
        """Single-pass iterator over pending records (built on pending_page)."""
        ...

    async def update_status(self, identifier: str, status: RecipientStatus) -> None: ...


# ============================================================================
# TRANSPORT
# ============================================================================

@dataclass(frozen=True)
class TransportEvent:
    """
    Event emitted by a transport's event stream.

    kind="pairing-code": ``value`` is the code the operator must use to pair.
    kind="connection":   ``value`` is "open" or "close"; ``permanent`` marks a
                         close that reconnecting cannot fix (logged out).
    """
    kind: Literal["pairing-code", "connection"]
    value: str
    permanent: bool = False
    detail: Optional[str] = None


class MessageTransport(Protocol):
    name: str

    async def connect(self) -> None: ...

    async def exists_on_network(self, identifier: str) -> Optional[str]:
        """
        Resolve a recipient identifier.

        Returns the transport address to send to, or None when the
        recipient does not exist on the network.
        """
        ...

    async def send(self, address: str, text: str) -> None: ...

    def events(self) -> AsyncIterator[TransportEvent]: ...

    async def close(self) -> None: ...


# ============================================================================
# OBSERVERS
# ============================================================================

class EventSink(Protocol):
    async def publish(self, event: str, data: Any) -> None: ...
