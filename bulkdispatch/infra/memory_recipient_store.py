# bulkdispatch/infra/memory_recipient_store.py
from __future__ import annotations

import asyncio
from typing import AsyncIterator, Iterable, Optional

from bulkdispatch.core.domain import BulkInsertResult, RecipientRecord, RecipientStatus
from bulkdispatch.infra.logging_config import get_logger

logger = get_logger(__name__)


class InMemoryRecipientStore:
    """
    Process-local recipient store with the same contract as the
    PostgreSQL store.

    ⚠️ Not durable: records are lost on restart, so resume only works
    within the process lifetime.
    """

    def __init__(self):
        self._records: dict[str, RecipientStatus] = {}
        self._lock = asyncio.Lock()

    async def reset(self) -> None:
        async with self._lock:
            self._records.clear()

    async def bulk_insert(self, identifiers: Iterable[str]) -> BulkInsertResult:
        inserted = skipped = 0
        async with self._lock:
            for identifier in identifiers:
                if identifier in self._records:
                    skipped += 1
                    continue
                self._records[identifier] = RecipientStatus.PENDING
                inserted += 1
        if skipped:
            logger.info(f"Bulk insert skipped {skipped} duplicate recipient(s)")
        return BulkInsertResult(inserted=inserted, skipped=skipped)

    async def count_all(self) -> int:
        return len(self._records)

    async def count_pending(self) -> int:
        return sum(1 for s in self._records.values() if s is RecipientStatus.PENDING)

    async def count_by_status(self) -> dict[str, int]:
        counts = {status.value: 0 for status in RecipientStatus}
        for status in self._records.values():
            counts[status.value] += 1
        return counts

    async def pending_page(self, after: Optional[str], limit: int) -> list[RecipientRecord]:
        async with self._lock:
            pending = sorted(
                identifier
                for identifier, status in self._records.items()
                if status is RecipientStatus.PENDING and (after is None or identifier > after)
            )
        return [RecipientRecord(identifier) for identifier in pending[:limit]]

    async def pending_cursor(self, batch_size: int = 50) -> AsyncIterator[RecipientRecord]:
        after: Optional[str] = None
        while True:
            page = await self.pending_page(after, batch_size)
            for record in page:
                yield record
            if len(page) < batch_size:
                return
            after = page[-1].identifier

    async def update_status(self, identifier: str, status: RecipientStatus) -> None:
        async with self._lock:
            if identifier in self._records:
                self._records[identifier] = RecipientStatus(status)

    def get(self, identifier: str) -> Optional[RecipientRecord]:
        status = self._records.get(identifier)
        return RecipientRecord(identifier, status) if status is not None else None

    def all_records(self) -> list[RecipientRecord]:
        return [RecipientRecord(i, s) for i, s in sorted(self._records.items())]
