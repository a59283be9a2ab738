# bulkdispatch/infra/pg_recipient_store_async.py
"""
Async PostgreSQL recipient store (asyncpg).

Persisted work queue of recipient records. Pending records are read with
keyset paging (``identifier > $after``) so each page is a fresh, bounded
query; restarting iteration from the beginning is how an interrupted
session resumes.
"""
from __future__ import annotations

from typing import AsyncIterator, Iterable, Optional

from bulkdispatch.core.domain import BulkInsertResult, RecipientRecord, RecipientStatus
from bulkdispatch.core.errors import StoreError
from bulkdispatch.infra.db_resilience_async import safe_db_conn
from bulkdispatch.infra.logging_config import get_logger, mask_recipient
from bulkdispatch.infra.metrics import DispatchMetrics

logger = get_logger(__name__)


def _row_to_record(row) -> RecipientRecord:
    """Convert an asyncpg Record to a RecipientRecord."""
    return RecipientRecord(
        identifier=row["identifier"],
        status=RecipientStatus(row["status"]),
    )


class AsyncPostgresRecipientStore:
    """Recipients table with reset / bulk insert / paged pending reads."""

    async def reset(self) -> None:
        """Delete every record (start of a new session)."""
        try:
            async with safe_db_conn() as conn:
                result = await conn.execute("DELETE FROM recipients")
        except Exception as exc:
            DispatchMetrics.store_error("reset")
            raise StoreError("reset", str(exc)) from exc

        logger.info(f"Recipient store reset: {result}")

    async def bulk_insert(self, identifiers: Iterable[str]) -> BulkInsertResult:
        """
        Insert one pending record per unique identifier.

        Repeats within the batch and rows that already exist are counted in
        ``skipped``; the batch itself never fails on them.
        """
        identifiers = list(identifiers)
        unique = list(dict.fromkeys(identifiers))
        if not unique:
            return BulkInsertResult(inserted=0, skipped=0)

        try:
            async with safe_db_conn() as conn:
                rows = await conn.fetch(
                    """
                    INSERT INTO recipients (identifier, status)
                    SELECT unnest($1::text[]), 'pending'
                    ON CONFLICT (identifier) DO NOTHING
                    RETURNING identifier
                    """,
                    unique,
                )
        except Exception as exc:
            DispatchMetrics.store_error("bulk_insert")
            raise StoreError("bulk_insert", str(exc)) from exc

        inserted = len(rows)
        skipped = len(identifiers) - inserted
        if skipped:
            logger.info(f"Bulk insert skipped {skipped} duplicate recipient(s)")
        return BulkInsertResult(inserted=inserted, skipped=skipped)

    async def count_all(self) -> int:
        return await self._count("SELECT count(*) FROM recipients", "count_all")

    async def count_pending(self) -> int:
        return await self._count(
            "SELECT count(*) FROM recipients WHERE status = 'pending'",
            "count_pending",
        )

    async def count_by_status(self) -> dict[str, int]:
        """Return {status: count} for status reporting."""
        try:
            async with safe_db_conn() as conn:
                rows = await conn.fetch(
                    "SELECT status, count(*) AS cnt FROM recipients GROUP BY status"
                )
        except Exception as exc:
            DispatchMetrics.store_error("count_by_status")
            raise StoreError("count_by_status", str(exc)) from exc

        counts = {status.value: 0 for status in RecipientStatus}
        counts.update({row["status"]: row["cnt"] for row in rows})
        return counts

    async def pending_page(self, after: Optional[str], limit: int) -> list[RecipientRecord]:
        try:
            async with safe_db_conn() as conn:
                if after is None:
                    rows = await conn.fetch(
                        """
                        SELECT identifier, status FROM recipients
                        WHERE status = 'pending'
                        ORDER BY identifier
                        LIMIT $1
                        """,
                        limit,
                    )
                else:
                    rows = await conn.fetch(
                        """
                        SELECT identifier, status FROM recipients
                        WHERE status = 'pending' AND identifier > $1
                        ORDER BY identifier
                        LIMIT $2
                        """,
                        after,
                        limit,
                    )
        except Exception as exc:
            DispatchMetrics.store_error("pending_page")
            raise StoreError("pending_page", str(exc)) from exc

        return [_row_to_record(row) for row in rows]

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
        """Set a record's status. Re-applying the same status is a no-op."""
        try:
            async with safe_db_conn() as conn:
                result = await conn.execute(
                    """
                    UPDATE recipients
                    SET status = $2, updated_at = now()
                    WHERE identifier = $1 AND status <> $2
                    """,
                    identifier,
                    RecipientStatus(status).value,
                )
        except Exception as exc:
            DispatchMetrics.store_error("update_status")
            raise StoreError("update_status", str(exc)) from exc

        logger.debug(f"Status update {mask_recipient(identifier)} -> {status}: {result}")

    async def _count(self, sql: str, operation: str) -> int:
        try:
            async with safe_db_conn() as conn:
                value = await conn.fetchval(sql)
        except Exception as exc:
            DispatchMetrics.store_error(operation)
            raise StoreError(operation, str(exc)) from exc
        return int(value or 0)


_store: AsyncPostgresRecipientStore | None = None


def get_recipient_store() -> AsyncPostgresRecipientStore:
    """Get the shared recipient store instance."""
    global _store
    if _store is None:
        _store = AsyncPostgresRecipientStore()
    return _store
