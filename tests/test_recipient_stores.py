# tests/test_recipient_stores.py
"""
Tests for the recipient stores:
- In-memory store contract
- PostgreSQL store SQL and error wrapping (asyncpg connection mocked)
"""
from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from bulkdispatch.core.domain import RecipientRecord, RecipientStatus
from bulkdispatch.core.errors import StoreError
from bulkdispatch.infra.memory_recipient_store import InMemoryRecipientStore
from bulkdispatch.infra.metrics import get_metrics_collector
from bulkdispatch.infra.pg_recipient_store_async import AsyncPostgresRecipientStore, _row_to_record

SAFE_DB_CONN = "bulkdispatch.infra.pg_recipient_store_async.safe_db_conn"


async def _collect(cursor) -> list[RecipientRecord]:
    return [record async for record in cursor]


def _wire(mock_ctx, mock_conn) -> None:
    mock_ctx.return_value.__aenter__ = AsyncMock(return_value=mock_conn)
    mock_ctx.return_value.__aexit__ = AsyncMock(return_value=False)


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------

class TestInMemoryRecipientStore:
    @pytest.mark.asyncio
    async def test_bulk_insert_skips_duplicates(self):
        store = InMemoryRecipientStore()
        first = await store.bulk_insert(["111", "222", "111"])
        second = await store.bulk_insert(["222", "333"])

        assert (first.inserted, first.skipped) == (2, 1)
        assert (second.inserted, second.skipped) == (1, 1)
        assert await store.count_all() == 3

    @pytest.mark.asyncio
    async def test_reset_empties_the_store(self):
        store = InMemoryRecipientStore()
        await store.bulk_insert(["111"])
        await store.reset()
        assert await store.count_all() == 0

    @pytest.mark.asyncio
    async def test_counts_by_status(self):
        store = InMemoryRecipientStore()
        await store.bulk_insert(["a", "b", "c"])
        await store.update_status("a", RecipientStatus.SENT)
        await store.update_status("b", RecipientStatus.FAILED)

        assert await store.count_pending() == 1
        assert await store.count_by_status() == {"pending": 1, "sent": 1, "failed": 1}

    @pytest.mark.asyncio
    async def test_update_status_is_idempotent(self):
        store = InMemoryRecipientStore()
        await store.bulk_insert(["a"])
        await store.update_status("a", RecipientStatus.SENT)
        await store.update_status("a", RecipientStatus.SENT)

        assert store.get("a") == RecipientRecord("a", RecipientStatus.SENT)
        assert await store.count_all() == 1

    @pytest.mark.asyncio
    async def test_update_unknown_identifier_is_ignored(self):
        store = InMemoryRecipientStore()
        await store.update_status("ghost", RecipientStatus.SENT)
        assert store.get("ghost") is None

    @pytest.mark.asyncio
    async def test_pending_page_uses_keyset(self):
        store = InMemoryRecipientStore()
        await store.bulk_insert(["c", "a", "d", "b"])
        await store.update_status("b", RecipientStatus.SENT)

        first = await store.pending_page(None, 2)
        second = await store.pending_page(first[-1].identifier, 2)

        assert [r.identifier for r in first] == ["a", "c"]
        assert [r.identifier for r in second] == ["d"]

    @pytest.mark.asyncio
    async def test_cursor_walks_every_pending_record_across_pages(self):
        store = InMemoryRecipientStore()
        await store.bulk_insert([f"{i:03d}" for i in range(7)])

        records = await _collect(store.pending_cursor(batch_size=3))

        assert [r.identifier for r in records] == [f"{i:03d}" for i in range(7)]
        assert all(r.status is RecipientStatus.PENDING for r in records)

    @pytest.mark.asyncio
    async def test_cursor_skips_records_settled_while_iterating(self):
        store = InMemoryRecipientStore()
        await store.bulk_insert(["a", "b", "c", "d"])
        seen = []

        async for record in store.pending_cursor(batch_size=2):
            seen.append(record.identifier)
            await store.update_status(record.identifier, RecipientStatus.SENT)

        assert seen == ["a", "b", "c", "d"]
        assert await store.count_pending() == 0

    @pytest.mark.asyncio
    async def test_cursor_does_not_revisit_records_left_pending(self):
        store = InMemoryRecipientStore()
        await store.bulk_insert(["a", "b", "c"])
        seen = []

        async for record in store.pending_cursor(batch_size=1):
            seen.append(record.identifier)

        assert seen == ["a", "b", "c"]


# ---------------------------------------------------------------------------
# PostgreSQL store
# ---------------------------------------------------------------------------

class TestRowToRecord:
    def test_converts_row(self):
        assert _row_to_record({"identifier": "111", "status": "sent"}) == RecipientRecord(
            "111", RecipientStatus.SENT
        )


class TestAsyncPostgresRecipientStore:
    @pytest.mark.asyncio
    async def test_reset_deletes_all_rows(self):
        mock_conn = AsyncMock()
        mock_conn.execute.return_value = "DELETE 3"

        with patch(SAFE_DB_CONN) as mock_ctx:
            _wire(mock_ctx, mock_conn)
            await AsyncPostgresRecipientStore().reset()

        sql = mock_conn.execute.call_args[0][0]
        assert "DELETE FROM recipients" in sql

    @pytest.mark.asyncio
    async def test_bulk_insert_reports_skipped(self):
        mock_conn = AsyncMock()
        mock_conn.fetch.return_value = [{"identifier": "111"}]

        with patch(SAFE_DB_CONN) as mock_ctx:
            _wire(mock_ctx, mock_conn)
            result = await AsyncPostgresRecipientStore().bulk_insert(["111", "222", "111"])

        assert (result.inserted, result.skipped) == (1, 2)
        sql, identifiers = mock_conn.fetch.call_args[0]
        assert "ON CONFLICT (identifier) DO NOTHING" in sql
        assert identifiers == ["111", "222"]

    @pytest.mark.asyncio
    async def test_bulk_insert_empty_skips_database(self):
        with patch(SAFE_DB_CONN) as mock_ctx:
            result = await AsyncPostgresRecipientStore().bulk_insert([])

        assert (result.inserted, result.skipped) == (0, 0)
        mock_ctx.assert_not_called()

    @pytest.mark.asyncio
    async def test_count_pending(self):
        mock_conn = AsyncMock()
        mock_conn.fetchval.return_value = 4

        with patch(SAFE_DB_CONN) as mock_ctx:
            _wire(mock_ctx, mock_conn)
            count = await AsyncPostgresRecipientStore().count_pending()

        assert count == 4
        assert "status = 'pending'" in mock_conn.fetchval.call_args[0][0]

    @pytest.mark.asyncio
    async def test_count_by_status_fills_missing_statuses(self):
        mock_conn = AsyncMock()
        mock_conn.fetch.return_value = [{"status": "sent", "cnt": 5}]

        with patch(SAFE_DB_CONN) as mock_ctx:
            _wire(mock_ctx, mock_conn)
            counts = await AsyncPostgresRecipientStore().count_by_status()

        assert counts == {"pending": 0, "sent": 5, "failed": 0}

    @pytest.mark.asyncio
    async def test_update_status_only_touches_changed_rows(self):
        mock_conn = AsyncMock()
        mock_conn.execute.return_value = "UPDATE 1"

        with patch(SAFE_DB_CONN) as mock_ctx:
            _wire(mock_ctx, mock_conn)
            await AsyncPostgresRecipientStore().update_status("111", RecipientStatus.FAILED)

        sql, identifier, status = mock_conn.execute.call_args[0]
        assert "status <> $2" in sql
        assert (identifier, status) == ("111", "failed")

    @pytest.mark.asyncio
    async def test_cursor_pages_with_keyset(self):
        mock_conn = AsyncMock()
        mock_conn.fetch.side_effect = [
            [{"identifier": "a", "status": "pending"}, {"identifier": "b", "status": "pending"}],
            [{"identifier": "c", "status": "pending"}],
        ]

        with patch(SAFE_DB_CONN) as mock_ctx:
            _wire(mock_ctx, mock_conn)
            records = await _collect(AsyncPostgresRecipientStore().pending_cursor(batch_size=2))

        assert [r.identifier for r in records] == ["a", "b", "c"]
        first_call, second_call = mock_conn.fetch.call_args_list
        assert "identifier >" not in first_call[0][0]
        assert first_call[0][1:] == (2,)
        assert "identifier > $1" in second_call[0][0]
        assert second_call[0][1:] == ("b", 2)

    @pytest.mark.asyncio
    async def test_database_errors_become_store_errors(self):
        mock_conn = AsyncMock()
        mock_conn.execute.side_effect = ConnectionError("server closed the connection")

        with patch(SAFE_DB_CONN) as mock_ctx:
            _wire(mock_ctx, mock_conn)
            with pytest.raises(StoreError) as exc_info:
                await AsyncPostgresRecipientStore().update_status("111", RecipientStatus.SENT)

        assert exc_info.value.operation == "update_status"
        counters = get_metrics_collector().get_metrics()["counters"]
        assert counters["store_errors_total{operation=update_status}"] == 1

    @pytest.mark.asyncio
    async def test_acquire_failure_becomes_store_error(self):
        with patch(SAFE_DB_CONN) as mock_ctx:
            mock_ctx.return_value.__aenter__ = AsyncMock(side_effect=RuntimeError("pool not initialized"))
            mock_ctx.return_value.__aexit__ = AsyncMock(return_value=False)
            with pytest.raises(StoreError, match="count_all"):
                await AsyncPostgresRecipientStore().count_all()
