"""
Tests for the snapshot store.
"""

from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest

from services.portfolio_snapshot_service import (
    SNAPSHOT_CONFLICT_COLUMNS,
    PortfolioSnapshotService,
    build_snapshot_row,
    parse_snapshot_row,
)
from utils.portfolio.models import SnapshotTotals


def totals(usd, eur=None):
    usd = Decimal(str(usd))
    return SnapshotTotals(
        total_value_usd=usd,
        total_value_eur=Decimal(str(eur)) if eur is not None else usd,
        crypto_value_usd=usd,
        stocks_value_usd=Decimal("0"),
        cash_value_usd=Decimal("0"),
    )


class InMemorySnapshotTable:
    """Honours upsert(on_conflict=...) the way Postgres does for the unique key."""

    def __init__(self):
        self.rows = {}
        self._pending = None

    def upsert(self, payload, on_conflict=None):
        columns = on_conflict.split(",")
        self._pending = (payload if isinstance(payload, list) else [payload], columns)
        return self

    def execute(self):
        rows, columns = self._pending
        for row in rows:
            self.rows[tuple(row[c] for c in columns)] = dict(row)
        return MagicMock(data=rows)


def query_returning(rows):
    query = MagicMock()
    for method in ("select", "eq", "gte", "lte", "order", "limit"):
        getattr(query, method).return_value = query
    query.execute.return_value = MagicMock(data=rows)
    return query


class TestRowMapping:

    def test_values_rounded_to_cents(self):
        row = build_snapshot_row("user-123", totals("1234.565", "999.994"), date(2026, 3, 1))
        assert row["total_value_usd"] == 1234.57
        assert row["total_value_eur"] == 999.99
        assert row["snapshot_date"] == "2026-03-01"

    def test_parse_row(self):
        snapshot = parse_snapshot_row({
            "user_id": "user-123",
            "snapshot_date": "2026-03-01T00:00:00",
            "total_value_usd": 100.5,
            "total_value_eur": "90",
        })
        assert snapshot.snapshot_date == date(2026, 3, 1)
        assert snapshot.total_value_usd == Decimal("100.5")
        assert snapshot.cash_value_usd == 0

    def test_parse_row_bad_date(self):
        assert parse_snapshot_row({"snapshot_date": "yesterday"}) is None


class TestUpsert:

    @pytest.mark.asyncio
    async def test_same_day_twice_keeps_latest_row(self):
        table = InMemorySnapshotTable()
        supabase = MagicMock()
        supabase.table.return_value = table
        service = PortfolioSnapshotService(supabase_client=supabase)
        day = date(2026, 3, 1)

        assert await service.upsert("user-123", totals(100), snapshot_date=day)
        assert await service.upsert("user-123", totals(250), snapshot_date=day)

        assert len(table.rows) == 1
        assert table.rows[("user-123", "2026-03-01")]["total_value_usd"] == 250.0

    @pytest.mark.asyncio
    async def test_upsert_targets_unique_key(self, mock_supabase):
        service = PortfolioSnapshotService(supabase_client=mock_supabase)

        await service.upsert("user-123", totals(1), snapshot_date=date(2026, 3, 1))

        mock_supabase.table.assert_called_with("portfolio_snapshots")
        _, kwargs = mock_supabase.table.return_value.upsert.call_args
        assert kwargs["on_conflict"] == SNAPSHOT_CONFLICT_COLUMNS

    @pytest.mark.asyncio
    async def test_upsert_failure_is_swallowed(self, mock_supabase):
        mock_supabase.table.return_value.upsert.return_value.execute.side_effect = Exception("db down")
        service = PortfolioSnapshotService(supabase_client=mock_supabase)

        assert await service.upsert("user-123", totals(1)) is False

    @pytest.mark.asyncio
    async def test_upsert_many(self):
        table = InMemorySnapshotTable()
        supabase = MagicMock()
        supabase.table.return_value = table
        service = PortfolioSnapshotService(supabase_client=supabase)

        written = await service.upsert_many([("u1", totals(1)), ("u2", totals(2))], snapshot_date=date(2026, 3, 1))

        assert written == 2
        assert set(table.rows) == {("u1", "2026-03-01"), ("u2", "2026-03-01")}
        assert await service.upsert_many([]) == 0


class TestReads:

    @pytest.mark.asyncio
    async def test_list_since_sorted_oldest_first(self):
        supabase = MagicMock()
        supabase.table.return_value = query_returning([
            {"user_id": "u1", "snapshot_date": "2026-03-02", "total_value_usd": 2, "total_value_eur": 2},
            {"user_id": "u1", "snapshot_date": "2026-03-01", "total_value_usd": 1, "total_value_eur": 1},
            {"user_id": "u1", "snapshot_date": None},
        ])
        service = PortfolioSnapshotService(supabase_client=supabase)

        with patch.object(service, "today", return_value=date(2026, 3, 10)):
            snapshots = await service.list_since("u1", 30)

        assert [s.snapshot_date.day for s in snapshots] == [1, 2]
        supabase.table.return_value.gte.assert_called_with("snapshot_date", "2026-02-08")

    @pytest.mark.asyncio
    async def test_nearest_at_or_before(self):
        supabase = MagicMock()
        query = query_returning([{"user_id": "u1", "snapshot_date": "2026-03-01",
                                  "total_value_usd": 10, "total_value_eur": 9}])
        supabase.table.return_value = query
        service = PortfolioSnapshotService(supabase_client=supabase)

        with patch.object(service, "today", return_value=date(2026, 3, 10)):
            snapshot = await service.nearest_at_or_before("u1", 7)

        assert snapshot.total_value_eur == Decimal("9")
        query.lte.assert_called_with("snapshot_date", "2026-03-03")
        query.order.assert_called_with("snapshot_date", desc=True)

    @pytest.mark.asyncio
    async def test_read_failures_mean_no_history(self, mock_supabase):
        mock_supabase.table.side_effect = Exception("timeout")
        service = PortfolioSnapshotService(supabase_client=mock_supabase)

        assert await service.list_since("u1", 30) == []
        assert await service.nearest_at_or_before("u1", 7) is None

    @pytest.mark.asyncio
    async def test_past_snapshots_labels(self):
        service = PortfolioSnapshotService(supabase_client=MagicMock())

        with patch.object(service, "nearest_at_or_before", return_value=None) as mock_nearest:
            past = await service.past_snapshots("u1")

        assert past == {"24h": None, "7d": None, "30d": None, "1y": None}
        assert sorted(call.args[1] for call in mock_nearest.call_args_list) == [7, 30, 365]
