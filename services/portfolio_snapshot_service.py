"""
Portfolio Snapshot Service

Stores one row per user per day in `portfolio_snapshots` (unique on
user_id + snapshot_date) with the portfolio total in USD and EUR and the
USD value of each asset class. Snapshots feed the 7d / 30d / 1y change
figures and the history chart.

History is an enhancement, never a dependency of the live total: every
storage failure here is logged and degrades to "no historical data"
(False / [] / None) instead of propagating.
"""

import asyncio
import logging
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from utils.portfolio.constants import LIVE_PERIOD, SNAPSHOT_PERIODS
from utils.portfolio.models import Snapshot, SnapshotTotals
from utils.prices.models import to_decimal
from utils.settings import get_settings

logger = logging.getLogger(__name__)

SNAPSHOTS_TABLE = 'portfolio_snapshots'
SNAPSHOT_CONFLICT_COLUMNS = 'user_id,snapshot_date'
CENT = Decimal('0.01')


def _round_money(value: Decimal) -> float:
    return float(value.quantize(CENT, rounding=ROUND_HALF_UP))


def build_snapshot_row(user_id: str, totals: SnapshotTotals, snapshot_date: date) -> Dict[str, Any]:
    """Row payload for an upsert, values rounded to cents."""
    return {
        'user_id': user_id,
        'snapshot_date': snapshot_date.isoformat(),
        'total_value_usd': _round_money(totals.total_value_usd),
        'total_value_eur': _round_money(totals.total_value_eur),
        'crypto_value_usd': _round_money(totals.crypto_value_usd),
        'stocks_value_usd': _round_money(totals.stocks_value_usd),
        'cash_value_usd': _round_money(totals.cash_value_usd),
    }


def parse_snapshot_row(row: Dict[str, Any]) -> Optional[Snapshot]:
    """Build a Snapshot from a stored row; None for rows without a usable date."""
    try:
        snapshot_date = date.fromisoformat(str(row['snapshot_date'])[:10])
    except (KeyError, ValueError):
        logger.warning(f"Skipping snapshot row with invalid date: {row.get('snapshot_date')}")
        return None

    return Snapshot(
        user_id=row.get('user_id', ''),
        snapshot_date=snapshot_date,
        total_value_usd=to_decimal(row.get('total_value_usd')),
        total_value_eur=to_decimal(row.get('total_value_eur')),
        crypto_value_usd=to_decimal(row.get('crypto_value_usd')),
        stocks_value_usd=to_decimal(row.get('stocks_value_usd')),
        cash_value_usd=to_decimal(row.get('cash_value_usd')),
    )


class PortfolioSnapshotService:
    """Read/write access to daily portfolio snapshots."""

    def __init__(self, supabase_client=None):
        self.supabase = supabase_client

    def _get_supabase_client(self):
        if self.supabase is None:
            from utils.supabase.db_client import get_supabase_client
            self.supabase = get_supabase_client()
        return self.supabase

    def today(self) -> date:
        """Current date in the configured snapshot time zone."""
        return datetime.now(get_settings().snapshot_tz()).date()

    async def upsert(self, user_id: str, totals: SnapshotTotals,
                     snapshot_date: Optional[date] = None) -> bool:
        """
        Insert or replace the user's snapshot for one day.

        Calling this twice for the same (user, day) leaves exactly one row
        holding the latest values.

        Returns:
            True if the row was written, False on any failure
        """
        snapshot_date = snapshot_date or self.today()
        row = build_snapshot_row(user_id, totals, snapshot_date)

        try:
            self._get_supabase_client().table(SNAPSHOTS_TABLE)\
                .upsert(row, on_conflict=SNAPSHOT_CONFLICT_COLUMNS)\
                .execute()
        except Exception as e:
            logger.error(f"Error storing snapshot for user {user_id} on {snapshot_date}: {e}", exc_info=True)
            return False

        logger.debug(f"💾 Stored snapshot for user {user_id} on {snapshot_date}: ${row['total_value_usd']:.2f}")
        return True

    async def upsert_many(self, entries: Iterable[Tuple[str, SnapshotTotals]],
                          snapshot_date: Optional[date] = None) -> int:
        """
        Batch upsert for many users on the same day.

        Returns:
            Number of rows written (0 on failure)
        """
        snapshot_date = snapshot_date or self.today()
        rows = [build_snapshot_row(user_id, totals, snapshot_date) for user_id, totals in entries]
        if not rows:
            return 0

        try:
            self._get_supabase_client().table(SNAPSHOTS_TABLE)\
                .upsert(rows, on_conflict=SNAPSHOT_CONFLICT_COLUMNS)\
                .execute()
        except Exception as e:
            logger.error(f"Error storing {len(rows)} snapshots for {snapshot_date}: {e}", exc_info=True)
            return 0

        return len(rows)

    async def list_since(self, user_id: str, days: int) -> List[Snapshot]:
        """Snapshots from the last `days` days, oldest first; [] on failure."""
        since = self.today() - timedelta(days=max(days, 0))
        try:
            result = self._get_supabase_client().table(SNAPSHOTS_TABLE)\
                .select('*')\
                .eq('user_id', user_id)\
                .gte('snapshot_date', since.isoformat())\
                .order('snapshot_date')\
                .execute()
        except Exception as e:
            logger.error(f"Error loading snapshots for user {user_id}: {e}")
            return []

        snapshots = [parse_snapshot_row(row) for row in result.data or []]
        return sorted((s for s in snapshots if s is not None), key=lambda s: s.snapshot_date)

    async def nearest_at_or_before(self, user_id: str, days_ago: int) -> Optional[Snapshot]:
        """Most recent snapshot dated on or before `days_ago` days back; None if there is none."""
        target = self.today() - timedelta(days=max(days_ago, 0))
        try:
            result = self._get_supabase_client().table(SNAPSHOTS_TABLE)\
                .select('*')\
                .eq('user_id', user_id)\
                .lte('snapshot_date', target.isoformat())\
                .order('snapshot_date', desc=True)\
                .limit(1)\
                .execute()
        except Exception as e:
            logger.error(f"Error loading snapshot {days_ago}d back for user {user_id}: {e}")
            return None

        if not result.data:
            return None
        return parse_snapshot_row(result.data[0])

    async def past_snapshots(self, user_id: str) -> Dict[str, Optional[Snapshot]]:
        """
        Reference snapshots for each period label.

        `24h` is always None (that change is computed live from quotes).
        """
        labels = list(SNAPSHOT_PERIODS)
        results = await asyncio.gather(
            *(self.nearest_at_or_before(user_id, SNAPSHOT_PERIODS[label]) for label in labels)
        )
        past: Dict[str, Optional[Snapshot]] = {LIVE_PERIOD: None}
        past.update(zip(labels, results))
        return past


_snapshot_service: Optional[PortfolioSnapshotService] = None


def get_snapshot_service() -> PortfolioSnapshotService:
    """Get or create the global snapshot service instance."""
    global _snapshot_service

    if _snapshot_service is None:
        _snapshot_service = PortfolioSnapshotService()

    return _snapshot_service
