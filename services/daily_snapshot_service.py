"""
Daily Snapshot Service

Captures one portfolio snapshot per active user per day, so the 7d / 30d / 1y
comparisons have data even for users who did not open their dashboard.

Designed to price every user from a single set of upstream calls:

- read all inventories (controlled concurrency),
- deduplicate coin ids, tickers and currencies across users,
- fetch quotes and FX once, valued in USD (EUR totals come from the same
  FX table),
- aggregate each user and batch-upsert the rows.

Triggered by the scheduled-job route.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from services.portfolio_snapshot_service import PortfolioSnapshotService, get_snapshot_service
from services.portfolio_valuation_service import PortfolioValuationService, get_valuation_service
from utils.portfolio.inventory_provider import InventoryProvider
from utils.portfolio.models import Inventory, Profile, SnapshotTotals
from utils.settings import get_settings

logger = logging.getLogger(__name__)

BATCH_VALUATION_CURRENCY = "USD"


@dataclass
class DailySnapshotBatchResult:
    """Result of one daily snapshot run."""
    total_users: int = 0
    snapshots_written: int = 0
    skipped_users: int = 0
    failed_users: int = 0
    coins_priced: int = 0
    tickers_priced: int = 0
    currencies: int = 0
    processing_duration_seconds: float = 0.0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def merge_inventories(inventories: List[Inventory]) -> Inventory:
    """Combine many inventories into one, used only to collect what needs pricing."""
    combined = Inventory(profile=Profile(user_id="daily-batch", primary_currency=BATCH_VALUATION_CURRENCY))
    for inventory in inventories:
        combined.crypto_assets.extend(inventory.crypto_assets)
        combined.stock_assets.extend(inventory.stock_assets)
        combined.bank_accounts.extend(inventory.bank_accounts)
        combined.exchange_deposits.extend(inventory.exchange_deposits)
        combined.broker_deposits.extend(inventory.broker_deposits)
    return combined


class DailySnapshotService:
    """Batch snapshot capture for all active users."""

    def __init__(self,
                 valuation_service: Optional[PortfolioValuationService] = None,
                 snapshot_service: Optional[PortfolioSnapshotService] = None,
                 inventory_provider: Optional[InventoryProvider] = None,
                 max_concurrent: Optional[int] = None):
        self.valuation_service = valuation_service or get_valuation_service()
        self.snapshot_service = snapshot_service or get_snapshot_service()
        self.inventory_provider = inventory_provider or self.valuation_service.inventory_provider
        self.max_concurrent = max_concurrent or get_settings().quote_max_concurrency

    async def _load_inventories(self, user_ids: List[str],
                                result: DailySnapshotBatchResult) -> List[Tuple[str, Inventory]]:
        semaphore = asyncio.Semaphore(self.max_concurrent)

        async def load(user_id: str) -> Optional[Inventory]:
            async with semaphore:
                return await self.inventory_provider.get_inventory(user_id)

        loaded = await asyncio.gather(*(load(user_id) for user_id in user_ids), return_exceptions=True)

        inventories = []
        for user_id, outcome in zip(user_ids, loaded):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                result.failed_users += 1
                result.errors.append(f"{user_id}: {outcome}")
                logger.error(f"Failed to load inventory for user {user_id}: {outcome}")
            elif outcome is None:
                result.skipped_users += 1
            else:
                inventories.append((user_id, outcome))
        return inventories

    async def capture_all_users(self) -> DailySnapshotBatchResult:
        """
        Snapshot every active user for today.

        Returns:
            DailySnapshotBatchResult with counts; never raises for per-user
            or upstream failures.
        """
        start_time = datetime.now()
        result = DailySnapshotBatchResult()

        try:
            user_ids = await self.inventory_provider.list_active_user_ids()
        except Exception as e:
            logger.error(f"❌ Daily snapshot run aborted, could not list users: {e}")
            result.errors.append(str(e))
            return result

        result.total_users = len(user_ids)
        logger.info(f"🌅 Starting daily snapshot run for {len(user_ids)} active users")
        if not user_ids:
            return result

        inventories = await self._load_inventories(user_ids, result)
        combined = merge_inventories([inventory for _, inventory in inventories])
        market = await self.valuation_service.fetch_market_data(combined)

        result.coins_priced = sum(1 for q in market.crypto_quotes.values() if q is not None)
        result.tickers_priced = sum(1 for q in market.stock_quotes.values() if q is not None)
        result.currencies = len(market.fx_rates.rates)

        entries: List[Tuple[str, SnapshotTotals]] = []
        for user_id, inventory in inventories:
            summary = self.valuation_service.value(inventory, market, primary_currency=BATCH_VALUATION_CURRENCY)
            totals = summary.snapshot_totals()
            if totals is None:
                result.skipped_users += 1
                logger.warning(f"Skipping snapshot for user {user_id}: EUR total unavailable")
                continue
            entries.append((user_id, totals))

        result.snapshots_written = await self.snapshot_service.upsert_many(entries)
        if entries and not result.snapshots_written:
            result.failed_users += len(entries)
            result.errors.append("Snapshot upsert failed")

        result.processing_duration_seconds = (datetime.now() - start_time).total_seconds()
        logger.info(
            f"✅ Daily snapshot run complete: {result.snapshots_written}/{result.total_users} users, "
            f"{result.skipped_users} skipped, {result.failed_users} failed, "
            f"{result.processing_duration_seconds:.1f}s"
        )
        return result


_daily_snapshot_service: Optional[DailySnapshotService] = None


def get_daily_snapshot_service() -> DailySnapshotService:
    """Get or create the global daily snapshot service instance."""
    global _daily_snapshot_service

    if _daily_snapshot_service is None:
        _daily_snapshot_service = DailySnapshotService()

    return _daily_snapshot_service
