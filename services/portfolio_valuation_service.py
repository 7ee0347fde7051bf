"""
Portfolio Valuation Service

Orchestrates one valuation request:

1. read the inventory, the reference snapshots and the market panel
   concurrently,
2. fetch crypto quotes, stock quotes and FX rates concurrently (settle-all,
   each source degrades to "absent" on failure),
3. join, aggregate and derive the dashboard insights (pure),
4. for the owner's own dashboard only, upsert today's snapshot.

The caller's identity travels in an explicit RequestContext. Shared
(read-only) views never write snapshots.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional

from services.portfolio_snapshot_service import PortfolioSnapshotService, get_snapshot_service
from utils.asset_classification import StablecoinPredicate, is_stablecoin
from utils.authorization import ShareNotFoundError
from utils.portfolio.aggregation import PortfolioSummary, aggregate
from utils.portfolio.change_calculations import ChangeMetric, period_changes
from utils.portfolio.dashboard_insights import DashboardInsights, compute_dashboard_insights
from utils.portfolio.inventory_provider import InventoryProvider, SupabaseInventoryProvider
from utils.portfolio.models import Inventory, Profile, Snapshot
from utils.prices.coingecko_client import CoinGeckoClient, get_coingecko_client
from utils.prices.fx_converter import FxConverter, get_fx_converter
from utils.prices.models import FxRateTable, Quote
from utils.prices.yahoo_client import EUR_USD_SYMBOL, INDEX_SYMBOLS, YahooFinanceClient, get_yahoo_client

logger = logging.getLogger(__name__)

# Always priced for the market panel, whether or not the user holds it
MARKET_PANEL_COINS = ("bitcoin",)


@dataclass(frozen=True)
class RequestContext:
    """Who the valuation is for, and whether this request may write."""
    user_id: str
    read_only: bool = False
    share_id: Optional[str] = None

    @classmethod
    def for_owner(cls, user_id: str) -> "RequestContext":
        return cls(user_id=user_id, read_only=False)

    @classmethod
    def for_share(cls, share) -> "RequestContext":
        return cls(user_id=share.owner_id, read_only=True, share_id=share.id)


@dataclass
class MarketData:
    """Everything fetched from upstream for one request, already settled."""
    crypto_quotes: Dict[str, Optional[Quote]]
    stock_quotes: Dict[str, Optional[Quote]]
    fx_rates: FxRateTable
    index_quotes: Dict[str, Optional[Quote]] = field(default_factory=dict)

    @property
    def eur_usd_change_24h(self) -> Optional[Decimal]:
        quote = self.index_quotes.get(EUR_USD_SYMBOL)
        if quote is None or quote.previous_close <= 0:
            return None
        return quote.change_24h

    def market_panel(self) -> Dict[str, Any]:
        panel = {}
        for symbol, label in INDEX_SYMBOLS.items():
            quote = self.index_quotes.get(symbol)
            panel[symbol] = {"label": label, "quote": quote.to_dict() if quote else None}
        for coin_id in MARKET_PANEL_COINS:
            quote = self.crypto_quotes.get(coin_id)
            panel[coin_id] = {"label": coin_id.capitalize(), "quote": quote.to_dict() if quote else None}
        return panel


@dataclass
class DashboardView:
    """Summary plus historical comparison for one request."""
    context: RequestContext
    summary: PortfolioSummary
    past_snapshots: Dict[str, Optional[Snapshot]]
    changes: Dict[str, ChangeMetric]
    market: MarketData
    snapshot_saved: bool = False
    insights: Optional[DashboardInsights] = None

    def to_dict(self, include_holdings: bool = True, include_market: bool = True) -> Dict[str, Any]:
        data = {
            "summary": self.summary.to_dict(include_holdings=include_holdings),
            "past_snapshots": {
                label: (snap.to_dict() if snap else None) for label, snap in self.past_snapshots.items()
            },
            "period_changes": {label: change.to_dict() for label, change in self.changes.items()},
            "read_only": self.context.read_only,
        }
        # Insights name individual holdings, so they follow the holdings scope
        if include_holdings and self.insights is not None:
            data["insights"] = self.insights.to_dict()
        if include_market:
            data["market"] = self.market.market_panel()
            data["fx_rates"] = self.market.fx_rates.to_dict()
        return data


class PortfolioValuationService:
    """Builds valuations for owners and share-token viewers."""

    def __init__(self,
                 inventory_provider: Optional[InventoryProvider] = None,
                 coingecko_client: Optional[CoinGeckoClient] = None,
                 yahoo_client: Optional[YahooFinanceClient] = None,
                 fx_converter: Optional[FxConverter] = None,
                 snapshot_service: Optional[PortfolioSnapshotService] = None,
                 stablecoin_predicate: StablecoinPredicate = is_stablecoin):
        self.inventory_provider = inventory_provider or SupabaseInventoryProvider()
        self.coingecko_client = coingecko_client or get_coingecko_client()
        self.yahoo_client = yahoo_client or get_yahoo_client()
        self.fx_converter = fx_converter or get_fx_converter()
        self.snapshot_service = snapshot_service or get_snapshot_service()
        self.stablecoin_predicate = stablecoin_predicate

    async def fetch_market_data(self, inventory: Inventory,
                                index_quotes: Optional[Dict[str, Optional[Quote]]] = None,
                                extra_coin_ids=()) -> MarketData:
        """
        Fetch quotes and FX for an inventory. Never raises for upstream failures.

        Crypto, stock and FX fetches run concurrently. Stocks whose trading
        currency turned out to be missing from the FX table (the stored
        currency can be stale) get one follow-up FX lookup.
        """
        primary = inventory.primary_currency
        coin_ids = list(dict.fromkeys(list(extra_coin_ids) + inventory.coingecko_ids()))
        currencies = inventory.referenced_currencies() | {"USD"}

        crypto_quotes, stock_quotes, fx_rates = await asyncio.gather(
            self.coingecko_client.get_prices(coin_ids),
            self.yahoo_client.get_quotes(inventory.stock_tickers()),
            self.fx_converter.get_rate_table(primary, currencies),
        )

        quote_currencies = {q.currency for q in stock_quotes.values() if q is not None}
        missing = sorted(quote_currencies - set(fx_rates.rates))
        if missing:
            logger.info(f"Fetching FX for quote currencies not in inventory: {missing}")
            extra = await self.fx_converter.get_rate_table(primary, missing)
            merged = dict(fx_rates.rates)
            merged.update({currency: extra.rates.get(currency) for currency in missing})
            fx_rates = FxRateTable(primary_currency=primary, rates=merged)

        return MarketData(
            crypto_quotes=crypto_quotes,
            stock_quotes=stock_quotes,
            fx_rates=fx_rates,
            index_quotes=index_quotes or {},
        )

    def value(self, inventory: Inventory, market: MarketData,
              primary_currency: Optional[str] = None) -> PortfolioSummary:
        """Aggregate an inventory against already-fetched market data."""
        return aggregate(
            inventory,
            market.crypto_quotes,
            market.stock_quotes,
            market.fx_rates,
            primary_currency or inventory.primary_currency,
            eur_usd_change_24h=market.eur_usd_change_24h,
            stablecoin_predicate=self.stablecoin_predicate,
        )

    async def _load_inventory(self, context: RequestContext) -> Inventory:
        inventory = await self.inventory_provider.get_inventory(context.user_id)
        if inventory is not None:
            return inventory
        if context.read_only:
            # Share points at a user that no longer exists
            raise ShareNotFoundError()
        logger.warning(f"No profile for user {context.user_id}, valuing an empty inventory")
        return Inventory(profile=Profile(user_id=context.user_id))

    async def build_dashboard(self, context: RequestContext) -> DashboardView:
        """
        Value the portfolio of `context.user_id`.

        Raises:
            InventoryProviderError: If the inventory cannot be read
            ShareNotFoundError: For a read-only context whose owner has no profile
        """
        inventory, past_snapshots, index_quotes = await asyncio.gather(
            self._load_inventory(context),
            self.snapshot_service.past_snapshots(context.user_id),
            self.yahoo_client.get_index_quotes(),
        )

        market = await self.fetch_market_data(inventory, index_quotes, extra_coin_ids=MARKET_PANEL_COINS)
        summary = self.value(inventory, market)
        changes = period_changes(summary, past_snapshots)
        insights = compute_dashboard_insights(inventory, summary, market.fx_rates, self.stablecoin_predicate)

        snapshot_saved = False
        if not context.read_only:
            snapshot_saved = await self._save_today(context.user_id, summary)

        logger.info(
            f"📊 Valued portfolio for user {context.user_id} "
            f"({'shared' if context.read_only else 'owner'}): "
            f"{summary.total_value:.2f} {summary.primary_currency}, "
            f"{len(summary.unpriced)} unpriced, unconverted {list(summary.unconverted_currencies)}"
        )

        return DashboardView(
            context=context,
            summary=summary,
            past_snapshots=past_snapshots,
            changes=changes,
            market=market,
            snapshot_saved=snapshot_saved,
            insights=insights,
        )

    async def _save_today(self, user_id: str, summary: PortfolioSummary) -> bool:
        totals = summary.snapshot_totals()
        if totals is None:
            logger.warning(f"Skipping snapshot for user {user_id}: USD/EUR totals unavailable")
            return False
        return await self.snapshot_service.upsert(user_id, totals)


_valuation_service: Optional[PortfolioValuationService] = None


def get_valuation_service() -> PortfolioValuationService:
    """Get or create the global valuation service instance."""
    global _valuation_service

    if _valuation_service is None:
        _valuation_service = PortfolioValuationService()

    return _valuation_service
