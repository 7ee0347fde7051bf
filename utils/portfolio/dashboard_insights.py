"""
Dashboard Insights

Pure computation, no I/O. Derives the per-card figures shown next to the
summary (crypto, equities and cash breakdowns, yield on cash) from the same
inventory and the already-aggregated PortfolioSummary. Values are taken from
the summary's holdings rows, so FX conversion and unpriced handling are
exactly those of the aggregation engine: only counted rows contribute.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from utils.asset_classification import StablecoinPredicate, infer_peg_currency, is_stablecoin
from utils.portfolio.aggregation import AssetValuation, PortfolioSummary
from utils.portfolio.constants import (
    HOLDING_KIND_BANK_ACCOUNT,
    HOLDING_KIND_BROKER_DEPOSIT,
    HOLDING_KIND_CRYPTO,
    HOLDING_KIND_EXCHANGE_DEPOSIT,
    HOLDING_KIND_STOCK,
)
from utils.portfolio.models import Inventory
from utils.prices.models import HUNDRED, ZERO, FxRateTable

BITCOIN_ID = "bitcoin"
MINED_OR_STAKED = ("mined", "staked")

DAYS_PER_YEAR = Decimal("365")
MONTHS_PER_YEAR = Decimal("12")

# Stock category -> display label, in display order for ties
EQUITY_TYPES = (
    ("etf", "ETFs"),
    ("individual_stock", "Stocks"),
    ("bond_fixed_income", "Bonds"),
    ("other", "Other"),
)
EQUITY_LABELS = dict(EQUITY_TYPES)


def _percent(part: Decimal, whole: Decimal) -> Decimal:
    return part / whole * HUNDRED if whole > 0 else ZERO


@dataclass(frozen=True)
class BreakdownEntry:
    label: str
    value: Decimal
    percent: Decimal
    subtypes: Tuple["BreakdownEntry", ...] = ()
    tags: Tuple["BreakdownEntry", ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        data = {"label": self.label, "value": float(self.value), "percent": float(self.percent)}
        if self.subtypes:
            data["subtypes"] = [s.to_dict() for s in self.subtypes]
        if self.tags:
            data["tags"] = [t.to_dict() for t in self.tags]
        return data


@dataclass(frozen=True)
class CashCurrencyEntry:
    """Cash held in one currency: fiat balances plus stablecoins pegged to it."""
    currency: str
    value: Decimal
    percent: Decimal
    fiat_value: Decimal
    stablecoin_value: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "currency": self.currency,
            "value": float(self.value),
            "percent": float(self.percent),
            "fiat_value": float(self.fiat_value),
            "stablecoin_value": float(self.stablecoin_value),
        }


@dataclass(frozen=True)
class TopHolding:
    name: str
    ticker: str
    percent: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "ticker": self.ticker, "percent": float(self.percent)}


@dataclass(frozen=True)
class DashboardInsights:
    """All values in the summary's primary currency; percentages 0-100."""
    # Crypto (stablecoins excluded)
    crypto_asset_count: int
    crypto_change_24h: Decimal
    btc_value: Decimal
    btc_dominance_percent: Decimal
    mined_staked_count: int
    mined_staked_percent: Decimal
    crypto_breakdown: Tuple[BreakdownEntry, ...]
    # Equities
    stock_position_count: int
    stock_change_24h: Decimal
    equities_breakdown: Tuple[BreakdownEntry, ...]
    top_holding: Optional[TopHolding]
    # Cash, stablecoins included
    cash_account_count: int
    weighted_avg_apy: Decimal
    apy_income_daily: Decimal
    apy_income_monthly: Decimal
    apy_income_yearly: Decimal
    cash_currency_breakdown: Tuple[CashCurrencyEntry, ...] = field(default_factory=tuple)
    eur_usd_rate: Optional[Decimal] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "crypto_asset_count": self.crypto_asset_count,
            "crypto_change_24h": float(self.crypto_change_24h),
            "btc_value": float(self.btc_value),
            "btc_dominance_percent": float(self.btc_dominance_percent),
            "mined_staked_count": self.mined_staked_count,
            "mined_staked_percent": float(self.mined_staked_percent),
            "crypto_breakdown": [e.to_dict() for e in self.crypto_breakdown],
            "stock_position_count": self.stock_position_count,
            "stock_change_24h": float(self.stock_change_24h),
            "equities_breakdown": [e.to_dict() for e in self.equities_breakdown],
            "top_holding": self.top_holding.to_dict() if self.top_holding else None,
            "cash_account_count": self.cash_account_count,
            "weighted_avg_apy": float(self.weighted_avg_apy),
            "apy_income_daily": float(self.apy_income_daily),
            "apy_income_monthly": float(self.apy_income_monthly),
            "apy_income_yearly": float(self.apy_income_yearly),
            "cash_currency_breakdown": [e.to_dict() for e in self.cash_currency_breakdown],
            "eur_usd_rate": float(self.eur_usd_rate) if self.eur_usd_rate is not None else None,
        }


class _ApyAccumulator:
    def __init__(self):
        self.weighted = ZERO
        self.value = ZERO

    def add(self, value: Decimal, apy: Decimal) -> None:
        if apy > 0 and value > 0:
            self.weighted += value * apy
            self.value += value

    @property
    def average(self) -> Decimal:
        return self.weighted / self.value if self.value > 0 else ZERO


def _sorted_entries(values: Dict[str, Decimal], whole: Decimal) -> Tuple[BreakdownEntry, ...]:
    entries = [BreakdownEntry(label=label, value=value, percent=_percent(value, whole))
               for label, value in values.items() if value > 0]
    return tuple(sorted(entries, key=lambda e: e.value, reverse=True))


def eur_usd_rate(fx_rates: FxRateTable) -> Optional[Decimal]:
    """USD per one EUR, from any rate table that covers both currencies."""
    eur = fx_rates.rate("EUR")
    usd = fx_rates.rate("USD")
    if eur is None or usd is None or usd == 0:
        return None
    return eur / usd


def compute_dashboard_insights(
    inventory: Inventory,
    summary: PortfolioSummary,
    fx_rates: Optional[FxRateTable] = None,
    stablecoin_predicate: StablecoinPredicate = is_stablecoin,
) -> DashboardInsights:
    """
    Derive the dashboard card figures for one valuation.

    Args:
        inventory: The inventory that produced `summary`
        summary: Output of aggregate() for that inventory
        fx_rates: Rate table used for the valuation (for the EUR/USD rate)
        stablecoin_predicate: Same rule the aggregation used

    Returns:
        DashboardInsights
    """
    rows: Dict[Tuple[str, str], AssetValuation] = {
        (h.kind, h.asset_id): h for h in summary.holdings
    }

    def counted(kind: str, asset_id: str) -> Optional[AssetValuation]:
        row = rows.get((kind, asset_id))
        return row if row is not None and row.counted else None

    # Crypto
    crypto_value = ZERO
    crypto_weighted = ZERO
    btc_value = ZERO
    mined_staked_value = ZERO
    mined_staked_count = 0
    per_ticker: Dict[str, Decimal] = {}
    crypto_asset_count = 0

    stable_by_peg: Dict[str, Decimal] = {}
    apy = _ApyAccumulator()
    cash_account_count = 0

    for asset in inventory.crypto_assets:
        stable = bool(stablecoin_predicate(asset.ticker, asset.subcategory))
        if not stable:
            crypto_asset_count += 1

        row = counted(HOLDING_KIND_CRYPTO, asset.id)
        if row is None or asset.total_quantity <= 0:
            continue

        for position in asset.positions:
            value = row.value * position.quantity / asset.total_quantity
            if stable:
                cash_account_count += 1
                peg = infer_peg_currency(asset.ticker, asset.name)
                stable_by_peg[peg] = stable_by_peg.get(peg, ZERO) + value
                apy.add(value, position.apy)
                continue

            crypto_value += value
            crypto_weighted += value * (row.change_24h or ZERO)
            if asset.coingecko_id == BITCOIN_ID:
                btc_value += value
            if position.acquisition_method in MINED_OR_STAKED:
                mined_staked_value += value
                mined_staked_count += 1
            per_ticker[asset.ticker] = per_ticker.get(asset.ticker, ZERO) + value

    crypto_breakdown: List[BreakdownEntry] = []
    if crypto_value > 0:
        crypto_breakdown.append(BreakdownEntry(
            label="Bitcoin", value=btc_value, percent=_percent(btc_value, crypto_value),
        ))
        alts_value = crypto_value - btc_value
        if alts_value > 0:
            alts = {ticker: value for ticker, value in per_ticker.items() if ticker != "BTC"}
            crypto_breakdown.append(BreakdownEntry(
                label="Alts", value=alts_value, percent=_percent(alts_value, crypto_value),
                subtypes=_sorted_entries(alts, crypto_value),
            ))

    # Equities
    stock_value = ZERO
    stock_weighted = ZERO
    stock_position_count = 0
    by_type: Dict[str, Decimal] = {}
    subtypes_by_type: Dict[str, Dict[str, Decimal]] = {}
    tags_by_type: Dict[str, Dict[str, Decimal]] = {}
    top: Optional[Tuple[Decimal, str, str]] = None

    for asset in inventory.stock_assets:
        row = counted(HOLDING_KIND_STOCK, asset.id)
        if row is None:
            continue

        stock_value += row.value
        stock_weighted += row.value * (row.change_24h or ZERO)
        stock_position_count += len(asset.positions)

        category = asset.category if asset.category in EQUITY_LABELS else "other"
        by_type[category] = by_type.get(category, ZERO) + row.value

        subtype = (asset.subcategory or "").strip()
        if subtype:
            bucket = subtypes_by_type.setdefault(category, {})
            bucket[subtype] = bucket.get(subtype, ZERO) + row.value

        primary_tag = asset.tags[0].strip() if asset.tags else ""
        if primary_tag and primary_tag.lower() != EQUITY_LABELS[category].lower():
            bucket = tags_by_type.setdefault(category, {})
            bucket[primary_tag] = bucket.get(primary_tag, ZERO) + row.value

        if top is None or row.value > top[0]:
            top = (row.value, asset.name, asset.ticker)

    equities_breakdown = []
    for category, label in EQUITY_TYPES:
        value = by_type.get(category, ZERO)
        if value <= 0:
            continue
        subtypes = subtypes_by_type.get(category, {})
        equities_breakdown.append(BreakdownEntry(
            label=label,
            value=value,
            percent=_percent(value, stock_value),
            # One distinct subtype says nothing the type label doesn't
            subtypes=_sorted_entries(subtypes, value) if len(subtypes) > 1 else (),
            tags=_sorted_entries(tags_by_type.get(category, {}), value),
        ))
    equities_breakdown.sort(key=lambda e: e.value, reverse=True)

    top_holding = None
    if top is not None and stock_value > 0:
        top_holding = TopHolding(name=top[1], ticker=top[2], percent=_percent(top[0], stock_value))

    # Cash
    fiat_by_currency: Dict[str, Decimal] = {}
    cash_sources = (
        (HOLDING_KIND_BANK_ACCOUNT, inventory.bank_accounts),
        (HOLDING_KIND_EXCHANGE_DEPOSIT, inventory.exchange_deposits),
        (HOLDING_KIND_BROKER_DEPOSIT, inventory.broker_deposits),
    )
    for kind, accounts in cash_sources:
        for account in accounts:
            cash_account_count += 1
            row = counted(kind, account.id)
            if row is None:
                continue
            fiat_by_currency[row.currency] = fiat_by_currency.get(row.currency, ZERO) + row.value
            apy.add(row.value, account.apy)

    # Income on the yield-bearing balance only, not on all cash
    apy_income_yearly = apy.weighted / HUNDRED

    cash_breakdown = []
    for currency in set(fiat_by_currency) | set(stable_by_peg):
        fiat = fiat_by_currency.get(currency, ZERO)
        stable = stable_by_peg.get(currency, ZERO)
        value = fiat + stable
        if value <= 0:
            continue
        cash_breakdown.append(CashCurrencyEntry(
            currency=currency,
            value=value,
            percent=_percent(value, summary.cash_value),
            fiat_value=fiat,
            stablecoin_value=stable,
        ))
    cash_breakdown.sort(key=lambda e: (-e.value, e.currency))

    return DashboardInsights(
        crypto_asset_count=crypto_asset_count,
        crypto_change_24h=crypto_weighted / crypto_value if crypto_value > 0 else ZERO,
        btc_value=btc_value,
        btc_dominance_percent=_percent(btc_value, crypto_value),
        mined_staked_count=mined_staked_count,
        mined_staked_percent=_percent(mined_staked_value, crypto_value),
        crypto_breakdown=tuple(crypto_breakdown),
        stock_position_count=stock_position_count,
        stock_change_24h=stock_weighted / stock_value if stock_value > 0 else ZERO,
        equities_breakdown=tuple(equities_breakdown),
        top_holding=top_holding,
        cash_account_count=cash_account_count,
        weighted_avg_apy=apy.average,
        apy_income_daily=apy_income_yearly / DAYS_PER_YEAR,
        apy_income_monthly=apy_income_yearly / MONTHS_PER_YEAR,
        apy_income_yearly=apy_income_yearly,
        cash_currency_breakdown=tuple(cash_breakdown),
        eur_usd_rate=eur_usd_rate(fx_rates) if fx_rates is not None else None,
    )
