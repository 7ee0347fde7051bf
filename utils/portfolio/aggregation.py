"""
Portfolio Aggregation Engine

Pure computation, no I/O: takes one user's inventory plus the quotes and FX
rates fetched for this request and produces a PortfolioSummary in the user's
primary currency.

Partial data is expected. An instrument without a quote, or whose currency
has no FX rate, contributes 0 to every total but still appears in `holdings`
with `priced=False` / `converted=False`, so callers can show "price
unavailable" instead of a misleading zero.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Set, Tuple

from utils.asset_classification import StablecoinPredicate, is_stablecoin
from utils.portfolio.change_calculations import ChangeMetric, fx_change_for_currency, live_change
from utils.portfolio.constants import (
    HOLDING_KIND_BANK_ACCOUNT,
    HOLDING_KIND_BROKER_DEPOSIT,
    HOLDING_KIND_CRYPTO,
    HOLDING_KIND_EXCHANGE_DEPOSIT,
    HOLDING_KIND_STOCK,
)
from utils.portfolio.models import Inventory, SnapshotTotals
from utils.prices.models import DEFAULT_QUOTE_CURRENCY, HUNDRED, ZERO, FxRateTable, Quote

logger = logging.getLogger(__name__)


def _float(value: Optional[Decimal]) -> Optional[float]:
    return float(value) if value is not None else None


@dataclass(frozen=True)
class Allocation:
    """Share of the total (percent) per asset class; 0/0/0 for an empty portfolio."""
    crypto: Decimal = ZERO
    stocks: Decimal = ZERO
    cash: Decimal = ZERO

    def to_dict(self) -> Dict[str, float]:
        return {"crypto": float(self.crypto), "stocks": float(self.stocks), "cash": float(self.cash)}


@dataclass(frozen=True)
class AssetValuation:
    """One row of the per-asset breakdown."""
    kind: str                          # crypto, stock, bank_account, exchange_deposit, broker_deposit
    asset_id: str
    identifier: str                    # CoinGecko id, Yahoo ticker, or currency code for cash
    name: str
    quantity: Decimal
    currency: str                      # Currency the native value is expressed in
    price: Optional[Decimal]           # None for cash rows and unpriced instruments
    native_value: Optional[Decimal]
    value: Decimal                     # In the primary currency; 0 unless priced and converted
    priced: bool
    converted: bool
    change_24h: Optional[Decimal]      # Move in the primary currency, FX included
    is_stablecoin: bool = False

    @property
    def counted(self) -> bool:
        """Whether this row contributes to the totals."""
        return self.priced and self.converted

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "asset_id": self.asset_id,
            "identifier": self.identifier,
            "name": self.name,
            "quantity": float(self.quantity),
            "currency": self.currency,
            "price": _float(self.price),
            "native_value": _float(self.native_value),
            "value": float(self.value),
            "priced": self.priced,
            "converted": self.converted,
            "change_24h": _float(self.change_24h),
            "is_stablecoin": self.is_stablecoin,
        }


@dataclass(frozen=True)
class PortfolioSummary:
    """
    Valuation of one inventory at one point in time.

    All values are in `primary_currency` unless suffixed `_usd` / `_eur`.
    `crypto_value` excludes stablecoins; `cash_value` is fiat cash plus
    stablecoins. USD/EUR figures are None when the needed FX rate is absent.
    """
    primary_currency: str
    total_value: Decimal
    crypto_value: Decimal
    stablecoin_value: Decimal
    stocks_value: Decimal
    fiat_cash_value: Decimal
    cash_value: Decimal
    allocation: Allocation
    change_24h: ChangeMetric
    fx_change_24h_percent: Decimal
    total_value_change_24h: Decimal
    crypto_value_change_24h: Decimal
    stocks_value_change_24h: Decimal
    stablecoin_value_change_24h: Decimal
    cash_fx_value_change_24h: Decimal
    fx_value_change_24h: Decimal
    crypto_fx_value_change_24h: Decimal
    crypto_fx_change_24h_percent: Decimal
    stocks_fx_value_change_24h: Decimal
    stocks_fx_change_24h_percent: Decimal
    cash_total_value_change_24h: Decimal
    cash_total_fx_value_change_24h: Decimal
    cash_total_fx_change_24h_percent: Decimal
    total_value_usd: Optional[Decimal]
    total_value_eur: Optional[Decimal]
    crypto_value_usd: Optional[Decimal]
    stocks_value_usd: Optional[Decimal]
    cash_value_usd: Optional[Decimal]
    holdings: Tuple[AssetValuation, ...] = field(default_factory=tuple)
    unconverted_currencies: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def unpriced(self) -> List[AssetValuation]:
        return [h for h in self.holdings if not h.priced]

    def snapshot_totals(self) -> Optional[SnapshotTotals]:
        """Values for a daily snapshot row, or None if USD or EUR totals are unavailable."""
        values = (self.total_value_usd, self.total_value_eur, self.crypto_value_usd,
                  self.stocks_value_usd, self.cash_value_usd)
        if any(v is None for v in values):
            return None
        return SnapshotTotals(
            total_value_usd=self.total_value_usd,
            total_value_eur=self.total_value_eur,
            crypto_value_usd=self.crypto_value_usd,
            stocks_value_usd=self.stocks_value_usd,
            cash_value_usd=self.cash_value_usd,
        )

    def to_dict(self, include_holdings: bool = True) -> Dict[str, Any]:
        data = {
            "primary_currency": self.primary_currency,
            "total_value": float(self.total_value),
            "crypto_value": float(self.crypto_value),
            "stablecoin_value": float(self.stablecoin_value),
            "stocks_value": float(self.stocks_value),
            "fiat_cash_value": float(self.fiat_cash_value),
            "cash_value": float(self.cash_value),
            "allocation": self.allocation.to_dict(),
            "change_24h": self.change_24h.to_dict(),
            "fx_change_24h_percent": float(self.fx_change_24h_percent),
            "total_value_change_24h": float(self.total_value_change_24h),
            "crypto_value_change_24h": float(self.crypto_value_change_24h),
            "stocks_value_change_24h": float(self.stocks_value_change_24h),
            "stablecoin_value_change_24h": float(self.stablecoin_value_change_24h),
            "cash_fx_value_change_24h": float(self.cash_fx_value_change_24h),
            "fx_value_change_24h": float(self.fx_value_change_24h),
            "crypto_fx_value_change_24h": float(self.crypto_fx_value_change_24h),
            "crypto_fx_change_24h_percent": float(self.crypto_fx_change_24h_percent),
            "stocks_fx_value_change_24h": float(self.stocks_fx_value_change_24h),
            "stocks_fx_change_24h_percent": float(self.stocks_fx_change_24h_percent),
            "cash_total_value_change_24h": float(self.cash_total_value_change_24h),
            "cash_total_fx_value_change_24h": float(self.cash_total_fx_value_change_24h),
            "cash_total_fx_change_24h_percent": float(self.cash_total_fx_change_24h_percent),
            "total_value_usd": _float(self.total_value_usd),
            "total_value_eur": _float(self.total_value_eur),
            "crypto_value_usd": _float(self.crypto_value_usd),
            "stocks_value_usd": _float(self.stocks_value_usd),
            "cash_value_usd": _float(self.cash_value_usd),
            "unconverted_currencies": list(self.unconverted_currencies),
        }
        if include_holdings:
            data["holdings"] = [h.to_dict() for h in self.holdings]
        return data


class _ClassTotals:
    """Running value and value-weighted changes for one asset class."""

    def __init__(self):
        self.value = ZERO
        self.weighted_change = ZERO
        self.fx_weighted_change = ZERO

    def add(self, value: Decimal, change: Decimal, fx_change: Decimal) -> None:
        self.value += value
        self.weighted_change += value * change
        self.fx_weighted_change += value * fx_change

    @property
    def fx_change_percent(self) -> Decimal:
        """FX-only move of this class in percent, 0 for an empty class."""
        return self.fx_weighted_change / self.value if self.value > 0 else ZERO


def aggregate(
    inventory: Inventory,
    crypto_quotes: Dict[str, Optional[Quote]],
    stock_quotes: Dict[str, Optional[Quote]],
    fx_rates: FxRateTable,
    primary_currency: str,
    eur_usd_change_24h: Optional[Decimal] = None,
    stablecoin_predicate: StablecoinPredicate = is_stablecoin,
) -> PortfolioSummary:
    """
    Value an inventory in the primary currency.

    Args:
        inventory: The user's assets and balances
        crypto_quotes: CoinGecko id -> Quote (None when the price is unavailable)
        stock_quotes: Yahoo ticker -> Quote (None when the price is unavailable)
        fx_rates: Rates into `primary_currency`
        primary_currency: Reporting currency
        eur_usd_change_24h: 24h change (%) of EUR/USD, used for the FX move of
            USD/EUR holdings when the rate table has no change of its own
        stablecoin_predicate: (ticker, subcategory) -> bool

    Returns:
        PortfolioSummary
    """
    primary = primary_currency.upper()
    if fx_rates.primary_currency != primary:
        raise ValueError(
            f"FX table is in {fx_rates.primary_currency}, cannot aggregate in {primary}"
        )

    holdings: List[AssetValuation] = []
    unconverted: Set[str] = set()

    crypto = _ClassTotals()
    stablecoins = _ClassTotals()
    stocks = _ClassTotals()
    fiat_cash = _ClassTotals()

    def fx_move(currency: str) -> Decimal:
        return fx_change_for_currency(currency, primary, fx_rates, eur_usd_change_24h)

    def value_instrument(kind: str, asset_id: str, identifier: str, name: str,
                         quantity: Decimal, quote: Optional[Quote], fallback_currency: str,
                         stable: bool, bucket: _ClassTotals) -> None:
        if quote is None:
            holdings.append(AssetValuation(
                kind=kind, asset_id=asset_id, identifier=identifier, name=name,
                quantity=quantity, currency=fallback_currency.upper(), price=None,
                native_value=None, value=ZERO, priced=False,
                converted=fx_rates.rate(fallback_currency) is not None,
                change_24h=None, is_stablecoin=stable,
            ))
            return

        native_value = quantity * quote.price
        value = fx_rates.convert(native_value, quote.currency)
        converted = value is not None
        move = fx_move(quote.currency)
        change = quote.change_24h + move
        if converted:
            bucket.add(value, change, move)
        else:
            unconverted.add(quote.currency)

        holdings.append(AssetValuation(
            kind=kind, asset_id=asset_id, identifier=identifier, name=name,
            quantity=quantity, currency=quote.currency, price=quote.price,
            native_value=native_value, value=value if converted else ZERO,
            priced=True, converted=converted, change_24h=change if converted else None,
            is_stablecoin=stable,
        ))

    def value_cash(kind: str, asset_id: str, name: str, currency: str, amount: Decimal) -> None:
        currency = (currency or primary).upper()
        value = fx_rates.convert(amount, currency)
        converted = value is not None
        move = fx_move(currency)
        if converted:
            fiat_cash.add(value, move, move)
        else:
            unconverted.add(currency)

        holdings.append(AssetValuation(
            kind=kind, asset_id=asset_id, identifier=currency, name=name,
            quantity=amount, currency=currency, price=None, native_value=amount,
            value=value if converted else ZERO, priced=True, converted=converted,
            change_24h=move if converted else None,
        ))

    # Crypto, stablecoins split out
    for asset in inventory.crypto_assets:
        stable = bool(stablecoin_predicate(asset.ticker, asset.subcategory))
        value_instrument(
            HOLDING_KIND_CRYPTO, asset.id, asset.coingecko_id, asset.name or asset.ticker,
            asset.total_quantity, crypto_quotes.get(asset.coingecko_id),
            DEFAULT_QUOTE_CURRENCY, stable, stablecoins if stable else crypto,
        )

    # Stocks, valued in the quote's trading currency
    for asset in inventory.stock_assets:
        value_instrument(
            HOLDING_KIND_STOCK, asset.id, asset.quote_key, asset.name or asset.ticker,
            asset.total_quantity, stock_quotes.get(asset.quote_key),
            asset.currency or DEFAULT_QUOTE_CURRENCY, False, stocks,
        )

    # Fiat cash
    for account in inventory.bank_accounts:
        value_cash(HOLDING_KIND_BANK_ACCOUNT, account.id, account.name, account.currency, account.balance)
    for deposit in inventory.exchange_deposits:
        value_cash(HOLDING_KIND_EXCHANGE_DEPOSIT, deposit.id, deposit.wallet_name or deposit.currency,
                   deposit.currency, deposit.amount)
    for deposit in inventory.broker_deposits:
        value_cash(HOLDING_KIND_BROKER_DEPOSIT, deposit.id, deposit.broker_name or deposit.currency,
                   deposit.currency, deposit.amount)

    cash_value = fiat_cash.value + stablecoins.value
    total_value = crypto.value + stocks.value + cash_value

    total_weighted = (crypto.weighted_change + stocks.weighted_change
                      + stablecoins.weighted_change + fiat_cash.weighted_change)
    fx_weighted = (crypto.fx_weighted_change + stocks.fx_weighted_change
                   + stablecoins.fx_weighted_change + fiat_cash.fx_weighted_change)
    cash_weighted = stablecoins.weighted_change + fiat_cash.weighted_change
    cash_fx_weighted = stablecoins.fx_weighted_change + fiat_cash.fx_weighted_change

    if total_value > 0:
        allocation = Allocation(
            crypto=crypto.value / total_value * HUNDRED,
            stocks=stocks.value / total_value * HUNDRED,
            cash=cash_value / total_value * HUNDRED,
        )
        fx_change_percent = fx_weighted / total_value
    else:
        allocation = Allocation()
        fx_change_percent = ZERO

    def in_currency(amount: Decimal, currency: str) -> Optional[Decimal]:
        return fx_rates.convert_from_primary(amount, currency)

    if unconverted:
        logger.warning(f"Aggregation in {primary}: no FX rate for {sorted(unconverted)}, values excluded")

    summary = PortfolioSummary(
        primary_currency=primary,
        total_value=total_value,
        crypto_value=crypto.value,
        stablecoin_value=stablecoins.value,
        stocks_value=stocks.value,
        fiat_cash_value=fiat_cash.value,
        cash_value=cash_value,
        allocation=allocation,
        change_24h=live_change(total_weighted, total_value),
        fx_change_24h_percent=fx_change_percent,
        total_value_change_24h=total_weighted / HUNDRED,
        crypto_value_change_24h=crypto.weighted_change / HUNDRED,
        stocks_value_change_24h=stocks.weighted_change / HUNDRED,
        stablecoin_value_change_24h=stablecoins.weighted_change / HUNDRED,
        cash_fx_value_change_24h=fiat_cash.weighted_change / HUNDRED,
        fx_value_change_24h=fx_weighted / HUNDRED,
        crypto_fx_value_change_24h=crypto.fx_weighted_change / HUNDRED,
        crypto_fx_change_24h_percent=crypto.fx_change_percent,
        stocks_fx_value_change_24h=stocks.fx_weighted_change / HUNDRED,
        stocks_fx_change_24h_percent=stocks.fx_change_percent,
        cash_total_value_change_24h=cash_weighted / HUNDRED,
        cash_total_fx_value_change_24h=cash_fx_weighted / HUNDRED,
        cash_total_fx_change_24h_percent=cash_fx_weighted / cash_value if cash_value > 0 else ZERO,
        total_value_usd=in_currency(total_value, "USD"),
        total_value_eur=in_currency(total_value, "EUR"),
        crypto_value_usd=in_currency(crypto.value, "USD"),
        stocks_value_usd=in_currency(stocks.value, "USD"),
        cash_value_usd=in_currency(cash_value, "USD"),
        holdings=tuple(holdings),
        unconverted_currencies=tuple(sorted(unconverted)),
    )

    logger.debug(
        f"Aggregated {len(holdings)} holdings: total {total_value:.2f} {primary}, "
        f"{len(summary.unpriced)} unpriced"
    )
    return summary
