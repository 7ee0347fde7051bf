"""
Inventory and snapshot models shared by the valuation pipeline.

The inventory is what the user owns (quantities and balances, no prices).
It is read from storage by an InventoryProvider and is never mutated by the
valuation code.
"""

from dataclasses import asdict, dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional, Set

from utils.portfolio.constants import DEFAULT_PRIMARY_CURRENCY
from utils.prices.models import ZERO


@dataclass
class CryptoPosition:
    """Quantity of one crypto asset held in one wallet."""
    id: str
    wallet_id: Optional[str]
    quantity: Decimal
    wallet_name: Optional[str] = None
    apy: Decimal = ZERO
    acquisition_method: str = "bought"


@dataclass
class CryptoAsset:
    """A crypto asset the user tracks, with its positions across wallets."""
    id: str
    ticker: str
    name: str
    coingecko_id: str
    chain: str = ""
    subcategory: Optional[str] = None
    positions: List[CryptoPosition] = field(default_factory=list)

    @property
    def total_quantity(self) -> Decimal:
        return sum((p.quantity for p in self.positions), ZERO)


@dataclass
class StockPosition:
    """Quantity of one stock/ETF held at one broker."""
    id: str
    broker_id: Optional[str]
    quantity: Decimal
    broker_name: Optional[str] = None


@dataclass
class StockAsset:
    """
    A stock or ETF the user tracks.

    `currency` is the user-entered currency and may be stale; valuation uses
    the trading currency reported by the quote source instead.
    """
    id: str
    ticker: str
    name: str
    yahoo_ticker: Optional[str] = None
    currency: str = DEFAULT_PRIMARY_CURRENCY
    category: Optional[str] = None
    subcategory: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    positions: List[StockPosition] = field(default_factory=list)

    @property
    def quote_key(self) -> str:
        """Ticker used to look the asset up on Yahoo Finance."""
        return self.yahoo_ticker or self.ticker

    @property
    def total_quantity(self) -> Decimal:
        return sum((p.quantity for p in self.positions), ZERO)


@dataclass
class BankAccount:
    id: str
    name: str
    bank_name: str
    currency: str
    balance: Decimal
    apy: Decimal = ZERO


@dataclass
class ExchangeDeposit:
    """Fiat balance held on a crypto exchange (wallet)."""
    id: str
    wallet_id: Optional[str]
    currency: str
    amount: Decimal
    wallet_name: Optional[str] = None
    apy: Decimal = ZERO


@dataclass
class BrokerDeposit:
    """Uninvested cash held at a broker."""
    id: str
    broker_id: Optional[str]
    currency: str
    amount: Decimal
    broker_name: Optional[str] = None
    apy: Decimal = ZERO


@dataclass
class Profile:
    user_id: str
    primary_currency: str = DEFAULT_PRIMARY_CURRENCY
    display_name: Optional[str] = None


@dataclass
class Inventory:
    """Everything one user owns, as read from storage."""
    profile: Profile
    crypto_assets: List[CryptoAsset] = field(default_factory=list)
    stock_assets: List[StockAsset] = field(default_factory=list)
    bank_accounts: List[BankAccount] = field(default_factory=list)
    exchange_deposits: List[ExchangeDeposit] = field(default_factory=list)
    broker_deposits: List[BrokerDeposit] = field(default_factory=list)

    @property
    def primary_currency(self) -> str:
        return self.profile.primary_currency

    def coingecko_ids(self) -> List[str]:
        return [a.coingecko_id for a in self.crypto_assets if a.coingecko_id]

    def stock_tickers(self) -> List[str]:
        return [a.quote_key for a in self.stock_assets if a.quote_key]

    def referenced_currencies(self) -> Set[str]:
        """Currencies known before quotes arrive: cash balances and stored stock currencies."""
        currencies = {a.currency for a in self.stock_assets}
        currencies.update(b.currency for b in self.bank_accounts)
        currencies.update(d.currency for d in self.exchange_deposits)
        currencies.update(d.currency for d in self.broker_deposits)
        return {c.upper() for c in currencies if c}

    @property
    def is_empty(self) -> bool:
        return not (self.crypto_assets or self.stock_assets or self.bank_accounts
                    or self.exchange_deposits or self.broker_deposits)


@dataclass(frozen=True)
class SnapshotTotals:
    """Values written to a daily snapshot row."""
    total_value_usd: Decimal
    total_value_eur: Decimal
    crypto_value_usd: Decimal
    stocks_value_usd: Decimal
    cash_value_usd: Decimal


@dataclass(frozen=True)
class Snapshot:
    """One stored daily snapshot."""
    user_id: str
    snapshot_date: date
    total_value_usd: Decimal
    total_value_eur: Decimal
    crypto_value_usd: Decimal = ZERO
    stocks_value_usd: Decimal = ZERO
    cash_value_usd: Decimal = ZERO

    def total_in(self, currency: str) -> Decimal:
        """Stored total in EUR for EUR, in USD for anything else."""
        if (currency or "").upper() == "EUR":
            return self.total_value_eur
        return self.total_value_usd

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["snapshot_date"] = self.snapshot_date.isoformat()
        for key in ("total_value_usd", "total_value_eur", "crypto_value_usd",
                    "stocks_value_usd", "cash_value_usd"):
            data[key] = float(data[key])
        return data
