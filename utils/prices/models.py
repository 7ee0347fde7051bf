"""
Normalized quote and FX models.

Every upstream response (CoinGecko, Yahoo Finance, Frankfurter) is parsed into
these types at the client boundary. Missing or malformed upstream fields are
resolved to documented defaults here, so the aggregation layer never has to
guess at response shapes.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Generic, List, Optional, TypeVar

DEFAULT_QUOTE_CURRENCY = "USD"
ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")

T = TypeVar("T")


def to_decimal(value: Any, default: Decimal = ZERO) -> Decimal:
    """
    Coerce an upstream JSON number (or numeric string) into a Decimal.

    None, booleans, NaN/infinite values and anything unparseable resolve to
    `default`.
    """
    if value is None or isinstance(value, bool):
        return default
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return default
    if not result.is_finite():
        return default
    return result


def derive_change_percent(price: Decimal, previous_close: Decimal) -> Decimal:
    """Percentage move from previous_close to price; 0 when previous_close <= 0."""
    if previous_close > 0:
        return (price - previous_close) / previous_close * HUNDRED
    return ZERO


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Quote:
    """Normalized price record for one instrument from one upstream source."""
    identifier: str              # CoinGecko id or Yahoo ticker
    price: Decimal               # In `currency`
    previous_close: Decimal      # 0 when unknown
    currency: str                # Native trading currency of the instrument
    name: Optional[str] = None
    as_of: datetime = field(default_factory=_utcnow)

    @property
    def change_24h(self) -> Decimal:
        """Derived 24h change percentage; never taken from the upstream directly."""
        return derive_change_percent(self.price, self.previous_close)

    @classmethod
    def build(cls, identifier: str, price: Any, previous_close: Any = None,
              currency: Optional[str] = None, name: Optional[str] = None) -> "Quote":
        """Construct a quote from raw upstream values, applying parse defaults."""
        return cls(
            identifier=identifier,
            price=to_decimal(price),
            previous_close=to_decimal(previous_close),
            currency=(currency or DEFAULT_QUOTE_CURRENCY).upper(),
            name=name or None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identifier": self.identifier,
            "price": float(self.price),
            "previous_close": float(self.previous_close),
            "change_24h": float(self.change_24h),
            "currency": self.currency,
            "name": self.name,
            "as_of": self.as_of.isoformat(),
        }


@dataclass(frozen=True)
class FxRate:
    """Units of the primary currency per one unit of `currency`."""
    currency: str
    rate: Decimal
    change_24h: Optional[Decimal] = None  # None when the source has no daily move
    source: str = "yahoo"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "currency": self.currency,
            "rate": float(self.rate),
            "change_24h": float(self.change_24h) if self.change_24h is not None else None,
            "source": self.source,
        }


@dataclass(frozen=True)
class FxRateTable:
    """
    Exchange rates from every referenced currency into the primary currency.

    `rates[code]` is None when the rate could not be resolved. The primary
    currency always maps to rate 1.
    """
    primary_currency: str
    rates: Dict[str, Optional[FxRate]]

    def __post_init__(self):
        primary = self.primary_currency.upper()
        object.__setattr__(self, "primary_currency", primary)
        object.__setattr__(self, "rates", {code.upper(): fx for code, fx in self.rates.items()})
        self.rates[primary] = FxRate(currency=primary, rate=ONE, change_24h=ZERO, source="identity")

    def get(self, currency: str) -> Optional[FxRate]:
        return self.rates.get((currency or "").upper())

    def rate(self, currency: str) -> Optional[Decimal]:
        fx = self.get(currency)
        return fx.rate if fx is not None else None

    def convert(self, amount: Decimal, currency: str) -> Optional[Decimal]:
        """Convert `amount` in `currency` into the primary currency, None if the rate is absent."""
        rate = self.rate(currency)
        if rate is None:
            return None
        return amount * rate

    def convert_from_primary(self, amount: Decimal, currency: str) -> Optional[Decimal]:
        """Convert a primary-currency amount into `currency`, None if the rate is absent or zero."""
        rate = self.rate(currency)
        if rate is None or rate == 0:
            return None
        return amount / rate

    @property
    def unresolved(self) -> List[str]:
        return sorted(code for code, fx in self.rates.items() if fx is None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "primary_currency": self.primary_currency,
            "rates": {code: (fx.to_dict() if fx else None) for code, fx in sorted(self.rates.items())},
        }


@dataclass(frozen=True)
class FetchOutcome(Generic[T]):
    """
    Settled result of one upstream fetch.

    Callers branch on `ok` instead of catching exceptions: a failed or empty
    fetch carries `value=None` and, when there was one, the error message.
    """
    key: str
    value: Optional[T] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.value is not None and self.error is None


@dataclass
class SearchResult:
    """One asset-discovery hit; price/currency stay None if enrichment failed."""
    symbol: str
    name: str
    exchange: str = ""
    quote_type: str = ""
    currency: Optional[str] = None
    price: Optional[Decimal] = None
    thumb: Optional[str] = None
    market_cap_rank: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "name": self.name,
            "exchange": self.exchange,
            "quote_type": self.quote_type,
            "currency": self.currency,
            "price": float(self.price) if self.price is not None else None,
            "thumb": self.thumb,
            "market_cap_rank": self.market_cap_rank,
        }
