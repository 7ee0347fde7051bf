"""
FX rate table builder.

Rates are expressed as units of the primary currency per one unit of the
foreign currency. Each foreign currency is first quoted as a Yahoo FX pair
(`{CUR}{PRIMARY}=X`, which also carries the 24h move); pairs that fail are
retried in a single Frankfurter (ECB reference rates) call. Anything still
missing stays absent in the table. No rate is ever assumed to be 1 except the
primary currency itself.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

import httpx

from utils.prices.fetch_utils import UPSTREAM_ERRORS, build_http_client
from utils.prices.models import FxRate, FxRateTable, ONE, to_decimal
from utils.prices.quote_cache import FX_TTL_SECONDS, QuoteCache, get_quote_cache
from utils.prices.yahoo_client import YahooFinanceClient, fx_pair_symbol, get_yahoo_client

logger = logging.getLogger(__name__)

FRANKFURTER_URL = "https://api.frankfurter.dev/v1/latest"

# Always resolved so summaries can report USD and EUR totals.
REPORTING_CURRENCIES = ("EUR", "USD")


def parse_frankfurter_rates(payload: Any, currencies: Iterable[str]) -> Dict[str, Decimal]:
    """
    Parse a Frankfurter `latest` response into primary-per-unit rates.

    Frankfurter reports `rates[X]` as units of X per one unit of the base, so
    each rate is inverted. Zero, negative and missing rates are dropped.
    """
    raw_rates = payload.get("rates") if isinstance(payload, dict) else None
    if not isinstance(raw_rates, dict):
        return {}

    rates = {}
    for currency in currencies:
        per_base = to_decimal(raw_rates.get(currency))
        if per_base > 0:
            rates[currency] = ONE / per_base
    return rates


class FxConverter:
    """Builds FxRateTable instances from Yahoo pairs with a Frankfurter fallback."""

    def __init__(self, yahoo_client: Optional[YahooFinanceClient] = None,
                 http_client: Optional[httpx.AsyncClient] = None,
                 cache: Optional[QuoteCache] = None):
        self.yahoo_client = yahoo_client or get_yahoo_client()
        self.http_client = http_client
        self.cache = cache if cache is not None else QuoteCache()

    async def _get_json(self, params: Dict[str, Any]) -> Any:
        if self.http_client is not None:
            response = await self.http_client.get(FRANKFURTER_URL, params=params)
        else:
            async with build_http_client() as client:
                response = await client.get(FRANKFURTER_URL, params=params)
        response.raise_for_status()
        return response.json()

    async def fetch_reference_rates(self, primary_currency: str, currencies: List[str]) -> Dict[str, Decimal]:
        """Fetch ECB reference rates for `currencies` in one call; {} on failure."""
        if not currencies:
            return {}

        symbols = ",".join(sorted(currencies))
        cache_key = f"{primary_currency}:{symbols}"
        payload = self.cache.get("fx:frankfurter", cache_key)
        if payload is None:
            try:
                payload = await self._get_json({"base": primary_currency, "symbols": symbols})
            except UPSTREAM_ERRORS as e:
                logger.warning(f"Frankfurter fallback failed for {symbols} (base {primary_currency}): {e!r}")
                return {}
            self.cache.set("fx:frankfurter", cache_key, payload, FX_TTL_SECONDS)

        return parse_frankfurter_rates(payload, currencies)

    async def get_rate_table(self, primary_currency: str, currencies: Iterable[str]) -> FxRateTable:
        """
        Resolve rates for every currency into the primary currency.

        Args:
            primary_currency: The user's reporting currency (e.g. 'EUR')
            currencies: Currencies referenced by the inventory and quotes

        Returns:
            FxRateTable covering the given currencies, the primary currency and
            EUR/USD. Unresolvable currencies map to None. Never raises.
        """
        primary = (primary_currency or "USD").upper()
        wanted = {c.upper() for c in currencies if c}
        wanted.update(REPORTING_CURRENCIES)
        wanted.discard(primary)
        foreign = sorted(wanted)

        rates: Dict[str, Optional[FxRate]] = {currency: None for currency in foreign}
        if not foreign:
            return FxRateTable(primary_currency=primary, rates=rates)

        pair_symbols = {currency: fx_pair_symbol(currency, primary) for currency in foreign}
        quotes = await self.yahoo_client.get_quotes(pair_symbols.values(), ttl_seconds=FX_TTL_SECONDS)

        for currency, symbol in pair_symbols.items():
            quote = quotes.get(symbol)
            if quote is None or quote.price <= 0:
                continue
            rates[currency] = FxRate(
                currency=currency,
                rate=quote.price,
                change_24h=quote.change_24h if quote.previous_close > 0 else None,
                source="yahoo",
            )

        missing = [currency for currency, fx in rates.items() if fx is None]
        if missing:
            logger.info(f"FX: {len(missing)} pair(s) unavailable on Yahoo, trying Frankfurter: {missing}")
            for currency, rate in (await self.fetch_reference_rates(primary, missing)).items():
                rates[currency] = FxRate(currency=currency, rate=rate, change_24h=None, source="frankfurter")

        table = FxRateTable(primary_currency=primary, rates=rates)
        if table.unresolved:
            logger.warning(f"FX: no rate into {primary} for {table.unresolved}")
        return table


_fx_converter: Optional[FxConverter] = None


def get_fx_converter() -> FxConverter:
    """Get or create the shared FX converter."""
    global _fx_converter

    if _fx_converter is None:
        _fx_converter = FxConverter(yahoo_client=get_yahoo_client(), cache=get_quote_cache())

    return _fx_converter
