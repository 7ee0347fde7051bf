"""
Yahoo Finance client for equity, index and FX pair quotes.

Quotes use the v8 chart endpoint, one request per ticker, issued concurrently
and settled independently: a failing ticker is absent in the result while the
rest still resolve. Search uses the v1 search endpoint and enriches each hit
with its live quote.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import quote as url_quote

import httpx

from utils.prices.fetch_utils import (
    UPSTREAM_ERRORS,
    build_http_client,
    gather_settled,
    outcome_values,
)
from utils.prices.models import HUNDRED, FetchOutcome, Quote, SearchResult, to_decimal
from utils.prices.quote_cache import (
    QUOTE_TTL_SECONDS,
    SEARCH_TTL_SECONDS,
    QuoteCache,
    get_quote_cache,
)

logger = logging.getLogger(__name__)

YAHOO_CHART_URL = "https://query1.finance.yahoo.com/v8/finance/chart"
YAHOO_SEARCH_URL = "https://query1.finance.yahoo.com/v1/finance/search"

SEARCH_QUOTES_COUNT = 8
MIN_QUERY_LENGTH = 2
SEARCHABLE_QUOTE_TYPES = ("EQUITY", "ETF")

# Market indicator panel shown next to the portfolio
INDEX_SYMBOLS = {
    "^GSPC": "S&P 500",
    "GC=F": "Gold",
    "^IXIC": "Nasdaq",
    "^DJI": "Dow Jones",
    "EURUSD=X": "EUR/USD",
}
EUR_USD_SYMBOL = "EURUSD=X"

# Listings quoted in minor units (pence, cents, agorot) -> (ISO currency, divisor)
MINOR_UNIT_CURRENCIES = {
    "GBp": ("GBP", HUNDRED),
    "GBX": ("GBP", HUNDRED),
    "ZAc": ("ZAR", HUNDRED),
    "ZAC": ("ZAR", HUNDRED),
    "ILA": ("ILS", HUNDRED),
}


def fx_pair_symbol(currency: str, primary_currency: str) -> str:
    """Yahoo ticker quoting one unit of `currency` in `primary_currency`."""
    return f"{currency.upper()}{primary_currency.upper()}=X"


def parse_chart_meta(payload: Any) -> Optional[Dict[str, Any]]:
    """Extract `chart.result[0].meta` from a chart response, None if absent."""
    if not isinstance(payload, dict):
        return None
    results = (payload.get("chart") or {}).get("result")
    if not results or not isinstance(results, list):
        return None
    meta = results[0].get("meta") if isinstance(results[0], dict) else None
    return meta if isinstance(meta, dict) else None


def parse_chart_quote(ticker: str, meta: Optional[Dict[str, Any]]) -> Optional[Quote]:
    """
    Build a Quote from chart metadata.

    Defaults: previous close falls back from chartPreviousClose to
    previousClose to 0, currency to USD, name to longName then shortName.
    A meta block without regularMarketPrice is treated as no data. Minor-unit
    listings (GBp, ZAc, ILA) are converted to their ISO currency here.
    """
    if not meta or meta.get("regularMarketPrice") is None:
        return None

    price = to_decimal(meta.get("regularMarketPrice"))
    previous_close = meta.get("chartPreviousClose")
    if previous_close is None:
        previous_close = meta.get("previousClose")
    previous_close = to_decimal(previous_close)

    currency = meta.get("currency")
    if currency in MINOR_UNIT_CURRENCIES:
        currency, divisor = MINOR_UNIT_CURRENCIES[currency]
        price = price / divisor
        previous_close = previous_close / divisor

    return Quote.build(
        identifier=ticker,
        price=price,
        previous_close=previous_close,
        currency=currency,
        name=meta.get("longName") or meta.get("shortName") or ticker,
    )


def parse_search_results(payload: Any) -> List[SearchResult]:
    """Keep Yahoo-listed equities and ETFs from a search response."""
    quotes = payload.get("quotes") if isinstance(payload, dict) else None
    if not isinstance(quotes, list):
        return []

    results = []
    for item in quotes:
        if not isinstance(item, dict):
            continue
        if not item.get("isYahooFinance") or item.get("quoteType") not in SEARCHABLE_QUOTE_TYPES:
            continue
        symbol = item.get("symbol")
        if not symbol:
            continue
        results.append(SearchResult(
            symbol=symbol,
            name=item.get("longname") or item.get("shortname") or symbol,
            exchange=item.get("exchDisp") or item.get("exchange") or "",
            quote_type=item["quoteType"],
        ))
    return results


class YahooFinanceClient:
    """Async client for the unauthenticated Yahoo Finance JSON endpoints."""

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None,
                 cache: Optional[QuoteCache] = None):
        self.http_client = http_client
        self.cache = cache if cache is not None else QuoteCache()

    async def _get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        if self.http_client is not None:
            response = await self.http_client.get(url, params=params)
        else:
            async with build_http_client() as client:
                response = await client.get(url, params=params)
        response.raise_for_status()
        return response.json()

    async def fetch_chart_quote(self, ticker: str, ttl_seconds: int = QUOTE_TTL_SECONDS) -> Optional[Quote]:
        """Fetch one ticker. Raises on transport errors; returns None when Yahoo has no data."""
        meta = self.cache.get("yf:chart", ticker)
        if meta is None:
            payload = await self._get_json(
                f"{YAHOO_CHART_URL}/{url_quote(ticker, safe='')}",
                params={"interval": "1d", "range": "1d"},
            )
            meta = parse_chart_meta(payload)
            if meta is not None:
                self.cache.set("yf:chart", ticker, meta, ttl_seconds)
        return parse_chart_quote(ticker, meta)

    async def get_quote_outcomes(self, tickers: Iterable[str],
                                 ttl_seconds: int = QUOTE_TTL_SECONDS) -> Dict[str, FetchOutcome[Quote]]:
        """Fetch every ticker concurrently and return the per-ticker settled outcome."""
        async def fetch(ticker: str) -> Optional[Quote]:
            return await self.fetch_chart_quote(ticker, ttl_seconds)

        return await gather_settled(tickers, fetch, source="yahoo")

    async def get_quotes(self, tickers: Iterable[str],
                         ttl_seconds: int = QUOTE_TTL_SECONDS) -> Dict[str, Optional[Quote]]:
        """
        Fetch quotes for many tickers.

        Args:
            tickers: Yahoo tickers (e.g. ['AAPL', 'VWCE.DE'])

        Returns:
            Mapping ticker -> Quote, or None for tickers that failed. Never raises.
        """
        outcomes = await self.get_quote_outcomes(tickers, ttl_seconds)
        quotes = outcome_values(outcomes)
        if quotes:
            priced = sum(1 for q in quotes.values() if q is not None)
            logger.info(f"Yahoo: priced {priced}/{len(quotes)} tickers")
        return quotes

    async def get_quote(self, ticker: str) -> Optional[Quote]:
        """Single-ticker convenience wrapper; None on any failure."""
        try:
            return await self.fetch_chart_quote(ticker)
        except UPSTREAM_ERRORS as e:
            logger.warning(f"Yahoo quote failed for {ticker}: {e!r}")
            return None

    async def get_index_quotes(self) -> Dict[str, Optional[Quote]]:
        """Fetch the market indicator panel (S&P 500, Gold, Nasdaq, Dow, EUR/USD)."""
        return await self.get_quotes(INDEX_SYMBOLS.keys())

    async def search(self, query: str) -> List[SearchResult]:
        """
        Search equities and ETFs, each enriched with its live quote.

        Queries shorter than two characters return []. When a result's quote
        cannot be fetched its price and currency stay None.
        """
        query = (query or "").strip()
        if len(query) < MIN_QUERY_LENGTH:
            return []

        cache_key = query.lower()
        payload = self.cache.get("yf:search", cache_key)
        if payload is None:
            try:
                payload = await self._get_json(YAHOO_SEARCH_URL, params={
                    "q": query,
                    "quotesCount": SEARCH_QUOTES_COUNT,
                    "newsCount": 0,
                })
            except UPSTREAM_ERRORS as e:
                logger.warning(f"Yahoo search failed for '{query}': {e!r}")
                return []
            self.cache.set("yf:search", cache_key, payload, SEARCH_TTL_SECONDS)

        results = parse_search_results(payload)
        if not results:
            return []

        quotes = await self.get_quotes([r.symbol for r in results])
        for result in results:
            quote = quotes.get(result.symbol)
            if quote is not None:
                result.currency = quote.currency
                result.price = quote.price
        return results


_yahoo_client: Optional[YahooFinanceClient] = None


def get_yahoo_client() -> YahooFinanceClient:
    """Get or create the shared Yahoo Finance client."""
    global _yahoo_client

    if _yahoo_client is None:
        _yahoo_client = YahooFinanceClient(cache=get_quote_cache())

    return _yahoo_client
