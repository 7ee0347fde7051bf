"""
CoinGecko client for crypto quotes, search and coin metadata.

Prices come from one batch request per call (`/simple/price`), so a failure
of that request leaves every requested coin absent. Quotes are always
denominated in USD; the FX converter handles conversion to the user's
primary currency.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import quote as url_quote

import httpx

from utils.asset_classification import (
    STABLECOIN_SUBCATEGORY,
    get_available_chains,
    infer_chain,
    infer_subcategory,
)
from utils.prices.fetch_utils import UPSTREAM_ERRORS, build_http_client, dedupe
from utils.prices.models import HUNDRED, ONE, ZERO, Quote, SearchResult, to_decimal
from utils.prices.quote_cache import (
    DETAIL_TTL_SECONDS,
    QUOTE_TTL_SECONDS,
    SEARCH_TTL_SECONDS,
    QuoteCache,
    get_quote_cache,
)
from utils.settings import get_settings

logger = logging.getLogger(__name__)

COINGECKO_BASE_URL = "https://api.coingecko.com/api/v3"
COINGECKO_QUOTE_CURRENCY = "USD"
MAX_SEARCH_RESULTS = 10
MIN_QUERY_LENGTH = 2


def previous_close_from_change(price: Decimal, change_percent: Optional[Decimal]) -> Decimal:
    """
    Reconstruct the price 24h ago from the reported percentage change.

    Returns 0 (meaning "unknown") when the change is missing or would imply a
    non-positive previous price.
    """
    if change_percent is None:
        return ZERO
    divisor = ONE + change_percent / HUNDRED
    if divisor <= 0:
        return ZERO
    return price / divisor


def parse_simple_price(payload: Any, coin_ids: Iterable[str]) -> Dict[str, Optional[Quote]]:
    """
    Parse a `/simple/price` response into quotes keyed by coin id.

    Every requested id is present in the result. Ids missing from the payload,
    or without a usable USD price, map to None.
    """
    quotes: Dict[str, Optional[Quote]] = {}
    entries = payload if isinstance(payload, dict) else {}

    for coin_id in coin_ids:
        entry = entries.get(coin_id)
        if not isinstance(entry, dict) or entry.get("usd") is None:
            quotes[coin_id] = None
            continue

        price = to_decimal(entry.get("usd"))
        raw_change = entry.get("usd_24h_change")
        change = to_decimal(raw_change) if raw_change is not None else None
        quotes[coin_id] = Quote.build(
            identifier=coin_id,
            price=price,
            previous_close=previous_close_from_change(price, change),
            currency=COINGECKO_QUOTE_CURRENCY,
        )

    return quotes


def parse_coin_search(payload: Any, limit: int = MAX_SEARCH_RESULTS) -> List[SearchResult]:
    """Parse a `/search` response, keeping the first `limit` coins."""
    coins = payload.get("coins") if isinstance(payload, dict) else None
    results = []
    for coin in (coins or [])[:limit]:
        if not isinstance(coin, dict) or not coin.get("id"):
            continue
        results.append(SearchResult(
            symbol=coin["id"],
            name=coin.get("name") or coin["id"],
            exchange=(coin.get("symbol") or "").upper(),
            quote_type="CRYPTOCURRENCY",
            thumb=coin.get("thumb"),
            market_cap_rank=coin.get("market_cap_rank"),
        ))
    return results


def parse_coin_detail(payload: Any) -> Optional[Dict[str, Any]]:
    """Reduce a `/coins/{id}` response to the fields used when adding an asset."""
    if not isinstance(payload, dict) or not payload.get("id"):
        return None

    coin_id = payload["id"]
    name = payload.get("name") or coin_id
    categories = [c for c in (payload.get("categories") or []) if c]
    platforms = {k: v for k, v in (payload.get("platforms") or {}).items() if k}
    subcategory = infer_subcategory(categories)

    return {
        "id": coin_id,
        "symbol": (payload.get("symbol") or "").upper(),
        "name": name,
        "image": (payload.get("image") or {}).get("small"),
        "categories": categories,
        "chain": infer_chain(coin_id, payload.get("asset_platform_id"), name),
        "available_chains": get_available_chains(coin_id, platforms, name),
        "subcategory": subcategory,
        "is_stablecoin": subcategory.lower() == STABLECOIN_SUBCATEGORY,
    }


class CoinGeckoClient:
    """Async client for the public CoinGecko API."""

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None,
                 cache: Optional[QuoteCache] = None,
                 api_key: Optional[str] = None,
                 base_url: str = COINGECKO_BASE_URL):
        self.http_client = http_client
        self.cache = cache if cache is not None else QuoteCache()
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")

    def _headers(self) -> Dict[str, str]:
        if self.api_key:
            return {"x-cg-demo-api-key": self.api_key}
        return {}

    async def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.base_url}{path}"
        if self.http_client is not None:
            response = await self.http_client.get(url, params=params, headers=self._headers())
        else:
            async with build_http_client() as client:
                response = await client.get(url, params=params, headers=self._headers())
        response.raise_for_status()
        return response.json()

    async def get_prices(self, coin_ids: Iterable[str]) -> Dict[str, Optional[Quote]]:
        """
        Fetch USD quotes for the given CoinGecko ids.

        Args:
            coin_ids: CoinGecko coin ids (e.g. ['bitcoin', 'usd-coin'])

        Returns:
            Mapping id -> Quote, or None for ids that could not be priced.
            Never raises.
        """
        ids = dedupe(coin_ids)
        if not ids:
            return {}

        entries: Dict[str, Any] = {}
        missing = []
        for coin_id in ids:
            cached = self.cache.get("cg:price", coin_id)
            if cached is not None:
                entries[coin_id] = cached
            else:
                missing.append(coin_id)

        if missing:
            try:
                payload = await self._get_json("/simple/price", params={
                    "ids": ",".join(missing),
                    "vs_currencies": "usd",
                    "include_24hr_change": "true",
                })
            except UPSTREAM_ERRORS as e:
                logger.warning(f"CoinGecko price batch failed for {len(missing)} ids: {e!r}")
                payload = {}

            if isinstance(payload, dict):
                for coin_id in missing:
                    entry = payload.get(coin_id)
                    if isinstance(entry, dict):
                        entries[coin_id] = entry
                        self.cache.set("cg:price", coin_id, entry, QUOTE_TTL_SECONDS)

        quotes = parse_simple_price(entries, ids)
        priced = sum(1 for q in quotes.values() if q is not None)
        logger.info(f"CoinGecko: priced {priced}/{len(ids)} coins")
        return quotes

    async def search(self, query: str) -> List[SearchResult]:
        """Search coins by name or symbol; short queries and failures return []."""
        query = (query or "").strip()
        if len(query) < MIN_QUERY_LENGTH:
            return []

        cache_key = query.lower()
        cached = self.cache.get("cg:search", cache_key)
        if cached is not None:
            return parse_coin_search(cached)

        try:
            payload = await self._get_json("/search", params={"query": query})
        except UPSTREAM_ERRORS as e:
            logger.warning(f"CoinGecko search failed for '{query}': {e!r}")
            return []

        self.cache.set("cg:search", cache_key, payload, SEARCH_TTL_SECONDS)
        return parse_coin_search(payload)

    async def get_coin_detail(self, coin_id: str) -> Optional[Dict[str, Any]]:
        """Fetch coin metadata with inferred chain and subcategory; None on failure."""
        if not coin_id:
            return None

        cached = self.cache.get("cg:detail", coin_id)
        if cached is not None:
            return cached

        try:
            payload = await self._get_json(f"/coins/{url_quote(coin_id, safe='')}", params={
                "localization": "false",
                "tickers": "false",
                "market_data": "false",
                "community_data": "false",
                "developer_data": "false",
            })
        except UPSTREAM_ERRORS as e:
            logger.warning(f"CoinGecko detail failed for {coin_id}: {e!r}")
            return None

        detail = parse_coin_detail(payload)
        if detail is not None:
            self.cache.set("cg:detail", coin_id, detail, DETAIL_TTL_SECONDS)
        return detail


_coingecko_client: Optional[CoinGeckoClient] = None


def get_coingecko_client() -> CoinGeckoClient:
    """Get or create the shared CoinGecko client."""
    global _coingecko_client

    if _coingecko_client is None:
        _coingecko_client = CoinGeckoClient(
            cache=get_quote_cache(),
            api_key=get_settings().coingecko_api_key or None,
        )

    return _coingecko_client
