"""
Tests for the FX rate table builder (Yahoo pairs with Frankfurter fallback).
"""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from conftest import make_quote
from utils.prices.fx_converter import FxConverter, parse_frankfurter_rates
from utils.prices.quote_cache import QuoteCache


def converter_with(pair_quotes, frankfurter_handler=None):
    yahoo = MagicMock()
    yahoo.get_quotes = AsyncMock(side_effect=lambda symbols, ttl_seconds=None: {
        symbol: pair_quotes.get(symbol) for symbol in symbols
    })

    def no_fallback(request):
        raise AssertionError("Frankfurter should not be called")

    http_client = httpx.AsyncClient(transport=httpx.MockTransport(frankfurter_handler or no_fallback))
    return FxConverter(yahoo_client=yahoo, http_client=http_client, cache=QuoteCache()), yahoo


class TestParseFrankfurter:

    def test_rates_are_inverted(self):
        payload = {"base": "EUR", "rates": {"USD": 1.25, "CHF": 0, "GBP": -1}}
        rates = parse_frankfurter_rates(payload, ["USD", "CHF", "GBP", "JPY"])
        assert rates == {"USD": Decimal("0.8")}

    def test_garbage_payload(self):
        assert parse_frankfurter_rates({"message": "not found"}, ["USD"]) == {}
        assert parse_frankfurter_rates(None, ["USD"]) == {}


class TestFxConverter:

    @pytest.mark.asyncio
    async def test_primary_only_still_resolves_reporting_pair(self):
        converter, yahoo = converter_with({"EURUSD=X": make_quote("EURUSD=X", "1.10", "1.00")})

        table = await converter.get_rate_table("usd", ["USD"])

        assert table.rate("USD") == Decimal("1")
        assert table.rate("EUR") == Decimal("1.10")
        assert table.get("EUR").change_24h == Decimal("10")
        assert table.get("EUR").source == "yahoo"
        yahoo.get_quotes.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_pair_without_previous_close_has_no_change(self):
        converter, _ = converter_with({
            "USDEUR=X": make_quote("USDEUR=X", "0.9"),
            "GBPEUR=X": make_quote("GBPEUR=X", "1.15", "1.15"),
        })

        table = await converter.get_rate_table("EUR", ["USD", "GBP"])

        assert table.get("USD").change_24h is None
        assert table.get("GBP").change_24h == Decimal("0")

    @pytest.mark.asyncio
    async def test_missing_pairs_fall_back_to_frankfurter(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"base": "EUR", "rates": {"CHF": 0.5}})

        converter, _ = converter_with({"USDEUR=X": make_quote("USDEUR=X", "0.9", "0.9")}, handler)

        table = await converter.get_rate_table("EUR", ["USD", "CHF"])

        assert len(requests) == 1
        assert requests[0].url.params["base"] == "EUR"
        assert requests[0].url.params["symbols"] == "CHF"
        assert table.rate("CHF") == Decimal("2")
        assert table.get("CHF").source == "frankfurter"
        assert table.get("CHF").change_24h is None

    @pytest.mark.asyncio
    async def test_unresolvable_currency_is_absent_never_one(self):
        converter, _ = converter_with({}, lambda request: httpx.Response(503))

        table = await converter.get_rate_table("EUR", ["XAU"])

        assert table.rate("EUR") == Decimal("1")
        assert table.rate("XAU") is None
        assert table.rate("USD") is None
        assert table.unresolved == ["USD", "XAU"]

    @pytest.mark.asyncio
    async def test_non_positive_yahoo_price_is_ignored(self):
        def handler(request):
            return httpx.Response(200, json={"rates": {"USD": 1.25}})

        converter, _ = converter_with({"USDEUR=X": make_quote("USDEUR=X", "0")}, handler)

        table = await converter.get_rate_table("EUR", ["USD"])

        assert table.rate("USD") == Decimal("0.8")
        assert table.get("USD").source == "frankfurter"
