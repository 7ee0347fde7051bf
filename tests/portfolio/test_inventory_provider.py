"""
Tests for SupabaseInventoryProvider with mocked Supabase query chains.
"""

from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from utils.portfolio.inventory_provider import InventoryProviderError, SupabaseInventoryProvider


def table_returning(rows):
    """Query-builder mock: every filter returns the builder, execute() returns `rows`."""
    query = MagicMock()
    for method in ("select", "eq", "is_", "in_", "order", "limit"):
        getattr(query, method).return_value = query
    query.execute.return_value = MagicMock(data=rows)
    return query


def provider_with(tables):
    supabase = MagicMock()
    queries = {name: table_returning(rows) for name, rows in tables.items()}
    supabase.table.side_effect = lambda name: queries.setdefault(name, table_returning([]))
    return SupabaseInventoryProvider(supabase_client=supabase), queries


class TestSupabaseInventoryProvider:

    @pytest.mark.asyncio
    async def test_profile_primary_currency(self):
        provider, queries = provider_with({
            "profiles": [{"id": "user-123", "primary_currency": "eur", "display_name": "Alex"}],
        })

        profile = await provider.get_profile("user-123")

        assert profile.primary_currency == "EUR"
        queries["profiles"].eq.assert_called_with("id", "user-123")

    @pytest.mark.asyncio
    async def test_missing_profile(self):
        provider, _ = provider_with({"profiles": []})
        assert await provider.get_profile("ghost") is None
        assert await provider.get_inventory("ghost") is None

    @pytest.mark.asyncio
    async def test_crypto_assets_with_positions(self):
        provider, queries = provider_with({
            "crypto_assets": [
                {"id": "a1", "ticker": "btc", "name": "Bitcoin", "coingecko_id": "bitcoin"},
                {"id": "a2", "ticker": "usdc", "name": "USDC", "coingecko_id": "usd-coin",
                 "subcategory": "Stablecoin"},
            ],
            "crypto_positions": [
                {"id": "p1", "crypto_asset_id": "a1", "wallet_id": "w1", "quantity": "0.5"},
                {"id": "p2", "crypto_asset_id": "a1", "wallet_id": "w2", "quantity": 0.25},
                {"id": "p3", "crypto_asset_id": "a2", "wallet_id": "w1", "quantity": -5},
            ],
            "wallets": [{"id": "w1", "name": "Ledger"}, {"id": "w2", "name": "Kraken"}],
        })

        assets = await provider.list_crypto_assets_with_positions("user-123")

        btc, usdc = assets
        assert btc.ticker == "BTC"
        assert btc.total_quantity == Decimal("0.75")
        assert btc.positions[0].wallet_name == "Ledger"
        assert usdc.total_quantity == 0
        assert usdc.subcategory == "Stablecoin"
        queries["crypto_assets"].eq.assert_called_with("user_id", "user-123")
        queries["crypto_assets"].is_.assert_called_with("deleted_at", "null")
        queries["crypto_positions"].in_.assert_called_with("crypto_asset_id", ["a1", "a2"])

    @pytest.mark.asyncio
    async def test_no_assets_skips_position_query(self):
        provider, queries = provider_with({"stock_assets": []})

        assert await provider.list_stock_assets_with_positions("user-123") == []
        assert "stock_positions" not in queries

    @pytest.mark.asyncio
    async def test_cash_rows(self):
        provider, _ = provider_with({
            "bank_accounts": [{"id": "b1", "name": "Main", "bank_name": "N26", "currency": "eur",
                               "balance": "1200.50", "apy": "2.5"}],
            "exchange_deposits": [{"id": "e1", "wallet_id": "w1", "currency": "USD", "amount": 10,
                                   "wallets": {"name": "Kraken"}}],
            "broker_deposits": [{"id": "d1", "broker_id": "br1", "currency": None, "amount": 5,
                                 "brokers": None}],
        })

        banks = await provider.list_bank_accounts("user-123")
        exchange = await provider.list_exchange_deposits("user-123")
        broker = await provider.list_broker_deposits("user-123")

        assert banks[0].currency == "EUR"
        assert banks[0].balance == Decimal("1200.50")
        assert exchange[0].wallet_name == "Kraken"
        assert broker[0].currency == "USD"
        assert broker[0].broker_name is None

    @pytest.mark.asyncio
    async def test_full_inventory(self):
        provider, _ = provider_with({
            "profiles": [{"id": "user-123", "primary_currency": "USD"}],
            "stock_assets": [{"id": "s1", "ticker": "SAP", "yahoo_ticker": "SAP.DE", "currency": "EUR"}],
            "stock_positions": [{"id": "sp1", "stock_asset_id": "s1", "broker_id": "br1", "quantity": 3}],
            "brokers": [{"id": "br1", "name": "Trade Republic"}],
        })

        inventory = await provider.get_inventory("user-123")

        assert inventory.primary_currency == "USD"
        assert inventory.stock_tickers() == ["SAP.DE"]
        assert inventory.stock_assets[0].positions[0].broker_name == "Trade Republic"
        assert inventory.referenced_currencies() == {"EUR"}

    @pytest.mark.asyncio
    async def test_storage_error_raises_provider_error(self):
        supabase = MagicMock()
        supabase.table.side_effect = Exception("connection reset")
        provider = SupabaseInventoryProvider(supabase_client=supabase)

        with pytest.raises(InventoryProviderError) as exc_info:
            await provider.list_bank_accounts("user-123")

        assert exc_info.value.status_code == 503
        assert exc_info.value.user_id == "user-123"

    @pytest.mark.asyncio
    async def test_active_user_ids_are_unique(self):
        provider, queries = provider_with({
            "profiles": [{"id": "u1"}, {"id": "u2"}, {"id": "u1"}, {"id": None}],
        })

        assert await provider.list_active_user_ids() == ["u1", "u2"]
        queries["profiles"].eq.assert_called_with("status", "active")

    @pytest.mark.asyncio
    async def test_acquisition_method_and_tags(self):
        provider, _ = provider_with({
            "crypto_assets": [{"id": "a1", "ticker": "eth", "name": "Ether", "coingecko_id": "ethereum"}],
            "crypto_positions": [
                {"id": "p1", "crypto_asset_id": "a1", "wallet_id": "w1", "quantity": 1,
                 "acquisition_method": "Staked"},
                {"id": "p2", "crypto_asset_id": "a1", "wallet_id": "w1", "quantity": 1,
                 "acquisition_method": None},
            ],
            "stock_assets": [{"id": "s1", "ticker": "VWCE", "category": "etf", "tags": ["World", None, ""]}],
        })

        crypto = await provider.list_crypto_assets_with_positions("user-123")
        stocks = await provider.list_stock_assets_with_positions("user-123")

        assert [p.acquisition_method for p in crypto[0].positions] == ["staked", "bought"]
        assert stocks[0].tags == ["World"]
