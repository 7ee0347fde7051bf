"""
Tests for the aggregation engine.

The engine is pure, so every test builds an inventory, quotes and an FX table
by hand and checks the resulting PortfolioSummary.
"""

from decimal import Decimal

import pytest

from conftest import make_bank_account, make_crypto, make_fx_table, make_quote, make_stock
from utils.portfolio.aggregation import aggregate
from utils.portfolio.models import BrokerDeposit, ExchangeDeposit, Inventory, Profile
from utils.prices.yahoo_client import parse_chart_quote


def inventory_of(primary="USD", **lists):
    return Inventory(profile=Profile(user_id="user-123", primary_currency=primary), **lists)


def holding(summary, identifier):
    return next(h for h in summary.holdings if h.identifier == identifier)


class TestEmptyPortfolio:

    def test_empty_inventory_is_zero_not_nan(self, empty_inventory):
        summary = aggregate(empty_inventory, {}, {}, make_fx_table("USD"), "USD")

        assert summary.total_value == Decimal("0")
        assert summary.allocation.crypto == 0
        assert summary.allocation.stocks == 0
        assert summary.allocation.cash == 0
        assert summary.change_24h.available is False
        assert summary.holdings == ()
        assert summary.to_dict()["allocation"] == {"crypto": 0.0, "stocks": 0.0, "cash": 0.0}

    def test_zero_quantity_positions(self):
        inventory = inventory_of(crypto_assets=[make_crypto("bitcoin", "BTC", 0)])
        summary = aggregate(inventory, {"bitcoin": make_quote("bitcoin", 50000)}, {},
                            make_fx_table("USD"), "USD")

        assert summary.total_value == 0
        assert summary.allocation.to_dict() == {"crypto": 0.0, "stocks": 0.0, "cash": 0.0}


class TestValuation:

    def test_single_bitcoin(self):
        inventory = inventory_of(crypto_assets=[make_crypto("bitcoin", "BTC", 1)])
        fx = make_fx_table("USD", {"EUR": "1.10"})

        summary = aggregate(inventory, {"bitcoin": make_quote("bitcoin", 50000)}, {}, fx, "USD")

        assert summary.crypto_value == Decimal("50000")
        assert summary.total_value == Decimal("50000")
        assert summary.allocation.crypto == Decimal("100")
        assert summary.total_value_usd == Decimal("50000")
        assert summary.total_value_eur == Decimal("50000") / Decimal("1.10")

    def test_failed_stock_quote_is_flagged_not_dropped(self):
        inventory = inventory_of(stock_assets=[make_stock("ABC", 5), make_stock("XYZ", 3)])
        stock_quotes = {"ABC": make_quote("ABC", 10), "XYZ": None}

        summary = aggregate(inventory, {}, stock_quotes, make_fx_table("USD"), "USD")

        abc = holding(summary, "ABC")
        xyz = holding(summary, "XYZ")
        assert abc.priced is True
        assert abc.value == Decimal("50")
        assert xyz.priced is False
        assert xyz.value == 0
        assert xyz.price is None
        assert summary.stocks_value == Decimal("50")
        assert [h.identifier for h in summary.unpriced] == ["XYZ"]

    def test_quote_missing_from_mapping_entirely(self):
        inventory = inventory_of(crypto_assets=[make_crypto("obscure-coin", "OBS", 100)])

        summary = aggregate(inventory, {}, {}, make_fx_table("USD"), "USD")

        row = holding(summary, "obscure-coin")
        assert row.priced is False
        assert row.to_dict()["value"] == 0.0
        assert summary.total_value == 0

    def test_positions_are_summed(self):
        asset = make_crypto("ethereum", "ETH", "1.5")
        asset.positions.append(type(asset.positions[0])(id="p2", wallet_id="w2", quantity=Decimal("0.5")))
        inventory = inventory_of(crypto_assets=[asset])

        summary = aggregate(inventory, {"ethereum": make_quote("ethereum", 2000)}, {},
                            make_fx_table("USD"), "USD")

        assert summary.crypto_value == Decimal("4000")

    def test_stock_valued_in_quote_currency(self):
        # Stored currency says USD but the quote trades in EUR
        inventory = inventory_of(stock_assets=[make_stock("SAP.DE", 2, currency="USD")])
        fx = make_fx_table("USD", {"EUR": "1.10"})

        summary = aggregate(inventory, {}, {"SAP.DE": make_quote("SAP.DE", 100, currency="EUR")}, fx, "USD")

        row = holding(summary, "SAP.DE")
        assert row.currency == "EUR"
        assert row.native_value == Decimal("200")
        assert row.value == Decimal("220.00")

    def test_pence_listing_valued_in_pounds(self):
        inventory = inventory_of(primary="GBP", stock_assets=[make_stock("VOD.L", 10, currency="GBP")])
        quote = parse_chart_quote("VOD.L", {"regularMarketPrice": 7250, "chartPreviousClose": 7200,
                                            "currency": "GBp"})

        summary = aggregate(inventory, {}, {"VOD.L": quote}, make_fx_table("GBP"), "GBP")

        row = holding(summary, "VOD.L")
        assert row.currency == "GBP"
        assert row.converted is True
        assert row.value == Decimal("725")
        assert summary.stocks_value == Decimal("725")

    def test_missing_fx_rate_excludes_value(self):
        inventory = inventory_of(
            primary="EUR",
            bank_accounts=[make_bank_account("EUR", 1000), make_bank_account("CHF", 500)],
        )
        fx = make_fx_table("EUR", {"CHF": None, "USD": "0.9"})

        summary = aggregate(inventory, {}, {}, fx, "EUR")

        chf = holding(summary, "CHF")
        assert chf.converted is False
        assert chf.value == 0
        assert summary.total_value == Decimal("1000")
        assert summary.unconverted_currencies == ("CHF",)

    def test_fx_table_must_match_primary(self, empty_inventory):
        with pytest.raises(ValueError):
            aggregate(empty_inventory, {}, {}, make_fx_table("EUR"), "USD")


class TestCashAndStablecoins:

    def test_stablecoins_are_cash(self):
        inventory = inventory_of(
            crypto_assets=[make_crypto("bitcoin", "BTC", 1), make_crypto("usd-coin", "USDC", 1000)],
            bank_accounts=[make_bank_account("USD", 500)],
        )
        quotes = {"bitcoin": make_quote("bitcoin", 3500), "usd-coin": make_quote("usd-coin", 1)}

        summary = aggregate(inventory, quotes, {}, make_fx_table("USD"), "USD")

        assert summary.crypto_value == Decimal("3500")
        assert summary.stablecoin_value == Decimal("1000")
        assert summary.fiat_cash_value == Decimal("500")
        assert summary.cash_value == Decimal("1500")
        assert summary.total_value == Decimal("5000")
        assert summary.allocation.crypto == Decimal("70")
        assert summary.allocation.cash == Decimal("30")
        assert holding(summary, "usd-coin").is_stablecoin is True

    def test_subcategory_marks_stablecoin(self):
        inventory = inventory_of(crypto_assets=[make_crypto("new-stable", "NEWUSD", 10, subcategory="Stablecoin")])

        summary = aggregate(inventory, {"new-stable": make_quote("new-stable", 1)}, {},
                            make_fx_table("USD"), "USD")

        assert summary.stablecoin_value == Decimal("10")
        assert summary.crypto_value == 0

    def test_custom_predicate(self):
        inventory = inventory_of(crypto_assets=[make_crypto("usd-coin", "USDC", 10)])

        summary = aggregate(inventory, {"usd-coin": make_quote("usd-coin", 1)}, {},
                            make_fx_table("USD"), "USD",
                            stablecoin_predicate=lambda ticker, subcategory: False)

        assert summary.crypto_value == Decimal("10")
        assert summary.stablecoin_value == 0

    def test_deposits_are_fiat_cash(self):
        inventory = inventory_of(
            exchange_deposits=[ExchangeDeposit(id="d1", wallet_id="w1", currency="USD",
                                               amount=Decimal("100"), wallet_name="Kraken")],
            broker_deposits=[BrokerDeposit(id="d2", broker_id="b1", currency="USD",
                                           amount=Decimal("50"), broker_name="IBKR")],
        )

        summary = aggregate(inventory, {}, {}, make_fx_table("USD"), "USD")

        assert summary.fiat_cash_value == Decimal("150")
        assert {h.kind for h in summary.holdings} == {"exchange_deposit", "broker_deposit"}
        assert holding(summary, "USD").name in ("Kraken", "IBKR")


class TestLiveChange:

    def test_value_weighted_change(self):
        inventory = inventory_of(
            crypto_assets=[make_crypto("bitcoin", "BTC", 1)],
            stock_assets=[make_stock("AAPL", 10)],
        )
        quotes = {"bitcoin": make_quote("bitcoin", 100, 80)}   # +25%
        stocks = {"AAPL": make_quote("AAPL", 10, 10)}           # 0%

        summary = aggregate(inventory, quotes, stocks, make_fx_table("USD"), "USD")

        assert summary.change_24h.available is True
        assert summary.change_24h.percent == Decimal("12.5")
        assert summary.change_24h.value_change == Decimal("25")
        assert summary.crypto_value_change_24h == Decimal("25")
        assert summary.stocks_value_change_24h == 0

    def test_fx_move_applies_to_foreign_cash(self):
        inventory = inventory_of(primary="EUR", bank_accounts=[make_bank_account("USD", 1000)])
        fx = make_fx_table("EUR", {"USD": ("0.9", "-1")})

        summary = aggregate(inventory, {}, {}, fx, "EUR")

        assert summary.total_value == Decimal("900.0")
        assert summary.change_24h.percent == Decimal("-1")
        assert summary.fx_change_24h_percent == Decimal("-1")
        assert summary.cash_fx_value_change_24h == Decimal("-9")

    def test_eur_usd_pair_used_when_table_has_no_change(self):
        inventory = inventory_of(primary="EUR", crypto_assets=[make_crypto("bitcoin", "BTC", 1)])
        fx = make_fx_table("EUR", {"USD": "0.5"})

        summary = aggregate(inventory, {"bitcoin": make_quote("bitcoin", 100, 100)}, {}, fx, "EUR",
                            eur_usd_change_24h=Decimal("2"))

        # EUR up 2% against USD: a USD-priced asset loses 2% for a EUR user
        assert holding(summary, "bitcoin").change_24h == Decimal("-2")
        assert summary.change_24h.percent == Decimal("-2")

    def test_per_class_fx_figures(self):
        inventory = inventory_of(
            primary="EUR",
            crypto_assets=[
                make_crypto("bitcoin", "BTC", 1),
                make_crypto("usd-coin", "USDC", 100),
            ],
            stock_assets=[make_stock("SAP.DE", 1, currency="EUR")],
            bank_accounts=[make_bank_account("USD", 100)],
        )
        crypto_quotes = {
            "bitcoin": make_quote("bitcoin", 100, 100),
            "usd-coin": make_quote("usd-coin", 1, 1),
        }
        stock_quotes = {"SAP.DE": make_quote("SAP.DE", 50, 50, currency="EUR")}
        fx = make_fx_table("EUR", {"USD": ("0.9", "-1")})

        summary = aggregate(inventory, crypto_quotes, stock_quotes, fx, "EUR")

        assert summary.crypto_fx_value_change_24h == Decimal("-0.9")
        assert summary.crypto_fx_change_24h_percent == Decimal("-1")
        assert summary.stocks_fx_value_change_24h == 0
        assert summary.stocks_fx_change_24h_percent == 0
        assert summary.cash_value == Decimal("180")
        assert summary.cash_total_value_change_24h == Decimal("-1.8")
        assert summary.cash_total_fx_value_change_24h == Decimal("-1.8")
        assert summary.cash_total_fx_change_24h_percent == Decimal("-1")
        assert summary.total_value_change_24h == Decimal("-2.7")

        data = summary.to_dict(include_holdings=False)
        assert data["crypto_fx_change_24h_percent"] == -1.0
        assert data["cash_total_fx_value_change_24h"] == -1.8

    def test_per_class_fx_percent_is_zero_for_empty_classes(self):
        inventory = inventory_of(bank_accounts=[make_bank_account("USD", 100)])

        summary = aggregate(inventory, {}, {}, make_fx_table("USD"), "USD")

        assert summary.crypto_fx_change_24h_percent == 0
        assert summary.stocks_fx_change_24h_percent == 0
        assert summary.cash_total_fx_change_24h_percent == 0

    def test_to_dict_without_holdings(self):
        inventory = inventory_of(crypto_assets=[make_crypto("bitcoin", "BTC", 1)])
        summary = aggregate(inventory, {"bitcoin": make_quote("bitcoin", 1)}, {}, make_fx_table("USD"), "USD")

        assert "holdings" not in summary.to_dict(include_holdings=False)
        assert len(summary.to_dict()["holdings"]) == 1


class TestSnapshotTotals:

    def test_totals_need_both_reporting_currencies(self):
        inventory = inventory_of(bank_accounts=[make_bank_account("USD", 100)])

        with_eur = aggregate(inventory, {}, {}, make_fx_table("USD", {"EUR": "1.25"}), "USD")
        without_eur = aggregate(inventory, {}, {}, make_fx_table("USD", {"EUR": None}), "USD")

        totals = with_eur.snapshot_totals()
        assert totals.total_value_usd == Decimal("100")
        assert totals.total_value_eur == Decimal("80")
        assert totals.cash_value_usd == Decimal("100")
        assert without_eur.snapshot_totals() is None
