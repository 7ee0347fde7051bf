"""
Pytest configuration for the networth backend tests

Puts the project root on sys.path so tests import `utils`, `services` and
`routes` the same way the API server does, and provides shared fixtures for
inventories, quotes and FX tables.
"""

import sys
from decimal import Decimal
from pathlib import Path
from unittest.mock import MagicMock

import pytest

# Add the project root to Python path for imports
project_dir = Path(__file__).parent.parent
if str(project_dir) not in sys.path:
    sys.path.insert(0, str(project_dir))

from utils.portfolio.models import (  # noqa: E402
    BankAccount,
    CryptoAsset,
    CryptoPosition,
    Inventory,
    Profile,
    StockAsset,
    StockPosition,
)
from utils.prices.models import FxRate, FxRateTable, Quote  # noqa: E402
from utils.settings import reset_settings  # noqa: E402


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch):
    """Known secrets and no Redis for every test."""
    monkeypatch.setenv("BACKEND_API_KEY", "test-api-key")
    monkeypatch.setenv("SUPABASE_JWT_SECRET", "test-jwt-secret-with-enough-length-1234")
    monkeypatch.setenv("CRON_SECRET", "test-cron-secret")
    monkeypatch.setenv("REDIS_URL", "")
    monkeypatch.setenv("SNAPSHOT_TIMEZONE", "UTC")
    reset_settings()
    yield
    reset_settings()


def make_crypto(coingecko_id, ticker, quantity, subcategory=None, asset_id=None):
    asset_id = asset_id or f"crypto-{coingecko_id}"
    return CryptoAsset(
        id=asset_id,
        ticker=ticker,
        name=ticker,
        coingecko_id=coingecko_id,
        subcategory=subcategory,
        positions=[CryptoPosition(id=f"{asset_id}-pos", wallet_id="wallet-1", quantity=Decimal(str(quantity)))],
    )


def make_stock(ticker, quantity, currency="USD", asset_id=None):
    asset_id = asset_id or f"stock-{ticker}"
    return StockAsset(
        id=asset_id,
        ticker=ticker,
        name=ticker,
        currency=currency,
        positions=[StockPosition(id=f"{asset_id}-pos", broker_id="broker-1", quantity=Decimal(str(quantity)))],
    )


def make_bank_account(currency, balance, account_id=None):
    return BankAccount(
        id=account_id or f"bank-{currency}",
        name=f"{currency} checking",
        bank_name="Test Bank",
        currency=currency,
        balance=Decimal(str(balance)),
    )


def make_quote(identifier, price, previous_close=None, currency="USD"):
    return Quote.build(identifier, price, previous_close, currency=currency)


def make_fx_table(primary, rates=None):
    """rates: currency -> rate or (rate, change_24h)."""
    table = {}
    for currency, value in (rates or {}).items():
        if value is None:
            table[currency] = None
            continue
        rate, change = value if isinstance(value, tuple) else (value, None)
        table[currency] = FxRate(
            currency=currency,
            rate=Decimal(str(rate)),
            change_24h=Decimal(str(change)) if change is not None else None,
        )
    return FxRateTable(primary_currency=primary, rates=table)


@pytest.fixture
def usd_profile():
    return Profile(user_id="user-123", primary_currency="USD")


@pytest.fixture
def eur_profile():
    return Profile(user_id="user-456", primary_currency="EUR")


@pytest.fixture
def empty_inventory(usd_profile):
    return Inventory(profile=usd_profile)


@pytest.fixture
def mock_supabase():
    """MagicMock Supabase client; configure `table(...)` chains per test."""
    return MagicMock()
