"""
Shared constants for portfolio-related services.

This module centralizes constants used by the aggregation engine, the
snapshot store and the dashboard routes so period labels and defaults stay
consistent.
"""

DEFAULT_PRIMARY_CURRENCY = "USD"

# Period label -> days back. 24h is always computed live from quotes,
# never from a stored snapshot.
LIVE_PERIOD = "24h"
SNAPSHOT_PERIODS = {
    "7d": 7,
    "30d": 30,
    "1y": 365,
}

DEFAULT_HISTORY_DAYS = 365
MAX_HISTORY_DAYS = 3650

# Row kinds reported in PortfolioSummary.holdings
HOLDING_KIND_CRYPTO = "crypto"
HOLDING_KIND_STOCK = "stock"
HOLDING_KIND_BANK_ACCOUNT = "bank_account"
HOLDING_KIND_EXCHANGE_DEPOSIT = "exchange_deposit"
HOLDING_KIND_BROKER_DEPOSIT = "broker_deposit"
