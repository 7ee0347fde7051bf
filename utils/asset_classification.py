"""
Asset Classification Utilities

Classifies crypto assets for portfolio allocation. The valuation engine needs
one decision per crypto asset: is it a stablecoin (reported with cash) or a
regular crypto holding. The rule is a pluggable predicate; `is_stablecoin` is
the default used everywhere unless a caller passes its own.

Also maps CoinGecko coin metadata (platform id, categories) to the chain and
subcategory labels stored on crypto assets.
"""

import logging
import re
from typing import Callable, Dict, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)


STABLECOIN_SUBCATEGORY = "stablecoin"

# Default stablecoin set, matched on the asset ticker (case-insensitive).
# Fiat-backed and crypto-collateralized coins pegged to USD or EUR.
STABLECOIN_TICKERS = frozenset({
    # USD pegged
    'USDT', 'USDC', 'DAI', 'BUSD', 'TUSD', 'USDP', 'GUSD', 'FDUSD',
    'PYUSD', 'USDE', 'FRAX', 'LUSD', 'USDS', 'USDD', 'CRVUSD', 'GHO',
    # EUR pegged
    'EURC', 'EURT', 'EURS',
})

# CoinGecko categories to subcategory labels. First match wins, so more
# specific patterns come first.
CATEGORY_TO_SUBCATEGORY: List[Tuple[re.Pattern, str]] = [
    (re.compile(r"stablecoin", re.I), "Stablecoin"),
    (re.compile(r"layer 1", re.I), "L1"),
    (re.compile(r"layer 2", re.I), "L2"),
    (re.compile(r"decentralized finance|defi", re.I), "DeFi"),
    (re.compile(r"meme", re.I), "Meme"),
    (re.compile(r"gaming|play.to.earn", re.I), "Gaming"),
    (re.compile(r"nft|non.fungible", re.I), "NFT"),
    (re.compile(r"real world asset|rwa", re.I), "RWA"),
    (re.compile(r"oracle", re.I), "Oracle"),
    (re.compile(r"exchange.based|exchange token", re.I), "Exchange Token"),
    (re.compile(r"privacy", re.I), "Privacy"),
    (re.compile(r"artificial intelligence|ai ", re.I), "AI"),
    (re.compile(r"liquid staking", re.I), "Liquid Staking"),
    (re.compile(r"governance", re.I), "Governance"),
]

# CoinGecko asset_platform_id -> chain display name
PLATFORM_TO_CHAIN: Dict[str, str] = {
    "ethereum": "Ethereum",
    "binance-smart-chain": "BNB Chain",
    "polygon-pos": "Polygon",
    "arbitrum-one": "Arbitrum",
    "optimistic-ethereum": "Optimism",
    "avalanche": "Avalanche",
    "solana": "Solana",
    "base": "Base",
    "fantom": "Fantom",
    "cronos": "Cronos",
    "near": "NEAR",
    "stacks-mainnet": "Stacks",
    "tron": "Tron",
    "stellar": "Stellar",
    "cosmos": "Cosmos",
    "polkadot": "Polkadot",
    "cardano": "Cardano",
    "algorand": "Algorand",
    "sui": "Sui",
    "aptos": "Aptos",
    "celo": "Celo",
    "mantle": "Mantle",
    "blast": "Blast",
    "linea": "Linea",
    "zksync-era": "zkSync",
    "scroll": "Scroll",
}

# Native L1 coins (no asset_platform_id) -> chain display name
NATIVE_CHAIN_MAP: Dict[str, str] = {
    "bitcoin": "Bitcoin",
    "ethereum": "Ethereum",
    "solana": "Solana",
    "cardano": "Cardano",
    "polkadot": "Polkadot",
    "avalanche": "Avalanche",
    "near": "NEAR",
    "cosmos": "Cosmos",
    "algorand": "Algorand",
    "fantom": "Fantom",
    "sui": "Sui",
    "aptos": "Aptos",
    "tron": "Tron",
    "stellar": "Stellar",
}


StablecoinPredicate = Callable[[Optional[str], Optional[str]], bool]


def is_stablecoin(ticker: Optional[str], subcategory: Optional[str] = None) -> bool:
    """
    Default stablecoin rule.

    An asset is a stablecoin when its stored subcategory is "Stablecoin"
    (set from CoinGecko categories when the asset was added) or when its
    ticker is in STABLECOIN_TICKERS.

    Args:
        ticker: Asset ticker (e.g. 'USDC')
        subcategory: Stored subcategory label, if any

    Returns:
        True if the asset should be reported as a stablecoin
    """
    if subcategory and subcategory.strip().lower() == STABLECOIN_SUBCATEGORY:
        return True
    if ticker and ticker.strip().upper() in STABLECOIN_TICKERS:
        return True
    return False


PEG_CURRENCIES = ('EUR', 'GBP', 'CHF')


def infer_peg_currency(ticker: Optional[str], name: Optional[str] = None) -> str:
    """Fiat currency a stablecoin tracks, read from its ticker or name (USD unless stated)."""
    text = f"{ticker or ''} {name or ''}".upper()
    for currency in PEG_CURRENCIES:
        if currency in text:
            return currency
    return 'USD'


def infer_subcategory(categories: Iterable[str]) -> str:
    """Derive a subcategory label from a CoinGecko categories list ('' if none match)."""
    for category in categories or []:
        if not category:
            continue
        for pattern, label in CATEGORY_TO_SUBCATEGORY:
            if pattern.search(category):
                return label
    return ""


def infer_chain(coin_id: str, asset_platform_id: Optional[str], name: Optional[str] = None) -> str:
    """
    Derive a chain name for a coin.

    Tokens use their platform (mapped to a display name when known). Native
    coins use the curated name, falling back to the coin's display name.
    """
    if asset_platform_id:
        return PLATFORM_TO_CHAIN.get(asset_platform_id, asset_platform_id)
    return NATIVE_CHAIN_MAP.get(coin_id) or name or ""


def get_available_chains(coin_id: str, platforms: Dict[str, str], name: Optional[str] = None) -> List[str]:
    """List the chains a coin is available on, sorted, without duplicates."""
    platform_keys = [key for key in (platforms or {}) if key and key.strip()]
    if not platform_keys:
        native = NATIVE_CHAIN_MAP.get(coin_id) or name
        return [native] if native else []

    chains = {PLATFORM_TO_CHAIN.get(key, key) for key in platform_keys}
    return sorted(chains)
