"""
Inventory provider interface and its Supabase implementation.

The valuation pipeline only reads inventory; it never writes asset records.
All reads are owner-scoped by an explicit user id, so the same provider
serves the owner dashboard, share-token views and the daily batch job (the
service-role client bypasses row-level security, hence the explicit
`user_id` filter on every query).
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from utils.portfolio.constants import DEFAULT_PRIMARY_CURRENCY
from utils.portfolio.models import (
    BankAccount,
    BrokerDeposit,
    CryptoAsset,
    CryptoPosition,
    ExchangeDeposit,
    Inventory,
    Profile,
    StockAsset,
    StockPosition,
)
from utils.prices.models import ZERO, to_decimal

logger = logging.getLogger(__name__)


class InventoryProviderError(Exception):
    """Raised when inventory cannot be read from storage."""

    def __init__(self, message: str, user_id: Optional[str] = None,
                 original_error: Optional[Exception] = None):
        self.message = message
        self.user_id = user_id
        self.original_error = original_error
        self.status_code = 503
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'error': True,
            'message': self.message,
            'timestamp': datetime.now().isoformat(),
        }


def _quantity(value: Any) -> Decimal:
    """Quantities and balances are non-negative; anything else reads as 0."""
    amount = to_decimal(value)
    return amount if amount > 0 else ZERO


class InventoryProvider(ABC):
    """Read-only, owner-scoped access to a user's assets."""

    @abstractmethod
    async def get_profile(self, user_id: str) -> Optional[Profile]:
        """Get the user's profile (primary currency); None if the user does not exist."""
        pass

    @abstractmethod
    async def list_crypto_assets_with_positions(self, user_id: str) -> List[CryptoAsset]:
        pass

    @abstractmethod
    async def list_stock_assets_with_positions(self, user_id: str) -> List[StockAsset]:
        pass

    @abstractmethod
    async def list_bank_accounts(self, user_id: str) -> List[BankAccount]:
        pass

    @abstractmethod
    async def list_exchange_deposits(self, user_id: str) -> List[ExchangeDeposit]:
        pass

    @abstractmethod
    async def list_broker_deposits(self, user_id: str) -> List[BrokerDeposit]:
        pass

    @abstractmethod
    async def list_active_user_ids(self) -> List[str]:
        """Ids of every active user, for batch jobs."""
        pass

    async def get_inventory(self, user_id: str) -> Optional[Inventory]:
        """
        Read everything the user owns concurrently.

        Returns:
            Inventory, or None if the user has no profile

        Raises:
            InventoryProviderError: If any read fails
        """
        profile, crypto, stocks, banks, exchange, broker = await asyncio.gather(
            self.get_profile(user_id),
            self.list_crypto_assets_with_positions(user_id),
            self.list_stock_assets_with_positions(user_id),
            self.list_bank_accounts(user_id),
            self.list_exchange_deposits(user_id),
            self.list_broker_deposits(user_id),
        )
        if profile is None:
            return None

        return Inventory(
            profile=profile,
            crypto_assets=crypto,
            stock_assets=stocks,
            bank_accounts=banks,
            exchange_deposits=exchange,
            broker_deposits=broker,
        )


class SupabaseInventoryProvider(InventoryProvider):
    """Inventory reads over the Supabase tables; soft-deleted rows are excluded."""

    def __init__(self, supabase_client=None):
        self._supabase = supabase_client

    @property
    def supabase(self):
        if self._supabase is None:
            from utils.supabase.db_client import get_supabase_client
            self._supabase = get_supabase_client()
        return self._supabase

    def _select_owned(self, table: str, columns: str, user_id: str) -> List[Dict[str, Any]]:
        try:
            result = self.supabase.table(table)\
                .select(columns)\
                .eq('user_id', user_id)\
                .is_('deleted_at', 'null')\
                .order('created_at')\
                .execute()
        except Exception as e:
            logger.error(f"Failed to read {table} for user {user_id}: {e}")
            raise InventoryProviderError(f"Failed to read {table}", user_id, e)
        return result.data or []

    def _select_children(self, table: str, parent_column: str, parent_ids: Iterable[str],
                         user_id: str) -> List[Dict[str, Any]]:
        ids = list(parent_ids)
        if not ids:
            return []
        try:
            result = self.supabase.table(table)\
                .select('*')\
                .in_(parent_column, ids)\
                .is_('deleted_at', 'null')\
                .execute()
        except Exception as e:
            logger.error(f"Failed to read {table} for user {user_id}: {e}")
            raise InventoryProviderError(f"Failed to read {table}", user_id, e)
        return result.data or []

    def _names_by_id(self, table: str, user_id: str) -> Dict[str, str]:
        return {row['id']: row.get('name') for row in self._select_owned(table, 'id, name', user_id)}

    async def get_profile(self, user_id: str) -> Optional[Profile]:
        try:
            result = self.supabase.table('profiles')\
                .select('id, primary_currency, display_name')\
                .eq('id', user_id)\
                .limit(1)\
                .execute()
        except Exception as e:
            logger.error(f"Failed to read profile for user {user_id}: {e}")
            raise InventoryProviderError("Failed to read profile", user_id, e)

        if not result.data:
            return None
        row = result.data[0]
        return Profile(
            user_id=row['id'],
            primary_currency=(row.get('primary_currency') or DEFAULT_PRIMARY_CURRENCY).upper(),
            display_name=row.get('display_name'),
        )

    async def list_crypto_assets_with_positions(self, user_id: str) -> List[CryptoAsset]:
        assets = self._select_owned('crypto_assets', '*', user_id)
        if not assets:
            return []

        positions = self._select_children('crypto_positions', 'crypto_asset_id',
                                          [a['id'] for a in assets], user_id)
        wallet_names = self._names_by_id('wallets', user_id) if positions else {}

        by_asset: Dict[str, List[CryptoPosition]] = {}
        for row in positions:
            by_asset.setdefault(row['crypto_asset_id'], []).append(CryptoPosition(
                id=row['id'],
                wallet_id=row.get('wallet_id'),
                quantity=_quantity(row.get('quantity')),
                wallet_name=wallet_names.get(row.get('wallet_id')),
                apy=to_decimal(row.get('apy')),
                acquisition_method=(row.get('acquisition_method') or 'bought').lower(),
            ))

        return [
            CryptoAsset(
                id=row['id'],
                ticker=(row.get('ticker') or '').upper(),
                name=row.get('name') or row.get('ticker') or '',
                coingecko_id=row.get('coingecko_id') or '',
                chain=row.get('chain') or '',
                subcategory=row.get('subcategory'),
                positions=by_asset.get(row['id'], []),
            )
            for row in assets
        ]

    async def list_stock_assets_with_positions(self, user_id: str) -> List[StockAsset]:
        assets = self._select_owned('stock_assets', '*', user_id)
        if not assets:
            return []

        positions = self._select_children('stock_positions', 'stock_asset_id',
                                          [a['id'] for a in assets], user_id)
        broker_names = self._names_by_id('brokers', user_id) if positions else {}

        by_asset: Dict[str, List[StockPosition]] = {}
        for row in positions:
            by_asset.setdefault(row['stock_asset_id'], []).append(StockPosition(
                id=row['id'],
                broker_id=row.get('broker_id'),
                quantity=_quantity(row.get('quantity')),
                broker_name=broker_names.get(row.get('broker_id')),
            ))

        return [
            StockAsset(
                id=row['id'],
                ticker=row.get('ticker') or '',
                name=row.get('name') or row.get('ticker') or '',
                yahoo_ticker=row.get('yahoo_ticker'),
                currency=(row.get('currency') or DEFAULT_PRIMARY_CURRENCY).upper(),
                category=row.get('category'),
                subcategory=row.get('subcategory'),
                tags=[t for t in (row.get('tags') or []) if t],
                positions=by_asset.get(row['id'], []),
            )
            for row in assets
        ]

    async def list_bank_accounts(self, user_id: str) -> List[BankAccount]:
        return [
            BankAccount(
                id=row['id'],
                name=row.get('name') or '',
                bank_name=row.get('bank_name') or '',
                currency=(row.get('currency') or DEFAULT_PRIMARY_CURRENCY).upper(),
                balance=_quantity(row.get('balance')),
                apy=to_decimal(row.get('apy')),
            )
            for row in self._select_owned('bank_accounts', '*', user_id)
        ]

    async def list_exchange_deposits(self, user_id: str) -> List[ExchangeDeposit]:
        return [
            ExchangeDeposit(
                id=row['id'],
                wallet_id=row.get('wallet_id'),
                currency=(row.get('currency') or DEFAULT_PRIMARY_CURRENCY).upper(),
                amount=_quantity(row.get('amount')),
                wallet_name=(row.get('wallets') or {}).get('name'),
                apy=to_decimal(row.get('apy')),
            )
            for row in self._select_owned('exchange_deposits', '*, wallets(name)', user_id)
        ]

    async def list_broker_deposits(self, user_id: str) -> List[BrokerDeposit]:
        return [
            BrokerDeposit(
                id=row['id'],
                broker_id=row.get('broker_id'),
                currency=(row.get('currency') or DEFAULT_PRIMARY_CURRENCY).upper(),
                amount=_quantity(row.get('amount')),
                broker_name=(row.get('brokers') or {}).get('name'),
                apy=to_decimal(row.get('apy')),
            )
            for row in self._select_owned('broker_deposits', '*, brokers(name)', user_id)
        ]

    async def list_active_user_ids(self) -> List[str]:
        try:
            result = self.supabase.table('profiles')\
                .select('id')\
                .eq('status', 'active')\
                .execute()
        except Exception as e:
            logger.error(f"Failed to list active profiles: {e}")
            raise InventoryProviderError("Failed to list active profiles", None, e)

        seen = set()
        user_ids = []
        for row in result.data or []:
            user_id = row.get('id')
            if user_id and user_id not in seen:
                seen.add(user_id)
                user_ids.append(user_id)
        return user_ids
