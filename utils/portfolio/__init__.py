"""
Portfolio valuation utilities: inventory models, the inventory provider
interface and the pure aggregation engine.
"""

from .aggregation import AssetValuation, PortfolioSummary, aggregate
from .change_calculations import ChangeMetric
from .inventory_provider import InventoryProvider, InventoryProviderError, SupabaseInventoryProvider
from .models import Inventory, Profile, Snapshot, SnapshotTotals

__all__ = [
    'AssetValuation',
    'ChangeMetric',
    'Inventory',
    'InventoryProvider',
    'InventoryProviderError',
    'PortfolioSummary',
    'Profile',
    'Snapshot',
    'SnapshotTotals',
    'SupabaseInventoryProvider',
    'aggregate',
]
