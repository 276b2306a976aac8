"""
Event, snapshot and catalog stores
"""
from .catalog import CatalogReader
from .event_store import (
    CoViewedProduct,
    EventStore,
    FrequentlyBoughtProduct,
    ProductSalesCount,
    ProductViewCount,
)
from .snapshot_store import SnapshotStore

__all__ = [
    "CatalogReader",
    "CoViewedProduct",
    "EventStore",
    "FrequentlyBoughtProduct",
    "ProductSalesCount",
    "ProductViewCount",
    "SnapshotStore",
]
