"""
Inventory Analytics
===================

Inventory analytics computation engine: statistical safety stock
recalibration, anomaly detection over transaction streams, stockout history
reconstruction, BCG product performance classification and baseline
inventory metrics.

Typical use:
    from inventory_analytics import HttpInventoryStore, fetch_snapshot
    from inventory_analytics.engines import get_critical_alerts

    async with HttpInventoryStore() as store:
        snapshot = await fetch_snapshot(store)
    report = get_critical_alerts(snapshot)
"""

from .config import DataStoreConfig, SafetyStockPolicy, resolve_policy
from .data_store import (
    HttpInventoryStore,
    InMemoryInventoryStore,
    InventoryDataStore,
    fetch_snapshot,
)
from .exceptions import InventoryAnalyticsError, PersistenceError, UpstreamUnavailableError
from .feature_flags import FeatureFlags
from .models import (
    InventoryBalance,
    InventorySnapshot,
    InventoryTransaction,
    Product,
    ProductCategory,
    PurchaseOrder,
    PurchaseOrderItem,
    Supplier,
    TransactionType,
    Warehouse,
)

__version__ = "1.0.0"

__all__ = [
    "DataStoreConfig",
    "SafetyStockPolicy",
    "resolve_policy",
    "HttpInventoryStore",
    "InMemoryInventoryStore",
    "InventoryDataStore",
    "fetch_snapshot",
    "InventoryAnalyticsError",
    "PersistenceError",
    "UpstreamUnavailableError",
    "FeatureFlags",
    "InventoryBalance",
    "InventorySnapshot",
    "InventoryTransaction",
    "Product",
    "ProductCategory",
    "PurchaseOrder",
    "PurchaseOrderItem",
    "Supplier",
    "TransactionType",
    "Warehouse",
]
