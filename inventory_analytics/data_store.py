"""
Inventory Analytics - Data Store Access
=======================================

Boundary to the remote inventory data store.

The engine only needs two things from it:
    - a bulk read of every collection, fetched concurrently and materialized
      into an InventorySnapshot before any computation starts
    - one write: patch the safety stock of a single balance

Implementations:
    HttpInventoryStore      REST client over httpx.AsyncClient
    InMemoryInventoryStore  Same interface over in-process records (offline
                            runs, fixtures, replaying exported data)

Failures:
    reads  -> UpstreamUnavailableError (fatal for the operation)
    writes -> PersistenceError (caller skips that candidate)
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from .config import DataStoreConfig
from .exceptions import InventoryAnalyticsError, PersistenceError, UpstreamUnavailableError
from .models import (
    InventoryBalance,
    InventorySnapshot,
    InventoryTransaction,
    Product,
    PurchaseOrder,
    PurchaseOrderItem,
    Supplier,
    Warehouse,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


# ═══════════════════════════════════════════════════════════════════════════════
# INTERFACE
# ═══════════════════════════════════════════════════════════════════════════════

class InventoryDataStore(Protocol):
    """Read/write interface the engines depend on."""

    async def get_inventory_balances(self) -> List[InventoryBalance]:
        ...

    async def get_inventory_transactions(self) -> List[InventoryTransaction]:
        ...

    async def get_products(self) -> List[Product]:
        ...

    async def get_warehouses(self) -> List[Warehouse]:
        ...

    async def get_purchase_orders(self) -> List[PurchaseOrder]:
        ...

    async def get_purchase_order_items(self) -> List[PurchaseOrderItem]:
        ...

    async def get_suppliers(self) -> List[Supplier]:
        ...

    async def update_safety_stock(
        self, warehouse_id: str, product_id: str, safety_stock: float
    ) -> Optional[InventoryBalance]:
        """Patch the safety stock of one balance and return the updated record."""
        ...


def parse_records(model: Type[ModelT], rows: Iterable[Any], resource: str) -> List[ModelT]:
    """Validate raw rows (dicts or model instances) into models."""
    try:
        return [row if isinstance(row, model) else model.model_validate(row) for row in rows]
    except ValidationError as exc:
        raise UpstreamUnavailableError(resource, "malformed payload", cause=exc) from exc


# ═══════════════════════════════════════════════════════════════════════════════
# HTTP STORE
# ═══════════════════════════════════════════════════════════════════════════════

class HttpInventoryStore:
    """
    REST client for the inventory data store.

    Endpoints:
        GET   /api/inventorybalance
        GET   /api/inventorytransaction
        GET   /api/products
        GET   /api/warehouses
        GET   /api/purchaseorder
        GET   /api/purchaseorderitem
        GET   /api/suppliers
        PATCH /api/inventorybalance/{warehouseId}/{productId}  {"safetyStock": n}

    Usage:
        async with HttpInventoryStore() as store:
            snapshot = await fetch_snapshot(store)
    """

    def __init__(
        self,
        config: Optional[DataStoreConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or DataStoreConfig.from_env()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=self.config.base_url,
            timeout=httpx.Timeout(self.config.timeout_seconds),
            headers={"Content-Type": "application/json"},
        )

    async def __aenter__(self) -> HttpInventoryStore:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _get_records(self, path: str, model: Type[ModelT], resource: str) -> List[ModelT]:
        try:
            response = await self._client.get(path)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error(f"Error fetching {resource}: {exc}")
            raise UpstreamUnavailableError(resource, cause=exc) from exc

        if not isinstance(payload, list):
            raise UpstreamUnavailableError(resource, "expected a JSON array")
        return parse_records(model, payload, resource)

    async def get_inventory_balances(self) -> List[InventoryBalance]:
        return await self._get_records("/api/inventorybalance", InventoryBalance, "inventory balances")

    async def get_inventory_transactions(self) -> List[InventoryTransaction]:
        return await self._get_records(
            "/api/inventorytransaction", InventoryTransaction, "inventory transactions"
        )

    async def get_products(self) -> List[Product]:
        return await self._get_records("/api/products", Product, "products")

    async def get_warehouses(self) -> List[Warehouse]:
        return await self._get_records("/api/warehouses", Warehouse, "warehouses")

    async def get_purchase_orders(self) -> List[PurchaseOrder]:
        return await self._get_records("/api/purchaseorder", PurchaseOrder, "purchase orders")

    async def get_purchase_order_items(self) -> List[PurchaseOrderItem]:
        return await self._get_records(
            "/api/purchaseorderitem", PurchaseOrderItem, "purchase order items"
        )

    async def get_suppliers(self) -> List[Supplier]:
        return await self._get_records("/api/suppliers", Supplier, "suppliers")

    async def update_safety_stock(
        self, warehouse_id: str, product_id: str, safety_stock: float
    ) -> Optional[InventoryBalance]:
        path = f"/api/inventorybalance/{warehouse_id}/{product_id}"
        try:
            response = await self._client.patch(path, json={"safetyStock": safety_stock})
            response.raise_for_status()
            payload = response.json() if response.content else None
        except (httpx.HTTPError, ValueError) as exc:
            raise PersistenceError(warehouse_id, product_id, str(exc)) from exc

        if isinstance(payload, dict):
            try:
                return InventoryBalance.model_validate(payload)
            except ValidationError:
                logger.debug(f"Update response for {product_id}@{warehouse_id} is not a balance record")
        return None


# ═══════════════════════════════════════════════════════════════════════════════
# IN-MEMORY STORE
# ═══════════════════════════════════════════════════════════════════════════════

class InMemoryInventoryStore:
    """
    Data store over in-process records.

    Accepts wire dicts (camelCase, numbers as text are fine) or model
    instances. Safety-stock writes update the stored balance, so a later
    fetch sees them.
    """

    def __init__(
        self,
        balances: Sequence[Any] = (),
        transactions: Sequence[Any] = (),
        products: Sequence[Any] = (),
        warehouses: Sequence[Any] = (),
        purchase_orders: Sequence[Any] = (),
        purchase_order_items: Sequence[Any] = (),
        suppliers: Sequence[Any] = (),
    ):
        self._balances: Dict[tuple, InventoryBalance] = {
            b.key: b for b in parse_records(InventoryBalance, balances, "inventory balances")
        }
        self._transactions = parse_records(InventoryTransaction, transactions, "inventory transactions")
        self._products = parse_records(Product, products, "products")
        self._warehouses = parse_records(Warehouse, warehouses, "warehouses")
        self._purchase_orders = parse_records(PurchaseOrder, purchase_orders, "purchase orders")
        self._purchase_order_items = parse_records(
            PurchaseOrderItem, purchase_order_items, "purchase order items"
        )
        self._suppliers = parse_records(Supplier, suppliers, "suppliers")
        self.write_log: List[Dict[str, Any]] = []

    async def get_inventory_balances(self) -> List[InventoryBalance]:
        return list(self._balances.values())

    async def get_inventory_transactions(self) -> List[InventoryTransaction]:
        return list(self._transactions)

    async def get_products(self) -> List[Product]:
        return list(self._products)

    async def get_warehouses(self) -> List[Warehouse]:
        return list(self._warehouses)

    async def get_purchase_orders(self) -> List[PurchaseOrder]:
        return list(self._purchase_orders)

    async def get_purchase_order_items(self) -> List[PurchaseOrderItem]:
        return list(self._purchase_order_items)

    async def get_suppliers(self) -> List[Supplier]:
        return list(self._suppliers)

    async def update_safety_stock(
        self, warehouse_id: str, product_id: str, safety_stock: float
    ) -> Optional[InventoryBalance]:
        key = (warehouse_id, product_id)
        balance = self._balances.get(key)
        if balance is None:
            raise PersistenceError(warehouse_id, product_id, "balance not found")

        updated = balance.model_copy(update={
            "safety_stock": float(safety_stock),
            "updated_at": datetime.now(timezone.utc),
        })
        self._balances[key] = updated
        self.write_log.append({
            "warehouseId": warehouse_id,
            "productId": product_id,
            "safetyStock": float(safety_stock),
        })
        return updated


# ═══════════════════════════════════════════════════════════════════════════════
# SNAPSHOT FETCH
# ═══════════════════════════════════════════════════════════════════════════════

async def fetch_snapshot(store: InventoryDataStore) -> InventorySnapshot:
    """
    Fan out every bulk read concurrently, then fan in into one snapshot.

    Any failed read fails the whole fetch; no partial snapshot is returned.

    Raises:
        UpstreamUnavailableError
    """
    try:
        (
            balances,
            transactions,
            products,
            warehouses,
            purchase_orders,
            purchase_order_items,
            suppliers,
        ) = await asyncio.gather(
            store.get_inventory_balances(),
            store.get_inventory_transactions(),
            store.get_products(),
            store.get_warehouses(),
            store.get_purchase_orders(),
            store.get_purchase_order_items(),
            store.get_suppliers(),
        )
    except InventoryAnalyticsError:
        raise
    except Exception as exc:
        logger.exception("Snapshot fetch failed")
        raise UpstreamUnavailableError("inventory snapshot", cause=exc) from exc

    snapshot = InventorySnapshot(
        balances=balances,
        transactions=transactions,
        products=products,
        warehouses=warehouses,
        purchase_orders=purchase_orders,
        purchase_order_items=purchase_order_items,
        suppliers=suppliers,
    )
    logger.info(
        f"Snapshot fetched: {len(balances)} balances, {len(transactions)} transactions, "
        f"{len(products)} products, {len(warehouses)} warehouses"
    )
    return snapshot
