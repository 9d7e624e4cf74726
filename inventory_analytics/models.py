"""
Inventory Analytics - Data Model
================================

Pydantic records for everything read from the inventory data store, plus the
InventorySnapshot container the engines compute over.

The data store speaks camelCase JSON and frequently sends numbers as text.
Every numeric field is coerced on the way in: numeric strings are parsed,
anything non-numeric, NaN or infinite becomes 0.

Threshold polarity (applies to every engine):
    safety_stock   critical floor; on-hand below it is a critical condition
    reorder_point  replenishment target, sits above the safety stock
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Optional, Tuple

import pandas as pd
from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator


# ═══════════════════════════════════════════════════════════════════════════════
# ENUMS
# ═══════════════════════════════════════════════════════════════════════════════

class TransactionType(str, Enum):
    """Inventory movement direction."""
    ISSUE = "ISSUE"
    RECEIPT = "RECEIPT"


class ProductCategory(str, Enum):
    """Product categories known to the data store."""
    RAW_MATERIAL = "Raw Material"
    ADDITIVE = "Additive"
    PACKAGING = "Packaging"
    FINISHED_GOODS = "Finished Goods"


# ═══════════════════════════════════════════════════════════════════════════════
# COERCION HELPERS
# ═══════════════════════════════════════════════════════════════════════════════

def coerce_number(value: Any) -> float:
    """Parse a wire number; non-numeric, NaN and infinite values become 0."""
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def utc_timestamp(value: Any = None) -> pd.Timestamp:
    """Aware UTC pandas Timestamp for `value` (default: now). Naive input is UTC."""
    stamp = pd.Timestamp.now(tz="UTC") if value is None else pd.Timestamp(value)
    if stamp.tzinfo is None:
        return stamp.tz_localize("UTC")
    return stamp.tz_convert("UTC")


def coerce_datetime(value: Any) -> Optional[datetime]:
    """Parse a wire timestamp into an aware UTC datetime (naive = UTC)."""
    if value is None or value == "":
        return None
    parsed = pd.to_datetime(value, errors="coerce", utc=True)
    if pd.isna(parsed):
        return None
    return parsed.to_pydatetime()


WireNumber = Annotated[float, BeforeValidator(coerce_number)]
WireTimestamp = Annotated[Optional[datetime], BeforeValidator(coerce_datetime)]
RequiredTimestamp = Annotated[datetime, BeforeValidator(coerce_datetime)]


class WireModel(BaseModel):
    """Base for data store records: camelCase aliases, unknown keys ignored."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)


# ═══════════════════════════════════════════════════════════════════════════════
# DATA STORE RECORDS
# ═══════════════════════════════════════════════════════════════════════════════

class InventoryBalance(WireModel):
    """On-hand position for one (warehouse, product) key."""
    warehouse_id: str = Field(alias="warehouseId")
    product_id: str = Field(alias="productId")
    qty_on_hand: WireNumber = Field(default=0.0, alias="qtyOnHand")
    qty_reserved: WireNumber = Field(default=0.0, alias="qtyReserved")
    safety_stock: WireNumber = Field(default=0.0, alias="safetyStock")
    reorder_point: WireNumber = Field(default=0.0, alias="reorderPoint")
    updated_at: WireTimestamp = Field(default=None, alias="updatedAt")

    @property
    def key(self) -> Tuple[str, str]:
        return (self.warehouse_id, self.product_id)


class InventoryTransaction(WireModel):
    """Immutable ledger movement. signed_qty is the effect on the balance."""
    trx_id: str = Field(alias="trxId")
    trx_date: RequiredTimestamp = Field(alias="trxDate")
    warehouse_id: str = Field(alias="warehouseId")
    product_id: str = Field(alias="productId")
    trx_type: TransactionType = Field(alias="trxType")
    qty: WireNumber = 0.0
    signed_qty: WireNumber = Field(default=0.0, alias="signedQty")
    ref_type: str = Field(default="", alias="refType")
    ref_id: str = Field(default="", alias="refId")
    note: Optional[str] = None
    created_at: WireTimestamp = Field(default=None, alias="createdAt")

    @field_validator("ref_type", "ref_id", mode="before")
    @classmethod
    def empty_when_missing(cls, value: Any) -> str:
        return "" if value is None else str(value)


class Product(WireModel):
    product_id: str = Field(alias="productId")
    sku: str = ""
    name: str = ""
    category: ProductCategory
    uom: Optional[str] = None
    is_active: bool = Field(default=True, alias="isActive")
    created_at: WireTimestamp = Field(default=None, alias="createdAt")


class Warehouse(WireModel):
    warehouse_id: str = Field(alias="warehouseId")
    name: str = ""
    location: Optional[str] = None
    is_active: bool = Field(default=True, alias="isActive")
    created_at: WireTimestamp = Field(default=None, alias="createdAt")


class Supplier(WireModel):
    supplier_id: str = Field(alias="supplierId")
    name: str = ""
    phone: Optional[str] = None
    address: Optional[str] = None
    terms_days: WireNumber = Field(default=0.0, alias="termsDays")
    is_active: bool = Field(default=True, alias="isActive")
    created_at: WireTimestamp = Field(default=None, alias="createdAt")


class PurchaseOrder(WireModel):
    po_id: str = Field(alias="poId")
    supplier_id: str = Field(alias="supplierId")
    po_date: WireTimestamp = Field(default=None, alias="poDate")
    expected_date: WireTimestamp = Field(default=None, alias="expectedDate")
    status: str = ""
    currency: str = ""
    notes: Optional[str] = None
    created_at: WireTimestamp = Field(default=None, alias="createdAt")
    updated_at: WireTimestamp = Field(default=None, alias="updatedAt")

    @property
    def is_open(self) -> bool:
        return self.status.lower() not in ("completed", "cancelled")


class PurchaseOrderItem(WireModel):
    po_item_id: str = Field(default="", alias="poItemId")
    po_id: str = Field(default="", alias="poId")
    product_id: str = Field(alias="productId")
    qty_ordered: WireNumber = Field(default=0.0, alias="qtyOrdered")
    unit_cost: WireNumber = Field(default=0.0, alias="unitCost")
    qty_received: WireNumber = Field(default=0.0, alias="qtyReceived")
    created_at: WireTimestamp = Field(default=None, alias="createdAt")


# ═══════════════════════════════════════════════════════════════════════════════
# SNAPSHOT
# ═══════════════════════════════════════════════════════════════════════════════

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

TRANSACTION_COLUMNS = [
    "trx_id", "trx_date", "day", "warehouse_id", "product_id",
    "trx_type", "qty", "signed_qty", "ref_type", "ref_id",
]


@dataclass(frozen=True)
class InventorySnapshot:
    """
    One fully materialized bulk read of the data store.

    Every engine computes over a snapshot; none of them mutates it.
    """
    balances: List[InventoryBalance] = field(default_factory=list)
    transactions: List[InventoryTransaction] = field(default_factory=list)
    products: List[Product] = field(default_factory=list)
    warehouses: List[Warehouse] = field(default_factory=list)
    purchase_orders: List[PurchaseOrder] = field(default_factory=list)
    purchase_order_items: List[PurchaseOrderItem] = field(default_factory=list)
    suppliers: List[Supplier] = field(default_factory=list)
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def product_map(self) -> Dict[str, Product]:
        return {p.product_id: p for p in self.products}

    def warehouse_map(self) -> Dict[str, Warehouse]:
        return {w.warehouse_id: w for w in self.warehouses}

    def supplier_map(self) -> Dict[str, Supplier]:
        return {s.supplier_id: s for s in self.suppliers}

    def balance_map(self) -> Dict[Tuple[str, str], InventoryBalance]:
        """Balances keyed by (warehouse_id, product_id); last one wins on duplicates."""
        return {b.key: b for b in self.balances}

    def balances_for_warehouse(self, warehouse_id: str) -> List[InventoryBalance]:
        return [b for b in self.balances if b.warehouse_id == warehouse_id]

    def latest_unit_costs(self) -> Dict[str, float]:
        """Unit cost of the most recently created PO item per product."""
        ordered = sorted(
            self.purchase_order_items,
            key=lambda item: item.created_at or _EPOCH,
            reverse=True,
        )
        costs: Dict[str, float] = {}
        for item in ordered:
            costs.setdefault(item.product_id, item.unit_cost)
        return costs

    def transactions_frame(self) -> pd.DataFrame:
        """Transactions as a DataFrame with a normalized UTC `day` column."""
        if not self.transactions:
            return pd.DataFrame(columns=TRANSACTION_COLUMNS)
        df = pd.DataFrame([
            {
                "trx_id": t.trx_id,
                "trx_date": t.trx_date,
                "warehouse_id": t.warehouse_id,
                "product_id": t.product_id,
                "trx_type": t.trx_type.value,
                "qty": t.qty,
                "signed_qty": t.signed_qty,
                "ref_type": t.ref_type,
                "ref_id": t.ref_id,
            }
            for t in self.transactions
        ])
        df["trx_date"] = pd.to_datetime(df["trx_date"], utc=True).astype("datetime64[ns, UTC]")
        df["day"] = df["trx_date"].dt.normalize()
        return df[TRANSACTION_COLUMNS]
