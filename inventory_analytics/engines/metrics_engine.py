"""
Inventory Analytics - Metrics Aggregator
========================================

Baseline valuation and aggregation over a snapshot: inventory value, category
split, movement trend, top products, warehouse distribution, stock health,
reorder recommendations, slow movers, supplier performance and the dashboard
headline figures.

Valuation uses the latest unit cost per product (most recently created PO
item); products without PO history are valued at 0.
"""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

import pandas as pd

from ..models import InventorySnapshot, TransactionType, utc_timestamp

logger = logging.getLogger(__name__)

NEVER_ISSUED_DAYS = 999
UNKNOWN = "Unknown"


def _percentage(part: float, total: float) -> float:
    return part / total * 100.0 if total > 0 else 0.0


def _camel(record: Any) -> Dict[str, Any]:
    """asdict() with snake_case keys turned into camelCase."""
    result = {}
    for key, value in asdict(record).items():
        head, *rest = key.split("_")
        result[head + "".join(part.title() for part in rest)] = value
    return result


# ═══════════════════════════════════════════════════════════════════════════════
# VALUATION
# ═══════════════════════════════════════════════════════════════════════════════

def total_inventory_value(snapshot: InventorySnapshot) -> float:
    costs = snapshot.latest_unit_costs()
    return float(sum(b.qty_on_hand * costs.get(b.product_id, 0.0) for b in snapshot.balances))


def inventory_value_by_category(snapshot: InventorySnapshot) -> List[Dict[str, Any]]:
    """Value per product category with its share of the total (balances of unknown products skipped)."""
    costs = snapshot.latest_unit_costs()
    products = snapshot.product_map()

    values: Dict[str, float] = {}
    for balance in snapshot.balances:
        product = products.get(balance.product_id)
        if product is None:
            continue
        category = product.category.value
        values[category] = values.get(category, 0.0) + balance.qty_on_hand * costs.get(balance.product_id, 0.0)

    total = sum(values.values())
    return [
        {"category": category, "value": value, "percentage": _percentage(value, total)}
        for category, value in values.items()
    ]


def top_products_by_value(snapshot: InventorySnapshot, limit: int = 10) -> List[Dict[str, Any]]:
    costs = snapshot.latest_unit_costs()
    products = snapshot.product_map()
    rows = []
    for balance in snapshot.balances:
        product = products.get(balance.product_id)
        rows.append({
            "productId": balance.product_id,
            "productName": product.name if product else UNKNOWN,
            "sku": product.sku if product else "",
            "warehouseId": balance.warehouse_id,
            "value": balance.qty_on_hand * costs.get(balance.product_id, 0.0),
            "qty": balance.qty_on_hand,
        })
    rows.sort(key=lambda r: r["value"], reverse=True)
    return rows[:limit]


# ═══════════════════════════════════════════════════════════════════════════════
# MOVEMENT / DISTRIBUTION
# ═══════════════════════════════════════════════════════════════════════════════

def stock_movement_trend(snapshot: InventorySnapshot, days: int = 30, as_of: Any = None) -> List[Dict[str, Any]]:
    """Receipts, issues and net movement per calendar day (UTC), oldest first."""
    df = snapshot.transactions_frame()
    if df.empty:
        return []
    as_of = utc_timestamp(as_of)
    window = df[(df["trx_date"] >= as_of - pd.Timedelta(days=days)) & (df["trx_date"] <= as_of)]
    if window.empty:
        return []

    daily = window.pivot_table(
        index="day", columns="trx_type", values="qty", aggfunc="sum", fill_value=0.0
    )
    trend = []
    for day, row in daily.sort_index().iterrows():
        receipt = float(row.get(TransactionType.RECEIPT.value, 0.0))
        issue = float(row.get(TransactionType.ISSUE.value, 0.0))
        trend.append({
            "date": day.strftime("%Y-%m-%d"),
            "receipt": receipt,
            "issue": issue,
            "net": receipt - issue,
        })
    return trend


def warehouse_distribution(snapshot: InventorySnapshot) -> List[Dict[str, Any]]:
    """On-hand quantity per warehouse name, split by product category."""
    products = snapshot.product_map()
    warehouses = snapshot.warehouse_map()

    distribution: Dict[str, Dict[str, float]] = {}
    for balance in snapshot.balances:
        product = products.get(balance.product_id)
        if product is None:
            continue
        warehouse = warehouses.get(balance.warehouse_id)
        name = warehouse.name if warehouse else UNKNOWN
        categories = distribution.setdefault(name, {})
        category = product.category.value
        categories[category] = categories.get(category, 0.0) + balance.qty_on_hand

    return [{"warehouseName": name, **categories} for name, categories in distribution.items()]


# ═══════════════════════════════════════════════════════════════════════════════
# STOCK HEALTH / REORDER
# ═══════════════════════════════════════════════════════════════════════════════

def stock_health_status(snapshot: InventorySnapshot) -> List[Dict[str, Any]]:
    """Critical below safety stock, Warning below reorder point, OK otherwise."""
    critical = warning = ok = 0
    for balance in snapshot.balances:
        if balance.qty_on_hand < balance.safety_stock:
            critical += 1
        elif balance.qty_on_hand < balance.reorder_point:
            warning += 1
        else:
            ok += 1

    total = len(snapshot.balances)
    return [
        {"status": "Critical", "count": critical, "percentage": _percentage(critical, total)},
        {"status": "Warning", "count": warning, "percentage": _percentage(warning, total)},
        {"status": "OK", "count": ok, "percentage": _percentage(ok, total)},
    ]


URGENCY_ORDER = {"High": 0, "Medium": 1, "Low": 2}


@dataclass
class ReorderRecommendation:
    product_id: str
    product_name: str
    warehouse_id: str
    warehouse_name: str
    current_qty: float
    safety_stock: float
    reorder_point: float
    recommended_qty: float
    urgency: str

    def to_dict(self) -> Dict[str, Any]:
        return _camel(self)


def reorder_recommendations(snapshot: InventorySnapshot) -> List[ReorderRecommendation]:
    """
    Balances below their reorder point.

    recommended_qty = max(reorder_point - qty, reorder_point)
    urgency: High below safety stock, Medium below 70% of reorder point, else Low
    """
    products = snapshot.product_map()
    warehouses = snapshot.warehouse_map()

    recommendations = []
    for balance in snapshot.balances:
        if balance.qty_on_hand >= balance.reorder_point:
            continue
        if balance.qty_on_hand < balance.safety_stock:
            urgency = "High"
        elif balance.qty_on_hand < balance.reorder_point * 0.7:
            urgency = "Medium"
        else:
            urgency = "Low"

        product = products.get(balance.product_id)
        warehouse = warehouses.get(balance.warehouse_id)
        recommendations.append(ReorderRecommendation(
            product_id=balance.product_id,
            product_name=product.name if product else UNKNOWN,
            warehouse_id=balance.warehouse_id,
            warehouse_name=warehouse.name if warehouse else UNKNOWN,
            current_qty=balance.qty_on_hand,
            safety_stock=balance.safety_stock,
            reorder_point=balance.reorder_point,
            recommended_qty=max(balance.reorder_point - balance.qty_on_hand, balance.reorder_point),
            urgency=urgency,
        ))

    recommendations.sort(key=lambda r: URGENCY_ORDER[r.urgency])
    return recommendations


# ═══════════════════════════════════════════════════════════════════════════════
# SLOW MOVERS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class SlowMovingItem:
    product_id: str
    product_name: str
    warehouse_id: str
    warehouse_name: str
    qty_on_hand: float
    last_issue_date: Optional[str]
    days_since_last_issue: int
    value: float

    def to_dict(self) -> Dict[str, Any]:
        return _camel(self)


def slow_moving_items(snapshot: InventorySnapshot, days: int = 90, as_of: Any = None) -> List[SlowMovingItem]:
    """Non-empty balances with no ISSUE in the last `days` (999 days when never issued)."""
    as_of = utc_timestamp(as_of)
    df = snapshot.transactions_frame()
    last_issue: Dict[tuple, pd.Timestamp] = {}
    if not df.empty:
        issues = df[df["trx_type"] == TransactionType.ISSUE.value]
        last_issue = issues.groupby(["warehouse_id", "product_id"])["trx_date"].max().to_dict()

    costs = snapshot.latest_unit_costs()
    products = snapshot.product_map()
    warehouses = snapshot.warehouse_map()

    items = []
    for balance in snapshot.balances:
        if balance.qty_on_hand == 0:
            continue
        last = last_issue.get(balance.key)
        if last is None:
            days_since = NEVER_ISSUED_DAYS
        else:
            days_since = int(math.floor((as_of - last) / pd.Timedelta(days=1)))
        if days_since < days:
            continue

        product = products.get(balance.product_id)
        warehouse = warehouses.get(balance.warehouse_id)
        items.append(SlowMovingItem(
            product_id=balance.product_id,
            product_name=product.name if product else UNKNOWN,
            warehouse_id=balance.warehouse_id,
            warehouse_name=warehouse.name if warehouse else UNKNOWN,
            qty_on_hand=balance.qty_on_hand,
            last_issue_date=last.isoformat() if last is not None else None,
            days_since_last_issue=days_since,
            value=balance.qty_on_hand * costs.get(balance.product_id, 0.0),
        ))
    return items


# ═══════════════════════════════════════════════════════════════════════════════
# PURCHASING
# ═══════════════════════════════════════════════════════════════════════════════

def _order_values(snapshot: InventorySnapshot) -> Dict[str, float]:
    values: Dict[str, float] = {}
    for item in snapshot.purchase_order_items:
        values[item.po_id] = values.get(item.po_id, 0.0) + item.qty_ordered * item.unit_cost
    return values


def pending_purchase_order_value(snapshot: InventorySnapshot) -> float:
    values = _order_values(snapshot)
    return float(sum(values.get(po.po_id, 0.0) for po in snapshot.purchase_orders if po.is_open))


@dataclass
class SupplierPerformance:
    supplier_id: str
    supplier_name: str
    total_orders: int = 0
    on_time_deliveries: int = 0
    late_deliveries: int = 0
    average_delay_days: float = 0.0
    total_value: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return _camel(self)


def supplier_performance(snapshot: InventorySnapshot) -> List[SupplierPerformance]:
    """
    Delivery performance per supplier.

    A completed order is late when it was last updated at least one full day
    after its expected date.
    """
    suppliers = snapshot.supplier_map()
    values = _order_values(snapshot)
    performance: Dict[str, SupplierPerformance] = {}
    total_delay: Dict[str, float] = {}

    for po in snapshot.purchase_orders:
        supplier = suppliers.get(po.supplier_id)
        if supplier is None:
            continue
        perf = performance.setdefault(
            po.supplier_id, SupplierPerformance(po.supplier_id, supplier.name)
        )
        perf.total_orders += 1
        perf.total_value += values.get(po.po_id, 0.0)

        if po.status.lower() != "completed" or po.expected_date is None or po.updated_at is None:
            continue
        delay_days = math.floor((po.updated_at - po.expected_date).total_seconds() / 86400)
        if delay_days > 0:
            perf.late_deliveries += 1
            total_delay[po.supplier_id] = total_delay.get(po.supplier_id, 0.0) + delay_days
        else:
            perf.on_time_deliveries += 1

    for supplier_id, perf in performance.items():
        if perf.late_deliveries:
            perf.average_delay_days = total_delay[supplier_id] / perf.late_deliveries
    return list(performance.values())


def upcoming_purchase_orders(snapshot: InventorySnapshot, as_of: Any = None) -> List[Dict[str, Any]]:
    """Open orders expected today or later, soonest first."""
    today = utc_timestamp(as_of).normalize()
    suppliers = snapshot.supplier_map()

    items_by_po: Dict[str, list] = {}
    for item in snapshot.purchase_order_items:
        items_by_po.setdefault(item.po_id, []).append(item)

    upcoming = []
    for po in snapshot.purchase_orders:
        if not po.is_open or po.expected_date is None:
            continue
        if utc_timestamp(po.expected_date) < today:
            continue
        items = items_by_po.get(po.po_id, [])
        supplier = suppliers.get(po.supplier_id)
        upcoming.append({
            "poId": po.po_id,
            "supplierName": supplier.name if supplier else UNKNOWN,
            "expectedDate": po.expected_date.isoformat(),
            "totalValue": sum(i.qty_ordered * i.unit_cost for i in items),
            "itemCount": len(items),
            "status": po.status,
        })
    upcoming.sort(key=lambda row: row["expectedDate"])
    return upcoming


# ═══════════════════════════════════════════════════════════════════════════════
# DASHBOARD
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class DashboardMetrics:
    total_inventory_value: float
    total_active_products: int
    products_below_safety_stock: int
    pending_po_value: float
    total_active_suppliers: int
    total_warehouses: int
    generated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalInventoryValue": round(self.total_inventory_value, 2),
            "totalActiveProducts": self.total_active_products,
            "productsBelowSafetyStock": self.products_below_safety_stock,
            "pendingPOValue": round(self.pending_po_value, 2),
            "totalActiveSuppliers": self.total_active_suppliers,
            "totalWarehouses": self.total_warehouses,
            "generatedAt": self.generated_at.isoformat(),
        }


def dashboard_metrics(snapshot: InventorySnapshot) -> DashboardMetrics:
    metrics = DashboardMetrics(
        total_inventory_value=total_inventory_value(snapshot),
        total_active_products=sum(1 for p in snapshot.products if p.is_active),
        products_below_safety_stock=sum(1 for b in snapshot.balances if b.qty_on_hand < b.safety_stock),
        pending_po_value=pending_purchase_order_value(snapshot),
        total_active_suppliers=sum(1 for s in snapshot.suppliers if s.is_active),
        total_warehouses=sum(1 for w in snapshot.warehouses if w.is_active),
        generated_at=snapshot.fetched_at,
    )
    logger.debug(f"Dashboard metrics: {metrics}")
    return metrics
