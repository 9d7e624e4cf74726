"""
═══════════════════════════════════════════════════════════════════════════════════════════════════════
                    PRODUCT PERFORMANCE CLASSIFICATION (BCG)
═══════════════════════════════════════════════════════════════════════════════════════════════════════

Classifies products into BCG-style quadrants by how fast they turn and how much
revenue they move.

CLASSIFICATION APPROACH
═══════════════════════

For every active product (optionally filtered by warehouse and category):

    issued            = Σ ISSUE qty in the window (default 30 days)
    avgOnHand         = mean qtyOnHand over the product's balances (skip if 0)
    turnoverRate      = issued / avgOnHand
    revenuePotential  = issued * latest unit cost

Medians use the element at index floor(n / 2) of the sorted values (never averaged):

                       revenue >= median      revenue < median
    turnover >= median      Star               Question Mark
    turnover <  median      Cash Cow           Dog

The four quadrants form a total partition of the classified products.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Union

import pandas as pd

from ..models import InventorySnapshot, ProductCategory, TransactionType, utc_timestamp

logger = logging.getLogger(__name__)

TOP_N = 5


class PerformanceCategory(str, Enum):
    STAR = "Star"
    CASH_COW = "Cash Cow"
    QUESTION_MARK = "Question Mark"
    DOG = "Dog"


@dataclass
class ProductPerformance:
    product_id: str
    product_name: str
    sku: str
    category: str
    total_issued: float
    average_on_hand: float
    turnover_rate: float
    revenue_potential: float
    performance: PerformanceCategory = PerformanceCategory.DOG

    def to_dict(self) -> Dict[str, Any]:
        return {
            "productId": self.product_id,
            "productName": self.product_name,
            "sku": self.sku,
            "category": self.category,
            "totalIssued": self.total_issued,
            "averageOnHand": round(self.average_on_hand, 2),
            "turnoverRate": round(self.turnover_rate, 4),
            "revenuePotential": round(self.revenue_potential, 2),
            "performanceCategory": self.performance.value,
        }


@dataclass
class PerformanceReport:
    """
    Result of the BCG classification.

    Attributes:
        counts: Products per quadrant (all four keys always present)
        top_stars: Top 5 Stars by revenue descending
        bottom_dogs: Bottom 5 Dogs by revenue ascending
    """
    products: List[ProductPerformance] = field(default_factory=list)
    median_turnover: float = 0.0
    median_revenue: float = 0.0
    counts: Dict[str, int] = field(default_factory=dict)
    top_stars: List[ProductPerformance] = field(default_factory=list)
    bottom_dogs: List[ProductPerformance] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": dict(self.counts),
            "medianTurnover": round(self.median_turnover, 4),
            "medianRevenue": round(self.median_revenue, 2),
            "products": [p.to_dict() for p in self.products],
            "topStars": [p.to_dict() for p in self.top_stars],
            "bottomDogs": [p.to_dict() for p in self.bottom_dogs],
        }


def upper_median(values: Sequence[float]) -> float:
    """Element at index floor(n/2) of the sorted values; 0 when empty."""
    if not values:
        return 0.0
    ordered = sorted(values)
    return float(ordered[len(ordered) // 2])


def classify(turnover: float, revenue: float, median_turnover: float, median_revenue: float) -> PerformanceCategory:
    high_turnover = turnover >= median_turnover
    high_revenue = revenue >= median_revenue
    if high_turnover and high_revenue:
        return PerformanceCategory.STAR
    if high_revenue:
        return PerformanceCategory.CASH_COW
    if high_turnover:
        return PerformanceCategory.QUESTION_MARK
    return PerformanceCategory.DOG


def _issued_by_product(
    snapshot: InventorySnapshot,
    window_days: int,
    as_of: pd.Timestamp,
    warehouse_id: Optional[str] = None,
) -> Dict[str, float]:
    df = snapshot.transactions_frame()
    if df.empty:
        return {}
    mask = (
        (df["trx_type"] == TransactionType.ISSUE.value)
        & (df["trx_date"] > as_of - pd.Timedelta(days=window_days))
        & (df["trx_date"] <= as_of)
    )
    if warehouse_id is not None:
        mask &= df["warehouse_id"] == warehouse_id
    return df.loc[mask].groupby("product_id")["qty"].sum().to_dict()


def classify_product_performance(
    snapshot: InventorySnapshot,
    warehouse_id: Optional[str] = None,
    category: Optional[Union[str, ProductCategory]] = None,
    window_days: int = 30,
    as_of: Any = None,
) -> PerformanceReport:
    """
    BCG classification of active products.

    Args:
        snapshot: Data to classify
        warehouse_id: Only consider this warehouse's balances and issues
        category: Only consider products in this category
        window_days: Issue window (days)
        as_of: End of the window (default now, UTC)
    """
    as_of = utc_timestamp(as_of)
    category_value = ProductCategory(category).value if category is not None else None
    issued = _issued_by_product(snapshot, window_days, as_of, warehouse_id)
    unit_costs = snapshot.latest_unit_costs()

    on_hand: Dict[str, List[float]] = {}
    for balance in snapshot.balances:
        if warehouse_id is not None and balance.warehouse_id != warehouse_id:
            continue
        on_hand.setdefault(balance.product_id, []).append(balance.qty_on_hand)

    rows: List[ProductPerformance] = []
    for product in snapshot.products:
        if not product.is_active:
            continue
        if category_value is not None and product.category.value != category_value:
            continue
        quantities = on_hand.get(product.product_id, [])
        average_on_hand = sum(quantities) / len(quantities) if quantities else 0.0
        if average_on_hand == 0:
            continue

        total_issued = float(issued.get(product.product_id, 0.0))
        rows.append(ProductPerformance(
            product_id=product.product_id,
            product_name=product.name,
            sku=product.sku,
            category=product.category.value,
            total_issued=total_issued,
            average_on_hand=average_on_hand,
            turnover_rate=total_issued / average_on_hand,
            revenue_potential=total_issued * unit_costs.get(product.product_id, 0.0),
        ))

    median_turnover = upper_median([r.turnover_rate for r in rows])
    median_revenue = upper_median([r.revenue_potential for r in rows])

    counts = {c.value: 0 for c in PerformanceCategory}
    for row in rows:
        row.performance = classify(row.turnover_rate, row.revenue_potential, median_turnover, median_revenue)
        counts[row.performance.value] += 1

    stars = [r for r in rows if r.performance == PerformanceCategory.STAR]
    dogs = [r for r in rows if r.performance == PerformanceCategory.DOG]

    logger.info(f"BCG classification of {len(rows)} products: {counts}")
    return PerformanceReport(
        products=rows,
        median_turnover=median_turnover,
        median_revenue=median_revenue,
        counts=counts,
        top_stars=sorted(stars, key=lambda r: r.revenue_potential, reverse=True)[:TOP_N],
        bottom_dogs=sorted(dogs, key=lambda r: r.revenue_potential)[:TOP_N],
    )


# ═══════════════════════════════════════════════════════════════════════════════
# STOCK TURNOVER
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class StockTurnover:
    product_id: str
    product_name: str
    category: str
    total_issued: float
    average_on_hand: float
    turnover_rate: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "productId": self.product_id,
            "productName": self.product_name,
            "category": self.category,
            "totalIssued": self.total_issued,
            "averageOnHand": round(self.average_on_hand, 2),
            "turnoverRate": round(self.turnover_rate, 4),
        }


def stock_turnover(snapshot: InventorySnapshot, days: int = 30, as_of: Any = None) -> List[StockTurnover]:
    """Turnover of every product over `days`, highest first (0 when nothing on hand)."""
    as_of = utc_timestamp(as_of)
    issued = _issued_by_product(snapshot, days, as_of)

    on_hand: Dict[str, List[float]] = {}
    for balance in snapshot.balances:
        on_hand.setdefault(balance.product_id, []).append(balance.qty_on_hand)

    rows = []
    for product in snapshot.products:
        quantities = on_hand.get(product.product_id, [])
        average_on_hand = sum(quantities) / len(quantities) if quantities else 0.0
        total_issued = float(issued.get(product.product_id, 0.0))
        rows.append(StockTurnover(
            product_id=product.product_id,
            product_name=product.name,
            category=product.category.value,
            total_issued=total_issued,
            average_on_hand=average_on_hand,
            turnover_rate=total_issued / average_on_hand if average_on_hand > 0 else 0.0,
        ))
    return sorted(rows, key=lambda r: r.turnover_rate, reverse=True)
