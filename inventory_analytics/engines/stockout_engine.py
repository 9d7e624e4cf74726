"""
═══════════════════════════════════════════════════════════════════════════════════════════════════════
                    STOCKOUT HISTORY RECONSTRUCTION
═══════════════════════════════════════════════════════════════════════════════════════════════════════

Recovers stockout episodes by replaying the ledger backward from the current
on-hand quantity.

Reverse simulation:
───────────────────
    q_0 = qtyOnHand (now)
    q_{k+1} = q_k - signedQty_k        (transactions newest first)

    Two-state machine:
        IN_STOCK --(q <= 0)--> STOCKOUT    frequency += 1, lastStockout = trx date
        STOCKOUT --(q > 0)---> IN_STOCK

    stockoutDays = distinct calendar days on which the simulated quantity was <= 0,
                   counting every day between two transactions spent at <= 0

Transactions dated after as_of are undone before the replay starts. Only
transactions inside the lookback window (default 90 days) drive the state machine.
Items that never stocked out are dropped; the rest are sorted by frequency
descending.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple

import pandas as pd

from ..models import InventoryBalance, InventorySnapshot, InventoryTransaction, utc_timestamp
from .anomaly_engine import (
    AnomalyDetector,
    AnomalyItem,
    AnomalyType,
    ProbableCause,
    Severity,
)

logger = logging.getLogger(__name__)

HIGH_FREQUENCY = 5


class StockState(str, Enum):
    IN_STOCK = "in_stock"
    STOCKOUT = "stockout"


@dataclass
class StockoutHistoryItem:
    product_id: str
    warehouse_id: str
    stockout_days: int
    frequency: int
    last_stockout: Optional[datetime]
    current_qty: float
    safety_stock: float
    product_name: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "productId": self.product_id,
            "productName": self.product_name,
            "warehouseId": self.warehouse_id,
            "stockoutDays": self.stockout_days,
            "frequency": self.frequency,
            "lastStockout": self.last_stockout.isoformat() if self.last_stockout else None,
            "currentQty": self.current_qty,
            "safetyStock": self.safety_stock,
        }


@dataclass
class StockoutReport:
    items: List[StockoutHistoryItem] = field(default_factory=list)

    @property
    def summary(self) -> Dict[str, int]:
        return {
            "totalProducts": len(self.items),
            "highFrequency": sum(1 for i in self.items if i.frequency >= HIGH_FREQUENCY),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": [i.to_dict() for i in self.items],
            "summary": self.summary,
        }


# ═══════════════════════════════════════════════════════════════════════════════
# REVERSE SIMULATION
# ═══════════════════════════════════════════════════════════════════════════════

def _newest_first(trx: InventoryTransaction) -> Tuple[pd.Timestamp, pd.Timestamp]:
    created = trx.created_at or trx.trx_date
    return (utc_timestamp(trx.trx_date), utc_timestamp(created))


def _days_between(start: pd.Timestamp, end: pd.Timestamp) -> Set[pd.Timestamp]:
    if end < start:
        return set()
    return set(pd.date_range(start.normalize(), end.normalize(), freq="D"))


def replay_backward(
    balance: InventoryBalance,
    transactions: List[InventoryTransaction],
    as_of: pd.Timestamp,
    window_start: Optional[pd.Timestamp] = None,
) -> StockoutHistoryItem:
    """
    Run the two-state machine over one balance's transactions.

    Transactions dated after as_of are undone first so the replay starts from
    the quantity on hand at as_of. Between two replayed transactions the
    quantity is constant; every calendar day of a segment spent at <= 0 is a
    stockout day.

    Args:
        transactions: Transactions of this balance newer than window_start, any order
        window_start: Oldest instant of the window; when given, a stockout that
            is still open at the oldest transaction extends back to it
    """
    ordered = sorted(transactions, key=_newest_first, reverse=True)

    qty = balance.qty_on_hand
    replayed = []
    for trx in ordered:
        if utc_timestamp(trx.trx_date) > as_of:
            qty -= trx.signed_qty
        else:
            replayed.append(trx)

    state = StockState.STOCKOUT if qty <= 0 else StockState.IN_STOCK
    stockout_days: Set[pd.Timestamp] = set()
    cursor = as_of
    frequency = 0
    last_stockout: Optional[datetime] = None

    for trx in replayed:
        when = utc_timestamp(trx.trx_date)
        # qty held from this transaction until the cursor
        if state == StockState.STOCKOUT:
            stockout_days |= _days_between(when, cursor)
        cursor = when

        qty -= trx.signed_qty
        if qty <= 0:
            if state == StockState.IN_STOCK:
                frequency += 1
                if last_stockout is None:
                    last_stockout = trx.trx_date
            state = StockState.STOCKOUT
            stockout_days.add(when.normalize())
        else:
            state = StockState.IN_STOCK

    if state == StockState.STOCKOUT:
        stockout_days |= _days_between(window_start if window_start is not None else cursor, cursor)

    return StockoutHistoryItem(
        product_id=balance.product_id,
        warehouse_id=balance.warehouse_id,
        stockout_days=len(stockout_days),
        frequency=frequency,
        last_stockout=last_stockout,
        current_qty=balance.qty_on_hand,
        safety_stock=balance.safety_stock,
    )


def analyze_stockout_history(
    snapshot: InventorySnapshot,
    lookback_days: int = 90,
    as_of: Any = None,
) -> StockoutReport:
    """
    Reconstruct stockout episodes for every balance.

    Returns:
        StockoutReport with items (frequency > 0) sorted by frequency descending
    """
    as_of = utc_timestamp(as_of)
    window_start = as_of - pd.Timedelta(days=lookback_days)

    by_key: Dict[Tuple[str, str], List[InventoryTransaction]] = {}
    for trx in snapshot.transactions:
        when = utc_timestamp(trx.trx_date)
        if when > window_start:
            by_key.setdefault((trx.warehouse_id, trx.product_id), []).append(trx)

    products = snapshot.product_map()
    items: List[StockoutHistoryItem] = []
    for balance in snapshot.balances:
        item = replay_backward(balance, by_key.get(balance.key, []), as_of, window_start)
        if item.frequency == 0:
            continue
        product = products.get(balance.product_id)
        item.product_name = product.name if product else balance.product_id
        items.append(item)

    items.sort(key=lambda i: i.frequency, reverse=True)
    report = StockoutReport(items)
    logger.info(f"Stockout history over {lookback_days} days: {report.summary}")
    return report


# ═══════════════════════════════════════════════════════════════════════════════
# DETECTOR
# ═══════════════════════════════════════════════════════════════════════════════

class StockoutPatternDetector(AnomalyDetector):
    """Repeated stockouts as anomalies (frequency >= 3; >= 5 is critical)."""

    name = "stockout"
    feature_flag = "stockout"

    def __init__(self, lookback_days: int = 90, min_frequency: int = 3):
        self.lookback_days = lookback_days
        self.min_frequency = min_frequency

    def detect(self, snapshot: InventorySnapshot, as_of: Any = None) -> List[AnomalyItem]:
        report = analyze_stockout_history(snapshot, self.lookback_days, as_of)
        anomalies = []
        for item in report.items:
            if item.frequency < self.min_frequency:
                continue
            severity = Severity.CRITICAL if item.frequency >= HIGH_FREQUENCY else Severity.HIGH
            anomalies.append(AnomalyItem(
                id=f"stockout-{item.product_id}-{item.warehouse_id}",
                type=AnomalyType.STOCKOUT,
                severity=severity,
                change_percentage=0.0,
                baseline_value=item.safety_stock,
                current_value=item.current_qty,
                probable_cause=ProbableCause.UNKNOWN,
                product_id=item.product_id,
                warehouse_id=item.warehouse_id,
                description=(
                    f"{item.frequency} stockouts in the last {self.lookback_days} days "
                    f"({item.stockout_days} days out of stock)"
                ),
                estimated_impact={
                    "stockoutFrequency": item.frequency,
                    "stockoutDays": item.stockout_days,
                },
            ))
        return anomalies
