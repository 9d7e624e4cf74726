"""
═══════════════════════════════════════════════════════════════════════════════════════════════════════
                    ANOMALY DETECTION ENGINE
═══════════════════════════════════════════════════════════════════════════════════════════════════════

Detects unusual movements in the transaction stream and unusual purchase price
swings.

Unusual transactions (baseline-vs-recent ratio):
─────────────────────────────────────────────────
    recent window    = (as_of - L, as_of]
    baseline window  = (as_of - 2L, as_of - L]

    For each (product, warehouse, type) seen in the recent window:
        recentAvg   = Σ qty_recent / L
        baselineAvg = Σ qty_baseline / L          (skip when 0)
        change %    = (recentAvg - baselineAvg) / baselineAvg * 100

    Emitted when |change %| >= threshold (default 150).

    Severity:  >= 300 critical | >= 200 high | >= 150 medium | else low

    Probable cause (first match wins):
        1. duplicate_entry  same refType + refId + product + type more than once
        2. data_error       one recent day above 5x recentAvg
        3. demand_spike     ISSUE with positive change
        4. receipt_delay    RECEIPT with negative change
        5. process_change   >= 5 active days in both windows
        6. unknown

Price variance:
───────────────
    Average unit cost of PO items created in the last 7 days vs the preceding
    30 days, per product, with >= 3 observations in each window.

    Severity:  >= 45 critical | >= 30 high | >= 20 medium | else dropped

Every detector implements AnomalyDetector.detect(snapshot, as_of) and is a
drop-in plug-in for the alert aggregator.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple

import numpy as np
import pandas as pd

from ..models import InventorySnapshot, TransactionType, utc_timestamp

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# ENUMS
# ═══════════════════════════════════════════════════════════════════════════════

class AnomalyType(str, Enum):
    UNUSUAL_TRANSACTION = "unusual_transaction"
    STOCKOUT = "stockout"
    PRICE_VARIANCE = "price_variance"


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ProbableCause(str, Enum):
    DEMAND_SPIKE = "demand_spike"
    RECEIPT_DELAY = "receipt_delay"
    DUPLICATE_ENTRY = "duplicate_entry"
    PROCESS_CHANGE = "process_change"
    DATA_ERROR = "data_error"
    UNKNOWN = "unknown"


# ═══════════════════════════════════════════════════════════════════════════════
# DATA STRUCTURES
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class AnomalyItem:
    """
    One detected anomaly.

    Attributes:
        change_percentage: Relative change of current vs baseline (%)
        baseline_value: Baseline figure (avg daily qty, safety stock, avg unit cost)
        current_value: Current figure on the same scale
        estimated_impact: Free-form impact estimates, filled in by the aggregator
        confidence: low / medium / high, set by the aggregator
    """
    id: str
    type: AnomalyType
    severity: Severity
    change_percentage: float
    baseline_value: float
    current_value: float
    probable_cause: ProbableCause
    product_id: str
    warehouse_id: Optional[str] = None
    trx_type: Optional[TransactionType] = None
    description: str = ""
    estimated_impact: Dict[str, Any] = field(default_factory=dict)
    confidence: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "severity": self.severity.value,
            "productId": self.product_id,
            "warehouseId": self.warehouse_id,
            "trxType": self.trx_type.value if self.trx_type else None,
            "changePercentage": round(self.change_percentage, 2),
            "baselineValue": round(self.baseline_value, 2),
            "currentValue": round(self.current_value, 2),
            "probableCause": self.probable_cause.value,
            "description": self.description,
            "estimatedImpact": dict(self.estimated_impact),
            "confidence": self.confidence,
        }


@dataclass
class AnomalyReport:
    """Anomalies sorted by |change_percentage| descending, plus counts."""
    anomalies: List[AnomalyItem] = field(default_factory=list)

    @property
    def summary(self) -> Dict[str, int]:
        return {
            "total": len(self.anomalies),
            "critical": sum(1 for a in self.anomalies if a.severity == Severity.CRITICAL),
            "high": sum(1 for a in self.anomalies if a.severity == Severity.HIGH),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "anomalies": [a.to_dict() for a in self.anomalies],
            "summary": self.summary,
        }


def sort_by_change(anomalies: List[AnomalyItem]) -> List[AnomalyItem]:
    return sorted(anomalies, key=lambda a: abs(a.change_percentage), reverse=True)


# ═══════════════════════════════════════════════════════════════════════════════
# DETECTOR INTERFACE
# ═══════════════════════════════════════════════════════════════════════════════

class AnomalyDetector(ABC):
    """
    Common interface for anomaly detectors.

    Subclasses declare the feature flag that gates them in the alert feed.
    """

    name: str = "detector"
    feature_flag: str = ""

    @abstractmethod
    def detect(self, snapshot: InventorySnapshot, as_of: Any = None) -> List[AnomalyItem]:
        """Return anomalies found in the snapshot, most significant first."""
        raise NotImplementedError


# ═══════════════════════════════════════════════════════════════════════════════
# UNUSUAL TRANSACTIONS
# ═══════════════════════════════════════════════════════════════════════════════

DATA_ERROR_FACTOR = 5.0
PROCESS_CHANGE_ACTIVE_DAYS = 5


def severity_for_change(change_percentage: float) -> Severity:
    magnitude = abs(change_percentage)
    if magnitude >= 300:
        return Severity.CRITICAL
    if magnitude >= 200:
        return Severity.HIGH
    if magnitude >= 150:
        return Severity.MEDIUM
    return Severity.LOW


def attribute_probable_cause(
    trx_type: TransactionType,
    change_percentage: float,
    has_duplicates: bool,
    max_recent_day: float,
    recent_avg: float,
    recent_active_days: int,
    baseline_active_days: int,
) -> ProbableCause:
    """Ordered root-cause rules; the first one that matches wins."""
    if has_duplicates:
        return ProbableCause.DUPLICATE_ENTRY
    if max_recent_day > DATA_ERROR_FACTOR * recent_avg:
        return ProbableCause.DATA_ERROR
    if trx_type == TransactionType.ISSUE and change_percentage > 0:
        return ProbableCause.DEMAND_SPIKE
    if trx_type == TransactionType.RECEIPT and change_percentage < 0:
        return ProbableCause.RECEIPT_DELAY
    if recent_active_days >= PROCESS_CHANGE_ACTIVE_DAYS and baseline_active_days >= PROCESS_CHANGE_ACTIVE_DAYS:
        return ProbableCause.PROCESS_CHANGE
    return ProbableCause.UNKNOWN


def _duplicate_keys(recent: pd.DataFrame) -> Set[Tuple[str, str]]:
    """(product_id, trx_type) pairs with a repeated refType + refId in the window."""
    referenced = recent[recent["ref_id"] != ""]
    if referenced.empty:
        return set()
    counts = referenced.groupby(["ref_type", "ref_id", "product_id", "trx_type"]).size()
    return {(product_id, trx_type) for (_, _, product_id, trx_type) in counts[counts > 1].index}


def _daily_totals(frame: Optional[pd.DataFrame]) -> pd.Series:
    if frame is None or frame.empty:
        return pd.Series(dtype=float)
    return frame.groupby("day")["qty"].sum()


class UnusualTransactionDetector(AnomalyDetector):
    """
    Baseline-vs-recent detector over (product, warehouse, type) tuples.

    Args:
        lookback_days: Length of each window (default 7)
        threshold_percentage: Minimum |change %| to emit (default 150)
    """

    name = "unusual_transactions"
    feature_flag = "unusual_transactions"

    def __init__(self, lookback_days: int = 7, threshold_percentage: float = 150.0):
        self.lookback_days = lookback_days
        self.threshold_percentage = threshold_percentage

    def detect(self, snapshot: InventorySnapshot, as_of: Any = None) -> List[AnomalyItem]:
        df = snapshot.transactions_frame()
        if df.empty or self.lookback_days <= 0:
            return []

        as_of = utc_timestamp(as_of)
        window = pd.Timedelta(days=self.lookback_days)
        recent_start = as_of - window
        baseline_start = recent_start - window

        recent = df[(df["trx_date"] > recent_start) & (df["trx_date"] <= as_of)]
        baseline = df[(df["trx_date"] > baseline_start) & (df["trx_date"] <= recent_start)]

        keys = ["product_id", "warehouse_id", "trx_type"]
        baseline_groups = {key: group for key, group in baseline.groupby(keys)}
        duplicates = _duplicate_keys(recent)

        anomalies: List[AnomalyItem] = []
        for (product_id, warehouse_id, trx_type), group in recent.groupby(keys):
            base = baseline_groups.get((product_id, warehouse_id, trx_type))
            baseline_avg = float(base["qty"].sum()) / self.lookback_days if base is not None else 0.0
            if baseline_avg == 0:
                continue

            recent_avg = float(group["qty"].sum()) / self.lookback_days
            change = (recent_avg - baseline_avg) / baseline_avg * 100.0
            if not np.isfinite(change) or abs(change) < self.threshold_percentage:
                continue

            recent_daily = _daily_totals(group)
            baseline_daily = _daily_totals(base)
            trx = TransactionType(trx_type)
            cause = attribute_probable_cause(
                trx_type=trx,
                change_percentage=change,
                has_duplicates=(product_id, trx_type) in duplicates,
                max_recent_day=float(recent_daily.max()) if not recent_daily.empty else 0.0,
                recent_avg=recent_avg,
                recent_active_days=int((recent_daily > 0).sum()),
                baseline_active_days=int((baseline_daily > 0).sum()),
            )
            severity = severity_for_change(change)
            logger.debug(
                f"Unusual {trx.value} {product_id}@{warehouse_id}: {change:+.1f}% "
                f"({severity.value}, {cause.value})"
            )

            direction = "up" if change > 0 else "down"
            anomalies.append(AnomalyItem(
                id=f"unusual-{product_id}-{warehouse_id}-{trx.value}",
                type=AnomalyType.UNUSUAL_TRANSACTION,
                severity=severity,
                change_percentage=change,
                baseline_value=baseline_avg,
                current_value=recent_avg,
                probable_cause=cause,
                product_id=product_id,
                warehouse_id=warehouse_id,
                trx_type=trx,
                description=(
                    f"{trx.value} volume {direction} {abs(change):.0f}% vs previous "
                    f"{self.lookback_days} days"
                ),
                estimated_impact={"dailyRateDelta": round(recent_avg - baseline_avg, 2)},
            ))

        return sort_by_change(anomalies)


def detect_unusual_transactions(
    snapshot: InventorySnapshot,
    lookback_days: int = 7,
    threshold_percentage: float = 150.0,
    as_of: Any = None,
) -> AnomalyReport:
    """Run the unusual-transaction detector and wrap the result with a summary."""
    detector = UnusualTransactionDetector(lookback_days, threshold_percentage)
    report = AnomalyReport(detector.detect(snapshot, as_of))
    logger.info(f"Unusual transactions: {report.summary}")
    return report


# ═══════════════════════════════════════════════════════════════════════════════
# PRICE VARIANCE
# ═══════════════════════════════════════════════════════════════════════════════

def price_severity(change_percentage: float) -> Optional[Severity]:
    """None means the change is too small to report."""
    magnitude = abs(change_percentage)
    if magnitude >= 45:
        return Severity.CRITICAL
    if magnitude >= 30:
        return Severity.HIGH
    if magnitude >= 20:
        return Severity.MEDIUM
    return None


class PriceVarianceDetector(AnomalyDetector):
    """Average PO unit cost, last `recent_days` vs the preceding `baseline_days`."""

    name = "price_variance"
    feature_flag = "price_variance"

    def __init__(self, recent_days: int = 7, baseline_days: int = 30, min_observations: int = 3):
        self.recent_days = recent_days
        self.baseline_days = baseline_days
        self.min_observations = min_observations

    def detect(self, snapshot: InventorySnapshot, as_of: Any = None) -> List[AnomalyItem]:
        as_of = utc_timestamp(as_of)
        recent_start = as_of - pd.Timedelta(days=self.recent_days)
        baseline_start = recent_start - pd.Timedelta(days=self.baseline_days)

        recent: Dict[str, List[float]] = {}
        baseline: Dict[str, List[float]] = {}
        for item in snapshot.purchase_order_items:
            if item.created_at is None:
                continue
            created = utc_timestamp(item.created_at)
            if recent_start < created <= as_of:
                recent.setdefault(item.product_id, []).append(item.unit_cost)
            elif baseline_start < created <= recent_start:
                baseline.setdefault(item.product_id, []).append(item.unit_cost)

        anomalies: List[AnomalyItem] = []
        for product_id, recent_costs in recent.items():
            baseline_costs = baseline.get(product_id, [])
            if len(recent_costs) < self.min_observations or len(baseline_costs) < self.min_observations:
                continue
            baseline_avg = float(np.mean(baseline_costs))
            if baseline_avg == 0:
                continue
            recent_avg = float(np.mean(recent_costs))
            change = (recent_avg - baseline_avg) / baseline_avg * 100.0
            severity = price_severity(change)
            if severity is None:
                continue

            anomalies.append(AnomalyItem(
                id=f"price-{product_id}",
                type=AnomalyType.PRICE_VARIANCE,
                severity=severity,
                change_percentage=change,
                baseline_value=baseline_avg,
                current_value=recent_avg,
                probable_cause=ProbableCause.UNKNOWN,
                product_id=product_id,
                description=f"Average unit cost changed {change:+.0f}% vs previous {self.baseline_days} days",
                estimated_impact={"unitCostDelta": round(recent_avg - baseline_avg, 4)},
            ))

        return sort_by_change(anomalies)
