"""
═══════════════════════════════════════════════════════════════════════════════════════════════════════
                    ALERT AGGREGATOR
═══════════════════════════════════════════════════════════════════════════════════════════════════════

Merges the output of every enabled anomaly detector into one alert feed,
enriches each alert with impact estimates and ranks "today's priorities".

Enrichment:
───────────
    ISSUE, change > 0:
        stockRiskDays = floor((qty - SS) / recentDailyRate)       if qty > SS and rate > 0
        potentialLostSalesQty = round(rate * (7 - max(0, stockRiskDays)))   if stockRiskDays <= 7

    RECEIPT, change > 0:
        excessQty = qty - 3 * SS                                  if qty > 3 * SS

Priority score:
───────────────
    severity base (critical 3, high 2, medium 1, low 0)
    + 1 if probable cause is duplicate_entry or data_error
    + 1 if stockRiskDays <= 7
    + 1 if the alert is a stockout pattern

    Top 3 by score; ties keep feed order.

Confidence:
    low     baseline value is 0
    high    known probable cause and severity critical/high
    medium  otherwise
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..feature_flags import FeatureFlags
from ..models import InventorySnapshot, TransactionType, utc_timestamp
from .anomaly_engine import (
    AnomalyDetector,
    AnomalyItem,
    AnomalyType,
    PriceVarianceDetector,
    ProbableCause,
    Severity,
    UnusualTransactionDetector,
)
from .stockout_engine import StockoutPatternDetector

logger = logging.getLogger(__name__)

RISK_HORIZON_DAYS = 7
EXCESS_FACTOR = 3.0
PRIORITY_COUNT = 3

SEVERITY_BASE = {
    Severity.CRITICAL: 3,
    Severity.HIGH: 2,
    Severity.MEDIUM: 1,
    Severity.LOW: 0,
}

DATA_QUALITY_CAUSES = (ProbableCause.DUPLICATE_ENTRY, ProbableCause.DATA_ERROR)


@dataclass
class AlertReport:
    alerts: List[AnomalyItem] = field(default_factory=list)
    priorities: List[AnomalyItem] = field(default_factory=list)

    @property
    def summary(self) -> Dict[str, int]:
        counts = {s.value: 0 for s in Severity}
        for alert in self.alerts:
            counts[alert.severity.value] += 1
        counts["total"] = len(self.alerts)
        return counts

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alerts": [a.to_dict() for a in self.alerts],
            "summary": self.summary,
            "todaysPriorities": [a.to_dict() for a in self.priorities],
        }


# ═══════════════════════════════════════════════════════════════════════════════
# ENRICHMENT / SCORING
# ═══════════════════════════════════════════════════════════════════════════════

def estimate_impact(anomaly: AnomalyItem, qty_on_hand: float, safety_stock: float) -> Dict[str, Any]:
    """Impact estimates for an unusual-transaction anomaly at the given stock position."""
    impact: Dict[str, Any] = {"currentQty": qty_on_hand, "safetyStock": safety_stock}
    if anomaly.type != AnomalyType.UNUSUAL_TRANSACTION or anomaly.change_percentage <= 0:
        return impact

    if anomaly.trx_type == TransactionType.ISSUE:
        rate = anomaly.current_value
        stock_risk_days = None
        if qty_on_hand > safety_stock and rate > 0:
            stock_risk_days = int(math.floor((qty_on_hand - safety_stock) / rate))
        impact["stockRiskDays"] = stock_risk_days
        if stock_risk_days is not None and stock_risk_days <= RISK_HORIZON_DAYS:
            lost = rate * (RISK_HORIZON_DAYS - max(0, stock_risk_days))
            impact["potentialLostSalesQty"] = int(math.floor(lost + 0.5))

    elif anomaly.trx_type == TransactionType.RECEIPT:
        if qty_on_hand > EXCESS_FACTOR * safety_stock:
            impact["excessQty"] = qty_on_hand - EXCESS_FACTOR * safety_stock

    return impact


def anomaly_confidence(anomaly: AnomalyItem) -> str:
    if anomaly.baseline_value == 0:
        return "low"
    if anomaly.probable_cause != ProbableCause.UNKNOWN and anomaly.severity in (Severity.CRITICAL, Severity.HIGH):
        return "high"
    return "medium"


def priority_score(anomaly: AnomalyItem) -> int:
    score = SEVERITY_BASE[anomaly.severity]
    if anomaly.probable_cause in DATA_QUALITY_CAUSES:
        score += 1
    stock_risk_days = anomaly.estimated_impact.get("stockRiskDays")
    if stock_risk_days is not None and stock_risk_days <= RISK_HORIZON_DAYS:
        score += 1
    if anomaly.type == AnomalyType.STOCKOUT:
        score += 1
    return score


def rank_priorities(alerts: List[AnomalyItem], count: int = PRIORITY_COUNT) -> List[AnomalyItem]:
    """Top `count` alerts by priority score; sorted() is stable so ties keep feed order."""
    return sorted(alerts, key=priority_score, reverse=True)[:count]


# ═══════════════════════════════════════════════════════════════════════════════
# AGGREGATOR
# ═══════════════════════════════════════════════════════════════════════════════

def default_detectors(lookback_days: int = 7, threshold_percentage: float = 150.0) -> List[AnomalyDetector]:
    """Detectors enabled by the current feature flags, in feed order."""
    detectors: List[AnomalyDetector] = []
    if FeatureFlags.is_enabled("unusual_transactions"):
        detectors.append(UnusualTransactionDetector(lookback_days, threshold_percentage))
    if FeatureFlags.is_enabled("stockout"):
        detectors.append(StockoutPatternDetector())
    if FeatureFlags.is_enabled("price_variance"):
        detectors.append(PriceVarianceDetector())
    return detectors


class AlertAggregator:
    """
    Runs a set of detectors over one snapshot and builds the alert feed.

    Usage:
        aggregator = AlertAggregator()                 # detectors from feature flags
        report = aggregator.aggregate(snapshot)
    """

    def __init__(self, detectors: Optional[List[AnomalyDetector]] = None):
        self.detectors = detectors if detectors is not None else default_detectors()

    def aggregate(self, snapshot: InventorySnapshot, as_of: Any = None) -> AlertReport:
        as_of = utc_timestamp(as_of)
        balances = snapshot.balance_map()

        alerts: List[AnomalyItem] = []
        for detector in self.detectors:
            found = detector.detect(snapshot, as_of)
            logger.debug(f"Detector {detector.name}: {len(found)} anomalies")
            alerts.extend(found)

        for alert in alerts:
            balance = balances.get((alert.warehouse_id, alert.product_id)) if alert.warehouse_id else None
            if balance is not None:
                alert.estimated_impact.update(
                    estimate_impact(alert, balance.qty_on_hand, balance.safety_stock)
                )
            alert.confidence = anomaly_confidence(alert)

        report = AlertReport(alerts=alerts, priorities=rank_priorities(alerts))
        logger.info(f"Critical alerts: {report.summary}")
        return report


def get_critical_alerts(
    snapshot: InventorySnapshot,
    lookback_days: int = 7,
    threshold_percentage: float = 150.0,
    as_of: Any = None,
) -> AlertReport:
    """Alert feed from the detectors enabled by feature flags."""
    aggregator = AlertAggregator(default_detectors(lookback_days, threshold_percentage))
    return aggregator.aggregate(snapshot, as_of)
