"""
═══════════════════════════════════════════════════════════════════════════════════════════════════════
                    SAFETY STOCK POLICY ENGINE
═══════════════════════════════════════════════════════════════════════════════════════════════════════

Per-warehouse statistical recalibration of safety stock from historical issue variance.

Mathematical Formulation:
─────────────────────────
    Daily issue series (last 30 days, zero-filled):
        d_1 .. d_n

    Outlier clamp (95th percentile by sorted position):
        P95 = sorted(d)[floor(0.95 * (n - 1))]
        d'_t = min(d_t, P95)

    Demand variability:
        σ_d  = sample std of d' (divide by n - 1, 0 when n <= 1)
        σ_LT = σ_d * sqrt(L)

    Recommendation:
        SS = max(SS_min, round(z * σ_LT))
        SS = clip(SS, C * (1 - p/100), C * (1 + p/100))     if p > 0
        SS = max(pack, round(SS / pack) * pack)             if pack set
        SS = max(SS_min, SS)

    where:
        z = service level quantile (nearest of 0.90, 0.95, 0.975, 0.99)
        L = lead time (days)
        C = current safety stock
        p = max change percent per run

Planning is pure (plan_safety_stock). Applying writes each change back
sequentially; a failed write is logged and skipped.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from ..config import SafetyStockPolicy
from ..data_store import InventoryDataStore
from ..exceptions import PersistenceError
from ..models import InventoryBalance, InventorySnapshot, TransactionType, utc_timestamp

logger = logging.getLogger(__name__)


SERIES_DAYS = 30
OUTLIER_PERCENTILE = 0.95

SERVICE_LEVEL_Z = {
    0.90: 1.2816,
    0.95: 1.6449,
    0.975: 1.96,
    0.99: 2.3263,
}
DEFAULT_SERVICE_LEVEL = 0.95


# ═══════════════════════════════════════════════════════════════════════════════
# DATA STRUCTURES
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class DemandStatistics:
    """Statistics of the daily issue series (after the outlier clamp)."""
    mean_daily: float
    sigma_daily: float
    sigma_lead_time: float
    z: float


@dataclass
class SafetyStockChange:
    """
    One recalibrated safety stock.

    Attributes:
        change_percent: (recommended - current) / current * 100, 100 when current is 0
        reason: z, σ_d and lead time that produced the recommendation
    """
    warehouse_id: str
    product_id: str
    current: float
    recommended: float
    change_percent: float
    reason: str
    warehouse_name: str = ""
    product_name: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "warehouseId": self.warehouse_id,
            "warehouseName": self.warehouse_name,
            "productId": self.product_id,
            "productName": self.product_name,
            "current": self.current,
            "recommended": self.recommended,
            "changePercent": round(self.change_percent, 2),
            "reason": self.reason,
        }


@dataclass
class SafetyStockPlan:
    """Pending changes for one warehouse, nothing written yet."""
    warehouse_id: str
    policy: SafetyStockPolicy
    total_candidates: int
    changes: List[SafetyStockChange] = field(default_factory=list)


@dataclass
class SafetyStockAdjustmentResult:
    """
    Outcome of applying a plan.

    Attributes:
        applied_count: Successful writes
        total_candidates: Balances evaluated in the warehouse
        changes: Applied changes, sorted by |change_percent| descending
        failed: (warehouse_id, product_id) keys whose write failed
    """
    warehouse_id: str
    applied_count: int
    total_candidates: int
    changes: List[SafetyStockChange] = field(default_factory=list)
    failed: List[Tuple[str, str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "warehouseId": self.warehouse_id,
            "appliedCount": self.applied_count,
            "totalCandidates": self.total_candidates,
            "changes": [c.to_dict() for c in self.changes],
            "failed": [{"warehouseId": w, "productId": p} for w, p in self.failed],
        }


# ═══════════════════════════════════════════════════════════════════════════════
# STATISTICS
# ═══════════════════════════════════════════════════════════════════════════════

def service_level_to_z(service_level: Optional[float]) -> float:
    """
    Nearest-match z-score for a service level.

    Non-numeric or non-finite levels fall back to 0.95 (z = 1.6449).
    """
    if service_level is None or not math.isfinite(service_level):
        return SERVICE_LEVEL_Z[DEFAULT_SERVICE_LEVEL]
    nearest = min(SERVICE_LEVEL_Z, key=lambda level: abs(level - service_level))
    return SERVICE_LEVEL_Z[nearest]


def daily_index(as_of: Any = None, days: int = SERIES_DAYS) -> pd.DatetimeIndex:
    """The `days` calendar days ending on (and including) as_of's day, UTC."""
    end = utc_timestamp(as_of).normalize()
    return pd.date_range(end=end, periods=days, freq="D", unit="ns")


def build_daily_issue_series(
    transactions: pd.DataFrame,
    warehouse_id: str,
    product_id: str,
    as_of: Any = None,
    days: int = SERIES_DAYS,
) -> np.ndarray:
    """
    Daily issued quantity for one (warehouse, product), zero-filled.

    Args:
        transactions: Frame from InventorySnapshot.transactions_frame()
    """
    index = daily_index(as_of, days)
    if transactions.empty:
        return np.zeros(days)

    mask = (
        (transactions["warehouse_id"] == warehouse_id)
        & (transactions["product_id"] == product_id)
        & (transactions["trx_type"] == TransactionType.ISSUE.value)
        & (transactions["day"].isin(index))
    )
    daily = transactions.loc[mask].groupby("day")["qty"].sum()
    return daily.reindex(index, fill_value=0.0).to_numpy(dtype=float)


def clamp_to_percentile(series: np.ndarray, percentile: float = OUTLIER_PERCENTILE) -> np.ndarray:
    """Clamp every value to the sorted-position percentile of the series."""
    values = np.asarray(series, dtype=float)
    if values.size == 0:
        return values
    ordered = np.sort(values)
    ceiling = ordered[int(math.floor(percentile * (values.size - 1)))]
    return np.minimum(values, ceiling)


def sample_std(series: np.ndarray) -> float:
    values = np.asarray(series, dtype=float)
    if values.size <= 1:
        return 0.0
    return float(np.std(values, ddof=1))


def demand_statistics(series: np.ndarray, policy: SafetyStockPolicy) -> DemandStatistics:
    clamped = clamp_to_percentile(series)
    sigma_daily = sample_std(clamped)
    lead_time = max(policy.lead_time_days, 0.0)
    return DemandStatistics(
        mean_daily=float(clamped.mean()) if clamped.size else 0.0,
        sigma_daily=sigma_daily,
        sigma_lead_time=sigma_daily * math.sqrt(lead_time),
        z=service_level_to_z(policy.service_level),
    )


def _round_half_up(value: float) -> float:
    return float(math.floor(value + 0.5))


def recommend_safety_stock(stats: DemandStatistics, current: float, policy: SafetyStockPolicy) -> float:
    """
    Apply the recommendation pipeline to one balance.

    The minimum floor wins over the change cap. Non-finite results fall back
    to the current value.
    """
    minimum = policy.min_safety_stock
    raw = stats.z * stats.sigma_lead_time
    if not math.isfinite(raw):
        return current

    recommended = max(minimum, _round_half_up(raw))

    if policy.max_change_percent > 0:
        ratio = policy.max_change_percent / 100.0
        lower = current * (1 - ratio)
        upper = current * (1 + ratio)
        recommended = _round_half_up(min(max(recommended, lower), upper))

    pack = policy.round_to_pack
    if pack is not None and pack > 0:
        recommended = max(pack, _round_half_up(recommended / pack) * pack)

    recommended = max(minimum, recommended)
    if not math.isfinite(recommended):
        return current
    return float(recommended)


def change_percent(current: float, recommended: float) -> float:
    if current == 0:
        return 100.0
    return (recommended - current) / current * 100.0


# ═══════════════════════════════════════════════════════════════════════════════
# PLAN / APPLY
# ═══════════════════════════════════════════════════════════════════════════════

def plan_safety_stock(
    snapshot: InventorySnapshot,
    warehouse_id: str,
    policy: Optional[SafetyStockPolicy] = None,
    as_of: Any = None,
) -> SafetyStockPlan:
    """
    Compute recommended safety stock for every balance of a warehouse.

    Pure: reads the snapshot, writes nothing.

    Returns:
        SafetyStockPlan with changes (recommended != current) sorted by
        |change_percent| descending
    """
    policy = policy or SafetyStockPolicy()
    as_of = utc_timestamp(as_of)
    balances = snapshot.balances_for_warehouse(warehouse_id)
    transactions = snapshot.transactions_frame()
    products = snapshot.product_map()
    warehouse = snapshot.warehouse_map().get(warehouse_id)

    changes: List[SafetyStockChange] = []
    for balance in balances:
        change = _plan_balance(balance, transactions, policy, as_of)
        if change is None:
            continue
        product = products.get(balance.product_id)
        change.warehouse_name = warehouse.name if warehouse else warehouse_id
        change.product_name = product.name if product else balance.product_id
        changes.append(change)

    changes.sort(key=lambda c: abs(c.change_percent), reverse=True)
    logger.info(
        f"Safety stock plan for {warehouse_id}: {len(changes)} changes "
        f"out of {len(balances)} candidates"
    )
    return SafetyStockPlan(
        warehouse_id=warehouse_id,
        policy=policy,
        total_candidates=len(balances),
        changes=changes,
    )


def _plan_balance(
    balance: InventoryBalance,
    transactions: pd.DataFrame,
    policy: SafetyStockPolicy,
    as_of: pd.Timestamp,
) -> Optional[SafetyStockChange]:
    series = build_daily_issue_series(transactions, balance.warehouse_id, balance.product_id, as_of)
    stats = demand_statistics(series, policy)
    current = balance.safety_stock
    recommended = recommend_safety_stock(stats, current, policy)

    logger.debug(
        f"{balance.product_id}@{balance.warehouse_id}: σ_d={stats.sigma_daily:.3f} "
        f"current={current} recommended={recommended}"
    )
    if recommended == current:
        return None

    return SafetyStockChange(
        warehouse_id=balance.warehouse_id,
        product_id=balance.product_id,
        current=current,
        recommended=recommended,
        change_percent=change_percent(current, recommended),
        reason=f"z={stats.z:.2f}, σ_d={stats.sigma_daily:.2f}, L={policy.lead_time_days:g}d",
    )


async def apply_safety_stock_plan(
    store: InventoryDataStore,
    plan: SafetyStockPlan,
) -> SafetyStockAdjustmentResult:
    """Write each planned change back, one at a time. Failed writes are skipped."""
    applied: List[SafetyStockChange] = []
    failed: List[Tuple[str, str]] = []

    for change in plan.changes:
        try:
            await store.update_safety_stock(change.warehouse_id, change.product_id, change.recommended)
        except PersistenceError as exc:
            logger.warning(f"Skipping safety stock update: {exc}")
            failed.append((change.warehouse_id, change.product_id))
            continue
        applied.append(change)

    logger.info(
        f"Safety stock applied for {plan.warehouse_id}: {len(applied)}/{plan.total_candidates}"
    )
    return SafetyStockAdjustmentResult(
        warehouse_id=plan.warehouse_id,
        applied_count=len(applied),
        total_candidates=plan.total_candidates,
        changes=applied,
        failed=failed,
    )


async def apply_safety_stock_policy(
    store: InventoryDataStore,
    snapshot: InventorySnapshot,
    warehouse_id: str,
    policy: Optional[SafetyStockPolicy] = None,
    as_of: Any = None,
) -> SafetyStockAdjustmentResult:
    """
    Recalibrate and persist safety stock for one warehouse.

    Args:
        store: Data store receiving the write-backs
        snapshot: Snapshot the recommendations are computed from
        warehouse_id: Warehouse to recalibrate
        policy: SafetyStockPolicy (defaults when None)
        as_of: End of the 30-day history window (default now, UTC)
    """
    plan = plan_safety_stock(snapshot, warehouse_id, policy, as_of)
    return await apply_safety_stock_plan(store, plan)
