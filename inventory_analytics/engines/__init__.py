"""
═══════════════════════════════════════════════════════════════════════════════════════════════════════
                    INVENTORY ANALYTICS ENGINES
═══════════════════════════════════════════════════════════════════════════════════════════════════════

Computation engines. Every engine reads one InventorySnapshot; only the safety
stock policy engine writes anything back.

Arquitetura:
    ┌─────────────────────────────────────────────────────────────────┐
    │                    InventorySnapshot                            │
    ├─────────────────────────────────────────────────────────────────┤
    │  Metrics Aggregator        valuation, trends, health, POs       │
    │  Safety Stock Engine       σ-based recalibration + write-back   │
    │  Anomaly Detectors         unusual transactions, price variance │
    │  Stockout Reconstructor    reverse simulation                   │
    │  Performance Classifier    BCG quadrants, turnover              │
    ├─────────────────────────────────────────────────────────────────┤
    │  Alert Aggregator          detectors → enriched, ranked feed    │
    └─────────────────────────────────────────────────────────────────┘
"""

from .alert_engine import AlertAggregator, AlertReport, get_critical_alerts
from .anomaly_engine import (
    AnomalyDetector,
    AnomalyItem,
    AnomalyReport,
    AnomalyType,
    PriceVarianceDetector,
    ProbableCause,
    Severity,
    UnusualTransactionDetector,
    detect_unusual_transactions,
)
from .metrics_engine import (
    dashboard_metrics,
    inventory_value_by_category,
    pending_purchase_order_value,
    reorder_recommendations,
    slow_moving_items,
    stock_health_status,
    stock_movement_trend,
    supplier_performance,
    top_products_by_value,
    total_inventory_value,
    upcoming_purchase_orders,
    warehouse_distribution,
)
from .performance_engine import (
    PerformanceCategory,
    PerformanceReport,
    classify_product_performance,
    stock_turnover,
)
from .safety_stock_engine import (
    SafetyStockAdjustmentResult,
    SafetyStockChange,
    SafetyStockPlan,
    apply_safety_stock_plan,
    apply_safety_stock_policy,
    plan_safety_stock,
    service_level_to_z,
)
from .stockout_engine import (
    StockoutHistoryItem,
    StockoutPatternDetector,
    StockoutReport,
    analyze_stockout_history,
)

__all__ = [
    # Alerts
    "AlertAggregator",
    "AlertReport",
    "get_critical_alerts",
    # Anomalies
    "AnomalyDetector",
    "AnomalyItem",
    "AnomalyReport",
    "AnomalyType",
    "PriceVarianceDetector",
    "ProbableCause",
    "Severity",
    "UnusualTransactionDetector",
    "detect_unusual_transactions",
    # Metrics
    "dashboard_metrics",
    "inventory_value_by_category",
    "pending_purchase_order_value",
    "reorder_recommendations",
    "slow_moving_items",
    "stock_health_status",
    "stock_movement_trend",
    "supplier_performance",
    "top_products_by_value",
    "total_inventory_value",
    "upcoming_purchase_orders",
    "warehouse_distribution",
    # Performance
    "PerformanceCategory",
    "PerformanceReport",
    "classify_product_performance",
    "stock_turnover",
    # Safety stock
    "SafetyStockAdjustmentResult",
    "SafetyStockChange",
    "SafetyStockPlan",
    "apply_safety_stock_plan",
    "apply_safety_stock_policy",
    "plan_safety_stock",
    "service_level_to_z",
    # Stockouts
    "StockoutHistoryItem",
    "StockoutPatternDetector",
    "StockoutReport",
    "analyze_stockout_history",
]
