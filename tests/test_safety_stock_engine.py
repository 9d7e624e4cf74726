"""
═══════════════════════════════════════════════════════════════════════════════
                    Safety Stock Policy Engine Tests
═══════════════════════════════════════════════════════════════════════════════

Run with: python -m pytest tests/test_safety_stock_engine.py -v
"""
import asyncio
import math

import numpy as np
import pytest

from inventory_analytics.config import SafetyStockPolicy
from inventory_analytics.data_store import InMemoryInventoryStore, fetch_snapshot
from inventory_analytics.engines.safety_stock_engine import (
    DemandStatistics,
    apply_safety_stock_policy,
    build_daily_issue_series,
    change_percent,
    clamp_to_percentile,
    demand_statistics,
    plan_safety_stock,
    recommend_safety_stock,
    sample_std,
    service_level_to_z,
)
from inventory_analytics.exceptions import PersistenceError
from inventory_analytics.models import InventorySnapshot


def _stats(sigma_lead_time, z=1.6449):
    return DemandStatistics(mean_daily=0.0, sigma_daily=0.0, sigma_lead_time=sigma_lead_time, z=z)


class TestStatistics:
    """z lookup, outlier clamp and sample standard deviation."""

    def test_exact_service_levels(self):
        assert service_level_to_z(0.90) == 1.2816
        assert service_level_to_z(0.95) == 1.6449
        assert service_level_to_z(0.975) == 1.96
        assert service_level_to_z(0.99) == 2.3263

    def test_nearest_service_level(self):
        assert service_level_to_z(0.97) == 1.96
        assert service_level_to_z(0.5) == 1.2816
        assert service_level_to_z(0.999) == 2.3263

    def test_non_finite_service_level_defaults(self):
        assert service_level_to_z(float("nan")) == 1.6449
        assert service_level_to_z(None) == 1.6449

    def test_clamp_single_outlier(self):
        """29 zeros + 100: the 95th percentile is 0, so the spike is removed."""
        series = np.array([0.0] * 29 + [100.0])
        clamped = clamp_to_percentile(series)
        assert clamped.max() == 0.0

    def test_clamp_uses_sorted_position(self):
        series = np.arange(1.0, 11.0)
        clamped = clamp_to_percentile(series)
        # floor(0.95 * 9) = 8 -> sorted[8] = 9
        assert clamped.max() == 9.0
        assert clamped[:9].tolist() == series[:9].tolist()

    def test_clamp_empty(self):
        assert clamp_to_percentile(np.array([])).size == 0

    def test_sample_std(self):
        assert sample_std(np.array([5.0])) == 0.0
        assert sample_std(np.array([])) == 0.0
        assert sample_std(np.array([1.0, 2.0, 3.0, 4.0])) == pytest.approx(1.2909944, rel=1e-6)


class TestDailyIssueSeries:
    """30-day zero-filled issue series."""

    def test_series_window_and_filters(self, make_trx, as_of):
        snapshot = InventorySnapshot(transactions=[
            make_trx(0, "ISSUE", 10),
            make_trx(29, "ISSUE", 10),
            make_trx(30, "ISSUE", 99),          # outside the window
            make_trx(5, "RECEIPT", 50),         # receipts ignored
            make_trx(5, "ISSUE", 7, product_id="P2"),
            make_trx(5, "ISSUE", 7, warehouse_id="WH2"),
        ])
        series = build_daily_issue_series(snapshot.transactions_frame(), "WH1", "P1", as_of)

        assert len(series) == 30
        assert series[-1] == 10.0
        assert series[0] == 10.0
        assert series.sum() == 20.0

    def test_same_day_issues_are_summed(self, make_trx, as_of):
        snapshot = InventorySnapshot(transactions=[make_trx(3, "ISSUE", 4), make_trx(3, "ISSUE", 6)])
        series = build_daily_issue_series(snapshot.transactions_frame(), "WH1", "P1", as_of)
        assert series[-4] == 10.0
        assert series.sum() == 10.0

    def test_no_transactions(self, as_of):
        series = build_daily_issue_series(InventorySnapshot().transactions_frame(), "WH1", "P1", as_of)
        assert series.tolist() == [0.0] * 30


class TestRecommendation:
    """Recommendation pipeline: floor, cap, pack, fallback."""

    def test_all_zero_history_gives_minimum(self, make_balance, as_of):
        snapshot = InventorySnapshot(balances=[make_balance(safety_stock=50)])
        policy = SafetyStockPolicy(max_change_percent=0, min_safety_stock=5)

        plan = plan_safety_stock(snapshot, "WH1", policy, as_of)

        assert len(plan.changes) == 1
        assert plan.changes[0].recommended == 5.0

    def test_all_zero_history_from_zero_current(self, make_balance, as_of):
        snapshot = InventorySnapshot(balances=[make_balance(safety_stock=0)])
        policy = SafetyStockPolicy(max_change_percent=20, min_safety_stock=5)

        change = plan_safety_stock(snapshot, "WH1", policy, as_of).changes[0]

        assert change.recommended == 5.0
        assert change.change_percent == 100.0

    def test_upper_cap(self, make_balance, make_trx, as_of):
        """Highly variable demand is capped at +20% of the current value."""
        transactions = [make_trx(day, "ISSUE", 200) for day in range(0, 30, 2)]
        snapshot = InventorySnapshot(balances=[make_balance(safety_stock=100)], transactions=transactions)

        change = plan_safety_stock(snapshot, "WH1", SafetyStockPolicy(), as_of).changes[0]

        assert change.recommended == 120.0
        assert change.change_percent == pytest.approx(20.0)

    def test_lower_cap(self, make_balance, as_of):
        snapshot = InventorySnapshot(balances=[make_balance(safety_stock=1000)])
        change = plan_safety_stock(snapshot, "WH1", SafetyStockPolicy(), as_of).changes[0]
        assert change.recommended == 800.0

    @pytest.mark.parametrize("current", [0.0, 1.0, 7.0, 33.0, 100.0, 1000.0])
    @pytest.mark.parametrize("cap", [10.0, 20.0, 50.0])
    def test_change_bounded_by_cap(self, make_balance, make_trx, as_of, current, cap):
        transactions = [make_trx(day, "ISSUE", 5 + (day * 37) % 90) for day in range(30)]
        snapshot = InventorySnapshot(balances=[make_balance(safety_stock=current)], transactions=transactions)

        plan = plan_safety_stock(snapshot, "WH1", SafetyStockPolicy(max_change_percent=cap), as_of)

        for change in plan.changes:
            # integer rounding may add at most half a unit
            assert abs(change.recommended - current) <= cap / 100 * max(1.0, current) + 0.5

    def test_minimum_wins_over_cap(self, make_balance, as_of):
        snapshot = InventorySnapshot(balances=[make_balance(safety_stock=100)])
        policy = SafetyStockPolicy(max_change_percent=20, min_safety_stock=150)

        change = plan_safety_stock(snapshot, "WH1", policy, as_of).changes[0]

        assert change.recommended == 150.0

    @pytest.mark.parametrize("minimum", [0.0, 3.0, 25.0])
    def test_never_below_minimum(self, make_balance, make_trx, as_of, minimum):
        transactions = [make_trx(day, "ISSUE", 10 + day) for day in range(30)]
        snapshot = InventorySnapshot(
            balances=[make_balance(product_id=f"P{c}", safety_stock=c) for c in (0, 2, 10, 40, 400)],
            transactions=transactions,
        )
        plan = plan_safety_stock(snapshot, "WH1", SafetyStockPolicy(min_safety_stock=minimum), as_of)
        assert all(c.recommended >= minimum for c in plan.changes)

    def test_outlier_clamp_lowers_recommendation(self):
        series = np.array([0.0] * 29 + [100.0])
        policy = SafetyStockPolicy(max_change_percent=0)

        clamped = recommend_safety_stock(demand_statistics(series, policy), 0.0, policy)
        unclamped_sigma_lt = sample_std(series) * math.sqrt(policy.lead_time_days)
        unclamped = recommend_safety_stock(_stats(unclamped_sigma_lt), 0.0, policy)

        assert clamped == 0.0
        assert clamped < unclamped

    def test_round_to_pack(self):
        policy = SafetyStockPolicy(max_change_percent=0, round_to_pack=12)
        # round(1.6449 * 10) = 16 -> nearest multiple of 12
        assert recommend_safety_stock(_stats(10.0), 0.0, policy) == 12.0
        # round(1.6449 * 20) = 33 -> 36
        assert recommend_safety_stock(_stats(20.0), 0.0, policy) == 36.0

    def test_round_to_pack_minimum_one_pack(self):
        policy = SafetyStockPolicy(max_change_percent=0, round_to_pack=12)
        assert recommend_safety_stock(_stats(1.0), 0.0, policy) == 12.0

    def test_non_finite_falls_back_to_current(self):
        policy = SafetyStockPolicy(max_change_percent=0)
        assert recommend_safety_stock(_stats(float("inf")), 42.0, policy) == 42.0
        assert recommend_safety_stock(_stats(float("nan")), 42.0, policy) == 42.0

    def test_change_percent(self):
        assert change_percent(0.0, 5.0) == 100.0
        assert change_percent(100.0, 120.0) == pytest.approx(20.0)
        assert change_percent(100.0, 80.0) == pytest.approx(-20.0)


class TestPlan:
    """plan_safety_stock output shape."""

    def test_changes_sorted_by_magnitude(self, make_balance, as_of):
        snapshot = InventorySnapshot(balances=[
            make_balance(product_id="P1", safety_stock=100),
            make_balance(product_id="P2", safety_stock=0),
        ])
        plan = plan_safety_stock(snapshot, "WH1", SafetyStockPolicy(min_safety_stock=5), as_of)

        assert [c.product_id for c in plan.changes] == ["P2", "P1"]
        assert plan.changes[0].change_percent == 100.0
        assert plan.changes[1].change_percent == pytest.approx(-20.0)

    def test_unchanged_balances_not_listed(self, make_balance, as_of):
        snapshot = InventorySnapshot(balances=[make_balance(safety_stock=0)])
        plan = plan_safety_stock(snapshot, "WH1", SafetyStockPolicy(), as_of)
        assert plan.total_candidates == 1
        assert plan.changes == []

    def test_only_requested_warehouse(self, make_balance, as_of):
        snapshot = InventorySnapshot(balances=[
            make_balance("WH1", "P1", safety_stock=50),
            make_balance("WH2", "P1", safety_stock=50),
        ])
        plan = plan_safety_stock(snapshot, "WH1", SafetyStockPolicy(max_change_percent=0), as_of)
        assert plan.total_candidates == 1
        assert {c.warehouse_id for c in plan.changes} == {"WH1"}

    def test_reason_and_names(self, make_balance, make_product, make_warehouse, as_of):
        snapshot = InventorySnapshot(
            balances=[make_balance(safety_stock=50)],
            products=[make_product("P1", name="Resin")],
            warehouses=[make_warehouse("WH1", "Main")],
        )
        change = plan_safety_stock(snapshot, "WH1", SafetyStockPolicy(max_change_percent=0), as_of).changes[0]

        assert change.reason == "z=1.64, σ_d=0.00, L=7d"
        assert change.product_name == "Resin"
        assert change.warehouse_name == "Main"
        assert change.to_dict()["changePercent"] == -100.0


class FailingStore(InMemoryInventoryStore):
    """Store whose writes fail for selected products."""

    def __init__(self, failing_products, **records):
        super().__init__(**records)
        self.failing_products = set(failing_products)

    async def update_safety_stock(self, warehouse_id, product_id, safety_stock):
        if product_id in self.failing_products:
            raise PersistenceError(warehouse_id, product_id, "boom")
        return await super().update_safety_stock(warehouse_id, product_id, safety_stock)


class TestApply:
    """Write-back, persistence failures and idempotence."""

    def test_apply_writes_changes(self, make_balance, as_of):
        store = InMemoryInventoryStore(balances=[
            make_balance(product_id="P1", safety_stock=100),
            make_balance(product_id="P2", safety_stock=0),
        ])
        policy = SafetyStockPolicy(max_change_percent=0, min_safety_stock=5)

        async def run():
            snapshot = await fetch_snapshot(store)
            return await apply_safety_stock_policy(store, snapshot, "WH1", policy, as_of)

        result = asyncio.run(run())

        assert result.applied_count == 2
        assert result.total_candidates == 2
        assert {w["safetyStock"] for w in store.write_log} == {5.0}
        balances = asyncio.run(store.get_inventory_balances())
        assert all(b.safety_stock == 5.0 for b in balances)

    def test_failed_write_is_skipped(self, make_balance, as_of):
        store = FailingStore(["P1"], balances=[
            make_balance(product_id="P1", safety_stock=100),
            make_balance(product_id="P2", safety_stock=0),
        ])
        policy = SafetyStockPolicy(max_change_percent=0, min_safety_stock=5)

        async def run():
            snapshot = await fetch_snapshot(store)
            return await apply_safety_stock_policy(store, snapshot, "WH1", policy, as_of)

        result = asyncio.run(run())

        assert result.applied_count == 1
        assert result.total_candidates == 2
        assert [c.product_id for c in result.changes] == ["P2"]
        assert result.failed == [("WH1", "P1")]
        assert result.to_dict()["failed"] == [{"warehouseId": "WH1", "productId": "P1"}]

    def test_second_run_is_idempotent(self, make_balance, make_trx, as_of):
        store = InMemoryInventoryStore(
            balances=[
                make_balance(product_id="P1", safety_stock=100),
                make_balance(product_id="P2", safety_stock=0),
            ],
            transactions=[make_trx(day, "ISSUE", 3 + day % 5, product_id="P1") for day in range(30)],
        )
        policy = SafetyStockPolicy(max_change_percent=0, min_safety_stock=5)

        async def run_twice():
            first = await apply_safety_stock_policy(store, await fetch_snapshot(store), "WH1", policy, as_of)
            second = await apply_safety_stock_policy(store, await fetch_snapshot(store), "WH1", policy, as_of)
            return first, second

        first, second = asyncio.run(run_twice())

        assert first.applied_count == 2
        assert second.applied_count == 0
        assert second.changes == []

    def test_capped_change_keeps_moving_on_later_runs(self, make_balance, as_of):
        """With the default 20% cap a large correction is spread over several runs."""
        store = InMemoryInventoryStore(balances=[
            make_balance(product_id="P1", safety_stock=100),
            make_balance(product_id="P2", safety_stock=0),
        ])
        policy = SafetyStockPolicy()

        async def run_twice():
            first = await apply_safety_stock_policy(store, await fetch_snapshot(store), "WH1", policy, as_of)
            second = await apply_safety_stock_policy(store, await fetch_snapshot(store), "WH1", policy, as_of)
            return first, second

        first, second = asyncio.run(run_twice())

        assert [(c.product_id, c.recommended) for c in first.changes] == [("P1", 80.0)]
        assert [(c.product_id, c.recommended) for c in second.changes] == [("P1", 64.0)]
        assert [w["safetyStock"] for w in store.write_log] == [80.0, 64.0]
