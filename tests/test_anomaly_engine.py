"""
═══════════════════════════════════════════════════════════════════════════════
                    Anomaly Detection Tests
═══════════════════════════════════════════════════════════════════════════════

Windows are 7 days: recent = days_ago 0..6, baseline = days_ago 7..13.
"""
import pytest

from inventory_analytics.engines.anomaly_engine import (
    AnomalyType,
    PriceVarianceDetector,
    ProbableCause,
    Severity,
    UnusualTransactionDetector,
    attribute_probable_cause,
    detect_unusual_transactions,
    price_severity,
    severity_for_change,
)
from inventory_analytics.models import InventorySnapshot, TransactionType

RECENT_DAYS = range(0, 7)
BASELINE_DAYS = range(7, 14)


@pytest.fixture
def windows(make_trx):
    """Build daily transactions for both windows of one (product, warehouse, type)."""
    def _build(recent_qty, baseline_qty, trx_type="ISSUE", product_id="P1", warehouse_id="WH1"):
        trx = [make_trx(d, trx_type, recent_qty, warehouse_id, product_id) for d in RECENT_DAYS]
        trx += [make_trx(d, trx_type, baseline_qty, warehouse_id, product_id) for d in BASELINE_DAYS]
        return trx
    return _build


class TestSeverity:
    """Severity bands."""

    def test_unusual_transaction_bands(self):
        assert severity_for_change(300) == Severity.CRITICAL
        assert severity_for_change(-300) == Severity.CRITICAL
        assert severity_for_change(299.9) == Severity.HIGH
        assert severity_for_change(200) == Severity.HIGH
        assert severity_for_change(150) == Severity.MEDIUM
        assert severity_for_change(149.9) == Severity.LOW

    def test_price_bands(self):
        assert price_severity(45) == Severity.CRITICAL
        assert price_severity(-30) == Severity.HIGH
        assert price_severity(20) == Severity.MEDIUM
        assert price_severity(19.9) is None


class TestProbableCause:
    """Ordered root-cause chain."""

    def _cause(self, **overrides):
        params = dict(
            trx_type=TransactionType.ISSUE,
            change_percentage=200.0,
            has_duplicates=False,
            max_recent_day=30.0,
            recent_avg=30.0,
            recent_active_days=7,
            baseline_active_days=7,
        )
        params.update(overrides)
        return attribute_probable_cause(**params)

    def test_duplicates_win_over_everything(self):
        assert self._cause(has_duplicates=True, max_recent_day=1000.0) == ProbableCause.DUPLICATE_ENTRY

    def test_data_error_before_demand_spike(self):
        assert self._cause(max_recent_day=151.0) == ProbableCause.DATA_ERROR

    def test_demand_spike_before_process_change(self):
        assert self._cause() == ProbableCause.DEMAND_SPIKE

    def test_receipt_delay(self):
        assert self._cause(trx_type=TransactionType.RECEIPT, change_percentage=-90.0) == ProbableCause.RECEIPT_DELAY

    def test_process_change(self):
        assert self._cause(trx_type=TransactionType.RECEIPT) == ProbableCause.PROCESS_CHANGE

    def test_unknown(self):
        cause = self._cause(trx_type=TransactionType.RECEIPT, recent_active_days=2)
        assert cause == ProbableCause.UNKNOWN


class TestUnusualTransactions:
    """Baseline-vs-recent detector."""

    def test_demand_spike(self, windows, as_of):
        """recentAvg=30, baselineAvg=10, ISSUE -> +200%, high, demand_spike."""
        snapshot = InventorySnapshot(transactions=windows(30, 10))

        anomalies = UnusualTransactionDetector().detect(snapshot, as_of)

        assert len(anomalies) == 1
        anomaly = anomalies[0]
        assert anomaly.type == AnomalyType.UNUSUAL_TRANSACTION
        assert anomaly.change_percentage == pytest.approx(200.0)
        assert anomaly.severity == Severity.HIGH
        assert anomaly.probable_cause == ProbableCause.DEMAND_SPIKE
        assert anomaly.baseline_value == pytest.approx(10.0)
        assert anomaly.current_value == pytest.approx(30.0)
        assert anomaly.trx_type == TransactionType.ISSUE
        assert (anomaly.product_id, anomaly.warehouse_id) == ("P1", "WH1")

    def test_below_threshold_not_emitted(self, windows, as_of):
        snapshot = InventorySnapshot(transactions=windows(20, 10))
        assert UnusualTransactionDetector().detect(snapshot, as_of) == []

    def test_zero_baseline_skipped(self, make_trx, as_of):
        snapshot = InventorySnapshot(transactions=[make_trx(d, "ISSUE", 50) for d in RECENT_DAYS])
        assert UnusualTransactionDetector().detect(snapshot, as_of) == []

    def test_duplicate_entry(self, windows, make_trx, as_of):
        transactions = windows(30, 10)
        transactions[0] = make_trx(0, "ISSUE", 30, ref_type="SO", ref_id="SO-9")
        transactions[1] = make_trx(1, "ISSUE", 30, ref_type="SO", ref_id="SO-9")
        snapshot = InventorySnapshot(transactions=transactions)

        anomaly = UnusualTransactionDetector().detect(snapshot, as_of)[0]

        assert anomaly.probable_cause == ProbableCause.DUPLICATE_ENTRY

    def test_empty_ref_ids_are_not_duplicates(self, windows, as_of):
        snapshot = InventorySnapshot(transactions=windows(30, 10))
        anomaly = UnusualTransactionDetector().detect(snapshot, as_of)[0]
        assert anomaly.probable_cause != ProbableCause.DUPLICATE_ENTRY

    def test_data_error(self, make_trx, as_of):
        transactions = [make_trx(2, "ISSUE", 300)]
        transactions += [make_trx(d, "ISSUE", 10) for d in BASELINE_DAYS]
        snapshot = InventorySnapshot(transactions=transactions)

        anomaly = UnusualTransactionDetector().detect(snapshot, as_of)[0]

        assert anomaly.severity == Severity.CRITICAL
        assert anomaly.probable_cause == ProbableCause.DATA_ERROR

    def test_receipt_delay_with_lower_threshold(self, windows, as_of):
        snapshot = InventorySnapshot(transactions=windows(10, 100, trx_type="RECEIPT"))

        anomaly = UnusualTransactionDetector(threshold_percentage=50).detect(snapshot, as_of)[0]

        assert anomaly.change_percentage == pytest.approx(-90.0)
        assert anomaly.severity == Severity.LOW
        assert anomaly.probable_cause == ProbableCause.RECEIPT_DELAY

    def test_process_change(self, windows, as_of):
        snapshot = InventorySnapshot(transactions=windows(30, 10, trx_type="RECEIPT"))
        anomaly = UnusualTransactionDetector().detect(snapshot, as_of)[0]
        assert anomaly.probable_cause == ProbableCause.PROCESS_CHANGE

    def test_unknown_cause(self, make_trx, as_of):
        transactions = [make_trx(1, "RECEIPT", 105), make_trx(3, "RECEIPT", 105)]
        transactions += [make_trx(d, "RECEIPT", 10) for d in BASELINE_DAYS]
        snapshot = InventorySnapshot(transactions=transactions)

        anomaly = UnusualTransactionDetector().detect(snapshot, as_of)[0]

        assert anomaly.change_percentage == pytest.approx(200.0)
        assert anomaly.probable_cause == ProbableCause.UNKNOWN

    def test_tuples_are_independent(self, windows, as_of):
        transactions = windows(30, 10, product_id="P1")
        transactions += windows(30, 10, product_id="P1", warehouse_id="WH2")
        transactions += windows(10, 10, product_id="P1", trx_type="RECEIPT")
        snapshot = InventorySnapshot(transactions=transactions)

        anomalies = UnusualTransactionDetector().detect(snapshot, as_of)

        assert sorted(a.warehouse_id for a in anomalies) == ["WH1", "WH2"]
        assert all(a.trx_type == TransactionType.ISSUE for a in anomalies)

    def test_sorted_by_magnitude(self, windows, make_trx, as_of):
        transactions = windows(30, 10, product_id="P1")
        transactions += windows(45, 10, product_id="P2")
        snapshot = InventorySnapshot(transactions=transactions)

        anomalies = UnusualTransactionDetector().detect(snapshot, as_of)

        assert [a.product_id for a in anomalies] == ["P2", "P1"]

    @pytest.mark.parametrize("recent_qty", [15, 24, 25, 26, 30, 39, 40, 41, 60, 200])
    def test_low_never_emitted_with_default_threshold(self, windows, as_of, recent_qty):
        snapshot = InventorySnapshot(transactions=windows(recent_qty, 10))
        anomalies = UnusualTransactionDetector().detect(snapshot, as_of)
        assert all(a.severity != Severity.LOW for a in anomalies)

    def test_empty_snapshot(self, as_of):
        assert UnusualTransactionDetector().detect(InventorySnapshot(), as_of) == []


class TestReport:
    """detect_unusual_transactions wrapper."""

    def test_summary_counts(self, windows, as_of):
        transactions = windows(30, 10, product_id="P1")        # +200% high
        transactions += windows(45, 10, product_id="P2")       # +350% critical
        transactions += windows(26, 10, product_id="P3")       # +160% medium
        report = detect_unusual_transactions(InventorySnapshot(transactions=transactions), as_of=as_of)

        assert report.summary == {"total": 3, "critical": 1, "high": 1}

    def test_to_dict_contract(self, windows, as_of):
        report = detect_unusual_transactions(InventorySnapshot(transactions=windows(30, 10)), as_of=as_of)
        item = report.to_dict()["anomalies"][0]

        assert item["type"] == "unusual_transaction"
        assert item["severity"] == "high"
        assert item["probableCause"] == "demand_spike"
        assert item["changePercentage"] == 200.0
        assert item["trxType"] == "ISSUE"


class TestPriceVariance:
    """PO unit cost, last 7 days vs preceding 30."""

    def _items(self, make_po_item, product_id, recent_cost, baseline_cost, recent_count=3):
        items = [make_po_item(product_id, baseline_cost, days_ago=d) for d in (10, 15, 20)]
        items += [make_po_item(product_id, recent_cost, days_ago=d) for d in (1, 2, 3, 4)[:recent_count]]
        return items

    def test_price_variance(self, make_po_item, as_of):
        items = self._items(make_po_item, "P1", 15.0, 10.0)          # +50%
        items += self._items(make_po_item, "P2", 12.0, 10.0)         # +20%
        items += self._items(make_po_item, "P3", 11.0, 10.0)         # +10%, dropped
        items += self._items(make_po_item, "P4", 30.0, 10.0, 2)      # too few observations
        snapshot = InventorySnapshot(purchase_order_items=items)

        anomalies = PriceVarianceDetector().detect(snapshot, as_of)

        assert [(a.product_id, a.severity) for a in anomalies] == [
            ("P1", Severity.CRITICAL),
            ("P2", Severity.MEDIUM),
        ]
        assert all(a.type == AnomalyType.PRICE_VARIANCE for a in anomalies)
        assert all(a.probable_cause == ProbableCause.UNKNOWN for a in anomalies)
        assert all(a.warehouse_id is None for a in anomalies)
        assert anomalies[0].baseline_value == pytest.approx(10.0)
        assert anomalies[0].current_value == pytest.approx(15.0)

    def test_old_items_ignored(self, make_po_item, as_of):
        items = [make_po_item("P1", 10.0, days_ago=d) for d in (40, 45, 50)]
        items += [make_po_item("P1", 20.0, days_ago=d) for d in (1, 2, 3)]
        assert PriceVarianceDetector().detect(InventorySnapshot(purchase_order_items=items), as_of) == []
