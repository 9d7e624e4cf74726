"""
Fixtures comuns para todos os testes do inventory analytics.

Os builders devolvem funções fábrica: cada teste indica só os campos que
lhe interessam. Todas as datas são relativas ao instante fixo AS_OF.
"""
from datetime import datetime, timedelta, timezone

import pytest

from inventory_analytics.feature_flags import FeatureFlags
from inventory_analytics.models import (
    InventoryBalance,
    InventorySnapshot,
    InventoryTransaction,
    Product,
    PurchaseOrder,
    PurchaseOrderItem,
    Supplier,
    Warehouse,
)

AS_OF = datetime(2025, 6, 30, 12, 0, tzinfo=timezone.utc)

POLICY_ENV_VARS = [
    "SS_SERVICE_LEVEL",
    "SS_LEAD_TIME_DAYS",
    "SS_MAX_CHANGE_PERCENT",
    "SS_ROUND_TO_PACK",
    "SS_MIN_SAFETY_STOCK",
]

FLAG_ENV_VARS = [
    "INVENTORY_ENABLE_UNUSUAL_TRANSACTIONS",
    "INVENTORY_ENABLE_STOCKOUT_ALERTS",
    "INVENTORY_ENABLE_PRICE_VARIANCE",
]


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Isola os testes de variáveis de ambiente e do cache de feature flags."""
    for name in POLICY_ENV_VARS + FLAG_ENV_VARS + ["DATABASE_API_URL", "DATABASE_API_TIMEOUT"]:
        monkeypatch.delenv(name, raising=False)
    FeatureFlags.reset()
    yield
    FeatureFlags.reset()


@pytest.fixture
def as_of():
    """Instante de referência de todos os testes."""
    return AS_OF


@pytest.fixture
def make_balance():
    """Saldo de inventário de exemplo."""
    def _make(warehouse_id="WH1", product_id="P1", qty=100.0, safety_stock=10.0, reorder_point=20.0):
        return InventoryBalance(
            warehouse_id=warehouse_id,
            product_id=product_id,
            qty_on_hand=qty,
            qty_reserved=0.0,
            safety_stock=safety_stock,
            reorder_point=reorder_point,
            updated_at=AS_OF,
        )
    return _make


@pytest.fixture
def make_trx():
    """
    Transação de exemplo, `days_ago` dias antes de AS_OF.

    Por omissão signed_qty = -qty para ISSUE e +qty para RECEIPT.
    """
    counter = {"n": 0}

    def _make(days_ago, trx_type="ISSUE", qty=10.0, warehouse_id="WH1", product_id="P1",
              ref_type="", ref_id="", signed_qty=None):
        counter["n"] += 1
        when = AS_OF - timedelta(days=days_ago)
        if signed_qty is None:
            signed_qty = -qty if trx_type == "ISSUE" else qty
        return InventoryTransaction(
            trx_id=f"T{counter['n']:04d}",
            trx_date=when,
            warehouse_id=warehouse_id,
            product_id=product_id,
            trx_type=trx_type,
            qty=qty,
            signed_qty=signed_qty,
            ref_type=ref_type,
            ref_id=ref_id,
            created_at=when,
        )
    return _make


@pytest.fixture
def make_product():
    """Produto de exemplo."""
    def _make(product_id="P1", category="Raw Material", name=None, is_active=True):
        return Product(
            product_id=product_id,
            sku=f"SKU-{product_id}",
            name=name or f"Product {product_id}",
            category=category,
            uom="kg",
            is_active=is_active,
        )
    return _make


@pytest.fixture
def make_warehouse():
    """Armazém de exemplo."""
    def _make(warehouse_id="WH1", name=None, is_active=True):
        return Warehouse(
            warehouse_id=warehouse_id,
            name=name or f"Warehouse {warehouse_id}",
            is_active=is_active,
        )
    return _make


@pytest.fixture
def make_po_item():
    """Linha de encomenda de exemplo, criada `days_ago` dias antes de AS_OF."""
    counter = {"n": 0}

    def _make(product_id="P1", unit_cost=1.0, days_ago=1, qty_ordered=10.0, po_id="PO1"):
        counter["n"] += 1
        return PurchaseOrderItem(
            po_item_id=f"POI{counter['n']:04d}",
            po_id=po_id,
            product_id=product_id,
            qty_ordered=qty_ordered,
            unit_cost=unit_cost,
            qty_received=0.0,
            created_at=AS_OF - timedelta(days=days_ago),
        )
    return _make


@pytest.fixture
def metrics_snapshot(make_balance, make_trx, make_product, make_warehouse, make_po_item):
    """
    Snapshot completo para as métricas.

    Valores (último custo unitário P1=5, P2=2, P3 desconhecido):
        WH1/P1 qty 100 -> 500   OK
        WH1/P2 qty 10  -> 20    Critical
        WH2/P1 qty 30  -> 150   Warning
        WH2/P3 qty 45  -> 0     Warning
    """
    return InventorySnapshot(
        balances=[
            make_balance("WH1", "P1", qty=100, safety_stock=20, reorder_point=50),
            make_balance("WH1", "P2", qty=10, safety_stock=20, reorder_point=40),
            make_balance("WH2", "P1", qty=30, safety_stock=10, reorder_point=50),
            make_balance("WH2", "P3", qty=45, safety_stock=10, reorder_point=50),
        ],
        transactions=[
            make_trx(1, "ISSUE", 10, "WH1", "P1"),
            make_trx(1, "RECEIPT", 30, "WH1", "P1"),
            make_trx(2, "ISSUE", 5, "WH1", "P1"),
            make_trx(40, "ISSUE", 3, "WH2", "P1"),
        ],
        products=[
            make_product("P1", "Raw Material", "Resin"),
            make_product("P2", "Additive", "Dye"),
            make_product("P3", "Packaging", "Box"),
        ],
        warehouses=[
            make_warehouse("WH1", "Main"),
            make_warehouse("WH2", "Overflow", is_active=False),
        ],
        purchase_orders=[
            PurchaseOrder(
                po_id="PO1", supplier_id="S1", status="Completed",
                expected_date=AS_OF - timedelta(days=35),
                updated_at=AS_OF - timedelta(days=32),
            ),
            PurchaseOrder(
                po_id="PO2", supplier_id="S1", status="Pending",
                expected_date=AS_OF + timedelta(days=5),
            ),
            PurchaseOrder(
                po_id="PO3", supplier_id="S2", status="Completed",
                expected_date=AS_OF - timedelta(days=10),
                updated_at=AS_OF - timedelta(days=11),
            ),
            PurchaseOrder(
                po_id="PO4", supplier_id="S2", status="Cancelled",
                expected_date=AS_OF + timedelta(days=3),
            ),
        ],
        purchase_order_items=[
            make_po_item("P1", unit_cost=4.0, days_ago=30, qty_ordered=10, po_id="PO1"),
            make_po_item("P1", unit_cost=5.0, days_ago=2, qty_ordered=20, po_id="PO2"),
            make_po_item("P2", unit_cost=2.0, days_ago=2, qty_ordered=5, po_id="PO2"),
        ],
        suppliers=[
            Supplier(supplier_id="S1", name="Acme", terms_days=30),
            Supplier(supplier_id="S2", name="Globex", is_active=False),
        ],
        fetched_at=AS_OF,
    )
