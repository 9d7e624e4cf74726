"""
Inventory Analytics - Daily Safety Stock Job
============================================

Recalibrates safety stock for every active warehouse from one snapshot and
returns a run report.

Usage:
    inventory-safety-stock-job --warehouse WH-01 --service-level 0.975

    # or from code
    async with HttpInventoryStore() as store:
        report = await run_daily_safety_stock_job(store)

Policy values resolve as: SS_* environment variables > command-line / caller
overrides > defaults.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .config import resolve_policy
from .data_store import HttpInventoryStore, InventoryDataStore, fetch_snapshot
from .engines.safety_stock_engine import SafetyStockAdjustmentResult, apply_safety_stock_policy
from .exceptions import InventoryAnalyticsError

logger = logging.getLogger(__name__)


async def run_daily_safety_stock_job(
    store: InventoryDataStore,
    policy_overrides: Optional[Mapping[str, Any]] = None,
    warehouses: Optional[Sequence[str]] = None,
    as_of: Any = None,
) -> Dict[str, Any]:
    """
    Run the safety stock policy over the active warehouses.

    A warehouse whose run fails is logged and left out of the report; the
    remaining warehouses still run.

    Args:
        store: Data store to read from and write back to
        policy_overrides: Policy values taking precedence over the environment
        warehouses: Restrict the run to these warehouse ids
        as_of: End of the issue history window (default now)

    Raises:
        UpstreamUnavailableError: the snapshot could not be fetched
    """
    started_at = datetime.now(timezone.utc)
    policy = resolve_policy(policy_overrides)
    snapshot = await fetch_snapshot(store)

    targets = [
        w for w in snapshot.warehouses
        if w.is_active and (warehouses is None or w.warehouse_id in warehouses)
    ]
    logger.info(f"Daily safety stock job: {len(targets)} warehouses, policy {policy.to_dict()}")

    results: List[SafetyStockAdjustmentResult] = []
    for warehouse in targets:
        try:
            result = await apply_safety_stock_policy(store, snapshot, warehouse.warehouse_id, policy, as_of)
        except Exception:
            logger.exception(f"Safety stock run failed for {warehouse.name} ({warehouse.warehouse_id})")
            continue
        results.append(result)

    finished_at = datetime.now(timezone.utc)
    total_candidates = sum(r.total_candidates for r in results)
    total_applied = sum(r.applied_count for r in results)
    logger.info(f"Safety stock updated: {total_applied}/{total_candidates}")

    return {
        "startedAt": started_at.isoformat(),
        "finishedAt": finished_at.isoformat(),
        "durationSeconds": round((finished_at - started_at).total_seconds(), 3),
        "policy": policy.to_dict(),
        "warehouses": [{"warehouseId": w.warehouse_id, "name": w.name} for w in targets],
        "safetyStock": {
            "totalCandidates": total_candidates,
            "totalApplied": total_applied,
            "perWarehouse": [
                {
                    "warehouseId": r.warehouse_id,
                    "applied": r.applied_count,
                    "candidates": r.total_candidates,
                }
                for r in results
            ],
            "changes": [c.to_dict() for r in results for c in r.changes],
        },
    }


# ═══════════════════════════════════════════════════════════════════════════════
# CONSOLE ENTRY POINT
# ═══════════════════════════════════════════════════════════════════════════════

def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Recalibrate safety stock for every active warehouse and print a JSON report.",
    )
    parser.add_argument(
        "--warehouse",
        action="append",
        dest="warehouses",
        metavar="ID",
        help="Limit the run to this warehouse (repeatable)",
    )
    parser.add_argument("--service-level", type=float, help="Target service level, e.g. 0.95")
    parser.add_argument("--lead-time-days", type=float, help="Replenishment lead time in days")
    parser.add_argument("--max-change-percent", type=float, help="Max change per run (0 disables)")
    parser.add_argument("--round-to-pack", type=float, help="Round recommendations to this pack size")
    parser.add_argument("--min-safety-stock", type=float, help="Floor for every recommendation")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    return parser.parse_args(argv)


def _policy_overrides(args: argparse.Namespace) -> Dict[str, float]:
    candidates = {
        "service_level": args.service_level,
        "lead_time_days": args.lead_time_days,
        "max_change_percent": args.max_change_percent,
        "round_to_pack": args.round_to_pack,
        "min_safety_stock": args.min_safety_stock,
    }
    return {name: value for name, value in candidates.items() if value is not None}


async def _run(args: argparse.Namespace) -> Dict[str, Any]:
    async with HttpInventoryStore() as store:
        return await run_daily_safety_stock_job(
            store,
            policy_overrides=_policy_overrides(args),
            warehouses=args.warehouses,
        )


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        report = asyncio.run(_run(args))
    except InventoryAnalyticsError as exc:
        logger.error(f"Daily safety stock job failed: {exc}")
        return 1

    print(json.dumps(report, indent=2, default=str))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
