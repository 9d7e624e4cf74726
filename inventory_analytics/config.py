"""
Inventory Analytics - Configuration
===================================

Runtime configuration for the data store client and the safety stock policy.

Values come from three layers, highest priority first:
    1. environment variables (a local .env file is loaded if present)
    2. explicit overrides passed by the caller
    3. dataclass defaults

Environment variables:
    DATABASE_API_URL        Base URL of the inventory data store
    DATABASE_API_TIMEOUT    Request timeout in seconds (default 30)
    SS_SERVICE_LEVEL        Target service level (default 0.95)
    SS_LEAD_TIME_DAYS       Replenishment lead time (default 7)
    SS_MAX_CHANGE_PERCENT   Max change per run, 0 disables the cap (default 20)
    SS_ROUND_TO_PACK        Pack size to round to (optional)
    SS_MIN_SAFETY_STOCK     Floor for any recommendation (default 0)
"""

from __future__ import annotations

import logging
import math
import os
from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Mapping, Optional

from dotenv import load_dotenv

# Load environment variables from .env if present
load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_API_URL = "http://localhost:3000"


# ═══════════════════════════════════════════════════════════════════════════════
# DATA STORE
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class DataStoreConfig:
    """Connection settings for the remote inventory data store."""
    base_url: str = DEFAULT_DATABASE_API_URL
    timeout_seconds: float = 30.0

    @classmethod
    def from_env(cls) -> DataStoreConfig:
        timeout = _parse_float("DATABASE_API_TIMEOUT", os.getenv("DATABASE_API_TIMEOUT"))
        return cls(
            base_url=os.getenv("DATABASE_API_URL") or DEFAULT_DATABASE_API_URL,
            timeout_seconds=timeout if timeout is not None and timeout > 0 else 30.0,
        )


# ═══════════════════════════════════════════════════════════════════════════════
# SAFETY STOCK POLICY
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class SafetyStockPolicy:
    """
    Safety stock recalibration policy.

    Attributes:
        service_level: Target probability of not stocking out during lead time
        lead_time_days: Replenishment lead time (days)
        max_change_percent: Max relative change per run; 0 disables the cap
        round_to_pack: Pack size the recommendation is rounded to (None = off)
        min_safety_stock: Floor applied to every recommendation
    """
    service_level: float = 0.95
    lead_time_days: float = 7.0
    max_change_percent: float = 20.0
    round_to_pack: Optional[float] = None
    min_safety_stock: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "serviceLevel": self.service_level,
            "leadTimeDays": self.lead_time_days,
            "maxChangePercent": self.max_change_percent,
            "roundToPack": self.round_to_pack,
            "minSafetyStock": self.min_safety_stock,
        }


# Environment variable for each policy field
POLICY_ENV_VARS = {
    "service_level": "SS_SERVICE_LEVEL",
    "lead_time_days": "SS_LEAD_TIME_DAYS",
    "max_change_percent": "SS_MAX_CHANGE_PERCENT",
    "round_to_pack": "SS_ROUND_TO_PACK",
    "min_safety_stock": "SS_MIN_SAFETY_STOCK",
}

# Wire names accepted in override mappings
POLICY_OVERRIDE_ALIASES = {
    "serviceLevel": "service_level",
    "leadTimeDays": "lead_time_days",
    "maxChangePercent": "max_change_percent",
    "roundToPack": "round_to_pack",
    "minSafetyStock": "min_safety_stock",
}


def _parse_float(name: str, raw: Any) -> Optional[float]:
    """Parse a numeric setting; unparseable or non-finite values are ignored."""
    if raw is None or raw == "":
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring non-numeric value for {name}: {raw!r}")
        return None
    if not math.isfinite(value):
        logger.warning(f"Ignoring non-finite value for {name}: {raw!r}")
        return None
    return value


def resolve_policy(overrides: Optional[Mapping[str, Any]] = None) -> SafetyStockPolicy:
    """
    Build the effective SafetyStockPolicy.

    Args:
        overrides: Optional mapping of policy fields, in snake_case or the
            camelCase wire names (serviceLevel, leadTimeDays, ...)

    Returns:
        SafetyStockPolicy with environment > overrides > defaults
    """
    values: Dict[str, Any] = asdict(SafetyStockPolicy())

    valid_fields = {f.name for f in fields(SafetyStockPolicy)}
    for key, raw in (overrides or {}).items():
        field_name = POLICY_OVERRIDE_ALIASES.get(key, key)
        if field_name not in valid_fields:
            logger.warning(f"Unknown policy override: {key}")
            continue
        if raw is None:
            if field_name == "round_to_pack":
                values[field_name] = None
            continue
        parsed = _parse_float(key, raw)
        if parsed is not None:
            values[field_name] = parsed

    # Deployment settings win over per-run overrides
    for field_name, env_var in POLICY_ENV_VARS.items():
        parsed = _parse_float(env_var, os.getenv(env_var))
        if parsed is not None:
            values[field_name] = parsed

    if values["round_to_pack"] is not None and values["round_to_pack"] <= 0:
        values["round_to_pack"] = None

    return SafetyStockPolicy(**values)
