"""
Inventory Analytics - Feature Flags
===================================

Liga e desliga os detetores de anomalias usados pelo agregador de alertas.

Uso:
    from inventory_analytics.feature_flags import FeatureFlags

    if FeatureFlags.is_enabled("price_variance"):
        detectors.append(PriceVarianceDetector())

Configuração via variáveis de ambiente:
    INVENTORY_ENABLE_UNUSUAL_TRANSACTIONS=true
    INVENTORY_ENABLE_STOCKOUT_ALERTS=true
    INVENTORY_ENABLE_PRICE_VARIANCE=false
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# FEATURE FLAGS CLASS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class FeatureFlagsConfig:
    """
    Configuração de feature flags.

    Por omissão ficam ativos os detetores de transações invulgares e de
    ruturas; o detetor de variação de preço (experimental) fica desligado.
    """
    enable_unusual_transactions: bool = True
    enable_stockout_alerts: bool = True
    enable_price_variance: bool = False


class FeatureFlags:
    """
    Singleton para gestão de feature flags.

    Carrega configuração de variáveis de ambiente ou usa defaults.

    Uso:
        if FeatureFlags.is_enabled("price_variance"):
            ...

        FeatureFlags.set_flag("price_variance", True)  # testes
        FeatureFlags.reset()
    """

    _instance: Optional[FeatureFlagsConfig] = None

    _ENV_MAPPING = {
        "INVENTORY_ENABLE_UNUSUAL_TRANSACTIONS": "enable_unusual_transactions",
        "INVENTORY_ENABLE_STOCKOUT_ALERTS": "enable_stockout_alerts",
        "INVENTORY_ENABLE_PRICE_VARIANCE": "enable_price_variance",
    }

    _FEATURE_NAMES = {
        "unusual_transactions": "enable_unusual_transactions",
        "stockout": "enable_stockout_alerts",
        "price_variance": "enable_price_variance",
    }

    @classmethod
    def _load_from_env(cls) -> FeatureFlagsConfig:
        """Carrega configuração de variáveis de ambiente."""
        config = FeatureFlagsConfig()

        for env_var, attr_name in cls._ENV_MAPPING.items():
            value = os.environ.get(env_var)
            if value:
                enabled = value.strip().lower() in ("true", "1", "yes")
                setattr(config, attr_name, enabled)
                logger.info(f"Feature flag {attr_name} = {enabled}")

        return config

    @classmethod
    def get_config(cls) -> FeatureFlagsConfig:
        """Obtém configuração atual."""
        if cls._instance is None:
            cls._instance = cls._load_from_env()
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Reset para recarregar config."""
        cls._instance = None

    @classmethod
    def is_enabled(cls, feature: str) -> bool:
        """
        Verifica se feature está ativa.

        Args:
            feature: unusual_transactions, stockout ou price_variance
        """
        attr_name = cls._FEATURE_NAMES.get(feature)
        if attr_name is None:
            return False
        return bool(getattr(cls.get_config(), attr_name))

    @classmethod
    def set_flag(cls, feature: str, enabled: bool) -> bool:
        """
        Define flag em runtime (para testes).

        Returns:
            True se sucesso
        """
        attr_name = cls._FEATURE_NAMES.get(feature)
        if attr_name is None:
            logger.warning(f"Feature flag desconhecida: {feature}")
            return False
        setattr(cls.get_config(), attr_name, enabled)
        logger.info(f"Feature {feature} definida como {enabled}")
        return True

    @classmethod
    def to_dict(cls) -> Dict[str, Any]:
        """Exporta configuração como dict."""
        return {name: cls.is_enabled(name) for name in cls._FEATURE_NAMES}
