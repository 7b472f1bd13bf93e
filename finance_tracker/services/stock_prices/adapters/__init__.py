"""
Price Provider Adapters

Each adapter implements the PriceProviderAdapter interface for a specific
quote API (Financial Modeling Prep, Yahoo Finance, Alpha Vantage).
"""

import os
from dataclasses import replace
from typing import Dict, List, Mapping, Optional

from ..config import PROVIDER_CONFIGS, DEFAULT_PROVIDER_ORDER, ProviderConfig, validate_provider_configs
from ..interfaces import PriceProviderAdapter
from .fmp_adapter import FMPAdapter
from .yahoo_adapter import YahooFinanceAdapter
from .alphavantage_adapter import AlphaVantageAdapter

ADAPTER_CLASSES = {
    "fmp": FMPAdapter,
    "yahoo": YahooFinanceAdapter,
    "alpha_vantage": AlphaVantageAdapter,
}


def build_default_adapters(
    env: Optional[Mapping[str, str]] = None,
    configs: Optional[Dict[str, ProviderConfig]] = None,
    timeout_seconds: Optional[float] = None,
) -> List[PriceProviderAdapter]:
    """
    Create adapters in DEFAULT_PROVIDER_ORDER.

    API keys are read from env (os.environ by default) using each config's
    api_key_env_var. There are no built-in fallback keys.
    """
    env = os.environ if env is None else env
    configs = dict(configs or PROVIDER_CONFIGS)
    if timeout_seconds is not None:
        for name, cfg in configs.items():
            configs[name] = replace(cfg, timeout_seconds=timeout_seconds)
    validate_provider_configs(configs)

    adapters: List[PriceProviderAdapter] = []
    for name in DEFAULT_PROVIDER_ORDER:
        cfg = configs.get(name)
        if cfg is None:
            continue
        api_key = env.get(cfg.api_key_env_var, "").strip() if cfg.api_key_env_var else None
        adapters.append(ADAPTER_CLASSES[name](cfg, api_key=api_key))
    return adapters


__all__ = [
    "FMPAdapter",
    "YahooFinanceAdapter",
    "AlphaVantageAdapter",
    "build_default_adapters",
]
