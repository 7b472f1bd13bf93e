"""
Stock Price Service Package

Multi-provider stock price fetching for the finance tracker:
- Provider adapters (FMP, Yahoo Finance, Alpha Vantage)
- Region classification and provider symbol mapping
- Batch fetcher with provider rotation and rate-limit cooldowns
- Cached price service with retry/backoff
- Update monitor with threshold alerts
"""

from .interfaces import (
    Alert,
    AlertSeverity,
    AlertType,
    BatchFetchResult,
    PriceProviderAdapter,
    ProviderAttempt,
    ProviderError,
    ProviderRateLimitError,
    ProviderStatus,
    ProviderTimeoutError,
    Region,
    UpdateResult,
)
from .config import (
    PROVIDER_CONFIGS,
    DEFAULT_PROVIDER_ORDER,
    REGION_PROVIDER_ORDER,
    UPDATE_TRIGGERS,
    AlertThresholds,
    ProviderConfig,
    UpdateTrigger,
)
from .market_detector import (
    classify_region,
    group_symbols_by_region,
    map_symbol_for_api,
    map_symbol_from_api,
)
from .adapters import build_default_adapters
from .health import ProviderHealthRegistry
from .fetcher import BatchPriceFetcher, validate_price
from .cache import PriceCache
from .service import PriceService
from .monitor import StockPriceMonitor, log_alert_handler

__all__ = [
    'Alert',
    'AlertSeverity',
    'AlertType',
    'AlertThresholds',
    'BatchFetchResult',
    'BatchPriceFetcher',
    'DEFAULT_PROVIDER_ORDER',
    'PROVIDER_CONFIGS',
    'PriceCache',
    'PriceProviderAdapter',
    'PriceService',
    'ProviderAttempt',
    'ProviderConfig',
    'ProviderError',
    'ProviderHealthRegistry',
    'ProviderRateLimitError',
    'ProviderStatus',
    'ProviderTimeoutError',
    'REGION_PROVIDER_ORDER',
    'Region',
    'StockPriceMonitor',
    'UPDATE_TRIGGERS',
    'UpdateResult',
    'UpdateTrigger',
    'build_default_adapters',
    'classify_region',
    'group_symbols_by_region',
    'log_alert_handler',
    'map_symbol_for_api',
    'map_symbol_from_api',
    'validate_price',
]
