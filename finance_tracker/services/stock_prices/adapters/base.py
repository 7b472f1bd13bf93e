"""
Base Adapter with Common Utilities

Provides shared functionality for all price provider adapters:
- Config-driven batch size / delay / timeout
- Error classification (rate limit, timeout)
- Safe numeric conversion of loosely-typed JSON fields
"""

import logging
import math
from abc import ABC
from typing import Optional, List, Dict

import requests

from ..config import ProviderConfig
from ..interfaces import PriceProviderAdapter

logger = logging.getLogger(__name__)


RATE_LIMIT_INDICATORS = (
    "too many requests",
    "rate limit",
    "rate limited",
    "429",
    "quota exceeded",
    "call frequency",
    "throttl",
)


def is_rate_limit_error(e) -> bool:
    """
    Check if an exception or message indicates a rate limit.

    This covers various ways different APIs signal rate limiting:
    - HTTP 429 Too Many Requests
    - Alpha Vantage "call frequency" notes
    - Explicit rate limit exceptions (e.g. yfinance YFRateLimitError)
    """
    error_msg = str(e).lower()
    if any(indicator in error_msg for indicator in RATE_LIMIT_INDICATORS):
        return True
    return type(e).__name__ == "YFRateLimitError"


def is_timeout_error(e: Exception) -> bool:
    """Check if an exception indicates a request timeout."""
    if isinstance(e, requests.exceptions.Timeout):
        return True
    return "timed out" in str(e).lower() or "timeout" in str(e).lower()


def safe_float(value, default: Optional[float] = None) -> Optional[float]:
    """Safely convert a value to a finite float."""
    if value is None or isinstance(value, bool):
        return default
    try:
        result = float(value)
    except (ValueError, TypeError):
        return default
    if math.isnan(result) or math.isinf(result):
        return default
    return result


def empty_result(symbols: List[str]) -> Dict[str, Optional[float]]:
    return {symbol: None for symbol in symbols}


class BaseAdapter(PriceProviderAdapter, ABC):
    """
    Base class for price provider adapters.

    Holds the provider config, the resolved API key and an HTTP session.
    Subclasses implement fetch_prices().
    """

    def __init__(
        self,
        config: ProviderConfig,
        api_key: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ):
        self._config = config
        self._api_key = api_key or ""
        self._session = session or requests.Session()

    @property
    def name(self) -> str:
        return self._config.name

    @property
    def display_name(self) -> str:
        return self._config.display_name

    @property
    def batch_size(self) -> int:
        return self._config.batch_size

    @property
    def batch_delay_seconds(self) -> float:
        return self._config.batch_delay_seconds

    @property
    def timeout_seconds(self) -> float:
        return self._config.timeout_seconds

    @property
    def config(self) -> ProviderConfig:
        return self._config

    @property
    def has_api_key(self) -> bool:
        return bool(self._api_key)

    def is_available(self) -> bool:
        """Enabled, and keyed providers have their key configured."""
        if not self._config.enabled:
            return False
        if self._config.requires_api_key and not self._api_key:
            return False
        return True

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name} batch_size={self.batch_size}>"
