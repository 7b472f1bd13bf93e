"""
Financial Modeling Prep Price Adapter

Bulk quote endpoint: one request returns prices for a whole batch.

Requires FMP_API_KEY environment variable.
"""

import logging
from typing import Optional, List, Dict

import requests

from ..interfaces import ProviderError, ProviderRateLimitError, ProviderTimeoutError
from .base import BaseAdapter, empty_result, is_rate_limit_error, safe_float

logger = logging.getLogger(__name__)

FMP_QUOTE_URL = "https://financialmodelingprep.com/api/v3/quote"


class FMPAdapter(BaseAdapter):
    """
    Financial Modeling Prep adapter.

    Preferred for US tickers because it accepts the whole batch in a
    single call.
    """

    def fetch_prices(self, symbols: List[str]) -> Dict[str, Optional[float]]:
        result = empty_result(symbols)
        if not symbols:
            return result

        if not self.is_available():
            logger.warning("[FMP] API key not configured, skipping batch")
            return result

        url = f"{FMP_QUOTE_URL}/{','.join(symbols)}"
        try:
            response = self._session.get(
                url, params={"apikey": self._api_key}, timeout=self.timeout_seconds
            )
        except requests.exceptions.Timeout as e:
            raise ProviderTimeoutError(
                self.name, f"batch request timed out after {self.timeout_seconds}s"
            ) from e
        except requests.exceptions.RequestException as e:
            raise ProviderError(self.name, f"batch request failed: {e}") from e

        if response.status_code == 429:
            raise ProviderRateLimitError(self.name, "HTTP 429 Too Many Requests")

        if not response.ok:
            logger.warning(f"[FMP] Error fetching batch prices: HTTP {response.status_code}")
            return result

        try:
            data = response.json()
        except ValueError:
            logger.warning("[FMP] Response was not valid JSON")
            return result

        if isinstance(data, dict):
            # Errors come back as {"Error Message": "..."}
            message = str(data.get("Error Message") or data.get("message") or data)
            if is_rate_limit_error(message) or "limit reach" in message.lower():
                raise ProviderRateLimitError(self.name, message)
            logger.warning(f"[FMP] Unexpected response: {message[:200]}")
            return result

        if not isinstance(data, list):
            logger.warning(f"[FMP] Unexpected response type: {type(data).__name__}")
            return result

        for item in data:
            if not isinstance(item, dict):
                continue
            symbol = item.get("symbol")
            if symbol in result:
                result[symbol] = safe_float(item.get("price"))

        missing = [s for s, price in result.items() if price is None]
        if missing:
            logger.info(f"[FMP] No price returned for {missing}")
        return result
