"""
Alpha Vantage Price Adapter

One GLOBAL_QUOTE request per symbol.

Requires ALPHA_VANTAGE_API_KEY environment variable.
Free tier: 5 requests/minute, 500 requests/day
"""

import logging
from typing import Optional, List, Dict

import requests

from ..interfaces import ProviderRateLimitError
from .base import BaseAdapter, empty_result, safe_float

logger = logging.getLogger(__name__)

# Alpha Vantage base URL
AV_BASE_URL = "https://www.alphavantage.co/query"


class AlphaVantageAdapter(BaseAdapter):
    """
    Alpha Vantage adapter.

    Rate limits are reported in the body ("Note" / "Information") with an
    HTTP 200, so the body is checked before the quote is trusted.
    """

    def _get_quote(self, symbol: str) -> Optional[Dict]:
        """GET GLOBAL_QUOTE for one symbol; None on transport/HTTP errors."""
        try:
            response = self._session.get(
                AV_BASE_URL,
                params={"function": "GLOBAL_QUOTE", "symbol": symbol, "apikey": self._api_key},
                timeout=self.timeout_seconds,
            )
        except requests.exceptions.RequestException as e:
            logger.warning(f"[AlphaVantage] Request failed for {symbol}: {e}")
            return None

        if response.status_code == 429:
            raise ProviderRateLimitError(self.name, "HTTP 429 Too Many Requests")

        if not response.ok:
            logger.warning(f"[AlphaVantage] Error fetching {symbol}: HTTP {response.status_code}")
            return None

        try:
            data = response.json()
        except ValueError:
            logger.warning(f"[AlphaVantage] Invalid JSON for {symbol}")
            return None

        return data if isinstance(data, dict) else None

    def fetch_prices(self, symbols: List[str]) -> Dict[str, Optional[float]]:
        result = empty_result(symbols)
        if not symbols:
            return result

        if not self.is_available():
            logger.warning("[AlphaVantage] API key not configured, skipping batch")
            return result

        for symbol in symbols:
            try:
                data = self._get_quote(symbol)
            except ProviderRateLimitError as e:
                e.partial = dict(result)
                raise

            if not data:
                continue

            quote = data.get("Global Quote")
            if isinstance(quote, dict):
                price = safe_float(quote.get("05. price"))
                if price is not None:
                    result[symbol] = price
                    continue

            note = data.get("Note") or data.get("Information")
            if note:
                logger.warning(f"[AlphaVantage] Rate limit: {note}")
                raise ProviderRateLimitError(self.name, f"rate limit: {note}", partial=dict(result))

            if "Error Message" in data:
                logger.warning(f"[AlphaVantage] API Error for {symbol}: {data['Error Message']}")
            else:
                logger.info(f"[AlphaVantage] No price data found for {symbol}")

        return result
