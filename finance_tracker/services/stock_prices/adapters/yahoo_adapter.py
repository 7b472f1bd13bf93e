"""
Yahoo Finance Price Adapter

Uses yfinance, one ticker lookup per symbol. Best coverage for Indian
listings (.NS / .BO suffixes). No API key needed, but Yahoo throttles
hard, so the configured batch size is 1 with a long batch delay.
"""

import logging
from typing import Optional, List, Dict

import yfinance as yf

from ..interfaces import ProviderRateLimitError
from .base import BaseAdapter, empty_result, is_rate_limit_error, safe_float

logger = logging.getLogger(__name__)


class YahooFinanceAdapter(BaseAdapter):
    """yfinance-backed adapter."""

    def _get_price(self, symbol: str) -> Optional[float]:
        ticker = yf.Ticker(symbol)

        price = None
        try:
            price = safe_float(ticker.fast_info.last_price)
        except Exception as e:
            # fast_info raises KeyError/TypeError on incomplete quote metadata
            if is_rate_limit_error(e):
                raise
            logger.debug(f"[Yahoo] fast_info unavailable for {symbol}: {e}")

        if price is None:
            # Try different price fields in order of preference
            info = ticker.info or {}
            price = (
                safe_float(info.get("regularMarketPrice"))
                or safe_float(info.get("currentPrice"))
                or safe_float(info.get("previousClose"))
            )
        return price

    def fetch_prices(self, symbols: List[str]) -> Dict[str, Optional[float]]:
        result = empty_result(symbols)

        for symbol in symbols:
            try:
                price = self._get_price(symbol)
            except Exception as e:
                if is_rate_limit_error(e):
                    logger.warning(f"[Yahoo] Rate limited while fetching {symbol}")
                    raise ProviderRateLimitError(self.name, str(e), partial=dict(result)) from e
                logger.warning(f"[Yahoo] Failed to fetch price for {symbol}: {e}")
                continue

            if price is None:
                logger.info(f"[Yahoo] No price data found for {symbol}")
            else:
                logger.debug(f"[Yahoo] Got price for {symbol}: {price}")
            result[symbol] = price

        return result
