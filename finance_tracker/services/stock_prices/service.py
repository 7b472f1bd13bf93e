"""
Price Service

On-demand price lookups for the API layer:
- fresh prices are served from the PriceCache when possible
- uncached symbols are grouped by region and fetched with the region's
  provider preference order
- symbols that are still unresolved are retried with exponential backoff
"""

import logging
import time
from typing import Callable, Dict, List, Optional, Any

from .cache import PriceCache
from .config import REGION_PROVIDER_ORDER
from .fetcher import BatchPriceFetcher
from .market_detector import group_symbols_by_region

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
DEFAULT_GROUP_DELAY_SECONDS = 2
HEALTH_CHECK_SYMBOLS = ["AAPL", "HDFCBANK"]  # One US, one Indian


class PriceService:
    """
    Cached, retrying front end to the BatchPriceFetcher.

    Usage:
        service = PriceService(fetcher, PriceCache(ttl_seconds=300))
        prices = service.get_prices(["AAPL", "TCS"])
    """

    def __init__(
        self,
        fetcher: BatchPriceFetcher,
        cache: Optional[PriceCache] = None,
        sleep: Callable[[float], None] = time.sleep,
        group_delay_seconds: float = DEFAULT_GROUP_DELAY_SECONDS,
    ):
        self._fetcher = fetcher
        self._cache = cache or PriceCache()
        self._sleep = sleep
        self._group_delay_seconds = group_delay_seconds

    @property
    def cache(self) -> PriceCache:
        return self._cache

    @property
    def fetcher(self) -> BatchPriceFetcher:
        return self._fetcher

    def get_prices(
        self,
        symbols: List[str],
        use_cache: bool = True,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> Dict[str, Optional[float]]:
        """
        Get prices for symbols.

        Args:
            symbols: Symbols to look up
            use_cache: Serve fresh cached prices instead of refetching
            max_retries: Fetch attempts for unresolved symbols

        Returns:
            Dict with exactly the requested symbols as keys, None where unresolved
        """
        symbols = list(dict.fromkeys(symbols))
        logger.info(f"[PriceService] Fetching prices for {len(symbols)} symbols")

        results: Dict[str, Optional[float]] = {}
        if use_cache:
            results.update(self._cache.get_many(symbols))
            if len(results) == len(symbols):
                logger.info("[PriceService] All prices found in cache")
                return {symbol: results[symbol] for symbol in symbols}
            if results:
                logger.info(
                    f"[PriceService] {len(results)} prices found in cache, "
                    f"fetching {len(symbols) - len(results)} fresh"
                )

        remaining = [symbol for symbol in symbols if symbol not in results]
        fresh = self._fetch_with_retries(remaining, max_retries)
        self._cache.set_many(fresh)
        results.update({symbol: price for symbol, price in fresh.items() if price is not None})

        final = {symbol: results.get(symbol) for symbol in symbols}
        resolved = sum(1 for price in final.values() if price is not None)
        logger.info(f"[PriceService] Final result: {resolved}/{len(symbols)} prices fetched")
        return final

    def _fetch_with_retries(self, symbols: List[str], max_retries: int) -> Dict[str, Optional[float]]:
        results: Dict[str, Optional[float]] = {symbol: None for symbol in symbols}
        remaining = list(symbols)
        attempt = 0

        while remaining and attempt < max_retries:
            attempt += 1
            logger.info(f"[PriceService] Attempt {attempt}/{max_retries} for {len(remaining)} symbols")

            groups = [(region, group) for region, group in group_symbols_by_region(remaining).items() if group]
            for i, (region, group) in enumerate(groups):
                preference = self._fetcher.available_providers(REGION_PROVIDER_ORDER[region])
                if not preference:
                    logger.error(f"[PriceService] No providers available for {region.value} symbols")
                    continue

                fetched = self._fetcher.fetch_batch_prices(group, preference=preference)
                for symbol, price in fetched.items():
                    if price is not None:
                        results[symbol] = price

                if i < len(groups) - 1:
                    self._sleep(self._group_delay_seconds)

            remaining = [symbol for symbol in remaining if results[symbol] is None]
            if remaining and attempt < max_retries:
                delay = 2 ** attempt
                logger.info(f"[PriceService] Waiting {delay}s before retry for {len(remaining)} symbols")
                self._sleep(delay)

        return results

    def clear_cache(self) -> None:
        self._cache.clear()

    def health_check(self) -> Dict[str, Any]:
        """Fetch one US and one Indian symbol uncached and report how it went."""
        available = len(self._fetcher.available_providers())
        try:
            started = time.time()
            prices = self.get_prices(HEALTH_CHECK_SYMBOLS, use_cache=False, max_retries=1)
            response_time_ms = int((time.time() - started) * 1000)
        except Exception as e:
            logger.error(f"[PriceService] Health check failed: {e}")
            return {
                'healthy': False,
                'error': str(e),
                'available_providers': available,
                'cache_stats': self._cache.stats,
            }

        successful = sum(1 for price in prices.values() if price is not None)
        return {
            'healthy': successful > 0,
            'response_time_ms': response_time_ms,
            'success_rate': successful / len(HEALTH_CHECK_SYMBOLS),
            'available_providers': available,
            'cache_stats': self._cache.stats,
        }
