"""
Batch Price Fetcher

Resolves prices for a list of symbols by walking the configured providers
in rotation:

1. Start at the current provider (round-robin pointer kept on the instance,
   or the head of a region preference list when one is given)
2. Split the unresolved symbols into provider-sized chunks, map them to the
   provider's symbol form, call the adapter, map back and validate
3. All-null chunks count against the provider; after two the provider is
   abandoned for this call
4. Whatever is still unresolved moves on to the next provider until every
   symbol has a price or the rotation is back where it started

The fetcher never raises. Symbols that no provider could price come back
as None.
"""

import logging
import math
import time
from threading import Lock
from typing import Callable, Dict, Iterable, List, Optional

from .config import MAX_PROVIDER_BATCH_FAILURES, MAX_VALID_PRICE
from .health import ProviderHealthRegistry
from .interfaces import (
    BatchFetchResult,
    PriceProviderAdapter,
    ProviderAttempt,
    ProviderRateLimitError,
    ProviderStatus,
    ProviderTimeoutError,
)
from .market_detector import map_symbol_for_api
from .adapters.base import is_timeout_error

logger = logging.getLogger(__name__)


def validate_price(symbol: str, price) -> Optional[float]:
    """Return the price if it is a finite number in (0, MAX_VALID_PRICE], else None."""
    if price is None or isinstance(price, bool):
        return None
    if not isinstance(price, (int, float)):
        logger.warning(f"[BatchFetcher] Non-numeric price for {symbol}: {price!r}")
        return None
    price = float(price)
    if math.isnan(price) or math.isinf(price):
        logger.warning(f"[BatchFetcher] Non-finite price for {symbol}: {price}")
        return None
    if price <= 0 or price > MAX_VALID_PRICE:
        logger.warning(f"[BatchFetcher] Invalid price for {symbol}: {price} - outside reasonable range")
        return None
    return price


def chunked(items: List[str], size: int) -> Iterable[List[str]]:
    for i in range(0, len(items), size):
        yield items[i:i + size]


class BatchPriceFetcher:
    """
    Multi-provider batch fetcher with failover.

    Usage:
        fetcher = BatchPriceFetcher(adapters, ProviderHealthRegistry())
        prices = fetcher.fetch_batch_prices(["AAPL", "RELIANCE"])
        # {"AAPL": 190.5, "RELIANCE": 2890.1}
    """

    def __init__(
        self,
        adapters: List[PriceProviderAdapter],
        health: Optional[ProviderHealthRegistry] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._adapters = list(adapters)
        self._by_name: Dict[str, PriceProviderAdapter] = {a.name: a for a in self._adapters}
        self._health = health or ProviderHealthRegistry()
        self._sleep = sleep
        self._current_index = 0
        self._pointer_lock = Lock()

    @property
    def adapters(self) -> List[PriceProviderAdapter]:
        return list(self._adapters)

    @property
    def health(self) -> ProviderHealthRegistry:
        return self._health

    @property
    def current_provider(self) -> Optional[str]:
        if not self._adapters:
            return None
        with self._pointer_lock:
            return self._adapters[self._current_index % len(self._adapters)].name

    def get_adapter(self, name: str) -> Optional[PriceProviderAdapter]:
        return self._by_name.get(name)

    def is_usable(self, name: str) -> bool:
        """Known, available (key configured) and not cooling down."""
        adapter = self._by_name.get(name)
        if adapter is None or not adapter.is_available():
            return False
        return not self._health.is_rate_limited(name)

    def provider_status(self, name: str) -> ProviderStatus:
        adapter = self.get_adapter(name)
        if adapter is None or not adapter.is_available():
            return ProviderStatus.UNAVAILABLE
        if self._health.is_rate_limited(name):
            return ProviderStatus.RATE_LIMITED
        if self._health.failure_count(name) > 0:
            return ProviderStatus.DEGRADED
        return ProviderStatus.HEALTHY

    def available_providers(self, order: Optional[List[str]] = None) -> List[str]:
        names = order if order is not None else [a.name for a in self._adapters]
        return [name for name in names if self.is_usable(name)]

    def fetch_batch_prices(
        self, symbols: List[str], preference: Optional[List[str]] = None
    ) -> Dict[str, Optional[float]]:
        return self.fetch_batch(symbols, preference).prices

    def fetch_batch(
        self, symbols: List[str], preference: Optional[List[str]] = None
    ) -> BatchFetchResult:
        """
        Fetch prices for symbols.

        Args:
            symbols: Symbols as stored (bare or .NS/.BO suffixed)
            preference: Provider names to try, in order. Defaults to the
                        shared rotation over all adapters.

        Returns:
            BatchFetchResult whose prices have exactly the requested symbols as keys
        """
        unique_symbols = list(dict.fromkeys(symbols))
        result = BatchFetchResult(prices={symbol: None for symbol in unique_symbols})
        if not unique_symbols:
            return result

        try:
            self._run(unique_symbols, preference, result)
        except Exception as e:
            logger.error(f"[BatchFetcher] Unexpected error while fetching prices: {e}", exc_info=True)

        resolved = len(unique_symbols) - len(result.failed_symbols)
        logger.info(f"[BatchFetcher] Resolved {resolved}/{len(unique_symbols)} symbols")
        return result

    def _run(self, symbols: List[str], preference: Optional[List[str]], result: BatchFetchResult) -> None:
        if preference is not None:
            rotation = [self._by_name[name] for name in preference if name in self._by_name]
            start_index = 0
        else:
            rotation = self._adapters
            with self._pointer_lock:
                start_index = self._current_index % len(rotation) if rotation else 0

        if not rotation:
            logger.warning("[BatchFetcher] No providers configured")
            return

        index = start_index
        for _ in range(len(rotation)):
            adapter = rotation[index]
            remaining = [s for s in symbols if result.prices[s] is None]
            if not remaining:
                break

            if not adapter.is_available():
                logger.debug(f"[BatchFetcher] Skipping {adapter.name}: not configured")
            elif self._health.is_rate_limited(adapter.name):
                logger.info(f"[BatchFetcher] Skipping {adapter.name}: rate limit cooldown")
            else:
                logger.info(f"[BatchFetcher] Using stock data provider: {adapter.name} for {len(remaining)} symbols")
                attempt = result.provider_attempts.setdefault(
                    adapter.name, ProviderAttempt(provider=adapter.name)
                )
                self._process_with_provider(adapter, remaining, result.prices, attempt)

            if all(result.prices[s] is not None for s in symbols):
                break

            index += 1
            if index >= len(rotation):
                # Wrapped back to the start of the rotation
                index = 0
                self._health.reset_failures()
            if index == start_index:
                logger.info("[BatchFetcher] All providers tried, giving up on remaining symbols")
                break

        if preference is None:
            with self._pointer_lock:
                self._current_index = index

    def _process_with_provider(
        self,
        adapter: PriceProviderAdapter,
        symbols: List[str],
        prices: Dict[str, Optional[float]],
        attempt: ProviderAttempt,
    ) -> None:
        name = adapter.name
        batch_size = max(1, adapter.batch_size)
        chunks = list(chunked(symbols, batch_size))
        total_ms = attempt.response_time_ms * attempt.requests
        self._health.touch(name)

        for number, chunk in enumerate(chunks, start=1):
            logger.debug(f"[{name}] Processing batch {number}/{len(chunks)}")
            api_symbols = [map_symbol_for_api(symbol) for symbol in chunk]

            raw: Dict[str, Optional[float]] = {}
            stop = False
            started = time.time()
            attempt.requests += 1
            try:
                raw = adapter.fetch_prices(list(dict.fromkeys(api_symbols)))
            except ProviderRateLimitError as e:
                logger.warning(f"[BatchFetcher] {name} rate limited: {e}")
                attempt.rate_limited = True
                attempt.last_error = str(e)
                self._health.mark_rate_limited(name)
                raw = e.partial
                stop = True
            except Exception as e:
                logger.error(f"[BatchFetcher] {name} batch failed: {e}")
                if isinstance(e, ProviderTimeoutError) or is_timeout_error(e):
                    attempt.timeouts += 1
                attempt.last_error = str(e)
                self._health.record_batch_failure(name)
                stop = True
            total_ms += (time.time() - started) * 1000
            attempt.response_time_ms = total_ms / attempt.requests

            resolved = 0
            for symbol, api_symbol in zip(chunk, api_symbols):
                price = validate_price(symbol, (raw or {}).get(api_symbol))
                if price is not None:
                    prices[symbol] = price
                    resolved += 1

            if resolved:
                attempt.successes += 1
            else:
                attempt.failures += 1

            if stop:
                break

            if not resolved:
                failures = self._health.record_batch_failure(name)
                if failures >= MAX_PROVIDER_BATCH_FAILURES:
                    logger.warning(f"[{name}] Multiple failures detected, switching providers")
                    break

            if number < len(chunks):
                logger.debug(f"[{name}] Waiting {adapter.batch_delay_seconds}s before next batch")
                self._sleep(adapter.batch_delay_seconds)
