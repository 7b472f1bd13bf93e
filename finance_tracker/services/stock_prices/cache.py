"""
Price Cache

Thread-safe in-memory LRU cache with TTL for last-traded prices, sitting in
front of the batch fetcher so repeated lookups within a few minutes do not
spend provider quota.

Only resolved prices are cached; a symbol that came back None is fetched
again on the next request.
"""

import threading
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Any

logger = logging.getLogger(__name__)

DEFAULT_PRICE_TTL_SECONDS = 5 * 60


@dataclass
class CacheEntry:
    """A cached price with its creation time."""
    symbol: str
    price: float
    created_at: float
    ttl_seconds: float

    def is_expired(self, now: float) -> bool:
        return now - self.created_at > self.ttl_seconds

    def age_seconds(self, now: float) -> float:
        return now - self.created_at


class PriceCache:
    """
    LRU price cache with per-entry TTL.

    Evicts the least recently used symbol once max_size is reached.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_PRICE_TTL_SECONDS,
        max_size: int = 1000,
        clock: Callable[[], float] = time.time,
    ):
        self._cache: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._ttl_seconds = ttl_seconds
        self._max_size = max_size
        self._clock = clock
        self._lock = threading.Lock()
        self._stats = {
            "hits": 0,
            "misses": 0,
            "evictions": 0,
        }

    @property
    def ttl_seconds(self) -> float:
        return self._ttl_seconds

    @property
    def stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        with self._lock:
            lookups = self._stats["hits"] + self._stats["misses"]
            return {
                **self._stats,
                "size": len(self._cache),
                "max_size": self._max_size,
                "ttl_seconds": self._ttl_seconds,
                "hit_rate": self._stats["hits"] / lookups if lookups > 0 else 0,
            }

    def get(self, symbol: str) -> Optional[float]:
        """
        Get a cached price.

        Returns None if not found or expired.
        Moves accessed entry to end (most recently used).
        """
        with self._lock:
            entry = self._cache.get(symbol)
            if entry is None:
                self._stats["misses"] += 1
                return None

            now = self._clock()
            if entry.is_expired(now):
                del self._cache[symbol]
                self._stats["misses"] += 1
                return None

            self._cache.move_to_end(symbol)
            self._stats["hits"] += 1
            logger.debug(f"[PriceCache] HIT {symbol} (age: {entry.age_seconds(now):.1f}s)")
            return entry.price

    def get_many(self, symbols: List[str]) -> Dict[str, float]:
        """Cached prices for whichever of symbols are fresh."""
        found = {}
        for symbol in symbols:
            price = self.get(symbol)
            if price is not None:
                found[symbol] = price
        return found

    def set(self, symbol: str, price: float, ttl_seconds: Optional[float] = None) -> None:
        """Cache a price; evicts the least recently used entry at capacity."""
        ttl = self._ttl_seconds if ttl_seconds is None else ttl_seconds
        with self._lock:
            if symbol in self._cache:
                del self._cache[symbol]

            while len(self._cache) >= self._max_size:
                oldest_key = next(iter(self._cache))
                del self._cache[oldest_key]
                self._stats["evictions"] += 1

            self._cache[symbol] = CacheEntry(
                symbol=symbol,
                price=price,
                created_at=self._clock(),
                ttl_seconds=ttl,
            )

    def set_many(self, prices: Dict[str, Optional[float]]) -> int:
        """Cache every resolved price. Returns how many were stored."""
        stored = 0
        for symbol, price in prices.items():
            if price is not None:
                self.set(symbol, price)
                stored += 1
        return stored

    def delete(self, symbol: str) -> bool:
        with self._lock:
            if symbol in self._cache:
                del self._cache[symbol]
                return True
            return False

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
        logger.info("[PriceCache] Cleared all entries")

    def cleanup_expired(self) -> int:
        """Remove all expired entries. Returns count of removed entries."""
        with self._lock:
            now = self._clock()
            expired_keys = [
                key for key, entry in self._cache.items()
                if entry.is_expired(now)
            ]
            for key in expired_keys:
                del self._cache[key]
            return len(expired_keys)
