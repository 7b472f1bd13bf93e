"""
Provider Health Registry

One place that tracks how each price provider is doing during the process
lifetime:
- failure count (all-null batches since the last rotation reset)
- rate-limit cooldown deadline
- last time the provider was used

Shared by the batch fetcher (failure counting, cooldown on rate-limit
errors) and the scheduler (skipping providers still cooling down).
Nothing here is persisted; a restart starts every provider healthy.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Callable, Dict, List, Optional, Any

from .config import DEFAULT_RATE_LIMIT_COOLDOWN_SECONDS

logger = logging.getLogger(__name__)


@dataclass
class ProviderState:
    """Runtime state of one provider."""
    failure_count: int = 0
    rate_limited_until: Optional[float] = None   # epoch seconds
    last_used: Optional[float] = None             # epoch seconds

    def to_dict(self, now: float) -> Dict[str, Any]:
        return {
            'failure_count': self.failure_count,
            'rate_limited': self.rate_limited_until is not None and self.rate_limited_until > now,
            'rate_limited_until': (
                datetime.fromtimestamp(self.rate_limited_until, tz=timezone.utc).isoformat()
                if self.rate_limited_until else None
            ),
            'last_used': (
                datetime.fromtimestamp(self.last_used, tz=timezone.utc).isoformat()
                if self.last_used else None
            ),
        }


class ProviderHealthRegistry:
    """
    Thread-safe provider health bookkeeping.

    Usage:
        health = ProviderHealthRegistry(cooldown_seconds=600)
        health.mark_rate_limited("fmp")
        health.is_rate_limited("fmp")   # True for the next 10 minutes
    """

    def __init__(
        self,
        cooldown_seconds: float = DEFAULT_RATE_LIMIT_COOLDOWN_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self._cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._states: Dict[str, ProviderState] = {}
        self._lock = Lock()

    @property
    def cooldown_seconds(self) -> float:
        return self._cooldown_seconds

    def _state(self, name: str) -> ProviderState:
        # Caller holds the lock
        state = self._states.get(name)
        if state is None:
            state = ProviderState()
            self._states[name] = state
        return state

    def record_batch_failure(self, name: str) -> int:
        """Count an all-null batch; returns the new failure count."""
        with self._lock:
            state = self._state(name)
            state.failure_count += 1
            return state.failure_count

    def failure_count(self, name: str) -> int:
        with self._lock:
            return self._state(name).failure_count

    def reset_failures(self) -> None:
        """Forget failure counts (the rotation wrapped back to the start)."""
        with self._lock:
            for state in self._states.values():
                state.failure_count = 0
        logger.debug("[ProviderHealth] Failure counters reset")

    def mark_rate_limited(self, name: str, duration_seconds: Optional[float] = None) -> None:
        """Bench a provider for the cooldown window."""
        duration = self._cooldown_seconds if duration_seconds is None else duration_seconds
        with self._lock:
            self._state(name).rate_limited_until = self._clock() + duration
        logger.warning(f"[ProviderHealth] Marking {name} as rate limited for {duration:.0f} seconds")

    def is_rate_limited(self, name: str) -> bool:
        """True while the cooldown is running; expired cooldowns are cleared."""
        with self._lock:
            state = self._states.get(name)
            if state is None or state.rate_limited_until is None:
                return False
            if self._clock() >= state.rate_limited_until:
                state.rate_limited_until = None
                logger.info(f"[ProviderHealth] Rate limit cooldown expired for {name}")
                return False
            return True

    def rate_limited_providers(self) -> List[str]:
        with self._lock:
            names = list(self._states.keys())
        return [name for name in names if self.is_rate_limited(name)]

    def touch(self, name: str) -> None:
        """Record that a provider was just used."""
        with self._lock:
            self._state(name).last_used = self._clock()

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        now = self._clock()
        with self._lock:
            return {name: state.to_dict(now) for name, state in self._states.items()}

    def reset(self) -> None:
        """Forget everything (useful for testing)."""
        with self._lock:
            self._states.clear()
