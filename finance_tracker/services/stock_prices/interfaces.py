"""
Stock Price Interfaces and Data Classes

Defines the abstract interface for price providers, the provider error
hierarchy, and the result structures passed between the fetcher, the
scheduler and the monitor.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any
from enum import Enum


def utc_now() -> datetime:
    """Timezone-aware UTC timestamp shared by the scheduler, monitor and alerts."""
    return datetime.now(timezone.utc)


class Region(Enum):
    """Ticker regions used to pick provider preference order."""
    INDIAN = "indian"
    US = "us"
    OTHER = "other"


class ProviderStatus(Enum):
    """Provider health status."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"       # Recent all-null batches
    RATE_LIMITED = "rate_limited"
    UNAVAILABLE = "unavailable"  # Missing API key or disabled


class AlertSeverity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AlertType(Enum):
    CONSECUTIVE_FAILURES = "consecutive_failures"
    STALE_UPDATES = "stale_updates"
    NO_SUCCESSFUL_UPDATES = "no_successful_updates"
    LOW_SUCCESS_RATE = "low_success_rate"
    SLOW_UPDATES = "slow_updates"
    PROVIDER_ISSUES = "provider_issues"
    RATE_LIMITING = "rate_limiting"


# ─────────────────────────────────────────────────────────────
# Errors
# ─────────────────────────────────────────────────────────────

class ProviderError(Exception):
    """A whole provider call failed (network error, unusable response)."""

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class ProviderRateLimitError(ProviderError):
    """
    Provider signalled a rate limit (HTTP 429 or a rate-limit message).

    Carries the prices gathered before the signal so they are not lost.
    """

    def __init__(self, provider: str, message: str = "rate limit reached",
                 partial: Optional[Dict[str, Optional[float]]] = None):
        super().__init__(provider, message)
        self.partial = partial or {}


class ProviderTimeoutError(ProviderError):
    """Provider call timed out."""


# ─────────────────────────────────────────────────────────────
# Result structures
# ─────────────────────────────────────────────────────────────

@dataclass
class ProviderAttempt:
    """What happened when one provider was used during a fetch."""
    provider: str
    requests: int = 0
    successes: int = 0          # Chunks that returned at least one valid price
    failures: int = 0
    rate_limited: bool = False
    timeouts: int = 0
    response_time_ms: float = 0
    last_error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.successes > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'provider': self.provider,
            'requests': self.requests,
            'successes': self.successes,
            'failures': self.failures,
            'rate_limited': self.rate_limited,
            'timeouts': self.timeouts,
            'response_time_ms': round(self.response_time_ms, 2),
            'last_error': self.last_error,
        }


@dataclass
class BatchFetchResult:
    """Prices for every requested symbol plus per-provider bookkeeping."""
    prices: Dict[str, Optional[float]]
    provider_attempts: Dict[str, ProviderAttempt] = field(default_factory=dict)

    @property
    def failed_symbols(self) -> List[str]:
        return [symbol for symbol, price in self.prices.items() if price is None]


@dataclass
class UpdateResult:
    """Outcome of one scheduled or manual price update run."""
    success: bool
    updated_count: int = 0
    failed_count: int = 0
    errors: List[str] = field(default_factory=list)
    duration_ms: int = 0
    update_type: str = "manual"
    reason: Optional[str] = None
    message: Optional[str] = None
    provider_attempts: Dict[str, ProviderAttempt] = field(default_factory=dict)
    symbol_results: Dict[str, Optional[float]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'success': self.success,
            'updated': self.updated_count,
            'failed': self.failed_count,
            'errors': list(self.errors),
            'duration_ms': self.duration_ms,
            'update_type': self.update_type,
        }
        if self.reason:
            data['reason'] = self.reason
        if self.message:
            data['message'] = self.message
        if self.provider_attempts:
            data['providers'] = {
                name: attempt.to_dict() for name, attempt in self.provider_attempts.items()
            }
        return data


@dataclass
class Alert:
    """A threshold breach raised by the monitor."""
    type: AlertType
    severity: AlertSeverity
    message: str
    timestamp: datetime = field(default_factory=utc_now)
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.type.value,
            'severity': self.severity.value,
            'message': self.message,
            'timestamp': self.timestamp.isoformat(),
            'data': self.data,
        }


class PriceProviderAdapter(ABC):
    """
    Abstract base class for all price provider adapters.

    Implementations should:
    1. Return a price (or None) for every symbol they were given
    2. Return None for a symbol on HTTP errors, timeouts or missing fields
    3. Raise ProviderRateLimitError when the provider signals a rate limit
    4. Raise ProviderError only when the whole call failed
    5. Keep no mutable state between calls (health lives in the registry)
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name for logging/metrics."""
        pass

    @property
    @abstractmethod
    def display_name(self) -> str:
        """Human readable provider name."""
        pass

    @property
    @abstractmethod
    def batch_size(self) -> int:
        """Max symbols accepted by one fetch_prices() call."""
        pass

    @property
    @abstractmethod
    def batch_delay_seconds(self) -> float:
        """Pause between consecutive batches."""
        pass

    @abstractmethod
    def fetch_prices(self, symbols: List[str]) -> Dict[str, Optional[float]]:
        """
        Fetch last prices for up to batch_size provider-formatted symbols.

        Returns:
            Dict keyed by the given symbols, None where no price was found
        """
        pass

    def is_available(self) -> bool:
        """Whether the provider can be used at all (e.g. API key present)."""
        return True

    @property
    def has_api_key(self) -> bool:
        return False
