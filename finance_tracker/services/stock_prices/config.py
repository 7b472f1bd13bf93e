"""
Stock Price Configuration

Defines provider configurations, regional preference order, price
validation bounds, alert thresholds and the scheduled update triggers.
"""

from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional
from .interfaces import Region


# Prices outside (0, MAX_VALID_PRICE] are rejected
MAX_VALID_PRICE = 1_000_000

# Failed all-null batches before a provider is abandoned for the run
MAX_PROVIDER_BATCH_FAILURES = 2

DEFAULT_RATE_LIMIT_COOLDOWN_SECONDS = 10 * 60


@dataclass
class ProviderConfig:
    """Configuration for a single price provider."""
    name: str
    display_name: str
    api_key_env_var: Optional[str] = None  # None = no key needed
    batch_size: int = 1
    batch_delay_seconds: float = 0
    timeout_seconds: float = 15
    enabled: bool = True

    def validate(self) -> None:
        """Raise ValueError on settings the fetcher cannot work with."""
        if not self.name:
            raise ValueError("Provider name is required")
        if self.batch_size < 1:
            raise ValueError(f"{self.name}: batch_size must be >= 1, got {self.batch_size}")
        if self.batch_delay_seconds < 0:
            raise ValueError(f"{self.name}: batch_delay_seconds must be >= 0")
        if self.timeout_seconds <= 0:
            raise ValueError(f"{self.name}: timeout_seconds must be > 0")

    @property
    def requires_api_key(self) -> bool:
        return self.api_key_env_var is not None


# Default provider configurations
PROVIDER_CONFIGS: Dict[str, ProviderConfig] = {
    "fmp": ProviderConfig(
        name="fmp",
        display_name="Financial Modeling Prep",
        api_key_env_var="FMP_API_KEY",
        batch_size=10,           # Bulk quote endpoint
        batch_delay_seconds=5,
    ),
    "yahoo": ProviderConfig(
        name="yahoo",
        display_name="Yahoo Finance",
        batch_size=1,
        batch_delay_seconds=60,  # Aggressive throttling upstream
    ),
    "alpha_vantage": ProviderConfig(
        name="alpha_vantage",
        display_name="Alpha Vantage",
        api_key_env_var="ALPHA_VANTAGE_API_KEY",
        batch_size=5,
        batch_delay_seconds=15,  # Free tier: 5 req/min
    ),
}

# Rotation order when no region preference applies
DEFAULT_PROVIDER_ORDER: List[str] = ["fmp", "yahoo", "alpha_vantage"]

REGION_PROVIDER_ORDER: Dict[Region, List[str]] = {
    # Yahoo resolves .NS suffixes best
    Region.INDIAN: ["yahoo", "alpha_vantage", "fmp"],
    # FMP takes a whole batch in one request
    Region.US: ["fmp", "alpha_vantage", "yahoo"],
    Region.OTHER: list(DEFAULT_PROVIDER_ORDER),
}


def validate_provider_configs(configs: Dict[str, ProviderConfig]) -> None:
    """Validate every provider config; called once at startup."""
    for key, cfg in configs.items():
        if key != cfg.name:
            raise ValueError(f"Provider config key '{key}' does not match name '{cfg.name}'")
        cfg.validate()


@dataclass
class AlertThresholds:
    """Monitor thresholds."""
    max_consecutive_failures: int = 3
    max_seconds_since_update: int = 24 * 60 * 60
    max_seconds_since_success: int = 12 * 60 * 60
    max_average_update_ms: int = 5 * 60 * 1000
    min_success_rate: float = 0.8
    min_updates_for_success_rate: int = 10
    min_provider_success_rate: float = 0.5
    max_provider_rate_limit_ratio: float = 0.3
    min_provider_requests: int = 5
    max_alert_history: int = 100


@dataclass
class UpdateTrigger:
    """A recurring update, expressed as APScheduler cron fields (UTC)."""
    id: str
    name: str
    update_type: str
    cron: Dict[str, Any] = field(default_factory=dict)


UPDATE_TRIGGERS: List[UpdateTrigger] = [
    # 09:30 IST and 09:30 EST market opens
    UpdateTrigger(
        id="stock_prices_market_open",
        name="Daily market open price update",
        update_type="market_open",
        cron={"day_of_week": "mon-fri", "hour": "4,14", "minute": 0},
    ),
    # Indian session
    UpdateTrigger(
        id="stock_prices_hourly_india",
        name="Hourly price update (Indian market hours)",
        update_type="hourly",
        cron={"day_of_week": "mon-fri", "hour": "4-10", "minute": 0},
    ),
    # US session
    UpdateTrigger(
        id="stock_prices_hourly_us",
        name="Hourly price update (US market hours)",
        update_type="hourly",
        cron={"day_of_week": "mon-fri", "hour": "14-21", "minute": 0},
    ),
    UpdateTrigger(
        id="stock_prices_end_of_day",
        name="End-of-day price update",
        update_type="end_of_day",
        cron={"day_of_week": "mon-fri", "hour": "10,21", "minute": 30},
    ),
    UpdateTrigger(
        id="stock_prices_weekly",
        name="Weekly comprehensive price update",
        update_type="weekly_comprehensive",
        cron={"day_of_week": "sat", "hour": 2, "minute": 0},
    ),
]

# Periodic alert evaluation between update runs
MONITOR_CHECK_JOB_ID = "stock_prices_monitor_check"
MONITOR_CHECK_INTERVAL_MINUTES = 60
