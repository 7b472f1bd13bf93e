"""
Stock Price Monitor - Update Statistics and Alerting

Tracks the health of price update runs:
- Global run counters, success rate and rolling average duration
- Per-provider request statistics (from each run's provider attempts)
- Per-symbol update statistics
- Threshold-based alerts kept in a ring buffer and pushed to handlers

Everything is in memory; stats are lost on restart.
"""

import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from threading import Lock
from typing import Callable, Deque, Dict, List, Optional, Any

from .config import AlertThresholds
from .interfaces import Alert, AlertSeverity, AlertType, UpdateResult, utc_now

logger = logging.getLogger(__name__)

AlertHandler = Callable[[Alert], None]


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class ProviderStats:
    """Aggregated request statistics for one provider."""
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    rate_limit_errors: int = 0
    timeout_errors: int = 0
    average_response_time_ms: float = 0
    last_used: Optional[datetime] = None

    @property
    def success_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.successful_requests / self.total_requests

    @property
    def rate_limit_ratio(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.rate_limit_errors / self.total_requests

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_requests': self.total_requests,
            'successful_requests': self.successful_requests,
            'failed_requests': self.failed_requests,
            'rate_limit_errors': self.rate_limit_errors,
            'timeout_errors': self.timeout_errors,
            'success_rate': round(self.success_rate, 4),
            'average_response_time_ms': round(self.average_response_time_ms, 2),
            'last_used': _iso(self.last_used),
        }


@dataclass
class SymbolStats:
    """Update statistics for one symbol."""
    total_updates: int = 0
    successful_updates: int = 0
    consecutive_failures: int = 0
    last_update: Optional[datetime] = None
    last_successful_update: Optional[datetime] = None

    @property
    def success_rate(self) -> float:
        if self.total_updates == 0:
            return 0.0
        return self.successful_updates / self.total_updates

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_updates': self.total_updates,
            'successful_updates': self.successful_updates,
            'consecutive_failures': self.consecutive_failures,
            'last_update': _iso(self.last_update),
            'last_successful_update': _iso(self.last_successful_update),
        }


def log_alert_handler(alert: Alert) -> None:
    """Default notification handler: write the alert to the log."""
    logger.warning(f"[Monitor] [ALERT] {alert.type.value}: {alert.message}")


class StockPriceMonitor:
    """
    Records update runs and raises alerts when thresholds are crossed.

    Usage:
        monitor = StockPriceMonitor()
        monitor.add_notification_handler(log_alert_handler)
        monitor.record_update(result)
        monitor.get_health_status()
    """

    def __init__(
        self,
        thresholds: Optional[AlertThresholds] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._thresholds = thresholds or AlertThresholds()
        self._clock = clock
        self._handlers: List[AlertHandler] = []
        self._lock = Lock()
        self._reset_state()

    def _reset_state(self) -> None:
        self._total_updates = 0
        self._successful_updates = 0
        self._failed_updates = 0
        self._consecutive_failures = 0
        self._average_update_ms = 0.0
        self._last_update_time: Optional[datetime] = None
        self._last_successful_update: Optional[datetime] = None
        self._provider_stats: Dict[str, ProviderStats] = {}
        self._symbol_stats: Dict[str, SymbolStats] = {}
        self._alerts: Deque[Alert] = deque(maxlen=self._thresholds.max_alert_history)

    @property
    def thresholds(self) -> AlertThresholds:
        return self._thresholds

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    def add_notification_handler(self, handler: AlertHandler) -> None:
        self._handlers.append(handler)

    # ─────────────────────────────────────────────────────────────
    # Recording
    # ─────────────────────────────────────────────────────────────

    def record_update(self, result: UpdateResult) -> List[Alert]:
        """
        Record one update run and evaluate alert thresholds.

        Returns:
            Alerts raised by this call
        """
        now = self._clock()
        with self._lock:
            self._total_updates += 1
            self._last_update_time = now

            if result.success:
                self._successful_updates += 1
                self._last_successful_update = now
                self._consecutive_failures = 0
            else:
                self._failed_updates += 1
                self._consecutive_failures += 1

            if result.duration_ms:
                self._average_update_ms = (
                    self._average_update_ms * (self._total_updates - 1) + result.duration_ms
                ) / self._total_updates

            for name, attempt in result.provider_attempts.items():
                stats = self._provider_stats.setdefault(name, ProviderStats())
                previous = stats.total_requests
                stats.total_requests += attempt.requests
                stats.successful_requests += attempt.successes
                stats.failed_requests += attempt.failures
                stats.timeout_errors += attempt.timeouts
                if attempt.rate_limited:
                    stats.rate_limit_errors += 1
                if stats.total_requests:
                    stats.average_response_time_ms = (
                        stats.average_response_time_ms * previous
                        + attempt.response_time_ms * attempt.requests
                    ) / stats.total_requests
                stats.last_used = now

            for symbol, price in result.symbol_results.items():
                stats = self._symbol_stats.setdefault(symbol, SymbolStats())
                stats.total_updates += 1
                stats.last_update = now
                if price is not None:
                    stats.successful_updates += 1
                    stats.last_successful_update = now
                    stats.consecutive_failures = 0
                else:
                    stats.consecutive_failures += 1

        logger.debug(
            f"[Monitor] Recorded {result.update_type} update: success={result.success} "
            f"updated={result.updated_count} failed={result.failed_count}"
        )
        return self.check_alerts()

    # ─────────────────────────────────────────────────────────────
    # Alerting
    # ─────────────────────────────────────────────────────────────

    def check_alerts(self) -> List[Alert]:
        """Evaluate every threshold; store and dispatch any alerts raised."""
        t = self._thresholds
        now = self._clock()
        new_alerts: List[Alert] = []

        def alert(alert_type: AlertType, severity: AlertSeverity, message: str, **data) -> None:
            new_alerts.append(Alert(type=alert_type, severity=severity, message=message, timestamp=now, data=data))

        with self._lock:
            if self._consecutive_failures >= t.max_consecutive_failures:
                alert(
                    AlertType.CONSECUTIVE_FAILURES, AlertSeverity.HIGH,
                    f"{self._consecutive_failures} consecutive update failures",
                    consecutive_failures=self._consecutive_failures,
                )

            if self._last_update_time:
                since_update = (now - self._last_update_time).total_seconds()
                if since_update > t.max_seconds_since_update:
                    alert(
                        AlertType.STALE_UPDATES, AlertSeverity.HIGH,
                        f"No updates for {int(since_update // 3600)} hours",
                        seconds_since_update=since_update,
                    )

            if self._last_successful_update:
                since_success = (now - self._last_successful_update).total_seconds()
                if since_success > t.max_seconds_since_success:
                    alert(
                        AlertType.NO_SUCCESSFUL_UPDATES, AlertSeverity.CRITICAL,
                        f"No successful updates for {int(since_success // 3600)} hours",
                        seconds_since_success=since_success,
                    )

            if self._total_updates >= t.min_updates_for_success_rate:
                success_rate = self._successful_updates / self._total_updates
                if success_rate < t.min_success_rate:
                    alert(
                        AlertType.LOW_SUCCESS_RATE, AlertSeverity.MEDIUM,
                        f"Success rate is {success_rate * 100:.1f}% (threshold: {t.min_success_rate * 100:.0f}%)",
                        success_rate=success_rate, threshold=t.min_success_rate,
                    )

            if self._average_update_ms > t.max_average_update_ms:
                alert(
                    AlertType.SLOW_UPDATES, AlertSeverity.LOW,
                    f"Average update time is {int(self._average_update_ms // 1000)} seconds",
                    average_update_ms=self._average_update_ms,
                )

            for name, stats in self._provider_stats.items():
                if stats.total_requests < t.min_provider_requests:
                    continue
                if stats.success_rate < t.min_provider_success_rate:
                    alert(
                        AlertType.PROVIDER_ISSUES, AlertSeverity.MEDIUM,
                        f"Provider {name} has low success rate: {stats.success_rate * 100:.1f}%",
                        provider=name, success_rate=stats.success_rate,
                    )
                if stats.rate_limit_ratio > t.max_provider_rate_limit_ratio:
                    alert(
                        AlertType.RATE_LIMITING, AlertSeverity.MEDIUM,
                        f"Provider {name} is frequently rate limited "
                        f"({stats.rate_limit_ratio * 100:.1f}% of requests)",
                        provider=name, rate_limit_ratio=stats.rate_limit_ratio,
                    )

            self._alerts.extend(new_alerts)
            handlers = list(self._handlers)

        for new_alert in new_alerts:
            self._notify(new_alert, handlers)
        return new_alerts

    def _notify(self, alert: Alert, handlers: List[AlertHandler]) -> None:
        logger.info(f"[Monitor] ALERT [{alert.severity.value.upper()}] {alert.type.value}: {alert.message}")
        for handler in handlers:
            try:
                handler(alert)
            except Exception as e:
                logger.error(f"[Monitor] Notification handler failed: {e}")

    # ─────────────────────────────────────────────────────────────
    # Reporting
    # ─────────────────────────────────────────────────────────────

    def get_metrics(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'total_updates': self._total_updates,
                'successful_updates': self._successful_updates,
                'failed_updates': self._failed_updates,
                'consecutive_failures': self._consecutive_failures,
                'success_rate': (
                    self._successful_updates / self._total_updates if self._total_updates else 0
                ),
                'average_update_ms': round(self._average_update_ms, 2),
                'last_update_time': _iso(self._last_update_time),
                'last_successful_update': _iso(self._last_successful_update),
                'providers': {name: s.to_dict() for name, s in self._provider_stats.items()},
                'symbols': {symbol: s.to_dict() for symbol, s in self._symbol_stats.items()},
            }

    def get_alerts(self, limit: int = 20) -> List[Alert]:
        """Most recent alerts, newest first."""
        with self._lock:
            alerts = list(self._alerts)
        if limit <= 0:
            return []
        return list(reversed(alerts[-limit:]))

    def get_health_status(self) -> Dict[str, Any]:
        """
        Overall status: 'critical' when failures pile up or nothing has
        succeeded for too long, 'warning' on a low success rate or updates
        approaching staleness, otherwise 'healthy'.
        """
        t = self._thresholds
        now = self._clock()
        metrics = self.get_metrics()
        status = 'healthy'
        issues: List[str] = []

        if metrics['consecutive_failures'] >= t.max_consecutive_failures:
            status = 'critical'
            issues.append(f"{metrics['consecutive_failures']} consecutive failures")

        if self._last_successful_update:
            since_success = (now - self._last_successful_update).total_seconds()
            if since_success > t.max_seconds_since_success:
                status = 'critical'
                issues.append(f"No successful updates for {int(since_success // 3600)} hours")

        if status == 'healthy':
            if (metrics['total_updates'] >= t.min_updates_for_success_rate
                    and metrics['success_rate'] < t.min_success_rate):
                status = 'warning'
                issues.append(f"Low success rate: {metrics['success_rate'] * 100:.1f}%")

            if self._last_update_time:
                since_update = (now - self._last_update_time).total_seconds()
                if since_update > t.max_seconds_since_update * 0.8:
                    status = 'warning'
                    issues.append(
                        f"Updates may be stale ({int(since_update // 3600)} hours since last update)"
                    )

        return {
            'status': status,
            'issues': issues,
            'metrics': {
                'total_updates': metrics['total_updates'],
                'success_rate': metrics['success_rate'],
                'consecutive_failures': metrics['consecutive_failures'],
                'last_update_time': metrics['last_update_time'],
                'last_successful_update': metrics['last_successful_update'],
                'average_update_ms': metrics['average_update_ms'],
            },
            'recent_alerts': [a.to_dict() for a in self.get_alerts(5)],
        }

    def get_top_failing_stocks(self, limit: int = 10) -> List[Dict[str, Any]]:
        """Symbols with failures or a sub-80% success rate, worst first."""
        with self._lock:
            rows = [
                {
                    'symbol': symbol,
                    'consecutive_failures': stats.consecutive_failures,
                    'success_rate': stats.success_rate,
                    'last_successful_update': _iso(stats.last_successful_update),
                }
                for symbol, stats in self._symbol_stats.items()
            ]
        failing = [
            row for row in rows
            if row['consecutive_failures'] > 0 or row['success_rate'] < self._thresholds.min_success_rate
        ]
        failing.sort(key=lambda row: row['consecutive_failures'], reverse=True)
        return failing[:limit]

    def generate_report(self) -> Dict[str, Any]:
        metrics = self.get_metrics()
        return {
            'timestamp': self._clock().isoformat(),
            'health': self.get_health_status(),
            'summary': {
                'total_updates': metrics['total_updates'],
                'successful_updates': metrics['successful_updates'],
                'failed_updates': metrics['failed_updates'],
                'success_rate': f"{metrics['success_rate'] * 100:.1f}%",
                'average_update_time': f"{int(metrics['average_update_ms'] // 1000)}s",
                'last_update': metrics['last_update_time'],
                'last_successful_update': metrics['last_successful_update'],
            },
            'providers': {
                name: {
                    'requests': stats['total_requests'],
                    'success_rate': f"{stats['success_rate'] * 100:.1f}%",
                    'rate_limit_errors': stats['rate_limit_errors'],
                    'average_response_time': f"{int(stats['average_response_time_ms'])}ms",
                    'last_used': stats['last_used'],
                }
                for name, stats in metrics['providers'].items()
            },
            'top_failing_stocks': self.get_top_failing_stocks(10),
            'recent_alerts': [a.to_dict() for a in self.get_alerts(10)],
        }

    def reset(self) -> None:
        """Reset all statistics and alerts (useful for testing)."""
        with self._lock:
            self._reset_state()
