"""
Stock Price Update Scheduler

Recurring stock price refreshes driven by APScheduler cron jobs (UTC), an
hourly monitor alert check and a manual force-update entry point.

Each run reads the distinct symbols held in storage, groups them by region,
fetches every group with that region's provider preference order, writes
resolved prices back and hands the outcome to the monitor.
"""

import logging
import time
from datetime import datetime
from threading import Lock
from typing import Callable, Dict, List, Optional, Any

from apscheduler.schedulers.background import BackgroundScheduler

from .services.stock_prices.config import (
    MONITOR_CHECK_INTERVAL_MINUTES,
    MONITOR_CHECK_JOB_ID,
    REGION_PROVIDER_ORDER,
    UPDATE_TRIGGERS,
    UpdateTrigger,
)
from .services.stock_prices.fetcher import BatchPriceFetcher
from .services.stock_prices.interfaces import Alert, ProviderAttempt, UpdateResult, utc_now
from .services.stock_prices.market_detector import group_symbols_by_region
from .services.stock_prices.monitor import StockPriceMonitor

logger = logging.getLogger(__name__)

ALREADY_IN_PROGRESS = 'Update already in progress'


def _merge_attempts(target: Dict[str, ProviderAttempt], attempts: Dict[str, ProviderAttempt]) -> None:
    for name, attempt in attempts.items():
        merged = target.get(name)
        if merged is None:
            target[name] = ProviderAttempt(**vars(attempt))
            continue
        total = merged.requests + attempt.requests
        if total:
            merged.response_time_ms = (
                merged.response_time_ms * merged.requests + attempt.response_time_ms * attempt.requests
            ) / total
        merged.requests = total
        merged.successes += attempt.successes
        merged.failures += attempt.failures
        merged.timeouts += attempt.timeouts
        merged.rate_limited = merged.rate_limited or attempt.rate_limited
        merged.last_error = attempt.last_error or merged.last_error


class StockPriceScheduler:
    """
    Scheduled and manual stock price updates.

    States: stopped / running (cron jobs registered), plus an "updating"
    guard. A run requested while another is in flight is rejected, not
    queued.
    """

    def __init__(
        self,
        fetcher: BatchPriceFetcher,
        monitor: StockPriceMonitor,
        symbol_source: Callable[[], List[str]],
        price_writer: Callable[[str, float], int],
        sleep: Callable[[float], None] = time.sleep,
        group_delay_seconds: float = 2,
        triggers: Optional[List[UpdateTrigger]] = None,
        scheduler_factory: Callable[[], BackgroundScheduler] = None,
    ):
        self._fetcher = fetcher
        self._monitor = monitor
        self._symbol_source = symbol_source
        self._price_writer = price_writer
        self._sleep = sleep
        self._group_delay_seconds = group_delay_seconds
        self._triggers = list(UPDATE_TRIGGERS if triggers is None else triggers)
        self._scheduler_factory = scheduler_factory or (
            lambda: BackgroundScheduler(timezone='UTC', daemon=True)
        )
        self._scheduler: Optional[BackgroundScheduler] = None
        self._app = None
        self._update_lock = Lock()
        self._stats_lock = Lock()

        self._total_runs = 0
        self._successful_runs = 0
        self._failed_runs = 0
        self._average_duration_ms = 0.0
        self._consecutive_failures = 0
        self._last_update_time: Optional[datetime] = None
        self._last_successful_update: Optional[datetime] = None

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None

    @property
    def is_updating(self) -> bool:
        return self._update_lock.locked()

    @property
    def triggers(self) -> List[UpdateTrigger]:
        return list(self._triggers)

    # ─────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────

    def start(self, app=None) -> None:
        """Register the cron triggers and start the background scheduler."""
        if self._scheduler is not None:
            logger.info("[Scheduler] Already running")
            return

        if app is not None:
            self._app = app

        try:
            scheduler = self._scheduler_factory()
            for trigger in self._triggers:
                scheduler.add_job(
                    func=self._run_scheduled,
                    args=[trigger.update_type],
                    trigger='cron',
                    id=trigger.id,
                    name=trigger.name,
                    replace_existing=True,
                    coalesce=True,
                    max_instances=1,
                    **trigger.cron
                )
            scheduler.add_job(
                func=self.check_monitor_alerts,
                trigger='interval',
                minutes=MONITOR_CHECK_INTERVAL_MINUTES,
                id=MONITOR_CHECK_JOB_ID,
                name='Stock price monitor alert check',
                replace_existing=True,
                coalesce=True,
                max_instances=1,
            )
            scheduler.start()
        except Exception as e:
            logger.error(f"[Scheduler] Failed to start scheduler: {e}")
            return

        self._scheduler = scheduler
        logger.info(f"[Scheduler] Scheduler started with {len(self._triggers)} update jobs")

    def stop(self) -> None:
        """Remove all jobs and shut the background scheduler down."""
        if self._scheduler is None:
            logger.info("[Scheduler] Already stopped")
            return

        scheduler, self._scheduler = self._scheduler, None
        try:
            scheduler.remove_all_jobs()
            scheduler.shutdown(wait=False)
        except Exception as e:
            logger.error(f"[Scheduler] Error while shutting down: {e}")
        logger.info("[Scheduler] Scheduler stopped")

    def _run_scheduled(self, update_type: str) -> None:
        """Job entry point; runs inside the Flask app context when one was given."""
        logger.info(f"[Scheduler] Running {update_type} price update")
        if self._app is not None:
            with self._app.app_context():
                self.update_all_stocks(update_type)
        else:
            self.update_all_stocks(update_type)

    def check_monitor_alerts(self) -> List[Alert]:
        """Job entry point; evaluates time-based alerts when no run is happening."""
        try:
            return self._monitor.check_alerts()
        except Exception as e:
            logger.error(f"[Scheduler] Monitor alert check failed: {e}")
            return []

    # ─────────────────────────────────────────────────────────────
    # Updates
    # ─────────────────────────────────────────────────────────────

    def force_update(self) -> UpdateResult:
        logger.info("[Scheduler] Force update requested")
        return self.update_all_stocks('manual_force')

    def update_all_stocks(self, update_type: str = 'manual') -> UpdateResult:
        """
        Refresh prices for every stored symbol.

        Never raises; failures are reported through the returned UpdateResult.
        """
        if not self._update_lock.acquire(blocking=False):
            logger.info("[Scheduler] Update already in progress, skipping")
            return UpdateResult(success=False, update_type=update_type, reason=ALREADY_IN_PROGRESS)

        started = time.time()
        result = UpdateResult(success=False, update_type=update_type)
        symbols: List[str] = []
        try:
            logger.info(f"[Scheduler] Starting {update_type} update for all stocks")
            symbols = list(dict.fromkeys(self._symbol_source()))

            if not symbols:
                logger.info("[Scheduler] No stocks found to update")
                result.success = True
                result.message = 'No stocks to update'
            else:
                logger.info(f"[Scheduler] Found {len(symbols)} unique stocks to update")
                self._update_groups(symbols, result)
                result.success = result.updated_count > 0 or result.failed_count == 0

        except Exception as e:
            logger.error(f"[Scheduler] Critical error during stock update: {e}", exc_info=True)
            result.success = False
            result.errors.append(f"Critical error: {e}")
            for symbol in symbols:
                result.symbol_results.setdefault(symbol, None)
            result.failed_count = len(symbols) - result.updated_count

        finally:
            result.duration_ms = int((time.time() - started) * 1000)
            self._update_lock.release()

        self._record_run(result)
        logger.info(
            f"[Scheduler] {update_type} update completed: {result.updated_count} updated, "
            f"{result.failed_count} failed in {result.duration_ms}ms"
        )
        return result

    def _update_groups(self, symbols: List[str], result: UpdateResult) -> None:
        groups = [(region, group) for region, group in group_symbols_by_region(symbols).items() if group]

        for i, (region, group) in enumerate(groups):
            logger.info(f"[Scheduler] Updating {len(group)} {region.value} stocks")
            preference = self._fetcher.available_providers(REGION_PROVIDER_ORDER[region])

            if not preference:
                error = f"No available providers for {region.value} stocks"
                logger.error(f"[Scheduler] {error}")
                result.errors.append(error)
                result.failed_count += len(group)
                for symbol in group:
                    result.symbol_results[symbol] = None
            else:
                batch = self._fetcher.fetch_batch(group, preference=preference)
                _merge_attempts(result.provider_attempts, batch.provider_attempts)
                for symbol in group:
                    self._store_price(symbol, batch.prices.get(symbol), result)

            if i < len(groups) - 1:
                self._sleep(self._group_delay_seconds)

    def _store_price(self, symbol: str, price: Optional[float], result: UpdateResult) -> None:
        if price is None:
            result.failed_count += 1
            result.symbol_results[symbol] = None
            return

        try:
            rows = self._price_writer(symbol, price)
        except Exception as e:
            logger.error(f"[Scheduler] Failed to store price for {symbol}: {e}")
            result.errors.append(f"{symbol}: failed to store price: {e}")
            result.failed_count += 1
            result.symbol_results[symbol] = None
            return

        if not rows:
            result.errors.append(f"{symbol}: no stored holdings to update")
            result.failed_count += 1
            result.symbol_results[symbol] = None
            return

        result.updated_count += 1
        result.symbol_results[symbol] = price

    # ─────────────────────────────────────────────────────────────
    # Statistics
    # ─────────────────────────────────────────────────────────────

    def _record_run(self, result: UpdateResult) -> None:
        now = utc_now()
        with self._stats_lock:
            self._total_runs += 1
            if result.success:
                self._successful_runs += 1
                self._consecutive_failures = 0
                self._last_successful_update = now
            else:
                self._failed_runs += 1
                self._consecutive_failures += 1
            self._average_duration_ms = (
                self._average_duration_ms * (self._total_runs - 1) + result.duration_ms
            ) / self._total_runs
            self._last_update_time = now

        try:
            self._monitor.record_update(result)
        except Exception as e:
            logger.error(f"[Scheduler] Failed to record update with monitor: {e}")

    def _jobs(self) -> List[Dict[str, Any]]:
        if self._scheduler is None:
            return []
        jobs = []
        for job in self._scheduler.get_jobs():
            next_run = getattr(job, 'next_run_time', None)
            jobs.append({
                'id': job.id,
                'name': job.name,
                'next_run_time': next_run.isoformat() if next_run else None,
            })
        return jobs

    def get_stats(self) -> Dict[str, Any]:
        with self._stats_lock:
            stats = {
                'total_updates': self._total_runs,
                'successful_updates': self._successful_runs,
                'failed_updates': self._failed_runs,
                'average_update_ms': round(self._average_duration_ms, 2),
                'consecutive_failures': self._consecutive_failures,
                'last_update_time': self._last_update_time.isoformat() if self._last_update_time else None,
                'last_successful_update': (
                    self._last_successful_update.isoformat() if self._last_successful_update else None
                ),
            }
        stats.update({
            'is_running': self.is_running,
            'is_updating': self.is_updating,
            'rate_limited_providers': self._fetcher.health.rate_limited_providers(),
            'jobs': self._jobs(),
        })
        return stats
