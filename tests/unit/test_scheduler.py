"""
Unit tests for StockPriceScheduler: update runs, region routing, cooldown
skipping, the in-progress guard, statistics and cron job registration.
"""
import threading
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, call

from apscheduler.triggers.cron import CronTrigger

from finance_tracker.scheduler import StockPriceScheduler, ALREADY_IN_PROGRESS
from finance_tracker.services.stock_prices.config import MONITOR_CHECK_JOB_ID, UPDATE_TRIGGERS
from finance_tracker.services.stock_prices.fetcher import BatchPriceFetcher
from finance_tracker.services.stock_prices.health import ProviderHealthRegistry
from finance_tracker.services.stock_prices.interfaces import AlertType
from finance_tracker.services.stock_prices.monitor import StockPriceMonitor
from tests.fixtures.fake_providers import make_adapters


class FakeClock:
    def __init__(self):
        self.now = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now


@pytest.fixture
def adapters():
    return make_adapters(
        fmp_prices={'AAPL': 190.5, 'MSFT': 410.0},
        yahoo_prices={'RELIANCE.NS': 2890.0},
    )


@pytest.fixture
def fetcher(adapters):
    return BatchPriceFetcher(adapters, ProviderHealthRegistry(), sleep=lambda s: None)


def make_scheduler(fetcher, symbols=(), writer=None, monitor=None, sleep=None, **kwargs):
    return StockPriceScheduler(
        fetcher=fetcher,
        monitor=monitor or StockPriceMonitor(),
        symbol_source=kwargs.pop('symbol_source', lambda: list(symbols)),
        price_writer=writer or MagicMock(return_value=1),
        sleep=sleep or MagicMock(),
        group_delay_seconds=2,
        **kwargs
    )


class TestUpdateAllStocks:

    def test_no_stocks(self, fetcher, adapters):
        scheduler = make_scheduler(fetcher, symbols=[])
        result = scheduler.update_all_stocks('hourly')
        assert result.success is True
        assert (result.updated_count, result.failed_count) == (0, 0)
        assert result.message == 'No stocks to update'
        assert all(a.calls == [] for a in adapters)

    def test_updates_and_writes_prices(self, fetcher):
        writer = MagicMock(return_value=2)
        scheduler = make_scheduler(fetcher, symbols=['AAPL', 'MSFT', 'RELIANCE'], writer=writer)

        result = scheduler.update_all_stocks('market_open')

        assert result.success is True
        assert result.updated_count == 3
        assert result.failed_count == 0
        assert result.update_type == 'market_open'
        writer.assert_has_calls([call('RELIANCE', 2890.0), call('AAPL', 190.5), call('MSFT', 410.0)])

    def test_regions_use_their_provider_order(self, fetcher, adapters):
        fmp, yahoo, av = adapters
        sleep = MagicMock()
        scheduler = make_scheduler(fetcher, symbols=['AAPL', 'RELIANCE', 'SHEL.L'], sleep=sleep)

        scheduler.update_all_stocks()

        # Indian group goes to Yahoo first, US to FMP first
        assert yahoo.calls[0] == ['RELIANCE.NS']
        assert fmp.calls[0] == ['AAPL']
        # Other group uses the default order
        assert fmp.calls[1] == ['SHEL.L']
        # Delay between the three groups only
        assert sleep.call_args_list == [call(2), call(2)]

    def test_counts_add_up(self, fetcher):
        symbols = ['AAPL', 'MSFT', 'RELIANCE', 'TCS', 'NOPE']
        scheduler = make_scheduler(fetcher, symbols=symbols)
        result = scheduler.update_all_stocks()
        assert result.updated_count + result.failed_count == len(symbols)
        assert result.updated_count == 3
        assert result.symbol_results['TCS'] is None
        assert result.success is True

    def test_rate_limited_provider_is_skipped(self, fetcher, adapters):
        fmp, yahoo, av = adapters
        av.prices['RELIANCE.NS'] = 2888.0
        fetcher.health.mark_rate_limited('yahoo')
        scheduler = make_scheduler(fetcher, symbols=['RELIANCE'])

        result = scheduler.update_all_stocks()

        assert yahoo.calls == []
        assert av.calls[0] == ['RELIANCE.NS']
        assert result.symbol_results == {'RELIANCE': 2888.0}
        assert 'yahoo' in scheduler.get_stats()['rate_limited_providers']

    def test_no_available_providers(self, fetcher, adapters):
        for name in ('fmp', 'yahoo', 'alpha_vantage'):
            fetcher.health.mark_rate_limited(name)
        scheduler = make_scheduler(fetcher, symbols=['RELIANCE', 'TCS'])

        result = scheduler.update_all_stocks()

        assert result.success is False
        assert result.failed_count == 2
        assert 'No available providers for indian stocks' in result.errors
        assert all(a.calls == [] for a in adapters)

    def test_storage_failure_counts_symbol_as_failed(self, fetcher):
        def writer(symbol, price):
            if symbol == 'MSFT':
                raise RuntimeError('database is locked')
            return 1

        scheduler = make_scheduler(fetcher, symbols=['AAPL', 'MSFT'], writer=writer)
        result = scheduler.update_all_stocks()

        assert result.updated_count == 1
        assert result.failed_count == 1
        assert any('MSFT' in e and 'database is locked' in e for e in result.errors)
        assert result.symbol_results['MSFT'] is None

    def test_critical_error_is_reported_not_raised(self, fetcher):
        def broken_source():
            raise RuntimeError('connection refused')

        scheduler = make_scheduler(fetcher, symbol_source=broken_source)
        result = scheduler.update_all_stocks()

        assert result.success is False
        assert result.errors == ['Critical error: connection refused']
        assert scheduler.is_updating is False
        assert scheduler.get_stats()['failed_updates'] == 1

    def test_run_is_recorded_by_monitor(self, fetcher):
        monitor = MagicMock()
        scheduler = make_scheduler(fetcher, symbols=['AAPL'], monitor=monitor)
        result = scheduler.update_all_stocks()
        monitor.record_update.assert_called_once_with(result)
        assert 'fmp' in result.provider_attempts


class TestUpdateGuard:

    def test_force_update_rejected_while_updating(self, fetcher, adapters):
        entered = threading.Event()
        release = threading.Event()

        def slow_source():
            entered.set()
            release.wait(5)
            return []

        scheduler = make_scheduler(fetcher, symbol_source=slow_source)
        worker = threading.Thread(target=scheduler.update_all_stocks, args=('hourly',))
        worker.start()
        try:
            assert entered.wait(5)
            assert scheduler.is_updating is True

            result = scheduler.force_update()

            assert result.success is False
            assert result.reason == ALREADY_IN_PROGRESS
            assert result.to_dict()['reason'] == 'Update already in progress'
            assert all(a.calls == [] for a in adapters)
        finally:
            release.set()
            worker.join(5)

        assert scheduler.is_updating is False
        # The rejected call is not counted as a run
        assert scheduler.get_stats()['total_updates'] == 1

    def test_force_update_type(self, fetcher):
        scheduler = make_scheduler(fetcher, symbols=['AAPL'])
        assert scheduler.force_update().update_type == 'manual_force'


class TestStatistics:

    def test_consecutive_failures_reset_on_success(self, fetcher, adapters):
        symbols = ['ZZZZ']
        scheduler = make_scheduler(fetcher, symbol_source=lambda: symbols)

        scheduler.update_all_stocks()
        scheduler.update_all_stocks()
        stats = scheduler.get_stats()
        assert stats['consecutive_failures'] == 2
        assert stats['failed_updates'] == 2
        assert stats['last_successful_update'] is None

        adapters[0].prices['ZZZZ'] = 5.0
        scheduler.update_all_stocks()
        stats = scheduler.get_stats()
        assert stats['consecutive_failures'] == 0
        assert stats['successful_updates'] == 1
        assert stats['total_updates'] == 3
        assert stats['last_successful_update'] is not None

    def test_snapshot_fields(self, fetcher):
        stats = make_scheduler(fetcher).get_stats()
        for key in ('total_updates', 'successful_updates', 'failed_updates', 'average_update_ms',
                    'consecutive_failures', 'last_update_time', 'is_running', 'is_updating',
                    'rate_limited_providers', 'jobs'):
            assert key in stats
        assert stats['is_running'] is False
        assert stats['jobs'] == []


class TestLifecycle:

    def test_start_registers_cron_jobs(self, fetcher):
        background = MagicMock()
        factory = MagicMock(return_value=background)
        scheduler = make_scheduler(fetcher, scheduler_factory=factory)

        scheduler.start()
        scheduler.start()   # already running

        factory.assert_called_once()
        background.start.assert_called_once()
        cron_jobs = [c.kwargs for c in background.add_job.call_args_list if c.kwargs['trigger'] == 'cron']
        assert [job['id'] for job in cron_jobs] == [t.id for t in UPDATE_TRIGGERS]
        assert background.add_job.call_count == len(UPDATE_TRIGGERS) + 1
        assert scheduler.is_running is True

    def test_start_registers_monitor_check(self, fetcher):
        background = MagicMock()
        scheduler = make_scheduler(fetcher, scheduler_factory=MagicMock(return_value=background))

        scheduler.start()

        jobs = {c.kwargs['id']: c.kwargs for c in background.add_job.call_args_list}
        job = jobs[MONITOR_CHECK_JOB_ID]
        assert job['trigger'] == 'interval'
        assert job['minutes'] == 60
        assert job['func'] == scheduler.check_monitor_alerts

    def test_monitor_check_raises_stale_alert_between_runs(self, fetcher):
        clock = FakeClock()
        monitor = StockPriceMonitor(clock=clock)
        background = MagicMock()
        scheduler = make_scheduler(fetcher, symbols=['AAPL'], monitor=monitor,
                                   scheduler_factory=MagicMock(return_value=background))
        scheduler.start()
        scheduler.update_all_stocks('hourly')

        # Cron jobs stop firing; only the periodic check runs
        clock.now += timedelta(hours=25)
        job = next(c.kwargs for c in background.add_job.call_args_list
                   if c.kwargs['id'] == MONITOR_CHECK_JOB_ID)
        alerts = job['func']()

        types = [a.type for a in alerts]
        assert AlertType.STALE_UPDATES in types
        assert AlertType.NO_SUCCESSFUL_UPDATES in types
        assert monitor.get_alerts(1)[0].type in (AlertType.STALE_UPDATES, AlertType.NO_SUCCESSFUL_UPDATES)

    def test_monitor_check_survives_monitor_errors(self, fetcher):
        monitor = MagicMock()
        monitor.check_alerts.side_effect = RuntimeError('boom')
        scheduler = make_scheduler(fetcher, monitor=monitor)
        assert scheduler.check_monitor_alerts() == []

    def test_stop_removes_jobs(self, fetcher):
        background = MagicMock()
        scheduler = make_scheduler(fetcher, scheduler_factory=MagicMock(return_value=background))
        scheduler.start()

        scheduler.stop()
        scheduler.stop()    # already stopped

        background.remove_all_jobs.assert_called_once()
        background.shutdown.assert_called_once_with(wait=False)
        assert scheduler.is_running is False

    def test_scheduled_job_runs_update(self, fetcher):
        background = MagicMock()
        scheduler = make_scheduler(fetcher, symbols=['AAPL'],
                                   scheduler_factory=MagicMock(return_value=background))
        scheduler.start()

        job = background.add_job.call_args_list[0].kwargs
        job['func'](*job['args'])

        assert scheduler.get_stats()['total_updates'] == 1


class TestTimestamps:

    def test_scheduler_and_monitor_share_utc_clock(self, fetcher):
        monitor = StockPriceMonitor()
        scheduler = make_scheduler(fetcher, symbols=['AAPL'], monitor=monitor)

        scheduler.update_all_stocks()

        stats = scheduler.get_stats()
        metrics = monitor.get_metrics()
        scheduler_time = datetime.fromisoformat(stats['last_update_time'])
        monitor_time = datetime.fromisoformat(metrics['last_update_time'])
        assert scheduler_time.utcoffset() == timedelta(0)
        assert monitor_time.utcoffset() == timedelta(0)
        assert abs(scheduler_time - monitor_time) < timedelta(seconds=5)
        assert monitor.check_alerts() == []


UTC = timezone.utc


def next_fire(trigger_id, after):
    trigger = next(t for t in UPDATE_TRIGGERS if t.id == trigger_id)
    return CronTrigger(timezone='UTC', **trigger.cron).get_next_fire_time(None, after)


class TestTriggerTable:

    def test_five_triggers(self):
        assert [t.update_type for t in UPDATE_TRIGGERS] == [
            'market_open', 'hourly', 'hourly', 'end_of_day', 'weekly_comprehensive'
        ]
        assert len({t.id for t in UPDATE_TRIGGERS}) == 5

    def test_market_open(self):
        # Monday 2026-01-05
        assert next_fire('stock_prices_market_open', datetime(2026, 1, 5, 3, 30, tzinfo=UTC)) == \
            datetime(2026, 1, 5, 4, 0, tzinfo=UTC)
        assert next_fire('stock_prices_market_open', datetime(2026, 1, 5, 4, 1, tzinfo=UTC)) == \
            datetime(2026, 1, 5, 14, 0, tzinfo=UTC)

    def test_market_open_skips_weekend(self):
        # Friday evening -> Monday morning
        assert next_fire('stock_prices_market_open', datetime(2026, 1, 9, 15, 0, tzinfo=UTC)) == \
            datetime(2026, 1, 12, 4, 0, tzinfo=UTC)

    def test_hourly_windows(self):
        assert next_fire('stock_prices_hourly_india', datetime(2026, 1, 5, 10, 30, tzinfo=UTC)) == \
            datetime(2026, 1, 6, 4, 0, tzinfo=UTC)
        assert next_fire('stock_prices_hourly_us', datetime(2026, 1, 5, 10, 30, tzinfo=UTC)) == \
            datetime(2026, 1, 5, 14, 0, tzinfo=UTC)
        assert next_fire('stock_prices_hourly_us', datetime(2026, 1, 5, 21, 0, 1, tzinfo=UTC)) == \
            datetime(2026, 1, 6, 14, 0, tzinfo=UTC)

    def test_end_of_day(self):
        assert next_fire('stock_prices_end_of_day', datetime(2026, 1, 5, 11, 0, tzinfo=UTC)) == \
            datetime(2026, 1, 5, 21, 30, tzinfo=UTC)

    def test_weekly_comprehensive(self):
        # Saturday 2026-01-10 02:00
        assert next_fire('stock_prices_weekly', datetime(2026, 1, 5, 0, 0, tzinfo=UTC)) == \
            datetime(2026, 1, 10, 2, 0, tzinfo=UTC)
