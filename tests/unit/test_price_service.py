"""
Unit tests for PriceService: cache use, region grouping, retry backoff
and the health check.
"""
import pytest
from unittest.mock import MagicMock, call

from finance_tracker.services.stock_prices.cache import PriceCache
from finance_tracker.services.stock_prices.fetcher import BatchPriceFetcher
from finance_tracker.services.stock_prices.health import ProviderHealthRegistry
from finance_tracker.services.stock_prices.service import PriceService
from tests.fixtures.fake_providers import make_adapters


@pytest.fixture
def adapters():
    return make_adapters(
        fmp_prices={'AAPL': 190.5, 'MSFT': 410.0},
        yahoo_prices={'HDFCBANK.NS': 1650.0},
    )


@pytest.fixture
def sleep():
    return MagicMock()


@pytest.fixture
def service(adapters, sleep):
    fetcher = BatchPriceFetcher(adapters, ProviderHealthRegistry(), sleep=lambda s: None)
    return PriceService(fetcher, PriceCache(ttl_seconds=300), sleep=sleep, group_delay_seconds=2)


class TestGetPrices:

    def test_resolves_and_caches(self, service, adapters):
        prices = service.get_prices(['AAPL', 'HDFCBANK'])
        assert prices == {'AAPL': 190.5, 'HDFCBANK': 1650.0}
        assert service.cache.get('AAPL') == 190.5
        assert service.cache.get('HDFCBANK') == 1650.0

    def test_cache_hit_skips_providers(self, service, adapters):
        service.cache.set('AAPL', 188.0)
        assert service.get_prices(['AAPL']) == {'AAPL': 188.0}
        assert all(a.calls == [] for a in adapters)

    def test_only_uncached_symbols_are_fetched(self, service, adapters):
        service.cache.set('AAPL', 188.0)
        prices = service.get_prices(['AAPL', 'MSFT'])
        assert prices == {'AAPL': 188.0, 'MSFT': 410.0}
        assert adapters[0].calls == [['MSFT']]

    def test_use_cache_false_refetches(self, service, adapters):
        service.cache.set('AAPL', 188.0)
        assert service.get_prices(['AAPL'], use_cache=False) == {'AAPL': 190.5}
        assert adapters[0].calls == [['AAPL']]

    def test_unresolved_symbols_are_not_cached(self, service):
        prices = service.get_prices(['ZZZZ'], max_retries=1)
        assert prices == {'ZZZZ': None}
        assert service.cache.stats['size'] == 0

    def test_regions_are_fetched_with_their_preference(self, service, adapters, sleep):
        fmp, yahoo, av = adapters
        service.get_prices(['AAPL', 'HDFCBANK'])
        assert yahoo.calls == [['HDFCBANK.NS']]
        assert fmp.calls == [['AAPL']]
        assert sleep.call_args_list == [call(2)]

    def test_duplicate_symbols(self, service):
        assert service.get_prices(['AAPL', 'AAPL']) == {'AAPL': 190.5}


class TestRetries:

    def test_exponential_backoff_between_attempts(self, service, adapters, sleep):
        prices = service.get_prices(['ZZZZ'], max_retries=3)

        assert prices == {'ZZZZ': None}
        # No wait after the final attempt
        assert sleep.call_args_list == [call(2), call(4)]
        assert len(adapters[0].calls) == 3

    def test_retry_picks_up_late_prices(self, adapters, sleep):
        fmp, yahoo, av = adapters
        fmp.errors = [RuntimeError('temporary outage')]
        fetcher = BatchPriceFetcher([fmp], ProviderHealthRegistry(), sleep=lambda s: None)
        service = PriceService(fetcher, sleep=sleep)

        assert service.get_prices(['AAPL']) == {'AAPL': 190.5}
        assert fmp.calls == [['AAPL'], ['AAPL']]
        assert sleep.call_args_list == [call(2)]

    def test_no_providers_available(self, adapters, sleep):
        fetcher = BatchPriceFetcher(adapters, ProviderHealthRegistry(), sleep=lambda s: None)
        for adapter in adapters:
            fetcher.health.mark_rate_limited(adapter.name)
        service = PriceService(fetcher, sleep=sleep)

        assert service.get_prices(['AAPL'], max_retries=2) == {'AAPL': None}
        assert all(a.calls == [] for a in adapters)


class TestHealthCheck:

    def test_reports_success_rate(self, service):
        # HDFCBANK resolves through Yahoo, AAPL through FMP
        health = service.health_check()
        assert health['healthy'] is True
        assert health['success_rate'] == 1.0
        assert health['available_providers'] == 3
        assert 'cache_stats' in health

    def test_partial_health(self, adapters, sleep):
        fmp, yahoo, av = adapters
        yahoo.prices.clear()
        fetcher = BatchPriceFetcher(adapters, ProviderHealthRegistry(), sleep=lambda s: None)
        service = PriceService(fetcher, sleep=sleep)

        health = service.health_check()

        assert health['healthy'] is True
        assert health['success_rate'] == 0.5

    def test_health_check_bypasses_cache(self, service, adapters):
        service.cache.set('AAPL', 1.0)
        service.health_check()
        assert ['AAPL'] in adapters[0].calls

    def test_unhealthy_when_nothing_resolves(self, sleep):
        fetcher = BatchPriceFetcher(make_adapters(), ProviderHealthRegistry(), sleep=lambda s: None)
        health = PriceService(fetcher, sleep=sleep).health_check()
        assert health['healthy'] is False
        assert health['success_rate'] == 0


class TestClearCache:

    def test_clear_cache(self, service):
        service.get_prices(['AAPL'])
        service.clear_cache()
        assert service.cache.stats['size'] == 0
