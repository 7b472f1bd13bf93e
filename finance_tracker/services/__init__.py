"""
Service container for the stock price pipeline.

Everything is built once by create_app() and stored in
app.extensions['stock_prices']; routes look it up through current_app.
"""

import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from flask import current_app

from .stock_prices import (
    BatchPriceFetcher,
    PriceCache,
    PriceProviderAdapter,
    PriceService,
    ProviderHealthRegistry,
    StockPriceMonitor,
    build_default_adapters,
    log_alert_handler,
)

EXTENSION_KEY = 'stock_prices'


@dataclass
class StockPriceServices:
    adapters: List[PriceProviderAdapter]
    health: ProviderHealthRegistry
    fetcher: BatchPriceFetcher
    price_service: PriceService
    monitor: StockPriceMonitor
    scheduler: object  # StockPriceScheduler


def build_stock_price_services(
    config,
    adapters: Optional[List[PriceProviderAdapter]] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> StockPriceServices:
    """
    Wire the pipeline from a Flask config mapping.

    adapters defaults to the three HTTP providers with keys from config.
    """
    from ..models import get_distinct_symbols, update_symbol_price
    from ..scheduler import StockPriceScheduler

    if adapters is None:
        adapters = build_default_adapters(
            env={
                'FMP_API_KEY': config.get('FMP_API_KEY') or '',
                'ALPHA_VANTAGE_API_KEY': config.get('ALPHA_VANTAGE_API_KEY') or '',
            },
            timeout_seconds=config.get('PRICE_FETCH_TIMEOUT_SECONDS', 15),
        )

    health = ProviderHealthRegistry(cooldown_seconds=config.get('RATE_LIMIT_COOLDOWN_SECONDS', 600))
    fetcher = BatchPriceFetcher(adapters, health, sleep=sleep)
    group_delay = config.get('REGION_GROUP_DELAY_SECONDS', 2)

    price_service = PriceService(
        fetcher,
        PriceCache(ttl_seconds=config.get('PRICE_CACHE_TTL_SECONDS', 300)),
        sleep=sleep,
        group_delay_seconds=group_delay,
    )

    monitor = StockPriceMonitor()
    monitor.add_notification_handler(log_alert_handler)

    scheduler = StockPriceScheduler(
        fetcher=fetcher,
        monitor=monitor,
        symbol_source=get_distinct_symbols,
        price_writer=update_symbol_price,
        sleep=sleep,
        group_delay_seconds=group_delay,
    )

    return StockPriceServices(
        adapters=list(adapters),
        health=health,
        fetcher=fetcher,
        price_service=price_service,
        monitor=monitor,
        scheduler=scheduler,
    )


def get_services() -> StockPriceServices:
    """The container attached to the current app."""
    return current_app.extensions[EXTENSION_KEY]
