"""
Global test fixtures for the finance tracker backend.
Price providers are replaced by fakes and no test sleeps for real.
"""
import pytest
import os
import sys
from datetime import datetime

# Ensure the package is importable
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from tests.fixtures.fake_providers import make_adapters


def no_sleep(seconds):
    pass


@pytest.fixture
def fake_adapters():
    """fmp / yahoo / alpha_vantage fakes keyed by provider name."""
    return {adapter.name: adapter for adapter in make_adapters()}


@pytest.fixture
def services(fake_adapters):
    from finance_tracker.services import build_stock_price_services

    config = {
        'RATE_LIMIT_COOLDOWN_SECONDS': 600,
        'PRICE_CACHE_TTL_SECONDS': 300,
        'REGION_GROUP_DELAY_SECONDS': 0,
    }
    return build_stock_price_services(config, adapters=list(fake_adapters.values()), sleep=no_sleep)


@pytest.fixture
def app(services, tmp_path):
    """Create Flask test application with SQLite in-memory database."""
    from finance_tracker import create_app
    from finance_tracker.config import Config

    class TestConfig(Config):
        TESTING = True
        SQLALCHEMY_DATABASE_URI = 'sqlite://'
        SQLALCHEMY_ENGINE_OPTIONS = {
            'connect_args': {'check_same_thread': False}
        }
        STOCK_PRICE_SCHEDULER_ENABLED = False
        LOG_DIR = str(tmp_path / 'logs')

    application = create_app(TestConfig, services=services)

    yield application

    with application.app_context():
        from finance_tracker.models import db
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def add_stocks(app):
    """Insert stock holdings: add_stocks('AAPL', 'HDFCBANK', ...)."""
    from finance_tracker.models import db, Stock

    def _add(*symbols, family_member_id=1):
        with app.app_context():
            for symbol in symbols:
                db.session.add(Stock(
                    symbol=symbol,
                    company_name=f'{symbol} Ltd',
                    quantity=10,
                    purchase_price=100.0,
                    family_member_id=family_member_id,
                    created_at=datetime(2026, 1, 2),
                ))
            db.session.commit()

    return _add
