import os

from dotenv import load_dotenv

# ../.env
DOTENV_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), '../.env')

load_dotenv(DOTENV_PATH)


def _env_bool(name, default):
    return os.getenv(name, default).lower() in ('1', 'true', 'yes')


class Config:
    # Basic Config
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key')

    # Database
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    database_url = os.getenv('DATABASE_URL') or os.getenv('POSTGRES_URL')

    if database_url:
        # SQLAlchemy only recognises the postgresql:// scheme
        if database_url.startswith('postgres://'):
            database_url = database_url.replace('postgres://', 'postgresql://', 1)
        SQLALCHEMY_DATABASE_URI = database_url
        SQLALCHEMY_ENGINE_OPTIONS = {
            'pool_size': 5,
            'max_overflow': 10,
            'pool_recycle': 300,
            'pool_pre_ping': True,
        }
    else:
        # Fallback for dev
        db_dir = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'data')
        os.makedirs(db_dir, exist_ok=True)
        SQLALCHEMY_DATABASE_URI = f'sqlite:///{os.path.join(db_dir, "finance_tracker.db")}'
        SQLALCHEMY_ENGINE_OPTIONS = {
            'connect_args': {
                'timeout': 20,
                'check_same_thread': False,     # Scheduler thread shares the engine
            },
        }

    # Price providers (no built-in fallback keys)
    FMP_API_KEY = os.getenv('FMP_API_KEY', '')
    ALPHA_VANTAGE_API_KEY = os.getenv('ALPHA_VANTAGE_API_KEY', '')

    # Stock price pipeline
    PRICE_FETCH_TIMEOUT_SECONDS = float(os.getenv('PRICE_FETCH_TIMEOUT_SECONDS', '15'))
    RATE_LIMIT_COOLDOWN_SECONDS = float(os.getenv('RATE_LIMIT_COOLDOWN_SECONDS', '600'))
    PRICE_CACHE_TTL_SECONDS = float(os.getenv('PRICE_CACHE_TTL_SECONDS', '300'))
    REGION_GROUP_DELAY_SECONDS = float(os.getenv('REGION_GROUP_DELAY_SECONDS', '2'))
    STOCK_PRICE_SCHEDULER_ENABLED = _env_bool('STOCK_PRICE_SCHEDULER_ENABLED', 'true')

    # Logging
    LOG_DIR = os.getenv('LOG_DIR', 'logs')
