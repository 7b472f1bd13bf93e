from flask import Flask
from flask_cors import CORS
import os
import logging
import atexit
from .config import Config


def _configure_logging(log_dir):
    log_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    # File handler - saves to logs/backend.log
    if not os.path.exists(log_dir):
        os.makedirs(log_dir)

    file_handler = logging.FileHandler(os.path.join(log_dir, 'backend.log'))
    file_handler.setLevel(logging.INFO)
    file_handler.setFormatter(log_formatter)

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(log_formatter)

    # Configure root logger
    logging.basicConfig(
        level=logging.INFO,
        handlers=[file_handler, console_handler]
    )


def create_app(config_class=Config, services=None):
    """
    Application factory.

    services: a prebuilt StockPriceServices container (tests pass one with
    fake adapters); built from the app config when omitted.
    """
    app = Flask(__name__)
    app.config.from_object(config_class)

    _configure_logging(app.config.get('LOG_DIR', 'logs'))

    # CORS
    CORS(app, resources={r"/api/*": {"origins": "*"}})

    # Initialize Extensions
    from .models import db
    db.init_app(app)
    with app.app_context():
        db.create_all()

    # Stock price pipeline, built once per app
    from .services import EXTENSION_KEY, build_stock_price_services
    if services is None:
        services = build_stock_price_services(app.config)
    app.extensions[EXTENSION_KEY] = services

    # Start the scheduler (not in the debug reloader's parent process)
    if app.config.get('STOCK_PRICE_SCHEDULER_ENABLED') and not os.environ.get('WERKZEUG_RUN_MAIN'):
        services.scheduler.start(app)

        # Ensure scheduler shuts down properly
        atexit.register(services.scheduler.stop)

    # Register Blueprints
    from .api.stocks import stocks_bp

    app.register_blueprint(stocks_bp)

    @app.route('/health')
    def health():
        return {'status': 'ok'}

    return app
