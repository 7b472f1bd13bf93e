"""
Stock Price API

Manual price refresh, scheduler control and price pipeline monitoring:
- POST /api/stocks/refresh-prices        refresh the given symbols now
- GET  /api/stocks/prices?symbols=A,B    cached price lookup
- GET  /api/stocks/providers             provider configuration and health
- GET  /api/stocks/health                live provider probe
- GET  /api/stocks/scheduler/status      scheduler statistics
- POST /api/stocks/scheduler/force-update
- GET  /api/stocks/monitor/health|alerts|report
"""

from flask import Blueprint, request, jsonify
import logging

from ..models import get_stocks_by_symbols, update_stocks_price
from ..scheduler import ALREADY_IN_PROGRESS
from ..services import get_services

stocks_bp = Blueprint('stocks', __name__, url_prefix='/api/stocks')
logger = logging.getLogger(__name__)


def _providers_info(services):
    return [
        {'name': adapter.display_name, 'hasApiKey': adapter.has_api_key}
        for adapter in services.adapters
    ]


def _parse_symbols(data):
    """Return a de-duplicated symbol list, or None when the payload is invalid."""
    symbols = data.get('symbols') if isinstance(data, dict) else None
    if not isinstance(symbols, list) or not symbols:
        return None
    if not all(isinstance(s, str) and s.strip() for s in symbols):
        return None
    return list(dict.fromkeys(s.strip() for s in symbols))


@stocks_bp.route('/refresh-prices', methods=['POST'])
def refresh_prices():
    """
    Fetch fresh prices for the given symbols and store them on every
    holding of each symbol.

    Request:
        {"symbols": ["AAPL", "HDFCBANK"]}

    Returns:
        200 when every symbol was updated, 207 when some were, 503 when none were:
        {
            "success": true,
            "message": "Updated 1 of 2 stock prices. Some symbols could not be updated.",
            "updated": 1,
            "total": 2,
            "prices": {"AAPL": 190.5, "HDFCBANK": null},
            "failedSymbols": ["HDFCBANK"],
            "providers": [{"name": "Financial Modeling Prep", "hasApiKey": true}, ...]
        }
    """
    symbols = _parse_symbols(request.get_json(silent=True))
    if symbols is None:
        logger.info("[Stock Price Refresh] Invalid symbols array")
        return jsonify({'error': 'Valid stock symbols array is required', 'success': False}), 400

    services = get_services()
    try:
        logger.info(f"[Stock Price Refresh] Refreshing {len(symbols)} symbols")
        stocks = get_stocks_by_symbols(symbols)
        stocks_by_symbol = {}
        for stock in stocks:
            stocks_by_symbol.setdefault(stock.symbol, []).append(stock)

        prices = services.fetcher.fetch_batch_prices(symbols)

        updated_count = 0
        failed_symbols = []
        for symbol in symbols:
            price = prices.get(symbol)
            if price is None:
                logger.info(f"[Stock Price Refresh] No price found for {symbol}")
                failed_symbols.append(symbol)
                continue

            rows = stocks_by_symbol.get(symbol)
            if not rows:
                logger.info(f"[Stock Price Refresh] No stored holding found for {symbol}")
                failed_symbols.append(symbol)
                continue

            try:
                update_stocks_price([stock.id for stock in rows], price)
                updated_count += 1
            except Exception as e:
                logger.error(f"[Stock Price Refresh] Error updating {symbol}: {e}")
                failed_symbols.append(symbol)

        status = 200
        message = f"Updated {updated_count} of {len(symbols)} stock prices"
        if updated_count == 0:
            status = 503
            message = 'All stock price updates failed. API services may be unavailable.'
        elif failed_symbols:
            status = 207
            message = (
                f"Updated {updated_count} of {len(symbols)} stock prices. "
                "Some symbols could not be updated."
            )

        logger.info(f"[Stock Price Refresh] Completed: {message}")
        body = {
            'success': updated_count > 0,
            'message': message,
            'updated': updated_count,
            'total': len(symbols),
            'prices': prices,
            'providers': _providers_info(services),
        }
        if failed_symbols:
            body['failedSymbols'] = failed_symbols
        return jsonify(body), status

    except Exception as e:
        logger.error(f"[Stock Price Refresh] Error: {e}", exc_info=True)
        return jsonify({
            'error': 'Server error while refreshing stock prices',
            'message': str(e),
            'success': False,
        }), 500


@stocks_bp.route('/prices', methods=['GET'])
def get_prices():
    """
    Cached price lookup.

    Query Parameters:
        symbols: Comma separated symbols (required)
        refresh: "true" to bypass the cache
    """
    raw = request.args.get('symbols', '')
    symbols = list(dict.fromkeys(s.strip() for s in raw.split(',') if s.strip()))
    if not symbols:
        return jsonify({'success': False, 'error': 'symbols query parameter is required'}), 400

    use_cache = request.args.get('refresh', 'false').lower() != 'true'
    try:
        prices = get_services().price_service.get_prices(symbols, use_cache=use_cache)
        return jsonify({
            'success': True,
            'data': prices,
            'failedSymbols': [s for s, price in prices.items() if price is None],
        })
    except Exception as e:
        logger.error(f"Error getting prices: {e}")
        return jsonify({'success': False, 'error': str(e)}), 500


@stocks_bp.route('/providers', methods=['GET'])
def get_providers():
    """Provider configuration plus health (failure count, cooldown)."""
    try:
        services = get_services()
        health = services.health.snapshot()
        providers = []
        for adapter in services.adapters:
            providers.append({
                'name': adapter.name,
                'display_name': adapter.display_name,
                'has_api_key': adapter.has_api_key,
                'available': adapter.is_available(),
                'rate_limited': services.health.is_rate_limited(adapter.name),
                'status': services.fetcher.provider_status(adapter.name).value,
                'batch_size': adapter.batch_size,
                'batch_delay_seconds': adapter.batch_delay_seconds,
                'health': health.get(adapter.name),
            })
        return jsonify({
            'success': True,
            'data': {
                'providers': providers,
                'current_provider': services.fetcher.current_provider,
            }
        })
    except Exception as e:
        logger.error(f"Error getting provider status: {e}")
        return jsonify({'success': False, 'error': str(e)}), 500


@stocks_bp.route('/health', methods=['GET'])
def price_service_health():
    """Live probe: fetch one US and one Indian symbol, bypassing the cache."""
    try:
        data = get_services().price_service.health_check()
        return jsonify({'success': data['healthy'], 'data': data}), 200 if data['healthy'] else 503
    except Exception as e:
        logger.error(f"Error running price health check: {e}")
        return jsonify({'success': False, 'error': str(e)}), 500


@stocks_bp.route('/scheduler/status', methods=['GET'])
def scheduler_status():
    try:
        return jsonify({'success': True, 'data': get_services().scheduler.get_stats()})
    except Exception as e:
        logger.error(f"Error getting scheduler status: {e}")
        return jsonify({'success': False, 'error': str(e)}), 500


@stocks_bp.route('/scheduler/force-update', methods=['POST'])
def scheduler_force_update():
    """Run a full update now. 409 while another update is running."""
    try:
        result = get_services().scheduler.force_update()
        if result.reason == ALREADY_IN_PROGRESS:
            return jsonify({'success': False, 'data': result.to_dict(), 'error': result.reason}), 409
        return jsonify({'success': result.success, 'data': result.to_dict()})
    except Exception as e:
        logger.error(f"Error forcing price update: {e}")
        return jsonify({'success': False, 'error': str(e)}), 500


@stocks_bp.route('/monitor/health', methods=['GET'])
def monitor_health():
    try:
        return jsonify({'success': True, 'data': get_services().monitor.get_health_status()})
    except Exception as e:
        logger.error(f"Error getting monitor health: {e}")
        return jsonify({'success': False, 'error': str(e)}), 500


@stocks_bp.route('/monitor/alerts', methods=['GET'])
def monitor_alerts():
    """
    Recent alerts, newest first.

    Query Parameters:
        limit: Max alerts to return (default 20, max 100)
    """
    try:
        limit = min(max(request.args.get('limit', 20, type=int), 0), 100)
        alerts = get_services().monitor.get_alerts(limit)
        return jsonify({'success': True, 'data': [a.to_dict() for a in alerts]})
    except Exception as e:
        logger.error(f"Error getting alerts: {e}")
        return jsonify({'success': False, 'error': str(e)}), 500


@stocks_bp.route('/monitor/report', methods=['GET'])
def monitor_report():
    try:
        services = get_services()
        report = services.monitor.generate_report()
        report['price_service'] = {'cache': services.price_service.cache.stats}
        return jsonify({'success': True, 'data': report})
    except Exception as e:
        logger.error(f"Error generating monitor report: {e}")
        return jsonify({'success': False, 'error': str(e)}), 500
