"""
Region Detection Module

Single source of truth for deciding which region a ticker belongs to and
how a stored ticker is spelled for the price providers.

Supported Regions:
- INDIAN: NSE/BSE listings (.NS / .BO suffix, or a known bare NSE ticker)
- US: short bare tickers (up to 5 characters, no suffix)
- OTHER: everything else (e.g. SHEL.L)
"""

from collections import OrderedDict
from typing import Dict, Iterable, List
from .interfaces import Region


INDIAN_SUFFIXES = ('.NS', '.BO')

# Bare tickers treated as Indian even without a suffix
KNOWN_NSE_SYMBOLS = frozenset({
    'HDFCBANK', 'LT', 'TCS', 'RELIANCE', 'INFY', 'WIPRO', 'BHARTIARTL',
    'SBIN', 'ICICIBANK', 'KOTAKBANK', 'ITC', 'HINDUNILVR', 'NESTLEIND',
    'ASIANPAINT', 'MARUTI', 'BAJFINANCE', 'HCLTECH', 'TECHM', 'ULTRACEMCO',
    'TITAN', 'SUNPHARMA', 'DRREDDY', 'COALINDIA', 'NTPC', 'POWERGRID',
    'ONGC', 'GRASIM', 'JSWSTEEL', 'TATASTEEL', 'HINDALCO',
})

# Stored ticker -> provider ticker. Wider than KNOWN_NSE_SYMBOLS: these are
# only rewritten for the API call, not used for region routing.
NSE_SYMBOL_MAP: Dict[str, str] = {
    symbol: f"{symbol}.NS" for symbol in KNOWN_NSE_SYMBOLS | {
        'ADANIPORTS', 'BPCL', 'IOC', 'HEROMOTOCO', 'BAJAJ-AUTO', 'M&M',
        'EICHERMOT', 'TATACONSUM', 'BRITANNIA', 'DIVISLAB', 'CIPLA',
        'APOLLOHOSP', 'INDIGO', 'SPICEJET', 'JUBLFOOD', 'PEL', 'WHIRLPOOL',
        'GODREJCP', 'PIDILITIND', 'BERGEPAINT', 'AKZONOBEL', 'INDIGOPNTS',
        'HINDCOPPER', 'HAL', 'IEX', 'BSEL',
    }
}


def _normalize(symbol: str) -> str:
    return symbol.strip().upper()


def is_indian_stock(symbol: str) -> bool:
    """
    Check if a symbol is an Indian listing.

    Examples:
        >>> is_indian_stock("RELIANCE")
        True
        >>> is_indian_stock("TATAMOTORS.NS")
        True
        >>> is_indian_stock("AAPL")
        False
    """
    normalized = _normalize(symbol)
    if normalized.endswith(INDIAN_SUFFIXES):
        return True
    return normalized in KNOWN_NSE_SYMBOLS


def is_us_stock(symbol: str) -> bool:
    """Short bare tickers that are not Indian are treated as US."""
    normalized = _normalize(symbol)
    return len(normalized) <= 5 and '.' not in normalized and not is_indian_stock(normalized)


def classify_region(symbol: str) -> Region:
    """
    Detect which region a symbol belongs to.

    Detection Rules (in order of priority):
    1. .NS / .BO suffix or a known NSE ticker -> INDIAN
    2. At most 5 characters without a dot -> US
    3. Default: OTHER

    Examples:
        >>> classify_region("RELIANCE")
        <Region.INDIAN: 'indian'>
        >>> classify_region("AAPL")
        <Region.US: 'us'>
        >>> classify_region("SHEL.L")
        <Region.OTHER: 'other'>
    """
    if is_indian_stock(symbol):
        return Region.INDIAN
    if is_us_stock(symbol):
        return Region.US
    return Region.OTHER


def group_symbols_by_region(symbols: Iterable[str]) -> "OrderedDict[Region, List[str]]":
    """Split symbols into indian/us/other groups, keeping input order."""
    groups: "OrderedDict[Region, List[str]]" = OrderedDict(
        (region, []) for region in (Region.INDIAN, Region.US, Region.OTHER)
    )
    for symbol in symbols:
        groups[classify_region(symbol)].append(symbol)
    return groups


def map_symbol_for_api(symbol: str) -> str:
    """
    Spell a stored ticker the way the providers expect it.

    Examples:
        >>> map_symbol_for_api("RELIANCE")
        'RELIANCE.NS'
        >>> map_symbol_for_api("AAPL")
        'AAPL'
    """
    return NSE_SYMBOL_MAP.get(_normalize(symbol), symbol)


def map_symbol_from_api(api_symbol: str) -> str:
    """
    Strip exchange suffixes added for the providers.

    Examples:
        >>> map_symbol_from_api("RELIANCE.NS")
        'RELIANCE'
        >>> map_symbol_from_api("SBIN.BO")
        'SBIN'
    """
    for suffix in INDIAN_SUFFIXES:
        if api_symbol.endswith(suffix):
            return api_symbol[:-len(suffix)]
    return api_symbol
