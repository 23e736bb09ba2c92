"""
Application Constants

Centralized constants for tradable assets, candle intervals and cache policy.
"""

from typing import Dict, List, Tuple

# Tradable assets shown in the UI asset picker
SUPPORTED_ASSETS: List[Dict[str, object]] = [
    {"symbol": "BTC", "name": "Bitcoin", "isActive": True},
    {"symbol": "ETH", "name": "Ethereum", "isActive": True},
    {"symbol": "SOL", "name": "Solana", "isActive": True},
]

# Short asset name -> Binance market symbol
ASSET_SYMBOL_MAP: Dict[str, str] = {
    "BTC": "BTCUSDT",
    "ETH": "ETHUSDT",
    "SOL": "SOLUSDT",
}

QUOTE_ASSET = "USDT"

# Candle intervals accepted by /api/market/klines
ALLOWED_INTERVALS = {"1m", "5m", "15m", "30m", "1h", "4h", "1d"}
DEFAULT_INTERVAL = "15m"

# Minutes -> Binance interval code
MINUTES_TO_INTERVAL: Dict[int, str] = {
    1: "1m",
    5: "5m",
    15: "15m",
    30: "30m",
    60: "1h",
    240: "4h",
    1440: "1d",
}

KLINE_LIMIT_DEFAULT = 200
KLINE_LIMIT_MIN = 50
KLINE_LIMIT_MAX = 1000

# Chart range -> (interval, limit) for /api/prices/history
HISTORY_RANGES: Dict[str, Tuple[str, int]] = {
    "1d": ("15m", 96),
    "1w": ("1h", 168),
    "1m": ("4h", 180),
}
HISTORY_RANGE_DEFAULT: Tuple[str, int] = ("4h", 200)

# Cache TTL (seconds)
STATS_CACHE_TTL = 15
KLINES_CACHE_TTL = 30

# Cache-Control headers sent to browsers/CDNs
CACHE_CONTROL_LATEST = "public, s-maxage=10, stale-while-revalidate=20"
CACHE_CONTROL_PRICES = "public, s-maxage=5, stale-while-revalidate=10"
CACHE_CONTROL_KLINES = "public, s-maxage=30, stale-while-revalidate=60"
CACHE_CONTROL_STATS = "public, s-maxage=15, stale-while-revalidate=30"

# A position whose remaining |quantity| is below this is treated as closed
QUANTITY_EPSILON = 1e-8

# Limits for list endpoints
TRADES_HISTORY_LIMIT = 100
NOTIFICATIONS_LIMIT = 50
ADMIN_PAGE_LIMIT_DEFAULT = 50
ADMIN_PAGE_LIMIT_MAX = 200
