"""
Public (unauthenticated) Binance market data API.

These endpoints require NO API credentials. Every request tries the primary
base URL first and falls back to the secondary one (binance.us by default)
when the primary fails or is geo-blocked.

Public endpoints used:
  GET /api/v3/ticker/price
  GET /api/v3/ticker/24hr
  GET /api/v3/klines
"""

import logging
import math
import re
from typing import Any, Dict, List, Optional, Tuple

import httpx

from cryptex.cache import market_cache
from cryptex.config import settings
from cryptex.constants import (
    ALLOWED_INTERVALS,
    ASSET_SYMBOL_MAP,
    DEFAULT_INTERVAL,
    HISTORY_RANGE_DEFAULT,
    HISTORY_RANGES,
    KLINE_LIMIT_DEFAULT,
    KLINE_LIMIT_MAX,
    KLINE_LIMIT_MIN,
    KLINES_CACHE_TTL,
    MINUTES_TO_INTERVAL,
    QUOTE_ASSET,
    STATS_CACHE_TTL,
)
from cryptex.utils.url_utils import unique_origins, url_host

logger = logging.getLogger(__name__)

USER_AGENT = "Cryptex/1.0"

_INTERVAL_PATTERN = re.compile(r"^(\d+)\s*(m|min|h|hour|d|day)$", re.ASCII)
_ASCII_DIGITS = re.compile(r"\d+", re.ASCII)


# ---------------------------------------------------------------------------
# Symbols
# ---------------------------------------------------------------------------

def to_market_symbol(value: str) -> str:
    """'btc' -> 'BTCUSDT'; already-qualified symbols pass through upper-cased."""
    upper = (value or "").strip().upper()
    return upper if upper.endswith(QUOTE_ASSET) else f"{upper}{QUOTE_ASSET}"


def is_supported_symbol(market_symbol: str) -> bool:
    return market_symbol in settings.get_allowed_symbols()


def resolve_asset_symbol(asset: Optional[str]) -> Optional[str]:
    """Map a short asset name (BTC/ETH/SOL) to its market symbol, or None if unsupported."""
    if not asset:
        return None
    return ASSET_SYMBOL_MAP.get(asset.strip().upper())


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------

def resolve_base_urls() -> List[str]:
    """Primary then fallback base URL, normalized to origins and de-duplicated."""
    return unique_origins([
        settings.market_data_base_url or "https://api.binance.com",
        settings.market_data_fallback_base_url or "https://api.binance.us",
    ])


async def fetch_market_json(
    path: str,
    params: Optional[Dict[str, str]] = None,
) -> Tuple[Optional[Any], Optional[str]]:
    """
    GET ``path`` from each base URL in turn until one answers with 2xx JSON.

    Returns (data, source_base_url). data is None when every base URL failed;
    source_base_url is then the last one tried.
    """
    timeout = max(1000, settings.market_data_timeout_ms) / 1000.0
    headers = {"Accept": "application/json", "User-Agent": USER_AGENT}
    last_base_url: Optional[str] = None

    for base_url in resolve_base_urls():
        last_base_url = base_url
        url = f"{base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=timeout, headers=headers) as client:
                resp = await client.get(url, params=params)

            if resp.status_code < 200 or resp.status_code >= 300:
                logger.warning(
                    "Market data fetch failed: base=%s status=%s path=%s",
                    base_url, resp.status_code, path,
                )
                continue

            return resp.json(), base_url

        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Market data fetch error: base=%s path=%s error=%s", base_url, path, exc)
            continue

    return None, last_base_url


def source_host(source_base_url: Optional[str]) -> Optional[str]:
    """Host to expose in the x-market-data-source response header."""
    return url_host(source_base_url)


# ---------------------------------------------------------------------------
# Latest price
# ---------------------------------------------------------------------------

def _parse_float(value: Any) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number != number or number in (float("inf"), float("-inf")):
        return None
    return number


async def get_latest_price_with_source(symbol: str) -> Tuple[Optional[float], Optional[str]]:
    """
    Latest trade price for ``symbol`` (cached for PRICE_CACHE_TTL seconds).

    Unsupported symbols return (None, None) without touching the network.
    """
    market_symbol = to_market_symbol(symbol)
    if not is_supported_symbol(market_symbol):
        return None, None

    cache_key = f"price_{market_symbol}"
    cached = await market_cache.get(cache_key)
    if cached is not None:
        return cached

    data, source = await fetch_market_json("/api/v3/ticker/price", {"symbol": market_symbol})
    if not data:
        return None, source

    price = _parse_float(data.get("price"))
    if price is None:
        return None, source

    await market_cache.set(cache_key, (price, source), settings.price_cache_ttl_seconds)
    return price, source


async def get_latest_price(symbol: str) -> Optional[float]:
    price, _ = await get_latest_price_with_source(symbol)
    return price


# ---------------------------------------------------------------------------
# 24h stats
# ---------------------------------------------------------------------------

async def get_24h_stats(market_symbol: str) -> Optional[Dict[str, Any]]:
    """24-hour ticker stats (cached STATS_CACHE_TTL seconds). None when unavailable."""
    cache_key = f"stats_{market_symbol}"

    async def _fetch():
        data, _ = await fetch_market_json("/api/v3/ticker/24hr", {"symbol": market_symbol})
        if not data:
            return None
        return {
            "symbol": data.get("symbol", market_symbol),
            "lastPrice": _parse_float(data.get("lastPrice")),
            "priceChangePercent": _parse_float(data.get("priceChangePercent")),
            "highPrice": _parse_float(data.get("highPrice")),
            "lowPrice": _parse_float(data.get("lowPrice")),
        }

    return await market_cache.get_or_fetch(cache_key, _fetch, STATS_CACHE_TTL)


# ---------------------------------------------------------------------------
# Candles (OHLCV)
# ---------------------------------------------------------------------------

def normalize_interval(raw: Optional[str]) -> str:
    """
    Coerce user input into a Binance kline interval.

    Accepts native codes (15m, 4h), minute counts ("60" -> 1h), unit words
    ("day" -> 1d) and "<n><unit>" forms ("5 min" -> 5m). Anything else is 15m.
    """
    value = str(raw if raw is not None else "").strip()
    lower = value.lower()
    if lower in ALLOWED_INTERVALS:
        return lower

    if _ASCII_DIGITS.fullmatch(value):
        return MINUTES_TO_INTERVAL.get(int(value), DEFAULT_INTERVAL)

    if lower in ("m", "min"):
        return "1m"
    if lower in ("d", "day", "1day"):
        return "1d"
    if lower in ("h", "hour", "1hour"):
        return "1h"

    match = _INTERVAL_PATTERN.match(lower)
    if match:
        n = int(match.group(1))
        unit = match.group(2)
        if unit.startswith("m") and n in (1, 5, 15, 30):
            return f"{n}m"
        if unit.startswith("h") and n in (1, 4):
            return f"{n}h"
        if unit.startswith("d") and n == 1:
            return "1d"

    return DEFAULT_INTERVAL


def clamp_kline_limit(raw: Any) -> int:
    try:
        limit = float(raw)
    except (TypeError, ValueError):
        return KLINE_LIMIT_DEFAULT
    if math.isnan(limit):
        return KLINE_LIMIT_DEFAULT
    # Clamp before int(): "Infinity" parses as a float but has no int value
    return int(min(max(limit, KLINE_LIMIT_MIN), KLINE_LIMIT_MAX))


def resolve_history_range(range_name: Optional[str]) -> Tuple[str, int]:
    """Chart range (1d/1w/1m/1y) -> (interval, limit)."""
    return HISTORY_RANGES.get((range_name or "").strip().lower(), HISTORY_RANGE_DEFAULT)


def _parse_kline(row: List[Any]) -> Dict[str, Any]:
    return {
        "openTime": int(row[0]),
        "open": _parse_float(row[1]),
        "high": _parse_float(row[2]),
        "low": _parse_float(row[3]),
        "close": _parse_float(row[4]),
        "volume": _parse_float(row[5]),
    }


async def get_klines(
    market_symbol: str,
    interval: str = DEFAULT_INTERVAL,
    limit: int = KLINE_LIMIT_DEFAULT,
) -> Tuple[Optional[List[Dict[str, Any]]], Optional[str]]:
    """Historical candles, oldest first. Returns (candles | None, source_base_url)."""
    cache_key = f"klines_{market_symbol}_{interval}_{limit}"
    cached = await market_cache.get(cache_key)
    if cached is not None:
        return cached

    data, source = await fetch_market_json(
        "/api/v3/klines",
        {"symbol": market_symbol, "interval": interval, "limit": str(limit)},
    )
    if not isinstance(data, list):
        return None, source

    candles = [_parse_kline(row) for row in data if isinstance(row, list) and len(row) >= 6]
    await market_cache.set(cache_key, (candles, source), KLINES_CACHE_TTL)
    return candles, source


# ---------------------------------------------------------------------------
# Response headers
# ---------------------------------------------------------------------------

def build_market_headers(cache_control: str, source_base_url: Optional[str] = None) -> Dict[str, str]:
    """Cache-Control plus x-market-data-source (the upstream host) when known."""
    headers = {"Cache-Control": cache_control}
    host = source_host(source_base_url)
    if host:
        headers["x-market-data-source"] = host
    return headers
