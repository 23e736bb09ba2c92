"""
Market data API routes

Public (no sign-in) endpoints backed by the Binance public REST API:
- Latest price with upstream source header
- Historical candles
- 24h ticker stats
- Delayed prices and chart history for the dashboard
- Supported asset list
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Response
from fastapi.responses import JSONResponse

from cryptex.config import settings
from cryptex.constants import (
    CACHE_CONTROL_KLINES,
    CACHE_CONTROL_LATEST,
    CACHE_CONTROL_PRICES,
    CACHE_CONTROL_STATS,
    KLINE_LIMIT_DEFAULT,
    SUPPORTED_ASSETS,
)
from cryptex.exceptions import ValidationError
from cryptex.market_data import binance_client

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["market_data"])

MARKET_UNAVAILABLE = "Market data unavailable."


def _require_symbol(symbol: Optional[str]) -> str:
    value = (symbol or "").strip().upper()
    if not value:
        raise ValidationError("Missing symbol.")
    return value


def _unavailable(headers: Optional[dict] = None) -> JSONResponse:
    return JSONResponse(status_code=502, content={"error": MARKET_UNAVAILABLE}, headers=headers)


def _delayed_timestamp() -> str:
    delayed = datetime.utcnow() - timedelta(minutes=settings.price_delay_minutes)
    return delayed.isoformat(timespec="milliseconds") + "Z"


@router.get("/market/latest")
async def get_market_latest(response: Response, symbol: Optional[str] = None):
    """Latest price for a market symbol, e.g. BTCUSDT"""
    symbol = _require_symbol(symbol)

    price, source = await binance_client.get_latest_price_with_source(symbol)
    headers = binance_client.build_market_headers(CACHE_CONTROL_LATEST, source)
    if price is None:
        return _unavailable(headers)

    response.headers.update(headers)
    return {"symbol": symbol, "price": price, "delayedMinutes": settings.price_delay_minutes}


@router.get("/market/klines")
async def get_market_klines(
    response: Response,
    symbol: Optional[str] = None,
    interval: Optional[str] = None,
    limit: Optional[str] = None,
):
    """Candles for a supported symbol; interval and limit are normalized"""
    symbol = _require_symbol(symbol)
    if not binance_client.is_supported_symbol(symbol):
        raise ValidationError("Unsupported symbol.")

    interval = binance_client.normalize_interval(interval if interval is not None else "15m")
    limit = binance_client.clamp_kline_limit(limit if limit is not None else KLINE_LIMIT_DEFAULT)

    candles, source = await binance_client.get_klines(symbol, interval, limit)
    headers = binance_client.build_market_headers(CACHE_CONTROL_KLINES, source)
    if candles is None:
        return _unavailable(headers)

    response.headers.update(headers)
    return {"symbol": symbol, "interval": interval, "candles": candles}


@router.get("/market/stats")
async def get_market_stats(response: Response, symbol: Optional[str] = None):
    """24h change, high and low for a supported symbol"""
    symbol = _require_symbol(symbol)
    if not binance_client.is_supported_symbol(symbol):
        raise ValidationError("Unsupported symbol.")

    stats = await binance_client.get_24h_stats(symbol)
    if stats is None:
        return _unavailable()

    response.headers["Cache-Control"] = CACHE_CONTROL_STATS
    return stats


@router.get("/prices/latest")
async def get_delayed_price(response: Response, symbol: Optional[str] = None):
    """Delayed price for a short asset name (BTC, ETH, SOL)"""
    symbol = _require_symbol(symbol)
    market_symbol = binance_client.resolve_asset_symbol(symbol)
    if market_symbol is None:
        raise ValidationError("Unsupported symbol.")

    price = await binance_client.get_latest_price(market_symbol)
    if price is None:
        return _unavailable()

    response.headers["Cache-Control"] = CACHE_CONTROL_PRICES
    return {
        "symbol": symbol,
        "price": price,
        "delayedMinutes": settings.price_delay_minutes,
        "timestamp": _delayed_timestamp(),
    }


@router.get("/prices/history")
async def get_price_history(response: Response, symbol: Optional[str] = None, range: Optional[str] = None):
    """Chart history for a short asset name over 1d/1w/1m/1y"""
    symbol = _require_symbol(symbol)
    market_symbol = binance_client.resolve_asset_symbol(symbol)
    if market_symbol is None:
        raise ValidationError("Unsupported symbol.")

    interval, limit = binance_client.resolve_history_range(range or "1y")
    candles, _ = await binance_client.get_klines(market_symbol, interval, limit)
    if candles is None:
        return _unavailable()

    history = [
        {
            "timestamp": datetime.utcfromtimestamp(c["openTime"] / 1000).isoformat(timespec="milliseconds") + "Z",
            "open": c["open"],
            "high": c["high"],
            "low": c["low"],
            "close": c["close"],
            "volume": c["volume"],
        }
        for c in candles
    ]

    response.headers["Cache-Control"] = CACHE_CONTROL_STATS
    return {"history": history}


@router.get("/assets")
async def list_assets():
    return {"assets": SUPPORTED_ASSETS}
