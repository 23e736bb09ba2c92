"""
Order Service

Simulated order execution against the demo balance:
- every fill writes a DemoOrder row (append-only history)
- every opening fill creates its own DemoPosition row
- the cash balance moves by the fill notional in the same commit
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from cryptex.config import settings
from cryptex.constants import QUANTITY_EPSILON, TRADES_HISTORY_LIMIT
from cryptex.exceptions import AppError, ExchangeUnavailableError, ForbiddenError, NotFoundError, ValidationError
from cryptex.market_data import binance_client
from cryptex.models import AccountSettings, DemoOrder, DemoPosition, Notification, User
from cryptex.schemas import ClosePositionRequest, OrderRequest, UpdateStopsRequest
from cryptex.services import trading_math
from cryptex.services.account_service import ensure_profile_and_settings
from cryptex.services.notification_service import add_notification, push_notification
from cryptex.utils.id_utils import parse_row_id

logger = logging.getLogger(__name__)


def format_price(price: float) -> str:
    """Render a price the way users typed it: 50000 rather than 50000.0"""
    return str(int(price)) if float(price).is_integer() else repr(float(price))


async def adjust_balance(db: AsyncSession, user_id: int, delta: float):
    """Add ``delta`` to the user's demo balance inside the current transaction"""
    result = await db.execute(
        update(AccountSettings)
        .where(AccountSettings.user_id == user_id)
        .values(demo_balance=AccountSettings.demo_balance + delta)
    )
    if not result.rowcount:
        db.add(AccountSettings(user_id=user_id, demo_balance=settings.default_demo_balance + delta))


async def record_close(
    db: AsyncSession,
    user_id: int,
    symbol: str,
    quantity_signed: float,
    avg_price: float,
    close_qty: float,
    price: float,
    reason: Optional[str] = None,
) -> Tuple[float, Optional[Notification]]:
    """
    Write the closing fill for part or all of a position.

    Inserts the order row with its realized P&L, moves the balance and, when
    ``reason`` is given, stages the "<reason> Triggered" notification. The
    position row itself is left to the caller. Nothing is committed here.
    """
    side = "sell" if quantity_signed > 0 else "buy"
    realized = trading_math.realized_pnl(quantity_signed, close_qty, avg_price, price)

    db.add(DemoOrder(
        user_id=user_id,
        symbol=symbol,
        side=side,
        order_type="market",
        quantity=close_qty,
        price=price,
        status="filled",
        realized_pnl=realized,
    ))
    await adjust_balance(db, user_id, trading_math.balance_delta(side, close_qty, price))

    notification = None
    if reason:
        notification = add_notification(
            db,
            user_id,
            f"{reason} Triggered",
            f"{symbol} position closed at {format_price(price)} ({reason}). PnL: {realized:.2f}",
            "success" if realized >= 0 else "warning",
        )
    return realized, notification


async def place_order(db: AsyncSession, user: User, payload: OrderRequest) -> Dict[str, Any]:
    """Fill a market or limit order immediately and open a new position row"""
    account = await ensure_profile_and_settings(db, user)
    if account.trading_disabled:
        raise ForbiddenError("Trading disabled by admin.")

    raw_symbol = (payload.symbol or "").strip()
    market_symbol = binance_client.to_market_symbol(raw_symbol or "BTC")
    if not binance_client.is_supported_symbol(market_symbol):
        raise ValidationError("Unsupported symbol. Use BTC, ETH, or SOL.")

    quantity = trading_math.to_number(payload.quantity)
    if quantity is None or quantity <= 0:
        raise ValidationError("Quantity must be a number greater than 0.")

    side = trading_math.normalize_side(payload.side)
    if side is None:
        raise ValidationError("Side must be BUY or SELL.")

    order_type = trading_math.normalize_order_type(payload.order_type)
    if order_type == "limit":
        limit_price = trading_math.to_number(payload.limit_price)
        if limit_price is None or limit_price <= 0:
            raise ValidationError("Limit orders require a valid limitPrice.")
        fill_price = limit_price
    else:
        fill_price = await binance_client.get_latest_price(market_symbol)
        if fill_price is None:
            raise AppError("Could not get latest price. Try again in a moment.", status_code=502)

    sl = _parse_stop(payload.sl, "Invalid SL price.")
    tp = _parse_stop(payload.tp, "Invalid TP price.")
    trading_math.validate_stops(side, fill_price, sl, tp)

    order = DemoOrder(
        user_id=user.id,
        symbol=market_symbol,
        side=side,
        order_type=order_type,
        quantity=quantity,
        price=fill_price,
        status="filled",
        realized_pnl=0.0,
        sl=sl,
        tp=tp,
    )
    db.add(order)
    db.add(DemoPosition(
        user_id=user.id,
        symbol=market_symbol,
        quantity=quantity if side == "buy" else -quantity,
        avg_price=fill_price,
        unrealized_pnl=0.0,
        sl=sl,
        tp=tp,
    ))
    await adjust_balance(db, user.id, trading_math.balance_delta(side, quantity, fill_price))
    await db.commit()
    await db.refresh(order)

    logger.info(f"User {user.id} {side} {quantity} {market_symbol} @ {fill_price} ({order_type})")

    return {
        "ok": True,
        "filled": True,
        "orderId": order.id,
        "symbol": market_symbol,
        "side": side,
        "quantity": quantity,
        "price": fill_price,
        "status": "filled",
        "sl": sl,
        "tp": tp,
    }


def _parse_stop(value: Any, invalid_message: str) -> Optional[float]:
    """None/"" clear a level; anything else must be a finite number"""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    number = trading_math.to_number(value)
    if number is None:
        raise ValidationError(invalid_message)
    return number


async def _find_position_to_close(
    db: AsyncSession, user: User, position_id: Optional[int], market_symbol: str
) -> Optional[DemoPosition]:
    if position_id is not None:
        result = await db.execute(
            select(DemoPosition).where(DemoPosition.id == position_id, DemoPosition.user_id == user.id)
        )
        return result.scalars().first()

    result = await db.execute(
        select(DemoPosition)
        .where(
            DemoPosition.user_id == user.id,
            DemoPosition.symbol == market_symbol,
            DemoPosition.quantity != 0,
        )
        .order_by(DemoPosition.id)
        .limit(1)
    )
    return result.scalars().first()


async def close_position(db: AsyncSession, user: User, payload: ClosePositionRequest) -> Dict[str, Any]:
    """
    Close part or all of one position at the latest price.

    Conditional closes (sl/tp) only execute when the price has reached the
    level; market closes always execute.
    """
    await ensure_profile_and_settings(db, user)

    market_symbol = binance_client.to_market_symbol(payload.symbol or "")
    position = await _find_position_to_close(db, user, parse_row_id(payload.id), market_symbol)
    if position is None or not position.quantity:
        raise ValidationError("No open position found.")

    latest = await binance_client.get_latest_price(position.symbol)
    if not latest:
        raise ExchangeUnavailableError("Market data unavailable")

    qty = position.quantity
    reason = trading_math.evaluate_conditional_close(payload.close_type, qty, latest, position.sl, position.tp)
    if reason is None:
        raise ValidationError(f"Condition not met based on current price {format_price(latest)}")

    requested = trading_math.to_number(payload.quantity) or 0.0
    close_qty = min(abs(qty), abs(requested)) if requested > 0 else abs(qty)

    realized, notification = await record_close(
        db, user.id, position.symbol, qty, position.avg_price, close_qty, latest, reason
    )

    remaining = qty - close_qty if qty > 0 else qty + close_qty
    fully_closed = abs(remaining) < QUANTITY_EPSILON
    position.quantity = 0.0 if fully_closed else remaining
    position.unrealized_pnl = 0.0
    if fully_closed:
        position.sl = None
        position.tp = None

    await db.commit()
    logger.info(
        f"User {user.id} closed {close_qty} of position {position.id} ({position.symbol}) "
        f"@ {latest}: {reason}, pnl={realized:.2f}"
    )

    if notification is not None:
        await db.refresh(notification)
        await push_notification(notification)

    return {"ok": True, "realizedPnl": realized}


async def update_stops(db: AsyncSession, user: User, payload: UpdateStopsRequest) -> Dict[str, Any]:
    await ensure_profile_and_settings(db, user)

    raw_id = str(payload.id if payload.id is not None else "").strip()
    if not raw_id:
        raise ValidationError("Missing position id.")

    position_id = parse_row_id(raw_id)
    position = None
    if position_id is not None:
        result = await db.execute(
            select(DemoPosition).where(DemoPosition.id == position_id, DemoPosition.user_id == user.id)
        )
        position = result.scalars().first()
    if position is None:
        raise NotFoundError("Position not found.")

    if not position.quantity:
        raise ValidationError("Position is closed.")

    sl = _parse_stop(payload.sl, "Invalid SL price.")
    tp = _parse_stop(payload.tp, "Invalid TP price.")

    avg = position.avg_price or 0.0
    if avg > 0:
        direction = trading_math.direction_for_quantity(position.quantity)
        trading_math.validate_stops(direction, avg, sl, tp)
    else:
        trading_math.check_stop_levels(sl, tp)

    position.sl = sl
    position.tp = tp
    await db.commit()

    return {"ok": True, "id": position.id, "sl": sl, "tp": tp}


def serialize_trade(order: DemoOrder) -> Dict[str, Any]:
    created_at = order.created_at.isoformat() if order.created_at else None
    return {
        "id": order.id,
        "symbol": order.symbol,
        "side": (order.side or "").upper(),
        "type": (order.order_type or "").upper(),
        "qty": float(order.quantity or 0),
        "fillPrice": float(order.price or 0),
        "realizedPnl": float(order.realized_pnl) if order.realized_pnl is not None else None,
        "status": (order.status or "").upper(),
        "createdAt": created_at,
        "filledAt": created_at,
    }


async def list_trades(db: AsyncSession, user: User, symbol: Optional[str] = None) -> List[Dict[str, Any]]:
    """Newest fills first, optionally for one symbol ("BTC" or "BTCUSDT")"""
    await ensure_profile_and_settings(db, user)

    query = (
        select(DemoOrder)
        .where(DemoOrder.user_id == user.id)
        .order_by(DemoOrder.created_at.desc(), DemoOrder.id.desc())
        .limit(TRADES_HISTORY_LIMIT)
    )
    symbol = (symbol or "").strip()
    if symbol:
        query = query.where(DemoOrder.symbol == binance_client.to_market_symbol(symbol))

    result = await db.execute(query)
    return [serialize_trade(o) for o in result.scalars().all()]
