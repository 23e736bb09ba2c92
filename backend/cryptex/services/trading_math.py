"""
Trading arithmetic shared by order placement, manual closes, the TP/SL sweep
and the portfolio view.

Everything here is pure: no database, no network. Quantities are signed
(> 0 long, < 0 short) and the demo balance is plain cash, so a buy spends its
notional and a sell receives it.
"""

import math
from typing import Any, Iterable, Optional

from cryptex.exceptions import ValidationError

STOP_LOSS = "Stop Loss"
TAKE_PROFIT = "Take Profit"
MARKET_CLOSE = "Market Close"

# Manual sl/tp closes are accepted when price is within this fraction of the level
CLOSE_TOLERANCE = 0.005

_BUY_ALIASES = {"buy", "b", "long"}
_SELL_ALIASES = {"sell", "s", "short"}


def to_number(value: Any) -> Optional[float]:
    """Parse a JSON number or numeric string. Returns None for anything non-finite."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def normalize_side(value: Any) -> Optional[str]:
    side = str(value or "").strip().lower()
    if side in _BUY_ALIASES:
        return "buy"
    if side in _SELL_ALIASES:
        return "sell"
    return None


def normalize_order_type(value: Any) -> str:
    order_type = str(value or "").strip().lower()
    return "limit" if order_type in ("limit", "l") else "market"


def direction_for_quantity(quantity: float) -> str:
    return "buy" if quantity > 0 else "sell"


def check_stop_levels(sl: Optional[float], tp: Optional[float]) -> None:
    """SL/TP must be finite and positive when set"""
    if sl is not None and not math.isfinite(sl):
        raise ValidationError("Invalid SL price.")
    if tp is not None and not math.isfinite(tp):
        raise ValidationError("Invalid TP price.")
    if sl is not None and sl <= 0:
        raise ValidationError("Stop Loss must be greater than 0.")
    if tp is not None and tp <= 0:
        raise ValidationError("Take Profit must be greater than 0.")


def validate_stops(
    side: str,
    reference_price: float,
    sl: Optional[float] = None,
    tp: Optional[float] = None,
) -> None:
    """
    Check SL/TP levels against a reference (fill or entry) price.

    ``side`` is buy/long or sell/short. Raises ValidationError with a
    user-facing message on the first violation.
    """
    check_stop_levels(sl, tp)

    if normalize_side(side) == "buy":
        if sl is not None and sl >= reference_price:
            raise ValidationError("Stop Loss must be below entry price for Buy.")
        if tp is not None and tp <= reference_price:
            raise ValidationError("Take Profit must be above entry price for Buy.")
    else:
        if sl is not None and sl <= reference_price:
            raise ValidationError("Stop Loss must be above entry price for Sell.")
        if tp is not None and tp >= reference_price:
            raise ValidationError("Take Profit must be below entry price for Sell.")


def realized_pnl(quantity_signed: float, close_qty: float, avg_entry: float, exit_price: float) -> float:
    if quantity_signed > 0:
        return close_qty * (exit_price - avg_entry)
    return close_qty * (avg_entry - exit_price)


def unrealized_pnl(quantity_signed: float, avg_entry: float, latest: Optional[float]) -> float:
    if not latest or latest <= 0:
        return 0.0
    return quantity_signed * (latest - avg_entry)


def balance_delta(side: str, quantity: float, price: float) -> float:
    """Cash change for a fill: buys spend the notional, sells receive it."""
    notional = quantity * price
    return -notional if side == "buy" else notional


def evaluate_trigger(
    quantity_signed: float,
    latest: float,
    sl: Optional[float],
    tp: Optional[float],
) -> Optional[str]:
    """Which level (if any) the latest price has crossed. Stop loss wins ties."""
    if quantity_signed > 0:
        if sl is not None and latest <= sl:
            return STOP_LOSS
        if tp is not None and latest >= tp:
            return TAKE_PROFIT
    elif quantity_signed < 0:
        if sl is not None and latest >= sl:
            return STOP_LOSS
        if tp is not None and latest <= tp:
            return TAKE_PROFIT
    return None


def evaluate_conditional_close(
    close_type: Optional[str],
    quantity_signed: float,
    latest: float,
    sl: Optional[float],
    tp: Optional[float],
) -> Optional[str]:
    """
    Decide whether a manual close request may execute and under what reason.

    "market" (or no type) always closes. "sl"/"tp" close when the price is
    within CLOSE_TOLERANCE of the level; anything else falls back to the
    strict trigger check.
    """
    kind = str(close_type or "market").strip().lower()
    is_long = quantity_signed > 0

    if kind == "market":
        return MARKET_CLOSE

    if kind == "sl" and sl is not None:
        if is_long and latest <= sl * (1 + CLOSE_TOLERANCE):
            return STOP_LOSS
        if not is_long and latest >= sl * (1 - CLOSE_TOLERANCE):
            return STOP_LOSS

    if kind == "tp" and tp is not None:
        if is_long and latest >= tp * (1 - CLOSE_TOLERANCE):
            return TAKE_PROFIT
        if not is_long and latest <= tp * (1 + CLOSE_TOLERANCE):
            return TAKE_PROFIT

    return evaluate_trigger(quantity_signed, latest, sl, tp)


def compute_equity(balance: float, positions: Iterable[Any]) -> float:
    """
    balance + sum(quantity * latest price).

    ``positions`` yields (quantity, latest_price) pairs or dicts with
    ``quantity`` and ``latestPrice`` keys.
    """
    total = balance
    for position in positions:
        if isinstance(position, dict):
            quantity = position.get("quantity") or 0.0
            price = position.get("latestPrice") or 0.0
        else:
            quantity, price = position
        total += (quantity or 0.0) * (price or 0.0)
    return total
