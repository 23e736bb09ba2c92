"""
Admin Service

Read models and mutations behind the admin panel: user management, order and
position browsing, forced closes, balance overrides and dashboard statistics.
Every mutation is recorded in the AdminAction audit log.
"""

import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from cryptex.config import settings
from cryptex.constants import ADMIN_PAGE_LIMIT_DEFAULT, ADMIN_PAGE_LIMIT_MAX, QUANTITY_EPSILON
from cryptex.exceptions import AppError, NotFoundError, ValidationError
from cryptex.market_data import binance_client
from cryptex.models import AccountSettings, AdminAction, DemoOrder, DemoPosition, User
from cryptex.services import trading_math
from cryptex.services.order_service import record_close
from cryptex.utils.id_utils import MAX_ROW_ID, parse_row_id

logger = logging.getLogger(__name__)

USER_ACTIONS = ("promote", "demote", "disable_trading", "enable_trading")


def clamp_page(page: Any, limit: Any) -> tuple:
    """page >= 1 (default 1); limit in 1..200 (default 50)"""
    def _positive(value, fallback):
        number = trading_math.to_number(value)
        return int(number) if number is not None and number >= 1 else fallback

    limit = min(ADMIN_PAGE_LIMIT_MAX, _positive(limit, ADMIN_PAGE_LIMIT_DEFAULT))
    # OFFSET is bound as a 64-bit integer
    page = min(_positive(page, 1), MAX_ROW_ID // limit)
    return page, limit


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _user_search_clause(q: str):
    """Email substring (case-insensitive) or exact id"""
    clause = func.lower(User.email).contains(q.lower())
    user_id = parse_row_id(q)
    if user_id is not None:
        clause = or_(clause, User.id == user_id)
    return clause


def record_admin_action(
    db: AsyncSession,
    admin: Optional[User],
    action_type: str,
    target_user_id: Optional[int],
    metadata: Optional[dict] = None,
):
    """Stage an audit row. ``admin`` is None when access came from the console code."""
    db.add(AdminAction(
        admin_id=admin.id if admin is not None else None,
        action_type=action_type,
        target_user_id=target_user_id,
        action_metadata=metadata or {},
    ))


async def _emails_for(db: AsyncSession, user_ids: Iterable[int]) -> Dict[int, Optional[str]]:
    ids = {uid for uid in user_ids if uid is not None}
    if not ids:
        return {}
    result = await db.execute(select(User.id, User.email).where(User.id.in_(ids)))
    return {row.id: row.email for row in result.all()}


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

async def list_users(db: AsyncSession, page: Any = 1, limit: Any = None, q: str = "") -> Dict[str, Any]:
    page, limit = clamp_page(page, limit)
    q = (q or "").strip()

    query = select(User, AccountSettings).outerjoin(AccountSettings, AccountSettings.user_id == User.id)
    count_query = select(func.count(User.id))
    if q:
        query = query.where(_user_search_clause(q))
        count_query = count_query.where(_user_search_clause(q))

    total = (await db.execute(count_query)).scalar() or 0
    result = await db.execute(
        query.order_by(User.created_at.desc(), User.id.desc()).offset((page - 1) * limit).limit(limit)
    )

    users = []
    for user, account in result.all():
        users.append({
            "id": user.id,
            "email": user.email,
            "created_at": _iso(user.created_at),
            "last_sign_in_at": _iso(user.last_login_at),
            "role": user.role,
            "demo_balance": float(account.demo_balance) if account and account.demo_balance is not None else None,
            "last_reset_at": _iso(account.last_reset_at) if account else None,
            "trading_disabled": bool(account.trading_disabled) if account else None,
        })

    logger.info(f"Admin users query: total={total} returned={len(users)}")
    return {"users": users, "page": page, "limit": limit, "total": total}


async def apply_user_action(
    db: AsyncSession, admin: Optional[User], user_id: Any, action: Optional[str]
) -> Dict[str, Any]:
    target_id = parse_row_id(user_id)
    if target_id is None:
        raise ValidationError("Missing userId")

    action = str(action or "")
    if action not in USER_ACTIONS:
        raise ValidationError("Unknown action")

    if action in ("promote", "demote"):
        await db.execute(
            update(User).where(User.id == target_id).values(role="admin" if action == "promote" else "user")
        )
    else:
        disabled = action == "disable_trading"
        result = await db.execute(
            update(AccountSettings).where(AccountSettings.user_id == target_id).values(trading_disabled=disabled)
        )
        if not result.rowcount and await db.get(User, target_id) is not None:
            db.add(AccountSettings(
                user_id=target_id,
                demo_balance=settings.default_demo_balance,
                trading_disabled=disabled,
            ))

    record_admin_action(db, admin, action, target_id)
    await db.commit()
    logger.info(f"Admin action {action} applied to user {target_id}")
    return {"ok": True}


# ---------------------------------------------------------------------------
# Orders & positions
# ---------------------------------------------------------------------------

async def _matching_user_ids(db: AsyncSession, q: str) -> List[int]:
    result = await db.execute(select(User.id).where(_user_search_clause(q)))
    return [row[0] for row in result.all()]


async def list_orders(
    db: AsyncSession,
    page: Any = 1,
    limit: Any = None,
    q: str = "",
    symbol: str = "",
    status: str = "",
) -> Dict[str, Any]:
    page, limit = clamp_page(page, limit)
    q = (q or "").strip()
    symbol = (symbol or "").strip().upper()
    status = (status or "").strip()

    filters = []
    if q:
        user_ids = await _matching_user_ids(db, q)
        if not user_ids:
            return {"orders": [], "page": page, "limit": limit, "total": 0}
        filters.append(DemoOrder.user_id.in_(user_ids))
    if symbol:
        filters.append(DemoOrder.symbol == symbol)
    if status:
        filters.append(DemoOrder.status == status)

    total = (await db.execute(select(func.count(DemoOrder.id)).where(*filters))).scalar() or 0
    result = await db.execute(
        select(DemoOrder)
        .where(*filters)
        .order_by(DemoOrder.created_at.desc(), DemoOrder.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    orders = result.scalars().all()
    emails = await _emails_for(db, (o.user_id for o in orders))

    logger.info(f"Admin orders query: total={total} returned={len(orders)}")
    return {
        "orders": [
            {
                "id": o.id,
                "user_id": o.user_id,
                "user_email": emails.get(o.user_id),
                "symbol": o.symbol,
                "side": o.side,
                "order_type": o.order_type or "market",
                "quantity": float(o.quantity or 0),
                "price": float(o.price) if o.price is not None else None,
                "status": o.status,
                "created_at": _iso(o.created_at),
                "realized_pnl": float(o.realized_pnl) if o.realized_pnl is not None else None,
            }
            for o in orders
        ],
        "page": page,
        "limit": limit,
        "total": total,
    }


async def list_positions(
    db: AsyncSession,
    page: Any = 1,
    limit: Any = None,
    q: str = "",
    symbol: str = "",
    status: str = "",
) -> Dict[str, Any]:
    page, limit = clamp_page(page, limit)
    q = (q or "").strip()
    symbol = (symbol or "").strip().upper()
    status = (status or "").strip().lower()

    filters = []
    if q:
        user_ids = await _matching_user_ids(db, q)
        if not user_ids:
            return {"positions": [], "page": page, "limit": limit, "total": 0}
        filters.append(DemoPosition.user_id.in_(user_ids))
    if symbol:
        filters.append(DemoPosition.symbol == symbol)
    if status == "open":
        filters.append(DemoPosition.quantity != 0)
    elif status == "closed":
        filters.append(DemoPosition.quantity == 0)

    total = (await db.execute(select(func.count(DemoPosition.id)).where(*filters))).scalar() or 0
    result = await db.execute(
        select(DemoPosition)
        .where(*filters)
        .order_by(DemoPosition.updated_at.desc(), DemoPosition.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    positions = result.scalars().all()
    emails = await _emails_for(db, (p.user_id for p in positions))

    logger.info(f"Admin positions query: total={total} returned={len(positions)}")
    return {
        "positions": [
            {
                "id": p.id,
                "user_id": p.user_id,
                "user_email": emails.get(p.user_id),
                "symbol": p.symbol,
                "quantity": float(p.quantity or 0),
                "avg_price": float(p.avg_price) if p.avg_price is not None else None,
                "unrealized_pnl": float(p.unrealized_pnl) if p.unrealized_pnl is not None else None,
                "sl": p.sl,
                "tp": p.tp,
                "updated_at": _iso(p.updated_at),
            }
            for p in positions
        ],
        "page": page,
        "limit": limit,
        "total": total,
    }


async def force_close_position(db: AsyncSession, admin: Optional[User], position_id: Any) -> Dict[str, Any]:
    """Close a whole position at the latest price, whoever owns it"""
    if not str(position_id if position_id is not None else "").strip():
        raise ValidationError("Missing positionId")

    target_id = parse_row_id(position_id)
    position = await db.get(DemoPosition, target_id) if target_id is not None else None
    if position is None:
        raise NotFoundError("Position not found")
    if abs(position.quantity or 0) < QUANTITY_EPSILON:
        raise ValidationError("Already closed")

    symbol = binance_client.to_market_symbol(position.symbol)
    latest = await binance_client.get_latest_price(symbol)
    if latest is None or latest <= 0:
        raise AppError("Price unavailable", status_code=502)

    qty = position.quantity
    realized, _ = await record_close(
        db, position.user_id, symbol, qty, position.avg_price or 0.0, abs(qty), latest
    )

    position.quantity = 0.0
    position.unrealized_pnl = 0.0
    position.sl = None
    position.tp = None

    record_admin_action(
        db, admin, "force_close", position.user_id,
        {"position_id": position.id, "symbol": symbol, "price": latest, "realized_pnl": realized},
    )
    await db.commit()
    logger.info(f"Admin force-closed position {position.id} ({symbol}) @ {latest}, pnl={realized:.2f}")
    return {"ok": True, "realizedPnl": realized}


# ---------------------------------------------------------------------------
# Balances
# ---------------------------------------------------------------------------

async def set_balance(
    db: AsyncSession,
    admin: Optional[User],
    user_id: Any,
    amount: Any = None,
    reset: bool = False,
) -> Dict[str, Any]:
    target_id = parse_row_id(user_id)
    if target_id is None:
        raise ValidationError("Missing userId")

    account = (await db.execute(
        select(AccountSettings).where(AccountSettings.user_id == target_id)
    )).scalars().first()

    if reset:
        await db.execute(delete(DemoPosition).where(DemoPosition.user_id == target_id))
        if account is None:
            account = AccountSettings(user_id=target_id)
            db.add(account)
        account.demo_balance = settings.default_demo_balance
        account.last_reset_at = datetime.utcnow()
        record_admin_action(db, admin, "reset_balance", target_id)
        await db.commit()
        logger.info(f"Admin reset balance for user {target_id}")
        return {"ok": True}

    value = trading_math.to_number(amount)
    if value is None:
        raise ValidationError("Invalid amount")

    if account is None:
        account = AccountSettings(user_id=target_id)
        db.add(account)
    account.demo_balance = value
    record_admin_action(db, admin, "set_balance", target_id, {"amount": value})
    await db.commit()
    logger.info(f"Admin set balance for user {target_id} to {value}")
    return {"ok": True}


# ---------------------------------------------------------------------------
# Dashboard statistics
# ---------------------------------------------------------------------------

def _date_key(value: datetime) -> str:
    return value.strftime("%Y-%m-%d")


def _day_labels(now: datetime, days: int) -> List[str]:
    return [_date_key(now - timedelta(days=i)) for i in range(days - 1, -1, -1)]


def _volume_summary(orders: Iterable[DemoOrder]) -> Dict[str, Any]:
    """24h volume, P&L and the top 10 symbols by traded notional"""
    volume = 0.0
    pnl = 0.0
    per_symbol: Dict[str, Dict[str, float]] = defaultdict(lambda: {"count": 0, "volume": 0.0})
    for o in orders:
        notional = abs(o.quantity or 0) * (o.price or 0)
        volume += notional
        pnl += o.realized_pnl or 0
        entry = per_symbol[o.symbol or "UNKNOWN"]
        entry["count"] += 1
        entry["volume"] += notional

    top = sorted(
        ({"symbol": s, "count": v["count"], "volume": v["volume"]} for s, v in per_symbol.items()),
        key=lambda item: item["volume"],
        reverse=True,
    )[:10]
    return {"volume": volume, "pnl": pnl, "topSymbols": top}


def _recent_order(o: DemoOrder) -> Dict[str, Any]:
    return {
        "id": o.id,
        "user_id": o.user_id,
        "symbol": o.symbol,
        "side": o.side,
        "order_type": o.order_type,
        "quantity": float(o.quantity or 0),
        "price": float(o.price) if o.price is not None else None,
        "status": o.status,
        "created_at": _iso(o.created_at),
    }


async def _count(db: AsyncSession, column, *filters) -> int:
    return (await db.execute(select(func.count(column)).where(*filters))).scalar() or 0


async def _orders_since(db: AsyncSession, since: datetime) -> List[DemoOrder]:
    result = await db.execute(
        select(DemoOrder).where(DemoOrder.created_at >= since).order_by(DemoOrder.created_at)
    )
    return result.scalars().all()


async def _recent_orders(db: AsyncSession, limit: int = 50) -> List[Dict[str, Any]]:
    result = await db.execute(
        select(DemoOrder).order_by(DemoOrder.created_at.desc(), DemoOrder.id.desc()).limit(limit)
    )
    return [_recent_order(o) for o in result.scalars().all()]


async def get_overview(db: AsyncSession) -> Dict[str, Any]:
    now = datetime.utcnow()
    since_24h = now - timedelta(hours=24)
    since_30d = now - timedelta(days=30)

    users_count = await _count(db, User.id)
    orders_count = await _count(db, DemoOrder.id)
    positions_count = await _count(db, DemoPosition.id)
    open_positions = await _count(db, DemoPosition.id, DemoPosition.quantity != 0)
    closed_trades = await _count(db, DemoOrder.id, DemoOrder.status == "filled")
    total_realized = (await db.execute(select(func.coalesce(func.sum(DemoOrder.realized_pnl), 0.0)))).scalar()

    summary = _volume_summary(await _orders_since(db, since_24h))

    labels = _day_labels(now, 30)
    users_per_day: Dict[str, int] = defaultdict(int)
    for (created_at,) in (await db.execute(select(User.created_at).where(User.created_at >= since_30d))).all():
        users_per_day[_date_key(created_at)] += 1

    orders_per_day: Dict[str, int] = defaultdict(int)
    pnl_per_day: Dict[str, float] = defaultdict(float)
    for o in await _orders_since(db, since_30d):
        key = _date_key(o.created_at)
        orders_per_day[key] += 1
        pnl_per_day[key] += o.realized_pnl or 0

    logger.info(f"Admin overview: users={users_count} orders={orders_count} open_positions={open_positions}")
    return {
        "totalUsers": users_count,
        "totalOrders": orders_count,
        "totalPositions": positions_count,
        "openPositions": open_positions,
        "totalPositionsOpen": open_positions,
        "totalClosedTrades": closed_trades,
        "totalRealizedPnl": float(total_realized or 0),
        "totalVolume24h": summary["volume"],
        "totalPnL24h": summary["pnl"],
        "topSymbols": summary["topSymbols"],
        "recentOrders": await _recent_orders(db),
        "usersPerDay": [{"date": d, "value": users_per_day.get(d, 0)} for d in labels],
        "ordersPerDay": [{"date": d, "value": orders_per_day.get(d, 0)} for d in labels],
        "pnlPerDay": [{"date": d, "value": pnl_per_day.get(d, 0.0)} for d in labels],
    }


def clamp_chart_days(days: Any) -> int:
    number = trading_math.to_number(days)
    if not number:
        return 30
    return max(1, min(90, int(number)))


async def get_charts(db: AsyncSession, days: Any = 30) -> Dict[str, Any]:
    days = clamp_chart_days(days)
    now = datetime.utcnow()
    since = now - timedelta(days=days)
    labels = _day_labels(now, days)

    orders_per_day: Dict[str, int] = defaultdict(int)
    pnl_per_day: Dict[str, float] = defaultdict(float)
    for o in await _orders_since(db, since):
        key = _date_key(o.created_at)
        orders_per_day[key] += 1
        pnl_per_day[key] += o.realized_pnl or 0

    users_per_day: Dict[str, int] = defaultdict(int)
    for (created_at,) in (await db.execute(select(User.created_at).where(User.created_at >= since))).all():
        users_per_day[_date_key(created_at)] += 1

    def series(values: Dict[str, float]) -> List[Dict[str, Any]]:
        return [{"t": f"{d}T00:00:00.000Z", "v": values.get(d, 0)} for d in labels]

    pnl_series = series(pnl_per_day)
    equity_series = []
    cumulative = 0.0
    for point in pnl_series:
        cumulative += point["v"]
        equity_series.append({"t": point["t"], "v": cumulative})

    result = await db.execute(
        select(DemoPosition.symbol, func.count(DemoPosition.id))
        .where(DemoPosition.quantity != 0)
        .group_by(DemoPosition.symbol)
        .order_by(func.count(DemoPosition.id).desc())
        .limit(20)
    )
    by_symbol = [{"label": sym, "v": count} for sym, count in result.all() if sym]

    return {
        "equitySeries": equity_series,
        "usersPerDay": series(users_per_day),
        "ordersPerDay": series(orders_per_day),
        "pnlPerDay": pnl_series,
        "openPositionsBySymbol": by_symbol,
    }


async def get_metrics(db: AsyncSession) -> Dict[str, Any]:
    since_24h = datetime.utcnow() - timedelta(hours=24)
    summary = _volume_summary(await _orders_since(db, since_24h))

    result = await db.execute(select(User).order_by(User.created_at.desc(), User.id.desc()).limit(20))
    recent_users = [
        {"id": u.id, "email": u.email, "created_at": _iso(u.created_at)} for u in result.scalars().all()
    ]

    return {
        "usersCount": await _count(db, User.id),
        "ordersCount": await _count(db, DemoOrder.id),
        "openPositionsCount": await _count(db, DemoPosition.id, DemoPosition.quantity != 0),
        "volume24h": summary["volume"],
        "pnl24h": summary["pnl"],
        "recentUsers": recent_users,
        "recentOrders": await _recent_orders(db),
        "topSymbols": summary["topSymbols"],
    }


async def list_admin_actions(db: AsyncSession, page: Any = 1, limit: Any = None) -> Dict[str, Any]:
    page, limit = clamp_page(page, limit)
    total = await _count(db, AdminAction.id)
    result = await db.execute(
        select(AdminAction)
        .order_by(AdminAction.created_at.desc(), AdminAction.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return {
        "actions": [
            {
                "id": a.id,
                "admin_id": a.admin_id,
                "action_type": a.action_type,
                "target_user_id": a.target_user_id,
                "metadata": a.action_metadata or {},
                "created_at": _iso(a.created_at),
            }
            for a in result.scalars().all()
        ],
        "page": page,
        "limit": limit,
        "total": total,
    }
