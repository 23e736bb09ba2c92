"""
Portfolio Service

Marks every open demo position to the latest exchange price.
"""

import asyncio
import logging
from typing import Any, Dict

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cryptex.config import settings
from cryptex.market_data import binance_client
from cryptex.models import DemoPosition, User
from cryptex.services import trading_math
from cryptex.services.account_service import ensure_profile_and_settings

logger = logging.getLogger(__name__)


async def get_portfolio(db: AsyncSession, user: User) -> Dict[str, Any]:
    """
    Balance, open positions and equity for one user.

    Returns:
        {"balance", "equity", "positions": [...]} where each position carries
        latestPrice (0 when unavailable), marketValue, unrealizedPnl and
        avgEntry. equity = balance + sum(qty * latestPrice).
    """
    account = await ensure_profile_and_settings(db, user)
    balance = float(account.demo_balance if account.demo_balance is not None else settings.default_demo_balance)

    result = await db.execute(
        select(DemoPosition)
        .where(DemoPosition.user_id == user.id, DemoPosition.quantity != 0)
        .order_by(DemoPosition.id)
    )
    open_rows = result.scalars().all()

    symbols = sorted({p.symbol for p in open_rows})
    latest_prices = await asyncio.gather(*(binance_client.get_latest_price(s) for s in symbols))
    prices = {s: (p or 0.0) for s, p in zip(symbols, latest_prices)}

    positions = []
    for p in open_rows:
        quantity = float(p.quantity or 0)
        avg = float(p.avg_price or 0)
        latest = prices.get(p.symbol, 0.0)
        positions.append({
            "id": p.id,
            "assetSymbol": p.symbol,
            "qty": quantity,
            "avgEntry": avg,
            "unrealizedPnl": trading_math.unrealized_pnl(quantity, avg, latest),
            "latestPrice": latest,
            "marketValue": abs(quantity) * latest,
            "updated_at": p.updated_at.isoformat() if p.updated_at else None,
            "sl": p.sl,
            "tp": p.tp,
        })

    equity = trading_math.compute_equity(balance, ((p["qty"], p["latestPrice"]) for p in positions))

    return {"balance": balance, "equity": equity, "positions": positions}
