"""
TP/SL Sweep

Closes positions whose stop-loss or take-profit level has been crossed.

The sweep is a plain per-position loop: each position is handled in its own
try/except, so one bad row is logged and reported as not closed while the
rest of the sweep continues. A conditional update (quantity != 0) claims the
position before the close is recorded, so two overlapping sweeps can never
close the same position twice.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from cryptex.database import async_session_maker
from cryptex.market_data import binance_client
from cryptex.models import DemoPosition, User
from cryptex.services import trading_math
from cryptex.services.account_service import ensure_profile_and_settings
from cryptex.services.notification_service import push_notification
from cryptex.services.order_service import record_close

logger = logging.getLogger(__name__)


async def _close_triggered(
    db: AsyncSession,
    user_id: int,
    position_id: int,
    symbol: str,
    qty: float,
    avg_price: float,
    latest: float,
    reason: str,
) -> bool:
    """Claim and close one triggered position. Returns False if another sweep got there first."""

    result = await db.execute(
        update(DemoPosition)
        .where(
            DemoPosition.id == position_id,
            DemoPosition.user_id == user_id,
            DemoPosition.quantity != 0,
        )
        .values(
            quantity=0.0,
            avg_price=0.0,
            unrealized_pnl=0.0,
            sl=None,
            tp=None,
            updated_at=datetime.utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        return False

    realized, notification = await record_close(
        db, user_id, symbol, qty, avg_price or 0.0, abs(qty), latest, reason
    )
    await db.commit()
    logger.info(f"{reason} closed position {position_id} ({symbol}) for user {user_id} @ {latest}, pnl={realized:.2f}")

    if notification is not None:
        await db.refresh(notification)
        await push_notification(notification)
    return True


async def check_user_positions(db: AsyncSession, user: User) -> Dict[str, Any]:
    """Run one TP/SL pass over the user's open positions"""
    await ensure_profile_and_settings(db, user)
    user_id = user.id

    result = await db.execute(
        select(DemoPosition)
        .where(DemoPosition.user_id == user_id, DemoPosition.quantity != 0)
        .order_by(DemoPosition.id)
    )
    # Plain tuples so a rollback inside the loop cannot expire what we iterate over
    open_positions = [
        (p.id, p.symbol, p.quantity, p.avg_price, p.sl, p.tp) for p in result.scalars().all()
    ]

    prices: Dict[str, Optional[float]] = {}
    results: List[Dict[str, Any]] = []

    for position_id, symbol, qty, avg_price, sl, tp in open_positions:
        entry = {"id": position_id, "symbol": symbol, "closed": False}
        try:
            if sl is None and tp is None:
                results.append(entry)
                continue

            if symbol not in prices:
                prices[symbol] = await binance_client.get_latest_price(symbol)
            latest = prices[symbol]
            if latest is None:
                results.append(entry)
                continue

            reason = trading_math.evaluate_trigger(qty, latest, sl, tp)
            if reason is None:
                results.append(entry)
                continue

            if await _close_triggered(db, user_id, position_id, symbol, qty, avg_price, latest, reason):
                entry["closed"] = True
                entry["reason"] = reason
        except Exception as e:
            logger.error(f"TP/SL check failed for position {position_id}: {e}", exc_info=True)
            await db.rollback()
        results.append(entry)

    return {"ok": True, "results": results}


class TpSlMonitor:
    """
    Background sweep of every user with open positions.

    Clients that poll /api/positions/check-tp-sl get the same behaviour; this
    monitor only makes closes happen while nobody has the app open.
    """

    def __init__(self, check_interval_seconds: int = 15):
        self.check_interval_seconds = check_interval_seconds
        self.running = False
        self.task = None
        self._last_check: datetime = None

    async def sweep_all_users(self) -> int:
        """One pass over all users with open positions. Returns positions closed."""
        async with async_session_maker() as db:
            result = await db.execute(
                select(DemoPosition.user_id).where(DemoPosition.quantity != 0).distinct()
            )
            user_ids = [row[0] for row in result.all()]

            closed = 0
            for user_id in user_ids:
                try:
                    user = await db.get(User, user_id)
                    if user is None:
                        continue
                    outcome = await check_user_positions(db, user)
                    closed += sum(1 for r in outcome["results"] if r["closed"])
                except Exception as e:
                    logger.error(f"TP/SL sweep failed for user {user_id}: {e}", exc_info=True)
                    await db.rollback()

        self._last_check = datetime.utcnow()
        if closed:
            logger.info(f"TP/SL monitor closed {closed} position(s)")
        return closed

    async def run_loop(self):
        while self.running:
            try:
                await self.sweep_all_users()
            except Exception as e:
                logger.error(f"Error in TP/SL monitor loop: {e}", exc_info=True)

            await asyncio.sleep(self.check_interval_seconds)

    async def start(self):
        if self.running:
            return
        self.running = True
        self.task = asyncio.create_task(self.run_loop())
        logger.info(f"TP/SL monitor started - checking every {self.check_interval_seconds}s")

    async def stop(self):
        self.running = False
        if self.task:
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass
        logger.info("TP/SL monitor stopped")
