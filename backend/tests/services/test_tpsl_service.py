"""
Tests for backend/cryptex/services/tpsl_service.py

Covers the per-user TP/SL pass, the claim-once close, failure isolation and
the background TpSlMonitor.
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select

from cryptex.models import AccountSettings, DemoOrder, DemoPosition, Notification
from cryptex.services import tpsl_service
from cryptex.services.tpsl_service import TpSlMonitor


async def _add_position(db, user_id, symbol="BTCUSDT", quantity=1.0, avg_price=100.0, sl=None, tp=None):
    position = DemoPosition(
        user_id=user_id, symbol=symbol, quantity=quantity, avg_price=avg_price, sl=sl, tp=tp,
    )
    db.add(position)
    await db.commit()
    return position.id


async def _quantity(db, position_id):
    result = await db.execute(select(DemoPosition.quantity).where(DemoPosition.id == position_id))
    return result.scalar_one()


class TestCheckUserPositions:
    @pytest.mark.asyncio
    async def test_stop_loss_closes_long(self, db_session, user, latest_price):
        user_id = user.id
        position_id = await _add_position(db_session, user_id, sl=90.0, tp=130.0)
        latest_price.return_value = 89.0

        result = await tpsl_service.check_user_positions(db_session, user)

        assert result["ok"] is True
        assert result["results"] == [
            {"id": position_id, "symbol": "BTCUSDT", "closed": True, "reason": "Stop Loss"}
        ]
        assert await _quantity(db_session, position_id) == 0.0

        order = (await db_session.execute(select(DemoOrder))).scalars().one()
        assert order.side == "sell"
        assert order.price == 89.0
        assert order.realized_pnl == pytest.approx(-11.0)

        balance = (await db_session.execute(
            select(AccountSettings.demo_balance).where(AccountSettings.user_id == user_id)
        )).scalar_one()
        assert balance == pytest.approx(10089.0)

        notification = (await db_session.execute(select(Notification))).scalars().one()
        assert notification.title == "Stop Loss Triggered"
        assert notification.message == "BTCUSDT position closed at 89 (Stop Loss). PnL: -11.00"
        assert notification.type == "warning"

    @pytest.mark.asyncio
    async def test_take_profit_closes_short(self, db_session, user, latest_price):
        position_id = await _add_position(db_session, user.id, quantity=-2.0, avg_price=100.0, tp=80.0)
        latest_price.return_value = 79.5

        result = await tpsl_service.check_user_positions(db_session, user)

        assert result["results"][0]["reason"] == "Take Profit"
        assert await _quantity(db_session, position_id) == 0.0
        order = (await db_session.execute(select(DemoOrder))).scalars().one()
        assert order.side == "buy"
        assert order.quantity == 2.0
        assert order.realized_pnl == pytest.approx(41.0)

    @pytest.mark.asyncio
    async def test_untriggered_and_stopless_positions_stay_open(self, db_session, user, latest_price):
        no_stops = await _add_position(db_session, user.id)
        in_range = await _add_position(db_session, user.id, sl=90.0, tp=120.0)
        latest_price.return_value = 100.0

        result = await tpsl_service.check_user_positions(db_session, user)

        assert [r["closed"] for r in result["results"]] == [False, False]
        assert await _quantity(db_session, no_stops) == 1.0
        assert await _quantity(db_session, in_range) == 1.0

    @pytest.mark.asyncio
    async def test_price_fetched_once_per_symbol(self, db_session, user, latest_price):
        for _ in range(3):
            await _add_position(db_session, user.id, sl=90.0)
        latest_price.return_value = 100.0

        await tpsl_service.check_user_positions(db_session, user)

        latest_price.assert_awaited_once_with("BTCUSDT")

    @pytest.mark.asyncio
    async def test_missing_price_skips_position(self, db_session, user, latest_price):
        position_id = await _add_position(db_session, user.id, sl=90.0)
        latest_price.return_value = None

        result = await tpsl_service.check_user_positions(db_session, user)

        assert result["results"][0]["closed"] is False
        assert await _quantity(db_session, position_id) == 1.0

    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_the_sweep(self, db_session, user, latest_price):
        eth_id = await _add_position(db_session, user.id, symbol="ETHUSDT", sl=90.0)
        btc_id = await _add_position(db_session, user.id, symbol="BTCUSDT", sl=90.0)

        async def price_for(symbol):
            if symbol == "ETHUSDT":
                raise RuntimeError("boom")
            return 80.0

        latest_price.side_effect = price_for

        result = await tpsl_service.check_user_positions(db_session, user)

        by_id = {r["id"]: r for r in result["results"]}
        assert by_id[eth_id]["closed"] is False
        assert by_id[btc_id]["closed"] is True
        assert await _quantity(db_session, eth_id) == 1.0
        assert await _quantity(db_session, btc_id) == 0.0

    @pytest.mark.asyncio
    async def test_other_users_positions_untouched(self, db_session, user, other_user, latest_price):
        theirs = await _add_position(db_session, other_user.id, sl=90.0)
        latest_price.return_value = 50.0

        result = await tpsl_service.check_user_positions(db_session, user)

        assert result["results"] == []
        assert await _quantity(db_session, theirs) == 1.0


class TestCloseTriggered:
    @pytest.mark.asyncio
    async def test_position_closed_only_once(self, db_session, user):
        user_id = user.id
        position_id = await _add_position(db_session, user_id, sl=90.0)

        first = await tpsl_service._close_triggered(
            db_session, user_id, position_id, "BTCUSDT", 1.0, 100.0, 89.0, "Stop Loss"
        )
        second = await tpsl_service._close_triggered(
            db_session, user_id, position_id, "BTCUSDT", 1.0, 100.0, 89.0, "Stop Loss"
        )

        assert (first, second) == (True, False)
        orders = (await db_session.execute(select(DemoOrder))).scalars().all()
        assert len(orders) == 1
        notifications = (await db_session.execute(select(Notification))).scalars().all()
        assert len(notifications) == 1


class TestTpSlMonitor:
    @pytest.mark.asyncio
    async def test_sweep_all_users(self, db_session, session_factory, make_user, latest_price):
        alice = await make_user(email="alice@cryptex.io")
        bob = await make_user(email="bob@cryptex.io")
        await _add_position(db_session, alice.id, sl=90.0)
        await _add_position(db_session, bob.id, tp=120.0)
        await _add_position(db_session, bob.id, symbol="ETHUSDT", quantity=0.0, sl=90.0)
        latest_price.return_value = 85.0

        monitor = TpSlMonitor(check_interval_seconds=60)
        with patch.object(tpsl_service, "async_session_maker", session_factory):
            closed = await monitor.sweep_all_users()

        assert closed == 1
        assert monitor._last_check is not None

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        monitor = TpSlMonitor(check_interval_seconds=3600)
        monitor.sweep_all_users = AsyncMock(return_value=0)

        await monitor.start()
        await asyncio.sleep(0)
        assert monitor.running is True

        await monitor.stop()
        assert monitor.running is False
        monitor.sweep_all_users.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_loop_survives_sweep_errors(self):
        monitor = TpSlMonitor(check_interval_seconds=0)
        monitor.sweep_all_users = AsyncMock(side_effect=[RuntimeError("db down"), 0, 0, 0, 0, 0])

        await monitor.start()
        for _ in range(5):
            await asyncio.sleep(0)
        await monitor.stop()

        assert monitor.sweep_all_users.await_count >= 2
