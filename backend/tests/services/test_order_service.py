"""
Tests for backend/cryptex/services/order_service.py

Covers order placement (validation, fill price, cash movement, one position
row per fill), manual closes (full, partial, conditional), SL/TP updates and
trade history.
"""

import pytest
from sqlalchemy import select

from cryptex.exceptions import AppError, ForbiddenError, NotFoundError, ValidationError
from cryptex.models import AccountSettings, DemoOrder, DemoPosition, Notification
from cryptex.schemas import ClosePositionRequest, OrderRequest, UpdateStopsRequest
from cryptex.services import order_service


# =============================================================================
# Helpers
# =============================================================================


async def _balance(db, user_id):
    result = await db.execute(select(AccountSettings.demo_balance).where(AccountSettings.user_id == user_id))
    return result.scalar_one()


async def _positions(db, user_id):
    result = await db.execute(
        select(DemoPosition).where(DemoPosition.user_id == user_id).order_by(DemoPosition.id)
    )
    return result.scalars().all()


async def _orders(db, user_id):
    result = await db.execute(select(DemoOrder).where(DemoOrder.user_id == user_id).order_by(DemoOrder.id))
    return result.scalars().all()


async def _open_limit(db, user, side, qty, price, **extra):
    payload = OrderRequest.model_validate({
        "symbol": extra.pop("symbol", "BTC"),
        "side": side,
        "quantity": qty,
        "orderType": "limit",
        "limitPrice": price,
        **extra,
    })
    await order_service.place_order(db, user, payload)
    return (await _positions(db, user.id))[-1]


def test_format_price():
    assert order_service.format_price(50000.0) == "50000"
    assert order_service.format_price(64000.5) == "64000.5"


# =============================================================================
# place_order
# =============================================================================


class TestPlaceOrder:
    @pytest.mark.asyncio
    async def test_market_buy_fills_at_latest_price(self, db_session, user, latest_price):
        latest_price.return_value = 50000.0
        payload = OrderRequest.model_validate({"symbol": "btc", "side": "BUY", "quantity": "0.1"})

        result = await order_service.place_order(db_session, user, payload)

        assert result["ok"] is True
        assert result["filled"] is True
        assert result["symbol"] == "BTCUSDT"
        assert result["side"] == "buy"
        assert result["price"] == 50000.0
        assert result["orderId"] is not None
        latest_price.assert_awaited_once_with("BTCUSDT")

        assert await _balance(db_session, user.id) == pytest.approx(5000.0)
        positions = await _positions(db_session, user.id)
        assert len(positions) == 1
        assert positions[0].quantity == pytest.approx(0.1)
        assert positions[0].avg_price == 50000.0

    @pytest.mark.asyncio
    async def test_limit_sell_opens_short_and_credits_notional(self, db_session, user, latest_price):
        payload = OrderRequest.model_validate({
            "symbol": "ETH", "sideValue": "sell", "q": 2, "orderType": "LIMIT", "limitPrice": "100",
        })

        result = await order_service.place_order(db_session, user, payload)

        assert result["price"] == 100.0
        latest_price.assert_not_awaited()
        assert await _balance(db_session, user.id) == pytest.approx(10200.0)
        position = (await _positions(db_session, user.id))[0]
        assert position.symbol == "ETHUSDT"
        assert position.quantity == -2.0

        order = (await _orders(db_session, user.id))[0]
        assert order.side == "sell"
        assert order.order_type == "limit"
        assert order.status == "filled"

    @pytest.mark.asyncio
    async def test_every_fill_opens_its_own_position(self, db_session, user, latest_price):
        for _ in range(2):
            await order_service.place_order(
                db_session, user, OrderRequest.model_validate({"symbol": "BTC", "side": "buy", "quantity": 0.01})
            )

        assert len(await _positions(db_session, user.id)) == 2
        assert len(await _orders(db_session, user.id)) == 2

    @pytest.mark.asyncio
    async def test_stops_saved_on_order_and_position(self, db_session, user, latest_price):
        latest_price.return_value = 100.0
        payload = OrderRequest.model_validate({
            "symbol": "SOL", "side": "buy", "quantity": 1, "stopLoss": "90", "takeProfit": 120,
        })

        result = await order_service.place_order(db_session, user, payload)

        assert result["sl"] == 90.0
        assert result["tp"] == 120.0
        position = (await _positions(db_session, user.id))[0]
        assert (position.sl, position.tp) == (90.0, 120.0)

    @pytest.mark.asyncio
    async def test_trading_disabled(self, db_session, user, latest_price):
        db_session.add(AccountSettings(user_id=user.id, demo_balance=10000.0, trading_disabled=True))
        await db_session.commit()

        with pytest.raises(ForbiddenError) as exc_info:
            await order_service.place_order(
                db_session, user, OrderRequest.model_validate({"symbol": "BTC", "side": "buy", "quantity": 1})
            )
        assert exc_info.value.status_code == 403
        assert exc_info.value.message == "Trading disabled by admin."

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body,message", [
        ({"symbol": "DOGE", "side": "buy", "quantity": 1}, "Unsupported symbol. Use BTC, ETH, or SOL."),
        ({"symbol": "BTC", "side": "buy", "quantity": 0}, "Quantity must be a number greater than 0."),
        ({"symbol": "BTC", "side": "buy", "quantity": "lots"}, "Quantity must be a number greater than 0."),
        ({"symbol": "BTC", "side": "hold", "quantity": 1}, "Side must be BUY or SELL."),
        ({"symbol": "BTC", "side": "buy", "quantity": 1, "orderType": "limit"},
         "Limit orders require a valid limitPrice."),
        ({"symbol": "BTC", "side": "buy", "quantity": 1, "sl": "abc"}, "Invalid SL price."),
        ({"symbol": "BTC", "side": "buy", "quantity": 1, "sl": 60000}, "Stop Loss must be below entry price for Buy."),
        ({"symbol": "BTC", "side": "sell", "quantity": 1, "tp": 60000},
         "Take Profit must be below entry price for Sell."),
    ])
    async def test_validation_errors(self, db_session, user, latest_price, body, message):
        with pytest.raises(ValidationError) as exc_info:
            await order_service.place_order(db_session, user, OrderRequest.model_validate(body))

        assert exc_info.value.message == message
        assert await _positions(db_session, user.id) == []
        assert await _balance(db_session, user.id) == pytest.approx(10000.0)

    @pytest.mark.asyncio
    async def test_missing_symbol_defaults_to_btc(self, db_session, user, latest_price):
        result = await order_service.place_order(
            db_session, user, OrderRequest.model_validate({"side": "buy", "quantity": 0.01})
        )
        assert result["symbol"] == "BTCUSDT"

    @pytest.mark.asyncio
    async def test_no_price_returns_502(self, db_session, user, latest_price):
        latest_price.return_value = None

        with pytest.raises(AppError) as exc_info:
            await order_service.place_order(
                db_session, user, OrderRequest.model_validate({"symbol": "BTC", "side": "buy", "quantity": 1})
            )

        assert exc_info.value.status_code == 502
        assert exc_info.value.message == "Could not get latest price. Try again in a moment."
        assert await _positions(db_session, user.id) == []


# =============================================================================
# close_position
# =============================================================================


class TestClosePosition:
    @pytest.mark.asyncio
    async def test_full_market_close_long(self, db_session, user, latest_price):
        position = await _open_limit(db_session, user, "buy", 1, 100)
        latest_price.return_value = 110.0

        result = await order_service.close_position(
            db_session, user, ClosePositionRequest.model_validate({"id": position.id})
        )

        assert result == {"ok": True, "realizedPnl": pytest.approx(10.0)}
        await db_session.refresh(position)
        assert position.quantity == 0.0
        assert position.sl is None
        assert await _balance(db_session, user.id) == pytest.approx(10010.0)

        closing = (await _orders(db_session, user.id))[-1]
        assert closing.side == "sell"
        assert closing.realized_pnl == pytest.approx(10.0)

        notification = (await db_session.execute(select(Notification))).scalars().one()
        assert notification.title == "Market Close Triggered"
        assert notification.message == "BTCUSDT position closed at 110 (Market Close). PnL: 10.00"
        assert notification.type == "success"

    @pytest.mark.asyncio
    async def test_short_close_buys_back(self, db_session, user, latest_price):
        position = await _open_limit(db_session, user, "sell", 1, 100)
        latest_price.return_value = 120.0

        result = await order_service.close_position(
            db_session, user, ClosePositionRequest.model_validate({"id": str(position.id)})
        )

        assert result["realizedPnl"] == pytest.approx(-20.0)
        assert (await _orders(db_session, user.id))[-1].side == "buy"
        assert await _balance(db_session, user.id) == pytest.approx(9980.0)
        notification = (await db_session.execute(select(Notification))).scalars().one()
        assert notification.type == "warning"

    @pytest.mark.asyncio
    async def test_partial_close_keeps_remainder(self, db_session, user, latest_price):
        position = await _open_limit(db_session, user, "buy", 2, 100, sl=90)
        latest_price.return_value = 105.0

        result = await order_service.close_position(
            db_session, user, ClosePositionRequest.model_validate({"id": position.id, "quantity": 0.5})
        )

        assert result["realizedPnl"] == pytest.approx(2.5)
        await db_session.refresh(position)
        assert position.quantity == pytest.approx(1.5)
        assert position.sl == 90.0

    @pytest.mark.asyncio
    async def test_oversized_quantity_clamped_to_position(self, db_session, user, latest_price):
        position = await _open_limit(db_session, user, "buy", 1, 100)
        latest_price.return_value = 100.0

        await order_service.close_position(
            db_session, user, ClosePositionRequest.model_validate({"id": position.id, "quantity": 5})
        )

        await db_session.refresh(position)
        assert position.quantity == 0.0
        assert (await _orders(db_session, user.id))[-1].quantity == 1.0

    @pytest.mark.asyncio
    async def test_close_by_symbol_picks_oldest_open(self, db_session, user, latest_price):
        first = await _open_limit(db_session, user, "buy", 1, 100)
        second = await _open_limit(db_session, user, "buy", 1, 101)

        await order_service.close_position(db_session, user, ClosePositionRequest.model_validate({"symbol": "btc"}))

        await db_session.refresh(first)
        await db_session.refresh(second)
        assert first.quantity == 0.0
        assert second.quantity == 1.0

    @pytest.mark.asyncio
    async def test_conditional_close_not_met(self, db_session, user, latest_price):
        position = await _open_limit(db_session, user, "buy", 1, 100, sl=90)
        latest_price.return_value = 110.0

        with pytest.raises(ValidationError) as exc_info:
            await order_service.close_position(
                db_session, user, ClosePositionRequest.model_validate({"id": position.id, "type": "sl"})
            )

        assert exc_info.value.message == "Condition not met based on current price 110"
        await db_session.refresh(position)
        assert position.quantity == 1.0

    @pytest.mark.asyncio
    async def test_conditional_close_within_tolerance(self, db_session, user, latest_price):
        position = await _open_limit(db_session, user, "buy", 1, 100, tp=120)
        latest_price.return_value = 119.5

        await order_service.close_position(
            db_session, user, ClosePositionRequest.model_validate({"id": position.id, "order_type": "tp"})
        )

        notification = (await db_session.execute(select(Notification))).scalars().one()
        assert notification.title == "Take Profit Triggered"

    @pytest.mark.asyncio
    async def test_no_open_position(self, db_session, user, latest_price):
        with pytest.raises(ValidationError) as exc_info:
            await order_service.close_position(db_session, user, ClosePositionRequest.model_validate({"id": 999}))
        assert exc_info.value.message == "No open position found."

    @pytest.mark.asyncio
    async def test_cannot_close_another_users_position(self, db_session, user, other_user, latest_price):
        position = await _open_limit(db_session, other_user, "buy", 1, 100)

        with pytest.raises(ValidationError):
            await order_service.close_position(
                db_session, user, ClosePositionRequest.model_validate({"id": position.id})
            )

    @pytest.mark.asyncio
    async def test_price_unavailable(self, db_session, user, latest_price):
        position = await _open_limit(db_session, user, "buy", 1, 100)
        latest_price.return_value = None

        with pytest.raises(AppError) as exc_info:
            await order_service.close_position(
                db_session, user, ClosePositionRequest.model_validate({"id": position.id})
            )
        assert exc_info.value.status_code == 502


# =============================================================================
# update_stops
# =============================================================================


class TestUpdateStops:
    @pytest.mark.asyncio
    async def test_sets_and_clears_levels(self, db_session, user, latest_price):
        position = await _open_limit(db_session, user, "buy", 1, 100)

        result = await order_service.update_stops(
            db_session, user, UpdateStopsRequest(id=position.id, sl="90", tp=120)
        )
        assert result == {"ok": True, "id": position.id, "sl": 90.0, "tp": 120.0}

        await order_service.update_stops(db_session, user, UpdateStopsRequest(id=position.id, sl="", tp=None))
        await db_session.refresh(position)
        assert position.sl is None
        assert position.tp is None

    @pytest.mark.asyncio
    async def test_validated_against_entry_price(self, db_session, user, latest_price):
        position = await _open_limit(db_session, user, "sell", 1, 100)

        with pytest.raises(ValidationError) as exc_info:
            await order_service.update_stops(db_session, user, UpdateStopsRequest(id=position.id, sl=95))
        assert exc_info.value.message == "Stop Loss must be above entry price for Sell."

    @pytest.mark.asyncio
    async def test_missing_id(self, db_session, user):
        with pytest.raises(ValidationError) as exc_info:
            await order_service.update_stops(db_session, user, UpdateStopsRequest(id="  "))
        assert exc_info.value.message == "Missing position id."

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw_id", ["12345", "\u00b2", "99999999999999999999999"])
    async def test_unknown_position(self, db_session, user, raw_id):
        with pytest.raises(NotFoundError) as exc_info:
            await order_service.update_stops(db_session, user, UpdateStopsRequest(id=raw_id))
        assert exc_info.value.status_code == 404
        assert exc_info.value.message == "Position not found."

    @pytest.mark.asyncio
    async def test_closed_position(self, db_session, user, latest_price):
        position = await _open_limit(db_session, user, "buy", 1, 100)
        await order_service.close_position(db_session, user, ClosePositionRequest.model_validate({"id": position.id}))

        with pytest.raises(ValidationError) as exc_info:
            await order_service.update_stops(db_session, user, UpdateStopsRequest(id=position.id, sl=90))
        assert exc_info.value.message == "Position is closed."

    @pytest.mark.asyncio
    async def test_invalid_level(self, db_session, user, latest_price):
        position = await _open_limit(db_session, user, "buy", 1, 100)

        with pytest.raises(ValidationError) as exc_info:
            await order_service.update_stops(db_session, user, UpdateStopsRequest(id=position.id, tp="high"))
        assert exc_info.value.message == "Invalid TP price."


# =============================================================================
# list_trades
# =============================================================================


class TestListTrades:
    @pytest.mark.asyncio
    async def test_newest_first_and_symbol_filter(self, db_session, user, latest_price):
        await _open_limit(db_session, user, "buy", 1, 100, symbol="BTC")
        await _open_limit(db_session, user, "sell", 2, 50, symbol="ETH")

        trades = await order_service.list_trades(db_session, user)
        assert [t["symbol"] for t in trades] == ["ETHUSDT", "BTCUSDT"]
        assert trades[0]["side"] == "SELL"
        assert trades[0]["type"] == "LIMIT"
        assert trades[0]["status"] == "FILLED"
        assert trades[0]["fillPrice"] == 50.0

        eth_only = await order_service.list_trades(db_session, user, symbol="eth")
        assert [t["symbol"] for t in eth_only] == ["ETHUSDT"]

    @pytest.mark.asyncio
    async def test_other_users_trades_hidden(self, db_session, user, other_user, latest_price):
        await _open_limit(db_session, other_user, "buy", 1, 100)
        assert await order_service.list_trades(db_session, user) == []
