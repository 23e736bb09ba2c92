"""
Trading API routes

- Place simulated market/limit orders
- Close (fully or partially) an open position
- Legacy TP/SL match endpoint
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from cryptex.auth.dependencies import get_current_user
from cryptex.database import get_db
from cryptex.exceptions import AppError
from cryptex.models import User
from cryptex.schemas import ClosePositionRequest, OrderRequest
from cryptex.services import order_service, tpsl_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/trade", tags=["trade"])


@router.post("/order")
async def place_order(
    payload: OrderRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Place a demo order. It fills immediately:
    market orders at the latest price, limit orders at their limit price.
    """
    try:
        return await order_service.place_order(db, current_user, payload)
    except AppError:
        raise
    except Exception as e:
        logger.exception(f"Order failed for user {current_user.id}: {e}")
        raise AppError("Order failed.", status_code=500)


@router.post("/close")
async def close_position(
    payload: ClosePositionRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await order_service.close_position(db, current_user, payload)
    except AppError:
        raise
    except Exception as e:
        logger.exception(f"Close failed for user {current_user.id}: {e}")
        raise AppError("Internal Server Error", status_code=500)


@router.post("/match")
async def match_positions(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Legacy name for /api/positions/check-tp-sl"""
    try:
        return await tpsl_service.check_user_positions(db, current_user)
    except AppError:
        raise
    except Exception as e:
        logger.exception(f"TP/SL match failed for user {current_user.id}: {e}")
        raise AppError("Failed to check TP/SL.", status_code=500)
