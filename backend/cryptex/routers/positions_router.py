"""
Position API routes

- TP/SL sweep over the caller's open positions
- Update stop-loss / take-profit levels
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from cryptex.auth.dependencies import get_current_user
from cryptex.database import get_db
from cryptex.exceptions import AppError
from cryptex.models import User
from cryptex.schemas import UpdateStopsRequest
from cryptex.services import order_service, tpsl_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/positions", tags=["positions"])


@router.post("/check-tp-sl")
async def check_tp_sl(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Close any position whose SL or TP has been crossed by the latest price"""
    try:
        return await tpsl_service.check_user_positions(db, current_user)
    except AppError:
        raise
    except Exception as e:
        logger.exception(f"TP/SL check failed for user {current_user.id}: {e}")
        raise AppError("Failed to check TP/SL.", status_code=500)


@router.post("/update-stops")
async def update_stops(
    payload: UpdateStopsRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await order_service.update_stops(db, current_user, payload)
    except AppError:
        raise
    except Exception as e:
        logger.exception(f"Stop update failed for user {current_user.id}: {e}")
        raise AppError("Failed to update stops.", status_code=500)
