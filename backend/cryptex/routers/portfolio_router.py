"""
Portfolio API routes

- Balance, open positions and equity
- Fill history
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from cryptex.auth.dependencies import get_current_user
from cryptex.database import get_db
from cryptex.exceptions import AppError
from cryptex.models import User
from cryptex.services import order_service, portfolio_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["portfolio"])


@router.get("/portfolio")
async def get_portfolio(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await portfolio_service.get_portfolio(db, current_user)
    except AppError:
        raise
    except Exception as e:
        logger.exception(f"Portfolio load failed for user {current_user.id}: {e}")
        raise AppError("Failed to load portfolio.", status_code=500)


@router.get("/trades")
async def get_trades(
    symbol: Optional[str] = None,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Newest 100 fills, optionally for one symbol"""
    try:
        trades = await order_service.list_trades(db, current_user, symbol)
    except AppError:
        raise
    except Exception as e:
        logger.exception(f"Trade history failed for user {current_user.id}: {e}")
        raise AppError("Failed to load trades.", status_code=500)
    return {"trades": trades}
