"""
Demo account API routes

- Full account reset (balance + positions)
- Balance-only reset
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from cryptex.auth.dependencies import get_current_user
from cryptex.database import get_db
from cryptex.exceptions import AppError
from cryptex.models import User
from cryptex.schemas import ResetBalanceResponse
from cryptex.services import account_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["account"])


@router.post("/user/reset-balance", response_model=ResetBalanceResponse)
async def reset_account(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Reset the demo balance to 10,000 and delete every position.

    Allowed once per 24 hours; otherwise 429 with nextResetAvailable.
    """
    try:
        return await account_service.reset_balance(db, current_user, clear_positions=True)
    except AppError:
        raise
    except Exception as e:
        logger.exception(f"Account reset failed for user {current_user.id}: {e}")
        raise AppError("Internal Server Error", status_code=500)


@router.post("/demo/reset")
async def reset_demo_balance(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Reset only the balance, keeping positions"""
    try:
        await account_service.reset_balance(db, current_user, clear_positions=False)
    except AppError:
        raise
    except Exception as e:
        logger.exception(f"Demo balance reset failed for user {current_user.id}: {e}")
        raise AppError("Reset failed.", status_code=500)
    return {"ok": True}
