"""
Admin Panel Router

Access: a signed-in admin, or the admin console cookie obtained by POSTing
the console code to /api/admin/console/verify.

- Console unlock / lock
- Users (list, promote/demote, trading kill switch)
- Orders and positions (browse, force-close)
- Balance override / reset
- Overview, charts and metrics
- Audit log
"""

import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from cryptex.auth.dependencies import ADMIN_CONSOLE_COOKIE, create_admin_console_token, require_admin
from cryptex.config import settings
from cryptex.database import get_db
from cryptex.exceptions import AppError, UnauthorizedError
from cryptex.models import User
from cryptex.schemas import (
    AdminBalanceRequest,
    AdminConsoleVerifyRequest,
    AdminForceCloseRequest,
    AdminUserActionRequest,
)
from cryptex.services import admin_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


# ---------------------------------------------------------------------------
# Console code gate
# ---------------------------------------------------------------------------

@router.post("/console/verify")
async def verify_console_code(payload: AdminConsoleVerifyRequest, response: Response):
    """Exchange the console code for an 8 hour HttpOnly admin cookie."""
    expected = settings.admin_console_code or ""
    if not expected:
        raise AppError("Admin code not configured.", status_code=500)

    if not hmac.compare_digest(str(payload.code or "").encode(), expected.encode()):
        logger.warning("Invalid admin console code submitted")
        raise UnauthorizedError("Invalid code.")

    response.set_cookie(
        ADMIN_CONSOLE_COOKIE,
        create_admin_console_token(),
        max_age=settings.admin_console_max_age_seconds,
        httponly=True,
        samesite="lax",
        secure=settings.is_production,
        path="/",
    )
    logger.info("Admin console unlocked")
    return {"ok": True}


@router.post("/console/logout")
async def console_logout(response: Response):
    response.delete_cookie(
        ADMIN_CONSOLE_COOKIE,
        httponly=True,
        samesite="lax",
        secure=settings.is_production,
        path="/",
    )
    return {"ok": True}


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

@router.get("/users")
async def list_users(
    page: Optional[str] = None,
    limit: Optional[str] = None,
    q: str = "",
    db: AsyncSession = Depends(get_db),
    admin: Optional[User] = Depends(require_admin),
):
    """Paginated users with role, balance and trading flag. q matches email or id."""
    return await admin_service.list_users(db, page=page, limit=limit, q=q)


@router.post("/users")
async def update_user(
    payload: AdminUserActionRequest,
    db: AsyncSession = Depends(get_db),
    admin: Optional[User] = Depends(require_admin),
):
    """action: promote | demote | disable_trading | enable_trading"""
    return await admin_service.apply_user_action(db, admin, payload.userId, payload.action)


# ---------------------------------------------------------------------------
# Orders & positions
# ---------------------------------------------------------------------------

@router.get("/orders")
async def list_orders(
    page: Optional[str] = None,
    limit: Optional[str] = None,
    q: str = "",
    symbol: str = "",
    status: str = "",
    db: AsyncSession = Depends(get_db),
    admin: Optional[User] = Depends(require_admin),
):
    return await admin_service.list_orders(db, page=page, limit=limit, q=q, symbol=symbol, status=status)


@router.get("/positions")
async def list_positions(
    page: Optional[str] = None,
    limit: Optional[str] = None,
    q: str = "",
    symbol: str = "",
    status: str = "",
    db: AsyncSession = Depends(get_db),
    admin: Optional[User] = Depends(require_admin),
):
    """status: open | closed | (empty for all)"""
    return await admin_service.list_positions(db, page=page, limit=limit, q=q, symbol=symbol, status=status)


@router.post("/positions")
async def force_close_position(
    payload: AdminForceCloseRequest,
    db: AsyncSession = Depends(get_db),
    admin: Optional[User] = Depends(require_admin),
):
    """Force-close a position at the latest market price"""
    try:
        return await admin_service.force_close_position(db, admin, payload.positionId)
    except AppError:
        raise
    except Exception as e:
        logger.exception(f"Admin force-close failed: {e}")
        raise AppError("Failed to close position.", status_code=500)


# ---------------------------------------------------------------------------
# Balances
# ---------------------------------------------------------------------------

@router.post("/balance")
async def update_balance(
    payload: AdminBalanceRequest,
    db: AsyncSession = Depends(get_db),
    admin: Optional[User] = Depends(require_admin),
):
    """{userId, amount} sets the balance; {userId, reset: true} wipes positions and restores 10,000"""
    return await admin_service.set_balance(db, admin, payload.userId, amount=payload.amount, reset=payload.reset)


# ---------------------------------------------------------------------------
# Dashboards
# ---------------------------------------------------------------------------

@router.get("/overview")
async def get_overview(
    db: AsyncSession = Depends(get_db),
    admin: Optional[User] = Depends(require_admin),
):
    return await admin_service.get_overview(db)


@router.get("/charts")
async def get_charts(
    days: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    admin: Optional[User] = Depends(require_admin),
):
    return await admin_service.get_charts(db, days=days)


@router.get("/metrics")
async def get_metrics(
    db: AsyncSession = Depends(get_db),
    admin: Optional[User] = Depends(require_admin),
):
    return await admin_service.get_metrics(db)


@router.get("/actions")
async def list_admin_actions(
    page: Optional[str] = None,
    limit: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    admin: Optional[User] = Depends(require_admin),
):
    """Audit log of admin mutations, newest first"""
    return await admin_service.list_admin_actions(db, page=page, limit=limit)
