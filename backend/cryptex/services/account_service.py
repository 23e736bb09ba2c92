"""
Account Service

Profile bootstrap, demo balance resets, user preferences and the first-run
walkthrough state.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from cryptex.config import settings
from cryptex.exceptions import RateLimitError
from cryptex.models import AccountSettings, DemoPosition, User
from cryptex.services.notification_service import add_notification, push_notification

logger = logging.getLogger(__name__)

DEV_ADMIN_EMAIL = "admin1@admin.admin"

FIRST_RUN_ACTIONS = ("dismiss", "complete", "reset")


def should_promote_to_admin(email: Optional[str]) -> bool:
    if not email:
        return False
    normalized = email.strip().lower()
    if normalized in settings.get_admin_emails():
        return True
    return not settings.is_production and normalized == DEV_ADMIN_EMAIL


async def get_account_settings(db: AsyncSession, user_id: int) -> Optional[AccountSettings]:
    result = await db.execute(select(AccountSettings).where(AccountSettings.user_id == user_id))
    return result.scalars().first()


async def ensure_profile_and_settings(db: AsyncSession, user: User) -> AccountSettings:
    """
    Make sure the user has an admin role if configured and an AccountSettings row.

    An existing settings row is never overwritten, so the demo balance
    survives repeated sign-ins.
    """
    changed = False
    if should_promote_to_admin(user.email) and (user.role or "").strip().lower() != "admin":
        user.role = "admin"
        changed = True
        logger.info(f"Promoted {user.email} to admin")

    account = await get_account_settings(db, user.id)
    if account is None:
        account = AccountSettings(
            user_id=user.id,
            demo_balance=settings.default_demo_balance,
            first_run_complete=False,
            dark_mode=False,
            email_alerts=True,
            in_app_alerts=True,
            trading_disabled=False,
        )
        db.add(account)
        changed = True

    if changed:
        await db.commit()
        await db.refresh(account)
    return account


def _check_reset_cooldown(account: Optional[AccountSettings], now: datetime, message: str):
    if account is None or account.last_reset_at is None:
        return
    cooldown = timedelta(hours=settings.balance_reset_cooldown_hours)
    next_reset = account.last_reset_at + cooldown
    if now < next_reset:
        retry_after = int((next_reset - now).total_seconds()) + 1
        raise RateLimitError(
            message,
            retry_after=retry_after,
            extra={"nextResetAvailable": next_reset.isoformat() + "Z"},
        )


async def reset_balance(db: AsyncSession, user: User, clear_positions: bool = True) -> Dict[str, Any]:
    """
    Restore the demo balance, at most once per cooldown window.

    With ``clear_positions`` every position row is deleted and an
    "Account Reset" notification is created as well.
    """
    now = datetime.utcnow()
    account = await get_account_settings(db, user.id)

    if clear_positions:
        _check_reset_cooldown(account, now, "Balance can only be reset once every 24 hours.")
    else:
        _check_reset_cooldown(account, now, "Balance can only be reset once per day.")

    if account is None:
        account = AccountSettings(user_id=user.id)
        db.add(account)

    notification = None
    if clear_positions:
        await db.execute(delete(DemoPosition).where(DemoPosition.user_id == user.id))

    account.demo_balance = settings.default_demo_balance
    account.last_reset_at = now

    if clear_positions:
        notification = add_notification(
            db,
            user.id,
            "Account Reset",
            f"Your demo account balance has been reset to ${settings.default_demo_balance:,.0f}.",
            "info",
        )

    await db.commit()
    logger.info(f"Reset demo balance for user {user.id} (clear_positions={clear_positions})")

    if notification is not None:
        await db.refresh(notification)
        await push_notification(notification)

    return {"ok": True, "balance": settings.default_demo_balance}


async def get_settings(db: AsyncSession, user: User) -> Dict[str, Any]:
    account = await ensure_profile_and_settings(db, user)
    first_run_complete = bool(user.walkthrough_completed or user.walkthrough_dismissed)

    return {
        "profile": {
            "email": user.email,
            "name": user.display_name,
            "role": user.role or "user",
            "createdAt": user.created_at.isoformat() if user.created_at else None,
        },
        "settings": {
            "demoBalance": float(account.demo_balance if account.demo_balance is not None else settings.default_demo_balance),
            "lastResetAt": account.last_reset_at.isoformat() if account.last_reset_at else None,
            "firstRunComplete": first_run_complete,
            "darkMode": bool(account.dark_mode),
            "emailAlerts": bool(account.email_alerts if account.email_alerts is not None else True),
            "inAppAlerts": bool(account.in_app_alerts if account.in_app_alerts is not None else True),
        },
    }


async def update_settings(
    db: AsyncSession,
    user: User,
    name: Optional[str] = None,
    dark_mode: Optional[bool] = None,
    email_alerts: Optional[bool] = None,
    in_app_alerts: Optional[bool] = None,
) -> Dict[str, Any]:
    """Apply only the fields that were supplied"""
    account = await ensure_profile_and_settings(db, user)

    if name is not None:
        user.display_name = name
    if dark_mode is not None:
        account.dark_mode = dark_mode
    if email_alerts is not None:
        account.email_alerts = email_alerts
    if in_app_alerts is not None:
        account.in_app_alerts = in_app_alerts

    await db.commit()
    return {"ok": True}


async def update_first_run(db: AsyncSession, user: User, action: Optional[str]) -> Dict[str, Any]:
    if action not in FIRST_RUN_ACTIONS:
        action = "complete"

    account = await ensure_profile_and_settings(db, user)

    if action == "dismiss":
        user.walkthrough_dismissed = True
    elif action == "complete":
        user.walkthrough_completed = True
    else:
        user.walkthrough_dismissed = False
        user.walkthrough_completed = False

    account.first_run_complete = action != "reset"
    await db.commit()
    return {"ok": True}
