"""Notification API routes"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from cryptex.auth.dependencies import get_current_user, get_optional_user
from cryptex.database import get_db
from cryptex.models import User
from cryptex.schemas import NotificationUpdate
from cryptex.services import notification_service
from cryptex.utils.id_utils import parse_row_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


@router.get("")
async def list_notifications(
    current_user: Optional[User] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
):
    """Newest 50 notifications; signed-out callers get an empty list"""
    if current_user is None:
        return {"notifications": []}
    return {"notifications": await notification_service.list_notifications(db, current_user.id)}


@router.patch("")
async def mark_notifications_read(
    payload: NotificationUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await notification_service.mark_read(
        db, current_user.id, notification_id=parse_row_id(payload.id), mark_all=payload.markAllRead
    )
    return {"ok": True}
