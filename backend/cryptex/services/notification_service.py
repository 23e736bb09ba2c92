"""
User notifications: persistence plus live push over WebSocket.
"""

import logging
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from cryptex.constants import NOTIFICATIONS_LIMIT
from cryptex.models import Notification
from cryptex.services.websocket_manager import ws_manager

logger = logging.getLogger(__name__)

NOTIFICATION_TYPES = ("info", "success", "warning")


def serialize_notification(notification: Notification) -> dict:
    return {
        "id": notification.id,
        "title": notification.title,
        "message": notification.message,
        "type": notification.type,
        "read": bool(notification.read),
        "created_at": notification.created_at.isoformat() if notification.created_at else None,
    }


def add_notification(
    db: AsyncSession,
    user_id: int,
    title: str,
    message: str,
    type: str = "info",
) -> Notification:
    """
    Stage a notification on the session without committing.

    Callers that write a fill add the notification to the same transaction and
    call ``push_notification`` after their commit.
    """
    if type not in NOTIFICATION_TYPES:
        type = "info"
    notification = Notification(user_id=user_id, title=title, message=message, type=type, read=False)
    db.add(notification)
    return notification


async def push_notification(notification: Notification):
    """Deliver an already-committed notification to the user's open sockets"""
    try:
        await ws_manager.send_notification(notification.user_id, serialize_notification(notification))
    except Exception as e:
        # Live delivery is best effort; the row is already saved
        logger.warning(f"Failed to push notification {notification.id}: {e}")


async def list_notifications(db: AsyncSession, user_id: int, limit: int = NOTIFICATIONS_LIMIT) -> List[dict]:
    result = await db.execute(
        select(Notification)
        .where(Notification.user_id == user_id)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(limit)
    )
    return [serialize_notification(n) for n in result.scalars().all()]


async def mark_read(
    db: AsyncSession,
    user_id: int,
    notification_id: Optional[int] = None,
    mark_all: bool = False,
) -> int:
    """Mark one or all of the user's notifications as read. Returns rows updated."""
    stmt = update(Notification).where(Notification.user_id == user_id)
    if mark_all:
        stmt = stmt.where(Notification.read.is_(False))
    elif notification_id is not None:
        stmt = stmt.where(Notification.id == notification_id)
    else:
        return 0

    result = await db.execute(stmt.values(read=True))
    await db.commit()
    return result.rowcount or 0
