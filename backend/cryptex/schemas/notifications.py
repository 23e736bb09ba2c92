from typing import Any, Optional

from pydantic import BaseModel


class NotificationUpdate(BaseModel):
    id: Optional[Any] = None
    markAllRead: bool = False
