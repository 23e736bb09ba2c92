"""Centralized Pydantic schemas for API requests/responses"""

from .account import FirstRunRequest, ResetBalanceResponse, SettingsUpdate
from .admin import (
    AdminBalanceRequest,
    AdminConsoleVerifyRequest,
    AdminForceCloseRequest,
    AdminUserActionRequest,
)
from .notifications import NotificationUpdate
from .trading import ClosePositionRequest, OrderRequest, UpdateStopsRequest

__all__ = [
    # Trading schemas
    "OrderRequest",
    "ClosePositionRequest",
    "UpdateStopsRequest",
    # Account schemas
    "SettingsUpdate",
    "FirstRunRequest",
    "ResetBalanceResponse",
    # Notification schemas
    "NotificationUpdate",
    # Admin schemas
    "AdminConsoleVerifyRequest",
    "AdminUserActionRequest",
    "AdminForceCloseRequest",
    "AdminBalanceRequest",
]
