"""
Database models, organized by domain.

All model classes are re-exported here:
    from cryptex.models import User, DemoPosition, DemoOrder, ...
"""

from cryptex.database import Base  # noqa: F401  re-exported for tests
from cryptex.models.auth import User, RevokedToken
from cryptex.models.trading import AccountSettings, DemoOrder, DemoPosition
from cryptex.models.system import AdminAction, Notification

__all__ = [
    "Base",
    # Auth
    "User", "RevokedToken",
    # Trading
    "AccountSettings", "DemoPosition", "DemoOrder",
    # System
    "Notification", "AdminAction",
]
