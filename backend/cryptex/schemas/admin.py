"""Admin panel request schemas"""

from typing import Any, Optional

from pydantic import BaseModel


class AdminConsoleVerifyRequest(BaseModel):
    code: Optional[str] = None


class AdminUserActionRequest(BaseModel):
    userId: Optional[Any] = None
    action: Optional[str] = None


class AdminForceCloseRequest(BaseModel):
    positionId: Optional[Any] = None


class AdminBalanceRequest(BaseModel):
    userId: Optional[Any] = None
    amount: Optional[Any] = None
    reset: bool = False
