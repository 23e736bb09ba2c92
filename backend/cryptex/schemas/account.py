"""Account settings schemas"""

from typing import Literal, Optional

from pydantic import BaseModel, Field, StrictBool


class SettingsUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2)
    darkMode: Optional[StrictBool] = None
    emailAlerts: Optional[StrictBool] = None
    inAppAlerts: Optional[StrictBool] = None


class FirstRunRequest(BaseModel):
    action: Literal["dismiss", "complete", "reset"] = "complete"


class ResetBalanceResponse(BaseModel):
    ok: bool
    balance: Optional[float] = None
