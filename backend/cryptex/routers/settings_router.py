"""
Settings API routes

- Profile and account preferences
- First-run walkthrough state
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from cryptex.auth.dependencies import get_current_user
from cryptex.database import get_db
from cryptex.exceptions import ValidationError
from cryptex.models import User
from cryptex.schemas import FirstRunRequest, SettingsUpdate
from cryptex.services import account_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/settings", tags=["settings"])


@router.get("")
async def get_settings(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await account_service.get_settings(db, current_user)


@router.post("")
async def update_settings(
    body: Optional[Any] = Body(default=None),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Update name, dark mode and alert preferences. Unknown keys are ignored."""
    try:
        update = SettingsUpdate.model_validate(body if body is not None else {})
    except PydanticValidationError:
        raise ValidationError("Invalid payload.")

    return await account_service.update_settings(
        db,
        current_user,
        name=update.name,
        dark_mode=update.darkMode,
        email_alerts=update.emailAlerts,
        in_app_alerts=update.inAppAlerts,
    )


@router.post("/first-run")
async def update_first_run(
    body: Optional[Any] = Body(default=None),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """action: dismiss | complete | reset. Anything unreadable counts as complete."""
    try:
        action = FirstRunRequest.model_validate(body if isinstance(body, dict) else {}).action
    except PydanticValidationError:
        action = "complete"

    return await account_service.update_first_run(db, current_user, action)
