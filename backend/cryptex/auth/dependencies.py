"""
Authentication dependencies for routers.

Provides easy-to-use dependencies for protecting routes with authentication.
This module lives at the auth-utility layer (no router imports) so that
routers and services can import it without creating circular dependencies.

Admin routes accept either a signed-in user whose role is admin, or a
request carrying the signed ``admin_console`` cookie issued after the
console code was entered.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cryptex.config import settings
from cryptex.database import get_db
from cryptex.models import RevokedToken, User

logger = logging.getLogger(__name__)

# Security scheme - auto_error=False allows optional auth
security = HTTPBearer(auto_error=False)

ADMIN_CONSOLE_COOKIE = "admin_console"


def is_admin_role(role: Optional[str]) -> bool:
    """Roles are compared trimmed and case-insensitively ("ADMIN", " admin ")."""
    return (role or "").strip().lower() == "admin"


def decode_token(token: str) -> dict:
    """Decode and validate a JWT token (signature + expiry only)."""
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
        )
        return payload
    except JWTError as e:
        logger.warning(f"JWT decode error: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def check_token_revocation(payload: dict, db: AsyncSession) -> None:
    """Raise 401 if the token's JTI was revoked by logout."""
    jti = payload.get("jti")
    if jti:
        result = await db.execute(
            select(RevokedToken.id).where(RevokedToken.jti == jti)
        )
        if result.scalar_one_or_none() is not None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Token has been revoked",
                headers={"WWW-Authenticate": "Bearer"},
            )


async def get_user_by_id(db: AsyncSession, user_id: int) -> Optional[User]:
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def authenticate_token(token: str, db: AsyncSession) -> User:
    """Resolve an access token to an active user or raise 401/403."""
    payload = decode_token(token)

    if payload.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token type",
            headers={"WWW-Authenticate": "Bearer"},
        )

    await check_token_revocation(payload, db)

    user = await get_user_by_id(db, int(payload.get("sub")))
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is disabled",
        )

    iat = payload.get("iat")
    if user.tokens_valid_after and iat:
        if datetime.utcfromtimestamp(iat) < user.tokens_valid_after:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Session expired, please log in again",
                headers={"WWW-Authenticate": "Bearer"},
            )

    return user


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Require authentication - returns current user or raises 401.

    Usage:
        @router.get("/protected")
        async def protected_route(current_user: User = Depends(get_current_user)):
            ...
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return await authenticate_token(credentials.credentials, db)


async def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> Optional[User]:
    """Current user when a valid token is present, otherwise None (never raises)."""
    if credentials is None:
        return None
    try:
        return await authenticate_token(credentials.credentials, db)
    except HTTPException:
        return None


# ---------------------------------------------------------------------------
# Admin console cookie
# ---------------------------------------------------------------------------


def create_admin_console_token() -> str:
    expire = datetime.utcnow() + timedelta(seconds=settings.admin_console_max_age_seconds)
    payload = {
        "type": "admin_console",
        "jti": str(uuid.uuid4()),
        "exp": expire,
        "iat": datetime.utcnow(),
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def is_valid_admin_console_token(token: Optional[str]) -> bool:
    if not token:
        return False
    try:
        payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return False
    return payload.get("type") == "admin_console"


async def require_admin(
    request: Request,
    current_user: Optional[User] = Depends(get_optional_user),
) -> Optional[User]:
    """
    Require admin access.

    Returns the admin user, or None when access was granted by the console
    cookie alone (audit rows then carry no admin_id).
    """
    if current_user is not None and is_admin_role(current_user.role):
        return current_user

    if is_valid_admin_console_token(request.cookies.get(ADMIN_CONSOLE_COOKIE)):
        return None

    if current_user is not None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Forbidden.",
        )
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Unauthorized.",
    )
