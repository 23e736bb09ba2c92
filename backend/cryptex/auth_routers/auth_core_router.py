"""
Core authentication endpoints: signup, login, refresh, logout, /me.
"""

import logging
from datetime import datetime

import bcrypt
from fastapi import APIRouter, Depends, HTTPException, Request, status
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from cryptex.auth.dependencies import (
    check_token_revocation,
    decode_token,
    get_current_user,
    get_user_by_id,
)
from cryptex.config import settings
from cryptex.database import get_db
from cryptex.models import RevokedToken, User
from cryptex.services.account_service import ensure_profile_and_settings

from cryptex.auth_routers.helpers import (
    _DUMMY_HASH,
    build_token_response,
    build_user_response,
    get_user_by_email,
    hash_password,
    verify_password,
)
from cryptex.auth_routers.rate_limiters import (
    _check_rate_limit,
    _check_signup_rate_limit,
    _record_attempt,
    _record_signup_attempt,
)
from cryptex.auth_routers.schemas import (
    LoginRequest,
    RefreshRequest,
    RegisterRequest,
    TokenResponse,
    UserResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


@router.post("/signup", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
async def signup(
    request: RegisterRequest,
    http_request: Request,
    db: AsyncSession = Depends(get_db),
):
    """
    Public user registration.

    Creates the profile with its demo account settings and returns JWT
    tokens for immediate login.
    """
    client_ip = _client_ip(http_request)
    _check_signup_rate_limit(client_ip)
    _record_signup_attempt(client_ip)

    email = request.email.lower()
    if await get_user_by_email(db, email):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email already registered",
        )

    new_user = User(
        email=email,
        hashed_password=hash_password(request.password),
        display_name=request.display_name,
        role="user",
        is_active=True,
        last_login_at=datetime.utcnow(),
    )
    db.add(new_user)
    await db.commit()
    await db.refresh(new_user)

    await ensure_profile_and_settings(db, new_user)
    logger.info(f"New user registered: {new_user.email}")

    return build_token_response(new_user)


@router.post("/login", response_model=TokenResponse)
async def login(
    request: LoginRequest,
    http_request: Request,
    db: AsyncSession = Depends(get_db),
):
    """Authenticate user and return JWT tokens."""
    client_ip = _client_ip(http_request)
    email = request.email.lower()
    _check_rate_limit(client_ip, email=email)
    _record_attempt(client_ip, email=email)

    user = await get_user_by_email(db, email)
    if not user:
        # Timing equalization so unknown emails cost the same as bad passwords
        bcrypt.checkpw(request.password.encode('utf-8'), _DUMMY_HASH.encode())
        logger.warning(f"Login attempt for unknown email: {request.email}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    if not verify_password(request.password, user.hashed_password):
        logger.warning(f"Invalid password for user: {request.email}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is disabled",
        )

    user.last_login_at = datetime.utcnow()
    await db.commit()
    await ensure_profile_and_settings(db, user)

    logger.info(f"User logged in: {user.email}")
    return build_token_response(user)


@router.post("/refresh", response_model=TokenResponse)
async def refresh_token(
    request: RefreshRequest,
    db: AsyncSession = Depends(get_db),
):
    """Exchange a refresh token for a new access/refresh pair."""
    payload = decode_token(request.refresh_token)

    if payload.get("type") != "refresh":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token type",
        )

    await check_token_revocation(payload, db)

    user = await get_user_by_id(db, int(payload.get("sub")))
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
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
            )

    logger.debug(f"Token refreshed for user: {user.email}")
    return build_token_response(user)


@router.get("/me", response_model=UserResponse)
async def get_current_user_info(
    current_user: User = Depends(get_current_user),
):
    """Get information about the currently authenticated user."""
    return build_user_response(current_user)


@router.post("/logout")
async def logout(
    request: Request,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Revoke the current access token server-side.

    The token's JTI is added to revoked_tokens so it cannot be reused. The
    client should also discard its refresh token.
    """
    auth_header = request.headers.get("authorization", "")
    if auth_header.startswith("Bearer "):
        try:
            payload = jwt.decode(
                auth_header[7:],
                settings.jwt_secret_key,
                algorithms=[settings.jwt_algorithm],
            )
        except JWTError:
            payload = {}  # Token already invalid, nothing to revoke

        jti = payload.get("jti")
        exp = payload.get("exp")
        if jti and exp:
            db.add(RevokedToken(
                jti=jti,
                user_id=current_user.id,
                expires_at=datetime.utcfromtimestamp(exp),
            ))
            await db.commit()
            logger.info(f"Token revoked for user: {current_user.email}")

    return {"message": "Logged out successfully"}
