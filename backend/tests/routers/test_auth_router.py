"""
Tests for backend/cryptex/auth_routers/auth_core_router.py

Covers signup (profile bootstrap), login, refresh, /me and logout revocation.
"""

import pytest
from unittest.mock import MagicMock
from fastapi import HTTPException
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select

from cryptex.auth.dependencies import authenticate_token
from cryptex.auth_routers.auth_core_router import get_current_user_info, login, logout, refresh_token, signup
from cryptex.auth_routers.helpers import hash_password
from cryptex.auth_routers.schemas import LoginRequest, RefreshRequest, RegisterRequest
from cryptex.models import AccountSettings, User


def _http_request(ip="203.0.113.5", token=None):
    request = MagicMock()
    request.client.host = ip
    request.headers = {"authorization": f"Bearer {token}"} if token else {}
    return request


@pytest.fixture
async def registered(db_session):
    user = User(
        email="member@cryptex.io",
        hashed_password=hash_password("Passw0rd!"),
        role="user",
        is_active=True,
    )
    db_session.add(user)
    await db_session.commit()
    return user


class TestSignup:
    @pytest.mark.asyncio
    async def test_creates_user_settings_and_tokens(self, db_session):
        result = await signup(
            RegisterRequest(email="New@Cryptex.io", password="Secret123", display_name="Newbie"),
            _http_request(),
            db=db_session,
        )

        assert result.access_token
        assert result.refresh_token
        assert result.user.email == "new@cryptex.io"
        assert result.user.role == "user"

        account = (await db_session.execute(
            select(AccountSettings).where(AccountSettings.user_id == result.user.id)
        )).scalars().one()
        assert account.demo_balance == 10000.0

    @pytest.mark.asyncio
    async def test_duplicate_email(self, db_session, registered):
        with pytest.raises(HTTPException) as exc_info:
            await signup(
                RegisterRequest(email="member@cryptex.io", password="Secret123"),
                _http_request(),
                db=db_session,
            )
        assert exc_info.value.status_code == 400

    def test_weak_password_rejected(self):
        with pytest.raises(PydanticValidationError):
            RegisterRequest(email="x@cryptex.io", password="alllowercase1")

    @pytest.mark.asyncio
    async def test_signup_rate_limited(self, db_session):
        for i in range(3):
            await signup(
                RegisterRequest(email=f"s{i}@cryptex.io", password="Secret123"), _http_request(), db=db_session
            )

        with pytest.raises(HTTPException) as exc_info:
            await signup(RegisterRequest(email="s9@cryptex.io", password="Secret123"), _http_request(), db=db_session)
        assert exc_info.value.status_code == 429


class TestLogin:
    @pytest.mark.asyncio
    async def test_success(self, db_session, registered):
        result = await login(
            LoginRequest(email="MEMBER@cryptex.io", password="Passw0rd!"), _http_request(), db=db_session
        )

        assert result.user.id == registered.id
        assert registered.last_login_at is not None
        user = await authenticate_token(result.access_token, db_session)
        assert user.id == registered.id

    @pytest.mark.asyncio
    async def test_wrong_password(self, db_session, registered):
        with pytest.raises(HTTPException) as exc_info:
            await login(LoginRequest(email="member@cryptex.io", password="nope"), _http_request(), db=db_session)
        assert exc_info.value.status_code == 401
        assert exc_info.value.detail == "Invalid email or password"

    @pytest.mark.asyncio
    async def test_unknown_email(self, db_session):
        with pytest.raises(HTTPException) as exc_info:
            await login(LoginRequest(email="ghost@cryptex.io", password="x"), _http_request(), db=db_session)
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_sixth_attempt_rate_limited(self, db_session, registered):
        for _ in range(5):
            with pytest.raises(HTTPException):
                await login(LoginRequest(email="member@cryptex.io", password="bad"), _http_request(), db=db_session)

        with pytest.raises(HTTPException) as exc_info:
            await login(
                LoginRequest(email="member@cryptex.io", password="Passw0rd!"), _http_request(), db=db_session
            )
        assert exc_info.value.status_code == 429


class TestRefreshAndLogout:
    @pytest.mark.asyncio
    async def test_refresh_issues_new_pair(self, db_session, registered):
        tokens = await login(
            LoginRequest(email="member@cryptex.io", password="Passw0rd!"), _http_request(), db=db_session
        )

        refreshed = await refresh_token(RefreshRequest(refresh_token=tokens.refresh_token), db=db_session)

        assert refreshed.user.id == registered.id
        assert refreshed.access_token != tokens.access_token

    @pytest.mark.asyncio
    async def test_refresh_rejects_access_token(self, db_session, registered):
        tokens = await login(
            LoginRequest(email="member@cryptex.io", password="Passw0rd!"), _http_request(), db=db_session
        )
        with pytest.raises(HTTPException) as exc_info:
            await refresh_token(RefreshRequest(refresh_token=tokens.access_token), db=db_session)
        assert exc_info.value.detail == "Invalid token type"

    @pytest.mark.asyncio
    async def test_me(self, registered):
        result = await get_current_user_info(current_user=registered)
        assert result.email == "member@cryptex.io"

    @pytest.mark.asyncio
    async def test_logout_revokes_access_token(self, db_session, registered):
        tokens = await login(
            LoginRequest(email="member@cryptex.io", password="Passw0rd!"), _http_request(), db=db_session
        )

        result = await logout(_http_request(token=tokens.access_token), current_user=registered, db=db_session)

        assert result == {"message": "Logged out successfully"}
        with pytest.raises(HTTPException) as exc_info:
            await authenticate_token(tokens.access_token, db_session)
        assert exc_info.value.status_code == 401
