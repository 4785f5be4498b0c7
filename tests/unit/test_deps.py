"""Unit tests for FastAPI dependency injection functions."""

import time
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from fastapi import HTTPException
from jose import jwt

from src.api.deps import get_cookie_jar, get_current_user
from src.api.middleware.error_handler import ServiceUnavailableError
from src.core.cookies import RequestCookieJar
from src.models.identity import Identity

# Test JWT secret for unit tests
TEST_JWT_SECRET = "test-jwt-secret-for-unit-tests"
USER_ID = "550e8400-e29b-41d4-a716-446655440000"


def create_test_token(
    sub: str = USER_ID,
    email: str | None = "test@example.com",
    exp_offset: int = 3600,
) -> str:
    """Create a test JWT token."""
    now = int(time.time())
    payload = {
        "sub": sub,
        "email": email,
        "role": "authenticated",
        "exp": now + exp_offset,
        "iat": now - 10,
        "user_metadata": {"username": "alice"},
    }
    return jwt.encode(payload, TEST_JWT_SECRET, algorithm="HS256")


def make_request(backend_factory=None, **state) -> SimpleNamespace:
    """Minimal stand-in for a Starlette request."""
    return SimpleNamespace(
        app=SimpleNamespace(state=SimpleNamespace(identity_backend_factory=backend_factory)),
        state=SimpleNamespace(**state),
        cookies={},
    )


@pytest.fixture
def jwt_settings():
    with patch("src.api.middleware.auth.get_settings") as mock_settings:
        mock_settings.return_value = MagicMock(
            supabase_jwt_secret=TEST_JWT_SECRET,
            supabase_signing_key_jwk="",
        )
        yield mock_settings


class TestBearerToken:
    """Tests for the Authorization header path of get_current_user."""

    @pytest.mark.asyncio
    async def test_valid_token_yields_identity(self, jwt_settings: MagicMock) -> None:
        user = await get_current_user(make_request(), f"Bearer {create_test_token()}")

        assert user.id == USER_ID
        assert user.email == "test@example.com"
        assert user.metadata == {"username": "alice"}

    @pytest.mark.asyncio
    async def test_scheme_is_case_insensitive(self, jwt_settings: MagicMock) -> None:
        user = await get_current_user(make_request(), f"bearer {create_test_token()}")

        assert user.id == USER_ID

    @pytest.mark.asyncio
    @pytest.mark.parametrize("header", ["Basic abc", "Bearer", "Bearer a b"])
    async def test_malformed_header(self, jwt_settings: MagicMock, header: str) -> None:
        with pytest.raises(HTTPException) as exc_info:
            await get_current_user(make_request(), header)

        assert exc_info.value.status_code == 401
        assert "Bearer <token>" in exc_info.value.detail

    @pytest.mark.asyncio
    async def test_expired_token(self, jwt_settings: MagicMock) -> None:
        with pytest.raises(HTTPException) as exc_info:
            await get_current_user(make_request(), f"Bearer {create_test_token(exp_offset=-60)}")

        assert exc_info.value.status_code == 401
        assert exc_info.value.detail == "Token has expired"
        assert exc_info.value.headers == {"WWW-Authenticate": "Bearer"}

    @pytest.mark.asyncio
    async def test_bad_signature(self, jwt_settings: MagicMock) -> None:
        token = jwt.encode(
            {"sub": USER_ID, "exp": int(time.time()) + 60, "iat": int(time.time())},
            "some-other-secret",
            algorithm="HS256",
        )

        with pytest.raises(HTTPException) as exc_info:
            await get_current_user(make_request(), f"Bearer {token}")

        assert exc_info.value.detail == "Invalid token signature"


class TestSessionCookies:
    """Tests for the cookie session path of get_current_user."""

    @pytest.mark.asyncio
    async def test_uses_resolved_user(self) -> None:
        identity = Identity(id=USER_ID, email="alice@example.com")
        factory = MagicMock()
        request = make_request(factory, session_resolved=True, user=identity)

        assert await get_current_user(request) is identity
        factory.assert_not_called()

    @pytest.mark.asyncio
    async def test_resolved_anonymous_is_unauthorized(self) -> None:
        request = make_request(MagicMock(), session_resolved=True, user=None)

        with pytest.raises(HTTPException) as exc_info:
            await get_current_user(request)

        assert exc_info.value.status_code == 401
        assert exc_info.value.detail == "Authentication required"

    @pytest.mark.asyncio
    async def test_falls_back_to_backend(self, identity_service) -> None:
        backend = identity_service.backend()
        signed_up = await backend.sign_up("alice@example.com", "password123")
        request = make_request(lambda jar: backend)

        user = await get_current_user(request)

        assert user.id == signed_up.identity.id
        assert request.state.session_resolved is True

    @pytest.mark.asyncio
    async def test_backend_without_session_is_unauthorized(self, identity_service) -> None:
        request = make_request(identity_service.backend)

        with pytest.raises(HTTPException) as exc_info:
            await get_current_user(request)

        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_backend_outage_is_service_unavailable(self, identity_service) -> None:
        identity_service.unavailable = True
        request = make_request(identity_service.backend)

        with pytest.raises(ServiceUnavailableError) as exc_info:
            await get_current_user(request)

        assert exc_info.value.status_code == 503


class TestGetCookieJar:
    def test_reuses_request_jar(self) -> None:
        jar = RequestCookieJar()
        request = make_request(cookie_jar=jar)

        assert get_cookie_jar(request) is jar

    def test_creates_jar_from_request_cookies(self) -> None:
        request = make_request()
        request.cookies = {"sb-test-auth-token": "abc"}

        jar = get_cookie_jar(request)

        assert jar.get("sb-test-auth-token") == "abc"
        assert request.state.cookie_jar is jar
