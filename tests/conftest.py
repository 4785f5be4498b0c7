"""Pytest configuration and fixtures."""

import asyncio
import os
import uuid
from collections.abc import Generator
from datetime import datetime, timezone
from typing import Any
from unittest.mock import MagicMock
from urllib.parse import quote

import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing application modules
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_ANON_KEY", "test-anon-key")
os.environ.setdefault("SUPABASE_SECRET_KEY", "test-secret-key")
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("SITE_URL", "http://testserver")
# TestClient talks plain http; secure cookies would never be sent back
os.environ.setdefault("AUTH_COOKIE_SECURE", "false")

from src.core.cookies import RequestCookieJar  # noqa: E402
from src.core.identity import AuthFailure, AuthResult, FailureKind  # noqa: E402
from src.models.identity import AuthSession, Identity, SessionChangeEvent, Subscription  # noqa: E402
from src.schemas.profile import ProfileUpdate  # noqa: E402
from src.services.profile_service import ProfileStoreError, ProfileStoreErrorKind  # noqa: E402

SESSION_COOKIE = "sb-test-auth-token"


class FakeIdentityService:
    """In-memory identity service shared by every request-scoped backend."""

    def __init__(self) -> None:
        self.users: dict[str, dict[str, Any]] = {}
        self.sessions: dict[str, str] = {}
        self.codes: dict[str, str] = {}
        self.listeners: list[Any] = []
        self.unavailable = False
        self.sign_out_fails = False
        self.require_confirmation = False
        self.get_session_delay: float = 0

    def backend(self, jar: RequestCookieJar | None = None) -> "FakeIdentityBackend":
        return FakeIdentityBackend(self, jar if jar is not None else RequestCookieJar())

    def add_user(
        self,
        email: str,
        password: str = "password123",
        metadata: dict[str, Any] | None = None,
    ) -> Identity:
        user_id = str(uuid.uuid4())
        self.users[user_id] = {"email": email, "password": password, "metadata": dict(metadata or {})}
        return self.identity(user_id)

    def add_oauth_code(self, code: str, identity: Identity) -> None:
        self.codes[code] = identity.id

    def identity(self, user_id: str) -> Identity:
        user = self.users[user_id]
        return Identity(id=user_id, email=user["email"], metadata=dict(user["metadata"]))

    def open_session(self, user_id: str) -> AuthSession:
        token = f"token-{uuid.uuid4()}"
        self.sessions[token] = user_id
        return AuthSession(access_token=token, refresh_token=f"refresh-{token}", identity=self.identity(user_id))

    def emit(self, event: SessionChangeEvent, identity: Identity | None) -> None:
        for callback in list(self.listeners):
            callback(event, identity)


class FakeIdentityBackend:
    """IdentityBackend whose session token lives in one request's cookie jar."""

    def __init__(self, service: FakeIdentityService, jar: RequestCookieJar) -> None:
        self.service = service
        self.jar = jar

    def _unavailable(self) -> AuthResult | None:
        if self.service.unavailable:
            return AuthResult.failed(AuthFailure(FailureKind.BACKEND_UNAVAILABLE, "connection refused"))
        return None

    def _start_session(self, user_id: str) -> AuthSession:
        session = self.service.open_session(user_id)
        self.jar.set(SESSION_COOKIE, session.access_token)
        return session

    async def sign_up(self, email: str, password: str, metadata: dict[str, Any] | None = None) -> AuthResult:
        await asyncio.sleep(0)
        if failure := self._unavailable():
            return failure
        if any(user["email"] == email for user in self.service.users.values()):
            return AuthResult.failed(AuthFailure(FailureKind.REJECTED, "User already registered"))
        identity = self.service.add_user(email, password, metadata)
        session = None if self.service.require_confirmation else self._start_session(identity.id)
        return AuthResult(identity=identity, session=session)

    async def sign_in_with_password(self, email: str, password: str) -> AuthResult:
        await asyncio.sleep(0)
        if failure := self._unavailable():
            return failure
        for user_id, user in self.service.users.items():
            if user["email"] == email and user["password"] == password:
                session = self._start_session(user_id)
                return AuthResult(identity=session.identity, session=session)
        return AuthResult.failed(AuthFailure(FailureKind.INVALID_CREDENTIALS, "Invalid login credentials"))

    async def sign_in_with_oauth(self, provider: str, redirect_to: str) -> AuthResult:
        if failure := self._unavailable():
            return failure
        self.jar.set("sb-test-auth-token-code-verifier", "verifier")
        target = quote(redirect_to, safe="")
        return AuthResult(url=f"https://auth.example.com/authorize?provider={provider}&redirect_to={target}")

    async def exchange_code_for_session(self, code: str) -> AuthResult:
        if failure := self._unavailable():
            return failure
        user_id = self.service.codes.get(code)
        if user_id is None:
            return AuthResult.failed(AuthFailure(FailureKind.REJECTED, "invalid flow state, no valid flow state found"))
        session = self._start_session(user_id)
        return AuthResult(identity=session.identity, session=session)

    async def get_session(self) -> AuthResult:
        if self.service.get_session_delay:
            await asyncio.sleep(self.service.get_session_delay)
        return await self.get_user()

    async def get_user(self) -> AuthResult:
        if failure := self._unavailable():
            return failure
        token = self.jar.get(SESSION_COOKIE)
        user_id = self.service.sessions.get(token or "")
        if user_id is None:
            return AuthResult.empty()
        return AuthResult(identity=self.service.identity(user_id))

    def on_session_change(self, callback: Any) -> Subscription:
        self.service.listeners.append(callback)
        return Subscription(lambda: self.service.listeners.remove(callback))

    async def sign_out(self) -> AuthFailure | None:
        token = self.jar.get(SESSION_COOKIE)
        self.jar.delete(SESSION_COOKIE)
        if self.service.sign_out_fails or self.service.unavailable:
            return AuthFailure(FailureKind.BACKEND_UNAVAILABLE, "connection refused")
        self.service.sessions.pop(token or "", None)
        self.service.emit(SessionChangeEvent.SIGNED_OUT, None)
        # Let marshalled listeners run before returning, as the SDK does
        await asyncio.sleep(0)
        return None


class InMemoryProfileStore:
    """Profile store with the same contract as ProfileService.

    ``create_profile_atomic`` holds a lock for the whole insert so concurrent
    callers see the unique username constraint the way the database enforces it.
    """

    def __init__(self) -> None:
        self.rows: dict[str, dict[str, Any]] = {}
        self.unavailable = False
        self.fail_creates = False
        self.fail_updates = False
        self._lock = asyncio.Lock()

    def _check(self) -> None:
        if self.unavailable:
            raise ProfileStoreError(ProfileStoreErrorKind.UNAVAILABLE, "connection refused")

    async def get_profile_by_id(self, profile_id: str) -> dict[str, Any] | None:
        await asyncio.sleep(0)
        self._check()
        row = self.rows.get(profile_id)
        return dict(row) if row else None

    async def get_profile_by_username(self, username: str, require_public: bool = False) -> dict[str, Any] | None:
        await asyncio.sleep(0)
        self._check()
        for row in self.rows.values():
            if row["username"] == username and (row["is_public"] or not require_public):
                return dict(row)
        return None

    async def is_username_taken(self, username: str) -> bool:
        await asyncio.sleep(0)
        self._check()
        return any(row["username"] == username for row in self.rows.values())

    async def create_profile_atomic(
        self, profile_id: str, email: str, username: str, full_name: str
    ) -> dict[str, Any] | None:
        async with self._lock:
            await asyncio.sleep(0)
            self._check()
            if self.fail_creates:
                raise ProfileStoreError(ProfileStoreErrorKind.FAILED, "permission denied for function create_user_profile")
            if profile_id in self.rows:
                return None
            if any(row["username"] == username for row in self.rows.values()):
                raise ProfileStoreError(ProfileStoreErrorKind.USERNAME_TAKEN, "Username is already taken")
            now = datetime.now(timezone.utc).isoformat()
            self.rows[profile_id] = {
                "id": profile_id,
                "email": email,
                "username": username,
                "full_name": full_name or "User",
                "avatar_url": None,
                "bio": None,
                "title": None,
                "location": None,
                "website": None,
                "social_github": None,
                "social_linkedin": None,
                "social_twitter": None,
                "theme": "default",
                "is_public": True,
                "created_at": now,
                "updated_at": now,
            }
            return dict(self.rows[profile_id])

    async def update_profile(self, profile_id: str, data: Any) -> dict[str, Any] | None:
        await asyncio.sleep(0)
        self._check()
        if self.fail_updates:
            raise ProfileStoreError(ProfileStoreErrorKind.FAILED, "update rejected")
        if isinstance(data, ProfileUpdate):
            data = data.model_dump(mode="json", exclude_unset=True)
        row = self.rows.get(profile_id)
        if row is None:
            return None
        row.update(data)
        row["updated_at"] = datetime.now(timezone.utc).isoformat()
        return dict(row)


@pytest.fixture(scope="session")
def test_settings() -> Generator[Any, None, None]:
    """Provide test settings with cleared cache.

    Yields:
        Settings: Test configuration settings.
    """
    from src.core.config import get_settings

    # Clear the cache to ensure fresh settings
    get_settings.cache_clear()

    settings = get_settings()
    yield settings

    # Clean up cache after tests
    get_settings.cache_clear()


@pytest.fixture
def identity_service() -> FakeIdentityService:
    return FakeIdentityService()


@pytest.fixture
def profile_store() -> InMemoryProfileStore:
    return InMemoryProfileStore()


@pytest.fixture
def mock_supabase_client() -> MagicMock:
    """Provide a mocked service-role Supabase client.

    Returns:
        MagicMock: Mocked Supabase client for testing.
    """
    mock_client = MagicMock()

    # Configure default mock responses
    mock_response = MagicMock()
    mock_response.data = []
    mock_client.table.return_value.select.return_value.limit.return_value.execute.return_value = (
        mock_response
    )
    return mock_client


@pytest.fixture
def app(
    identity_service: FakeIdentityService,
    profile_store: InMemoryProfileStore,
    mock_supabase_client: MagicMock,
) -> Any:
    """Application wired to the in-memory identity service and profile store."""
    from src.api.deps import get_profile_service
    from src.main import create_app

    application = create_app(
        identity_backend_factory=identity_service.backend,
        service_client=mock_supabase_client,
    )
    application.dependency_overrides[get_profile_service] = lambda: profile_store
    return application


@pytest.fixture
def client(app: Any) -> Generator[TestClient, None, None]:
    """Provide a test client that does not follow redirects.

    Args:
        app: Application fixture.

    Yields:
        TestClient: FastAPI test client.
    """
    with TestClient(app, follow_redirects=False) as test_client:
        yield test_client


@pytest.fixture
def signed_in_client(
    client: TestClient,
    identity_service: FakeIdentityService,
    profile_store: InMemoryProfileStore,
) -> TestClient:
    """Test client carrying the session of a provisioned user (``alice``)."""
    response = client.post(
        "/auth/signup",
        json={
            "email": "alice@example.com",
            "password": "password123",
            "username": "alice",
            "full_name": "Alice Example",
        },
    )
    assert response.status_code == 201
    return client
