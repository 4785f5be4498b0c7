"""Identity backend contract and its Supabase implementation.

Every operation returns an ``AuthResult`` instead of raising, so each caller
decides from ``FailureKind`` whether a failure is ignorable (no session) or
must escalate (backend unavailable, rejected credentials).
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

import httpx
from supabase import Client
from supabase_auth.errors import (
    AuthApiError,
    AuthError,
    AuthInvalidCredentialsError,
    AuthInvalidJwtError,
    AuthRetryableError,
    AuthSessionMissingError,
    AuthUnknownError,
)

from src.core.cookies import CookieStorage, RequestCookieJar
from src.core.supabase import create_auth_client
from src.models.identity import (
    AuthSession,
    Identity,
    SessionChangeCallback,
    SessionChangeEvent,
    Subscription,
)

logger = logging.getLogger(__name__)

NO_SESSION_CODES = frozenset(
    {
        "session_not_found",
        "session_expired",
        "refresh_token_not_found",
        "refresh_token_already_used",
        "bad_jwt",
        "user_not_found",
    }
)


class FailureKind(str, Enum):
    """Why an identity backend call did not produce a result."""

    NO_SESSION = "no_session"
    BACKEND_UNAVAILABLE = "backend_unavailable"
    INVALID_CREDENTIALS = "invalid_credentials"
    REJECTED = "rejected"


@dataclass(frozen=True)
class AuthFailure:
    kind: FailureKind
    message: str

    @property
    def is_expected_empty(self) -> bool:
        """Anonymous visitors have no session; that is not an error."""
        return self.kind == FailureKind.NO_SESSION


@dataclass(frozen=True)
class AuthResult:
    """Outcome of an identity backend call."""

    identity: Identity | None = None
    session: AuthSession | None = None
    url: str | None = None
    failure: AuthFailure | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def failed(cls, failure: AuthFailure) -> "AuthResult":
        return cls(failure=failure)

    @classmethod
    def empty(cls) -> "AuthResult":
        return cls()


def classify_auth_error(error: Exception) -> AuthFailure:
    """Map an exception from the auth SDK or transport onto a failure kind."""
    message = getattr(error, "message", None) or str(error) or error.__class__.__name__
    lowered = message.lower()

    if isinstance(error, (AuthSessionMissingError, AuthInvalidJwtError)):
        return AuthFailure(FailureKind.NO_SESSION, message)

    if isinstance(error, (AuthRetryableError, httpx.TransportError)):
        return AuthFailure(FailureKind.BACKEND_UNAVAILABLE, message)

    if isinstance(error, AuthApiError):
        code = getattr(error, "code", None)
        status = getattr(error, "status", None) or 0
        if code in NO_SESSION_CODES or "session missing" in lowered or "refresh token" in lowered:
            return AuthFailure(FailureKind.NO_SESSION, message)
        if code == "invalid_credentials" or "invalid login credentials" in lowered:
            return AuthFailure(FailureKind.INVALID_CREDENTIALS, message)
        if status >= 500:
            return AuthFailure(FailureKind.BACKEND_UNAVAILABLE, message)
        return AuthFailure(FailureKind.REJECTED, message)

    if isinstance(error, AuthInvalidCredentialsError):
        return AuthFailure(FailureKind.INVALID_CREDENTIALS, message)

    # Client-side rejections such as a weak password
    if isinstance(error, AuthError) and not isinstance(error, AuthUnknownError):
        return AuthFailure(FailureKind.REJECTED, message)

    # Misconfiguration (bad URL, missing key) and anything unforeseen
    return AuthFailure(FailureKind.BACKEND_UNAVAILABLE, message)


class IdentityBackend(Protocol):
    """Operations consumed from the identity/session service."""

    async def sign_up(self, email: str, password: str, metadata: dict[str, Any] | None = None) -> AuthResult: ...

    async def sign_in_with_password(self, email: str, password: str) -> AuthResult: ...

    async def sign_in_with_oauth(self, provider: str, redirect_to: str) -> AuthResult: ...

    async def exchange_code_for_session(self, code: str) -> AuthResult: ...

    async def get_session(self) -> AuthResult: ...

    async def get_user(self) -> AuthResult: ...

    def on_session_change(self, callback: SessionChangeCallback) -> Subscription: ...

    async def sign_out(self) -> AuthFailure | None: ...


class SupabaseIdentityBackend:
    """IdentityBackend over a supabase_auth client.

    SDK calls are blocking HTTP requests, so they run in a worker thread; this
    keeps the event loop free for timeouts racing against them.
    """

    def __init__(self, client: Client, storage: CookieStorage | None = None) -> None:
        self.client = client
        self.storage = storage

    @classmethod
    def for_cookie_jar(cls, jar: RequestCookieJar) -> "SupabaseIdentityBackend":
        """Create a short-lived backend whose session lives in ``jar``."""
        storage = CookieStorage(jar)
        return cls(create_auth_client(storage), storage=storage)

    async def sign_up(self, email: str, password: str, metadata: dict[str, Any] | None = None) -> AuthResult:
        credentials: dict[str, Any] = {
            "email": email,
            "password": password,
            "options": {"data": metadata or {}},
        }
        try:
            response = await asyncio.to_thread(self.client.auth.sign_up, credentials)
        except Exception as e:
            return AuthResult.failed(classify_auth_error(e))

        if not response.user:
            return AuthResult.failed(AuthFailure(FailureKind.REJECTED, "Failed to create user account"))

        logger.info("Identity created: %s", response.user.id)
        return AuthResult(
            identity=Identity.from_user(response.user),
            session=AuthSession.from_session(response.session) if response.session else None,
        )

    async def sign_in_with_password(self, email: str, password: str) -> AuthResult:
        try:
            response = await asyncio.to_thread(
                self.client.auth.sign_in_with_password,
                {"email": email, "password": password},
            )
        except Exception as e:
            return AuthResult.failed(classify_auth_error(e))

        if not response.user or not response.session:
            return AuthResult.failed(AuthFailure(FailureKind.REJECTED, "Failed to sign in"))

        return AuthResult(
            identity=Identity.from_user(response.user),
            session=AuthSession.from_session(response.session),
        )

    async def sign_in_with_oauth(self, provider: str, redirect_to: str) -> AuthResult:
        try:
            response = await asyncio.to_thread(
                self.client.auth.sign_in_with_oauth,
                {"provider": provider, "options": {"redirect_to": redirect_to}},
            )
        except Exception as e:
            return AuthResult.failed(classify_auth_error(e))

        if not response.url:
            return AuthResult.failed(AuthFailure(FailureKind.REJECTED, "Provider did not return an authorization URL"))
        return AuthResult(url=response.url)

    async def exchange_code_for_session(self, code: str) -> AuthResult:
        try:
            response = await asyncio.to_thread(
                self.client.auth.exchange_code_for_session,
                {"auth_code": code},
            )
        except Exception as e:
            return AuthResult.failed(classify_auth_error(e))

        if not response.user or not response.session:
            return AuthResult.failed(AuthFailure(FailureKind.REJECTED, "Authorization code exchange failed"))

        return AuthResult(
            identity=Identity.from_user(response.user),
            session=AuthSession.from_session(response.session),
        )

    async def get_session(self) -> AuthResult:
        """Read the stored session, refreshing it when expired."""
        try:
            session = await asyncio.to_thread(self.client.auth.get_session)
        except Exception as e:
            return AuthResult.failed(classify_auth_error(e))

        if session is None:
            return AuthResult.empty()
        auth_session = AuthSession.from_session(session)
        return AuthResult(identity=auth_session.identity, session=auth_session)

    async def get_user(self) -> AuthResult:
        """Validate the stored session against the backend (never a blind cookie decode)."""
        try:
            response = await asyncio.to_thread(self.client.auth.get_user)
        except Exception as e:
            return AuthResult.failed(classify_auth_error(e))

        if response is None or not response.user:
            return AuthResult.empty()
        return AuthResult(identity=Identity.from_user(response.user))

    def on_session_change(self, callback: SessionChangeCallback) -> Subscription:
        def relay(event: str, session: Any) -> None:
            try:
                kind = SessionChangeEvent(event)
            except ValueError:
                logger.debug("Ignoring unknown session event %s", event)
                return
            user = getattr(session, "user", None) if session else None
            callback(kind, Identity.from_user(user) if user else None)

        subscription = self.client.auth.on_auth_state_change(relay)
        return Subscription(subscription.unsubscribe)

    async def sign_out(self) -> AuthFailure | None:
        try:
            await asyncio.to_thread(self.client.auth.sign_out)
        except Exception as e:
            failure = classify_auth_error(e)
            logger.warning("Sign out failed at the backend: %s", failure.message)
            # The local session must go regardless of server-side revocation
            if self.storage is not None:
                self.storage.clear()
            return failure
        return None
