"""Authentication business logic service."""

import logging
from typing import Any, NoReturn
from urllib.parse import quote

from src.api.middleware.error_handler import (
    PROFILE_UNAVAILABLE_MESSAGE,
    AuthenticationError,
    ConflictError,
    ProvisioningFailedError,
    ServiceUnavailableError,
    ValidationError,
)
from src.core.config import get_settings
from src.core.identity import AuthFailure, FailureKind, IdentityBackend
from src.models.identity import Identity
from src.schemas.auth import username_problem
from src.services.profile_service import ProfileService, ProfileStoreError, ProfileStoreErrorKind
from src.services.provisioning_service import (
    ProfileProvisioner,
    ProvisioningError,
    ProvisioningErrorKind,
)

logger = logging.getLogger(__name__)


class OAuthCallbackError(Exception):
    """The OAuth callback could not sign the user in."""

    def __init__(self, reason: str, message: str = "") -> None:
        self.reason = reason
        self.message = message or reason
        super().__init__(self.message)


def safe_next_path(next_path: str | None, default: str) -> str:
    """Only allow same-site relative redirect targets."""
    if not next_path or not next_path.startswith("/"):
        return default
    if next_path.startswith("//") or "\\" in next_path:
        return default
    return next_path


def _raise_store_error(error: ProfileStoreError) -> NoReturn:
    if error.kind == ProfileStoreErrorKind.UNAVAILABLE:
        raise ServiceUnavailableError(PROFILE_UNAVAILABLE_MESSAGE) from error
    raise ValidationError(error.message) from error


def _raise_auth_failure(failure: AuthFailure, action: str) -> NoReturn:
    if failure.kind == FailureKind.BACKEND_UNAVAILABLE:
        raise ServiceUnavailableError()
    if failure.kind in (FailureKind.INVALID_CREDENTIALS, FailureKind.NO_SESSION):
        raise AuthenticationError("Invalid email or password")

    message = failure.message
    lowered = message.lower()
    if "already registered" in lowered or "already exists" in lowered:
        raise ValidationError("An account with this email already exists")
    if "invalid email" in lowered:
        raise ValidationError("Invalid email address")
    if "password" in lowered and "weak" in lowered:
        raise ValidationError("Password is too weak. Please use a stronger password.")
    if "email not confirmed" in lowered:
        raise AuthenticationError("Please verify your email before logging in")
    raise ValidationError(f"{action} failed: {message}")


class AuthService:
    """Sign-up, sign-in, OAuth and sign-out flows."""

    def __init__(self, identity_backend: IdentityBackend, profile_service: ProfileService) -> None:
        """Initialize auth service.

        Args:
            identity_backend: Request-scoped identity backend (session in cookies).
            profile_service: Profile store.
        """
        self.identity = identity_backend
        self.profiles = profile_service
        self.provisioner = ProfileProvisioner(profile_service)
        self.settings = get_settings()

    async def check_username_availability(self, username: str) -> dict[str, Any]:
        """Check whether a username is well-formed and unclaimed.

        Args:
            username: Candidate username.

        Returns:
            dict: available flag and message.
        """
        problem = username_problem(username)
        if problem:
            return {"available": False, "message": problem}

        try:
            taken = await self.profiles.is_username_taken(username)
        except ProfileStoreError as e:
            _raise_store_error(e)

        return {
            "available": not taken,
            "message": "Username is already taken" if taken else "Username is available",
        }

    async def sign_up(
        self,
        email: str,
        password: str,
        username: str,
        full_name: str,
    ) -> dict[str, Any]:
        """Create an identity, provision its profile and sign the user in.

        Args:
            email: User's email address.
            password: User's password.
            username: Desired username (already format-validated).
            full_name: Display name.

        Returns:
            dict: user_id, username, message and should_redirect.

        Raises:
            ConflictError: Username taken (pre-check or lost insert race).
            ValidationError: Identity backend rejected the sign-up.
            ServiceUnavailableError: A backend is unreachable.
            ProvisioningFailedError: Identity created but the profile was not.
        """
        try:
            if await self.profiles.is_username_taken(username):
                raise ConflictError("Username is already taken")
        except ProfileStoreError as e:
            _raise_store_error(e)

        result = await self.identity.sign_up(
            email,
            password,
            metadata={"full_name": full_name, "username": username},
        )
        if result.failure:
            logger.error("Signup failed: %s", result.failure.message)
            _raise_auth_failure(result.failure, "Signup")

        identity = result.identity
        try:
            provisioned = await self.provisioner.provision(
                identity_id=identity.id,
                email=email,
                username=username,
                full_name=full_name,
            )
        except ProvisioningError as e:
            logger.error("Identity %s left without a profile: %s", identity.id, e.message)
            if e.kind == ProvisioningErrorKind.UNAVAILABLE:
                raise ServiceUnavailableError(PROFILE_UNAVAILABLE_MESSAGE) from e
            if e.kind == ProvisioningErrorKind.USERNAME_TAKEN:
                raise ConflictError("Username is already taken") from e
            raise ProvisioningFailedError(f"Failed to create user profile: {e.message}") from e

        profile_username = provisioned.profile.get("username", username)

        if result.session is None:
            sign_in = await self.identity.sign_in_with_password(email, password)
            if sign_in.failure:
                logger.warning("Auto sign-in after signup failed: %s", sign_in.failure.message)
                return {
                    "user_id": identity.id,
                    "username": profile_username,
                    "message": "Account created successfully! Please sign in with your credentials.",
                    "should_redirect": False,
                }

        return {
            "user_id": identity.id,
            "username": profile_username,
            "message": "Account created successfully!",
            "should_redirect": True,
        }

    async def sign_in(self, email: str, password: str) -> dict[str, Any]:
        """Sign in with email and password.

        Completes provisioning when the identity has no profile yet.

        Returns:
            dict: Session tokens and user info.
        """
        result = await self.identity.sign_in_with_password(email, password)
        if result.failure:
            logger.warning("Login failed: %s", result.failure.message)
            _raise_auth_failure(result.failure, "Login")

        identity = result.identity
        try:
            provisioned = await self.provisioner.ensure_profile(identity)
        except ProvisioningError as e:
            logger.error("Profile missing for identity %s: %s", identity.id, e.message)
            if e.kind == ProvisioningErrorKind.UNAVAILABLE:
                raise ServiceUnavailableError(PROFILE_UNAVAILABLE_MESSAGE) from e
            raise ProvisioningFailedError("User profile not found. Please contact support.") from e

        logger.info("User logged in: %s", identity.id)
        session = result.session
        return {
            "access_token": session.access_token,
            "refresh_token": session.refresh_token,
            "expires_at": session.expires_at,
            "user_id": identity.id,
            "email": identity.email or email,
            "username": provisioned.profile.get("username", ""),
        }

    async def sign_out(self) -> dict[str, Any]:
        """Revoke the session. The local session is cleared even if revocation fails."""
        failure = await self.identity.sign_out()
        if failure:
            logger.warning("Backend sign out failed, local session cleared: %s", failure.message)
        return {"success": True, "message": "Logged out successfully"}

    async def start_oauth(self, provider: str, next_path: str | None = None) -> str:
        """Begin an OAuth sign-in.

        Returns:
            str: Provider authorization URL to redirect the browser to.
        """
        provider = provider.lower()
        if provider not in self.settings.oauth_providers_list:
            raise ValidationError(f"Unsupported provider: {provider}")

        redirect_to = f"{self.settings.site_url.rstrip('/')}/auth/callback"
        if next_path:
            target = safe_next_path(next_path, self.settings.protected_path_prefix)
            redirect_to = f"{redirect_to}?next={quote(target, safe='/')}"

        result = await self.identity.sign_in_with_oauth(provider, redirect_to)
        if result.failure:
            logger.error("OAuth start failed for %s: %s", provider, result.failure.message)
            _raise_auth_failure(result.failure, "OAuth sign-in")
        return result.url

    async def complete_oauth(self, code: str | None) -> Identity:
        """Exchange the authorization code and make sure a profile exists.

        Raises:
            OAuthCallbackError: On any failure; the caller redirects to the
                dedicated error page.
        """
        if not code:
            raise OAuthCallbackError("missing_code", "No authorization code in callback")

        result = await self.identity.exchange_code_for_session(code)
        if result.failure:
            logger.error("OAuth code exchange failed: %s", result.failure.message)
            raise OAuthCallbackError("exchange_failed", result.failure.message)

        identity = result.identity
        try:
            provisioned = await self.provisioner.ensure_profile(identity)
        except ProvisioningError as e:
            logger.error("Failed to create OAuth user profile for %s: %s", identity.id, e.message)
            reason = "service_unavailable" if e.kind == ProvisioningErrorKind.UNAVAILABLE else "provisioning_failed"
            raise OAuthCallbackError(reason, e.message) from e

        if provisioned.created:
            logger.info("First OAuth login for identity %s", identity.id)
        return identity
