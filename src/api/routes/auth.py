"""Authentication routes: sign-up, sign-in, OAuth and sign-out."""

import logging
from urllib.parse import quote

from fastapi import APIRouter, Query, Request, status
from fastapi.responses import RedirectResponse

from src.api.deps import AuthServiceDep
from src.api.middleware.error_handler import APIError
from src.core.config import get_settings
from src.schemas.auth import (
    AuthErrorPageResponse,
    LoginRequest,
    LoginResponse,
    LogoutResponse,
    PageLink,
    SignupRequest,
    SignupResponse,
    UsernameAvailabilityResponse,
)
from src.services.auth_service import OAuthCallbackError, safe_next_path

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


def _request_origin(request: Request) -> str:
    """Origin the browser used, honouring the load balancer outside development."""
    settings = get_settings()
    forwarded_host = request.headers.get("x-forwarded-host")
    if forwarded_host and settings.app_env != "development":
        return f"https://{forwarded_host}"
    return str(request.base_url).rstrip("/")


def _error_page_redirect(request: Request, reason: str) -> RedirectResponse:
    settings = get_settings()
    url = f"{_request_origin(request)}{settings.auth_error_path}?reason={quote(reason)}"
    return RedirectResponse(url=url, status_code=status.HTTP_303_SEE_OTHER)


@router.post(
    "/signup",
    response_model=SignupResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Sign up new user",
    description="Create an account with email and password, provision its profile and sign in.",
    responses={
        409: {"description": "Username already taken"},
        500: {"description": "Account created but profile provisioning failed"},
        503: {"description": "Identity or profile backend unavailable"},
    },
)
async def signup(data: SignupRequest, service: AuthServiceDep) -> SignupResponse:
    """Sign up a new user.

    The username is checked first, then the identity is created, then the
    profile row. When the identity backend did not return a session the user
    is signed in with the same credentials.

    Args:
        data: Signup request with email, password, username and full name.
        service: Auth service bound to this request's cookies.

    Returns:
        SignupResponse: New user id, provisioned username and redirect hint.
    """
    result = await service.sign_up(
        email=data.email,
        password=data.password,
        username=data.username,
        full_name=data.full_name,
    )
    return SignupResponse(**result)


@router.post(
    "/login",
    response_model=LoginResponse,
    summary="Login user",
    description="Sign in with email and password. Session cookies are set on the response.",
)
async def login(data: LoginRequest, service: AuthServiceDep) -> LoginResponse:
    """Sign in with email and password.

    Args:
        data: Login credentials.
        service: Auth service bound to this request's cookies.

    Returns:
        LoginResponse: Session tokens and user info.
    """
    result = await service.sign_in(email=data.email, password=data.password)
    return LoginResponse(**result)


@router.post(
    "/logout",
    response_model=LogoutResponse,
    summary="Logout user",
    description="End the session. Session cookies are cleared even when the backend cannot be reached.",
)
async def logout(service: AuthServiceDep) -> LogoutResponse:
    result = await service.sign_out()
    return LogoutResponse(**result)


@router.get(
    "/username-availability",
    response_model=UsernameAvailabilityResponse,
    summary="Check username availability",
)
async def username_availability(
    service: AuthServiceDep,
    username: str = Query(..., description="Candidate username"),
) -> UsernameAvailabilityResponse:
    """Report whether a username is well-formed and unclaimed.

    Advisory only: the unique constraint decides at provisioning time.
    """
    result = await service.check_username_availability(username)
    return UsernameAvailabilityResponse(**result)


@router.get(
    "/oauth/{provider}",
    summary="Start OAuth sign-in",
    description="Redirect the browser to the provider's authorization page.",
    response_class=RedirectResponse,
    status_code=status.HTTP_303_SEE_OTHER,
)
async def oauth_start(
    provider: str,
    request: Request,
    service: AuthServiceDep,
    next: str | None = Query(default=None, description="Relative path to return to after sign-in"),
) -> RedirectResponse:
    """Begin the OAuth flow.

    The PKCE verifier is stored in the session cookies set on this redirect.
    Failures land on the auth error page instead of a JSON error.
    """
    try:
        url = await service.start_oauth(provider, next)
    except APIError as e:
        logger.warning("OAuth start for %s failed: %s", provider, e.message)
        return _error_page_redirect(request, "oauth_start_failed")
    return RedirectResponse(url=url, status_code=status.HTTP_303_SEE_OTHER)


@router.get(
    "/callback",
    summary="OAuth callback",
    description="Exchange the authorization code, provision the profile if needed and redirect.",
    response_class=RedirectResponse,
    status_code=status.HTTP_303_SEE_OTHER,
)
async def oauth_callback(
    request: Request,
    service: AuthServiceDep,
    code: str | None = Query(default=None, description="Authorization code"),
    next: str | None = Query(default=None, description="Relative path to continue to"),
) -> RedirectResponse:
    """Finish OAuth sign-in.

    Re-invoking the callback for an identity that already has a profile is a
    no-op apart from the session exchange.
    """
    settings = get_settings()
    try:
        await service.complete_oauth(code)
    except OAuthCallbackError as e:
        return _error_page_redirect(request, e.reason)

    target = safe_next_path(next, settings.protected_path_prefix)
    return RedirectResponse(
        url=f"{_request_origin(request)}{target}",
        status_code=status.HTTP_303_SEE_OTHER,
    )


@router.get(
    "/auth-code-error",
    response_model=AuthErrorPageResponse,
    summary="OAuth error page",
)
async def auth_code_error(
    reason: str | None = Query(default=None, description="Failure reason code"),
) -> AuthErrorPageResponse:
    settings = get_settings()
    message = (
        "There was an issue completing your sign-in process. "
        "This could be due to an expired link or a temporary server issue."
    )
    if reason == "provisioning_failed":
        message = "Your sign-in succeeded but your profile could not be set up."
    return AuthErrorPageResponse(
        message=message,
        suggestions=[
            "Go back and try signing in again",
            "Check your email for a new verification link",
            "Contact support if the issue persists",
        ],
        actions=[
            PageLink(label="Try Again", href=settings.login_path),
            PageLink(label="Go Home", href=settings.home_path),
        ],
    )
