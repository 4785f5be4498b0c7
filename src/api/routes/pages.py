"""Page routes: auth page descriptors and the authenticated dashboard."""

import logging

from fastapi import APIRouter

from src.api.deps import CurrentUser, ProvisionerDep
from src.api.middleware.error_handler import PROFILE_UNAVAILABLE_MESSAGE, ServiceUnavailableError
from src.core.config import get_settings
from src.schemas.auth import AuthPageResponse, PageLink
from src.schemas.profile import DashboardResponse, ProfileResponse
from src.services.provisioning_service import ProvisioningError, ProvisioningErrorKind

logger = logging.getLogger(__name__)

router = APIRouter(tags=["pages"])


def _provider_links() -> list[PageLink]:
    settings = get_settings()
    return [
        PageLink(label=f"Continue with {provider.capitalize()}", href=f"/auth/oauth/{provider}")
        for provider in settings.oauth_providers_list
    ]


@router.get(
    "/login",
    response_model=AuthPageResponse,
    summary="Login page",
    description="Login form target and OAuth entry points. Signed-in users are redirected to the dashboard.",
)
async def login_page() -> AuthPageResponse:
    settings = get_settings()
    return AuthPageResponse(
        page="login",
        form_action="/auth/login",
        providers=_provider_links(),
        alternate=PageLink(label="Sign up", href=settings.signup_path),
    )


@router.get(
    "/signup",
    response_model=AuthPageResponse,
    summary="Signup page",
    description="Signup form target and OAuth entry points. Signed-in users are redirected to the dashboard.",
)
async def signup_page() -> AuthPageResponse:
    settings = get_settings()
    return AuthPageResponse(
        page="signup",
        form_action="/auth/signup",
        providers=_provider_links(),
        alternate=PageLink(label="Sign in", href=settings.login_path),
    )


@router.get(
    "/dashboard",
    response_model=DashboardResponse,
    summary="Dashboard",
    description="Authenticated home page.",
    responses={
        401: {"description": "No session"},
        503: {"description": "Identity or profile backend unavailable"},
    },
)
async def dashboard(user: CurrentUser, provisioner: ProvisionerDep) -> DashboardResponse:
    """Authenticated home page.

    The session is verified here regardless of the resolver's redirect.
    An identity left without a profile by an interrupted sign-up is
    provisioned now; if that fails again the page still renders with
    ``profile_complete`` false so the user is not locked out. A profile
    store outage is a 503 instead, so the client can retry.

    Args:
        user: The authenticated identity.
        provisioner: Profile provisioner.

    Returns:
        DashboardResponse: Identity and profile.
    """
    try:
        provisioned = await provisioner.ensure_profile(user)
    except ProvisioningError as e:
        if e.kind == ProvisioningErrorKind.UNAVAILABLE:
            raise ServiceUnavailableError(PROFILE_UNAVAILABLE_MESSAGE) from e
        logger.error("Dashboard could not complete provisioning for %s: %s", user.id, e.message)
        return DashboardResponse(user_id=user.id, email=user.email, profile=None, profile_complete=False)

    return DashboardResponse(
        user_id=user.id,
        email=user.email,
        profile=ProfileResponse(**provisioned.profile),
        profile_complete=True,
    )
