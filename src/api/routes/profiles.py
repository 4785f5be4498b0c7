"""Profile API routes (settings surface)."""

from fastapi import APIRouter

from src.api.deps import CurrentUser, ProfileServiceDep, ProvisionerDep
from src.api.middleware.error_handler import (
    PROFILE_UNAVAILABLE_MESSAGE,
    NotFoundError,
    ProvisioningFailedError,
    ServiceUnavailableError,
    ValidationError,
)
from src.schemas.profile import ProfileResponse, ProfileUpdate
from src.services.profile_service import ProfileStoreError, ProfileStoreErrorKind
from src.services.provisioning_service import ProvisioningError, ProvisioningErrorKind

router = APIRouter(prefix="/profiles", tags=["profiles"])


@router.get(
    "/me",
    response_model=ProfileResponse,
    summary="Get current user's profile",
    description="Returns the authenticated user's profile, provisioning it first if a sign-up was interrupted.",
)
async def get_my_profile(user: CurrentUser, provisioner: ProvisionerDep) -> ProfileResponse:
    """Get the authenticated user's profile.

    Args:
        user: The authenticated identity.
        provisioner: Profile provisioner.

    Returns:
        ProfileResponse: The user's profile data.

    Raises:
        ProvisioningFailedError: 500 if the missing profile could not be created.
        ServiceUnavailableError: 503 if the profile store cannot be reached.
    """
    try:
        provisioned = await provisioner.ensure_profile(user)
    except ProvisioningError as e:
        if e.kind == ProvisioningErrorKind.UNAVAILABLE:
            raise ServiceUnavailableError(PROFILE_UNAVAILABLE_MESSAGE) from e
        raise ProvisioningFailedError(f"Failed to load user profile: {e.message}") from e

    return ProfileResponse(**provisioned.profile)


@router.put(
    "/me",
    response_model=ProfileResponse,
    summary="Update current user's profile",
    description="Updates the authenticated user's profile with provided fields. The username cannot be changed.",
)
async def update_my_profile(
    data: ProfileUpdate,
    user: CurrentUser,
    service: ProfileServiceDep,
) -> ProfileResponse:
    """Update the authenticated user's profile.

    Args:
        data: Fields to update.
        user: The authenticated identity.
        service: Profile store.

    Returns:
        ProfileResponse: The updated profile data.

    Raises:
        NotFoundError: 404 if the user has no profile yet.
    """
    try:
        profile = await service.update_profile(user.id, data)
    except ProfileStoreError as e:
        if e.kind == ProfileStoreErrorKind.UNAVAILABLE:
            raise ServiceUnavailableError(PROFILE_UNAVAILABLE_MESSAGE) from e
        raise ValidationError(e.message) from e

    if not profile:
        raise NotFoundError("Profile not found")

    return ProfileResponse(**profile)
