"""Public portfolio routes."""

from fastapi import APIRouter

from src.api.deps import ProfileServiceDep
from src.api.middleware.error_handler import PROFILE_UNAVAILABLE_MESSAGE, NotFoundError, ServiceUnavailableError
from src.schemas.profile import PublicProfileResponse
from src.services.profile_service import ProfileStoreError

router = APIRouter(prefix="/portfolios", tags=["portfolios"])


@router.get(
    "/{username}",
    response_model=PublicProfileResponse,
    summary="Get public portfolio",
    description="Returns a published profile by username. Private profiles are reported as not found.",
)
async def get_portfolio(username: str, service: ProfileServiceDep) -> PublicProfileResponse:
    """Anonymous view of a portfolio.

    Raises:
        NotFoundError: 404 if no public profile uses ``username``.
    """
    try:
        profile = await service.get_profile_by_username(username, require_public=True)
    except ProfileStoreError as e:
        raise ServiceUnavailableError(PROFILE_UNAVAILABLE_MESSAGE) from e

    if not profile:
        raise NotFoundError("Portfolio not found")

    return PublicProfileResponse(**profile)
