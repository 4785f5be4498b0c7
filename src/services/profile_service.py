"""Profile store: reads and writes of the profiles table."""

import asyncio
import logging
from enum import Enum
from typing import Any

import httpx
from postgrest.exceptions import APIError as PostgrestAPIError
from supabase import Client

from src.models.profile import Profile, ProfileCreate
from src.schemas.profile import ProfileUpdate

logger = logging.getLogger(__name__)

PROFILES_TABLE = "profiles"
CREATE_PROFILE_FUNCTION = "create_user_profile"
UNIQUE_VIOLATION = "23505"


class ProfileStoreErrorKind(str, Enum):
    """Failure categories of profile store operations."""

    USERNAME_TAKEN = "username_taken"
    IDENTITY_EXISTS = "identity_exists"
    UNAVAILABLE = "unavailable"
    FAILED = "failed"


class ProfileStoreError(Exception):
    """A profile store operation failed.

    ``kind`` separates uniqueness conflicts from outages and other failures.
    """

    def __init__(self, kind: ProfileStoreErrorKind, message: str) -> None:
        self.kind = kind
        self.message = message
        super().__init__(message)


def classify_store_error(error: Exception) -> ProfileStoreError:
    """Translate a PostgREST or transport exception into a ProfileStoreError."""
    if isinstance(error, ProfileStoreError):
        return error

    if isinstance(error, PostgrestAPIError):
        text = " ".join(part for part in (error.message, error.details) if part)
        if error.code == UNIQUE_VIOLATION:
            lowered = text.lower()
            if "username" in lowered:
                return ProfileStoreError(ProfileStoreErrorKind.USERNAME_TAKEN, "Username is already taken")
            if "pkey" in lowered or "(id)" in lowered:
                return ProfileStoreError(ProfileStoreErrorKind.IDENTITY_EXISTS, "Profile already exists")
        return ProfileStoreError(ProfileStoreErrorKind.FAILED, text or "Profile store request failed")

    if isinstance(error, httpx.HTTPError):
        return ProfileStoreError(ProfileStoreErrorKind.UNAVAILABLE, str(error) or "Profile store unreachable")

    return ProfileStoreError(ProfileStoreErrorKind.UNAVAILABLE, str(error) or error.__class__.__name__)


async def _execute(query: Any) -> Any:
    """Run a PostgREST request in a worker thread; the client is synchronous."""
    return await asyncio.to_thread(query.execute)


def _first_row(data: Any) -> dict[str, Any] | None:
    if isinstance(data, list):
        return data[0] if data else None
    return data or None


class ProfileService:
    """Service for reading and writing user profiles."""

    def __init__(self, client: Client) -> None:
        """Initialize profile service.

        Args:
            client: Service-role Supabase client owned by the application.
        """
        self.client = client

    async def get_profile_by_id(self, profile_id: str) -> Profile | None:
        """Get a profile by identity id.

        Args:
            profile_id: The identity id (also the profile primary key).

        Returns:
            dict | None: The profile data or None if not provisioned yet.

        Raises:
            ProfileStoreError: If the store cannot be queried.
        """
        try:
            response = await _execute(
                self.client.table(PROFILES_TABLE)
                .select("*")
                .eq("id", profile_id)
                .maybe_single()
            )
        except Exception as e:
            raise classify_store_error(e) from e

        return _first_row(response.data) if response else None

    async def get_profile_by_username(
        self,
        username: str,
        require_public: bool = False,
    ) -> Profile | None:
        """Get a profile by username.

        Args:
            username: The public username.
            require_public: Only match profiles visible to anonymous readers.

        Returns:
            dict | None: The profile data or None if not found.
        """
        try:
            query = self.client.table(PROFILES_TABLE).select("*").eq("username", username)
            if require_public:
                query = query.eq("is_public", True)
            response = await _execute(query.maybe_single())
        except Exception as e:
            raise classify_store_error(e) from e

        return _first_row(response.data) if response else None

    async def is_username_taken(self, username: str) -> bool:
        """Check whether any profile already uses ``username``.

        This is an advisory pre-check; the unique constraint behind
        ``create_profile_atomic`` is what actually decides.
        """
        try:
            response = await _execute(
                self.client.table(PROFILES_TABLE)
                .select("id")
                .eq("username", username)
                .limit(1)
            )
        except Exception as e:
            raise classify_store_error(e) from e

        return bool(response.data)

    async def create_profile_atomic(
        self,
        profile_id: str,
        email: str,
        username: str,
        full_name: str,
    ) -> Profile | None:
        """Insert a profile in one server-side statement.

        Args:
            profile_id: Identity id, used as the primary key.
            email: Account email.
            username: Desired username.
            full_name: Display name.

        Returns:
            dict | None: The new row, or None when a profile already existed
            for this identity (the insert was a no-op).

        Raises:
            ProfileStoreError: USERNAME_TAKEN on a username conflict, other
                kinds for outages and failures.
        """
        params: ProfileCreate = {
            "user_id": profile_id,
            "user_email": email,
            "user_username": username,
            "user_full_name": full_name,
        }
        try:
            response = await _execute(self.client.rpc(CREATE_PROFILE_FUNCTION, params))
        except Exception as e:
            raise classify_store_error(e) from e

        return _first_row(response.data)

    async def update_profile(
        self,
        profile_id: str,
        data: ProfileUpdate | dict[str, Any],
    ) -> Profile | None:
        """Update a profile.

        Args:
            profile_id: The profile id.
            data: The fields to update.

        Returns:
            dict | None: The updated profile data or None if not found.
        """
        if isinstance(data, ProfileUpdate):
            update_data = data.model_dump(mode="json", exclude_unset=True)
        else:
            update_data = dict(data)

        if not update_data:
            return await self.get_profile_by_id(profile_id)

        try:
            response = await _execute(
                self.client.table(PROFILES_TABLE)
                .update(update_data)
                .eq("id", profile_id)
            )
        except Exception as e:
            raise classify_store_error(e) from e

        return _first_row(response.data)
