"""Profile provisioning: the second step after an identity is issued.

Identity creation and profile creation live in different systems with no
shared transaction. The identity is authoritative; an identity without a
profile is an incomplete but valid state. ``ensure_profile`` detects it and
finishes provisioning, so a failed attempt can be retried later.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from src.models.identity import Identity
from src.services.profile_service import ProfileStoreError, ProfileStoreErrorKind

logger = logging.getLogger(__name__)

DEFAULT_FULL_NAME = "User"


class ProfileStore(Protocol):
    async def get_profile_by_id(self, profile_id: str) -> dict[str, Any] | None: ...

    async def create_profile_atomic(
        self, profile_id: str, email: str, username: str, full_name: str
    ) -> dict[str, Any] | None: ...

    async def update_profile(self, profile_id: str, data: Any) -> dict[str, Any] | None: ...


class ProvisioningStatus(str, Enum):
    CREATED = "created"
    EXISTING = "existing"


@dataclass(frozen=True)
class ProvisioningResult:
    status: ProvisioningStatus
    profile: dict[str, Any]

    @property
    def created(self) -> bool:
        return self.status == ProvisioningStatus.CREATED


class ProvisioningErrorKind(str, Enum):
    USERNAME_TAKEN = "username_taken"
    UNAVAILABLE = "unavailable"
    FAILED = "failed"


class ProvisioningError(Exception):
    """Profile could not be created for a valid identity."""

    def __init__(self, kind: ProvisioningErrorKind, message: str, identity_id: str) -> None:
        self.kind = kind
        self.message = message
        self.identity_id = identity_id
        super().__init__(message)

    @classmethod
    def from_store_error(cls, error: ProfileStoreError, identity_id: str) -> "ProvisioningError":
        """Keep outages distinguishable from failures so callers can offer a retry."""
        if error.kind == ProfileStoreErrorKind.UNAVAILABLE:
            return cls(ProvisioningErrorKind.UNAVAILABLE, error.message, identity_id)
        return cls(ProvisioningErrorKind.FAILED, error.message, identity_id)


def derive_username(identity: Identity) -> str:
    """Pick a username for an identity whose provider may not supply one.

    Priority: provider handle, preferred username, email local part, and
    finally a fragment of the identity id. The result is not normalized; a
    collision surfaces as a conflict from the atomic insert.
    """
    metadata = identity.metadata
    for key in ("user_name", "preferred_username"):
        value = metadata.get(key)
        if value:
            return str(value)
    if identity.email and "@" in identity.email:
        local_part = identity.email.split("@", 1)[0]
        if local_part:
            return local_part
    return f"user_{identity.id[:8]}"


def derive_full_name(identity: Identity) -> str:
    metadata = identity.metadata
    return metadata.get("full_name") or metadata.get("name") or DEFAULT_FULL_NAME


class ProfileProvisioner:
    """Creates exactly one profile row per identity."""

    def __init__(self, profile_store: ProfileStore) -> None:
        self.profile_store = profile_store

    async def provision(
        self,
        identity_id: str,
        email: str,
        username: str,
        full_name: str,
        avatar_url: str | None = None,
    ) -> ProvisioningResult:
        """Create the profile for ``identity_id`` if it does not exist.

        Safe to retry: when a profile already exists for the identity the call
        returns it with status EXISTING.

        Raises:
            ProvisioningError: USERNAME_TAKEN if another identity owns the
                username, UNAVAILABLE if the store cannot be reached,
                FAILED for anything else.
        """
        try:
            profile = await self.profile_store.create_profile_atomic(identity_id, email, username, full_name)
            status = ProvisioningStatus.CREATED
        except ProfileStoreError as e:
            if e.kind == ProfileStoreErrorKind.IDENTITY_EXISTS:
                profile = None
            elif e.kind == ProfileStoreErrorKind.USERNAME_TAKEN:
                profile = await self._existing(identity_id)
                if profile is None:
                    logger.info("Username %s already taken, identity %s not provisioned", username, identity_id)
                    raise ProvisioningError(ProvisioningErrorKind.USERNAME_TAKEN, e.message, identity_id) from e
            else:
                logger.error("Provisioning failed for identity %s: %s", identity_id, e.message)
                raise ProvisioningError.from_store_error(e, identity_id) from e

        if profile is None:
            status = ProvisioningStatus.EXISTING
            profile = await self._existing(identity_id)
            if profile is None:
                raise ProvisioningError(
                    ProvisioningErrorKind.FAILED,
                    "Profile insert reported no row and none exists",
                    identity_id,
                )

        if status == ProvisioningStatus.CREATED:
            logger.info("Provisioned profile %s for identity %s", profile.get("username"), identity_id)

        if avatar_url and not profile.get("avatar_url"):
            profile = await self._set_avatar(identity_id, avatar_url, profile)

        return ProvisioningResult(status=status, profile=profile)

    async def provision_identity(self, identity: Identity, username: str | None = None) -> ProvisioningResult:
        """Provision from identity metadata (OAuth and resumed sign-ups)."""
        return await self.provision(
            identity_id=identity.id,
            email=identity.email,
            username=username or derive_username(identity),
            full_name=derive_full_name(identity),
            avatar_url=identity.avatar_url,
        )

    async def ensure_profile(self, identity: Identity) -> ProvisioningResult:
        """Return the identity's profile, provisioning it if it is missing.

        Sign-ups record the chosen username in metadata; that wins over the
        derived one when resuming an incomplete sign-up.
        """
        profile = await self._existing(identity.id)
        if profile is not None:
            return ProvisioningResult(status=ProvisioningStatus.EXISTING, profile=profile)

        logger.warning("Identity %s has no profile, resuming provisioning", identity.id)
        chosen = identity.metadata.get("username")
        return await self.provision_identity(identity, username=str(chosen) if chosen else None)

    async def _existing(self, identity_id: str) -> dict[str, Any] | None:
        try:
            return await self.profile_store.get_profile_by_id(identity_id)
        except ProfileStoreError as e:
            raise ProvisioningError.from_store_error(e, identity_id) from e

    async def _set_avatar(self, identity_id: str, avatar_url: str, profile: dict[str, Any]) -> dict[str, Any]:
        try:
            updated = await self.profile_store.update_profile(identity_id, {"avatar_url": avatar_url})
        except ProfileStoreError as e:
            logger.warning("Could not set avatar for identity %s: %s", identity_id, e.message)
            return profile
        return updated or profile
