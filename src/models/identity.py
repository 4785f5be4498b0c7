"""Identity and session type definitions shared by the resolver, provisioner and client context."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable


@dataclass(frozen=True)
class Identity:
    """An account issued by the identity backend.

    The id is opaque and immutable for the lifetime of the account; it is also
    the primary key of the matching profile row.
    """

    id: str
    email: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_user(cls, user: Any) -> "Identity":
        """Build an identity from a supabase_auth ``User``."""
        return cls(
            id=str(user.id),
            email=user.email or "",
            metadata=dict(user.user_metadata or {}),
        )

    @property
    def avatar_url(self) -> str | None:
        """Avatar URL supplied by the OAuth provider, if any."""
        return self.metadata.get("avatar_url") or None


@dataclass(frozen=True)
class AuthSession:
    """An issued session. Tokens live in cookies; this is the decoded view."""

    access_token: str
    refresh_token: str
    identity: Identity
    expires_at: int | None = None

    @classmethod
    def from_session(cls, session: Any) -> "AuthSession":
        """Build from a supabase_auth ``Session``."""
        return cls(
            access_token=session.access_token,
            refresh_token=session.refresh_token,
            identity=Identity.from_user(session.user),
            expires_at=session.expires_at,
        )


class SessionChangeEvent(str, Enum):
    """Session change notifications emitted by the identity backend."""

    INITIAL_SESSION = "INITIAL_SESSION"
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    USER_UPDATED = "USER_UPDATED"
    USER_DELETED = "USER_DELETED"
    PASSWORD_RECOVERY = "PASSWORD_RECOVERY"
    MFA_CHALLENGE_VERIFIED = "MFA_CHALLENGE_VERIFIED"


SessionChangeCallback = Callable[[SessionChangeEvent, Identity | None], None]


@dataclass
class Subscription:
    """Handle returned by ``on_session_change``; call ``unsubscribe`` to stop receiving events."""

    _unsubscribe: Callable[[], None]
    active: bool = True

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        self._unsubscribe()
