"""Database and identity model type definitions."""

from src.models.identity import AuthSession, Identity, SessionChangeEvent, Subscription
from src.models.profile import Profile, ProfileCreate

__all__ = [
    "AuthSession",
    "Identity",
    "Profile",
    "ProfileCreate",
    "SessionChangeEvent",
    "Subscription",
]
