"""Profile model type definitions for database operations."""

from datetime import datetime
from typing import TypedDict


class Profile(TypedDict):
    """Profile table row representation.

    Represents a public user profile stored in the profiles table.
    The id is the identity id issued by the auth backend.
    """

    id: str
    email: str
    username: str
    full_name: str
    avatar_url: str | None
    bio: str | None
    title: str | None
    location: str | None
    website: str | None
    social_github: str | None
    social_linkedin: str | None
    social_twitter: str | None
    theme: str
    is_public: bool
    created_at: datetime
    updated_at: datetime


class ProfileCreate(TypedDict):
    """Arguments of the create_user_profile procedure."""

    user_id: str
    user_email: str
    user_username: str
    user_full_name: str

