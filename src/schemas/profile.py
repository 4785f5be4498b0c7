"""Profile Pydantic schemas for API request/response models."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class Theme(str, Enum):
    """Portfolio themes a profile can select."""

    DEFAULT = "default"
    MODERN = "modern"
    CREATIVE = "creative"
    PROFESSIONAL = "professional"


class ProfileBase(BaseModel):
    """Public profile fields shared across schemas."""

    username: str = Field(description="Unique public username")
    full_name: str = Field(description="Display name")
    avatar_url: str | None = Field(default=None, description="URL to user's avatar image")
    bio: str | None = Field(default=None, description="Short biography")
    title: str | None = Field(default=None, description="Professional title")
    location: str | None = Field(default=None, description="Location")
    website: str | None = Field(default=None, description="Personal website")
    social_github: str | None = Field(default=None, description="GitHub handle or URL")
    social_linkedin: str | None = Field(default=None, description="LinkedIn handle or URL")
    social_twitter: str | None = Field(default=None, description="Twitter handle or URL")
    theme: Theme = Field(default=Theme.DEFAULT, description="Portfolio theme")


class ProfileUpdate(BaseModel):
    """Schema for the settings surface.

    All fields are optional for partial updates. The username is fixed at
    provisioning time and cannot be changed here.
    """

    model_config = ConfigDict(from_attributes=True, extra="forbid")

    full_name: str | None = Field(default=None, min_length=1, max_length=255, description="New display name")
    avatar_url: str | None = Field(default=None, description="New avatar URL")
    bio: str | None = Field(default=None, max_length=2000, description="Short biography")
    title: str | None = Field(default=None, max_length=255, description="Professional title")
    location: str | None = Field(default=None, max_length=255, description="Location")
    website: str | None = Field(default=None, max_length=2048, description="Personal website")
    social_github: str | None = Field(default=None, max_length=255, description="GitHub handle or URL")
    social_linkedin: str | None = Field(default=None, max_length=255, description="LinkedIn handle or URL")
    social_twitter: str | None = Field(default=None, max_length=255, description="Twitter handle or URL")
    theme: Theme | None = Field(default=None, description="Portfolio theme")
    is_public: bool | None = Field(default=None, description="Whether anonymous visitors can view the portfolio")


class ProfileResponse(ProfileBase):
    """Schema for the owner's view of a profile."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(description="Profile id (equals the identity id)")
    email: str = Field(description="Account email")
    is_public: bool = Field(description="Whether anonymous visitors can view the portfolio")
    created_at: datetime = Field(description="Profile creation timestamp")
    updated_at: datetime = Field(description="Last update timestamp")


class PublicProfileResponse(ProfileBase):
    """Schema for the anonymous view of a published portfolio."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(description="Profile id")
    created_at: datetime = Field(description="Member since")


class DashboardResponse(BaseModel):
    """Authenticated home page payload."""

    user_id: str = Field(description="Signed-in identity id")
    email: str = Field(description="Signed-in identity email")
    profile: ProfileResponse | None = Field(default=None, description="Profile, if provisioning has completed")
    profile_complete: bool = Field(description="False while the identity has no profile row")
