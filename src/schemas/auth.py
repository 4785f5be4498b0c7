"""Authentication schemas for tokens, sign-up, sign-in and auth pages."""

import re
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.models.identity import Identity

USERNAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")
USERNAME_MIN_LENGTH = 3


def username_problem(username: str) -> str | None:
    """Return why a user-chosen username is unacceptable, or None if it is fine."""
    if not username or len(username) < USERNAME_MIN_LENGTH:
        return f"Username must be at least {USERNAME_MIN_LENGTH} characters"
    if not USERNAME_PATTERN.match(username):
        return "Username can only contain letters, numbers, hyphens, and underscores"
    return None


class TokenPayload(BaseModel):
    """JWT token payload structure for Supabase tokens.

    Represents the claims contained in a Supabase-issued JWT.
    """

    model_config = ConfigDict(from_attributes=True)

    sub: str = Field(description="Subject - the user's id")
    email: str | None = Field(default=None, description="User's email address")
    role: str | None = Field(default=None, description="User's role")
    exp: int = Field(description="Expiration timestamp (Unix epoch)")
    iat: int = Field(description="Issued at timestamp (Unix epoch)")
    aud: str | None = Field(default=None, description="Audience - intended recipient")
    iss: str | None = Field(default=None, description="Issuer - token issuer URL")
    user_metadata: dict[str, Any] = Field(default_factory=dict, description="User metadata claim")

    @property
    def expiration_datetime(self) -> datetime:
        """Get expiration as datetime object."""
        return datetime.fromtimestamp(self.exp)

    def to_identity(self) -> Identity:
        """Convert token claims to an Identity."""
        return Identity(id=self.sub, email=self.email or "", metadata=dict(self.user_metadata))


class AuthenticatedResponse(BaseModel):
    """Response for authenticated test endpoint."""

    model_config = ConfigDict(from_attributes=True)

    authenticated: bool = Field(default=True, description="Authentication status")
    user_id: str = Field(description="Authenticated user ID")
    email: str | None = Field(default=None, description="User email if available")


# Signup


class SignupRequest(BaseModel):
    """Request schema for user signup."""

    model_config = ConfigDict(from_attributes=True)

    email: str = Field(..., description="User's email address", min_length=3, max_length=255)
    password: str = Field(..., description="User's password", min_length=8, max_length=100)
    username: str = Field(..., description="Desired public username", max_length=50)
    full_name: str = Field(..., description="User's full name", min_length=1, max_length=255)

    @field_validator("username")
    @classmethod
    def validate_username(cls, value: str) -> str:
        problem = username_problem(value)
        if problem:
            raise ValueError(problem)
        return value


class SignupResponse(BaseModel):
    """Response schema for user signup."""

    model_config = ConfigDict(from_attributes=True)

    success: bool = Field(default=True, description="Whether the account and profile were created")
    user_id: str = Field(description="Newly created user ID")
    username: str = Field(description="Provisioned username")
    message: str = Field(description="Status message")
    should_redirect: bool = Field(description="True when the user was signed in and can go to the dashboard")


# Login


class LoginRequest(BaseModel):
    """Request schema for user login."""

    model_config = ConfigDict(from_attributes=True)

    email: str = Field(..., description="User's email address")
    password: str = Field(..., description="User's password")


class LoginResponse(BaseModel):
    """Response schema for user login."""

    model_config = ConfigDict(from_attributes=True)

    access_token: str = Field(description="JWT access token")
    refresh_token: str | None = Field(default=None, description="Refresh token if available")
    expires_at: int | None = Field(default=None, description="Access token expiry (Unix epoch)")
    user_id: str = Field(description="User ID")
    email: str = Field(description="User's email address")
    username: str = Field(description="Profile username")


class LogoutResponse(BaseModel):
    """Response schema for logout."""

    success: bool = Field(default=True, description="Local session cleared")
    message: str = Field(default="Logged out successfully", description="Status message")


# Username availability


class UsernameAvailabilityResponse(BaseModel):
    """Response schema for username availability checks."""

    model_config = ConfigDict(from_attributes=True)

    available: bool = Field(description="Whether the username can be claimed")
    message: str = Field(description="Human-readable explanation")


# Auth pages


class PageLink(BaseModel):
    """A labelled navigation target."""

    label: str = Field(description="Link label")
    href: str = Field(description="Target path")


class AuthPageResponse(BaseModel):
    """Descriptor for the login and signup pages."""

    page: str = Field(description="Page identifier (login or signup)")
    form_action: str = Field(description="Endpoint the credential form posts to")
    providers: list[PageLink] = Field(default_factory=list, description="OAuth sign-in entry points")
    alternate: PageLink = Field(description="Link to the other auth page")


class AuthErrorPageResponse(BaseModel):
    """Descriptor for the OAuth failure page."""

    title: str = Field(default="Authentication Error", description="Page title")
    message: str = Field(description="Explanation of what went wrong")
    suggestions: list[str] = Field(default_factory=list, description="Things the user can try")
    actions: list[PageLink] = Field(default_factory=list, description="Recovery links")
