"""Application configuration management using Pydantic Settings."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    Required settings will raise validation errors if not provided.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="projectshelf-backend", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/staging/production)")
    debug: bool = Field(default=False, description="Enable debug mode")

    # Server
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, description="Server port")

    # CORS
    cors_origins: str = Field(
        default="http://localhost:3000",
        description="Comma-separated list of allowed CORS origins",
    )

    # Public site
    site_url: str = Field(
        default="http://localhost:3000",
        description="Public site URL used to build OAuth redirect targets",
    )

    # Supabase
    supabase_url: str = Field(..., description="Supabase project URL")
    supabase_anon_key: str = Field(..., description="Supabase publishable key used for user-scoped auth clients")
    supabase_secret_key: str = Field(..., description="Supabase secret key for backend profile operations")
    supabase_jwt_secret: str = Field(default="", description="Shared HS256 secret for verifying bearer tokens")
    supabase_signing_key_jwk: str = Field(default="", description="ES256 signing key JWK (JSON string) for verifying bearer tokens")

    # Routes
    protected_path_prefix: str = Field(default="/dashboard", description="Prefix of the authenticated area")
    login_path: str = Field(default="/login", description="Login route")
    signup_path: str = Field(default="/signup", description="Signup route")
    home_path: str = Field(default="/", description="Public landing route")
    auth_error_path: str = Field(default="/auth/auth-code-error", description="OAuth failure route")
    oauth_providers: str = Field(default="github,google", description="Comma-separated list of enabled OAuth providers")

    # Session cookies
    auth_cookie_prefix: str = Field(default="sb-", description="Prefix for session cookie names")
    auth_cookie_max_age: int = Field(default=34560000, description="Session cookie max age in seconds (400 days)")
    auth_cookie_secure: bool = Field(default=True, description="Use secure cookies (HTTPS only)")

    # Client session context
    auth_init_timeout_seconds: float = Field(
        default=5.0,
        description="Upper bound for resolving the initial client session before falling back to anonymous",
    )

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins string into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def oauth_providers_list(self) -> list[str]:
        """Parse enabled OAuth providers into a list."""
        return [p.strip().lower() for p in self.oauth_providers.split(",") if p.strip()]

    @property
    def auth_only_paths(self) -> tuple[str, str]:
        """Routes reserved for unauthenticated visitors."""
        return (self.login_path, self.signup_path)

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton.

    Returns:
        Settings: Application settings instance.

    Note:
        Settings are cached using lru_cache for performance.
        Call get_settings.cache_clear() to reload settings.
    """
    return Settings()
