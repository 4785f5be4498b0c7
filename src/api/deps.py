"""FastAPI dependency injection functions."""

from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request, status
from supabase import Client

from src.api.middleware.auth import AuthError, AuthErrorCode, decode_jwt
from src.api.middleware.error_handler import ServiceUnavailableError
from src.core.cookies import RequestCookieJar
from src.core.identity import IdentityBackend
from src.models.identity import Identity
from src.services.auth_service import AuthService
from src.services.profile_service import ProfileService
from src.services.provisioning_service import ProfileProvisioner


def get_service_client(request: Request) -> Client:
    """Service-role Supabase client owned by the application lifespan."""
    return request.app.state.supabase


def get_profile_service(client: Annotated[Client, Depends(get_service_client)]) -> ProfileService:
    return ProfileService(client)


def get_provisioner(profiles: Annotated[ProfileService, Depends(get_profile_service)]) -> ProfileProvisioner:
    return ProfileProvisioner(profiles)


def get_cookie_jar(request: Request) -> RequestCookieJar:
    """Cookie jar of this request.

    The session resolver creates it and writes its changes to the response;
    handlers share the same instance so their session writes land there too.
    """
    jar = getattr(request.state, "cookie_jar", None)
    if jar is None:
        jar = RequestCookieJar(request.cookies)
        request.state.cookie_jar = jar
    return jar


def get_identity_backend(
    request: Request,
    jar: Annotated[RequestCookieJar, Depends(get_cookie_jar)],
) -> IdentityBackend:
    """Request-scoped identity backend bound to the request's cookies."""
    return request.app.state.identity_backend_factory(jar)


def get_auth_service(
    identity: Annotated[IdentityBackend, Depends(get_identity_backend)],
    profiles: Annotated[ProfileService, Depends(get_profile_service)],
) -> AuthService:
    return AuthService(identity, profiles)


def _identity_from_bearer(authorization: str) -> Identity:
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authorization header format. Expected: Bearer <token>",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return decode_jwt(parts[1]).to_identity()
    except AuthError as e:
        detail = "Token has expired" if e.code == AuthErrorCode.TOKEN_EXPIRED else e.message
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        ) from e


async def _identity_from_session(request: Request) -> Identity | None:
    """Use the resolver's answer, or ask the backend when the resolver could not."""
    if getattr(request.state, "session_resolved", False):
        return request.state.user

    backend = request.app.state.identity_backend_factory(get_cookie_jar(request))
    result = await backend.get_user()
    if result.ok:
        request.state.user = result.identity
        request.state.session_resolved = True
        return result.identity
    if result.failure.is_expected_empty:
        return None
    raise ServiceUnavailableError()


async def get_current_user(
    request: Request,
    authorization: Annotated[str, Header(description="Bearer token")] = "",
) -> Identity:
    """Page- and action-level authentication gate.

    Accepts a bearer token, otherwise the session cookies. This is the final
    enforcement point; the session resolver's redirect is only a fast path.

    Raises:
        HTTPException: 401 if there is no valid session or token.
        ServiceUnavailableError: 503 if the identity backend cannot be reached.
    """
    if authorization:
        return _identity_from_bearer(authorization)

    user = await _identity_from_session(request)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


# Type aliases for cleaner dependency injection
CurrentUser = Annotated[Identity, Depends(get_current_user)]
ServiceClientDep = Annotated[Client, Depends(get_service_client)]
AuthServiceDep = Annotated[AuthService, Depends(get_auth_service)]
ProfileServiceDep = Annotated[ProfileService, Depends(get_profile_service)]
ProvisionerDep = Annotated[ProfileProvisioner, Depends(get_provisioner)]
