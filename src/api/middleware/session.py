"""Session resolver middleware: per-request session refresh and route admission.

Route-level gating here is a fast path. Page and API dependencies re-check the
session themselves, so when the identity backend cannot be reached the
request is let through unauthenticated instead of being blocked.
"""

import logging
import re
from typing import Callable

from fastapi import Request, Response
from fastapi.responses import RedirectResponse

from src.core.config import Settings, get_settings
from src.core.cookies import RequestCookieJar
from src.core.identity import AuthResult
from src.models.identity import Identity

logger = logging.getLogger(__name__)

STATIC_PATH_PATTERN = re.compile(
    r"^/(?:_next/static|_next/image|static)/|^/favicon\.ico$|\.(?:svg|png|jpg|jpeg|gif|webp)$",
    re.IGNORECASE,
)
PROBE_PATHS = frozenset({"/health", "/health/ready"})


def should_resolve(path: str) -> bool:
    """Static assets and probes never touch the identity backend."""
    return path not in PROBE_PATHS and not STATIC_PATH_PATTERN.search(path)


def is_protected_path(path: str, settings: Settings) -> bool:
    prefix = settings.protected_path_prefix.rstrip("/")
    return path == prefix or path.startswith(f"{prefix}/")


def resolve_admission(path: str, user: Identity | None, settings: Settings) -> str | None:
    """Decide whether a request must be redirected.

    Returns:
        str | None: Redirect target path, or None to let the request through.
    """
    if is_protected_path(path, settings) and user is None:
        return settings.login_path
    if user is not None and path in settings.auth_only_paths:
        return settings.protected_path_prefix
    return None


async def _resolve_user(request: Request, jar: RequestCookieJar) -> AuthResult | None:
    try:
        backend = request.app.state.identity_backend_factory(jar)
        return await backend.get_user()
    except Exception as e:
        logger.error("Session resolver error: %s", e)
        return None


async def session_resolver_middleware(request: Request, call_next: Callable) -> Response:
    """Resolve the session from cookies and apply route admission.

    Exposes ``request.state.user``, ``request.state.session_resolved`` and
    ``request.state.cookie_jar`` to downstream handlers.

    Args:
        request: The incoming request.
        call_next: Next middleware or route handler.

    Returns:
        Response: A redirect, or the downstream response with refreshed cookies.
    """
    path = request.url.path
    if not should_resolve(path):
        return await call_next(request)

    settings = get_settings()
    jar = RequestCookieJar(request.cookies)
    request.state.cookie_jar = jar
    request.state.user = None
    request.state.session_resolved = False

    result = await _resolve_user(request, jar)

    if result is not None and (result.ok or result.failure.is_expected_empty):
        user = result.identity if result.ok else None
        request.state.user = user
        request.state.session_resolved = True

        target = resolve_admission(path, user, settings)
        if target:
            logger.debug("Redirecting %s to %s", path, target)
            redirect = RedirectResponse(
                url=str(request.url.replace(path=target, query="")),
                status_code=307,
            )
            jar.apply_to_response(redirect)
            return redirect
    elif result is not None:
        logger.warning("Session check failed, continuing unauthenticated: %s", result.failure.message)

    jar.apply_to_scope(request.scope)
    response = await call_next(request)
    jar.apply_to_response(response)
    return response
