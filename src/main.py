"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Callable

from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from supabase import Client

from src.api.middleware.error_handler import error_handler_middleware
from src.api.middleware.latency_logging import latency_logging_middleware
from src.api.middleware.session import session_resolver_middleware
from src.api.routes import auth, health, pages, portfolios, profiles
from src.core.config import get_settings
from src.core.cookies import RequestCookieJar
from src.core.identity import IdentityBackend, SupabaseIdentityBackend
from src.core.supabase import create_service_client

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

IdentityBackendFactory = Callable[[RequestCookieJar], IdentityBackend]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    Owns the service-role Supabase client. A client injected through
    ``create_app`` is used as is.

    Args:
        app: FastAPI application instance.

    Yields:
        None: Control back to the application.
    """
    settings = get_settings()
    logger.info("Starting %s in %s mode", settings.app_name, settings.app_env)

    if app.state.supabase is None:
        app.state.supabase = create_service_client()
        logger.info("Supabase service client created")

    yield

    logger.info("Shutting down %s", settings.app_name)


def create_app(
    *,
    identity_backend_factory: IdentityBackendFactory | None = None,
    service_client: Client | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        identity_backend_factory: Builds a request-scoped identity backend
            from the request's cookie jar. Defaults to a Supabase auth client
            per request.
        service_client: Service-role Supabase client for the profile store.
            Created at startup when omitted.

    Returns:
        FastAPI: Configured application instance.
    """
    settings = get_settings()

    app = FastAPI(
        title="ProjectShelf API",
        description="Portfolio platform backend: sessions, sign-up and profiles",
        version="0.1.0",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
    )
    app.state.supabase = service_client
    app.state.identity_backend_factory = identity_backend_factory or SupabaseIdentityBackend.for_cookie_jar

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Error handler sits inside the session resolver so error responses
    # still carry refreshed session cookies
    app.add_middleware(BaseHTTPMiddleware, dispatch=error_handler_middleware)

    # Session resolver (refreshes cookies, redirects by route)
    app.add_middleware(BaseHTTPMiddleware, dispatch=session_resolver_middleware)

    # Add latency logging middleware (outermost - times the whole request)
    app.add_middleware(BaseHTTPMiddleware, dispatch=latency_logging_middleware)

    # Health routes and pages at root level (no prefix)
    app.include_router(health.router)
    app.include_router(pages.router)

    # Auth actions live at /auth so the OAuth callback URL stays stable
    app.include_router(auth.router)

    # Create API v1 router for versioned endpoints
    api_v1_router = APIRouter(prefix="/api/v1")
    api_v1_router.include_router(profiles.router)
    api_v1_router.include_router(portfolios.router)
    app.include_router(api_v1_router)

    return app


# Create application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "src.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
