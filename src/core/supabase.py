"""Supabase client construction for profile storage and auth operations."""

import asyncio
from typing import Any

from supabase import Client, create_client
from supabase.lib.client_options import SyncClientOptions
from supabase_auth import SyncMemoryStorage, SyncSupportedStorage

from src.core.config import get_settings


def create_service_client() -> Client:
    """Create the Supabase client used for profile table operations.

    Uses the secret key, which bypasses RLS at the PostgREST level. Only use it
    after the caller's identity has been verified. The application lifespan
    owns the instance (``app.state.supabase``); nothing else should construct
    one per request.

    Returns:
        Client: Supabase client instance.
    """
    settings = get_settings()
    return create_client(
        settings.supabase_url,
        settings.supabase_secret_key,
    )


def create_auth_client(storage: SyncSupportedStorage | None = None) -> Client:
    """Create an isolated Supabase client for auth operations.

    The session is persisted through ``storage``. Pass a ``CookieStorage`` to
    bind the client to one request's cookies; omit it for an in-memory client
    (for example a long-lived client process).

    Args:
        storage: Session storage backend.

    Returns:
        Client: Fresh Supabase client instance using the publishable key.
    """
    settings = get_settings()
    options = SyncClientOptions(
        storage=storage or SyncMemoryStorage(),
        auto_refresh_token=False,
        persist_session=True,
        flow_type="pkce",
    )
    return create_client(
        settings.supabase_url,
        settings.supabase_anon_key,
        options=options,
    )


async def check_database_connection(client: Client) -> dict[str, Any]:
    """Check if database connection is healthy.

    Performs a simple query against the profiles table.

    Returns:
        dict: Connection status with 'healthy' boolean and optional 'error' message.
    """
    try:
        await asyncio.to_thread(client.table("profiles").select("id").limit(1).execute)
        return {"healthy": True}
    except Exception as e:
        return {"healthy": False, "error": str(e)}
