"""Client-side session context.

A long-lived, process-wide cache of the signed-in user's profile for client
applications. It follows the identity backend's session-change stream and
exposes a ``SessionSnapshot`` to observers.

Backend callbacks can arrive from SDK threads; they are marshalled onto the
event loop that called ``start()`` before any state is touched. Every
operation captures a generation number and drops its result if the
generation moved on (sign-out, retry, close) while it was in flight.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Coroutine, Protocol

from src.core.config import Settings, get_settings
from src.core.identity import IdentityBackend
from src.models.identity import Identity, SessionChangeEvent, Subscription
from src.models.profile import Profile
from src.services.profile_service import ProfileStoreError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 5.0
UNAVAILABLE_MESSAGE = "Authentication service unavailable. Please try again."


class AuthStatus(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"
    ERRORED = "errored"


@dataclass(frozen=True)
class SessionSnapshot:
    """What observers see: status, the cached profile and an error message."""

    status: AuthStatus = AuthStatus.UNINITIALIZED
    profile: Profile | None = None
    error: str | None = None

    @property
    def loading(self) -> bool:
        return self.status in (AuthStatus.UNINITIALIZED, AuthStatus.LOADING)

    @classmethod
    def ready(cls, profile: Profile | None = None) -> "SessionSnapshot":
        return cls(status=AuthStatus.READY, profile=profile)

    @classmethod
    def errored(cls, message: str) -> "SessionSnapshot":
        return cls(status=AuthStatus.ERRORED, error=message)


class Navigator(Protocol):
    """Routing surface of the hosting client."""

    def current_path(self) -> str: ...

    def push(self, path: str) -> None: ...


class ProfileReader(Protocol):
    async def get_profile_by_id(self, profile_id: str) -> dict[str, Any] | None: ...


SnapshotListener = Callable[[SessionSnapshot], None]


class ClientSessionContext:
    """Session and profile cache driven by identity backend events.

    Usage::

        context = ClientSessionContext(backend, profiles, navigator)
        await context.start()
        ...
        await context.close()
    """

    def __init__(
        self,
        identity_backend: IdentityBackend,
        profile_store: ProfileReader,
        navigator: Navigator,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        protected_prefix: str = "/dashboard",
        home_path: str = "/",
    ) -> None:
        self.identity = identity_backend
        self.profiles = profile_store
        self.navigator = navigator
        self.timeout_seconds = timeout_seconds
        self.protected_prefix = protected_prefix.rstrip("/")
        self.home_path = home_path

        self._snapshot = SessionSnapshot()
        self._generation = 0
        self._listeners: list[SnapshotListener] = []
        self._subscription: Subscription | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._tasks: set[asyncio.Task] = set()
        self._closed = False
        self._signing_out = False

    @classmethod
    def from_settings(
        cls,
        identity_backend: IdentityBackend,
        profile_store: ProfileReader,
        navigator: Navigator,
        settings: Settings | None = None,
    ) -> "ClientSessionContext":
        settings = settings or get_settings()
        return cls(
            identity_backend,
            profile_store,
            navigator,
            timeout_seconds=settings.auth_init_timeout_seconds,
            protected_prefix=settings.protected_path_prefix,
            home_path=settings.home_path,
        )

    @property
    def snapshot(self) -> SessionSnapshot:
        return self._snapshot

    @property
    def profile(self) -> Profile | None:
        return self._snapshot.profile

    @property
    def loading(self) -> bool:
        return self._snapshot.loading

    @property
    def error(self) -> str | None:
        return self._snapshot.error

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """Register a snapshot observer. Returns a callable that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def start(self) -> None:
        """Subscribe to session changes, then load the initial state."""
        self._loop = asyncio.get_running_loop()
        self._closed = False
        self._subscription = self.identity.on_session_change(self._on_backend_event)
        await self.initialize()

    async def close(self) -> None:
        """Stop listening and drop anything still in flight."""
        self._closed = True
        self._generation += 1
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._listeners.clear()

    async def initialize(self) -> None:
        """Load session and profile, giving up after ``timeout_seconds``.

        On timeout the context becomes ready with no profile and the late
        result is discarded.
        """
        self._generation += 1
        generation = self._generation
        self._set(SessionSnapshot(status=AuthStatus.LOADING))

        task = self._spawn(self._load_initial())
        done, _ = await asyncio.wait({task}, timeout=self.timeout_seconds)

        if not self._is_current(generation):
            if not done:
                task.cancel()
            return

        if not done:
            task.cancel()
            logger.warning("Session initialization timed out after %.1fs", self.timeout_seconds)
            self._set(SessionSnapshot.ready(None))
            return

        self._set(task.result())

    async def retry(self) -> None:
        """Re-run initialization after an error."""
        await self.initialize()

    async def sign_out(self) -> None:
        """Sign out at the backend. Local state is cleared whatever happens there."""
        self._generation += 1
        self._signing_out = True
        try:
            failure = await self.identity.sign_out()
            if failure is not None:
                logger.error("Sign out failed: %s", failure.message)
        except Exception as e:
            logger.error("Sign out failed: %s", e)
        finally:
            self._signing_out = False
            if not self._closed:
                self._set(SessionSnapshot.ready(None))
                self.navigator.push(self.home_path)

    # Loading

    async def _load_initial(self) -> SessionSnapshot:
        result = await self.identity.get_session()
        if not result.ok:
            if result.failure.is_expected_empty:
                return SessionSnapshot.ready(None)
            return self._backend_failure(result.failure.message)
        if result.identity is None:
            return SessionSnapshot.ready(None)
        return await self._load_profile(result.identity)

    async def _load_profile(self, identity: Identity) -> SessionSnapshot:
        try:
            profile = await self.profiles.get_profile_by_id(identity.id)
        except ProfileStoreError as e:
            return self._backend_failure(e.message)

        if profile is None:
            logger.warning("No profile found for identity %s", identity.id)
            return SessionSnapshot.ready(None)
        return SessionSnapshot.ready(profile)

    async def _refresh_profile(self, identity: Identity, generation: int) -> None:
        snapshot = await self._load_profile(identity)
        if self._is_current(generation):
            self._set(snapshot)

    def _backend_failure(self, message: str) -> SessionSnapshot:
        logger.error("Session load failed: %s", message)
        if self._on_protected_route():
            return SessionSnapshot.errored(UNAVAILABLE_MESSAGE)
        return SessionSnapshot.ready(None)

    # Backend events

    def _on_backend_event(self, event: SessionChangeEvent, identity: Identity | None) -> None:
        loop = self._loop
        if loop is None or self._closed or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._handle_event, event, identity)

    def _handle_event(self, event: SessionChangeEvent, identity: Identity | None) -> None:
        if self._closed:
            return
        logger.debug("Session event %s", event.value)

        if event == SessionChangeEvent.SIGNED_OUT:
            self._generation += 1
            self._set(SessionSnapshot.ready(None))
            # sign_out() navigates once it returns
            if not self._signing_out and self._on_protected_route():
                self.navigator.push(self.home_path)
        elif event in (SessionChangeEvent.SIGNED_IN, SessionChangeEvent.TOKEN_REFRESHED) and identity:
            cached = self._snapshot.profile
            if cached is not None and cached.get("id") == identity.id:
                return
            self._spawn(self._refresh_profile(identity, self._generation))

    # Helpers

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _is_current(self, generation: int) -> bool:
        return not self._closed and generation == self._generation

    def _on_protected_route(self) -> bool:
        path = self.navigator.current_path()
        return path == self.protected_prefix or path.startswith(f"{self.protected_prefix}/")

    def _set(self, snapshot: SessionSnapshot) -> None:
        self._snapshot = snapshot
        for listener in list(self._listeners):
            listener(snapshot)
