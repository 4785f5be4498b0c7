"""Request-scoped cookie jar and the session storage adapter built on it.

The auth client persists its session through ``CookieStorage``. Every write is
recorded on the jar so the session resolver can mirror it onto the inbound
request (downstream handlers see the refreshed cookies) and onto the response.
"""

import base64
import logging
from collections.abc import Mapping, MutableMapping
from typing import Any

from starlette.responses import Response
from supabase_auth import SyncSupportedStorage

from src.core.config import get_settings

logger = logging.getLogger(__name__)

# Browsers reject cookies over ~4KB; leave room for name and attributes
MAX_CHUNK_SIZE = 3180
BASE64_PREFIX = "base64-"


class RequestCookieJar:
    """Cookies of one request plus the changes made while handling it."""

    def __init__(self, cookies: Mapping[str, str] | None = None) -> None:
        self._cookies: dict[str, str] = dict(cookies or {})
        self._changes: dict[str, str | None] = {}

    def get(self, name: str) -> str | None:
        return self._cookies.get(name)

    def names(self) -> list[str]:
        return list(self._cookies)

    def set(self, name: str, value: str) -> None:
        self._cookies[name] = value
        self._changes[name] = value

    def delete(self, name: str) -> None:
        if name not in self._cookies and name not in self._changes:
            return
        self._cookies.pop(name, None)
        self._changes[name] = None

    @property
    def changes(self) -> dict[str, str | None]:
        """Pending mutations; ``None`` marks a deletion."""
        return dict(self._changes)

    @property
    def has_changes(self) -> bool:
        return bool(self._changes)

    def cookie_header(self) -> str:
        return "; ".join(f"{name}={value}" for name, value in self._cookies.items())

    def apply_to_scope(self, scope: MutableMapping[str, Any]) -> None:
        """Rewrite the ASGI scope's cookie header so later readers see current values."""
        if not self.has_changes:
            return
        headers = [(k, v) for k, v in scope.get("headers", []) if k.lower() != b"cookie"]
        header = self.cookie_header()
        if header:
            headers.append((b"cookie", header.encode("latin-1")))
        scope["headers"] = headers

    def apply_to_response(self, response: Response) -> None:
        """Write pending mutations as Set-Cookie headers."""
        settings = get_settings()
        for name, value in self._changes.items():
            if value is None:
                response.delete_cookie(
                    key=name,
                    path="/",
                    secure=settings.auth_cookie_secure,
                    httponly=True,
                    samesite="lax",
                )
            else:
                response.set_cookie(
                    key=name,
                    value=value,
                    max_age=settings.auth_cookie_max_age,
                    path="/",
                    secure=settings.auth_cookie_secure,
                    httponly=True,
                    samesite="lax",
                )


def encode_cookie_value(value: str) -> str:
    encoded = base64.urlsafe_b64encode(value.encode("utf-8")).decode("ascii").rstrip("=")
    return f"{BASE64_PREFIX}{encoded}"


def decode_cookie_value(value: str) -> str:
    if not value.startswith(BASE64_PREFIX):
        return value
    raw = value[len(BASE64_PREFIX):]
    padded = raw + "=" * (-len(raw) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")


class CookieStorage(SyncSupportedStorage):
    """supabase_auth storage that keeps the session in (possibly chunked) cookies."""

    def __init__(self, jar: RequestCookieJar, prefix: str | None = None) -> None:
        self.jar = jar
        self.prefix = prefix if prefix is not None else get_settings().auth_cookie_prefix

    def cookie_name(self, key: str) -> str:
        return f"{self.prefix}{key.replace('.', '-')}"

    def _chunk_names(self, name: str) -> list[str]:
        chunks = []
        index = 0
        while self.jar.get(f"{name}.{index}") is not None:
            chunks.append(f"{name}.{index}")
            index += 1
        return chunks

    def get_item(self, key: str) -> str | None:
        name = self.cookie_name(key)
        value = self.jar.get(name)
        if value is None:
            chunks = self._chunk_names(name)
            if not chunks:
                return None
            value = "".join(self.jar.get(chunk) or "" for chunk in chunks)
        try:
            return decode_cookie_value(value)
        except ValueError:
            logger.warning("Discarding undecodable session cookie %s", name)
            return None

    def set_item(self, key: str, value: str) -> None:
        name = self.cookie_name(key)
        encoded = encode_cookie_value(value)
        stale = self._chunk_names(name)

        if len(encoded) <= MAX_CHUNK_SIZE:
            self.jar.set(name, encoded)
            for chunk in stale:
                self.jar.delete(chunk)
            return

        pieces = [encoded[i:i + MAX_CHUNK_SIZE] for i in range(0, len(encoded), MAX_CHUNK_SIZE)]
        for index, piece in enumerate(pieces):
            self.jar.set(f"{name}.{index}", piece)
        for chunk in stale[len(pieces):]:
            self.jar.delete(chunk)
        self.jar.delete(name)

    def remove_item(self, key: str) -> None:
        name = self.cookie_name(key)
        self.jar.delete(name)
        for chunk in self._chunk_names(name):
            self.jar.delete(chunk)

    def clear(self) -> None:
        """Remove every cookie this storage manages."""
        for name in self.jar.names():
            if name.startswith(self.prefix):
                self.jar.delete(name)
