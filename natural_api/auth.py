"""Auth - Token providers and Authorization header resolution.

Resolution has two outcomes per exchange:

- Suppressed: the request opted out with without_auth(). The provider is
  never called. An Authorization header set explicitly on the request is
  left alone; suppression only prevents adding one.
- Resolved: a provider is available. The provider's token, if non-empty,
  becomes "Authorization: Bearer <token>".

An Authorization header already present on the request (from using_auth,
using_token or with_header) wins over the provider.
"""

from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Callable

AUTHORIZATION = "Authorization"


class AuthProvider(ABC):
    """Resolves a bearer token, optionally scoped to a username/password.

    Returning None or an empty string means "add no Authorization header"
    and is not an error.
    """

    @abstractmethod
    def get_token(self, username: str | None = None, password: str | None = None) -> str | None:
        """Return a token for the given identity, or None."""


class StaticTokenProvider(AuthProvider):
    """Returns the same token for every identity."""

    def __init__(self, token: str | None) -> None:
        self._token = token

    def get_token(self, username: str | None = None, password: str | None = None) -> str | None:
        return self._token


class CachingAuthProvider(AuthProvider):
    """Caches tokens per identity until they are about to expire.

    Usage:
        def fetch(username, password):
            resp = httpx.post(TOKEN_URL, data={"username": username, "password": password})
            payload = resp.json()
            return payload["access_token"], payload["expires_in"]

        provider = CachingAuthProvider(fetch)
    """

    def __init__(
        self,
        fetch: Callable[[str | None, str | None], tuple[str | None, float]],
        refresh_margin: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the provider.

        Args:
            fetch: Called with (username, password); returns (token, lifetime in seconds).
            refresh_margin: Seconds before expiry at which a cached token is refetched.
            clock: Monotonic time source.
        """
        self._fetch = fetch
        self._refresh_margin = refresh_margin
        self._clock = clock
        self._cache: dict[tuple[str | None, str | None], tuple[str | None, float]] = {}
        self._lock = threading.Lock()

    def get_token(self, username: str | None = None, password: str | None = None) -> str | None:
        key = (username, password)
        with self._lock:
            cached = self._cache.get(key)
            now = self._clock()
            if cached is not None and now < cached[1]:
                return cached[0]

            token, lifetime = self._fetch(username, password)
            self._cache[key] = (token, now + max(lifetime - self._refresh_margin, 0.0))
            return token

    def invalidate(self, username: str | None = None, password: str | None = None) -> None:
        """Drop the cached token for one identity."""
        with self._lock:
            self._cache.pop((username, password), None)


def format_auth_value(scheme_or_token: str) -> str:
    """Build an Authorization value.

    A value containing a space already carries its scheme and is used
    verbatim; a bare token is sent as a Bearer token.
    """
    if not isinstance(scheme_or_token, str) or not scheme_or_token.strip():
        raise ValueError("Authentication scheme or token cannot be null or empty")
    if " " in scheme_or_token:
        return scheme_or_token
    return f"Bearer {scheme_or_token}"


def has_authorization(headers: Mapping[str, str]) -> bool:
    """Whether headers already carry an Authorization header (case-insensitive)."""
    return any(key.lower() == "authorization" for key in headers)


def resolve_auth_header(
    headers: Mapping[str, str],
    auth_provider: AuthProvider | None,
    username: str | None,
    password: str | None,
    suppress_auth: bool,
) -> str | None:
    """Return the Authorization value to add to a request, or None to add nothing."""
    if suppress_auth or auth_provider is None:
        return None
    if has_authorization(headers):
        return None

    token = auth_provider.get_token(username, password)
    if not token:
        return None
    return f"Bearer {token}"
