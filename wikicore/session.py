#!/usr/bin/env python3
"""
Per-connection state shared by every component talking to one wiki.

A Session holds the endpoint, the logged-in identity, the CSRF token and
the cookie store. Worker threads read it constantly and write it rarely
(login, token refresh), so the token and the cookies each have a lock
scoped to the single read or update.
"""

import logging
import threading
from typing import Callable, Iterable, Optional
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)

ANONYMOUS_TOKEN = "+\\"
SSO_COOKIE_MARKER = "centralauth"


class CookieStore:
    """Cookies keyed by host, last write wins per cookie name."""

    def __init__(self):
        self._lock = threading.Lock()
        self._jar: dict[str, dict[str, str]] = {}

    def for_host(self, host: str) -> dict[str, str]:
        """Return a snapshot of the cookies stored for ``host``."""
        with self._lock:
            return dict(self._jar.get(host, {}))

    def update(self, host: str, cookies: Iterable[tuple[str, str]]) -> None:
        """Merge name/value pairs into the cookies for ``host``."""
        with self._lock:
            self._jar.setdefault(host, {}).update(cookies)

    def copy_matching(self, source: str, target: str, marker: str) -> list[str]:
        """Copy cookies of ``source`` whose name contains ``marker`` to ``target``."""
        with self._lock:
            shared = {k: v for k, v in self._jar.get(source, {}).items() if marker in k}
            self._jar.setdefault(target, {}).update(shared)
        return sorted(shared)

    def clear(self, host: Optional[str] = None) -> None:
        with self._lock:
            if host is None:
                self._jar.clear()
            else:
                self._jar.pop(host, None)

    def hosts(self) -> list[str]:
        with self._lock:
            return sorted(self._jar)


class Session:
    """Identity, token and cookies for one logical wiki connection."""

    def __init__(self, endpoint: str, cookies: Optional[CookieStore] = None):
        """
        Args:
            endpoint: Full action API URL (e.g., https://commons.wikimedia.org/w/api.php)
            cookies: Cookie store to share with other sessions (single sign-on)
        """
        parts = urlsplit(endpoint)
        if not parts.scheme or not parts.hostname:
            raise ValueError(f"Not an absolute API URL: {endpoint!r}")

        self.endpoint = endpoint
        self.hostname = parts.hostname
        self.cookies = cookies if cookies is not None else CookieStore()

        self.username: Optional[str] = None
        self.groups: list[str] = []
        self.is_bot = False

        self._token = ANONYMOUS_TOKEN
        self._token_lock = threading.RLock()

    def __repr__(self) -> str:
        return f"[{self.username or '<Anonymous>'} @ {self.hostname}]"

    @property
    def token(self) -> str:
        with self._token_lock:
            return self._token

    @token.setter
    def token(self, value: str) -> None:
        with self._token_lock:
            self._token = value

    @property
    def logged_in(self) -> bool:
        return self.username is not None

    def set_identity(self, username: Optional[str], groups: Optional[list[str]] = None) -> None:
        self.username = username
        self.groups = list(groups or [])
        self.is_bot = "bot" in self.groups

    def refresh_token(self, fetch: Callable[[], Optional[str]], stale: Optional[str] = None) -> str:
        """
        Replace the token using ``fetch``, once per stale token.

        Concurrent callers that saw the same stale token queue on the lock;
        the first one fetches, the rest find the token already replaced and
        return it without another request.

        Args:
            fetch: Callable performing the token query; returns None on failure
            stale: The token the caller was using when the server rejected it

        Returns:
            The current token (unchanged if ``fetch`` failed)
        """
        with self._token_lock:
            if stale is not None and self._token != stale:
                return self._token

            new_token = fetch()
            if new_token:
                self._token = new_token
                logger.info(f"{self}: refreshed CSRF token")
            else:
                logger.warning(f"{self}: token refresh failed; keeping the old token")
            return self._token

    def derive(self, endpoint: str) -> "Session":
        """
        Create a session for another host under the same identity.

        Shares the cookie store and copies only the cross-domain
        authentication cookies to the new host. The derived session has no
        token yet; the caller must fetch one.
        """
        derived = Session(endpoint, cookies=self.cookies)
        copied = self.cookies.copy_matching(self.hostname, derived.hostname, SSO_COOKIE_MARKER)
        derived.set_identity(self.username)
        logger.debug(f"{self}: derived {derived} with cookies {copied}")
        return derived
