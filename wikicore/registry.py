#!/usr/bin/env python3
"""
Cache of logged-in Wiki connections keyed by identity and host.

The first request for a user logs in against the credentials' endpoint;
requests for the same user on another host derive a connection from the
first one through single sign-on instead of logging in again.
"""

import logging
import threading
from typing import Optional, Union
from urllib.parse import urlsplit

from wikicore.config import EnvCredentials, JsonCredentials, Settings
from wikicore.wiki import Wiki

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Hands out one shared Wiki per (username, host)."""

    def __init__(
        self,
        credentials: Union[EnvCredentials, JsonCredentials],
        settings: Optional[Settings] = None,
    ):
        self.credentials = credentials
        self.settings = settings or Settings()
        self._lock = threading.Lock()
        self._cache: dict[tuple[str, str], Wiki] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def _open(self, username: str, password: str, endpoint: str) -> Wiki:
        return Wiki(endpoint, username, password, settings=self.settings)

    def get(self, username: Optional[str] = None, endpoint: Optional[str] = None) -> Wiki:
        """
        Return a logged-in Wiki, creating it on first use.

        Args:
            username: Account to use; the credential source's default if None
            endpoint: API URL; the account's home endpoint if None

        Raises:
            ConfigError: If no credentials exist for ``username``
            LoginError: If login or single sign-on failed
        """
        creds = self.credentials.get(username) if username else self.credentials.default()
        endpoint = endpoint or creds.endpoint
        host = urlsplit(endpoint).hostname
        home_host = urlsplit(creds.endpoint).hostname

        with self._lock:
            key = (creds.username, host)
            if key in self._cache:
                return self._cache[key]

            home = self._cache.get((creds.username, home_host))
            if home is None:
                home = self._open(creds.username, creds.password, creds.endpoint)
                self._cache[(creds.username, home_host)] = home
            if host == home_host:
                return home

            logger.info(f"{home}: deriving session for {host}")
            wiki = home.derive(endpoint)
            self._cache[key] = wiki
            return wiki

    def discard(self, username: str, endpoint: str) -> None:
        with self._lock:
            self._cache.pop((username, urlsplit(endpoint).hostname), None)

    def clear(self) -> None:
        with self._lock:
            for wiki in self._cache.values():
                wiki.transport.close()
            self._cache.clear()
