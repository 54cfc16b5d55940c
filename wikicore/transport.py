#!/usr/bin/env python3
"""
HTTP transport for the MediaWiki action API.

The only component that touches the network. Every request goes to the
session's fixed endpoint with the session's cookies for that host and a
constant User-Agent; every Set-Cookie in the reply is merged back into the
session's cookie store.

Usage:
    from wikicore.session import Session
    from wikicore.transport import Transport

    transport = Transport(Session("https://commons.wikimedia.org/w/api.php"))
    data = transport.get({"action": "query", "meta": "siteinfo"}).json()
"""

import json
import logging
import time
from dataclasses import dataclass, field
from http.cookiejar import DefaultCookiePolicy
from typing import Optional

import requests
from requests.structures import CaseInsensitiveDict

from wikicore.config import Settings
from wikicore.errors import TransportError
from wikicore.session import Session

RETRYABLE_STATUS = frozenset({429})


@dataclass
class ApiResponse:
    """Status, body and headers of one completed request."""

    status: int
    body: str
    headers: dict = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def json(self) -> dict:
        """
        Parse the body as a JSON object.

        Raises:
            TransportError: If the body is not a JSON object
        """
        try:
            data = json.loads(self.body)
        except ValueError as e:
            raise TransportError(f"Response is not JSON (HTTP {self.status}): {e}", self.status) from e
        if not isinstance(data, dict):
            raise TransportError(f"Expected a JSON object, got {type(data).__name__}", self.status)
        return data

    @property
    def retry_after(self) -> Optional[float]:
        """Seconds the server asked us to wait, if it sent Retry-After."""
        value = self.headers.get("Retry-After")
        try:
            return float(value) if value is not None else None
        except ValueError:
            return None


class Transport:
    """GET, form POST and multipart POST against one session's endpoint."""

    def __init__(
        self,
        session: Session,
        settings: Optional[Settings] = None,
        http: Optional[requests.Session] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the transport.

        Args:
            session: Session providing the endpoint and cookie store
            settings: Client settings (timeouts, retries, user agent)
            http: requests.Session to reuse for connection pooling
            logger: Logger instance (creates one if not provided)
        """
        self.session = session
        self.settings = settings or Settings()
        self.logger = logger or logging.getLogger(f"{__name__}.{session.hostname}")

        self.http = http or requests.Session()
        self.http.headers.update({
            "User-Agent": self.settings.user_agent,
            "Accept": "application/json",
        })
        # Cookies live in the session's store; the requests jar keeps none.
        self.http.cookies.set_policy(DefaultCookiePolicy(allowed_domains=[]))

    def _send(self, method: str, params: dict, description: str, **kwargs) -> ApiResponse:
        if self.settings.delay:
            time.sleep(self.settings.delay)

        try:
            response = self.http.request(
                method,
                self.session.endpoint,
                params=params,
                cookies=self.session.cookies.for_host(self.session.hostname),
                timeout=self.settings.timeout,
                **kwargs,
            )
        except requests.RequestException as e:
            raise TransportError(f"{description} failed: {e}") from e

        self.session.cookies.update(self.session.hostname, response.cookies.items())
        self.logger.debug(f"{method} {description} -> HTTP {response.status_code}")
        return ApiResponse(response.status_code, response.text, CaseInsensitiveDict(response.headers))

    def get(self, params: dict, description: str = "API request") -> ApiResponse:
        """
        Make a GET request, retrying network failures and server errors.

        HTTP 429 and 5xx replies are retried like a dropped connection; a
        429's Retry-After replaces the usual delay.

        Args:
            params: Query parameters for the API call
            description: Human-readable description for logging

        Returns:
            The first response that was neither a network failure nor a
            429/5xx reply

        Raises:
            TransportError: If every attempt failed
        """
        attempts = max(1, self.settings.max_retries)
        for attempt in range(attempts):
            delay = self.settings.retry_delay
            try:
                response = self._send("GET", params, description)
                if response.status in RETRYABLE_STATUS or response.status >= 500:
                    if response.retry_after is not None:
                        delay = response.retry_after
                    raise TransportError(f"{description} got HTTP {response.status}", response.status)
                return response
            except TransportError as e:
                self.logger.warning(f"Attempt {attempt + 1}/{attempts} failed for {description}: {e}")
                if attempt < attempts - 1:
                    time.sleep(delay)
                else:
                    self.logger.error(f"FAILED after {attempts} attempts: {description}")
                    raise

    def post(self, params: dict, form: dict, description: str = "API action") -> ApiResponse:
        """Make a single form-encoded POST; retries belong to the caller."""
        return self._send("POST", params, description, data=form)

    def post_multipart(
        self,
        params: dict,
        form: dict,
        filename: str,
        chunk: bytes,
        description: str = "chunk upload",
    ) -> ApiResponse:
        """
        Make a single multipart POST carrying ``chunk`` as the "chunk" file part.

        Args:
            params: Query-string parameters (usually just the action)
            form: Text form fields
            filename: Filename reported for the binary part
            chunk: Raw bytes of this chunk
        """
        files = {"chunk": (filename, chunk, "application/octet-stream")}
        return self._send("POST", params, description, data=form, files=files)

    def close(self) -> None:
        self.http.close()
