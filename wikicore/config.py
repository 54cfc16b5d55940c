#!/usr/bin/env python3
"""
Configuration and credential sources.

Client settings come from the ``"client"`` section of a JSON config file
(see config.example.json) with ``WIKICORE_*`` environment variables taking
precedence. Credentials come from a separate source so bot scripts never
hardcode passwords.

Usage:
    from wikicore.config import load_settings, EnvCredentials

    settings = load_settings("config.json")
    creds = EnvCredentials().default()
"""

import json
import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Optional, Union

from wikicore.errors import ConfigError

logger = logging.getLogger(__name__)

ENV_PREFIX = "WIKICORE_"
DEFAULT_USER_AGENT = "wikicore/1.0 (maintenance bot framework; python-requests)"


@dataclass(frozen=True)
class Settings:
    """Tunable client behaviour shared by every component of one wiki."""

    user_agent: str = DEFAULT_USER_AGENT
    timeout: float = 60.0
    max_retries: int = 3
    retry_delay: float = 5.0
    delay: float = 0.0
    chunk_size: int = 4 * 1024 * 1024  # 4 MiB
    max_workers: int = 20
    rate_limit_backoff: float = 10.0
    max_result_limit: int = 500
    script_path: str = "w/api.php"
    scheme: str = "https"

    def with_overrides(self, **changes) -> "Settings":
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)


@dataclass(frozen=True)
class Credentials:
    """A username/password pair and the endpoint it logs in to."""

    username: str
    password: str
    endpoint: str

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, endpoint={self.endpoint!r})"


def _coerce(name: str, raw, target_type):
    try:
        if target_type is bool:
            return str(raw).lower() in ("1", "true", "yes")
        return target_type(raw)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value for {name}: {raw!r}") from e


def load_settings(path: Optional[Union[str, Path]] = None) -> Settings:
    """
    Load client settings from a JSON file and the environment.

    Args:
        path: JSON config file; a missing file is not an error

    Returns:
        Settings with file values applied, then WIKICORE_* overrides

    Raises:
        ConfigError: If the file is not valid JSON or a value has the wrong type
    """
    values = {}
    if path is not None:
        config_path = Path(path)
        if config_path.exists():
            try:
                with open(config_path, "r", encoding="utf-8") as f:
                    data = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigError(f"Malformed config file {config_path}: {e}") from e
            values.update(data.get("client", {}))
            logger.debug(f"Loaded settings from {config_path}")
        else:
            logger.debug(f"No config file at {config_path}; using defaults")

    known = {f.name: f.type for f in fields(Settings)}
    unknown = set(values) - set(known)
    if unknown:
        raise ConfigError(f"Unknown client settings: {', '.join(sorted(unknown))}")

    for name in known:
        env_value = os.environ.get(ENV_PREFIX + name.upper())
        if env_value is not None:
            values[name] = env_value

    defaults = Settings()
    coerced = {
        name: _coerce(name, value, type(getattr(defaults, name)))
        for name, value in values.items()
    }
    settings = Settings(**coerced)

    if settings.chunk_size <= 0 or settings.max_workers <= 0:
        raise ConfigError("chunk_size and max_workers must be positive")
    return settings


def endpoint_for(domain: str, settings: Optional[Settings] = None) -> str:
    """Build the action API URL for a bare domain such as "en.wikipedia.org"."""
    settings = settings or Settings()
    return f"{settings.scheme}://{domain}/{settings.script_path}"


class EnvCredentials:
    """
    Credentials from environment variables.

    Reads WIKI_USERNAME, WIKI_PASSWORD and WIKI_ENDPOINT. Only one identity
    is available; asking for any other username is an error.
    """

    def __init__(self, environ: Optional[dict] = None):
        self.environ = os.environ if environ is None else environ

    def default(self) -> Credentials:
        try:
            return Credentials(
                username=self.environ["WIKI_USERNAME"],
                password=self.environ["WIKI_PASSWORD"],
                endpoint=self.environ["WIKI_ENDPOINT"],
            )
        except KeyError as e:
            raise ConfigError(f"{e.args[0]} is not set") from e

    def get(self, username: str) -> Credentials:
        creds = self.default()
        if creds.username != username:
            raise ConfigError(f"No credentials for {username} in the environment")
        return creds


class JsonCredentials:
    """
    Credentials from a JSON file.

    Expected shape::

        {"default": "ExampleBot",
         "accounts": {"ExampleBot": {"password": "...",
                                     "endpoint": "https://example.org/w/api.php"}}}
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                self.data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Cannot read credentials from {self.path}: {e}") from e

    def get(self, username: str) -> Credentials:
        account = self.data.get("accounts", {}).get(username)
        if account is None:
            raise ConfigError(f"No credentials for {username} in {self.path}")
        try:
            return Credentials(username, account["password"], account["endpoint"])
        except KeyError as e:
            raise ConfigError(f"Account {username} is missing {e.args[0]}") from e

    def default(self) -> Credentials:
        username = self.data.get("default")
        if not username:
            raise ConfigError(f"No default account in {self.path}")
        return self.get(username)
