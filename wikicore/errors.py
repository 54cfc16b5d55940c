#!/usr/bin/env python3
"""
Exception types raised by wikicore.

Operational failures of mutating calls (rate limiting, protection, bad
tokens) are not exceptions: they are reported as ``Outcome`` values on an
``ActionResult``. The exceptions here cover the transport layer, login,
configuration, and an aborted chunked upload.
"""


class WikiError(Exception):
    """Base class for all wikicore errors."""


class TransportError(WikiError):
    """A request could not be completed or its body could not be parsed."""

    def __init__(self, message: str, status: int = None):
        super().__init__(message)
        self.status = status


class LoginError(WikiError):
    """Login or post-login setup (token, namespaces) failed."""


class ConfigError(WikiError):
    """Configuration could not be loaded or contains invalid values."""


class PartialUploadFailure(WikiError):
    """A chunked upload was abandoned before every chunk was stashed."""

    def __init__(self, message: str, offset: int = 0, filekey: str = None):
        super().__init__(message)
        self.offset = offset
        self.filekey = filekey
