"""
Client core for MediaWiki maintenance bots.

Provides:
- Wiki: logged-in connection with reads, edits, deletions and chunked uploads
- SessionRegistry: cache of Wiki connections per user and host
- run_batch/BatchRunner: run many per-title tasks over a worker pool
- load_settings/EnvCredentials/JsonCredentials: configuration sources
- setup_logging: Logging configuration for console and file output
"""

from wikicore.actions import ActionResult, Outcome, RetryPolicy
from wikicore.batch import BatchRunner, Task, run_batch
from wikicore.config import Credentials, EnvCredentials, JsonCredentials, Settings, load_settings
from wikicore.errors import ConfigError, LoginError, PartialUploadFailure, TransportError, WikiError
from wikicore.logging_config import get_log_dir, setup_logging
from wikicore.namespaces import NS, NamespaceTable
from wikicore.registry import SessionRegistry
from wikicore.wiki import Wiki

__all__ = [
    "Wiki",
    "SessionRegistry",
    "run_batch",
    "BatchRunner",
    "Task",
    "ActionResult",
    "Outcome",
    "RetryPolicy",
    "NS",
    "NamespaceTable",
    "Settings",
    "Credentials",
    "load_settings",
    "EnvCredentials",
    "JsonCredentials",
    "setup_logging",
    "get_log_dir",
    "WikiError",
    "TransportError",
    "LoginError",
    "ConfigError",
    "PartialUploadFailure",
]
