#!/usr/bin/env python3
"""
Logging configuration for wikicore bots.

Sets up logging to both console and a rotating file. Library modules log
under the ``wikicore`` hierarchy; a bot calls ``setup_logging`` once with
its own name and passes ``attach_library=True`` (the default) so request
and retry messages from the library land in the same file.

Usage:
    from wikicore.logging_config import setup_logging

    logger = setup_logging(
        name="mass-delete",
        wiki_id="commons",
        log_dir="/var/log",  # Optional, defaults to ./logs
    )
    logger.info("Starting batch...")
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

LIBRARY_LOGGER = "wikicore"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(threadName)s %(name)s: %(message)s"


def setup_logging(
    name: str,
    wiki_id: Optional[str] = None,
    log_dir: Optional[str] = None,
    level: int = logging.INFO,
    max_bytes: int = 10 * 1024 * 1024,  # 10 MB
    backup_count: int = 5,
    console: bool = True,
    attach_library: bool = True,
    quiet_http: bool = True,
) -> logging.Logger:
    """
    Set up logging to console and file.

    Args:
        name: Logger name (used in log filename)
        wiki_id: Wiki identifier for log filename (e.g., "commons")
        log_dir: Directory for log files (default: ./logs or LOG_DIR env var)
        level: Logging level (default: INFO)
        max_bytes: Max log file size before rotation
        backup_count: Number of rotated log files to keep
        console: Whether to also log to console
        attach_library: Also route the ``wikicore`` loggers to these handlers
        quiet_http: Raise urllib3's level to WARNING to hide connection noise

    Returns:
        Configured logger instance

    Log files are named: {wiki_id}-{name}.log (e.g., commons-mass-delete.log)
    """
    log_path = get_log_dir() if log_dir is None else Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    if wiki_id:
        log_filename = f"{wiki_id}-{name}.log"
    else:
        log_filename = f"{name}.log"

    log_file = log_path / log_filename

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)

    handlers = [file_handler]
    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    targets = [logging.getLogger(name)]
    if attach_library and name != LIBRARY_LOGGER:
        targets.append(logging.getLogger(LIBRARY_LOGGER))

    for target in targets:
        target.setLevel(level)
        # Clear any existing handlers (for re-initialization)
        target.handlers.clear()
        for handler in handlers:
            target.addHandler(handler)
        target.propagate = False

    if quiet_http:
        logging.getLogger("urllib3").setLevel(logging.WARNING)

    logger = targets[0]
    logger.info(f"Logging initialized: {log_file}")
    return logger


def get_log_dir(default: str = "./logs") -> Path:
    """
    Get the log directory from environment or default.

    Checks LOG_DIR environment variable first.
    """
    return Path(os.environ.get("LOG_DIR", default))
