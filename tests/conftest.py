"""Pytest configuration and shared fixtures."""

import json
import logging
import sys
from pathlib import Path
from unittest.mock import Mock

import pytest

# Add project root to path for all tests
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from wikicore.config import Settings
from wikicore.session import Session
from wikicore.transport import Transport

ENDPOINT = "https://commons.example.org/w/api.php"


def make_response(data=None, status=200, headers=None, cookies=None, text=None):
    """Build a fake requests.Response carrying ``data`` as its JSON body."""
    response = Mock()
    response.status_code = status
    response.text = text if text is not None else json.dumps(data if data is not None else {})
    response.headers = headers or {}
    response.cookies = cookies or {}
    return response


@pytest.fixture(autouse=True)
def reset_library_logger():
    """Undo setup_logging's handlers so caplog keeps seeing library records."""
    yield
    library = logging.getLogger("wikicore")
    library.handlers.clear()
    library.propagate = True
    library.setLevel(logging.NOTSET)


@pytest.fixture
def temp_log_dir(tmp_path):
    """Provide a temporary directory for log files."""
    log_dir = tmp_path / "logs"
    log_dir.mkdir()
    return log_dir


@pytest.fixture
def settings():
    """Settings with retries on but no real waiting."""
    return Settings(retry_delay=0.0, rate_limit_backoff=0.0)


@pytest.fixture
def session():
    return Session(ENDPOINT)


@pytest.fixture
def http():
    """A stand-in requests.Session; tests script ``http.request``."""
    return Mock()


@pytest.fixture
def transport(session, settings, http):
    return Transport(session, settings, http)


@pytest.fixture
def siteinfo():
    """Sample siteinfo response with namespaces and aliases (formatversion=2)."""
    return {
        "query": {
            "namespaces": {
                "-2": {"id": -2, "name": "Media", "canonical": "Media"},
                "-1": {"id": -1, "name": "Special", "canonical": "Special"},
                "0": {"id": 0, "name": ""},
                "1": {"id": 1, "name": "Talk", "canonical": "Talk"},
                "2": {"id": 2, "name": "User", "canonical": "User"},
                "3": {"id": 3, "name": "User talk", "canonical": "User talk"},
                "4": {"id": 4, "name": "Commons", "canonical": "Project"},
                "5": {"id": 5, "name": "Commons talk", "canonical": "Project talk"},
                "6": {"id": 6, "name": "File", "canonical": "File"},
                "7": {"id": 7, "name": "File talk", "canonical": "File talk"},
                "10": {"id": 10, "name": "Template", "canonical": "Template"},
                "11": {"id": 11, "name": "Template talk", "canonical": "Template talk"},
                "14": {"id": 14, "name": "Category", "canonical": "Category"},
                "15": {"id": 15, "name": "Category talk", "canonical": "Category talk"},
            },
            "namespacealiases": [
                {"id": 6, "alias": "Image"},
                {"id": 7, "alias": "Image talk"},
                {"id": 4, "alias": "COM"},
            ],
        }
    }
