"""Tests for logging configuration."""

import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from wikicore.logging_config import get_log_dir, setup_logging


class TestSetupLogging:
    """Tests for setup_logging function."""

    def test_creates_logger(self, temp_log_dir):
        """setup_logging should return the named logger."""
        logger = setup_logging(name="mass-delete", log_dir=str(temp_log_dir), console=False)
        assert isinstance(logger, logging.Logger)
        assert logger.name == "mass-delete"

    def test_includes_wiki_id_in_filename(self, temp_log_dir):
        """Log files are named {wiki_id}-{name}.log."""
        logger = setup_logging(name="mass-delete", wiki_id="commons", log_dir=str(temp_log_dir), console=False)
        logger.info("Test message")

        assert (temp_log_dir / "commons-mass-delete.log").exists()

    def test_respects_log_level(self, temp_log_dir):
        """Messages below the configured level are dropped."""
        logger = setup_logging(name="bot", log_dir=str(temp_log_dir), level=logging.WARNING, console=False)
        logger.debug("Debug message")
        logger.warning("Warning message")

        content = (temp_log_dir / "bot.log").read_text()
        assert "Debug message" not in content
        assert "Warning message" in content

    def test_library_messages_reach_bot_log(self, temp_log_dir):
        """Records from wikicore modules land in the bot's log file."""
        setup_logging(name="bot", log_dir=str(temp_log_dir), console=False)
        logging.getLogger("wikicore.actions").warning("edit retried")

        content = (temp_log_dir / "bot.log").read_text()
        assert "edit retried" in content
        assert "wikicore.actions" in content

    def test_library_not_attached_on_request(self, temp_log_dir):
        setup_logging(name="bot", log_dir=str(temp_log_dir), console=False, attach_library=False)
        logging.getLogger("wikicore.actions").error("not here")

        assert "not here" not in (temp_log_dir / "bot.log").read_text()

    def test_thread_name_in_format(self, temp_log_dir):
        """Worker thread names appear in each line."""
        logger = setup_logging(name="bot", log_dir=str(temp_log_dir), console=False)
        logger.info("hello")

        assert "MainThread" in (temp_log_dir / "bot.log").read_text()

    def test_reinitialization_replaces_handlers(self, temp_log_dir):
        """Calling setup_logging twice does not duplicate handlers."""
        setup_logging(name="bot", log_dir=str(temp_log_dir), console=False)
        logger = setup_logging(name="bot", log_dir=str(temp_log_dir))
        assert len(logger.handlers) == 2

    def test_quiets_urllib3(self, temp_log_dir):
        setup_logging(name="bot", log_dir=str(temp_log_dir), console=False)
        assert logging.getLogger("urllib3").level == logging.WARNING

    def test_creates_log_directory(self, tmp_path):
        """setup_logging should create the log directory if needed."""
        log_dir = tmp_path / "new_logs"
        setup_logging(name="bot", log_dir=str(log_dir), console=False)
        assert log_dir.exists()


class TestGetLogDir:
    """Tests for get_log_dir function."""

    def test_returns_default(self, monkeypatch):
        """get_log_dir should return default when LOG_DIR not set."""
        monkeypatch.delenv("LOG_DIR", raising=False)
        assert get_log_dir() == Path("./logs")

    def test_returns_env_var(self, monkeypatch):
        """get_log_dir should return LOG_DIR env var when set."""
        monkeypatch.setenv("LOG_DIR", "/var/log/wikibots")
        assert get_log_dir("/tmp/ignored") == Path("/var/log/wikibots")
