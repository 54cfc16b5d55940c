"""Tests for the batch_action script's input handling."""

import sys
from pathlib import Path

import pytest

# Add project root and scripts to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))
sys.path.insert(0, str(PROJECT_ROOT / "scripts"))

import batch_action


class TestParseUploadLines:
    """Tests for parse_upload_lines."""

    def test_parses_entries(self):
        """Each line maps a local path to its target title."""
        files = batch_action.parse_upload_lines(["a.png|File:A.png", " b.jpg | B.jpg "])
        assert files == {"a.png": "File:A.png", "b.jpg": "B.jpg"}

    def test_title_may_contain_separator(self):
        """Only the first "|" splits the line."""
        assert batch_action.parse_upload_lines(["a.png|A|B.png"]) == {"a.png": "A|B.png"}

    @pytest.mark.parametrize("line", ["a.png", "|File:A.png", "a.png|", "a.png|  "])
    def test_malformed_entry(self, line):
        """Lines without both a path and a title are rejected."""
        with pytest.raises(ValueError, match="entry 2"):
            batch_action.parse_upload_lines(["ok.png|Ok.png", line])


class TestMain:
    """Tests for argument and input validation in main."""

    def test_malformed_upload_file_is_usage_error(self, tmp_path, monkeypatch, capsys):
        """A bad upload list stops with a usage error before connecting."""
        for name in ("WIKI_USERNAME", "WIKI_PASSWORD", "WIKI_ENDPOINT"):
            monkeypatch.delenv(name, raising=False)
        listing = tmp_path / "files.txt"
        listing.write_text("a.png|File:A.png\nb.png\n")

        with pytest.raises(SystemExit) as exc_info:
            batch_action.main(["upload", str(listing), "--config", str(tmp_path / "none.json")])

        assert exc_info.value.code == 2
        assert "entry 2" in capsys.readouterr().err

    def test_missing_titles_file_is_usage_error(self, tmp_path, capsys):
        with pytest.raises(SystemExit) as exc_info:
            batch_action.main(["delete", str(tmp_path / "missing.txt")])

        assert exc_info.value.code == 2
        assert "cannot read" in capsys.readouterr().err

    def test_comments_and_blank_lines_skipped(self, tmp_path):
        listing = tmp_path / "titles.txt"
        listing.write_text("# header\nA\n\n  B  \n")
        assert batch_action.read_lines(listing) == ["A", "B"]
