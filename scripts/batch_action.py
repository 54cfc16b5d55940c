#!/usr/bin/env python3
"""
Batch maintenance tool

Runs one mass operation over a list of titles read from a file (one title
per line) using the batch engine, then writes the titles that failed to
a file next to the input so they can be retried.

Usage:
    python scripts/batch_action.py delete titles.txt --reason "Housekeeping"
    python scripts/batch_action.py purge titles.txt --workers 5
    python scripts/batch_action.py upload files.txt --summary "Batch upload"

For "upload", each line is "<local path>|<target title>".
Credentials come from WIKI_USERNAME/WIKI_PASSWORD/WIKI_ENDPOINT unless
--credentials points at a JSON credentials file.
"""

import argparse
import sys
from pathlib import Path

# Add project root to path for the shared package
SCRIPT_DIR = Path(__file__).parent
PROJECT_ROOT = SCRIPT_DIR.parent
sys.path.insert(0, str(PROJECT_ROOT))

from wikicore import BatchRunner, EnvCredentials, JsonCredentials, Wiki, WikiError, load_settings
from wikicore.logging_config import get_log_dir, setup_logging

ACTIONS = ("delete", "undelete", "purge", "append", "upload")


def read_lines(path: Path) -> list[str]:
    """Read non-empty, non-comment lines from a file."""
    with open(path, "r", encoding="utf-8") as f:
        return [line.strip() for line in f if line.strip() and not line.startswith("#")]


def write_failures(path: Path, titles: list[str]) -> Path:
    out = path.with_suffix(".failed.txt")
    with open(out, "w", encoding="utf-8") as f:
        f.write("\n".join(titles) + "\n")
    return out


def parse_upload_lines(lines: list[str]) -> dict[str, str]:
    """
    Parse "<local path>|<target title>" lines.

    Raises:
        ValueError: If a line lacks the separator or either side is empty
    """
    files = {}
    for number, line in enumerate(lines, 1):
        path, sep, title = line.partition("|")
        if not sep or not path.strip() or not title.strip():
            raise ValueError(f"entry {number} is not '<local path>|<target title>': {line!r}")
        files[path.strip()] = title.strip()
    return files


def main(argv=None):
    parser = argparse.ArgumentParser(description="Run a mass operation over a list of titles")
    parser.add_argument("action", choices=ACTIONS, help="Operation to perform")
    parser.add_argument("titles", type=Path, help="File with one title per line")
    parser.add_argument("--reason", "--summary", dest="reason", default="", help="Edit summary or log reason")
    parser.add_argument("--text", default="", help="Text to append (append) or description page (upload)")
    parser.add_argument("--workers", type=int, help="Worker threads (default from config)")
    parser.add_argument("--config", type=Path, default=PROJECT_ROOT / "config.json", help="Settings file")
    parser.add_argument("--credentials", type=Path, help="JSON credentials file")
    parser.add_argument("--user", help="Account to use from the credentials file")
    args = parser.parse_args(argv)

    try:
        lines = read_lines(args.titles)
    except OSError as e:
        parser.error(f"cannot read {args.titles}: {e}")

    files = {}
    if args.action == "upload":
        try:
            files = parse_upload_lines(lines)
        except ValueError as e:
            parser.error(f"{args.titles}: {e}")

    settings = load_settings(args.config)
    creds_source = JsonCredentials(args.credentials) if args.credentials else EnvCredentials()
    creds = creds_source.get(args.user) if args.user else creds_source.default()

    logger = setup_logging(
        name=f"batch-{args.action}",
        wiki_id=creds.endpoint.split("/")[2],
        log_dir=str(get_log_dir()),
    )
    logger.info(f"{args.action}: {len(lines)} entries from {args.titles}")

    try:
        wiki = Wiki(creds.endpoint, creds.username, creds.password, settings=settings)
    except WikiError as e:
        logger.error(f"Could not connect: {e}")
        sys.exit(1)

    runner = BatchRunner(wiki, args.workers)
    if args.action == "delete":
        failed = runner.mass_delete(args.reason, lines)
    elif args.action == "undelete":
        failed = runner.mass_undelete(args.reason, lines)
    elif args.action == "purge":
        failed = runner.mass_purge(lines)
    elif args.action == "append":
        failed = runner.mass_edit(args.reason, lines, add=args.text)
    else:
        failed = runner.mass_upload(files, args.text, args.reason)

    if failed:
        out = write_failures(args.titles, [t.title for t in failed])
        logger.warning(f"{len(failed)} failed; titles written to {out}")
        sys.exit(2)
    logger.info("All done")


if __name__ == "__main__":
    main()
