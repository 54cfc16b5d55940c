#!/usr/bin/env python3
"""
Wiki: the public entry point bots use for one wiki connection.

Bundles a Session, its Transport, the namespace table, the query engine
and the action engine behind read and write methods that return plain
values (lists, strings, bools).

Usage:
    from wikicore import Wiki

    wiki = Wiki("https://commons.wikimedia.org/w/api.php", "ExampleBot", "hunter2")
    text = wiki.page_text("User:ExampleBot/Sandbox")
    wiki.edit("User:ExampleBot/Sandbox", text + "\\nHello", "test edit")
"""

import logging
import re
import threading
from pathlib import Path
from typing import Optional, Union

import requests

from wikicore import query as q
from wikicore.actions import ActionEngine, ActionResult, RetryPolicy, EDIT_POLICY
from wikicore.config import Settings
from wikicore.errors import LoginError, TransportError
from wikicore.namespaces import NS, NamespaceRef, NamespaceTable
from wikicore.session import ANONYMOUS_TOKEN, Session
from wikicore.transport import Transport
from wikicore.upload import ChunkedUpload

logger = logging.getLogger(__name__)

LOGIN_POLICY = RetryPolicy(max_attempts=1)


def revision_text(revision: dict) -> Optional[str]:
    """Wikitext of a revision entry, from its main slot."""
    slot = revision.get("slots", {}).get("main", revision)
    return slot.get("content")


def _missing(page: dict) -> bool:
    return bool(page.get("missing") or page.get("invalid"))


class Wiki:
    """Read and write access to one MediaWiki site under one identity."""

    def __init__(
        self,
        endpoint: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        settings: Optional[Settings] = None,
        session: Optional[Session] = None,
        http: Optional[requests.Session] = None,
    ):
        """
        Initialize the wiki connection, logging in if credentials are given.

        Args:
            endpoint: Full action API URL (e.g., https://en.wikipedia.org/w/api.php)
            username: Account to log in as
            password: Password (or bot password) for ``username``
            settings: Client settings; defaults to Settings()
            session: Existing session to wrap (used for single sign-on)
            http: requests.Session to send requests with

        Raises:
            LoginError: If credentials were given and login failed
        """
        self.settings = settings or Settings()
        self.session = session or Session(endpoint)
        self.transport = Transport(self.session, self.settings, http)
        self.engine = ActionEngine(self.session, self.transport, self.fetch_token)

        self._namespaces: Optional[NamespaceTable] = None
        self._ns_lock = threading.Lock()

        if username and password and not self.login(username, password):
            raise LoginError(f"Could not log in as {username} @ {self.session.hostname}")

    def __repr__(self) -> str:
        return repr(self.session)

    ##################################################################
    # Authentication and session state
    ##################################################################

    def login(self, username: str, password: str) -> bool:
        """
        Log in and fetch the CSRF token, namespaces and user groups.

        Returns:
            True if the server accepted the credentials and setup succeeded
        """
        logger.info(f"{self}: Logging in as {username}")
        try:
            data = q.single_query(self.transport, q.TOKENS_LOGIN, "fetching login token")
        except TransportError as e:
            logger.error(f"{self}: could not fetch login token: {e}")
            return False

        login_token = data.get("query", {}).get("tokens", {}).get("logintoken")
        if not login_token:
            logger.error(f"{self}: server returned no login token")
            return False

        result = self.engine.submit(
            "login",
            {"lgname": username, "lgpassword": password, "lgtoken": login_token},
            LOGIN_POLICY,
            needs_token=False,
            description=f"{self}: login as {username}",
        )
        if not result.ok:
            logger.error(f"{self}: Failed to log in as '{username}' ({result.code})")
            return False

        if not self.setup():
            return False
        logger.info(f"{self}: Successfully logged in as '{username}'")
        return True

    def setup(self) -> bool:
        """Fetch namespaces, CSRF token and identity in one query."""
        try:
            data = q.single_query(
                self.transport,
                {
                    "meta": "siteinfo|tokens|userinfo",
                    "siprop": "namespaces|namespacealiases",
                    "type": "csrf",
                    "uiprop": "groups",
                },
                "fetching namespaces and tokens",
            )
        except TransportError as e:
            logger.error(f"{self}: setup failed: {e}")
            return False

        result = data.get("query", {})
        userinfo = result.get("userinfo", {})
        with self._ns_lock:
            self._namespaces = NamespaceTable.from_siteinfo(data)
        self.session.set_identity(
            None if "anon" in userinfo else userinfo.get("name"),
            userinfo.get("groups", []),
        )
        self.session.token = result.get("tokens", {}).get("csrftoken", ANONYMOUS_TOKEN)
        return self.session.token != ANONYMOUS_TOKEN or not self.session.logged_in

    def fetch_token(self) -> Optional[str]:
        """Query a fresh CSRF token; None if the request failed."""
        try:
            data = q.single_query(self.transport, q.TOKENS_CSRF, "fetching csrf token")
        except TransportError as e:
            logger.error(f"{self}: could not fetch token: {e}")
            return None
        return data.get("query", {}).get("tokens", {}).get("csrftoken")

    def refresh_token(self, stale: Optional[str] = None) -> str:
        return self.engine.refresh_token(stale)

    def whoami(self) -> Optional[str]:
        """The username the server associates with our cookies, None if anonymous."""
        data = q.single_query(self.transport, q.USERINFO, "whoami")
        userinfo = data.get("query", {}).get("userinfo", {})
        return None if "anon" in userinfo else userinfo.get("name")

    def derive(self, endpoint: str) -> "Wiki":
        """
        Open another wiki under the same identity using single sign-on cookies.

        Raises:
            LoginError: If the other wiki did not accept the shared cookies
        """
        derived = Wiki(
            endpoint,
            settings=self.settings,
            session=self.session.derive(endpoint),
            http=self.transport.http,
        )
        if (
            not derived.setup()
            or not derived.session.logged_in
            or derived.session.username != self.session.username
        ):
            raise LoginError(f"{self}: single sign-on to {derived.session.hostname} failed")
        return derived

    ##################################################################
    # Namespaces
    ##################################################################

    @property
    def namespaces(self) -> NamespaceTable:
        """The namespace table, fetched on first use."""
        with self._ns_lock:
            if self._namespaces is None:
                data = q.single_query(self.transport, q.NAMESPACES, "fetching namespaces")
                self._namespaces = NamespaceTable.from_siteinfo(data)
            return self._namespaces

    def strip_namespace(self, title: str) -> str:
        return self.namespaces.strip_namespace(title)

    def namespace_of(self, title: str) -> int:
        return self.namespaces.namespace_of(title)

    def ensure_in_namespace(self, title: str, ns: NamespaceRef) -> str:
        return self.namespaces.ensure_in_namespace(title, ns)

    def filter_by_namespace(self, titles: list[str], *ns: NamespaceRef) -> list[str]:
        return self.namespaces.filter_titles(titles, *ns)

    def _ns_filter(self, ns: tuple) -> Optional[str]:
        return "|".join(str(self.namespaces.id_of(n)) for n in ns) if ns else None

    ##################################################################
    # Reads
    ##################################################################

    def page_text(self, title: str) -> Optional[str]:
        """
        Fetch the current wikitext of a page.

        Returns:
            The text, or None if the page does not exist
        """
        pages = q.collect(self.transport, q.PAGETEXT, {"titles": title}, description=f"text of '{title}'")
        if not pages or _missing(pages[0]):
            logger.debug(f"{self}: '{title}' does not exist")
            return None
        revisions = pages[0].get("revisions") or [{}]
        return revision_text(revisions[0])

    def exists(self, title: str) -> bool:
        pages = q.collect(self.transport, q.EXISTS, {"titles": title}, description=f"exists '{title}'")
        return bool(pages) and not _missing(pages[0])

    def category_members(self, title: str, *ns: NamespaceRef, cap: int = -1) -> list[str]:
        """Titles in a category, optionally limited to namespaces ``ns``."""
        params = {
            "cmtitle": self.ensure_in_namespace(title, NS.CATEGORY),
            "cmnamespace": self._ns_filter(ns),
        }
        members = q.collect(self.transport, q.CATEGORYMEMBERS, params, cap, f"members of '{title}'")
        return [m["title"] for m in members]

    def all_pages(
        self,
        prefix: Optional[str] = None,
        ns: NamespaceRef = NS.MAIN,
        redirects_only: bool = False,
        cap: int = -1,
    ) -> list[str]:
        params = {
            "apnamespace": self.namespaces.id_of(ns),
            "apprefix": prefix,
            "apfilterredir": "redirects" if redirects_only else None,
        }
        return [p["title"] for p in q.collect(self.transport, q.ALLPAGES, params, cap, "all pages")]

    def links_here(self, title: str, cap: int = -1) -> list[str]:
        items = q.collect(self.transport, q.LINKSHERE, {"titles": title}, cap, f"links to '{title}'")
        return [i["title"] for i in items]

    def file_usage(self, title: str, cap: int = -1) -> list[str]:
        params = {"titles": self.ensure_in_namespace(title, NS.FILE)}
        return [i["title"] for i in q.collect(self.transport, q.FILEUSAGE, params, cap, f"usage of '{title}'")]

    def user_contribs(self, user: str, *ns: NamespaceRef, cap: int = -1) -> list[dict]:
        params = {"ucuser": self.strip_namespace(user), "ucnamespace": self._ns_filter(ns)}
        return q.collect(self.transport, q.USERCONTRIBS, params, cap, f"contributions of {user}")

    def recent_changes(self, start: Optional[str] = None, end: Optional[str] = None, cap: int = -1) -> list[dict]:
        """
        Recent changes, newest first.

        Args:
            start: ISO timestamp to start listing from (the newer bound)
            end: ISO timestamp to stop at (the older bound)
        """
        params = {"rcstart": start, "rcend": end}
        return q.collect(self.transport, q.RECENTCHANGES, params, cap, "recent changes")

    def user_uploads(self, user: str, cap: int = -1) -> list[str]:
        params = {"aiuser": self.strip_namespace(user)}
        return [i["title"] for i in q.collect(self.transport, q.USERUPLOADS, params, cap, f"uploads of {user}")]

    def revisions(
        self,
        title: str,
        cap: int = -1,
        older_first: bool = False,
        content: bool = False,
        start: Optional[str] = None,
        end: Optional[str] = None,
    ) -> list[dict]:
        """
        Revision history of a page.

        Args:
            title: Page to list
            cap: Maximum number of revisions; <= 0 means all of them
            older_first: List oldest first instead of newest first
            content: Include each revision's wikitext (see ``revision_text``)
            start: ISO timestamp to start listing from, in listing order
            end: ISO timestamp to stop at, in listing order
        """
        params = {
            "titles": title,
            "rvdir": "newer" if older_first else None,
            "rvstart": start,
            "rvend": end,
        }
        if content:
            params["rvprop"] = q.REVISIONS.fixed["rvprop"] + "|content"
        return q.collect(self.transport, q.REVISIONS, params, cap, f"revisions of '{title}'")

    def logs(
        self,
        title: Optional[str] = None,
        user: Optional[str] = None,
        log_type: Optional[str] = None,
        cap: int = -1,
    ) -> list[dict]:
        """Log entries, newest first, optionally for one page, performer or log type (e.g. "delete")."""
        params = {
            "letitle": title,
            "leuser": self.strip_namespace(user) if user else None,
            "letype": log_type,
        }
        return q.collect(self.transport, q.LOGEVENTS, params, cap, f"logs for {title or user or log_type or self}")

    def categories_on_page(self, title: str) -> list[str]:
        items = q.collect(self.transport, q.PAGECATEGORIES, {"titles": title}, description=f"categories of '{title}'")
        return [i["title"] for i in items]

    def links_on_page(self, title: str, *ns: NamespaceRef) -> list[str]:
        """Wiki links on a page, optionally limited to namespaces ``ns``."""
        params = {"titles": title, "plnamespace": self._ns_filter(ns)}
        return [i["title"] for i in q.collect(self.transport, q.LINKSONPAGE, params, description=f"links on '{title}'")]

    def templates_on_page(self, title: str) -> list[str]:
        items = q.collect(self.transport, q.TEMPLATES, {"titles": title}, description=f"templates on '{title}'")
        return [i["title"] for i in items]

    def what_transcludes_here(self, title: str, *ns: NamespaceRef, cap: int = -1) -> list[str]:
        params = {"titles": title, "tinamespace": self._ns_filter(ns)}
        items = q.collect(self.transport, q.TRANSCLUDEDIN, params, cap, f"transclusions of '{title}'")
        return [i["title"] for i in items]

    def image_info(self, title: str, cap: int = -1) -> list[dict]:
        """
        Upload history of a file, newest first: url, size, sha1, mime,
        uploader, timestamp and comment of each version.
        """
        params = {"titles": self.ensure_in_namespace(title, NS.FILE)}
        return q.collect(self.transport, q.IMAGEINFO, params, cap, f"image info of '{title}'")

    def category_size(self, title: str) -> int:
        """Number of members of a category; 0 if it has none or does not exist."""
        name = self.ensure_in_namespace(title, NS.CATEGORY)
        entry = q.collect_by_title(self.transport, q.CATEGORYINFO, [name], description=f"size of '{name}'").get(name, {})
        return entry.get("categoryinfo", {}).get("size", 0)

    def resolve_redirect(self, title: str) -> str:
        return self.resolve_redirects([title])[title]

    def resolve_redirects(self, titles: list[str]) -> dict[str, str]:
        """
        Map each title to the page it redirects to.

        Titles that are not redirects map to themselves.
        """
        titles = list(dict.fromkeys(titles))
        targets = {}
        for start in range(0, len(titles), q.MAX_TITLES):
            group = titles[start:start + q.MAX_TITLES]
            data = q.single_query(
                self.transport,
                {"titles": group, "redirects": "1"},
                f"resolving redirects [{start + 1}-{start + len(group)}/{len(titles)}]",
            )
            result = data.get("query", {})
            normalized = {n["from"]: n["to"] for n in result.get("normalized", [])}
            redirects = {r["from"]: r["to"] for r in result.get("redirects", [])}
            for title in group:
                targets[title] = redirects.get(normalized.get(title, title), title)
        return targets

    def exists_many(self, titles: list[str]) -> dict[str, bool]:
        titles = list(titles)
        pages = q.collect_by_title(self.transport, q.EXISTS, titles, description="exists")
        return {t: t in pages and not _missing(pages[t]) for t in dict.fromkeys(titles)}

    def page_texts(self, titles: list[str]) -> dict[str, Optional[str]]:
        """Current wikitext of many pages; None for pages that do not exist."""
        titles = list(titles)
        pages = q.collect_by_title(self.transport, q.PAGETEXT, titles, description="page texts")
        texts = {}
        for title in dict.fromkeys(titles):
            entry = pages.get(title)
            if entry is None or _missing(entry) or not entry.get("revisions"):
                texts[title] = None
            else:
                texts[title] = revision_text(entry["revisions"][0])
        return texts

    ##################################################################
    # Writes
    ##################################################################

    def submit(
        self,
        action: str,
        form: dict,
        policy: RetryPolicy = EDIT_POLICY,
        needs_token: bool = True,
    ) -> ActionResult:
        """Run an arbitrary action through the action engine."""
        return self.engine.submit(action, form, policy, needs_token)

    def edit(self, title: str, text: str, summary: str = "", minor: bool = False) -> bool:
        return self.engine.edit(title, text, summary, minor).ok

    def add_text(self, title: str, text: str, summary: str = "", append: bool = True) -> bool:
        return self.engine.add_text(title, text, summary, append).ok

    def replace_text(
        self,
        title: str,
        pattern: Union[str, re.Pattern],
        replacement: str = "",
        summary: str = "",
    ) -> bool:
        """
        Replace every match of ``pattern`` on a page.

        Returns:
            True if the page was saved or nothing needed replacing; False if
            the page does not exist or the edit failed
        """
        text = self.page_text(title)
        if text is None:
            logger.error(f"{self}: cannot replace text on missing page '{title}'")
            return False
        new_text = re.sub(pattern, replacement, text)
        if new_text == text:
            logger.info(f"{self}: nothing to replace on '{title}'")
            return True
        return self.edit(title, new_text, summary)

    def null_edit(self, title: str) -> bool:
        text = self.page_text(title)
        return text is not None and self.edit(title, text, "null edit")

    def undo(self, title: str, summary: str = "") -> bool:
        """
        Revert the latest edit to a page by saving the text of the
        revision before it.

        Returns:
            False if the page has fewer than two revisions or the edit failed
        """
        history = self.revisions(title, cap=2, content=True)
        if len(history) < 2:
            logger.error(f"{self}: '{title}' has no earlier revision to restore")
            return False
        return self.edit(title, revision_text(history[1]) or "", summary)

    def delete(self, title: str, reason: str = "") -> bool:
        return self.engine.delete(title, reason).ok

    def undelete(self, title: str, reason: str = "") -> bool:
        return self.engine.undelete(title, reason).ok

    def move(
        self,
        title: str,
        new_title: str,
        reason: str = "",
        move_talk: bool = True,
        suppress_redirect: bool = False,
    ) -> bool:
        return self.engine.move(title, new_title, reason, move_talk, suppress_redirect).ok

    def purge(self, titles: list[str]) -> bool:
        return self.engine.purge(titles).ok

    def upload(self, path: Union[str, Path], title: str, desc: str = "", summary: str = "") -> bool:
        """
        Upload a local file in chunks.

        Args:
            path: Local file
            title: Target title, with or without the "File:" prefix
            desc: Text of the file description page
            summary: Upload log comment
        """
        filename = self.strip_namespace(self.ensure_in_namespace(title, NS.FILE))
        upload = ChunkedUpload(self.engine, path, filename, desc, summary, self.settings.chunk_size)
        return upload.run().ok
