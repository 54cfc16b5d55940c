#!/usr/bin/env python3
"""
Namespace table for interpreting and normalizing page titles.

Built once per session from the server's namespace catalog
(``meta=siteinfo&siprop=namespaces|namespacealiases``) and read-only
afterwards, so worker threads share it without locking.
"""

import logging
import re
from enum import IntEnum
from typing import Iterable, Optional, Union

logger = logging.getLogger(__name__)

MAIN_NAME = "Main"


class NS(IntEnum):
    """Namespace ids every MediaWiki installation defines."""

    MEDIA = -2
    SPECIAL = -1
    MAIN = 0
    TALK = 1
    USER = 2
    USER_TALK = 3
    PROJECT = 4
    PROJECT_TALK = 5
    FILE = 6
    FILE_TALK = 7
    MEDIAWIKI = 8
    MEDIAWIKI_TALK = 9
    TEMPLATE = 10
    TEMPLATE_TALK = 11
    HELP = 12
    HELP_TALK = 13
    CATEGORY = 14
    CATEGORY_TALK = 15


NamespaceRef = Union[int, str]


def _normalize(name: str) -> str:
    return re.sub(r"[ _]+", " ", name).strip().lower()


class NamespaceTable:
    """Bidirectional namespace name/id map with alias support."""

    def __init__(self, names: dict[int, str], aliases: Optional[dict[str, int]] = None):
        """
        Args:
            names: Namespace id to canonical (local) name; the main namespace may be ""
            aliases: Extra prefix names mapped to their namespace id
        """
        self.names = {ns_id: (name or MAIN_NAME) for ns_id, name in names.items()}
        self.names.setdefault(0, MAIN_NAME)

        self.ids: dict[str, int] = {}
        for ns_id, name in names.items():
            if name:
                self.ids[_normalize(name)] = ns_id
        for alias, ns_id in (aliases or {}).items():
            self.ids.setdefault(_normalize(alias), ns_id)

        # Longest alternatives first so "File talk" wins over "File".
        prefixes = sorted(self.ids, key=len, reverse=True)
        alternation = "|".join(re.escape(p).replace(r"\ ", "[ _]+") for p in prefixes)
        self.pattern = re.compile(rf"^({alternation})[ _]*:[ _]*", re.IGNORECASE) if prefixes else None

    @classmethod
    def from_siteinfo(cls, data: dict) -> "NamespaceTable":
        """
        Build a table from a siteinfo query response.

        Accepts both formatversion 1 ("*" keys) and 2 ("name"/"alias" keys).
        Canonical English names are registered as aliases on localized wikis.
        """
        query = data.get("query", data)
        names: dict[int, str] = {}
        aliases: dict[str, int] = {}

        for entry in query.get("namespaces", {}).values():
            ns_id = int(entry["id"])
            names[ns_id] = entry.get("name", entry.get("*", ""))
            canonical = entry.get("canonical")
            if canonical:
                aliases[canonical] = ns_id

        for entry in query.get("namespacealiases", []):
            aliases[entry.get("alias", entry.get("*", ""))] = int(entry["id"])

        aliases.pop("", None)
        logger.debug(f"Parsed {len(names)} namespaces and {len(aliases)} aliases")
        return cls(names, aliases)

    def id_of(self, ns: NamespaceRef) -> int:
        """
        Resolve a namespace id, name or alias to its id.

        Raises:
            ValueError: If ``ns`` is not a known namespace
        """
        if isinstance(ns, int):
            if ns not in self.names:
                raise ValueError(f"Unknown namespace id: {ns}")
            return int(ns)
        key = _normalize(ns.rstrip(":"))
        if key in ("", MAIN_NAME.lower()):
            return 0
        if key not in self.ids:
            raise ValueError(f"'{ns}' is not a recognized namespace")
        return self.ids[key]

    def name_of(self, ns: NamespaceRef) -> str:
        """Canonical name of a namespace ("Main" for id 0)."""
        return self.names[self.id_of(ns)]

    def prefix_of(self, ns: NamespaceRef) -> str:
        """The "Name:" prefix for a namespace, or "" for the main namespace."""
        ns_id = self.id_of(ns)
        return "" if ns_id == 0 else f"{self.names[ns_id]}:"

    def _match(self, title: str) -> Optional[re.Match]:
        return self.pattern.match(title) if self.pattern else None

    def strip_namespace(self, title: str) -> str:
        """
        Remove a recognized namespace prefix from ``title``.

        Titles without a recognized prefix (including ones whose text before
        the colon is not a namespace, like "Star Wars: Episode I") are returned
        unchanged.
        """
        match = self._match(title)
        return title[match.end():] if match else title

    def namespace_of(self, title: str) -> int:
        """Id of the namespace ``title`` belongs to; 0 when no prefix matches."""
        match = self._match(title)
        return self.ids[_normalize(match.group(1))] if match else 0

    def in_namespace(self, title: str, *ns: NamespaceRef) -> bool:
        return self.namespace_of(title) in {self.id_of(n) for n in ns}

    def ensure_in_namespace(self, title: str, ns: NamespaceRef) -> str:
        """
        Put ``title`` into namespace ``ns``.

        A title already in ``ns`` is returned unchanged; otherwise any other
        namespace prefix is replaced by the canonical prefix of ``ns``.
        """
        target = self.id_of(ns)
        if self.namespace_of(title) == target:
            return title
        return self.prefix_of(target) + self.strip_namespace(title)

    def filter_titles(self, titles: Iterable[str], *ns: NamespaceRef) -> list[str]:
        """Keep only the titles belonging to one of the namespaces ``ns``."""
        wanted = {self.id_of(n) for n in ns}
        return [t for t in titles if self.namespace_of(t) in wanted]

    def talk_page_of(self, title: str) -> Optional[str]:
        """Talk page of a content page, or None for talk and special pages."""
        ns_id = self.namespace_of(title)
        if ns_id < 0 or ns_id % 2 or (ns_id + 1) not in self.names:
            return None
        return self.prefix_of(ns_id + 1) + self.strip_namespace(title)

    def content_page_of(self, title: str) -> Optional[str]:
        """Content page of a talk page, or None if ``title`` is not a talk page."""
        ns_id = self.namespace_of(title)
        if ns_id < 0 or ns_id % 2 == 0:
            return None
        return self.prefix_of(ns_id - 1) + self.strip_namespace(title)
