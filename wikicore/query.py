#!/usr/bin/env python3
"""
Query engine for the MediaWiki continuation protocol.

A single API request returns at most one page of results. The server
signals that more data exists by including a top-level ``continue``
object; echoing its keys back verbatim fetches the next page. The engine
drives that loop until the server stops sending a cursor or a caller's cap
is reached, so callers never mistake the first page for the full result.

Usage:
    from wikicore.query import CATEGORYMEMBERS, collect

    titles = [m["title"] for m in collect(transport, CATEGORYMEMBERS,
                                          {"cmtitle": "Category:Foo"}, cap=100)]
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Iterable, Iterator, Optional

from wikicore.transport import Transport

logger = logging.getLogger(__name__)

BASE_PARAMS = {"action": "query", "format": "json", "formatversion": "2"}


@dataclass(frozen=True)
class QueryTemplate:
    """
    A query module with its fixed parameters.

    Attributes:
        fixed: Parameters sent with every request of this query
        result_path: Keys leading from the response root to the results list
        limit_key: Page-size parameter of the module, if it is paginated
        item_key: For prop modules, the per-page key holding the items
        required: Parameters the caller must supply
    """

    fixed: dict
    result_path: tuple = ("query",)
    limit_key: Optional[str] = None
    item_key: Optional[str] = None
    required: tuple = ()


ALLPAGES = QueryTemplate({"list": "allpages"}, ("query", "allpages"), "aplimit")
CATEGORYMEMBERS = QueryTemplate(
    {"list": "categorymembers", "cmprop": "title|type"},
    ("query", "categorymembers"),
    "cmlimit",
    required=("cmtitle",),
)
PAGETEXT = QueryTemplate(
    {"prop": "revisions", "rvprop": "content", "rvslots": "main"},
    ("query", "pages"),
    required=("titles",),
)
EXISTS = QueryTemplate({"prop": "info"}, ("query", "pages"), required=("titles",))
LINKSHERE = QueryTemplate(
    {"prop": "linkshere", "lhprop": "title"},
    ("query", "pages"),
    "lhlimit",
    item_key="linkshere",
    required=("titles",),
)
FILEUSAGE = QueryTemplate(
    {"prop": "fileusage", "fuprop": "title"},
    ("query", "pages"),
    "fulimit",
    item_key="fileusage",
    required=("titles",),
)
USERCONTRIBS = QueryTemplate(
    {"list": "usercontribs", "ucprop": "title|timestamp|comment|size"},
    ("query", "usercontribs"),
    "uclimit",
    required=("ucuser",),
)
RECENTCHANGES = QueryTemplate(
    {"list": "recentchanges", "rcprop": "title|timestamp|user|comment", "rctype": "edit|new|log"},
    ("query", "recentchanges"),
    "rclimit",
)
USERUPLOADS = QueryTemplate(
    {"list": "allimages", "aisort": "timestamp"},
    ("query", "allimages"),
    "ailimit",
    required=("aiuser",),
)
REVISIONS = QueryTemplate(
    {"prop": "revisions", "rvprop": "ids|timestamp|user|comment|size", "rvslots": "main"},
    ("query", "pages"),
    "rvlimit",
    item_key="revisions",
    required=("titles",),
)
LOGEVENTS = QueryTemplate(
    {"list": "logevents", "leprop": "ids|title|type|user|timestamp|comment|details"},
    ("query", "logevents"),
    "lelimit",
)
PAGECATEGORIES = QueryTemplate(
    {"prop": "categories"},
    ("query", "pages"),
    "cllimit",
    item_key="categories",
    required=("titles",),
)
LINKSONPAGE = QueryTemplate(
    {"prop": "links"},
    ("query", "pages"),
    "pllimit",
    item_key="links",
    required=("titles",),
)
TEMPLATES = QueryTemplate(
    {"prop": "templates"},
    ("query", "pages"),
    "tllimit",
    item_key="templates",
    required=("titles",),
)
TRANSCLUDEDIN = QueryTemplate(
    {"prop": "transcludedin", "tiprop": "title"},
    ("query", "pages"),
    "tilimit",
    item_key="transcludedin",
    required=("titles",),
)
IMAGEINFO = QueryTemplate(
    {"prop": "imageinfo", "iiprop": "canonicaltitle|url|size|sha1|mime|user|timestamp|comment"},
    ("query", "pages"),
    "iilimit",
    item_key="imageinfo",
    required=("titles",),
)
CATEGORYINFO = QueryTemplate({"prop": "categoryinfo"}, ("query", "pages"), required=("titles",))

# The server accepts at most this many titles per request for most users.
MAX_TITLES = 50

# Meta queries answered in a single request.
NAMESPACES = {"meta": "siteinfo", "siprop": "namespaces|namespacealiases"}
TOKENS_CSRF = {"meta": "tokens", "type": "csrf"}
TOKENS_LOGIN = {"meta": "tokens", "type": "login"}
USERINFO = {"meta": "userinfo", "uiprop": "groups"}


def _encode(value) -> str:
    if isinstance(value, (list, tuple, set, frozenset)):
        return "|".join(str(v) for v in value)
    return str(value)


def _dig(data: dict, path: tuple):
    for key in path:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


@dataclass
class QueryState:
    """Mutable state of one continuation query."""

    template: QueryTemplate
    params: dict
    cap: int = -1
    max_limit: int = 500
    cursor: Optional[dict] = None
    exhausted: bool = False
    count: int = 0
    requests: int = field(default=0)
    normalized: dict = field(default_factory=dict)

    def __post_init__(self):
        missing = [k for k in self.template.required if self.params.get(k) in (None, "")]
        if missing:
            raise ValueError(f"Query is missing required parameters: {', '.join(missing)}")

        merged = dict(BASE_PARAMS)
        merged.update(self.template.fixed)
        merged.update({k: _encode(v) for k, v in self.params.items() if v is not None})
        self.params = merged

    @property
    def remaining(self) -> Optional[int]:
        return self.cap - self.count if self.cap > 0 else None

    def _apply_limit(self) -> None:
        if not self.template.limit_key:
            return
        remaining = self.remaining
        if remaining is None or remaining >= self.max_limit:
            self.params[self.template.limit_key] = "max"
        else:
            self.params[self.template.limit_key] = str(remaining)

    def _extract(self, data: dict) -> list:
        results = _dig(data, self.template.result_path)
        if not isinstance(results, list):
            return []
        if self.template.item_key:
            return [item for entry in results for item in entry.get(self.template.item_key, [])]
        return results

    def fetch(self, transport: Transport, description: str = "query") -> list:
        """
        Fetch the next page of results.

        Returns:
            The items of this page (truncated when the cap is reached); an
            empty list once the query is exhausted
        """
        if self.exhausted:
            return []

        self._apply_limit()
        data = transport.get(dict(self.params), description).json()
        self.requests += 1

        if "error" in data:
            error = data["error"]
            logger.error(f"{description}: server error {error.get('code')}: {error.get('info')}")
            self.exhausted = True
            return []

        for pair in _dig(data, ("query", "normalized")) or []:
            self.normalized[pair["from"]] = pair["to"]

        items = self._extract(data)
        remaining = self.remaining
        if remaining is not None and len(items) >= remaining:
            items = items[:remaining]
            self.exhausted = True

        self.count += len(items)

        cont = data.get("continue")
        if not cont:
            self.exhausted = True
        elif cont == self.cursor:
            logger.warning(f"{description}: server repeated continuation {cont}; stopping")
            self.exhausted = True
        elif not self.exhausted:
            self.cursor = dict(cont)
            self.params.update({k: _encode(v) for k, v in cont.items()})

        logger.debug(f"{description}: page {self.requests}, {self.count} items so far")
        return items


def run_query(
    transport: Transport,
    template: QueryTemplate,
    params: Optional[dict] = None,
    cap: int = -1,
    description: Optional[str] = None,
) -> Iterator[list]:
    """
    Lazily run a continuation query, yielding one list of items per page.

    Args:
        transport: Transport for the target wiki
        template: Query module and its fixed parameters
        params: Caller parameters (lists are joined with "|")
        cap: Maximum number of items; <= 0 means all of them
        description: Human-readable description for logging

    Raises:
        ValueError: If a required template parameter is missing
        TransportError: If a page could not be fetched
    """
    state = QueryState(
        template,
        dict(params or {}),
        cap,
        max_limit=transport.settings.max_result_limit,
    )
    return _drain(transport, state, description or f"query {template.fixed}")


def _drain(transport: Transport, state: QueryState, description: str) -> Iterator[list]:
    while not state.exhausted:
        items = state.fetch(transport, description)
        if items:
            yield items


def collect(
    transport: Transport,
    template: QueryTemplate,
    params: Optional[dict] = None,
    cap: int = -1,
    description: Optional[str] = None,
) -> list:
    """Run a query to completion and return every item in one list."""
    return [item for page in run_query(transport, template, params, cap, description) for item in page]


def _merge_entry(pages: dict, entry: dict) -> None:
    title = entry.get("title")
    if title is None:
        return
    merged = pages.setdefault(title, {})
    for key, value in entry.items():
        if isinstance(value, list):
            merged.setdefault(key, []).extend(value)
        else:
            merged.setdefault(key, value)


def collect_by_title(
    transport: Transport,
    template: QueryTemplate,
    titles: Iterable[str],
    params: Optional[dict] = None,
    group_size: int = MAX_TITLES,
    description: Optional[str] = None,
) -> dict:
    """
    Run a prop query for many titles, ``group_size`` titles per request.

    Each group is drained through its own continuation. When a page's data
    spans several replies, list values (revisions, categories, ...) are
    concatenated and the first value of every other key is kept.

    Args:
        transport: Transport for the target wiki
        template: A prop template taking "titles"
        titles: Titles to look up; duplicates are queried once
        params: Extra caller parameters
        group_size: Titles per request
        description: Human-readable description for logging

    Returns:
        Page entries keyed by the titles as given. A title the server
        normalized (e.g. "foo bar" to "Foo bar") is found under its
        original spelling; titles with no entry in any reply are absent.

    Raises:
        ValueError: If group_size is not positive
        TransportError: If a request could not be completed
    """
    if group_size < 1:
        raise ValueError("group_size must be at least 1")
    titles = list(dict.fromkeys(titles))
    whole_pages = replace(template, item_key=None)
    description = description or f"query {template.fixed}"

    results = {}
    for start in range(0, len(titles), group_size):
        group = titles[start:start + group_size]
        query = dict(params or {})
        query["titles"] = group
        state = QueryState(whole_pages, query, max_limit=transport.settings.max_result_limit)

        pages = {}
        label = f"{description} [{start + 1}-{start + len(group)}/{len(titles)}]"
        for page in _drain(transport, state, label):
            for entry in page:
                _merge_entry(pages, entry)

        for title in group:
            name = state.normalized.get(title, title)
            if name in pages:
                results[title] = pages[name]
    return results


def single_query(transport: Transport, params: dict, description: str = "query") -> dict:
    """
    Run a one-shot (non-paginated) query and return the parsed response.

    Raises:
        TransportError: If the request failed or the body was not JSON
    """
    merged = dict(BASE_PARAMS)
    merged.update({k: _encode(v) for k, v in params.items() if v is not None})
    return transport.get(merged, description).json()
