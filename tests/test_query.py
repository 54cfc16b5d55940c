"""Tests for the continuation query engine."""

import sys
from pathlib import Path

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from conftest import make_response
from wikicore.query import (
    ALLPAGES,
    CATEGORYMEMBERS,
    EXISTS,
    LINKSHERE,
    PAGECATEGORIES,
    QueryState,
    collect,
    collect_by_title,
    run_query,
    single_query,
)


def allpages_page(titles, cont=None):
    data = {"batchcomplete": True, "query": {"allpages": [{"ns": 0, "title": t} for t in titles]}}
    if cont:
        data["continue"] = cont
    return make_response(data)


def sent_params(http):
    return [c[1]["params"] for c in http.request.call_args_list]


class TestRunQuery:
    """Tests for run_query and collect."""

    def test_single_page(self, transport, http):
        """A reply without continue yields one page and stops."""
        http.request.return_value = allpages_page(["A", "B"])

        pages = list(run_query(transport, ALLPAGES))

        assert pages == [[{"ns": 0, "title": "A"}, {"ns": 0, "title": "B"}]]
        assert http.request.call_count == 1

    def test_sends_base_params(self, transport, http):
        """Every request carries format, formatversion and the limit hint."""
        http.request.return_value = allpages_page(["A"])

        collect(transport, ALLPAGES, {"apnamespace": 6})

        params = sent_params(http)[0]
        assert params["action"] == "query"
        assert params["format"] == "json"
        assert params["formatversion"] == "2"
        assert params["list"] == "allpages"
        assert params["aplimit"] == "max"
        assert params["apnamespace"] == "6"

    def test_follows_continuation_verbatim(self, transport, http):
        """The continue object is merged into the next request unchanged."""
        http.request.side_effect = [
            allpages_page(["A", "B"], {"apcontinue": "C", "continue": "-||"}),
            allpages_page(["C", "D"], {"apcontinue": "E", "continue": "-||"}),
            allpages_page(["E"]),
        ]

        titles = [p["title"] for p in collect(transport, ALLPAGES)]

        assert titles == ["A", "B", "C", "D", "E"]
        params = sent_params(http)
        assert "apcontinue" not in params[0]
        assert params[1]["apcontinue"] == "C"
        assert params[1]["continue"] == "-||"
        assert params[2]["apcontinue"] == "E"

    def test_cap_truncates_last_page(self, transport, http):
        """With a cap, exactly min(cap, available) items come back."""
        http.request.side_effect = [
            allpages_page(["A", "B"], {"apcontinue": "C", "continue": "-||"}),
            allpages_page(["C", "D"], {"apcontinue": "E", "continue": "-||"}),
        ]

        titles = [p["title"] for p in collect(transport, ALLPAGES, cap=3)]

        assert titles == ["A", "B", "C"]
        assert http.request.call_count == 2

    def test_cap_lowers_limit_hint(self, transport, http):
        """The page-size hint should shrink to the remaining count."""
        http.request.side_effect = [
            allpages_page(["A", "B"], {"apcontinue": "C", "continue": "-||"}),
            allpages_page(["C"]),
        ]

        collect(transport, ALLPAGES, cap=3)

        params = sent_params(http)
        assert params[0]["aplimit"] == "3"
        assert params[1]["aplimit"] == "1"

    def test_cap_larger_than_available(self, transport, http):
        """A cap above the total returns everything."""
        http.request.return_value = allpages_page(["A", "B"])
        assert len(collect(transport, ALLPAGES, cap=50)) == 2

    @pytest.mark.parametrize("cap", [0, -1])
    def test_non_positive_cap_is_unbounded(self, transport, http, cap):
        """A cap of zero or less drains every page."""
        http.request.side_effect = [
            allpages_page(["A"], {"apcontinue": "B", "continue": "-||"}),
            allpages_page(["B"]),
        ]
        assert len(collect(transport, ALLPAGES, cap=cap)) == 2

    def test_repeated_cursor_stops(self, transport, http):
        """A cursor identical to the previous one ends the query."""
        http.request.return_value = allpages_page(["A"], {"apcontinue": "B", "continue": "-||"})

        collect(transport, ALLPAGES)

        assert http.request.call_count == 2

    def test_server_error_mid_query_is_retried(self, transport, http):
        """A 503 between pages is retried and the result stays complete."""
        http.request.side_effect = [
            allpages_page(["A", "B"], {"apcontinue": "C", "continue": "-||"}),
            make_response(text="<html>503 Service Unavailable</html>", status=503),
            allpages_page(["C"]),
        ]

        titles = [p["title"] for p in collect(transport, ALLPAGES)]

        assert titles == ["A", "B", "C"]
        assert http.request.call_count == 3
        assert sent_params(http)[2]["apcontinue"] == "C"

    def test_empty_response_ends_query(self, transport, http):
        """A reply with neither results nor continuation yields nothing."""
        http.request.return_value = make_response({"batchcomplete": True})

        assert list(run_query(transport, ALLPAGES)) == []
        assert http.request.call_count == 1

    def test_server_error_ends_query(self, transport, http):
        """An error reply ends the query without raising."""
        http.request.return_value = make_response({"error": {"code": "badvalue", "info": "nope"}})
        assert collect(transport, ALLPAGES) == []

    def test_missing_required_param(self, transport, http):
        """Leaving a required parameter unset is a programmer error."""
        with pytest.raises(ValueError):
            run_query(transport, CATEGORYMEMBERS)
        http.request.assert_not_called()

    def test_list_params_joined(self, transport, http):
        """List values are sent pipe-separated."""
        http.request.return_value = make_response({"query": {"categorymembers": []}})

        collect(transport, CATEGORYMEMBERS, {"cmtitle": "Category:X", "cmnamespace": [0, 6]})

        assert sent_params(http)[0]["cmnamespace"] == "0|6"

    def test_prop_items_flattened(self, transport, http):
        """prop modules yield the per-page item lists flattened."""
        http.request.return_value = make_response({
            "query": {"pages": [{"title": "A", "linkshere": [{"title": "X"}, {"title": "Y"}]}]}
        })

        items = collect(transport, LINKSHERE, {"titles": "A"})

        assert [i["title"] for i in items] == ["X", "Y"]

    def test_lazy(self, transport, http):
        """No request is made until the first page is consumed."""
        http.request.return_value = allpages_page(["A"])
        pages = run_query(transport, ALLPAGES)
        http.request.assert_not_called()
        next(pages)
        assert http.request.call_count == 1


class TestQueryState:
    """Tests for QueryState bookkeeping."""

    def test_no_requests_after_exhaustion(self, transport, http):
        """fetch on an exhausted state returns nothing without a request."""
        http.request.return_value = allpages_page(["A"])
        state = QueryState(ALLPAGES, {})

        state.fetch(transport)
        assert state.exhausted
        assert state.fetch(transport) == []
        assert http.request.call_count == 1
        assert state.count == 1


class TestSingleQuery:
    """Tests for single_query."""

    def test_returns_body(self, transport, http):
        """single_query returns the whole parsed reply."""
        http.request.return_value = make_response({"query": {"tokens": {"csrftoken": "abc+\\"}}})

        data = single_query(transport, {"meta": "tokens"})

        assert data["query"]["tokens"]["csrftoken"] == "abc+\\"
        assert sent_params(http)[0]["formatversion"] == "2"


def pages_reply(method, url, params=None, **kwargs):
    """Answer a prop=info query with one entry per requested title."""
    return make_response({"query": {"pages": [{"ns": 0, "title": t} for t in params["titles"].split("|")]}})


class TestCollectByTitle:
    """Tests for collect_by_title."""

    def test_groups_titles(self, transport, http):
        """Titles are sent fifty per request."""
        http.request.side_effect = pages_reply
        titles = [f"Page {i}" for i in range(120)]

        pages = collect_by_title(transport, EXISTS, titles)

        assert len(pages) == 120
        assert [len(p["titles"].split("|")) for p in sent_params(http)] == [50, 50, 20]
        assert sent_params(http)[2]["titles"].startswith("Page 100|")

    def test_custom_group_size(self, transport, http):
        http.request.side_effect = pages_reply

        collect_by_title(transport, EXISTS, ["A", "B", "C"], group_size=2)

        assert [p["titles"] for p in sent_params(http)] == ["A|B", "C"]

    def test_duplicates_queried_once(self, transport, http):
        http.request.side_effect = pages_reply

        pages = collect_by_title(transport, EXISTS, ["A", "B", "A"])

        assert sent_params(http)[0]["titles"] == "A|B"
        assert set(pages) == {"A", "B"}

    def test_merges_continued_pages(self, transport, http):
        """Lists split across continuation replies are joined per page."""
        http.request.side_effect = [
            make_response({
                "continue": {"clcontinue": "1|Maps", "continue": "||"},
                "query": {"pages": [
                    {"pageid": 1, "title": "A", "categories": [{"title": "Category:Beaches"}]},
                    {"pageid": 2, "title": "B", "categories": [{"title": "Category:Rivers"}]},
                ]},
            }),
            make_response({
                "query": {"pages": [
                    {"pageid": 1, "title": "A", "categories": [{"title": "Category:Maps"}]},
                    {"pageid": 2, "title": "B"},
                ]},
            }),
        ]

        pages = collect_by_title(transport, PAGECATEGORIES, ["A", "B"])

        assert [c["title"] for c in pages["A"]["categories"]] == ["Category:Beaches", "Category:Maps"]
        assert [c["title"] for c in pages["B"]["categories"]] == ["Category:Rivers"]
        assert pages["A"]["pageid"] == 1
        assert sent_params(http)[1]["clcontinue"] == "1|Maps"

    def test_normalized_titles_keyed_as_given(self, transport, http):
        """A title the server rewrote is returned under the caller's spelling."""
        http.request.return_value = make_response({
            "query": {
                "normalized": [{"from": "sandbox", "to": "Sandbox"}],
                "pages": [{"ns": 0, "title": "Sandbox"}, {"ns": 0, "title": "Nowhere", "missing": True}],
            }
        })

        pages = collect_by_title(transport, EXISTS, ["sandbox", "Nowhere"])

        assert pages["sandbox"]["title"] == "Sandbox"
        assert pages["Nowhere"]["missing"]

    def test_no_titles_no_requests(self, transport, http):
        assert collect_by_title(transport, EXISTS, []) == {}
        http.request.assert_not_called()

    def test_bad_group_size(self, transport):
        with pytest.raises(ValueError):
            collect_by_title(transport, EXISTS, ["A"], group_size=0)
