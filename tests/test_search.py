"""Tests for ranked search, suggestions and saved searches."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import patch

import pytest

from caselens.config import AppConfig
from caselens.errors import NotFoundError, ValidationError
from caselens.index.indexer import SearchIndexer
from caselens.index.search import Searcher, find_matches, generate_snippet
from caselens.models import SavedSearch, SearchFilters, SearchIndexEntry, SearchQuery, utcnow
from caselens.storage.store import MemoryEntityStore

CASES = [
    {
        "id": "c1",
        "title": "Login page broken",
        "description": "Users see a blank screen after SSO",
        "tags": ["auth"],
        "status": "open",
        "priority": "high",
    },
    {
        "id": "c2",
        "title": "Export slow",
        "description": "The login audit export takes minutes",
        "tags": ["reports"],
        "status": "closed",
        "priority": "low",
    },
    {
        "id": "c3",
        "title": "Billing",
        "description": "Invoice totals wrong",
        "tags": ["money"],
        "status": "open",
        "priority": "medium",
    },
]


@pytest.fixture
def store() -> MemoryEntityStore:
    store = MemoryEntityStore()
    for case in CASES:
        store.put("case", case)
    SearchIndexer(store).rebuild_all().unwrap()
    return store


@pytest.fixture
def searcher(store) -> Searcher:
    return Searcher(store)


def ids(response) -> list[str]:
    return [result.entity_id for result in response.results]


class TestSnippets:
    """Test snippet generation."""

    def test_short_content_is_returned_whole(self) -> None:
        assert generate_snippet("login failed", ["login"]) == "login failed"

    def test_window_around_terms(self) -> None:
        content = "a " * 100 + "login failure here " + "b " * 100

        snippet = generate_snippet(content, ["login"])

        assert "login" in snippet
        assert snippet.startswith("...")
        assert snippet.endswith("...")
        assert len(snippet) <= 150 + 6

    def test_prefers_window_with_more_terms(self) -> None:
        content = "login " + "x" * 200 + " login export " + "y" * 200

        snippet = generate_snippet(content, ["login", "export"])

        assert "export" in snippet

    def test_no_match_keeps_start(self) -> None:
        content = "z" * 300

        snippet = generate_snippet(content, ["login"])

        assert snippet == "z" * 150 + "..."


class TestMatches:
    """Test match detection."""

    def test_whole_word_is_exact(self) -> None:
        match = find_matches(["login"], "user login failed")[0]

        assert match.type == "exact"
        assert (match.start_index, match.end_index) == (5, 10)

    def test_substring_is_partial(self) -> None:
        match = find_matches(["log"], "user login failed")[0]

        assert match.type == "partial"
        assert match.start_index == 5

    def test_missing_term(self) -> None:
        assert find_matches(["billing"], "user login failed") == []


class TestRelevance:
    """Test the relevance formula."""

    def _entry(self, title: str, content: str, age_days: float = 0.0, tags=()) -> SearchIndexEntry:
        stamp = utcnow() - timedelta(days=age_days)
        return SearchIndexEntry("e", "x", "case", content, title, list(tags), stamp, stamp)

    def test_title_outranks_body(self, searcher) -> None:
        in_title = self._entry("Login", "login issue")
        in_body = self._entry("Issue", "issue login")

        scores = searcher.relevance_scores(["login"], [in_title, in_body])

        assert scores[0] > scores[1]
        assert scores[0] == pytest.approx(0.95, abs=1e-3)
        assert scores[1] == pytest.approx(0.65, abs=1e-3)

    def test_recency_fades_out(self, searcher) -> None:
        fresh = self._entry("A", "login", age_days=0)
        old = self._entry("A", "login", age_days=45)

        scores = searcher.relevance_scores(["login"], [fresh, old])

        assert scores[1] == pytest.approx(0.6)
        assert scores[0] > scores[1]

    def test_tags_contribute(self, searcher) -> None:
        entry = self._entry("Login", "login", age_days=60, tags=["login"])

        assert searcher.relevance_scores(["login"], [entry])[0] == pytest.approx(1.0)

    def test_scores_are_bounded(self, searcher) -> None:
        entries = [self._entry("", ""), self._entry("login login", "login " * 50, tags=["login"])]

        scores = searcher.relevance_scores(["login", "xyz"], entries)

        assert all(0.0 <= score <= 1.0 for score in scores)

    def test_no_entries(self, searcher) -> None:
        assert len(searcher.relevance_scores(["login"], [])) == 0


class TestSearch:
    """Test Searcher.search."""

    def test_short_query_returns_empty(self, searcher) -> None:
        response = searcher.search(SearchQuery(text="l")).data

        assert response.results == []
        assert response.stats.total_results == 0

    def test_title_match_ranks_first(self, searcher) -> None:
        response = searcher.search(SearchQuery(text="login")).data

        assert ids(response) == ["c1", "c2"]
        assert response.results[0].relevance_score > response.results[1].relevance_score
        assert response.results[0].entity["title"] == "Login page broken"
        assert response.results[0].matches[0].type == "exact"

    def test_stats(self, searcher) -> None:
        response = searcher.search(SearchQuery(text="login")).data

        assert response.stats.total_results == 2
        assert response.stats.entity_breakdown == {"case": 2}
        assert response.stats.most_relevant_score == response.results[0].relevance_score
        assert response.stats.search_time_ms >= 0.0

    def test_no_match(self, searcher) -> None:
        response = searcher.search(SearchQuery(text="kubernetes")).data

        assert response.results == []
        assert response.stats.most_relevant_score == 0.0

    def test_entity_type_filter(self, searcher) -> None:
        query = SearchQuery(text="login", filters=SearchFilters(entity_types=["inbox_item"]))

        response = searcher.search(query).data

        assert response.results == []
        assert response.stats.filter_breakdown == {"entity_types": 0}

    def test_tag_filter_is_case_insensitive(self, searcher) -> None:
        query = SearchQuery(text="login", filters=SearchFilters(tags=["AUTH"]))

        assert ids(searcher.search(query).data) == ["c1"]

    def test_entity_level_filter(self, searcher) -> None:
        query = SearchQuery(text="login", filters=SearchFilters(status=["closed"]))

        response = searcher.search(query).data

        assert ids(response) == ["c2"]
        assert response.stats.filter_breakdown == {"status": 1}
        assert response.stats.total_results == 1

    def test_filters_without_text_browse_everything(self, searcher) -> None:
        query = SearchQuery(filters=SearchFilters(entity_types=["case"]), sort_by="title", sort_order="asc")

        assert ids(searcher.search(query).data) == ["c3", "c2", "c1"]

    def test_date_filter(self, searcher) -> None:
        future = utcnow() + timedelta(days=1)
        query = SearchQuery(text="login", filters=SearchFilters(date_from=future))

        assert searcher.search(query).data.results == []

    def test_pagination(self, searcher) -> None:
        response = searcher.search(SearchQuery(text="login", limit=1, offset=1)).data

        assert ids(response) == ["c2"]
        assert response.stats.total_results == 2

    def test_default_limit(self, store) -> None:
        searcher = Searcher(store, AppConfig(default_limit=1))

        assert len(searcher.search(SearchQuery(text="login")).data.results) == 1

    def test_negative_offset(self, searcher) -> None:
        result = searcher.search(SearchQuery(text="login", offset=-1))

        assert not result.success
        assert isinstance(result.error, ValidationError)

    def test_sort_by_title(self, searcher) -> None:
        query = SearchQuery(text="login", sort_by="title", sort_order="asc")

        assert ids(searcher.search(query).data) == ["c2", "c1"]

    @pytest.mark.parametrize("order, expected", [("desc", ["c1", "c2"]), ("asc", ["c2", "c1"])])
    def test_sort_by_date_ranks_by_relevance(self, searcher, order, expected) -> None:
        query = SearchQuery(text="login", sort_by="date", sort_order=order)

        assert ids(searcher.search(query).data) == expected

    def test_stop_words_only_returns_empty(self, searcher) -> None:
        response = searcher.search(SearchQuery(text="the the")).data

        assert response.results == []
        assert response.stats.total_results == 0

    def test_stop_words_with_filters_returns_empty(self, searcher) -> None:
        query = SearchQuery(text="the and", filters=SearchFilters(entity_types=["case"]))

        assert searcher.search(query).data.results == []

    def test_orphaned_entries_are_dropped(self, searcher, store) -> None:
        SearchIndexer(store).index_entity("ghost", "case", title="Login ghost")

        response = searcher.search(SearchQuery(text="login")).data

        assert "ghost" not in ids(response)

    def test_hydration_failure_drops_result(self, searcher, store) -> None:
        with patch.object(store, "get", side_effect=RuntimeError("locked")):
            response = searcher.search(SearchQuery(text="login")).data

        assert response.results == []


class TestSuggestions:
    """Test query suggestions."""

    def test_too_short(self, searcher) -> None:
        assert searcher.get_suggestions("l").data == []

    def test_autocomplete_from_index(self, searcher) -> None:
        suggestions = searcher.get_suggestions("lo").data

        assert [(s.text, s.type) for s in suggestions] == [("login", "autocomplete")]

    def test_saved_searches_feed_recent(self, searcher) -> None:
        searcher.save_search("Audit", SearchQuery(text="login audit"))

        suggestions = searcher.get_suggestions("login").data

        assert ("login audit", "recent") in [(s.text, s.type) for s in suggestions]

    def test_popular_needs_repeated_use(self, searcher) -> None:
        for i in range(5):
            searcher.save_search(f"s{i}", SearchQuery(text=f"export q{i}"))
        old = utcnow() - timedelta(days=10)
        searcher.saved.create(
            SavedSearch("old", "Old", "export popular", SearchFilters(), old, old, use_count=3)
        )

        suggestions = searcher.get_suggestions("export").data

        pairs = [(s.text, s.type) for s in suggestions]
        assert ("export popular", "popular") in pairs
        assert ("export popular", "recent") not in pairs
        assert len(pairs) == 6


class TestSavedSearches:
    """Test saved search management."""

    def test_save_and_list(self, searcher) -> None:
        saved = searcher.save_search(
            "Logins", SearchQuery(text="login", filters=SearchFilters(tags=["auth"]))
        ).data

        listed = searcher.get_saved_searches().data

        assert [s.id for s in listed] == [saved.id]
        assert listed[0].filters.tags == ["auth"]
        assert listed[0].use_count == 1

    def test_use_saved_search(self, searcher) -> None:
        saved = searcher.save_search("Logins", SearchQuery(text="login")).data

        response = searcher.use_saved_search(saved.id).data

        assert ids(response) == ["c1", "c2"]
        assert searcher.saved.get(saved.id).use_count == 2

    def test_delete(self, searcher) -> None:
        saved = searcher.save_search("Logins", SearchQuery(text="login")).data

        assert searcher.delete_saved_search(saved.id).success
        assert searcher.get_saved_searches().data == []

        result = searcher.delete_saved_search(saved.id)
        assert not result.success
        assert isinstance(result.error, NotFoundError)

    def test_save_requires_name(self, searcher) -> None:
        result = searcher.save_search("", SearchQuery(text="login"))

        assert not result.success
        assert isinstance(result.error, ValidationError)
