"""Tests for the typed repositories."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from caselens.errors import DatabaseError, NotFoundError, ValidationError
from caselens.models import ContentPattern, SavedSearch, SearchFilters, SearchIndexEntry, utcnow
from caselens.storage.repositories import (
    PatternRepository,
    SavedSearchRepository,
    SearchIndexRepository,
    pattern_word_similarity,
)
from caselens.storage.store import MemoryEntityStore


def make_pattern(pattern_id: str, pattern: str, **overrides) -> ContentPattern:
    values = dict(
        id=pattern_id,
        pattern=pattern,
        pattern_type="keyword",
        category="technical",
        confidence=0.6,
        examples=[],
        success_rate=1.0,
    )
    values.update(overrides)
    return ContentPattern(**values)


@pytest.fixture
def patterns() -> PatternRepository:
    return PatternRepository(MemoryEntityStore())


class TestPatternValidation:
    """Test pattern validation rules."""

    def test_rejects_empty_pattern(self, patterns) -> None:
        with pytest.raises(ValidationError):
            patterns.create(make_pattern("p1", "   "))

    def test_rejects_out_of_range_confidence(self, patterns) -> None:
        with pytest.raises(ValidationError) as excinfo:
            patterns.create(make_pattern("p1", "login", confidence=1.5))
        assert excinfo.value.field == "confidence"

    def test_rejects_bad_success_rate(self, patterns) -> None:
        with pytest.raises(ValidationError):
            patterns.create(make_pattern("p1", "login", success_rate=-0.1))

    def test_rejects_invalid_regex(self, patterns) -> None:
        with pytest.raises(ValidationError):
            patterns.create(make_pattern("p1", "([unclosed", pattern_type="regex"))

    def test_rejects_unknown_category(self, patterns) -> None:
        with pytest.raises(ValidationError):
            patterns.create(make_pattern("p1", "login", category="misc"))

    def test_rejects_too_many_examples(self, patterns) -> None:
        with pytest.raises(ValidationError):
            patterns.create(make_pattern("p1", "login", examples=[str(i) for i in range(11)]))

    def test_rejects_duplicate(self, patterns) -> None:
        patterns.create(make_pattern("p1", "login token"))

        with pytest.raises(ValidationError, match="already exists"):
            patterns.create(make_pattern("p2", "login token"))

    def test_same_text_other_category_is_allowed(self, patterns) -> None:
        patterns.create(make_pattern("p1", "login token"))
        patterns.create(make_pattern("p2", "login token", category="bug"))

        assert len(patterns.list_all()) == 2


class TestPatternRepository:
    """Test pattern CRUD and housekeeping."""

    def test_get_missing_raises_not_found(self, patterns) -> None:
        with pytest.raises(NotFoundError):
            patterns.get("nope")

    def test_list_all_sorted_by_confidence(self, patterns) -> None:
        patterns.create(make_pattern("low", "alpha", confidence=0.2))
        patterns.create(make_pattern("high", "beta", confidence=0.9))

        assert [p.id for p in patterns.list_all()] == ["high", "low"]

    def test_find_by_filters(self, patterns) -> None:
        patterns.create(make_pattern("p1", "alpha", category="bug", success_rate=0.9))
        patterns.create(make_pattern("p2", "beta", category="bug", success_rate=0.2))
        patterns.create(make_pattern("p3", "gamma", category="query"))

        found = patterns.find_by_filters(category="bug", min_success_rate=0.5)

        assert [p.id for p in found] == ["p1"]

    def test_update_success_rate_clamps(self, patterns) -> None:
        patterns.create(make_pattern("p1", "alpha"))

        assert patterns.update_success_rate("p1", 1.7).success_rate == 1.0
        assert patterns.update_success_rate("p1", -3).success_rate == 0.0

    def test_add_example_keeps_newest_five(self, patterns) -> None:
        patterns.create(make_pattern("p1", "alpha"))
        for i in range(7):
            patterns.add_example("p1", f"example {i}")
        patterns.add_example("p1", "example 6")

        assert patterns.get("p1").examples == [f"example {i}" for i in range(2, 7)]

    def test_statistics(self, patterns) -> None:
        patterns.create(make_pattern("p1", "alpha", confidence=0.4, success_rate=0.5))
        patterns.create(make_pattern("p2", "beta", confidence=0.8, category="bug"))

        stats = patterns.get_statistics()

        assert stats.total_patterns == 2
        assert stats.patterns_by_type["keyword"] == 2
        assert stats.patterns_by_category == {
            "error": 0,
            "query": 0,
            "feature_request": 0,
            "general": 0,
            "technical": 1,
            "bug": 1,
        }
        assert stats.average_confidence == pytest.approx(0.6)
        assert stats.average_success_rate == pytest.approx(0.75)
        assert stats.top_performing_patterns[0].id == "p2"

    def test_statistics_empty(self, patterns) -> None:
        assert patterns.get_statistics().total_patterns == 0

    def test_cleanup_low_performing(self, patterns) -> None:
        patterns.create(make_pattern("good", "alpha", success_rate=0.9))
        patterns.create(make_pattern("bad", "beta", success_rate=0.1))

        assert patterns.cleanup_low_performing(0.3) == 1
        assert [p.id for p in patterns.list_all()] == ["good"]

    def test_merge_similar_patterns(self, patterns) -> None:
        patterns.create(make_pattern("p1", "login token expired", confidence=0.4, examples=["a"]))
        patterns.create(
            make_pattern("p2", "login token expired again", confidence=0.8, success_rate=0.5, examples=["b"])
        )
        patterns.create(make_pattern("p3", "dashboard chart", category="query"))

        # 3 shared words out of 4 in total.
        merged = patterns.merge_similar_patterns(0.75)

        assert merged == 2
        remaining = {p.id: p for p in patterns.list_all()}
        assert set(remaining) == {"p2", "p3"}
        survivor = remaining["p2"]
        assert set(survivor.pattern.split()) == {"login", "token", "expired", "again"}
        assert survivor.confidence == pytest.approx(0.6)
        assert survivor.success_rate == pytest.approx(0.75)
        assert sorted(survivor.examples) == ["a", "b"]

    def test_failed_merge_write_keeps_originals(self) -> None:
        store = MagicMock()
        store.all.return_value = [
            make_pattern("p1", "login token expired", confidence=0.4).to_dict(),
            make_pattern("p2", "login token expired again", confidence=0.8).to_dict(),
        ]
        store.put.side_effect = RuntimeError("disk full")
        repository = PatternRepository(store)

        with pytest.raises(DatabaseError, match="disk full"):
            repository.merge_similar_patterns(0.75)

        store.bulk_delete.assert_not_called()

    def test_merge_deletes_only_absorbed_patterns(self) -> None:
        store = MagicMock()
        store.all.return_value = [
            make_pattern("p1", "login token expired", confidence=0.4).to_dict(),
            make_pattern("p2", "login token expired again", confidence=0.8).to_dict(),
        ]
        repository = PatternRepository(store)

        assert repository.merge_similar_patterns(0.75) == 2

        store.put.assert_called_once()
        assert store.put.call_args[0][1]["id"] == "p2"
        store.bulk_delete.assert_called_once_with("pattern", {"p1"})

    def test_store_failure_becomes_database_error(self) -> None:
        store = MagicMock()
        store.all.side_effect = RuntimeError("disk gone")
        repository = PatternRepository(store)

        with pytest.raises(DatabaseError, match="disk gone"):
            repository.list_all()


class TestPatternWordSimilarity:
    """Test word-overlap similarity used for merging."""

    def test_overlap(self) -> None:
        assert pattern_word_similarity("login token", "token login") == 1.0
        assert pattern_word_similarity("a b", "b c") == pytest.approx(1 / 3)
        assert pattern_word_similarity("", "") == 0.0


class TestSearchIndexRepository:
    """Test the one-entry-per-entity index collection."""

    def _entry(self, entry_id: str, entity_id: str) -> SearchIndexEntry:
        now = utcnow()
        return SearchIndexEntry(entry_id, entity_id, "case", "text", "title", [], now, now)

    def test_replace_keeps_single_entry_per_entity(self) -> None:
        index = SearchIndexRepository(MemoryEntityStore())
        index.replace(self._entry("e1", "c1"))
        index.replace(self._entry("e2", "c1"))

        entries = index.all()
        assert [e.id for e in entries] == ["e2"]
        assert index.get_by_entity("c1").id == "e2"

    def test_remove_by_entity(self) -> None:
        index = SearchIndexRepository(MemoryEntityStore())
        index.replace(self._entry("e1", "c1"))

        assert index.remove_by_entity("c1") == 1
        assert index.remove_by_entity("c1") == 0
        with pytest.raises(NotFoundError):
            index.get_by_entity("c1")


class TestSavedSearchRepository:
    """Test saved search persistence."""

    def _saved(self, search_id: str, name: str, age_days: int = 0) -> SavedSearch:
        created = utcnow() - timedelta(days=age_days)
        return SavedSearch(search_id, name, "login", SearchFilters(), created, created)

    def test_list_recent_newest_first(self) -> None:
        repository = SavedSearchRepository(MemoryEntityStore())
        repository.create(self._saved("old", "Old", age_days=3))
        repository.create(self._saved("new", "New"))

        assert [s.id for s in repository.list_recent()] == ["new", "old"]

    def test_touch_bumps_usage(self) -> None:
        repository = SavedSearchRepository(MemoryEntityStore())
        saved = repository.create(self._saved("s1", "Logins", age_days=1))

        touched = repository.touch("s1")

        assert touched.use_count == 2
        assert touched.last_used > saved.created_at
        assert repository.get("s1").use_count == 2

    def test_requires_name(self) -> None:
        repository = SavedSearchRepository(MemoryEntityStore())

        with pytest.raises(ValidationError):
            repository.create(self._saved("s1", " "))

    def test_delete_missing(self) -> None:
        repository = SavedSearchRepository(MemoryEntityStore())

        with pytest.raises(NotFoundError):
            repository.delete("missing")

    def test_find_by_name(self) -> None:
        repository = SavedSearchRepository(MemoryEntityStore())
        repository.create(self._saved("s1", "Login issues"))
        repository.create(self._saved("s2", "Billing"))

        assert [s.id for s in repository.find_by_name("login")] == ["s1"]
