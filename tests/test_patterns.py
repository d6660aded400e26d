"""Tests for pattern matching, category suggestions and learning."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from caselens.config import AppConfig
from caselens.errors import DatabaseError, NotFoundError, ValidationError
from caselens.models import (
    CategorySuggestion,
    ContentAnalysisResult,
    ContentPattern,
    PasteMetadata,
    TechnicalInfo,
)
from caselens.similarity.patterns import (
    PatternMatcher,
    heuristic_suggestions,
    match_keyword_pattern,
    match_regex_pattern,
    match_semantic_pattern,
    merge_suggestions,
)
from caselens.storage.repositories import PatternRepository
from caselens.storage.store import MemoryEntityStore


def make_analysis(content_type: str = "plain_text", **metadata) -> ContentAnalysisResult:
    return ContentAnalysisResult(
        content_type=content_type,  # type: ignore[arg-type]
        confidence=0.5,
        classification="query",
        priority="medium",
        suggested_title="",
        extracted_metadata=PasteMetadata(**metadata),
        processing_time_ms=0.0,
    )


@pytest.fixture
def repository() -> PatternRepository:
    return PatternRepository(MemoryEntityStore())


@pytest.fixture
def matcher(repository) -> PatternMatcher:
    return PatternMatcher(repository)


class TestMatchFunctions:
    """Test the individual pattern matchers."""

    def test_keyword_full_match(self) -> None:
        confidence, matched, exact = match_keyword_pattern("Login TOKEN expired", "login token")

        assert confidence == 1.0
        assert matched == "login, token"
        assert exact

    def test_keyword_partial_match(self) -> None:
        confidence, matched, exact = match_keyword_pattern("login failed", "login token")

        assert confidence == 0.5
        assert matched == "login"
        assert not exact

    def test_regex_match_is_case_insensitive(self) -> None:
        confidence, matched = match_regex_pattern("Case 05908032 and CASE 12345678", r"case \d{8}")

        assert confidence == 1.0
        assert matched == "Case 05908032, CASE 12345678"

    def test_invalid_regex_is_no_match(self) -> None:
        assert match_regex_pattern("anything", "([unclosed") == (0.0, "")

    def test_semantic_match(self) -> None:
        confidence, matched = match_semantic_pattern(
            "The login page throws an exception", "password error"
        )

        assert confidence == 1.0
        assert matched == "error, auth"

    def test_semantic_pattern_without_topics(self) -> None:
        assert match_semantic_pattern("login error", "banana") == (0.0, "")


class TestSuggestions:
    """Test heuristic and merged category suggestions."""

    def test_heuristics(self) -> None:
        analysis = make_analysis("support_request", console_errors=None)

        suggestions = heuristic_suggestions(analysis, "We see an error on the dashboard")

        assert [(s.category, s.confidence) for s in suggestions] == [("bug", 0.7), ("general", 0.6)]

    def test_merge_keeps_max_confidence_and_all_reasons(self) -> None:
        merged = merge_suggestions(
            [
                CategorySuggestion("bug", 0.4, ["pattern"]),
                CategorySuggestion("technical", 0.8, ["tech"]),
                CategorySuggestion("bug", 0.7, ["heuristic"]),
            ]
        )

        assert [(s.category, s.confidence) for s in merged] == [("technical", 0.8), ("bug", 0.7)]
        assert merged[1].reasons == ["pattern", "heuristic"]

    def test_match_patterns_weights_by_success_rate(self, matcher) -> None:
        pattern = ContentPattern("p1", "login token", "keyword", "technical", 0.9, success_rate=0.5)

        matches = matcher.match_patterns("login token expired", [pattern])

        assert len(matches) == 1
        assert matches[0].confidence == 0.5
        assert matches[0].match_type == "exact"

    def test_match_patterns_ignores_weak_matches(self, matcher) -> None:
        pattern = ContentPattern("p1", "login token", "keyword", "technical", 0.9)

        # Half the words match, which does not clear the 0.5 floor.
        assert matcher.match_patterns("login failed", [pattern]) == []

    def test_suggest_category_uses_stored_patterns(self, matcher, repository) -> None:
        repository.create(ContentPattern("p1", "invoice refund", "keyword", "query", 0.9))

        result = matcher.suggest_category(make_analysis(), "Customer asks about an invoice refund")

        assert result.success
        top = result.data[0]
        assert top.category == "query"
        assert top.confidence == 1.0
        assert top.matched_patterns[0].pattern.id == "p1"

    def test_suggest_category_caps_results(self, matcher) -> None:
        analysis = make_analysis("support_request", technical_details=TechnicalInfo(browser="Chrome 120"))

        result = matcher.suggest_category(analysis, "error everywhere")

        assert len(result.data) <= 3
        assert [s.category for s in result.data] == ["technical", "bug", "general"]

    def test_suggest_category_store_failure(self) -> None:
        store = MagicMock()
        store.all.side_effect = RuntimeError("offline")
        matcher = PatternMatcher(PatternRepository(store))

        result = matcher.suggest_category(make_analysis(), "text")

        assert not result.success
        assert isinstance(result.error, DatabaseError)


class TestLearning:
    """Test learning from confirmed categorizations."""

    TEXT = "The api endpoint returns 500 when the api token is refreshed by the server"

    def test_learning_candidates(self) -> None:
        candidates = PatternMatcher.learning_candidates(
            "Contact bob@example.com: the api server and the api token"
        )

        assert candidates == ["api server token", "bob@example.com"]

    def test_learn_creates_keyword_pattern(self, matcher, repository) -> None:
        result = matcher.learn_from_categorization(self.TEXT, "technical", 0.8)

        assert result.success
        pattern = result.data
        assert pattern.pattern == "api endpoint token"
        assert pattern.pattern_type == "keyword"
        assert pattern.success_rate == 1.0
        assert pattern.examples == [self.TEXT]
        assert repository.get(pattern.id) == pattern

    def test_learn_twice_reinforces(self, matcher, repository) -> None:
        first = matcher.learn_from_categorization(self.TEXT, "technical", 0.6).data
        matcher.update_pattern_feedback(first.id, False)

        second = matcher.learn_from_categorization(self.TEXT + " again", "technical", 0.9)

        assert second.success
        assert second.data.id == first.id
        assert second.data.confidence == 0.9
        assert second.data.success_rate == pytest.approx(0.9 + 0.1 * (1 - 0.9))
        assert len(repository.list_all()) == 1
        assert len(second.data.examples) == 2

    @pytest.mark.parametrize(
        "text, category, confidence",
        [
            ("", "technical", 0.5),
            ("api token", "unknown", 0.5),
            ("api token", "technical", 1.5),
            ("plain words only", "technical", 0.5),
        ],
    )
    def test_learn_validation(self, matcher, text, category, confidence) -> None:
        result = matcher.learn_from_categorization(text, category, confidence)

        assert not result.success
        assert isinstance(result.error, ValidationError)


class TestFeedback:
    """Test success-rate feedback."""

    def test_converges_towards_one(self, matcher, repository) -> None:
        repository.create(ContentPattern("p1", "alpha", "keyword", "bug", 0.5, success_rate=0.2))

        rates = [matcher.update_pattern_feedback("p1", True).data.success_rate for _ in range(60)]

        assert rates == sorted(rates)
        assert rates[0] == pytest.approx(0.28)
        assert all(rate <= 1.0 for rate in rates)
        assert rates[-1] > 0.99

    def test_converges_towards_zero(self, matcher, repository) -> None:
        repository.create(ContentPattern("p1", "alpha", "keyword", "bug", 0.5))

        rates = [matcher.update_pattern_feedback("p1", False).data.success_rate for _ in range(60)]

        assert rates == sorted(rates, reverse=True)
        assert all(rate >= 0.0 for rate in rates)
        assert rates[-1] < 0.01

    def test_custom_learning_rate(self, repository) -> None:
        matcher = PatternMatcher(repository, AppConfig(learning_rate=0.5))
        repository.create(ContentPattern("p1", "alpha", "keyword", "bug", 0.5))

        assert matcher.update_pattern_feedback("p1", False).data.success_rate == 0.5

    def test_missing_pattern(self, matcher) -> None:
        result = matcher.update_pattern_feedback("missing", True)

        assert not result.success
        assert isinstance(result.error, NotFoundError)

    def test_batch_counts_skipped(self, matcher, repository) -> None:
        repository.create(ContentPattern("p1", "alpha", "keyword", "bug", 0.5))

        result = matcher.record_feedback_batch([("p1", True), ("missing", False), ("p1", False)])

        assert result.success
        assert result.data.processed == 2
        assert result.data.skipped == 1


class TestHousekeeping:
    """Test pruning and merging through the matcher."""

    def test_consolidate(self, matcher, repository) -> None:
        repository.create(ContentPattern("a", "login token expired", "keyword", "bug", 0.5))
        repository.create(ContentPattern("b", "login token expired", "keyword", "technical", 0.5))
        repository.create(ContentPattern("c", "login token", "keyword", "bug", 0.4))
        repository.create(ContentPattern("d", "dashboard", "keyword", "query", 0.5, success_rate=0.1))

        result = matcher.consolidate()

        assert result.success
        assert result.data == {"merged": 0, "pruned": 1}
        assert {p.id for p in repository.list_all()} == {"a", "b", "c"}

    def test_merge_uses_configured_threshold(self, repository) -> None:
        matcher = PatternMatcher(repository, AppConfig(merge_threshold=0.6))
        repository.create(ContentPattern("a", "login token expired", "keyword", "bug", 0.5))
        repository.create(ContentPattern("c", "login token", "keyword", "bug", 0.4))

        assert matcher.merge_similar_patterns().data == 2
        assert len(repository.list_all()) == 1
