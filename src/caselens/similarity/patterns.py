"""Learned content patterns and category suggestions.

Patterns are matched three ways:

* ``keyword`` - fraction of the pattern's words found in the text,
* ``regex`` - case-insensitive regular expression, all-or-nothing,
* ``semantic`` - overlap of topic tokens derived from pattern and text.

Each raw match is weighted by the pattern's historical success rate, grouped
by category and merged with a few fixed heuristics into ranked suggestions.
"""

from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass
from typing import Dict, Iterable, List, Tuple

from caselens.config import AppConfig
from caselens.errors import CaseLensError, Result, ValidationError
from caselens.models import (
    CATEGORIES,
    CategorySuggestion,
    ContentAnalysisResult,
    ContentPattern,
    PatternMatch,
)
from caselens.storage.repositories import PatternRepository
from caselens.utils.text import (
    TECHNICAL_TERMS,
    extract_entities,
    extract_keywords,
    semantic_tokens,
)

LOGGER = logging.getLogger(__name__)

EXAMPLE_SNIPPET = 200
MAX_LEARNED_KEYWORDS = 3
MAX_LEARNED_ENTITIES = 2


def match_keyword_pattern(text: str, pattern: str) -> Tuple[float, str, bool]:
    """Return ``(confidence, matched_text, is_exact)`` for a keyword pattern."""
    keywords = pattern.lower().split()
    if not keywords:
        return 0.0, "", False
    haystack = text.lower()
    matched = [keyword for keyword in keywords if keyword in haystack]
    return len(matched) / len(keywords), ", ".join(matched), len(matched) == len(keywords)


def match_regex_pattern(text: str, pattern: str) -> Tuple[float, str]:
    try:
        regex = re.compile(pattern, re.IGNORECASE)
    except re.error:
        return 0.0, ""
    found = [match.group(0) for match in regex.finditer(text)]
    return (1.0, ", ".join(found)) if found else (0.0, "")


def match_semantic_pattern(text: str, pattern: str) -> Tuple[float, str]:
    pattern_tokens = semantic_tokens(extract_keywords(pattern))
    if not pattern_tokens:
        return 0.0, ""
    text_tokens = set(semantic_tokens(extract_keywords(text)))
    overlap = [token for token in pattern_tokens if token in text_tokens]
    return len(overlap) / len(pattern_tokens), ", ".join(overlap)


def heuristic_suggestions(analysis: ContentAnalysisResult, text: str) -> List[CategorySuggestion]:
    metadata = analysis.extracted_metadata
    suggestions: List[CategorySuggestion] = []

    if metadata.technical_details is not None or metadata.console_errors:
        suggestions.append(
            CategorySuggestion("technical", 0.8, ["Contains technical details or console errors"])
        )
    if analysis.content_type == "console_log" or "error" in text.lower():
        suggestions.append(
            CategorySuggestion("bug", 0.7, ["Contains error logs or bug-related language"])
        )
    if analysis.content_type == "support_request":
        suggestions.append(
            CategorySuggestion("general", 0.6, ["Identified as general support request"])
        )
    return suggestions


def merge_suggestions(suggestions: Iterable[CategorySuggestion]) -> List[CategorySuggestion]:
    """Collapse suggestions per category: max confidence, concatenated evidence."""
    merged: Dict[str, CategorySuggestion] = {}
    for suggestion in suggestions:
        current = merged.get(suggestion.category)
        if current is None:
            merged[suggestion.category] = CategorySuggestion(
                suggestion.category,
                suggestion.confidence,
                list(suggestion.reasons),
                list(suggestion.matched_patterns),
            )
            continue
        current.confidence = max(current.confidence, suggestion.confidence)
        current.reasons.extend(suggestion.reasons)
        current.matched_patterns.extend(suggestion.matched_patterns)
    return sorted(merged.values(), key=lambda s: s.confidence, reverse=True)


@dataclass(slots=True)
class FeedbackStats:
    processed: int = 0
    skipped: int = 0


class PatternMatcher:
    """Matches text against stored patterns and learns new ones from feedback."""

    def __init__(self, repository: PatternRepository, config: AppConfig | None = None) -> None:
        self.repository = repository
        self.config = config or AppConfig()

    # -- matching ---------------------------------------------------------

    def match_patterns(self, text: str, patterns: Iterable[ContentPattern]) -> List[PatternMatch]:
        floor = self.config.min_pattern_confidence
        matches: List[PatternMatch] = []
        for pattern in patterns:
            if pattern.pattern_type == "keyword":
                confidence, matched, exact = match_keyword_pattern(text, pattern.pattern)
                match_type = "exact" if exact else "partial"
            elif pattern.pattern_type == "regex":
                confidence, matched = match_regex_pattern(text, pattern.pattern)
                match_type = "exact"
            elif pattern.pattern_type == "semantic":
                confidence, matched = match_semantic_pattern(text, pattern.pattern)
                match_type = "semantic"
            else:
                LOGGER.debug("Skipping pattern %s with unknown type %s", pattern.id, pattern.pattern_type)
                continue

            if confidence > floor:
                matches.append(
                    PatternMatch(
                        pattern=pattern,
                        confidence=confidence * pattern.success_rate,
                        matched_text=matched,
                        match_type=match_type,
                    )
                )
        return sorted(matches, key=lambda m: m.confidence, reverse=True)

    @staticmethod
    def pattern_suggestions(matches: Iterable[PatternMatch]) -> List[CategorySuggestion]:
        groups: Dict[str, List[PatternMatch]] = {}
        for match in matches:
            groups.setdefault(match.pattern.category, []).append(match)

        return [
            CategorySuggestion(
                category=category,
                confidence=sum(m.confidence for m in group) / len(group),
                reasons=[
                    f'Pattern match: "{m.matched_text}" ({round(m.confidence * 100)}%)' for m in group
                ],
                matched_patterns=group,
            )
            for category, group in groups.items()
        ]

    def suggest_category(
        self, analysis: ContentAnalysisResult, text: str
    ) -> Result[List[CategorySuggestion]]:
        """Top category suggestions from stored patterns and heuristics."""
        try:
            patterns = self.repository.list_all()
            suggestions = self.pattern_suggestions(self.match_patterns(text, patterns))
            suggestions.extend(heuristic_suggestions(analysis, text))
            merged = merge_suggestions(suggestions)
            return Result.ok(merged[: self.config.max_suggestions_per_analysis])
        except CaseLensError as exc:
            LOGGER.warning("Category suggestion failed: %s", exc)
            return Result.fail(exc)

    # -- learning ---------------------------------------------------------

    @staticmethod
    def learning_candidates(text: str) -> List[str]:
        """Candidate pattern strings, strongest first.

        Significant keywords are technical terms or words repeated in the text.
        """
        keywords = extract_keywords(text)
        counts: Dict[str, int] = {}
        for keyword in keywords:
            counts[keyword] = counts.get(keyword, 0) + 1
        significant = [
            keyword for keyword in counts if keyword in TECHNICAL_TERMS or counts[keyword] > 1
        ]

        candidates: List[str] = []
        if significant:
            candidates.append(" ".join(significant[:MAX_LEARNED_KEYWORDS]))
        entities = extract_entities(text)
        if entities:
            candidates.append(" ".join(entities[:MAX_LEARNED_ENTITIES]))
        return candidates

    def learn_from_categorization(
        self, text: str, category: str, confidence: float
    ) -> Result[ContentPattern]:
        """Store a keyword pattern learned from a confirmed categorization.

        Learning the same pattern again reinforces the stored one instead of
        creating a duplicate.
        """
        try:
            if not text or not text.strip():
                raise ValidationError("Text is required", "text")
            if category not in CATEGORIES:
                raise ValidationError(f"Invalid category: {category}", "category")
            if not 0.0 <= confidence <= 1.0:
                raise ValidationError("Confidence must be between 0 and 1", "confidence")

            candidates = self.learning_candidates(text)
            if not candidates:
                raise ValidationError("No learnable patterns found", "text")

            example = text[:EXAMPLE_SNIPPET]
            existing = self._find_existing(candidates[0], category)
            if existing is not None:
                return Result.ok(self._reinforce(existing, example, confidence))

            pattern = ContentPattern(
                id=str(uuid.uuid4()),
                pattern=candidates[0],
                pattern_type="keyword",
                category=category,
                confidence=confidence,
                examples=[example],
                success_rate=1.0,
            )
            self.repository.create(pattern)
            LOGGER.info("Learned %s pattern %r for %s", pattern.pattern_type, pattern.pattern, category)
            return Result.ok(pattern)
        except CaseLensError as exc:
            return Result.fail(exc)

    def _find_existing(self, pattern: str, category: str) -> ContentPattern | None:
        for candidate in self.repository.find_by_filters(pattern_type="keyword", category=category):
            if candidate.pattern == pattern:
                return candidate
        return None

    def _reinforce(self, pattern: ContentPattern, example: str, confidence: float) -> ContentPattern:
        pattern = self.repository.add_example(pattern.id, example)
        pattern.confidence = max(pattern.confidence, confidence)
        pattern.success_rate = self._moved_rate(pattern.success_rate, True)
        LOGGER.debug("Reinforced pattern %s (success rate %.3f)", pattern.id, pattern.success_rate)
        return self.repository.save(pattern)

    def _moved_rate(self, rate: float, was_correct: bool) -> float:
        target = 1.0 if was_correct else 0.0
        rate += self.config.learning_rate * (target - rate)
        return max(0.0, min(1.0, rate))

    def update_pattern_feedback(self, pattern_id: str, was_correct: bool) -> Result[ContentPattern]:
        """Move the pattern's success rate toward 1 or 0 by an exponential moving average."""
        try:
            pattern = self.repository.get(pattern_id)
            new_rate = self._moved_rate(pattern.success_rate, was_correct)
            return Result.ok(self.repository.update_success_rate(pattern_id, new_rate))
        except CaseLensError as exc:
            return Result.fail(exc)

    def record_feedback_batch(self, feedback: Iterable[Tuple[str, bool]]) -> Result[FeedbackStats]:
        stats = FeedbackStats()
        for pattern_id, was_correct in feedback:
            result = self.update_pattern_feedback(pattern_id, was_correct)
            if result.success:
                stats.processed += 1
            else:
                LOGGER.warning("Skipping feedback for pattern %s: %s", pattern_id, result.error)
                stats.skipped += 1
        return Result.ok(stats)

    # -- housekeeping -----------------------------------------------------

    def cleanup_low_performing(self, min_success_rate: float | None = None) -> Result[int]:
        floor = self.config.prune_success_rate if min_success_rate is None else min_success_rate
        try:
            return Result.ok(self.repository.cleanup_low_performing(floor))
        except CaseLensError as exc:
            return Result.fail(exc)

    def merge_similar_patterns(self, threshold: float | None = None) -> Result[int]:
        threshold = self.config.merge_threshold if threshold is None else threshold
        try:
            return Result.ok(self.repository.merge_similar_patterns(threshold))
        except CaseLensError as exc:
            return Result.fail(exc)

    def consolidate(self) -> Result[Dict[str, int]]:
        """Merge near-identical patterns, then prune the ones that underperform."""
        merged = self.merge_similar_patterns()
        if not merged.success:
            return Result.fail(merged.error)
        pruned = self.cleanup_low_performing()
        if not pruned.success:
            return Result.fail(pruned.error)
        return Result.ok({"merged": merged.data, "pruned": pruned.data})
