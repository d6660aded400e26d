"""Typed repositories over the generic entity store.

Repositories raise :mod:`caselens.errors` exceptions; the services above them
convert those into :class:`~caselens.errors.Result` values.
"""

from __future__ import annotations

import logging
import re
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from typing import Dict, Iterator, List

from caselens.errors import CaseLensError, DatabaseError, NotFoundError, ValidationError
from caselens.models import (
    CATEGORIES,
    PATTERN_TYPES,
    ContentPattern,
    SavedSearch,
    SearchIndexEntry,
    utcnow,
)
from caselens.storage.store import EntityStore

LOGGER = logging.getLogger(__name__)

PATTERNS = "content_patterns"
SEARCH_INDEX = "search_index"
SAVED_SEARCHES = "saved_searches"

MAX_PATTERN_LENGTH = 1000
MAX_EXAMPLES = 10
MAX_EXAMPLE_LENGTH = 500
MERGED_EXAMPLES = 5


@contextmanager
def store_errors(operation: str) -> Iterator[None]:
    """Re-raise unexpected store failures as :class:`DatabaseError`."""
    try:
        yield
    except CaseLensError:
        raise
    except Exception as exc:
        raise DatabaseError.wrap(operation, exc) from exc


def pattern_word_similarity(first: str, second: str) -> float:
    words1 = set(first.lower().split())
    words2 = set(second.lower().split())
    union = words1 | words2
    return len(words1 & words2) / len(union) if union else 0.0


@dataclass(slots=True)
class PatternStatistics:
    total_patterns: int = 0
    patterns_by_type: Dict[str, int] = field(default_factory=dict)
    patterns_by_category: Dict[str, int] = field(default_factory=dict)
    average_confidence: float = 0.0
    average_success_rate: float = 0.0
    top_performing_patterns: List[ContentPattern] = field(default_factory=list)


class PatternRepository:
    """Persistence and housekeeping for learned :class:`ContentPattern` records."""

    def __init__(self, store: EntityStore) -> None:
        self.store = store

    # -- validation -------------------------------------------------------

    @staticmethod
    def validate_entity(pattern: ContentPattern) -> None:
        if not pattern.pattern or not pattern.pattern.strip():
            raise ValidationError("Pattern is required", "pattern")
        if len(pattern.pattern) > MAX_PATTERN_LENGTH:
            raise ValidationError(
                f"Pattern must be less than {MAX_PATTERN_LENGTH} characters", "pattern"
            )
        if pattern.pattern_type not in PATTERN_TYPES:
            raise ValidationError("Invalid pattern type", "pattern_type")
        if pattern.category not in CATEGORIES:
            raise ValidationError("Invalid category", "category")
        if not 0.0 <= pattern.confidence <= 1.0:
            raise ValidationError("Confidence must be between 0 and 1", "confidence")
        if not 0.0 <= pattern.success_rate <= 1.0:
            raise ValidationError("Success rate must be between 0 and 1", "success_rate")
        if len(pattern.examples) > MAX_EXAMPLES:
            raise ValidationError(
                f"Maximum {MAX_EXAMPLES} examples allowed per pattern", "examples"
            )
        if any(len(example) > MAX_EXAMPLE_LENGTH for example in pattern.examples):
            raise ValidationError(
                f"Individual examples must be at most {MAX_EXAMPLE_LENGTH} characters", "examples"
            )
        if pattern.pattern_type == "regex":
            try:
                re.compile(pattern.pattern)
            except re.error as exc:
                raise ValidationError(f"Invalid regex pattern syntax: {exc}", "pattern") from exc

    def validate_pattern(self, pattern: ContentPattern) -> None:
        """Entity validation plus a duplicate check against stored patterns."""
        self.validate_entity(pattern)
        with store_errors("Failed to validate pattern"):
            existing = self.store.query_by_equality(PATTERNS, "pattern", pattern.pattern)
        for data in existing:
            if (
                data.get("pattern_type") == pattern.pattern_type
                and data.get("category") == pattern.category
                and data.get("id") != pattern.id
            ):
                raise ValidationError("Pattern already exists", "pattern")

    # -- CRUD -------------------------------------------------------------

    def create(self, pattern: ContentPattern) -> ContentPattern:
        self.validate_pattern(pattern)
        with store_errors("Failed to create pattern"):
            self.store.put(PATTERNS, pattern.to_dict())
        return pattern

    def save(self, pattern: ContentPattern) -> ContentPattern:
        self.validate_entity(pattern)
        with store_errors(f"Failed to save pattern {pattern.id}"):
            self.store.put(PATTERNS, pattern.to_dict())
        return pattern

    def get(self, pattern_id: str) -> ContentPattern:
        with store_errors(f"Failed to load pattern {pattern_id}"):
            data = self.store.get(PATTERNS, pattern_id)
        if data is None:
            raise NotFoundError(f"Pattern {pattern_id} not found", PATTERNS, pattern_id)
        return ContentPattern.from_dict(data)

    def delete(self, pattern_id: str) -> None:
        with store_errors(f"Failed to delete pattern {pattern_id}"):
            deleted = self.store.delete_one(PATTERNS, pattern_id)
        if not deleted:
            raise NotFoundError(f"Pattern {pattern_id} not found", PATTERNS, pattern_id)

    def list_all(self) -> List[ContentPattern]:
        """All patterns, highest confidence first."""
        with store_errors("Failed to list patterns"):
            rows = self.store.all(PATTERNS)
        patterns = [ContentPattern.from_dict(row) for row in rows]
        return sorted(patterns, key=lambda p: p.confidence, reverse=True)

    def find_by_filters(
        self,
        *,
        pattern_type: str | None = None,
        category: str | None = None,
        min_confidence: float | None = None,
        min_success_rate: float | None = None,
    ) -> List[ContentPattern]:
        patterns = self.list_all()
        if pattern_type:
            patterns = [p for p in patterns if p.pattern_type == pattern_type]
        if category:
            patterns = [p for p in patterns if p.category == category]
        if min_confidence is not None:
            patterns = [p for p in patterns if p.confidence >= min_confidence]
        if min_success_rate is not None:
            patterns = [p for p in patterns if p.success_rate >= min_success_rate]
        return patterns

    def find_top_performing(self, limit: int = 10) -> List[ContentPattern]:
        return sorted(self.list_all(), key=lambda p: p.success_rate, reverse=True)[:limit]

    def update_success_rate(self, pattern_id: str, success_rate: float) -> ContentPattern:
        pattern = self.get(pattern_id)
        pattern.success_rate = max(0.0, min(1.0, success_rate))
        return self.save(pattern)

    def add_example(self, pattern_id: str, example: str) -> ContentPattern:
        """Append an example, keeping the newest five distinct ones."""
        pattern = self.get(pattern_id)
        example = example[:MAX_EXAMPLE_LENGTH]
        if example not in pattern.examples:
            pattern.examples.append(example)
            if len(pattern.examples) > MERGED_EXAMPLES:
                pattern.examples.pop(0)
        return self.save(pattern)

    def get_statistics(self) -> PatternStatistics:
        patterns = self.list_all()
        if not patterns:
            return PatternStatistics()

        by_type = {name: 0 for name in PATTERN_TYPES}
        by_category = {name: 0 for name in CATEGORIES}
        for pattern in patterns:
            by_type[pattern.pattern_type] = by_type.get(pattern.pattern_type, 0) + 1
            by_category[pattern.category] = by_category.get(pattern.category, 0) + 1

        return PatternStatistics(
            total_patterns=len(patterns),
            patterns_by_type=by_type,
            patterns_by_category=by_category,
            average_confidence=sum(p.confidence for p in patterns) / len(patterns),
            average_success_rate=sum(p.success_rate for p in patterns) / len(patterns),
            top_performing_patterns=self.find_top_performing(5),
        )

    # -- housekeeping -----------------------------------------------------

    def cleanup_low_performing(self, min_success_rate: float = 0.3) -> int:
        """Delete patterns whose success rate fell below ``min_success_rate``."""
        doomed = [p.id for p in self.list_all() if p.success_rate < min_success_rate]
        if not doomed:
            return 0
        with store_errors("Failed to cleanup low-performing patterns"):
            self.store.bulk_delete(PATTERNS, doomed)
        LOGGER.info("Removed %d low-performing patterns (< %.2f)", len(doomed), min_success_rate)
        return len(doomed)

    def merge_similar_patterns(self, similarity_threshold: float = 0.8) -> int:
        """Fold patterns of equal type and category with overlapping words.

        Returns the number of stored patterns that were replaced.
        """
        patterns = self.list_all()
        absorbed: set[str] = set()
        merged: List[ContentPattern] = []

        for i, first in enumerate(patterns):
            if first.id in absorbed:
                continue
            group = [first]
            for second in patterns[i + 1 :]:
                if second.id in absorbed:
                    continue
                if (
                    first.pattern_type == second.pattern_type
                    and first.category == second.category
                    and pattern_word_similarity(first.pattern, second.pattern) >= similarity_threshold
                ):
                    group.append(second)
                    absorbed.add(second.id)
            if len(group) > 1:
                absorbed.add(first.id)
                merged.append(self._merge_group(group))

        if not merged:
            return 0

        with store_errors("Failed to merge similar patterns"):
            # Survivors keep their id, so write them before dropping the rest.
            for pattern in merged:
                self.store.put(PATTERNS, pattern.to_dict())
            self.store.bulk_delete(PATTERNS, absorbed - {pattern.id for pattern in merged})
        LOGGER.info("Merged %d patterns into %d", len(absorbed), len(merged))
        return len(absorbed)

    @staticmethod
    def _merge_group(group: List[ContentPattern]) -> ContentPattern:
        words: dict[str, None] = {}
        examples: dict[str, None] = {}
        for pattern in group:
            for word in pattern.pattern.lower().split():
                words.setdefault(word, None)
            for example in pattern.examples:
                examples.setdefault(example, None)

        head = group[0]
        return replace(
            head,
            pattern=" ".join(words),
            confidence=sum(p.confidence for p in group) / len(group),
            success_rate=sum(p.success_rate for p in group) / len(group),
            examples=list(examples)[:MERGED_EXAMPLES],
        )


class SearchIndexRepository:
    """One :class:`SearchIndexEntry` per indexed entity, keyed by ``entity_id``."""

    def __init__(self, store: EntityStore) -> None:
        self.store = store

    def replace(self, entry: SearchIndexEntry) -> SearchIndexEntry:
        """Delete any entry for ``entry.entity_id`` and insert ``entry``."""
        with store_errors(f"Failed to index entity {entry.entity_id}"):
            self._remove(entry.entity_id)
            self.store.put(SEARCH_INDEX, entry.to_dict())
        return entry

    def _remove(self, entity_id: str) -> int:
        existing = self.store.query_by_equality(SEARCH_INDEX, "entity_id", entity_id)
        if not existing:
            return 0
        return self.store.bulk_delete(SEARCH_INDEX, [row["id"] for row in existing])

    def remove_by_entity(self, entity_id: str) -> int:
        with store_errors(f"Failed to remove {entity_id} from index"):
            return self._remove(entity_id)

    def get_by_entity(self, entity_id: str) -> SearchIndexEntry:
        with store_errors(f"Failed to load index entry for {entity_id}"):
            rows = self.store.query_by_equality(SEARCH_INDEX, "entity_id", entity_id)
        if not rows:
            raise NotFoundError(f"No index entry for {entity_id}", SEARCH_INDEX, entity_id)
        return SearchIndexEntry.from_dict(rows[0])

    def all(self) -> List[SearchIndexEntry]:
        with store_errors("Failed to read search index"):
            rows = self.store.all(SEARCH_INDEX)
        return [SearchIndexEntry.from_dict(row) for row in rows]

    def clear(self) -> int:
        with store_errors("Failed to clear search index"):
            return self.store.clear(SEARCH_INDEX)


class SavedSearchRepository:
    def __init__(self, store: EntityStore) -> None:
        self.store = store

    @staticmethod
    def validate_entity(saved: SavedSearch) -> None:
        if not saved.name or not saved.name.strip():
            raise ValidationError("Saved search name is required", "name")
        if saved.use_count < 0:
            raise ValidationError("Use count cannot be negative", "use_count")

    def create(self, saved: SavedSearch) -> SavedSearch:
        self.validate_entity(saved)
        with store_errors("Failed to save search"):
            self.store.put(SAVED_SEARCHES, saved.to_dict())
        return saved

    def get(self, search_id: str) -> SavedSearch:
        with store_errors(f"Failed to load saved search {search_id}"):
            data = self.store.get(SAVED_SEARCHES, search_id)
        if data is None:
            raise NotFoundError(f"Saved search {search_id} not found", SAVED_SEARCHES, search_id)
        return SavedSearch.from_dict(data)

    def list_recent(self) -> List[SavedSearch]:
        """Saved searches, newest first."""
        with store_errors("Failed to get saved searches"):
            rows = self.store.all(SAVED_SEARCHES)
        searches = [SavedSearch.from_dict(row) for row in rows]
        return sorted(searches, key=lambda s: s.created_at, reverse=True)

    def find_by_name(self, name: str) -> List[SavedSearch]:
        needle = name.lower()
        return [s for s in self.list_recent() if needle in s.name.lower()]

    def touch(self, search_id: str) -> SavedSearch:
        """Record one more use of a saved search."""
        saved = self.get(search_id)
        saved.last_used = utcnow()
        saved.use_count += 1
        with store_errors(f"Failed to update saved search {search_id}"):
            self.store.put(SAVED_SEARCHES, saved.to_dict())
        return saved

    def delete(self, search_id: str) -> None:
        with store_errors(f"Failed to delete saved search {search_id}"):
            deleted = self.store.delete_one(SAVED_SEARCHES, search_id)
        if not deleted:
            raise NotFoundError(f"Saved search {search_id} not found", SAVED_SEARCHES, search_id)
