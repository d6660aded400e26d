"""Relevance-ranked search over the index."""

from __future__ import annotations

import logging
import re
import time
import uuid
from typing import Dict, List, Sequence

import numpy as np

from caselens.config import AppConfig
from caselens.errors import CaseLensError, Result, ValidationError
from caselens.models import (
    SavedSearch,
    SearchFilters,
    SearchIndexEntry,
    SearchMatch,
    SearchQuery,
    SearchResponse,
    SearchResult,
    SearchStats,
    SearchSuggestion,
    utcnow,
)
from caselens.storage.repositories import SavedSearchRepository, SearchIndexRepository
from caselens.storage.store import Entity, EntityStore
from caselens.utils.text import sliding_windows, tokenize_query

LOGGER = logging.getLogger(__name__)

TEXT_WEIGHT = 0.6
TITLE_WEIGHT = 0.3
TAG_WEIGHT = 0.1

SECONDS_PER_DAY = 86400.0


def term_hits(terms: Sequence[str], text: str) -> int:
    """Number of query terms occurring as substrings of ``text``."""
    haystack = text.lower()
    return sum(1 for term in terms if term in haystack)


def find_matches(terms: Sequence[str], content: str) -> List[SearchMatch]:
    matches: List[SearchMatch] = []
    for term in terms:
        position = content.find(term)
        if position == -1:
            continue
        word = re.search(rf"\b{re.escape(term)}\b", content)
        if word:
            matches.append(SearchMatch(term, "exact", "content", word.start(), word.end()))
        else:
            matches.append(SearchMatch(term, "partial", "content", position, position + len(term)))
    return matches


def generate_snippet(content: str, terms: Sequence[str], *, length: int = 150, step: int = 10) -> str:
    """Pick the window of ``length`` chars holding the most distinct query terms.

    Ties keep the earliest window; ellipses mark truncation at either end.
    """
    if len(content) <= length:
        return content

    haystack = content.lower()
    best_position = 0
    best_hits = 0
    for start, window in sliding_windows(haystack, size=length, step=step):
        hits = term_hits(terms, window)
        if hits > best_hits:
            best_hits = hits
            best_position = start

    snippet = content[best_position : best_position + length]
    if best_position > 0:
        snippet = "..." + snippet
    if best_position + length < len(content):
        snippet += "..."
    return snippet.strip()


def _entity_value_matches(entity: Entity, field: str, allowed: Sequence[str] | str | None) -> bool:
    if not allowed:
        return True
    value = entity.get(field)
    if isinstance(allowed, str):
        return value == allowed
    return value in allowed


class Searcher:
    """Scores index entries against a query and hydrates the winners.

    ``relevance = min(1, text*0.6 + title*0.3 + tags*0.1 + recency)`` where the
    first three are the share of query terms found in that field and recency
    decays linearly from ``recency_weight`` to zero over the recency window.
    """

    def __init__(
        self,
        store: EntityStore,
        config: AppConfig | None = None,
        *,
        index: SearchIndexRepository | None = None,
        saved: SavedSearchRepository | None = None,
    ) -> None:
        self.store = store
        self.config = config or AppConfig()
        self.index = index or SearchIndexRepository(store)
        self.saved = saved or SavedSearchRepository(store)

    # -- scoring ----------------------------------------------------------

    def relevance_scores(self, terms: Sequence[str], entries: Sequence[SearchIndexEntry]) -> np.ndarray:
        if not entries:
            return np.zeros(0, dtype="float64")

        recency = self._recency_boost(entries)
        if not terms:
            return np.minimum(1.0, recency)

        content_hits = np.array([term_hits(terms, e.content) for e in entries], dtype="float64")
        title_hits = np.array([term_hits(terms, e.title) for e in entries], dtype="float64")
        tag_hits = np.array(
            [term_hits(terms, " ".join(e.tags)) if e.tags else 0 for e in entries], dtype="float64"
        )

        total = float(len(terms))
        scores = (
            content_hits / total * TEXT_WEIGHT
            + title_hits / total * TITLE_WEIGHT
            + tag_hits / total * TAG_WEIGHT
            + recency
        )
        return np.clip(scores, 0.0, 1.0)

    def _recency_boost(self, entries: Sequence[SearchIndexEntry]) -> np.ndarray:
        now = utcnow()
        window = self.config.recency_window_days
        days = np.array(
            [(now - entry.updated_at).total_seconds() / SECONDS_PER_DAY for entry in entries],
            dtype="float64",
        )
        return np.clip((window - days) / window, 0.0, 1.0) * self.config.recency_weight

    # -- filtering --------------------------------------------------------

    @staticmethod
    def _apply_index_filters(
        entries: List[SearchIndexEntry], filters: SearchFilters, breakdown: Dict[str, int]
    ) -> List[SearchIndexEntry]:
        if filters.entity_types:
            entries = [e for e in entries if e.entity_type in filters.entity_types]
            breakdown["entity_types"] = len(entries)
        if filters.tags:
            wanted = {tag.lower() for tag in filters.tags}
            entries = [e for e in entries if wanted & {tag.lower() for tag in e.tags}]
            breakdown["tags"] = len(entries)
        if filters.date_from is not None:
            entries = [e for e in entries if e.updated_at >= filters.date_from]
            breakdown["date_from"] = len(entries)
        if filters.date_to is not None:
            entries = [e for e in entries if e.updated_at <= filters.date_to]
            breakdown["date_to"] = len(entries)
        return entries

    def _apply_entity_filters(
        self, results: List[SearchResult], filters: SearchFilters, breakdown: Dict[str, int]
    ) -> List[SearchResult]:
        hydrated = self._hydrate(results)
        for field in ("status", "priority", "classification", "customer_id"):
            allowed = getattr(filters, field)
            if not allowed:
                continue
            hydrated = [r for r in hydrated if _entity_value_matches(r.entity or {}, field, allowed)]
            breakdown[field] = len(hydrated)
        return hydrated

    # -- hydration --------------------------------------------------------

    def _hydrate(self, results: List[SearchResult]) -> List[SearchResult]:
        """Attach stored entities; results whose entity cannot be loaded are dropped."""
        hydrated: List[SearchResult] = []
        for result in results:
            if result.entity is not None:
                hydrated.append(result)
                continue
            try:
                entity = self.store.get(result.entity_type, result.entity_id)
            except Exception as exc:
                LOGGER.warning("Failed to load entity %s: %s", result.entity_id, exc)
                continue
            if entity is None:
                LOGGER.debug("Dropping orphaned index entry for %s", result.entity_id)
                continue
            result.entity = entity
            hydrated.append(result)
        return hydrated

    # -- public API -------------------------------------------------------

    def _empty_response(self, start: float) -> SearchResponse:
        return SearchResponse(
            results=[],
            stats=SearchStats(
                total_results=0,
                search_time_ms=(time.perf_counter() - start) * 1000,
                most_relevant_score=0.0,
            ),
        )

    def search(self, query: SearchQuery) -> Result[SearchResponse]:
        start = time.perf_counter()
        text = (query.text or "").strip()
        filters = query.filters if query.filters is not None and not query.filters.is_empty() else None

        if len(text) < self.config.min_query_length and filters is None:
            return Result.ok(self._empty_response(start))

        try:
            if query.offset < 0 or (query.limit is not None and query.limit < 0):
                raise ValidationError("Offset and limit must be non-negative", "offset")

            breakdown: Dict[str, int] = {}
            entries = self.index.all()
            if filters is not None:
                entries = self._apply_index_filters(entries, filters, breakdown)

            terms = tokenize_query(text, min_length=self.config.min_query_length)
            if text and not terms:
                return Result.ok(self._empty_response(start))
            scores = self.relevance_scores(terms, entries)
            LOGGER.debug("Scored %d index entries for terms %s", len(entries), terms)

            results: List[SearchResult] = []
            for entry, score in zip(entries, scores):
                score = float(score)
                # Browsing by filters alone keeps everything that passed them.
                if terms and score <= self.config.relevance_floor:
                    continue
                snippet = generate_snippet(
                    entry.content,
                    terms,
                    length=self.config.snippet_length,
                    step=self.config.snippet_step,
                )
                results.append(
                    SearchResult(
                        id=entry.id,
                        entity_id=entry.entity_id,
                        entity_type=entry.entity_type,
                        title=entry.title,
                        snippet=snippet,
                        relevance_score=score,
                        matches=find_matches(terms, entry.content),
                        created_at=entry.created_at,
                        updated_at=entry.updated_at,
                    )
                )

            if filters is not None and filters.has_entity_filters():
                results = self._apply_entity_filters(results, filters, breakdown)

            results = self.sort_results(results, query.sort_by, query.sort_order)
            total = len(results)
            limit = query.limit if query.limit is not None else self.config.default_limit
            page = self._hydrate(results[query.offset : query.offset + limit])

            return Result.ok(SearchResponse(results=page, stats=self._stats(page, total, breakdown, start)))
        except CaseLensError as exc:
            LOGGER.error("Search failed: %s", exc)
            return Result.fail(exc)

    @staticmethod
    def sort_results(results: List[SearchResult], sort_by: str, sort_order: str) -> List[SearchResult]:
        if sort_by == "title":
            key = lambda r: r.title.lower()  # noqa: E731
        else:
            # date has no dedicated ordering yet and ranks by relevance
            key = lambda r: r.relevance_score  # noqa: E731
        return sorted(results, key=key, reverse=sort_order == "desc")

    @staticmethod
    def _stats(
        results: List[SearchResult], total: int, breakdown: Dict[str, int], start: float
    ) -> SearchStats:
        entity_breakdown: Dict[str, int] = {}
        for result in results:
            entity_breakdown[result.entity_type] = entity_breakdown.get(result.entity_type, 0) + 1
        return SearchStats(
            total_results=total,
            search_time_ms=(time.perf_counter() - start) * 1000,
            most_relevant_score=max((r.relevance_score for r in results), default=0.0),
            entity_breakdown=entity_breakdown,
            filter_breakdown=breakdown,
        )

    # -- suggestions ------------------------------------------------------

    def get_suggestions(self, partial: str) -> Result[List[SearchSuggestion]]:
        if len(partial) < self.config.min_query_length:
            return Result.ok([])

        prefix = partial.lower()
        try:
            suggestions = self._autocomplete(prefix)
        except CaseLensError as exc:
            return Result.fail(exc)
        suggestions.extend(self._recent(prefix))
        suggestions.extend(self._popular(prefix))

        unique: Dict[str, SearchSuggestion] = {}
        for suggestion in suggestions:
            unique.setdefault(suggestion.text, suggestion)
        return Result.ok(list(unique.values())[: self.config.max_suggestions])

    def _autocomplete(self, prefix: str) -> List[SearchSuggestion]:
        words: Dict[str, None] = {}
        for entry in self.index.all():
            for word in tokenize_query(f"{entry.content} {entry.title}"):
                if word.startswith(prefix) and len(word) > len(prefix):
                    words.setdefault(word, None)
        return [SearchSuggestion(word, "autocomplete") for word in list(words)[: self.config.max_autocomplete]]

    def _saved_matching(self, prefix: str) -> List[SavedSearch]:
        try:
            searches = self.saved.list_recent()
        except CaseLensError as exc:
            LOGGER.warning("Saved searches unavailable for suggestions: %s", exc)
            return []
        return [s for s in searches if s.query and s.query.lower().startswith(prefix)]

    def _recent(self, prefix: str) -> List[SearchSuggestion]:
        searches = sorted(self._saved_matching(prefix), key=lambda s: s.last_used, reverse=True)
        return [SearchSuggestion(s.query, "recent") for s in searches[: self.config.max_autocomplete]]

    def _popular(self, prefix: str) -> List[SearchSuggestion]:
        searches = sorted(self._saved_matching(prefix), key=lambda s: s.use_count, reverse=True)
        return [
            SearchSuggestion(s.query, "popular")
            for s in searches[: self.config.max_autocomplete]
            if s.use_count > 1
        ]

    # -- saved searches ---------------------------------------------------

    def save_search(self, name: str, query: SearchQuery) -> Result[SavedSearch]:
        now = utcnow()
        saved = SavedSearch(
            id=str(uuid.uuid4()),
            name=name,
            query=query.text or "",
            filters=query.filters or SearchFilters(),
            created_at=now,
            last_used=now,
            use_count=1,
        )
        try:
            return Result.ok(self.saved.create(saved))
        except CaseLensError as exc:
            return Result.fail(exc)

    def get_saved_searches(self) -> Result[List[SavedSearch]]:
        try:
            return Result.ok(self.saved.list_recent())
        except CaseLensError as exc:
            return Result.fail(exc)

    def delete_saved_search(self, search_id: str) -> Result[None]:
        try:
            self.saved.delete(search_id)
            return Result.ok()
        except CaseLensError as exc:
            return Result.fail(exc)

    def use_saved_search(self, search_id: str, **overrides) -> Result[SearchResponse]:
        """Run a saved search, recording the use."""
        try:
            saved = self.saved.touch(search_id)
        except CaseLensError as exc:
            return Result.fail(exc)
        return self.search(SearchQuery(text=saved.query, filters=saved.filters, **overrides))
