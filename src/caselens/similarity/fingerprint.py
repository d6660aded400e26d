"""Content fingerprints and weighted similarity between them."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Generic, Iterable, List, Sequence, TypeVar

from caselens.config import AppConfig
from caselens.errors import CaseLensError, Result
from caselens.models import ContentFingerprint, SimilarityResult, StructureMetrics
from caselens.utils.hashing import content_hash
from caselens.utils.text import (
    extract_entities,
    extract_keywords,
    jaccard,
    normalize,
    semantic_tokens,
    structural_metrics,
)

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

KEYWORD_WEIGHT = 0.4
ENTITY_WEIGHT = 0.3
STRUCTURE_WEIGHT = 0.2
SEMANTIC_WEIGHT = 0.1

# A component above its threshold is reported in ``SimilarityResult.reasons``.
KEYWORD_REASON = 0.3
ENTITY_REASON = 0.2
STRUCTURE_REASON = 0.5
SEMANTIC_REASON = 0.4

AGREEMENT_LEVEL = 0.5


def create_fingerprint(text: str) -> ContentFingerprint:
    """Build a :class:`ContentFingerprint` for ``text``."""
    normalized = normalize(text)
    keywords = extract_keywords(normalized)
    entities = extract_entities(text)
    return ContentFingerprint(
        id=str(uuid.uuid4()),
        hash=content_hash(normalized),
        keywords=keywords,
        entities=entities,
        structure=structural_metrics(text),
        semantic_tokens=semantic_tokens([*keywords, *entities]),
    )


def _closeness(first: float, second: float) -> float:
    return 1.0 - abs(first - second) / max(first, second, 1)


def structural_similarity(first: StructureMetrics, second: StructureMetrics) -> float:
    return (
        _closeness(first.word_count, second.word_count)
        + _closeness(first.sentence_count, second.sentence_count)
        + _closeness(first.technical_term_count, second.technical_term_count)
    ) / 3


def agreement_confidence(components: Sequence[float]) -> float:
    """Confidence grows with the number of signals that agree, not their size."""
    strong = sum(1 for value in components if value > AGREEMENT_LEVEL)
    return min(0.9, 0.3 + strong * 0.15)


def similarity(first: ContentFingerprint, second: ContentFingerprint) -> SimilarityResult:
    """Weighted blend of keyword, entity, structure and topic agreement."""
    keyword_sim = jaccard(first.keywords, second.keywords)
    entity_sim = jaccard(first.entities, second.entities)
    struct_sim = structural_similarity(first.structure, second.structure)
    semantic_sim = jaccard(first.semantic_tokens, second.semantic_tokens)

    reasons: List[str] = []
    total = 0.0
    weight_sum = 0.0

    total += keyword_sim * KEYWORD_WEIGHT
    weight_sum += KEYWORD_WEIGHT
    if keyword_sim > KEYWORD_REASON:
        reasons.append(f"{round(keyword_sim * 100)}% keyword overlap")

    total += entity_sim * ENTITY_WEIGHT
    weight_sum += ENTITY_WEIGHT
    if entity_sim > ENTITY_REASON:
        reasons.append(f"{round(entity_sim * 100)}% entity overlap")

    total += struct_sim * STRUCTURE_WEIGHT
    weight_sum += STRUCTURE_WEIGHT
    if struct_sim > STRUCTURE_REASON:
        reasons.append(f"Similar structure ({round(struct_sim * 100)}% match)")

    total += semantic_sim * SEMANTIC_WEIGHT
    weight_sum += SEMANTIC_WEIGHT
    if semantic_sim > SEMANTIC_REASON:
        reasons.append(f"{round(semantic_sim * 100)}% semantic similarity")

    score = total / weight_sum if weight_sum > 0 else 0.0
    return SimilarityResult(
        similarity=max(0.0, min(1.0, score)),
        confidence=agreement_confidence((keyword_sim, entity_sim, struct_sim, semantic_sim)),
        reasons=reasons,
    )


@dataclass(slots=True)
class SimilarMatch(Generic[T]):
    candidate: T
    similarity: SimilarityResult


def _case_text(candidate: Any) -> str | None:
    if isinstance(candidate, dict):
        return candidate.get("description")
    return getattr(candidate, "description", None)


class SimilarityEngine:
    """Finds similar and duplicate records for a fingerprint.

    Candidates are arbitrary records; ``text_of`` extracts the text to compare
    (a case's ``description`` by default). Candidates without text are skipped.
    """

    def __init__(
        self,
        config: AppConfig | None = None,
        *,
        text_of: Callable[[Any], str | None] = _case_text,
    ) -> None:
        self.config = config or AppConfig()
        self.text_of = text_of

    def create_fingerprint(self, text: str) -> Result[ContentFingerprint]:
        try:
            return Result.ok(create_fingerprint(text))
        except (CaseLensError, ValueError) as exc:
            LOGGER.error("Failed to create content fingerprint: %s", exc)
            return Result.fail(exc)

    def similarity(self, first: ContentFingerprint, second: ContentFingerprint) -> SimilarityResult:
        return similarity(first, second)

    def _candidate_fingerprints(self, candidates: Iterable[T]) -> Iterable[tuple[T, ContentFingerprint]]:
        for candidate in candidates:
            text = self.text_of(candidate)
            if not text:
                continue
            yield candidate, create_fingerprint(text)

    def find_similar(
        self, fingerprint: ContentFingerprint, candidates: Iterable[T]
    ) -> Result[List[SimilarMatch[T]]]:
        """Candidates at or above the similar threshold, most similar first."""
        try:
            matches: List[SimilarMatch[T]] = []
            for candidate, other in self._candidate_fingerprints(candidates):
                result = similarity(fingerprint, other)
                if result.similarity >= self.config.similar_threshold:
                    matches.append(SimilarMatch(candidate, result))
            matches.sort(key=lambda match: match.similarity.similarity, reverse=True)
            return Result.ok(matches)
        except (CaseLensError, ValueError) as exc:
            return Result.fail(exc)

    def detect_duplicates(self, fingerprint: ContentFingerprint, candidates: Iterable[T]) -> Result[List[T]]:
        """Exact-hash matches plus near-duplicates at the duplicate threshold."""
        try:
            duplicates: List[T] = []
            for candidate, other in self._candidate_fingerprints(candidates):
                if other.hash == fingerprint.hash:
                    duplicates.append(candidate)
                    continue
                if similarity(fingerprint, other).similarity >= self.config.duplicate_threshold:
                    duplicates.append(candidate)
            return Result.ok(duplicates)
        except (CaseLensError, ValueError) as exc:
            return Result.fail(exc)

