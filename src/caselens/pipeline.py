"""Paste processing: analysis enriched with similar-case and duplicate lookups."""

from __future__ import annotations

import logging
from typing import Callable, Iterable, List

from caselens.config import AppConfig
from caselens.detection.detector import ContentDetector
from caselens.errors import CaseLensError, Result
from caselens.models import PasteEvent, PasteSource, SimilarCaseInfo
from caselens.similarity.fingerprint import SimilarityEngine, SimilarMatch
from caselens.storage.repositories import store_errors
from caselens.storage.store import Entity, EntityStore

LOGGER = logging.getLogger(__name__)

CaseProvider = Callable[[], Iterable[Entity]]

MAX_SIMILAR_CASES = 5


def stored_cases(store: EntityStore) -> CaseProvider:
    """Case provider reading every ``case`` entity from ``store``."""

    def provider() -> Iterable[Entity]:
        with store_errors("Failed to read cases"):
            return store.all("case")

    return provider


def _case_info(match: SimilarMatch[Entity]) -> SimilarCaseInfo:
    case = match.candidate
    return SimilarCaseInfo(
        case_id=str(case.get("id", "")),
        case_number=str(case.get("case_number", "")),
        similarity=match.similarity.similarity,
        title=str(case.get("title", "")),
    )


class ContentPipeline:
    def __init__(
        self,
        cases: CaseProvider,
        *,
        detector: ContentDetector | None = None,
        engine: SimilarityEngine | None = None,
        config: AppConfig | None = None,
    ) -> None:
        self.config = config or AppConfig()
        self.cases = cases
        self.detector = detector or ContentDetector()
        self.engine = engine or SimilarityEngine(self.config)

    def process(self, text: str, source: PasteSource = "clipboard") -> Result[PasteEvent]:
        """Analyze ``text`` and attach the cases it resembles or duplicates."""
        event_result = self.detector.create_paste_event(text, source)
        if not event_result.success:
            return event_result
        event = event_result.data

        fingerprint = self.engine.create_fingerprint(text)
        if not fingerprint.success:
            return Result.fail(fingerprint.error)

        try:
            cases: List[Entity] = list(self.cases())
        except CaseLensError as exc:
            LOGGER.error("Unable to load cases for comparison: %s", exc)
            return Result.fail(exc)

        similar = self.engine.find_similar(fingerprint.data, cases)
        if not similar.success:
            return Result.fail(similar.error)
        duplicates = self.engine.detect_duplicates(fingerprint.data, cases)
        if not duplicates.success:
            return Result.fail(duplicates.error)

        if similar.data:
            event.metadata.similar_cases = [_case_info(m) for m in similar.data[:MAX_SIMILAR_CASES]]
        event.metadata.duplicate_content = bool(duplicates.data)
        LOGGER.debug(
            "Paste %s: %d similar cases, duplicate=%s",
            event.id,
            len(similar.data),
            event.metadata.duplicate_content,
        )
        return Result.ok(event)
