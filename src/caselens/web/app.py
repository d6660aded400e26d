"""FastAPI application exposing the CaseLens services as JSON endpoints."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator, List, Literal

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from caselens.config import AppConfig
from caselens.detection.detector import ContentDetector
from caselens.errors import NotFoundError, Result, ValidationError
from caselens.index.indexer import SearchIndexer
from caselens.index.search import Searcher
from caselens.models import SearchFilters, SearchQuery
from caselens.pipeline import ContentPipeline, stored_cases
from caselens.similarity.fingerprint import SimilarityEngine
from caselens.similarity.patterns import PatternMatcher
from caselens.storage.repositories import PatternRepository
from caselens.storage.store import SQLiteEntityStore

LOGGER = logging.getLogger(__name__)

app = FastAPI(title="CaseLens API", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


class TextPayload(BaseModel):
    text: str
    source: Literal["clipboard", "drag-drop", "file-upload"] = "clipboard"
    db: Path | None = None


class LearnPayload(BaseModel):
    text: str
    category: str
    confidence: float = 0.8
    db: Path | None = None


class FeedbackPayload(BaseModel):
    was_correct: bool
    db: Path | None = None


class IndexPayload(BaseModel):
    entity_id: str
    entity_type: str
    title: str
    content: str = ""
    tags: List[str] = Field(default_factory=list)
    db: Path | None = None


class FiltersPayload(BaseModel):
    entity_types: List[str] | None = None
    tags: List[str] | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    status: List[str] | None = None
    priority: List[str] | None = None
    classification: List[str] | None = None
    customer_id: str | None = None

    def to_filters(self) -> SearchFilters:
        return SearchFilters(
            entity_types=self.entity_types,
            tags=self.tags,
            date_from=self.date_from,
            date_to=self.date_to,
            status=self.status,
            priority=self.priority,
            classification=self.classification,
            customer_id=self.customer_id,
        )


class SearchPayload(BaseModel):
    text: str | None = None
    filters: FiltersPayload | None = None
    sort_by: Literal["relevance", "title", "date"] = "relevance"
    sort_order: Literal["asc", "desc"] = "desc"
    limit: int | None = Field(default=None, ge=0, le=100)
    offset: int = Field(default=0, ge=0)
    db: Path | None = None

    def to_query(self) -> SearchQuery:
        return SearchQuery(
            text=self.text,
            filters=self.filters.to_filters() if self.filters is not None else None,
            sort_by=self.sort_by,
            sort_order=self.sort_order,
            limit=self.limit,
            offset=self.offset,
        )


class SavedSearchPayload(SearchPayload):
    name: str


def _resolve_db_path(db: Path | None) -> Path:
    config = AppConfig(db_path=db if db is not None else AppConfig().db_path)
    return config.resolve_db_path(Path.cwd())


def _ensure_db_parent(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)


@contextmanager
def _open_store(db: Path | None, *, create: bool = False) -> Iterator[SQLiteEntityStore]:
    resolved_db = _resolve_db_path(db)
    if not resolved_db.exists():
        if not create:
            raise HTTPException(status_code=404, detail=f"Database not found at {resolved_db}")
        _ensure_db_parent(resolved_db)
    store = SQLiteEntityStore(resolved_db)
    try:
        yield store
    finally:
        store.close()


def _unwrap(result: Result) -> Any:
    """Return the payload or raise the matching HTTP error."""
    if result.success:
        return result.data
    error = result.error
    if isinstance(error, ValidationError):
        raise HTTPException(status_code=400, detail=str(error))
    if isinstance(error, NotFoundError):
        raise HTTPException(status_code=404, detail=str(error))
    LOGGER.error("Request failed: %s", error)
    raise HTTPException(status_code=500, detail=str(error))


def _matcher(store: SQLiteEntityStore) -> PatternMatcher:
    return PatternMatcher(PatternRepository(store))


@app.on_event("startup")
async def startup_event() -> None:
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")


# -- analysis -----------------------------------------------------------------


@app.post("/analyze")
async def analyze_content(payload: TextPayload) -> dict[str, Any]:
    if not payload.text.strip():
        raise HTTPException(status_code=400, detail="Empty text")

    with _open_store(payload.db, create=True) as store:
        detector = ContentDetector(_matcher(store))
        analysis = _unwrap(detector.analyze(payload.text, payload.source))
        pipeline = ContentPipeline(stored_cases(store), detector=detector)
        event = _unwrap(pipeline.process(payload.text, payload.source))
    return {"analysis": analysis, "event": event}


@app.post("/fingerprint")
async def create_fingerprint(payload: TextPayload) -> dict[str, Any]:
    fingerprint = _unwrap(SimilarityEngine().create_fingerprint(payload.text))
    return {"fingerprint": fingerprint}


@app.post("/similar")
async def find_similar(payload: TextPayload) -> dict[str, Any]:
    engine = SimilarityEngine()
    fingerprint = _unwrap(engine.create_fingerprint(payload.text))
    with _open_store(payload.db) as store:
        cases = store.all("case")
    similar = _unwrap(engine.find_similar(fingerprint, cases))
    duplicates = _unwrap(engine.detect_duplicates(fingerprint, cases))
    return {
        "similar": [
            {"case": match.candidate, "similarity": match.similarity} for match in similar
        ],
        "duplicates": duplicates,
    }


@app.post("/suggest-category")
async def suggest_category(payload: TextPayload) -> dict[str, Any]:
    with _open_store(payload.db, create=True) as store:
        matcher = _matcher(store)
        analysis = _unwrap(ContentDetector().analyze(payload.text, payload.source))
        suggestions = _unwrap(matcher.suggest_category(analysis, payload.text))
    return {"suggestions": suggestions}


# -- patterns -----------------------------------------------------------------


@app.get("/patterns")
async def list_patterns(db: Path | None = None) -> dict[str, Any]:
    resolved_db = _resolve_db_path(db)
    if not resolved_db.exists():
        return {"patterns": [], "stats": {"total_patterns": 0}}

    with _open_store(db) as store:
        repository = PatternRepository(store)
        patterns = repository.list_all()
        stats = repository.get_statistics()
    return {"patterns": patterns, "stats": stats}


@app.post("/patterns/learn")
async def learn_pattern(payload: LearnPayload) -> dict[str, Any]:
    with _open_store(payload.db, create=True) as store:
        pattern = _unwrap(
            _matcher(store).learn_from_categorization(payload.text, payload.category, payload.confidence)
        )
    return {"pattern": pattern}


@app.post("/patterns/{pattern_id}/feedback")
async def pattern_feedback(pattern_id: str, payload: FeedbackPayload) -> dict[str, Any]:
    with _open_store(payload.db) as store:
        pattern = _unwrap(_matcher(store).update_pattern_feedback(pattern_id, payload.was_correct))
    return {"pattern": pattern}


@app.delete("/patterns/cleanup")
async def cleanup_patterns(db: Path | None = None, min_success_rate: float | None = None) -> dict[str, Any]:
    with _open_store(db) as store:
        removed = _unwrap(_matcher(store).cleanup_low_performing(min_success_rate))
    return {"status": "ok", "removed_count": removed}


@app.post("/patterns/merge")
async def merge_patterns(db: Path | None = None, threshold: float | None = None) -> dict[str, Any]:
    with _open_store(db) as store:
        merged = _unwrap(_matcher(store).merge_similar_patterns(threshold))
    return {"status": "ok", "merged_count": merged}


# -- index --------------------------------------------------------------------


@app.post("/index")
async def index_entity(payload: IndexPayload) -> dict[str, Any]:
    with _open_store(payload.db, create=True) as store:
        entry = _unwrap(
            SearchIndexer(store).index_entity(
                payload.entity_id,
                payload.entity_type,
                title=payload.title,
                content=payload.content,
                tags=payload.tags,
            )
        )
    return {"entry": entry}


@app.post("/index/rebuild")
async def rebuild_index(db: Path | None = None) -> dict[str, Any]:
    with _open_store(db, create=True) as store:
        stats = _unwrap(SearchIndexer(store).rebuild_all())
    return {"indexed": stats.indexed, "skipped": stats.skipped, "processed_ids": stats.processed_ids}


@app.delete("/index/{entity_id}")
async def remove_from_index(entity_id: str, db: Path | None = None) -> dict[str, Any]:
    with _open_store(db) as store:
        removed = _unwrap(SearchIndexer(store).remove_from_index(entity_id))
    return {"status": "ok", "removed_count": removed}


# -- search -------------------------------------------------------------------


@app.post("/search")
async def search_entities(payload: SearchPayload) -> dict[str, Any]:
    with _open_store(payload.db) as store:
        response = _unwrap(Searcher(store).search(payload.to_query()))
    return {"results": response.results, "stats": response.stats}


@app.get("/suggestions")
async def search_suggestions(partial: str, db: Path | None = None) -> dict[str, Any]:
    with _open_store(db) as store:
        suggestions = _unwrap(Searcher(store).get_suggestions(partial))
    return {"suggestions": suggestions}


@app.get("/saved-searches")
async def list_saved_searches(db: Path | None = None) -> dict[str, Any]:
    resolved_db = _resolve_db_path(db)
    if not resolved_db.exists():
        return {"saved_searches": []}

    with _open_store(db) as store:
        searches = _unwrap(Searcher(store).get_saved_searches())
    return {"saved_searches": searches}


@app.post("/saved-searches")
async def save_search(payload: SavedSearchPayload) -> dict[str, Any]:
    with _open_store(payload.db, create=True) as store:
        saved = _unwrap(Searcher(store).save_search(payload.name, payload.to_query()))
    return {"saved_search": saved}


@app.post("/saved-searches/{search_id}/use")
async def use_saved_search(search_id: str, db: Path | None = None) -> dict[str, Any]:
    with _open_store(db) as store:
        response = _unwrap(Searcher(store).use_saved_search(search_id))
    return {"results": response.results, "stats": response.stats}


@app.delete("/saved-searches/{search_id}")
async def delete_saved_search(search_id: str, db: Path | None = None) -> dict[str, Any]:
    with _open_store(db) as store:
        _unwrap(Searcher(store).delete_saved_search(search_id))
    return {"status": "ok", "deleted_id": search_id}
