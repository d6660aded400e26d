"""Search indexing pipeline."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Tuple

from caselens.errors import CaseLensError, Result, ValidationError
from caselens.models import SearchIndexEntry, utcnow
from caselens.storage.repositories import SearchIndexRepository, store_errors
from caselens.storage.store import Entity, EntityStore

LOGGER = logging.getLogger(__name__)

Document = Tuple[str, str, List[str]]


def _case_document(case: Entity) -> Document:
    return case.get("title", ""), case.get("description") or "", list(case.get("tags") or [])


def _inbox_document(item: Entity) -> Document:
    return f"Inbox Item - {item.get('content_type', 'text')}", item.get("content") or "", []


def _image_document(image: Entity) -> Document:
    tags = list(image.get("tags") or [])
    filename = image.get("filename", "")
    body = f"{filename} {' '.join(tags)} {image.get('original_format', '')}"
    return filename, body, tags


# Entity types rebuilt from the store, with the text each one contributes.
ENTITY_SOURCES: Dict[str, Callable[[Entity], Document]] = {
    "case": _case_document,
    "inbox_item": _inbox_document,
    "image": _image_document,
}


def searchable_text(title: str, content: str, tags: Iterable[str]) -> str:
    return " ".join([title, content, " ".join(tags)]).lower()


@dataclass(slots=True)
class IndexStats:
    indexed: int = 0
    skipped: int = 0
    processed_ids: list[str] = field(default_factory=list)

    def increment(self, status: str, entity_id: str) -> None:
        if status == "indexed":
            self.indexed += 1
        else:
            self.skipped += 1
        self.processed_ids.append(entity_id)


class SearchIndexer:
    """Keeps exactly one index entry per entity in sync with the entity store."""

    def __init__(self, store: EntityStore, index: SearchIndexRepository | None = None) -> None:
        self.store = store
        self.index = index or SearchIndexRepository(store)

    def index_entity(
        self,
        entity_id: str,
        entity_type: str,
        *,
        title: str,
        content: str = "",
        tags: Iterable[str] = (),
    ) -> Result[SearchIndexEntry]:
        """Replace the index entry for ``entity_id`` with a fresh one."""
        try:
            if not entity_id:
                raise ValidationError("Entity id is required", "entity_id")
            tags = [str(tag) for tag in tags]
            now = utcnow()
            entry = SearchIndexEntry(
                id=str(uuid.uuid4()),
                entity_id=entity_id,
                entity_type=entity_type,  # type: ignore[arg-type]
                content=searchable_text(title or "", content or "", tags),
                title=title or "",
                tags=tags,
                created_at=now,
                updated_at=now,
            )
            return Result.ok(self.index.replace(entry))
        except CaseLensError as exc:
            return Result.fail(exc)

    def update_index(
        self,
        entity_id: str,
        entity_type: str,
        *,
        title: str,
        content: str = "",
        tags: Iterable[str] = (),
    ) -> Result[SearchIndexEntry]:
        return self.index_entity(entity_id, entity_type, title=title, content=content, tags=tags)

    def index_document(self, entity_type: str, entity: Entity) -> Result[SearchIndexEntry]:
        """Index a raw entity from the store using its type's text extractor."""
        extractor = ENTITY_SOURCES.get(entity_type)
        if extractor is None:
            return Result.fail(ValidationError(f"Unsupported entity type: {entity_type}", "entity_type"))
        title, content, tags = extractor(entity)
        return self.index_entity(str(entity.get("id", "")), entity_type, title=title, content=content, tags=tags)

    def remove_from_index(self, entity_id: str) -> Result[int]:
        try:
            return Result.ok(self.index.remove_by_entity(entity_id))
        except CaseLensError as exc:
            return Result.fail(exc)

    def on_entity_saved(self, entity_type: str, entity: Entity) -> Result[SearchIndexEntry]:
        return self.index_document(entity_type, entity)

    def on_entity_deleted(self, entity_id: str) -> Result[int]:
        return self.remove_from_index(entity_id)

    def rebuild_all(self) -> Result[IndexStats]:
        """Clear the index and re-index every known entity type.

        Entities that fail to index are skipped and counted.
        """
        stats = IndexStats()
        try:
            removed = self.index.clear()
            LOGGER.info("Cleared %d index entries", removed)

            for entity_type in ENTITY_SOURCES:
                with store_errors(f"Failed to read {entity_type} entities"):
                    entities = self.store.all(entity_type)
                for entity in entities:
                    entity_id = str(entity.get("id", ""))
                    result = self.index_document(entity_type, entity)
                    if result.success:
                        stats.increment("indexed", entity_id)
                    else:
                        LOGGER.warning("Failed to index %s %s: %s", entity_type, entity_id, result.error)
                        stats.increment("skipped", entity_id)
        except CaseLensError as exc:
            LOGGER.error("Index rebuild failed: %s", exc)
            return Result.fail(exc)

        LOGGER.info("Rebuilt search index: %d indexed, %d skipped", stats.indexed, stats.skipped)
        return Result.ok(stats)
