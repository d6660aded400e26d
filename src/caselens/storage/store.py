"""Entity stores: the persistence collaborator the pipeline reads and writes through."""

from __future__ import annotations

import copy
import json
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Protocol, runtime_checkable

Entity = Dict[str, Any]


@runtime_checkable
class EntityStore(Protocol):
    """Generic keyed store, one collection per entity type.

    Every entity is a JSON-compatible mapping carrying an ``id`` key.
    """

    def get(self, entity_type: str, entity_id: str) -> Entity | None: ...

    def put(self, entity_type: str, entity: Entity) -> None: ...

    def delete_one(self, entity_type: str, entity_id: str) -> bool: ...

    def query_by_equality(self, entity_type: str, field: str, value: Any) -> List[Entity]: ...

    def bulk_delete(self, entity_type: str, entity_ids: Iterable[str]) -> int: ...

    def all(self, entity_type: str) -> List[Entity]: ...

    def clear(self, entity_type: str) -> int: ...


def _require_id(entity: Entity) -> str:
    entity_id = entity.get("id")
    if not entity_id:
        raise ValueError("Entity must carry a non-empty 'id'")
    return str(entity_id)


class SQLiteEntityStore:
    """SQLite-backed store keeping each entity as a JSON document."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self._conn = sqlite3.connect(self.db_path)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.execute("PRAGMA synchronous=NORMAL;")
        self._ensure_schema()

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def close(self) -> None:
        self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        try:
            yield self._conn
            self._conn.commit()
        except Exception:
            self._conn.rollback()
            raise

    def _ensure_schema(self) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS entities (
                    entity_type TEXT NOT NULL,
                    id TEXT NOT NULL,
                    body TEXT NOT NULL,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY (entity_type, id)
                )
                """
            )
            conn.execute(
                """CREATE INDEX IF NOT EXISTS idx_entities_type
                    ON entities(entity_type)
                """
            )

    def get(self, entity_type: str, entity_id: str) -> Entity | None:
        row = self._conn.execute(
            "SELECT body FROM entities WHERE entity_type = ? AND id = ?",
            (entity_type, entity_id),
        ).fetchone()
        return json.loads(row["body"]) if row else None

    def put(self, entity_type: str, entity: Entity) -> None:
        entity_id = _require_id(entity)
        body = json.dumps(entity, ensure_ascii=True, default=str)
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO entities(entity_type, id, body) VALUES (?, ?, ?)
                ON CONFLICT(entity_type, id) DO UPDATE SET body = excluded.body
                """,
                (entity_type, entity_id, body),
            )

    def delete_one(self, entity_type: str, entity_id: str) -> bool:
        with self.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM entities WHERE entity_type = ? AND id = ?",
                (entity_type, entity_id),
            )
        return cursor.rowcount > 0

    def query_by_equality(self, entity_type: str, field: str, value: Any) -> List[Entity]:
        rows = self._conn.execute(
            """
            SELECT body FROM entities
            WHERE entity_type = ? AND json_extract(body, '$.' || ?) = ?
            ORDER BY rowid
            """,
            (entity_type, field, value),
        ).fetchall()
        return [json.loads(row["body"]) for row in rows]

    def bulk_delete(self, entity_type: str, entity_ids: Iterable[str]) -> int:
        ids = list(entity_ids)
        if not ids:
            return 0
        removed = 0
        with self.transaction() as conn:
            for entity_id in ids:
                cursor = conn.execute(
                    "DELETE FROM entities WHERE entity_type = ? AND id = ?",
                    (entity_type, entity_id),
                )
                removed += cursor.rowcount
        return removed

    def all(self, entity_type: str) -> List[Entity]:
        rows = self._conn.execute(
            "SELECT body FROM entities WHERE entity_type = ? ORDER BY rowid",
            (entity_type,),
        ).fetchall()
        return [json.loads(row["body"]) for row in rows]

    def clear(self, entity_type: str) -> int:
        with self.transaction() as conn:
            cursor = conn.execute("DELETE FROM entities WHERE entity_type = ?", (entity_type,))
        return cursor.rowcount

    def count(self, entity_type: str) -> int:
        row = self._conn.execute(
            "SELECT COUNT(*) AS n FROM entities WHERE entity_type = ?", (entity_type,)
        ).fetchone()
        return int(row["n"])


class MemoryEntityStore:
    """Dictionary-backed store for tests and throwaway sessions."""

    def __init__(self) -> None:
        self._collections: Dict[str, Dict[str, Entity]] = {}

    def _collection(self, entity_type: str) -> Dict[str, Entity]:
        return self._collections.setdefault(entity_type, {})

    def get(self, entity_type: str, entity_id: str) -> Entity | None:
        entity = self._collection(entity_type).get(entity_id)
        return copy.deepcopy(entity) if entity is not None else None

    def put(self, entity_type: str, entity: Entity) -> None:
        entity_id = _require_id(entity)
        # Round-trip through JSON so stored values look like the SQLite store's.
        self._collection(entity_type)[entity_id] = json.loads(json.dumps(entity, default=str))

    def delete_one(self, entity_type: str, entity_id: str) -> bool:
        return self._collection(entity_type).pop(entity_id, None) is not None

    def query_by_equality(self, entity_type: str, field: str, value: Any) -> List[Entity]:
        return [
            copy.deepcopy(entity)
            for entity in self._collection(entity_type).values()
            if entity.get(field) == value
        ]

    def bulk_delete(self, entity_type: str, entity_ids: Iterable[str]) -> int:
        return sum(1 for entity_id in list(entity_ids) if self.delete_one(entity_type, entity_id))

    def all(self, entity_type: str) -> List[Entity]:
        return [copy.deepcopy(entity) for entity in self._collection(entity_type).values()]

    def clear(self, entity_type: str) -> int:
        collection = self._collection(entity_type)
        removed = len(collection)
        collection.clear()
        return removed

    def count(self, entity_type: str) -> int:
        return len(self._collection(entity_type))
