"""Application configuration defaults."""

from __future__ import annotations

import sys
from dataclasses import dataclass
from pathlib import Path


def _get_default_db_path() -> Path:
    """Get the default database path based on platform and execution context."""
    user_db = Path.home() / "Documents" / "CaseLens" / "caselens.db"

    if getattr(sys, "frozen", False):
        return user_db

    # When running from source, prefer local data/ if it exists
    local_db = Path("data/caselens.db")
    if local_db.parent.exists():
        return local_db

    return user_db


@dataclass(slots=True)
class AppConfig:
    db_path: Path | None = None

    # similarity engine
    similar_threshold: float = 0.7
    duplicate_threshold: float = 0.95
    min_pattern_confidence: float = 0.5
    learning_rate: float = 0.1
    prune_success_rate: float = 0.3
    merge_threshold: float = 0.8
    max_suggestions_per_analysis: int = 3

    # search
    min_query_length: int = 2
    default_limit: int = 20
    max_suggestions: int = 10
    max_autocomplete: int = 5
    snippet_length: int = 150
    snippet_step: int = 10
    relevance_floor: float = 0.1
    recency_window_days: float = 30.0
    recency_weight: float = 0.05

    def __post_init__(self) -> None:
        if self.db_path is None:
            self.db_path = _get_default_db_path()

    def resolve_db_path(self, base_dir: Path | None = None) -> Path:
        if self.db_path is None:
            self.db_path = _get_default_db_path()
        if Path(self.db_path).is_absolute() or base_dir is None:
            return Path(self.db_path)
        return base_dir / self.db_path
