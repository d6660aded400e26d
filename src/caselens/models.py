"""Core CaseLens data models."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal

ContentType = Literal[
    "support_request",
    "url_link",
    "console_log",
    "image",
    "mixed_content",
    "plain_text",
    "case_number",
]
PasteSource = Literal["clipboard", "drag-drop", "file-upload"]
Classification = Literal["error", "query", "feature_request", "general", "technical", "bug"]
Priority = Literal["low", "medium", "high", "urgent"]
UrgencyLevel = Literal["low", "medium", "high", "critical"]
LogLevel = Literal["error", "warn", "info", "debug"]
PatternType = Literal["keyword", "regex", "semantic"]
MatchType = Literal["exact", "partial", "semantic"]
EntityType = Literal["case", "customer", "inbox_item", "image", "hivemind_report"]
SortField = Literal["relevance", "title", "date"]
SortOrder = Literal["asc", "desc"]
ActionType = Literal[
    "create_case",
    "add_to_inbox",
    "extract_url",
    "process_image",
    "analyze_logs",
    "save_for_later",
    "lookup_case",
]

PATTERN_TYPES: tuple[str, ...] = ("keyword", "regex", "semantic")
CATEGORIES: tuple[str, ...] = ("error", "query", "feature_request", "general", "technical", "bug")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_dt(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _format_dt(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


# ---------------------------------------------------------------------------
# Content analysis


@dataclass(slots=True)
class ConsoleLogEntry:
    level: LogLevel
    message: str
    timestamp: datetime | None = None
    source: str | None = "console"
    stack_trace: str | None = None


@dataclass(slots=True)
class TechnicalInfo:
    browser: str | None = None
    os: str | None = None
    error_messages: List[str] = field(default_factory=list)
    stack_traces: List[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.browser or self.os or self.error_messages or self.stack_traces)


@dataclass(slots=True)
class CustomerInfo:
    detection_confidence: float
    name: str | None = None
    email: str | None = None
    company: str | None = None


@dataclass(slots=True)
class PatternMatchInfo:
    pattern: str
    confidence: float
    match_type: MatchType


@dataclass(slots=True)
class SimilarCaseInfo:
    case_id: str
    case_number: str
    similarity: float
    title: str


@dataclass(slots=True)
class PasteMetadata:
    """Optional findings attached to an analysis.

    ``None`` means "not detected"; an empty list is never stored.
    """

    urls: List[str] | None = None
    case_numbers: List[str] | None = None
    console_errors: List[ConsoleLogEntry] | None = None
    technical_details: TechnicalInfo | None = None
    customer_info: CustomerInfo | None = None
    urgency_level: UrgencyLevel | None = None
    pattern_matches: List[PatternMatchInfo] | None = None
    similar_cases: List[SimilarCaseInfo] | None = None
    duplicate_content: bool | None = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        return {key: value for key, value in data.items() if value is not None}


@dataclass(frozen=True, slots=True)
class ContentAnalysisResult:
    content_type: ContentType
    confidence: float
    classification: Classification
    priority: Priority
    suggested_title: str
    extracted_metadata: PasteMetadata
    processing_time_ms: float


@dataclass(slots=True)
class PasteAction:
    id: str
    type: ActionType
    label: str
    description: str
    confidence: float
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class PasteEvent:
    id: str
    content: str
    content_type: ContentType
    timestamp: datetime
    source: PasteSource
    confidence: float
    suggested_actions: List[PasteAction]
    metadata: PasteMetadata


# ---------------------------------------------------------------------------
# Fingerprints and patterns


@dataclass(slots=True)
class StructureMetrics:
    word_count: int
    sentence_count: int
    avg_words_per_sentence: float
    technical_term_count: int


@dataclass(slots=True)
class ContentFingerprint:
    """Comparable summary of a piece of text."""

    id: str
    hash: str
    keywords: List[str]
    entities: List[str]
    structure: StructureMetrics
    semantic_tokens: List[str]


@dataclass(slots=True)
class SimilarityResult:
    similarity: float
    confidence: float
    reasons: List[str] = field(default_factory=list)


@dataclass(slots=True)
class ContentPattern:
    """Learned rule tying a keyword set, regex or topic set to a category."""

    id: str
    pattern: str
    pattern_type: PatternType
    category: Classification
    confidence: float
    examples: List[str] = field(default_factory=list)
    success_rate: float = 1.0
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "pattern": self.pattern,
            "pattern_type": self.pattern_type,
            "category": self.category,
            "confidence": self.confidence,
            "examples": list(self.examples),
            "success_rate": self.success_rate,
            "created_at": _format_dt(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ContentPattern":
        return cls(
            id=data["id"],
            pattern=data["pattern"],
            pattern_type=data["pattern_type"],
            category=data["category"],
            confidence=float(data["confidence"]),
            examples=list(data.get("examples") or []),
            success_rate=float(data.get("success_rate", 1.0)),
            created_at=_parse_dt(data.get("created_at")) or utcnow(),
        )


@dataclass(slots=True)
class PatternMatch:
    pattern: ContentPattern
    confidence: float
    matched_text: str
    match_type: MatchType


@dataclass(slots=True)
class CategorySuggestion:
    category: Classification
    confidence: float
    reasons: List[str] = field(default_factory=list)
    matched_patterns: List[PatternMatch] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Search


@dataclass(slots=True)
class SearchIndexEntry:
    id: str
    entity_id: str
    entity_type: EntityType
    content: str
    title: str
    tags: List[str]
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "entity_id": self.entity_id,
            "entity_type": self.entity_type,
            "content": self.content,
            "title": self.title,
            "tags": list(self.tags),
            "created_at": _format_dt(self.created_at),
            "updated_at": _format_dt(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SearchIndexEntry":
        return cls(
            id=data["id"],
            entity_id=data["entity_id"],
            entity_type=data["entity_type"],
            content=data.get("content", ""),
            title=data.get("title", ""),
            tags=list(data.get("tags") or []),
            created_at=_parse_dt(data["created_at"]),
            updated_at=_parse_dt(data["updated_at"]),
        )


@dataclass(slots=True)
class SearchFilters:
    """Optional restrictions applied before and after scoring.

    ``entity_types``, ``tags`` and the date range act on index entries;
    ``status``, ``priority``, ``classification`` and ``customer_id`` act on the
    hydrated entity.
    """

    entity_types: List[str] | None = None
    tags: List[str] | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    status: List[str] | None = None
    priority: List[str] | None = None
    classification: List[str] | None = None
    customer_id: str | None = None

    def is_empty(self) -> bool:
        return all(getattr(self, name) in (None, []) for name in self.__slots__)

    def has_entity_filters(self) -> bool:
        return bool(self.status or self.priority or self.classification or self.customer_id)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        for name in self.__slots__:
            value = getattr(self, name)
            if value in (None, []):
                continue
            data[name] = _format_dt(value) if isinstance(value, datetime) else value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any] | None) -> "SearchFilters":
        data = dict(data or {})
        for key in ("date_from", "date_to"):
            if key in data:
                data[key] = _parse_dt(data[key])
        return cls(**data)


@dataclass(slots=True)
class SearchQuery:
    text: str | None = None
    filters: SearchFilters | None = None
    sort_by: SortField = "relevance"
    sort_order: SortOrder = "desc"
    limit: int | None = None
    offset: int = 0


@dataclass(slots=True)
class SearchMatch:
    text: str
    type: MatchType
    field: str = "content"
    start_index: int = -1
    end_index: int = -1


@dataclass(slots=True)
class SearchResult:
    id: str
    entity_id: str
    entity_type: EntityType
    title: str
    snippet: str
    relevance_score: float
    matches: List[SearchMatch]
    entity: Dict[str, Any] | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(slots=True)
class SearchStats:
    total_results: int
    search_time_ms: float
    most_relevant_score: float
    entity_breakdown: Dict[str, int] = field(default_factory=dict)
    filter_breakdown: Dict[str, int] = field(default_factory=dict)


@dataclass(slots=True)
class SearchResponse:
    results: List[SearchResult]
    stats: SearchStats


@dataclass(slots=True)
class SearchSuggestion:
    text: str
    type: Literal["autocomplete", "recent", "popular"]


@dataclass(slots=True)
class SavedSearch:
    id: str
    name: str
    query: str
    filters: SearchFilters
    created_at: datetime
    last_used: datetime
    use_count: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "query": self.query,
            "filters": self.filters.to_dict(),
            "created_at": _format_dt(self.created_at),
            "last_used": _format_dt(self.last_used),
            "use_count": self.use_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SavedSearch":
        return cls(
            id=data["id"],
            name=data["name"],
            query=data.get("query", ""),
            filters=SearchFilters.from_dict(data.get("filters")),
            created_at=_parse_dt(data["created_at"]),
            last_used=_parse_dt(data["last_used"]),
            use_count=int(data.get("use_count", 1)),
        )
