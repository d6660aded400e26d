"""Tokenizer and extractor helpers shared by detection, fingerprinting and search."""

from __future__ import annotations

import re
from typing import Iterable, Iterator, List, Sequence

from caselens.models import StructureMetrics

STOP_WORDS = frozenset(
    {
        "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with",
        "by", "from", "as", "is", "was", "are", "were", "be", "been", "have", "has", "had",
        "do", "does", "did", "will", "would", "could", "should", "may", "might", "must",
        "can", "this", "that", "these", "those", "i", "you", "he", "she", "it", "we", "they",
    }
)

TECHNICAL_TERMS = frozenset(
    {
        "api", "database", "server", "authentication", "authorization", "ssl", "cors",
        "json", "xml", "http", "https", "endpoint", "webhook", "microservice",
        "kubernetes", "docker", "aws", "azure", "gcp", "deployment", "configuration",
        "integration", "middleware", "cache", "redis", "mongodb", "postgresql",
        "oauth", "jwt", "token", "session", "cookie", "header", "payload",
    }
)

# Ordered: semantic tokens are emitted in this order.
SEMANTIC_GROUPS: dict[str, frozenset[str]] = {
    "error": frozenset({"error", "exception", "failure", "bug", "issue", "problem"}),
    "data": frozenset({"data", "database", "table", "record", "field", "query"}),
    "auth": frozenset({"login", "authentication", "authorization", "user", "password", "token"}),
    "ui": frozenset({"interface", "ui", "button", "form", "page", "screen", "display"}),
    "api": frozenset({"api", "endpoint", "request", "response", "service", "integration"}),
}

EMAIL_RE = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
URL_RE = re.compile(r"https?://[^\s]+")

ENTITY_PATTERNS: dict[str, re.Pattern[str]] = {
    "email": EMAIL_RE,
    "url": URL_RE,
    "ip_address": re.compile(r"\b(?:[0-9]{1,3}\.){3}[0-9]{1,3}\b"),
    "case_number": re.compile(r"\b\d{8}\b"),
    "version": re.compile(r"v?\d+\.\d+(?:\.\d+)?"),
    "uuid": re.compile(
        r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}", re.IGNORECASE
    ),
}

MAX_KEYWORDS = 50

_PUNCTUATION_RE = re.compile(r"[^\w\s]")
_SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")


def normalize(text: str) -> str:
    return text.lower().strip()


def _words(text: str) -> List[str]:
    return _PUNCTUATION_RE.sub(" ", text.lower()).split()


def extract_keywords(text: str, *, limit: int = MAX_KEYWORDS) -> List[str]:
    """Return content words in order of appearance, duplicates kept.

    Punctuation is stripped, stop words and tokens of two characters or fewer
    are dropped.
    """
    keywords = [word for word in _words(text) if len(word) > 2 and word not in STOP_WORDS]
    return keywords[:limit]


def tokenize_query(text: str, *, min_length: int = 2) -> List[str]:
    """Split a search query into lowercase terms of at least ``min_length`` chars."""
    return [word for word in _words(text) if len(word) >= min_length and word not in STOP_WORDS]


def extract_entities(text: str) -> List[str]:
    """Return emails, URLs, IPs, case numbers, versions and UUIDs, deduplicated."""
    seen: dict[str, None] = {}
    for pattern in ENTITY_PATTERNS.values():
        for match in pattern.findall(text):
            seen.setdefault(match, None)
    return list(seen)


def count_technical_terms(words: Iterable[str]) -> int:
    return sum(1 for word in words if word.lower().strip(".,;:!?()[]{}\"'") in TECHNICAL_TERMS)


def structural_metrics(text: str) -> StructureMetrics:
    words = text.split()
    sentences = [part for part in _SENTENCE_SPLIT_RE.split(text) if part.strip()]
    return StructureMetrics(
        word_count=len(words),
        sentence_count=len(sentences),
        avg_words_per_sentence=len(words) / len(sentences) if sentences else 0.0,
        technical_term_count=count_technical_terms(words),
    )


def semantic_tokens(tokens: Iterable[str]) -> List[str]:
    """Map keywords/entities to the coarse topic groups they touch."""
    token_set = set(tokens)
    return [group for group, words in SEMANTIC_GROUPS.items() if token_set & words]


def jaccard(first: Sequence[str], second: Sequence[str]) -> float:
    """Jaccard coefficient of two token collections.

    Two empty collections are identical and score 1.0.
    """
    set1, set2 = set(first), set(second)
    if not set1 and not set2:
        return 1.0
    return len(set1 & set2) / len(set1 | set2)


def sliding_windows(text: str, *, size: int, step: int) -> Iterator[tuple[int, str]]:
    """Yield ``(start, window)`` pairs of ``size`` characters advancing by ``step``.

    Only full windows are produced and the final window always ends at the
    end of the text; text no longer than ``size`` yields a single window at
    offset 0.
    """
    if len(text) <= size:
        yield 0, text
        return

    step = max(step, 1)
    last = len(text) - size
    for start in range(0, last + 1, step):
        yield start, text[start : start + size]
    if last % step:
        yield last, text[last:]
