"""Classify pasted content and extract structured metadata from it."""

from __future__ import annotations

import logging
import re
import time
import uuid
from dataclasses import replace
from typing import List

from caselens.errors import CaseLensError, Result
from caselens.models import (
    Classification,
    ConsoleLogEntry,
    ContentAnalysisResult,
    ContentType,
    CustomerInfo,
    LogLevel,
    PasteAction,
    PasteEvent,
    PasteMetadata,
    PasteSource,
    PatternMatchInfo,
    Priority,
    TechnicalInfo,
    UrgencyLevel,
    utcnow,
)
from caselens.similarity.patterns import PatternMatcher
from caselens.utils.text import EMAIL_RE, URL_RE

LOGGER = logging.getLogger(__name__)

BASE_CONFIDENCE = 0.5
LOG_LINE_RATIO = 0.3
URL_SHARE = 0.5
LONG_TEXT = 50

CASE_NUMBER_RE = re.compile(r"\b\d{8}\b")

# Bare 8-digit text, or a labelled reference anywhere in the text.
CASE_NUMBER_PATTERNS = (
    re.compile(r"^(\d{8})$"),
    re.compile(r"\bcase\s*#?\s*(\d{8})\b", re.IGNORECASE),
    re.compile(r"(?<![\w#])#(\d{8})\b"),
    re.compile(r"\bticket\s*#?\s*(\d{8})\b", re.IGNORECASE),
)

CONSOLE_ERROR_PATTERNS = (
    re.compile(r"^Uncaught\s+", re.IGNORECASE),
    re.compile(r"^Error:", re.IGNORECASE),
    re.compile(r"^\s*at\s+", re.IGNORECASE),
    re.compile(r"console\.error", re.IGNORECASE),
    re.compile(r"TypeError:", re.IGNORECASE),
    re.compile(r"ReferenceError:", re.IGNORECASE),
    re.compile(r"SyntaxError:", re.IGNORECASE),
    re.compile(r"RangeError:", re.IGNORECASE),
)

SUPPORT_REQUEST_PATTERNS = (
    re.compile(r"\b(help|issue|problem|error|bug|broken|not working|can't|cannot|unable)\b", re.IGNORECASE),
    re.compile(r"\b(support|assistance|stuck|confused|question)\b", re.IGNORECASE),
    re.compile(r"\b(fix|solve|resolve|debug)\b", re.IGNORECASE),
    re.compile(r"\b(dashboard|report|data|chart|visualization)\b", re.IGNORECASE),
)

# Checked in order; the first tier with a hit wins.
URGENCY_INDICATORS: dict[str, tuple[re.Pattern[str], ...]] = {
    "critical": (
        re.compile(r"\b(critical|urgent|emergency|down|outage|broken)\b", re.IGNORECASE),
        re.compile(r"\b(can't access|completely broken|system down)\b", re.IGNORECASE),
    ),
    "high": (
        re.compile(r"\b(important|asap|priority|blocking)\b", re.IGNORECASE),
        re.compile(r"\b(customer facing|production)\b", re.IGNORECASE),
    ),
    "medium": (re.compile(r"\b(should|would like|when possible)\b", re.IGNORECASE),),
    "low": (re.compile(r"\b(minor|small|enhancement|suggestion)\b", re.IGNORECASE),),
}

FEATURE_RE = re.compile(r"\b(feature|enhancement|improvement|add|new)\b", re.IGNORECASE)
BROWSER_RE = re.compile(r"(Chrome|Firefox|Safari|Edge|Opera)[\s/][\d.]+", re.IGNORECASE)
OS_RE = re.compile(r"(Windows|macOS|Linux|iOS|Android)[\s\d.]*", re.IGNORECASE)
ERROR_MESSAGE_RE = re.compile(r"Error:\s*[^\n]+")
STACK_TRACE_RE = re.compile(r"\s+at\s+[^\n]+")
NAME_RE = re.compile(r"\b[A-Z][a-z]+\s+[A-Z][a-z]+\b")
DOMAIN_RE = re.compile(r"https?://([^/]+)")
SENTENCE_END_RE = re.compile(r"[.!?]")


def _dedupe(items: List[str]) -> List[str]:
    return list(dict.fromkeys(items))


def is_console_line(line: str) -> bool:
    return any(pattern.search(line) for pattern in CONSOLE_ERROR_PATTERNS)


def is_case_number(text: str) -> bool:
    """True for a bare 8-digit number or text carrying a labelled case reference."""
    trimmed = text.strip()
    return any(pattern.search(trimmed) for pattern in CASE_NUMBER_PATTERNS)


def extract_case_numbers(text: str) -> List[str]:
    found: List[str] = []
    trimmed = text.strip()
    for pattern in CASE_NUMBER_PATTERNS:
        match = pattern.search(trimmed)
        if match:
            found.append(match.group(1))
    found.extend(CASE_NUMBER_RE.findall(text))
    return _dedupe(found)


def has_console_errors(text: str) -> bool:
    return any(is_console_line(line) for line in text.split("\n"))


def is_console_log(text: str) -> bool:
    lines = text.split("\n")
    error_lines = sum(1 for line in lines if is_console_line(line))
    return error_lines > 0 and error_lines / len(lines) > LOG_LINE_RATIO


def support_pattern_hits(text: str) -> int:
    return sum(1 for pattern in SUPPORT_REQUEST_PATTERNS if pattern.search(text))


def is_support_request(text: str) -> bool:
    return support_pattern_hits(text) >= 2 or len(text) > LONG_TEXT


def detect_log_level(line: str) -> LogLevel:
    if re.search(r"error|uncaught|exception", line, re.IGNORECASE):
        return "error"
    if re.search(r"warn", line, re.IGNORECASE):
        return "warn"
    if re.search(r"info", line, re.IGNORECASE):
        return "info"
    return "debug"


def extract_console_errors(text: str) -> List[ConsoleLogEntry]:
    now = utcnow()
    return [
        ConsoleLogEntry(level=detect_log_level(line), message=line.strip(), timestamp=now)
        for line in text.split("\n")
        if is_console_line(line)
    ]


def extract_technical_info(text: str) -> TechnicalInfo:
    info = TechnicalInfo()
    browser = BROWSER_RE.search(text)
    if browser:
        info.browser = browser.group(0)
    os_match = OS_RE.search(text)
    if os_match:
        info.os = os_match.group(0).strip()
    info.error_messages = ERROR_MESSAGE_RE.findall(text)
    info.stack_traces = [trace.strip() for trace in STACK_TRACE_RE.findall(text)]
    return info


def extract_customer_info(text: str) -> CustomerInfo | None:
    email = EMAIL_RE.search(text)
    name = NAME_RE.search(text)
    if not email and not name:
        return None
    return CustomerInfo(
        detection_confidence=0.8 if email else 0.6,
        name=name.group(0) if name else None,
        email=email.group(0) if email else None,
    )


def assess_urgency(text: str) -> UrgencyLevel:
    for level, patterns in URGENCY_INDICATORS.items():
        if any(pattern.search(text) for pattern in patterns):
            return level  # type: ignore[return-value]
    return "medium"


class ContentDetector:
    """Turns raw pasted text into a :class:`ContentAnalysisResult`.

    When a :class:`PatternMatcher` is supplied its top category suggestion may
    replace the heuristic classification once per analysis.
    """

    def __init__(self, matcher: PatternMatcher | None = None) -> None:
        self.matcher = matcher

    # -- classification ---------------------------------------------------

    def detect_content_type(self, text: str) -> ContentType:
        trimmed = text.strip()

        if is_case_number(trimmed):
            return "case_number"
        if trimmed.startswith("data:image/"):
            return "image"

        urls = URL_RE.findall(trimmed)
        if is_console_log(trimmed):
            content_type: ContentType = "console_log"
        elif urls and len(" ".join(urls)) > len(trimmed) * URL_SHARE:
            content_type = "url_link"
        elif is_support_request(trimmed):
            content_type = "support_request"
        else:
            content_type = "plain_text"

        if content_type in ("support_request", "plain_text"):
            signals = (
                bool(urls),
                has_console_errors(trimmed),
                support_pattern_hits(trimmed) > 0,
                bool(extract_case_numbers(trimmed)),
            )
            if sum(signals) > 1:
                return "mixed_content"
        return content_type

    def extract_metadata(self, text: str) -> PasteMetadata:
        metadata = PasteMetadata()

        case_numbers = extract_case_numbers(text)
        if case_numbers:
            metadata.case_numbers = case_numbers

        urls = URL_RE.findall(text)
        if urls:
            metadata.urls = urls

        console_errors = extract_console_errors(text)
        if console_errors:
            metadata.console_errors = console_errors

        technical = extract_technical_info(text)
        if not technical.is_empty():
            metadata.technical_details = technical

        metadata.customer_info = extract_customer_info(text)
        metadata.urgency_level = assess_urgency(text)
        return metadata

    @staticmethod
    def classify(text: str, metadata: PasteMetadata) -> Classification:
        if metadata.console_errors:
            return "error"
        if FEATURE_RE.search(text):
            return "feature_request"
        return "query"

    @staticmethod
    def assess_priority(metadata: PasteMetadata) -> Priority:
        if metadata.urgency_level == "critical":
            return "urgent"
        if metadata.urgency_level == "high":
            return "high"
        if metadata.urgency_level == "low":
            return "low"
        if metadata.console_errors:
            return "high"
        return "medium"

    @staticmethod
    def calculate_confidence(text: str, content_type: ContentType, metadata: PasteMetadata) -> float:
        confidence = BASE_CONFIDENCE
        if content_type == "console_log" and metadata.console_errors:
            confidence += 0.3
        if content_type == "support_request" and is_support_request(text):
            confidence += 0.2
        if metadata.urls:
            confidence += 0.1
        if metadata.customer_info and metadata.customer_info.detection_confidence > 0.7:
            confidence += 0.1
        return min(confidence, 1.0)

    @staticmethod
    def generate_title(text: str, content_type: ContentType, metadata: PasteMetadata) -> str:
        truncated = text[:100].strip()

        if content_type == "case_number":
            if metadata.case_numbers:
                return f"Case Reference: {metadata.case_numbers[0]}"
            return "Case Number"
        if content_type == "console_log":
            if metadata.console_errors:
                return f"Console Error: {metadata.console_errors[0].message[:50]}"
            return "Console Log Analysis"
        if content_type == "support_request":
            first_sentence = SENTENCE_END_RE.split(truncated)[0]
            return first_sentence if len(first_sentence) > 10 else "Support Request"
        if content_type == "url_link":
            if metadata.urls:
                domain = DOMAIN_RE.search(metadata.urls[0])
                return f"Shared Link: {domain.group(1) if domain else 'Link'}"
            return "Shared Link"
        if content_type == "mixed_content":
            return "Mixed Content Analysis"
        return truncated or "Pasted Content"

    # -- public API -------------------------------------------------------

    def analyze(self, text: str, source: PasteSource = "clipboard") -> Result[ContentAnalysisResult]:
        """Classify ``text``; ``source`` is informational only."""
        start = time.perf_counter()
        try:
            content_type = self.detect_content_type(text)
            metadata = self.extract_metadata(text)
            analysis = ContentAnalysisResult(
                content_type=content_type,
                confidence=self.calculate_confidence(text, content_type, metadata),
                classification=self.classify(text, metadata),
                priority=self.assess_priority(metadata),
                suggested_title="",
                extracted_metadata=metadata,
                processing_time_ms=0.0,
            )
            analysis = self._refine_with_patterns(analysis, text)

            LOGGER.debug(
                "Analyzed %d chars from %s as %s (%.2f)",
                len(text),
                source,
                analysis.content_type,
                analysis.confidence,
            )
            return Result.ok(
                replace(
                    analysis,
                    suggested_title=self.generate_title(text, content_type, metadata),
                    processing_time_ms=(time.perf_counter() - start) * 1000,
                )
            )
        except CaseLensError as exc:
            LOGGER.error("Content analysis failed: %s", exc)
            return Result.fail(exc)

    def _refine_with_patterns(self, analysis: ContentAnalysisResult, text: str) -> ContentAnalysisResult:
        if self.matcher is None:
            return analysis

        suggestions = self.matcher.suggest_category(analysis, text)
        if not suggestions.success or not suggestions.data:
            return analysis

        top = suggestions.data[0]
        if top.confidence <= analysis.confidence:
            return analysis

        analysis.extracted_metadata.pattern_matches = [
            PatternMatchInfo(
                pattern=match.pattern.pattern,
                confidence=match.confidence,
                match_type=match.match_type,
            )
            for match in top.matched_patterns
        ]
        return replace(analysis, classification=top.category, confidence=top.confidence)

    def create_paste_event(self, text: str, source: PasteSource = "clipboard") -> Result[PasteEvent]:
        result = self.analyze(text, source)
        if not result.success:
            return Result.fail(result.error)

        analysis = result.data
        return Result.ok(
            PasteEvent(
                id=str(uuid.uuid4()),
                content=text,
                content_type=analysis.content_type,
                timestamp=utcnow(),
                source=source,
                confidence=analysis.confidence,
                suggested_actions=self.suggest_actions(analysis),
                metadata=analysis.extracted_metadata,
            )
        )

    @staticmethod
    def suggest_actions(analysis: ContentAnalysisResult) -> List[PasteAction]:
        """Content-specific actions plus "save for later", highest confidence first."""

        def action(kind: str, label: str, description: str, confidence: float, **data) -> PasteAction:
            return PasteAction(str(uuid.uuid4()), kind, label, description, confidence, data)  # type: ignore[arg-type]

        metadata = analysis.extracted_metadata
        first_case = metadata.case_numbers[0] if metadata.case_numbers else None
        actions = [
            action("save_for_later", "Save to Inbox", "Save this content for later review", 1.0)
        ]

        if analysis.content_type == "case_number":
            actions.insert(
                0,
                action(
                    "lookup_case",
                    "Look Up Case",
                    "Find and open this existing case",
                    0.95,
                    case_number=first_case,
                ),
            )
            actions.append(
                action(
                    "create_case",
                    "Create Related Case",
                    "Create a new case referencing this case number",
                    0.7,
                    related_case_number=first_case,
                )
            )
        elif analysis.content_type == "support_request":
            actions.insert(
                0,
                action(
                    "create_case",
                    "Create Case",
                    "Create a new support case from this content",
                    analysis.confidence,
                    title=analysis.suggested_title,
                    classification=analysis.classification,
                    priority=analysis.priority,
                ),
            )
        elif analysis.content_type == "console_log":
            actions.insert(
                0,
                action(
                    "analyze_logs",
                    "Analyze Logs",
                    "Extract technical details from console output",
                    analysis.confidence,
                ),
            )
        elif analysis.content_type == "url_link":
            actions.insert(
                0, action("extract_url", "Extract Link Info", "Fetch metadata from the shared URL", 0.9)
            )
        elif analysis.content_type == "image":
            actions.insert(
                0,
                action(
                    "process_image",
                    "Process Image",
                    "Add image to gallery and extract metadata",
                    0.95,
                ),
            )

        # Stable: equal confidences keep insertion order.
        return sorted(actions, key=lambda a: a.confidence, reverse=True)
