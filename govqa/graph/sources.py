# graph/sources.py
from __future__ import annotations
import re
from typing import List, Optional

from pydantic import BaseModel

from govqa.core.logging import get_logger
from govqa.schemas.answer import DocSourceType
from govqa.schemas.evidence import Chunk
from govqa.schemas.situation import Artifact, ContentType

logger = get_logger("govqa.graph.sources")

SESSION_SOURCE_MIN_LENGTH = 800
SESSION_SOURCE_MIN_PARAGRAPHS = 4
PATTERN_MIN_LENGTH = 400

DATE_BYLINE_PATTERNS = (
    re.compile(r"\b(?:jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)[a-z]*\.?\s+\d{1,2}", re.I),
    re.compile(r"\b\d{1,2}/\d{1,2}/\d{2,4}\b"),
    re.compile(r"\bUpdated\b", re.I),
    re.compile(r"\bPublished\b", re.I),
    re.compile(r"\bReporter\b", re.I),
    re.compile(r"\bBy\s+[A-Z][a-z]+\s+[A-Z][a-z]+"),
    re.compile(r"\bStaff\s+Writer\b", re.I),
    re.compile(r"\bPress\s+Release\b", re.I),
    re.compile(r"\bNews\b", re.I),
    re.compile(r"\bArticle\b", re.I),
)

MINUTES_PATTERNS = (
    re.compile(r"\bMinutes\b", re.I),
    re.compile(r"\bMeeting\s+Called\s+to\s+Order\b", re.I),
    re.compile(r"\bAdjourned\b", re.I),
    re.compile(r"\bMotion\s+(?:to|by)\b", re.I),
    re.compile(r"\bSeconded\b", re.I),
    re.compile(r"\bAll\s+in\s+favor\b", re.I),
    re.compile(r"\bVote:\s*\d", re.I),
    re.compile(r"\bPresent:\s", re.I),
    re.compile(r"\bAbsent:\s", re.I),
    re.compile(r"\bQuorum\b", re.I),
)

_MEETING_DATE_RE = re.compile(
    r"\b(?:january|february|march|april|may|june|july|august|september|october|november|december)\s+\d{1,2},?\s*\d{4}",
    re.I,
)
_STRUCTURED_RE = re.compile(r"^(?:#|\*|-|\d+\.)\s")


class SessionSourceDetection(BaseModel):
    is_session_source: bool
    artifact: Optional[Artifact] = None
    reason: str = ""


def count_paragraphs(text: str) -> int:
    return sum(1 for p in re.split(r"\n\s*\n", text) if len(p.strip()) > 50)


def detect_content_type(text: str) -> ContentType:
    if sum(1 for p in MINUTES_PATTERNS if p.search(text)) >= 3:
        return "minutes"
    if sum(1 for p in DATE_BYLINE_PATTERNS if p.search(text)) >= 2:
        return "article"
    if _STRUCTURED_RE.match(text) or "WHEREAS" in text or "RESOLVED" in text or re.search(r"\bSection\s+\d", text, re.I):
        return "document"
    return "paste"


def extract_source_title(text: str, content_type: ContentType) -> Optional[str]:
    lines = [line.strip() for line in text.split("\n") if line.strip()]
    if not lines:
        return None
    first = lines[0]
    if 5 < len(first) < 100:
        return first[:80]
    if content_type == "minutes":
        m = _MEETING_DATE_RE.search(text)
        if m:
            return f"Meeting {m.group(0)}"
    return None


def detect_session_source(text: str) -> SessionSourceDetection:
    """Decide whether a user message is a pasted document worth treating as an artifact."""
    text = text or ""
    length = len(text)
    paragraphs = count_paragraphs(text)
    long_enough = length >= SESSION_SOURCE_MIN_LENGTH
    many_paragraphs = paragraphs >= SESSION_SOURCE_MIN_PARAGRAPHS
    byline = any(p.search(text) for p in DATE_BYLINE_PATTERNS)
    minutes = sum(1 for p in MINUTES_PATTERNS if p.search(text)) >= 2

    if not (long_enough or many_paragraphs or ((byline or minutes) and length > PATTERN_MIN_LENGTH)):
        return SessionSourceDetection(is_session_source=False, reason="Message does not meet session source criteria")

    content_type = detect_content_type(text)
    title = extract_source_title(text, content_type)
    reason = f"Detected as {content_type}"
    if long_enough:
        reason += f" (length: {length})"
    if many_paragraphs:
        reason += f" (paragraphs: {paragraphs})"
    logger.info("SESSION_SOURCE_DETECTED type=%s chars=%s paragraphs=%s", content_type, length, paragraphs)
    return SessionSourceDetection(
        is_session_source=True,
        artifact=Artifact(title=title or "User-provided text", text=text, content_type=content_type),
        reason=reason,
    )


def classify_doc_source_type(local_count: int, state_count: int) -> DocSourceType:
    if local_count and state_count:
        return "mixed"
    if local_count:
        return "local"
    if state_count:
        return "statewide"
    return "none"


def display_title(name: str) -> str:
    if "/documents/" in name:
        return name.rsplit("/", 1)[-1] or name
    m = re.match(r"\[([^\]]+)\]\s*(.+)", name)
    if m:
        return m.group(2)
    return name


def source_document_names(chunks: List[Chunk]) -> List[str]:
    """Unique display titles of the chunks that reached synthesis, in label order."""
    names: List[str] = []
    for c in chunks:
        title = display_title(c.title)
        if title and title not in names:
            names.append(title)
    return names
