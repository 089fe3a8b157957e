# graph/drift.py
from __future__ import annotations
import re
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from govqa.schemas.situation import SituationContext

DriftSeverity = Literal["none", "minor", "major"]

ANALOGY_PHRASES = (
    re.compile(r"as\s+a\s+separate\s+example", re.I),
    re.compile(r"in\s+an?\s+unrelated\s+(?:matter|case|situation)", re.I),
    re.compile(r"this\s+is\s+not\s+the\s+same\s+issue", re.I),
    re.compile(r"as\s+an?\s+analogy", re.I),
    re.compile(r"for\s+comparison", re.I),
    re.compile(r"in\s+contrast", re.I),
    re.compile(r"unlike\s+this\s+situation", re.I),
    re.compile(r"different(?:ly)?\s+from", re.I),
    re.compile(r"separately", re.I),
    re.compile(r"in\s+another\s+context", re.I),
)

# Case-sensitive: these only match capitalised names.
PROPER_NOUN_PATTERNS = (
    re.compile(
        r"\b([A-Z][a-z]+(?:\s+[A-Z][a-z]+)*)\s+(?:Park|Board|Committee|Commission|Department|Street|Road|Drive|"
        r"Avenue|Lane|Court|Project|Property|Case|Center|School|Building|Hill|Lake|Pond|River|Creek|Brook|Bridge|Beach)\b"
    ),
    re.compile(r"\b(?:Select|Planning|Zoning|School|Library|Conservation)\s+(?:Board|Committee|Commission)\b"),
    re.compile(r"\b([A-Z][a-z]+)(?:'s)?\s+(?:property|land|lot|parcel|home|house|residence|business)\b"),
)

TOPIC_PATTERNS = (
    re.compile(r"\b(?:the\s+)?(rv|r\.v\.|campground|cesspool|septic|sewage)\s+(?:enforcement|violation|matter|issue|case|problem)\b", re.I),
    re.compile(r"\b(?:the\s+)?(\w+)\s+(?:enforcement|violation)\s+(?:case|matter|action)\b", re.I),
    re.compile(r"\b(?:the\s+)?(\w+)\s+(?:property|lot)\s+(?:violation|enforcement|dispute)\b", re.I),
)

BOARD_NAMES = ("select board", "planning board", "zoning board", "school board")

ANALOGY_WINDOW = 200
LOW_COVERAGE = 0.4


class DriftReport(BaseModel):
    has_drift: bool = False
    drifted_to: List[str] = Field(default_factory=list)
    missing_analogy_framing: bool = False
    severity: DriftSeverity = "none"
    situation_coverage: float = 1.0


def answer_entities(text: str) -> List[str]:
    found: List[str] = []
    for pattern in (*PROPER_NOUN_PATTERNS, *TOPIC_PATTERNS):
        for m in pattern.finditer(text):
            for candidate in (m.group(0), m.group(1) if m.groups() else None):
                if candidate and len(candidate.strip()) > 2 and candidate.strip() not in found:
                    found.append(candidate.strip())
    return found


def _words(text: str) -> List[str]:
    return [w for w in text.lower().split() if len(w) > 2]


def off_topic_entities(text: str, situation: SituationContext) -> List[str]:
    situation_words = [_words(e) for e in situation.entities]
    out: List[str] = []
    for entity in answer_entities(text):
        words = _words(entity)
        related = any(
            ew == sw or sw in ew or ew in sw
            for sit in situation_words
            for sw in sit
            for ew in words
        )
        if related or any(b in entity.lower() for b in BOARD_NAMES):
            continue
        if entity not in out:
            out.append(entity)
    return out


def has_analogy_framing(text: str, entity: str) -> bool:
    idx = text.lower().find(entity.lower())
    if idx == -1:
        return True
    window = text[max(0, idx - ANALOGY_WINDOW): idx + len(entity) + ANALOGY_WINDOW]
    return any(p.search(window) for p in ANALOGY_PHRASES)


def situation_coverage(text: str, situation: SituationContext) -> float:
    if not situation.entities:
        return 1.0
    t = text.lower()
    matched = 0.0
    for entity in situation.entities:
        e = entity.lower()
        if e in t:
            matched += 1
        elif any(len(w) > 3 and w in t for w in e.split()):
            matched += 0.5
    return matched / len(situation.entities)


def detect_answer_drift(text: str, situation: Optional[SituationContext]) -> DriftReport:
    """Compare an answer against the gated-in situation anchor.

    Off-topic entities are tolerated when framed as an analogy nearby. Low
    coverage of the situation's own entities is drift on its own.
    """
    if situation is None:
        return DriftReport()

    coverage = situation_coverage(text, situation)
    off_topic = off_topic_entities(text, situation)
    low = coverage < LOW_COVERAGE
    if not off_topic and not low:
        return DriftReport(situation_coverage=coverage)

    unframed = [e for e in off_topic if not has_analogy_framing(text, e)]
    if not unframed and not low:
        return DriftReport(drifted_to=off_topic, situation_coverage=coverage)

    major = (coverage < 0.2 and len(unframed) >= 1) or len(unframed) >= 3 or low
    return DriftReport(
        has_drift=True,
        drifted_to=unframed,
        missing_analogy_framing=bool(unframed),
        severity="major" if major else "minor",
        situation_coverage=coverage,
    )
