# graph/situation_update.py
from __future__ import annotations
import re
import time
from typing import Dict, List, Optional

from govqa.schemas.situation import SituationContext, SituationUpdate, TimeRange

DATE_PATTERNS = (
    re.compile(
        r"\b(?:january|february|march|april|may|june|july|august|september|october|november|december)\s+\d{1,2},?\s*\d{4}\b",
        re.I,
    ),
    re.compile(r"\b\d{1,2}/\d{1,2}/\d{2,4}\b"),
    re.compile(r"\b\d{4}-\d{2}-\d{2}\b"),
)

ENTITY_PATTERNS: Dict[str, tuple[re.Pattern, ...]] = {
    "boards": (
        re.compile(
            r"\b(?:select\s*board|selectboard|planning\s*board|zba|zoning\s*board|conservation\s*commission|"
            r"budget\s*committee|school\s*board|trustees|recreation\s*committee|heritage\s*commission|"
            r"library\s*trustees|cemetery\s*trustees|parks?\s*commission)\b",
            re.I,
        ),
    ),
    "facilities": (
        re.compile(
            r"\b(?:town\s*hall|library|fire\s*station|police\s*station|highway\s*department|transfer\s*station|"
            r"recreation\s*center|community\s*center|senior\s*center|school|elementary|middle\s*school|high\s*school)\b",
            re.I,
        ),
    ),
    "events": (
        re.compile(
            r"\b(?:vote|voted|voting|meeting|hearing|warrant|article|motion|approved|denied|tabled|"
            r"deliberative\s*session|town\s*meeting)\b",
            re.I,
        ),
    ),
    "dates": DATE_PATTERNS,
    "legal": (re.compile(r"\b(?:rsa\s*\d+[-:]\w+|rsa\s*\d+|nh\s*law|statute|ordinance|regulation)\b", re.I),),
    "property_types": (
        re.compile(
            r"\b(?:park|trail|sidewalk|road|bridge|intersection|property|parcel|lot|subdivision|development|"
            r"construction|renovation|expansion)\b",
            re.I,
        ),
    ),
}

EVENT_MARKERS = re.compile(
    r"\b(?:vote|meeting|hearing|warrant|decision|controversy|project|dispute|lawsuit|case|issue)\b", re.I
)

BROADENING_SIGNALS = (
    re.compile(r"\bhow\s+does\s+(?:this|it)\s+work\s+(?:statewide|in\s+nh|generally|across)\b", re.I),
    re.compile(r"\bwhat\s+about\s+other\s+towns?\b", re.I),
    re.compile(r"\bswitching\s+topics?\b", re.I),
    re.compile(r"\bdifferent\s+(?:topic|question|subject)\b", re.I),
    re.compile(r"\bgenerally\s+speaking\b", re.I),
    re.compile(r"\bin\s+general\b", re.I),
    re.compile(r"\bacross\s+(?:new\s+hampshire|nh|the\s+state)\b", re.I),
    re.compile(r"\bstatewide\b", re.I),
)

_FACILITY_RE = re.compile(r"park|hall|station|library|center|school|department", re.I)
_BOARD_RE = re.compile(r"board|commission|committee|trustees", re.I)
_EVENT_RE = re.compile(r"vote|meeting|hearing|warrant|session", re.I)
_PROPERTY_RE = re.compile(r"property|parcel|lot|subdivision|development|project|trail|road|bridge", re.I)


def extract_entities_heuristic(text: str) -> List[str]:
    seen: Dict[str, None] = {}
    for patterns in ENTITY_PATTERNS.values():
        for pattern in patterns:
            for m in pattern.finditer(text or ""):
                seen.setdefault(re.sub(r"\s+", " ", m.group(0).strip()), None)
    return list(seen)


def extract_time_range(text: str) -> Optional[TimeRange]:
    dates: List[str] = []
    for pattern in DATE_PATTERNS:
        dates.extend(m.group(0) for m in pattern.finditer(text or ""))
    if not dates:
        return None
    return TimeRange(start=dates[0], end=dates[-1] if len(dates) > 1 else None)


def is_broadening(text: str) -> bool:
    return any(p.search(text or "") for p in BROADENING_SIGNALS)


def generate_situation_title(entities: List[str]) -> str:
    facilities = [e for e in entities if _FACILITY_RE.search(e)]
    boards = [e for e in entities if _BOARD_RE.search(e)]
    events = [e for e in entities if _EVENT_RE.search(e)]
    properties = [e for e in entities if _PROPERTY_RE.search(e)]

    parts: List[str] = []
    if facilities:
        parts.append(facilities[0])
    elif properties:
        parts.append(properties[0])
    if events:
        parts.append(events[0])
    if boards and len(parts) < 2:
        parts.append(boards[0])
    if not parts and entities:
        parts.append(" / ".join(entities[:2]))
    return " - ".join(parts) or "Current discussion"


def decide_situation_update(
    message: str,
    existing: Optional[SituationContext],
    has_artifact: bool = False,
) -> SituationUpdate:
    """Decide whether the stored situation should change after this turn.

    The decision is only reported; persisting it belongs to the caller.
    """
    new_entities = extract_entities_heuristic(message)
    time_range = extract_time_range(message)

    if is_broadening(message):
        return SituationUpdate(
            should_update=True, new_context=None, confidence=0.3, reason="User explicitly broadening scope"
        )

    if existing is None:
        if len(new_entities) >= 2 or has_artifact:
            ctx = SituationContext(
                title=generate_situation_title(new_entities),
                entities=new_entities,
                time_range=time_range,
                source_refs=["user_artifact"] if has_artifact else [],
                last_updated_at=time.time(),
            )
            return SituationUpdate(
                should_update=True,
                new_context=ctx,
                confidence=0.9 if has_artifact else 0.7,
                reason=(
                    "User provided artifact establishing new situation"
                    if has_artifact
                    else "Multiple entities detected, establishing new situation"
                ),
            )
        return SituationUpdate(
            should_update=False, new_context=None, confidence=0.5, reason="Not enough context to establish situation"
        )

    existing_lower = {e.lower() for e in existing.entities}
    unseen = [e for e in new_entities if e.lower() not in existing_lower]
    if len(unseen) >= 2 and EVENT_MARKERS.search(message or ""):
        combined = list(dict.fromkeys([*existing.entities, *new_entities]))
        ctx = SituationContext(
            title=generate_situation_title(combined),
            entities=combined,
            time_range=time_range or existing.time_range,
            source_refs=list(existing.source_refs),
            last_updated_at=time.time(),
        )
        return SituationUpdate(
            should_update=True,
            new_context=ctx,
            confidence=0.8,
            reason="Significant new entities with event marker - updating situation",
        )

    overlapping = [
        e for e in new_entities if any(x.lower() in e.lower() or e.lower() in x.lower() for x in existing.entities)
    ]
    if overlapping:
        return SituationUpdate(
            should_update=False,
            new_context=existing,
            confidence=0.85,
            reason="Message references existing situation entities - maintaining context",
        )
    return SituationUpdate(
        should_update=False, new_context=existing, confidence=0.7, reason="Assuming continuation of current situation"
    )
