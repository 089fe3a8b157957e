# graph/retrieval_quality.py
"""Pure, table-driven scoring for the two-lane retrieval engine.

Nothing here calls an oracle: query construction, merge/rank, quality
evaluation and authority classification are plain functions over chunks.
"""
from __future__ import annotations
import math
import re
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from govqa.core.config import PipelineConfig
from govqa.graph.situation_gate import situation_match_score
from govqa.schemas.evidence import Authority, Chunk, QualityReport
from govqa.schemas.issue import IssueMap
from govqa.schemas.situation import SituationContext

STATE_LANE_ANCHORS = (
    "New Hampshire RSA",
    "NH law",
    "administrative rules",
    "Right-to-Know",
    "NHMA",
    "AG guidance",
    "statewide handbook",
    "municipal law",
)

LOCAL_DOC_TYPE_HINTS = ("minutes", "warrant", "ordinance", "town report", "budget", "selectboard", "planning board")

BOARD_PATTERNS = (
    re.compile(r"\b(?:selectboard|selectmen|board\s+of\s+selectmen)\b", re.I),
    re.compile(r"\bplanning\s+board\b", re.I),
    re.compile(r"\b(?:zoning\s+board|ZBA)\b", re.I),
    re.compile(r"\bconservation\s+commission\b", re.I),
    re.compile(r"\bbudget\s+committee\b", re.I),
    re.compile(r"\bschool\s+board\b", re.I),
    re.compile(r"\blibrary\s+trustees?\b", re.I),
    re.compile(r"\btown\s+meeting\b", re.I),
)

LEGAL_TOPIC_PATTERNS: Tuple[Tuple[re.Pattern, str], ...] = (
    (re.compile(r"\bRSA\s+\d+[:\-]\d+", re.I), "RSA statute"),
    (re.compile(r"\bRight[\s-]to[\s-]Know", re.I), "Right-to-Know law"),
    (re.compile(r"\bpublic\s+hearing", re.I), "public hearing requirements"),
    (re.compile(r"\bdefault\s+budget", re.I), "default budget"),
    (re.compile(r"\bwarrant\s+article", re.I), "warrant articles"),
    (re.compile(r"\bnotice\s+requirement", re.I), "notice requirements"),
    (re.compile(r"\bopen\s+meeting", re.I), "open meeting law"),
    (re.compile(r"\brecusal", re.I), "recusal/conflict of interest"),
    (re.compile(r"\b(?:vote|voting)", re.I), "voting procedures"),
    (re.compile(r"\bvariance", re.I), "zoning variance"),
    (re.compile(r"\bsubdivision", re.I), "subdivision"),
    (re.compile(r"\bexemption", re.I), "tax exemption"),
)

PROPERTY_PATTERNS = (
    re.compile(r"\b\d+\s+[\w\s]+?(?:road|street|lane|drive|avenue|way|place|court|circle|boulevard)\b", re.I),
    re.compile(r"\bmap\s+\d+\s+lot\s+\d+", re.I),
    re.compile(r"\btax\s+map\s+\d+", re.I),
)

ACTION_PATTERNS = (
    re.compile(r"\b(?:approved|denied|tabled|continued|voted|granted|rejected)\b", re.I),
    re.compile(r"\b(?:appeal|amend|reconsider|rehearing)\b", re.I),
)

DATE_PATTERNS = (
    re.compile(
        r"\b(?:january|february|march|april|may|june|july|august|september|october|november|december)\s+\d{1,2},?\s*\d{4}\b",
        re.I,
    ),
    re.compile(r"\b\d{1,2}/\d{1,2}/\d{2,4}\b"),
)

RSA_QUESTION_PATTERNS = (
    re.compile(r"\bRSA\b", re.I),
    re.compile(r"\bstatute\b", re.I),
    re.compile(r"\bstate\s+law\b", re.I),
    re.compile(r"\bNH\s+law\b", re.I),
    re.compile(r"\badministrative\s+rule\b", re.I),
    re.compile(r"\bRight[\s-]to[\s-]Know\b", re.I),
    re.compile(r"\bdefault\s+budget\b", re.I),
    re.compile(r"\bhow\s+is\s+.+\s+calculated\b", re.I),
    re.compile(r"\bwho\s+decides\b", re.I),
    re.compile(r"\bwhat\s+governs\b", re.I),
    re.compile(r"\blegal\s+requirement\b", re.I),
)

HIGH_STAKES_KEYWORDS = (
    "liability", "negligence", "illegal", "rsa", "lawsuit", "ada", "compliance",
    "damages", "immunity", "permit", "building code", "select board",
    "certificate of occupancy", "municipal liability", "governmental immunity",
)

FOREIGN_ENTITY_RE = re.compile(r"\b([A-Z][a-z]+(?:\s+[A-Z][a-z]+)?)\s+(?:property|case|appeal|application|variance|subdivision)\b")

_RSA_RE = re.compile(r"\bRSA\s+\d+", re.I)
_NHMA_RE = re.compile(r"\b(?:NHMA|Municipal\s+Association)\b", re.I)
_OFFICIAL_TITLE_RES = (
    re.compile(r"\bDepartment\b", re.I),
    re.compile(r"\bDOJ\b", re.I),
    re.compile(r"\bNHDES\b", re.I),
    re.compile(r"\bNH\s+Secretary\s+of\s+State\b", re.I),
    re.compile(r"\bAttorney\s+General\b", re.I),
)


class RetrievalFocus(BaseModel):
    """What the retrieved evidence should be about: IssueMap lists plus pattern hits."""

    entities: List[str] = Field(default_factory=list)
    actions: List[str] = Field(default_factory=list)
    legal_topics: List[str] = Field(default_factory=list)
    boards: List[str] = Field(default_factory=list)
    property_ref: Optional[str] = None
    date_refs: List[str] = Field(default_factory=list)


def _unique(items: List[str], cap: int) -> List[str]:
    seen: Dict[str, str] = {}
    for item in items:
        key = item.strip().lower()
        if key and key not in seen:
            seen[key] = item.strip()
    return list(seen.values())[:cap]


def build_focus(
    question: str,
    issue: IssueMap,
    situation: Optional[SituationContext] = None,
    artifact_text: str = "",
) -> RetrievalFocus:
    text = " ".join([question, situation.title if situation else "", *(situation.entities if situation else []), artifact_text[:2000]])

    property_ref = None
    for pattern in PROPERTY_PATTERNS:
        m = pattern.search(text)
        if m:
            property_ref = m.group(0).strip()
            break

    actions: List[str] = list(issue.actions)
    for pattern in ACTION_PATTERNS:
        actions.extend(m.group(0).lower() for m in pattern.finditer(text))

    dates: List[str] = list(issue.time_hints)
    for pattern in DATE_PATTERNS:
        dates.extend(m.group(0) for m in pattern.finditer(text))

    return RetrievalFocus(
        entities=_unique([*(situation.entities if situation else []), *issue.entities], 10),
        actions=_unique(actions, 5),
        legal_topics=_unique([*issue.legal_topics, *(t for p, t in LEGAL_TOPIC_PATTERNS if p.search(text))], 8),
        boards=_unique([*issue.boards, *(m.group(0).lower() for p in BOARD_PATTERNS for m in [p.search(text)] if m)], 5),
        property_ref=property_ref,
        date_refs=_unique(dates, 3),
    )


# --- query construction ---


def build_local_query(queries: List[str], town: Optional[str], boards: List[str]) -> str:
    query = " ".join(q.strip() for q in queries if q.strip())
    if town:
        query += f" (Town of {town})"
    if boards:
        query += f" [Boards: {', '.join(boards)}]"
    query += f" [Document types: {', '.join(LOCAL_DOC_TYPE_HINTS)}]"
    return query


def build_state_query(queries: List[str]) -> str:
    query = " ".join(q.strip() for q in queries if q.strip())
    anchors = ", ".join(STATE_LANE_ANCHORS[:4])
    return (
        f"{query} [Context: {anchors}]. Focus on New Hampshire statewide laws, RSA statutes, NHMA guidance, "
        "and administrative rules. Ignore town-specific documents unless they explain statewide process."
    )


def expanded_local_query(question: str, focus: RetrievalFocus, town: Optional[str]) -> str:
    query = question
    if focus.entities:
        query += f" MUST include: {', '.join(focus.entities[:3])}"
    if focus.boards:
        query += f" Board: {', '.join(focus.boards[:2])}"
    if focus.property_ref:
        query += f" Property: {focus.property_ref}"
    if town:
        query += f" (Town of {town})"
    if focus.date_refs:
        query += f" Date: {focus.date_refs[0]}"
    return query


def expanded_state_query(question: str, focus: RetrievalFocus) -> str:
    query = question
    if focus.legal_topics:
        query += f" Legal topics: {', '.join(focus.legal_topics[:2])}"
    query += " [Context: NH RSA, municipal law, NHMA guidance]"
    if "Right-to-Know law" in focus.legal_topics:
        query += " RSA 91-A"
    return query


def has_rsa_pattern(question: str) -> bool:
    return any(p.search(question or "") for p in RSA_QUESTION_PATTERNS)


def has_high_stakes_keywords(question: str) -> bool:
    q = (question or "").lower()
    return any(k in q for k in HIGH_STAKES_KEYWORDS)


def state_lane_width(k: int, cap: int, salience: float) -> Tuple[int, int]:
    if salience >= 0.5:
        return min(k + 4, 14), min(cap + 2, 8)
    return k, cap


# --- merge / rank ---


def title_key(title: str) -> str:
    t = re.sub(r"\s+", " ", (title or "").lower().strip())
    return re.sub(r"[^\w\s]", "", t)


def dedupe_chunks(chunks: List[Chunk]) -> List[Chunk]:
    """Keep one chunk per normalized title, the higher-scored one, in first-seen order."""
    seen: Dict[str, Chunk] = {}
    for c in chunks:
        key = title_key(c.title)
        existing = seen.get(key)
        if existing is None or c.score > existing.score:
            seen[key] = c
    return list(seen.values())


def _lane_pool(chunks: List[Chunk], cap: int) -> List[Chunk]:
    return sorted(dedupe_chunks(chunks), key=lambda c: c.score, reverse=True)[:cap]


def _lane_floor(scored: List[Tuple[Chunk, float]], lane: str, floor: int) -> List[Tuple[Chunk, float]]:
    return [cm for cm in scored if cm[0].lane == lane][: max(0, floor)]


def merge_and_rank(
    local: List[Chunk],
    state: List[Chunk],
    question: str,
    situation: Optional[SituationContext],
    salience: float,
    local_cap: int,
    state_cap: int,
    config: PipelineConfig,
    min_state: int = 0,
    min_local: int = 0,
) -> List[Chunk]:
    """Merge both lanes into at most merged_cap chunks.

    min_state / min_local are the plan's evidence floors; legal questions always get
    at least three state chunks when the state lane has them.
    """
    capped_local = _lane_pool(local, local_cap)
    bonus = salience * config.state_bonus_weight
    boosted_state = [c.model_copy(update={"score": c.score + bonus}) for c in _lane_pool(state, state_cap)]

    ordered = boosted_state + capped_local if has_rsa_pattern(question) else capped_local + boosted_state
    deduped = dedupe_chunks(ordered)
    merged_cap = config.merged_cap
    state_floor = min(max(min_state, 3 if salience >= 0.5 else 0), merged_cap)
    local_floor = min(min_local, merged_cap - state_floor)

    use_situation = situation is not None and bool(situation.entities)
    scored: List[Tuple[Chunk, float]] = []
    for c in deduped:
        match = situation_match_score(f"{c.title} {c.content}", situation) if use_situation else 0.0
        scored.append((c.model_copy(update={"score": c.score + config.situation_weight * match}), match))
    scored.sort(key=lambda cm: cm[0].score, reverse=True)

    guaranteed = _lane_floor(scored, "state", state_floor) + _lane_floor(scored, "local", local_floor)
    guaranteed.sort(key=lambda cm: cm[0].lane != "state")
    taken = {id(cm[0]) for cm in guaranteed}
    remaining_slots = merged_cap - len(guaranteed)

    if use_situation:
        on_topic = [cm for cm in scored if id(cm[0]) not in taken and cm[1] > config.on_topic_threshold]
        off_topic = [cm for cm in scored if id(cm[0]) not in taken and cm[1] <= config.on_topic_threshold]

        reserved: List[Tuple[Chunk, float]] = []
        if on_topic:
            reserved = on_topic[: math.ceil(remaining_slots * config.on_topic_fraction)]
            remaining_slots -= len(reserved)
        rest = sorted(on_topic[len(reserved):] + off_topic, key=lambda cm: cm[0].score, reverse=True)
        return [cm[0] for cm in guaranteed + reserved + rest[: max(0, remaining_slots)]]

    if guaranteed:
        rest = [cm for cm in scored if id(cm[0]) not in taken]
        return [cm[0] for cm in guaranteed + rest[: max(0, remaining_slots)]]

    return deduped[:merged_cap]


# --- quality ---


def _chunk_text(c: Chunk) -> str:
    return f"{c.title} {c.content}".lower()


def retrieval_confidence(chunks: List[Chunk], focus: RetrievalFocus) -> float:
    if not chunks:
        return 0.0
    avg = sum(c.score or 0.3 for c in chunks) / len(chunks)
    count_factor = min(len(chunks) / 5, 1.0)
    if focus.entities:
        key_entity = any(e.lower() in _chunk_text(c) for c in chunks for e in focus.entities)
    else:
        key_entity = True
    return min(1.0, avg * 0.6 + count_factor * 0.3 + (0.1 if key_entity else 0.0))


def _hit_ratio(text: str, terms: List[str]) -> float:
    if not terms:
        return 0.5
    return sum(1 for t in terms if t.lower() in text) / len(terms)


def topic_alignment(chunks: List[Chunk], focus: RetrievalFocus) -> float:
    if not chunks:
        return 0.0
    if not focus.entities and not focus.legal_topics:
        return 1.0
    scores = []
    for c in chunks:
        text = _chunk_text(c)
        scores.append(
            _hit_ratio(text, focus.entities) * 0.5
            + _hit_ratio(text, focus.legal_topics) * 0.3
            + _hit_ratio(text, focus.boards) * 0.2
        )
    return sum(scores) / len(scores)


def detect_retrieval_drift(chunks: List[Chunk], focus: RetrievalFocus, fraction: float = 0.3) -> Tuple[bool, List[str]]:
    if not chunks or not focus.entities:
        return False, []
    expected = {e.lower() for e in focus.entities}
    counts: Dict[str, int] = {}
    for c in chunks:
        for m in FOREIGN_ENTITY_RE.finditer(f"{c.title} {c.content}"):
            name = m.group(1).lower()
            if name not in expected and len(name) > 3:
                counts[name] = counts.get(name, 0) + 1
    drifted = [name for name, n in counts.items() if n >= 2]
    threshold = math.ceil(len(chunks) * fraction)
    return any(counts[name] >= threshold for name in drifted), drifted


def evaluate_quality(chunks: List[Chunk], focus: RetrievalFocus, question: str, config: PipelineConfig) -> QualityReport:
    confidence = retrieval_confidence(chunks, focus)
    alignment = topic_alignment(chunks, focus)
    drift, drifted = detect_retrieval_drift(chunks, focus, config.drift_chunk_fraction)

    reason: Optional[str] = None
    if confidence < config.min_retrieval_confidence:
        reason = f"Low confidence: {confidence:.2f} < {config.min_retrieval_confidence}"
    elif alignment < config.min_topic_alignment:
        reason = f"Low topic alignment: {alignment:.2f} < {config.min_topic_alignment}"
    elif drift:
        reason = f"Drift detected to: {', '.join(drifted)}"
    elif has_high_stakes_keywords(question) and confidence < config.high_stakes_confidence:
        reason = f"High-stakes question with moderate confidence: {confidence:.2f}"

    return QualityReport(
        confidence=confidence,
        topic_alignment=alignment,
        drift_detected=drift,
        drift_entities=drifted,
        should_escalate=reason is not None,
        escalation_reason=reason,
    )


# --- selection outputs ---


def classify_authority(title: str, content: str, lane: str) -> Authority:
    text = f"{title} {content}".lower()
    lower_title = (title or "").lower()
    if lane == "state":
        if re.search(r"\brsa\s+\d+", text):
            return "rsa"
        if re.search(r"\bnhma\b", text) or "municipal association" in lower_title:
            return "nhma"
        return "official"
    if "minutes" in lower_title or "meeting" in lower_title:
        return "minutes"
    if any(k in lower_title for k in ("news", "article", "reporter")):
        return "news"
    return "official"


def is_authoritative(chunks: List[Chunk]) -> bool:
    for c in chunks:
        text = f"{c.title} {c.content}"
        if _RSA_RE.search(text) or _NHMA_RE.search(text):
            return True
        if any(p.search(c.title) for p in _OFFICIAL_TITLE_RES):
            return True
    return False


def legal_topic_coverage(state_chunks: List[Chunk], topics: List[str]) -> float:
    if not topics:
        return 1.0
    if not state_chunks:
        return 0.0
    text = " ".join(c.content.lower() for c in state_chunks)
    return sum(1 for t in topics if t.lower() in text) / len(topics)


def average_situation_alignment(chunks: List[Chunk], situation: Optional[SituationContext]) -> float:
    if not chunks:
        return 0.0
    return sum(situation_match_score(f"{c.title} {c.content}", situation) for c in chunks) / len(chunks)


def distinct_documents(chunks: List[Chunk]) -> int:
    ids = set()
    for c in chunks:
        ids.update(c.document_ids or [title_key(c.title)])
    return len(ids)


def label_selection(merged: List[Chunk], local_cap: int, state_cap: int) -> Tuple[List[Chunk], List[Chunk], List[Chunk]]:
    """Assign [L#]/[S#] labels in merged order; chunks beyond a lane cap are dropped."""
    local: List[Chunk] = []
    state: List[Chunk] = []
    labelled: List[Chunk] = []
    for c in merged:
        bucket, cap, prefix = (local, local_cap, "L") if c.lane == "local" else (state, state_cap, "S")
        if len(bucket) >= cap:
            continue
        out = c.model_copy(
            update={"label": f"[{prefix}{len(bucket) + 1}]", "authority": classify_authority(c.title, c.content, c.lane)}
        )
        bucket.append(out)
        labelled.append(out)
    return local, state, labelled
