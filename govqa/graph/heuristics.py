# graph/heuristics.py
from __future__ import annotations
import re
from typing import List, Optional

from govqa.core.config import PipelineConfig
from govqa.schemas.issue import IssueMap, LanePlan, MustInclude, PlannerOutput, RetrievalPlan

PLACE_ENTITY_RE = re.compile(
    r"\b([A-Z][a-z]+(?:\s+[A-Z][a-z]+)*)\s+"
    r"(?:Park|Property|Building|Road|Street|Avenue|Lane|Drive|School|Library|Center|Hall)\b"
)

LEGAL_KEYWORDS = (
    "liability", "negligence", "compliance", "violation", "enforcement",
    "ada", "accessibility", "permit", "zoning", "variance", "building code",
    "immunity", "damages", "lawsuit", "legal", "illegal", "ordinance",
)

BOARD_NAMES = (
    "select board", "selectboard", "planning board", "zba", "zoning board",
    "conservation commission", "budget committee", "school board",
)

HIGH_SALIENCE_TERMS = (
    "liability", "negligence", "illegal", "lawsuit", "ada", "compliance",
    "rsa", "statute", "damages", "immunity", "violation", "enforcement",
    "penalty", "sue", "legal action", "attorney", "building code",
)


def extract_default_title(text: str) -> str:
    first = re.split(r"[.!?]", text or "")[0].strip() or (text or "")[:60]
    return first[:80]


def extract_place_entities(text: str) -> List[str]:
    return [m.group(0) for m in PLACE_ENTITY_RE.finditer(text or "")][:5]


def extract_legal_topics(text: str) -> List[str]:
    t = (text or "").lower()
    return [k for k in LEGAL_KEYWORDS if k in t][:6]


def extract_boards(text: str) -> List[str]:
    t = (text or "").lower()
    return [b for b in BOARD_NAMES if b in t]


def compute_legal_salience(text: str) -> float:
    t = (text or "").lower()
    count = sum(1 for term in HIGH_SALIENCE_TERMS if term in t)
    if count >= 4:
        return 0.9
    if count >= 2:
        return 0.7
    if count >= 1:
        return 0.5
    return 0.2


def default_local_query(question: str, issue: IssueMap) -> str:
    parts: List[str] = []
    if issue.town:
        parts.append(issue.town)
    if issue.entities:
        parts.append(issue.entities[0])
    if issue.boards:
        parts.append(issue.boards[0])
    parts.append(re.sub(r"[?.,!]", "", question[:100]).strip())
    return " ".join(parts)[:200]


def default_state_query(issue: IssueMap) -> str:
    parts: List[str] = ["New Hampshire"]
    parts.extend(issue.legal_topics[:2])
    if issue.legal_salience >= 0.5:
        parts.append("RSA municipal law")
    if issue.actions:
        parts.append(issue.actions[0])
    return " ".join(parts)[:200]


def fallback_plan(question: str, config: PipelineConfig, town: Optional[str] = None, reason: str = "") -> PlannerOutput:
    """Deterministic plan used whenever the oracle plan is unusable."""
    salience = compute_legal_salience(question)
    issue = IssueMap(
        town=town,
        situation_title=extract_default_title(question),
        entities=extract_place_entities(question),
        legal_topics=extract_legal_topics(question),
        boards=extract_boards(question),
        requested_output="explain",
        legal_salience=salience,
        planner_confidence=0.3,
    )
    plan = RetrievalPlan(
        local=LanePlan(queries=[default_local_query(question, issue)], k=config.local_k, cap=config.local_cap),
        state=LanePlan(queries=[default_state_query(issue)], k=config.state_k, cap=config.state_cap),
        must_include=MustInclude(min_state=3 if salience >= 0.5 else 1, min_local_facts=2),
        priority="law-first" if salience >= 0.6 else "facts-first",
        reason="Fallback plan due to planner error",
    )
    warnings = ["Using fallback planner output"]
    if reason:
        warnings.append(reason)
    return PlannerOutput(issue_map=issue, plan=plan, used_fallback=True, warnings=warnings)
