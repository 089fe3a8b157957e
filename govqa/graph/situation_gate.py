# graph/situation_gate.py
from __future__ import annotations
from typing import Any, Dict, List, Optional

from govqa.core.config import PipelineConfig
from govqa.core.logging import get_logger
from govqa.graph.stage_log import emit, push_note, set_status
from govqa.schemas.answer import StageStatus
from govqa.schemas.situation import GateResult, SituationContext

logger = get_logger("govqa.graph.situation_gate")

GENERIC_EXPLICIT_REFERENCES = (
    "that vote", "the vote", "this vote",
    "that decision", "the decision", "this decision",
    "that meeting", "the meeting", "this meeting",
    "that case", "the case", "this case",
    "that situation", "the situation", "this situation",
    "that project", "the project", "this project",
    "that issue", "the issue", "this issue",
    "that article", "the article", "this article",
    "that property", "the property", "this property",
    "as mentioned", "as discussed", "we were discussing",
    "going back to", "regarding the", "about the earlier",
)

ENTITY_REFERENCE_PREFIXES = ("the ", "that ", "this ", "about the ", "regarding the ")

# Checked in order; the first domain with a keyword hit wins.
DOMAIN_CATEGORIES: Dict[str, tuple[str, ...]] = {
    "budget": (
        "budget", "appropriation", "tax rate", "default budget", "overlay",
        "encumbrance", "fund balance", "fiscal year", "revenue", "expenditure",
    ),
    "zoning": (
        "zoning amendment", "zoning variance", "special exception", "setback",
        "lot coverage", "building permit", "conditional use",
    ),
    "environmental": ("wetlands", "shoreland", "stormwater", "septic", "groundwater"),
    "development": ("subdivision", "site plan", "lot line adjustment", "annexation"),
    "personnel": (
        "personnel", "hiring", "firing", "compensation", "benefits",
        "collective bargaining", "union", "grievance", "employee",
    ),
    "elections": (
        "deliberative session", "official ballot", "election", "ballot",
        "voter registration", "absentee", "moderator",
    ),
    "public_safety": ("police", "fire department", "emergency services", "ambulance"),
    "infrastructure": (
        "highway", "road maintenance", "bridge", "culvert", "drainage",
        "water system", "sewer system", "utility",
    ),
}


def significant_words(text: str, min_len: int = 4) -> List[str]:
    return [w for w in (text or "").lower().split() if len(w) >= min_len]


def detect_domain(text: str) -> Optional[str]:
    t = (text or "").lower()
    for domain, keywords in DOMAIN_CATEGORIES.items():
        if any(k in t for k in keywords):
            return domain
    return None


def compute_question_situation_match(
    question: str,
    context: Optional[SituationContext],
    threshold: float = 2.0,
    domain_penalty: float = 2.0,
) -> GateResult:
    """Score how strongly a new question refers back to the stored situation.

    Pure: never mutates the context. A missing context, or one without
    entities, always scores 0 and is not used.
    """
    if context is None or not context.entities:
        return GateResult(score=0.0, use_situation_context=False, reasons=["no_situation"])

    q = (question or "").lower()
    score = 0.0
    reasons: List[str] = []
    overlap = False

    for entity in context.entities:
        e = entity.lower().strip()
        if not e:
            continue
        if e in q:
            score += 1.0
            overlap = True
            reasons.append(f"entity:{entity}")
            continue
        for word in significant_words(e):
            if word in q:
                score += 0.5
                overlap = True
                reasons.append(f"partial:{word}")
                break

    for word in significant_words(context.title):
        if word in q:
            score += 0.5
            overlap = True
            reasons.append(f"title:{word}")

    for phrase in GENERIC_EXPLICIT_REFERENCES:
        if phrase in q:
            score += 1.0
            reasons.append(f"reference:{phrase}")
            break

    for entity in context.entities:
        e = entity.lower().strip()
        if e and any(f"{p}{e}" in q for p in ENTITY_REFERENCE_PREFIXES):
            score += 1.5
            reasons.append(f"entity_reference:{entity}")
            break

    q_domain = detect_domain(question)
    s_domain = detect_domain(" ".join([context.title, *context.entities]))
    if q_domain and q_domain != s_domain and not overlap:
        score -= domain_penalty
        reasons.append(f"domain_mismatch:{q_domain}!={s_domain or 'none'}")

    return GateResult(
        score=score,
        use_situation_context=score >= threshold,
        reasons=reasons,
        question_domain=q_domain,
        situation_domain=s_domain,
    )


def situation_match_score(text: str, context: Optional[SituationContext]) -> float:
    """Fraction in [0, 1] of the situation's entities and title words present in text."""
    if context is None or not context.entities:
        return 0.0
    t = (text or "").lower()
    score = 0.0
    weight = 0.0
    for entity in context.entities:
        e = entity.lower().strip()
        if not e:
            continue
        weight += 2.0
        if e in t:
            score += 2.0
        else:
            score += 0.5 * sum(1 for w in significant_words(e) if w in t)
    for word in significant_words(context.title):
        if word in t:
            score += 0.5
            weight += 0.5
    if weight == 0:
        return 0.0
    return min(1.0, score / weight)


def gate_node(config: PipelineConfig):
    def _run(state: Dict[str, Any]) -> Dict[str, Any]:
        question = str(state.get("question") or "")
        ctx = state.get("situation_context")
        gate = compute_question_situation_match(
            question, ctx, threshold=config.gate_threshold, domain_penalty=config.domain_penalty
        )
        # Gated out: both the context and the prior history are withheld this turn.
        effective_ctx = ctx if gate.use_situation_context else None
        history = list(state.get("history") or []) if gate.use_situation_context else []

        logger.info(
            "NODE_CALL node=gate request_id=%s score=%.2f use=%s reasons=%s",
            state.get("request_id"),
            gate.score,
            gate.use_situation_context,
            ",".join(gate.reasons[:6]),
        )
        emit(state, "situation_gated", {"score": gate.score, "use": gate.use_situation_context, "reasons": gate.reasons})
        return {
            "gate_result": gate,
            "effective_situation": effective_ctx,
            "effective_history": history,
            "stage_status": set_status(state, "gate", StageStatus.OK),
            "stage_notes": push_note(
                state,
                node="gate",
                summary="Situation gate evaluated",
                extra={"score": gate.score, "use": gate.use_situation_context},
            ),
        }

    return _run
