# graph/planner_node.py
from __future__ import annotations
from typing import Any, Dict, List, Optional, Tuple

from govqa.core.config import PipelineConfig
from govqa.core.constants import MAX_ARTIFACT_CHARS, MAX_ARTIFACTS
from govqa.core.errors import DecodeError, QuotaExhaustedError, is_quota_error
from govqa.core.jsonx import extract_json
from govqa.core.logging import get_logger
from govqa.graph.heuristics import (
    compute_legal_salience,
    default_local_query,
    default_state_query,
    extract_default_title,
    extract_place_entities,
    fallback_plan,
)
from govqa.graph.stage_log import emit, push_note, set_status
from govqa.llm.oracle import GenerationOracle
from govqa.schemas.answer import StageStatus
from govqa.schemas.issue import (
    PRIORITIES,
    REQUESTED_OUTPUTS,
    IssueMap,
    LanePlan,
    MustInclude,
    ParsedPlan,
    PlannerOutput,
    RetrievalPlan,
)
from govqa.schemas.situation import Artifact, SituationContext

logger = get_logger("govqa.graph.planner")

PLANNER_SYSTEM_PROMPT = """You are the planning agent for a municipal civic research assistant.

Your job is to analyze a user's question (and any pasted article/document) to produce:
1. An IssueMap - structured extraction of entities, topics, and intent
2. A RetrievalPlan - specific queries for local and state document lanes

CRITICAL RULES:
- Only include entities that APPEAR in the provided text (user message or user-provided document)
- Do NOT guess or infer RSA numbers - leave legalTopics as descriptions
- Be conservative with plannerConfidence if the question is ambiguous

Return JSON matching this exact schema:
{
  "issueMap": {
    "town": "string or null",
    "situationTitle": "brief title for the situation",
    "entities": ["entity names from text only"],
    "actions": ["action verbs/topics mentioned"],
    "legalTopics": ["legal concepts mentioned - NOT RSA numbers"],
    "boards": ["boards mentioned"],
    "timeHints": ["dates, years, time references"],
    "requestedOutput": "explain|steps|cite_laws|risk|process",
    "legalSalience": 0.0-1.0,
    "plannerConfidence": 0.0-1.0
  },
  "retrievalPlan": {
    "local": {"queries": ["query strings for local lane"], "k": 12, "cap": 10},
    "state": {"queries": ["query strings for state lane"], "k": 8, "cap": 5},
    "mustInclude": {"minState": 0-4, "minLocalFacts": 0-4},
    "priority": "law-first|facts-first|process-first",
    "reason": "brief explanation of plan"
  }
}

Legal salience indicators (high = 0.7+):
- liability, negligence, illegal, lawsuit, ADA, compliance
- RSA, statute, code, regulation, immunity
- damages, enforcement, penalty, violation

Query guidelines:
- Local queries: town-specific, board actions, meeting decisions, votes
- State queries: NH law, RSA topics, NHMA guidance, municipal procedures
- Max 6 queries per lane
- Make queries specific and grounded in the actual question"""


def artifact_prompt_text(artifacts: List[Artifact]) -> str:
    return "\n\n".join(
        f"=== {a.content_type.upper()}: {a.title or 'User-provided text'} ===\n{a.text[:MAX_ARTIFACT_CHARS]}"
        for a in artifacts[:MAX_ARTIFACTS]
    )


def build_planner_prompt(
    question: str,
    situation: Optional[SituationContext],
    artifact_text: str,
    town: Optional[str],
) -> str:
    lines = ["Analyze this question and create a retrieval plan:", "", f'USER QUESTION: "{question}"', ""]
    if artifact_text:
        lines += ["USER-PROVIDED DOCUMENT:", artifact_text, ""]
    if situation is not None:
        lines.append(f'Current situation: "{situation.title}" with entities: {", ".join(situation.entities[:5])}')
    lines.append(f"Town hint: {town}" if town else "No specific town mentioned")
    lines += ["", "Return valid JSON only."]
    return "\n".join(lines)


def decode_plan(raw: str) -> ParsedPlan | DecodeError:
    """Decode oracle text into a ParsedPlan, or a DecodeError value describing why not."""
    try:
        data = extract_json(raw)
    except ValueError as e:
        return DecodeError(f"JSON parse failed: {e}", raw or "")
    issue = data.get("issueMap")
    plan = data.get("retrievalPlan")
    if issue is not None and not isinstance(issue, dict):
        return DecodeError("issueMap is not an object", raw)
    if plan is not None and not isinstance(plan, dict):
        return DecodeError("retrievalPlan is not an object", raw)
    if issue is None and plan is None:
        return DecodeError("Neither issueMap nor retrievalPlan present", raw)
    entities = (issue or {}).get("entities")
    if entities is not None and not (isinstance(entities, list) and all(isinstance(e, str) for e in entities)):
        return DecodeError("issueMap.entities is not a list of strings", raw)
    return ParsedPlan(issue_map=issue or {}, retrieval_plan=plan or {})


def _str_list(value: Any, cap: int) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if isinstance(v, (str, int, float)) and str(v).strip()][:cap]


def _unit(value: Any, default: float) -> float:
    try:
        v = float(value)
    except (TypeError, ValueError):
        return default
    return max(0.0, min(1.0, v))


def _positive_int(value: Any, default: int) -> int:
    try:
        v = int(value)
    except (TypeError, ValueError):
        return default
    return v if v > 0 else default


def _queries(raw_lane: Dict[str, Any], cap: int) -> List[str]:
    raw = raw_lane.get("queries")
    if not isinstance(raw, list):
        return []
    return [q.strip() for q in raw if isinstance(q, str) and len(q.strip()) > 5][:cap]


def validate_plan(
    parsed: ParsedPlan,
    question: str,
    source_text: str,
    config: PipelineConfig,
    town: Optional[str] = None,
) -> PlannerOutput:
    """Clamp, cap and ground a decoded plan. Entities absent from source_text are dropped."""
    raw_issue = parsed.issue_map
    raw_plan = parsed.retrieval_plan
    warnings: List[str] = []
    combined = f"{question} {source_text}".lower()

    kept: List[str] = []
    dropped: List[str] = []
    raw_entities = raw_issue.get("entities")
    for entity in raw_entities if isinstance(raw_entities, list) else []:
        if not isinstance(entity, str) or not entity.strip():
            continue
        if entity.strip().lower() in combined:
            kept.append(entity.strip())
        else:
            dropped.append(entity)
            warnings.append(f"Dropped hallucinated entity: {entity}")
    if not kept:
        kept = extract_place_entities(question)

    requested = raw_issue.get("requestedOutput")
    salience = _unit(raw_issue.get("legalSalience"), compute_legal_salience(question))
    issue = IssueMap(
        town=str(raw_issue["town"]) if raw_issue.get("town") else town,
        situation_title=str(raw_issue.get("situationTitle") or extract_default_title(question)),
        entities=kept,
        actions=_str_list(raw_issue.get("actions"), 8),
        legal_topics=_str_list(raw_issue.get("legalTopics"), 8),
        boards=_str_list(raw_issue.get("boards"), 5),
        time_hints=_str_list(raw_issue.get("timeHints"), 5),
        requested_output=requested if requested in REQUESTED_OUTPUTS else "explain",
        legal_salience=salience,
        planner_confidence=_unit(raw_issue.get("plannerConfidence"), 0.5),
    )

    raw_local = raw_plan.get("local") if isinstance(raw_plan.get("local"), dict) else {}
    raw_state = raw_plan.get("state") if isinstance(raw_plan.get("state"), dict) else {}
    local_queries = _queries(raw_local, config.max_queries_per_lane) or [default_local_query(question, issue)]
    state_queries = _queries(raw_state, config.max_queries_per_lane) or [default_state_query(issue)]

    if issue.planner_confidence < config.conservative_confidence:
        warnings.append("Low planner confidence - using conservative retrieval")
        local_queries = local_queries[: config.conservative_max_queries]
        state_queries = state_queries[: config.conservative_max_queries]

    must = raw_plan.get("mustInclude") if isinstance(raw_plan.get("mustInclude"), dict) else {}
    priority = raw_plan.get("priority")
    plan = RetrievalPlan(
        local=LanePlan(
            queries=local_queries,
            k=_positive_int(raw_local.get("k"), config.local_k),
            cap=_positive_int(raw_local.get("cap"), config.local_cap),
        ),
        state=LanePlan(
            queries=state_queries,
            k=_positive_int(raw_state.get("k"), config.state_k),
            cap=_positive_int(raw_state.get("cap"), config.state_cap),
        ),
        must_include=MustInclude(
            min_state=_positive_int(must.get("minState"), 3 if salience >= 0.5 else 1),
            min_local_facts=_positive_int(must.get("minLocalFacts"), 2),
        ),
        priority=priority if priority in PRIORITIES else ("law-first" if salience >= 0.6 else "facts-first"),
        reason=str(raw_plan.get("reason") or "Planner-generated plan"),
    )
    return PlannerOutput(issue_map=issue, plan=plan, dropped_entities=dropped, warnings=warnings)


def plan_question(
    oracle: GenerationOracle,
    question: str,
    config: PipelineConfig,
    situation: Optional[SituationContext] = None,
    artifacts: Optional[List[Artifact]] = None,
    town: Optional[str] = None,
) -> Tuple[PlannerOutput, StageStatus]:
    artifacts = list(artifacts or [])[:MAX_ARTIFACTS]
    artifact_text = artifact_prompt_text(artifacts)
    user_prompt = build_planner_prompt(question, situation, artifact_text, town)
    source_text = " ".join(a.text[:MAX_ARTIFACT_CHARS] for a in artifacts)
    if situation is not None:
        source_text += " " + situation.title + " " + " ".join(situation.entities)

    try:
        raw = oracle.generate(PLANNER_SYSTEM_PROMPT, user_prompt, config.planner_temperature, config.planner_max_tokens)
    except QuotaExhaustedError:
        raise
    except Exception as e:
        if is_quota_error(e):
            raise QuotaExhaustedError(str(e), stage="plan") from e
        logger.warning("PLANNER_ORACLE_ERROR error=%s: %s", type(e).__name__, e)
        return fallback_plan(question, config, town, reason=f"oracle error: {type(e).__name__}"), StageStatus.RECOVERED_WITH_HEURISTIC

    decoded = decode_plan(raw)
    if isinstance(decoded, DecodeError):
        logger.warning("PLANNER_DECODE_ERROR reason=%s preview=%r", decoded.reason, decoded.raw_preview)
        return fallback_plan(question, config, town, reason=decoded.reason), StageStatus.RECOVERED_WITH_HEURISTIC

    out = validate_plan(decoded, question, source_text, config, town)
    for dropped in out.dropped_entities:
        logger.info("PLANNER_ENTITY_DROPPED entity=%r", dropped)
    return out, StageStatus.OK


def planner_node(config: PipelineConfig, oracle: GenerationOracle):
    def _run(state: Dict[str, Any]) -> Dict[str, Any]:
        question = str(state.get("question") or "")
        out, status = plan_question(
            oracle,
            question,
            config,
            situation=state.get("effective_situation"),
            artifacts=list(state.get("artifacts") or []),
            town=state.get("town") or config.town,
        )
        issue = out.issue_map
        logger.info(
            "NODE_CALL node=plan request_id=%s status=%s entities=%s salience=%.2f confidence=%.2f local_q=%s state_q=%s",
            state.get("request_id"),
            status.value,
            len(issue.entities),
            issue.legal_salience,
            issue.planner_confidence,
            len(out.plan.local.queries),
            len(out.plan.state.queries),
        )
        emit(
            state,
            "plan_complete",
            {
                "status": status.value,
                "used_fallback": out.used_fallback,
                "entities": issue.entities[:5],
                "legal_topics": issue.legal_topics[:5],
                "warnings": out.warnings,
            },
        )
        return {
            "planner_output": out,
            "stage_status": set_status(state, "plan", status),
            "stage_notes": push_note(
                state,
                node="plan",
                summary="Plan ready" if status == StageStatus.OK else "Heuristic plan substituted",
                extra={"warnings": out.warnings[:10]},
            ),
        }

    return _run
