# graph/synthesizer_node.py
from __future__ import annotations
import re
from typing import Any, Dict, List, Optional, Tuple

from govqa.core.config import PipelineConfig
from govqa.core.constants import MAX_CHUNK_PROMPT_CHARS, MAX_HISTORY_CHARS, MAX_HISTORY_TURNS, MAX_USER_TEXT_CHARS
from govqa.core.errors import QuotaExhaustedError, is_quota_error
from govqa.core.logging import get_logger
from govqa.graph.answer_policy import format_instructions, select_policy, tier_instructions
from govqa.graph.stage_log import emit, push_note, set_status
from govqa.llm.oracle import GenerationOracle
from govqa.schemas.answer import AnswerPolicy, StageStatus, SynthesisResult
from govqa.schemas.evidence import Chunk, Tier
from govqa.schemas.issue import IssueMap

logger = get_logger("govqa.graph.synthesizer")

CITATION_RE = re.compile(r"\[(L\d+|S\d+|USER)\]")

HARD_RULES = """## HARD RULES (MUST FOLLOW)
1. **No uncited RSA claims**: NEVER mention specific RSA section numbers (e.g., "RSA 91-A", "RSA 673") unless a STATE document [Sx] contains that RSA reference.

2. **Weak state lane handling**: If no state documents exist or they lack specific statutes:
   - Speak generally: "NH has municipal frameworks for this..."
   - Add: "The specific NH RSA text was not found in the archive excerpts provided."

3. **Claim-type discipline**:
   - FACT: What happened (from documents) - cite source
   - STANDARD: Legal requirements (from state law) - cite source
   - INFERENCE: Analysis connecting facts to standards - say it is analysis

4. **Avoid absolute legal claims**: Do NOT use "is illegal", "will be liable", "must result in" unless explicitly supported by cited sources.

5. **No topic substitution**: Answer about the situation the user asked about. Do not substitute related cases.

6. **Citation format**: Use [L1], [L2]... for local documents, [S1], [S2]... for state documents, [USER] for user-provided text.

Do NOT end with "next steps", "consult counsel" or similar advice."""


def extract_citations(text: str) -> List[str]:
    """Unique citation tokens (L#, S#, USER) in order of first use."""
    out: List[str] = []
    for m in CITATION_RE.finditer(text or ""):
        if m.group(1) not in out:
            out.append(m.group(1))
    return out


def fallback_answer(policy: AnswerPolicy, situation_title: Optional[str] = None) -> str:
    """Deterministic low-evidence answer used when generation yields nothing."""
    lead = f'Regarding "{situation_title}"' if situation_title else "For this question"
    if policy.profile == "prose":
        return (
            f"{lead}, the available sources do not provide sufficient detail for a complete analysis. "
            "NH municipal law may apply, but specific statutory references were not confirmed in available sources."
        )
    return "\n\n".join(
        [
            f"**Bottom line**\n{lead}, the available sources do not provide sufficient detail for a complete analysis.",
            "**What happened**\n- Limited documentation found in the archive for this specific situation.",
            "**What the law generally requires**\n- NH municipal law may apply, but specific statutory references were not confirmed in available sources.",
            "**What this changes**\n- Impact depends on specifics not fully covered in available sources.",
            "**Unknowns that matter**\n- Specific local documentation for this situation would clarify the analysis.",
        ]
    )


def build_system_prompt(
    policy: AnswerPolicy,
    tier: Tier,
    issue: IssueMap,
    repair_hint: Optional[str] = None,
) -> str:
    parts = [
        "You are an assistant for New Hampshire municipal officials. "
        "Generate a structured answer based only on the provided documents.",
        format_instructions(policy),
        f"## TIER INSTRUCTIONS ({tier})\n{tier_instructions(tier)}",
        HARD_RULES,
    ]
    if repair_hint is not None:
        parts.append(
            "**REPAIR ATTEMPT**: The previous answer had violations. Be EXTRA careful to:\n"
            "- Remove or qualify any claim not supported by provided excerpts\n"
            "- Do NOT mention statutes/procedures without citations\n"
            "- Stay anchored to the current situation\n"
            f"Fix these issues: {repair_hint}"
        )

    ctx = ["## SITUATION CONTEXT"]
    ctx.append(f'Current situation: "{issue.situation_title}"' if issue.situation_title else "General question")
    if issue.legal_topics:
        ctx.append(f"Legal topics: {', '.join(issue.legal_topics)}")
    if issue.legal_salience >= 0.6:
        ctx.append("HIGH legal salience - ensure the legal framework section is included")
    parts.append("\n".join(ctx))
    return "\n\n".join(parts)


def _history_lines(history: List[Dict[str, str]]) -> str:
    lines = []
    for m in history[-MAX_HISTORY_TURNS:]:
        content = str(m.get("content") or "")
        clipped = content[:MAX_HISTORY_CHARS] + ("..." if len(content) > MAX_HISTORY_CHARS else "")
        who = "User" if m.get("role") == "user" else "Assistant"
        lines.append(f"{who}: {clipped}")
    return "\n".join(lines)


def _chunk_block(chunk: Chunk) -> str:
    return f"{chunk.label} [{chunk.authority.upper()}] {chunk.title}\n{chunk.content[:MAX_CHUNK_PROMPT_CHARS]}\n"


def build_user_prompt(
    question: str,
    local_chunks: List[Chunk],
    state_chunks: List[Chunk],
    user_text: str = "",
    history: Optional[List[Dict[str, str]]] = None,
) -> str:
    parts: List[str] = []
    if history:
        parts.append(f"=== RECENT CONVERSATION ===\n{_history_lines(history)}\n")
    parts.append(f"=== USER QUESTION ===\n{question}\n")
    if user_text:
        parts.append(f"=== USER-PROVIDED TEXT [USER] ===\n{user_text[:MAX_USER_TEXT_CHARS]}\n")
    if local_chunks:
        parts.append("=== LOCAL DOCUMENTS ===")
        parts.extend(_chunk_block(c) for c in local_chunks)
    if state_chunks:
        parts.append("=== STATE DOCUMENTS ===")
        parts.extend(_chunk_block(c) for c in state_chunks)
    if not local_chunks and not state_chunks and not user_text:
        parts.append(
            "=== NO ARCHIVE DOCUMENTS FOUND ===\n"
            "No relevant documents were retrieved from the archive. Provide a general response and note this limitation."
        )
    parts.append("\nGenerate a structured answer following the format in your instructions. Cite sources appropriately.")
    return "\n".join(parts)


def synthesize(
    oracle: GenerationOracle,
    question: str,
    issue: IssueMap,
    tier: Tier,
    local_chunks: List[Chunk],
    state_chunks: List[Chunk],
    policy: AnswerPolicy,
    user_text: str = "",
    history: Optional[List[Dict[str, str]]] = None,
    repair_hint: Optional[str] = None,
    situation_title: Optional[str] = None,
) -> Tuple[SynthesisResult, StageStatus]:
    """One generation call. Quota errors propagate; anything else yields the fallback answer."""
    system = build_system_prompt(policy, tier, issue, repair_hint)
    user = build_user_prompt(question, local_chunks, state_chunks, user_text, history)
    stage = "repair" if repair_hint is not None else "synthesize"

    try:
        text = oracle.generate(system, user, policy.temperature, policy.max_output_tokens)
    except QuotaExhaustedError:
        raise
    except Exception as e:
        if is_quota_error(e):
            raise QuotaExhaustedError(str(e), stage=stage) from e
        logger.warning("SYNTH_ORACLE_ERROR stage=%s error=%s: %s", stage, type(e).__name__, e)
        text = ""

    text = (text or "").strip()
    if not text:
        fallback = fallback_answer(policy, situation_title)
        return SynthesisResult(text=fallback, citations_used=[], used_fallback=True), StageStatus.RECOVERED_WITH_HEURISTIC
    return SynthesisResult(text=text, citations_used=extract_citations(text)), StageStatus.OK


def synthesizer_node(config: PipelineConfig, oracle: GenerationOracle):
    policy = select_policy(config)

    def _run(state: Dict[str, Any]) -> Dict[str, Any]:
        retrieval = state["retrieval"]
        strength = state["record_strength"]
        situation = state.get("effective_situation")
        result, status = synthesize(
            oracle,
            str(state.get("question") or ""),
            state["planner_output"].issue_map,
            strength.tier,
            retrieval.local_chunks,
            retrieval.state_chunks,
            policy,
            user_text=str(state.get("artifact_text") or ""),
            history=list(state.get("effective_history") or []),
            situation_title=situation.title if situation is not None else None,
        )
        logger.info(
            "NODE_CALL node=synthesize request_id=%s tier=%s profile=%s chars=%s citations=%s fallback=%s",
            state.get("request_id"),
            strength.tier,
            policy.profile,
            len(result.text),
            ",".join(result.citations_used),
            result.used_fallback,
        )
        emit(
            state,
            "synthesis_complete",
            {"chars": len(result.text), "citations": result.citations_used, "used_fallback": result.used_fallback},
        )
        return {
            "policy": policy,
            "synthesis": result,
            "stage_status": set_status(state, "synthesize", status),
            "stage_notes": push_note(state, node="synthesize", summary=f"Answer drafted (tier {strength.tier})"),
        }

    return _run
