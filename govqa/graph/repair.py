# graph/repair.py
from __future__ import annotations
import re
from typing import Any, Dict, List, Optional, Tuple

from govqa.core.logging import get_logger
from govqa.graph.audit import (
    BULLET_RE,
    audit_answer,
    bullet_lines,
    extract_sections,
    strip_tails,
    validate_answer_format,
    word_count,
)
from govqa.graph.situation_update import decide_situation_update
from govqa.graph.stage_log import emit, push_note, set_status
from govqa.graph.synthesizer_node import synthesize
from govqa.llm.oracle import GenerationOracle
from govqa.schemas.answer import AnswerPolicy, AuditResult, ScoredAnswer, StageStatus
from govqa.schemas.evidence import Chunk
from govqa.schemas.situation import SituationContext

logger = get_logger("govqa.graph.repair")

BULLET_MARKERS = ("-", "•", "*")
TRAILING_CITATION_RE = re.compile(r"^\[(?:L\d+|S\d+|USER)\][.,;]?$")
PLACEHOLDER = "Information not available in sources."
TRUNCATED_SUMMARY_WORDS = 50


# --- scoring / selection ---


def score_answer(text: str, policy: AnswerPolicy, state_count: int) -> Tuple[int, bool, int]:
    """Pure scorer. Returns (score, complete, word_count)."""
    violations, stats = validate_answer_format(text, policy, state_count)
    words = stats.word_count
    score = 10 * len(stats.headings_found)
    if state_count > 0 and stats.law_section_state_citations >= policy.min_state_citations_in_law_section:
        score += 20
    score -= 2 * len(violations)
    if any(v.type == "llm_tail" for v in violations):
        score -= 10
    if words < policy.min_complete_words:
        score -= 30
    low, high = policy.sweet_spot_words
    if low <= words <= high:
        score += 15
    complete = not stats.missing_headings and words >= policy.min_complete_words
    return score, complete, words


def build_candidate(source: str, text: str, audit: AuditResult, policy: AnswerPolicy, state_count: int) -> ScoredAnswer:
    score, complete, words = score_answer(text, policy, state_count)
    return ScoredAnswer(source=source, text=text, score=score, complete=complete, word_count=words, audit=audit)


def select_better_answer(candidates: List[ScoredAnswer]) -> ScoredAnswer:
    """Completeness gates first, then strictly higher score; ties keep the original."""
    original = candidates[0]
    if len(candidates) < 2:
        return original
    repair = candidates[1]
    if repair.complete and not original.complete:
        return repair
    if original.complete and not repair.complete:
        return original
    return repair if repair.score > original.score else original


# --- deterministic rewriting ---


def _clip_bullet(line: str, max_words: int) -> str:
    words = line.split()
    if len(words) <= max_words:
        return " ".join(words)
    if TRAILING_CITATION_RE.match(words[-1]):
        return " ".join(words[: max_words - 1] + [words[-1]])
    return " ".join(words[:max_words])


def _clean_lead(line: str) -> str:
    # Drops leading colons and bullet markers.
    prev = None
    while prev != line:
        prev = line
        line = BULLET_RE.sub("", line.lstrip(": \t"), count=1)
    return line


def _summary_line(content: str, limit: int) -> str:
    words = [w for w in content.split() if w not in BULLET_MARKERS][:limit]
    kept = [w for w in strip_tails(" ".join(words)).split() if w not in BULLET_MARKERS]
    return _clean_lead(" ".join(kept))


def _section_lines(content: str, limit: int, max_words: int) -> List[str]:
    lines = [line.strip() for line in content.splitlines() if line.strip()]
    intro = [line for line in lines if not BULLET_RE.match(line) and line not in BULLET_MARKERS][:2]
    out: List[str] = []
    if intro:
        joined = _clean_lead(" ".join(strip_tails(" ".join(intro)).split()))
        if joined:
            out.append(joined)
    kept = 0
    for line in lines:
        if kept >= limit:
            break
        if not BULLET_RE.match(line):
            continue
        bullet = _clip_bullet(strip_tails(line), max_words)
        if BULLET_RE.match(bullet):
            out.append(bullet)
            kept += 1
    return out


def _cap_words(text: str, limit: int) -> str:
    out: List[str] = []
    used = 0
    for line in text.split("\n"):
        n = len(line.split())
        if used + n <= limit:
            out.append(line)
            used += n
            continue
        room = limit - used
        if room > 0:
            out.append(" ".join(line.split()[:room]))
        break
    return "\n".join(out).rstrip()


def _cap_chars(text: str, limit: Optional[int]) -> str:
    if limit is None or len(text) <= limit:
        return text
    out: List[str] = []
    used = 0
    for line in text.split("\n"):
        cost = len(line) + (1 if out else 0)
        if used + cost <= limit:
            out.append(line)
            used += cost
            continue
        words: List[str] = []
        for w in line.split():
            candidate = " ".join(words + [w])
            if used + len(candidate) + (1 if out else 0) > limit:
                break
            words.append(w)
        partial = " ".join(words)
        if partial and partial not in BULLET_MARKERS:
            out.append(partial)
        break
    return "\n".join(out).rstrip()


def _normalize_prose(text: str, policy: AnswerPolicy) -> str:
    out: List[str] = []
    bullets = 0
    for raw in strip_tails(text).splitlines():
        line = " ".join(raw.split())
        if not line or line in BULLET_MARKERS:
            if out and out[-1]:
                out.append("")
            continue
        if BULLET_RE.match(line):
            if bullets >= (policy.max_bullets or 0):
                continue
            bullets += 1
            out.append(_clip_bullet(line, policy.max_bullet_words))
        else:
            out.append(line)
    return _cap_chars("\n".join(out).strip(), policy.max_chars)


def normalize_answer_format(text: str, policy: AnswerPolicy) -> str:
    """Rebuild the answer under the policy's headings without another generation call.

    Missing headings get a placeholder, bullets are cut to the section limit
    and to the per-bullet word ceiling, and tail phrases are dropped.
    Normalizing an already-normalized answer returns it unchanged.
    """
    if not policy.headings:
        return _normalize_prose(text, policy)

    sections = extract_sections(strip_tails(text), policy)
    blocks: List[str] = []
    for rule in policy.headings:
        content = sections.get(rule.name, "")
        if rule.max_bullets == 0:
            body = _summary_line(content, policy.summary_max_words) or PLACEHOLDER
        else:
            lines = _section_lines(content, rule.max_bullets, policy.max_bullet_words)
            body = "\n".join(lines) if lines else f"- {PLACEHOLDER}"
        blocks.append(f"**{rule.name}**\n{body}")
    return re.sub(r"\n{3,}", "\n\n", "\n\n".join(blocks)).strip()


def hard_truncate_answer(text: str, policy: AnswerPolicy) -> str:
    """Last-resort trim to the policy limits. Never appends a truncation marker."""
    if not policy.headings:
        return _cap_chars(_cap_words(_normalize_prose(text, policy), policy.max_words), policy.max_chars)

    cleaned = strip_tails(text)
    sections = extract_sections(cleaned, policy)
    if not sections:
        return _cap_words(cleaned.strip(), policy.max_words)

    blocks: List[str] = []
    for rule in policy.headings:
        if rule.name not in sections:
            continue
        content = sections[rule.name]
        if rule.max_bullets == 0:
            body = _summary_line(content, TRUNCATED_SUMMARY_WORDS)
        else:
            bullets = [_clip_bullet(b, policy.max_bullet_words) for b in bullet_lines(content)][: rule.max_bullets]
            body = "\n".join(b for b in bullets if BULLET_RE.match(b))
            if not body:
                lead = [line for line in content.splitlines() if line.strip()][:1]
                body = _clean_lead(_clip_bullet(lead[0], policy.max_bullet_words)) if lead else ""
        blocks.append(f"**{rule.name}**\n{body or PLACEHOLDER}")
    return _cap_words("\n\n".join(blocks), policy.max_words)


def finalize_answer(
    text: str,
    audit: AuditResult,
    source: str,
    policy: AnswerPolicy,
    state_chunks: List[Chunk],
    situation: Optional[SituationContext] = None,
) -> Tuple[str, AuditResult, str]:
    """Normalize, then hard-truncate, keeping each step only if it strictly reduces format violations."""
    if audit.format_violation_count() == 0:
        return text, audit, source

    normalized = normalize_answer_format(text, policy)
    normalized_audit = audit_answer(normalized, policy, state_chunks, situation)
    if normalized_audit.format_violation_count() < audit.format_violation_count():
        logger.info(
            "ANSWER_NORMALIZED source=%s format_violations=%s->%s",
            source,
            audit.format_violation_count(),
            normalized_audit.format_violation_count(),
        )
        text, audit, source = normalized, normalized_audit, f"{source}_normalized"
    if audit.format_violation_count() == 0:
        return text, audit, source

    truncated = hard_truncate_answer(text, policy)
    truncated_audit = audit_answer(truncated, policy, state_chunks, situation)
    if truncated_audit.format_violation_count() < audit.format_violation_count():
        base = source.split("_")[0]
        logger.info("ANSWER_TRUNCATED source=%s", base)
        return truncated, truncated_audit, f"{base}_truncated"
    return text, audit, source


# --- nodes ---


def route_after_audit(state: Dict[str, Any]) -> str:
    return "repair" if state["audit_result"].should_repair else "finalize"


def repair_node(oracle: GenerationOracle):
    def _run(state: Dict[str, Any]) -> Dict[str, Any]:
        policy = state["policy"]
        retrieval = state["retrieval"]
        situation = state.get("effective_situation")
        original = state["synthesis"]
        original_audit = state["audit_result"]
        state_count = len(retrieval.state_chunks)

        repaired, status = synthesize(
            oracle,
            str(state.get("question") or ""),
            state["planner_output"].issue_map,
            state["record_strength"].tier,
            retrieval.local_chunks,
            retrieval.state_chunks,
            policy,
            user_text=str(state.get("artifact_text") or ""),
            history=list(state.get("effective_history") or []),
            repair_hint=original_audit.repair_hint,
            situation_title=situation.title if situation is not None else None,
        )
        repair_audit = audit_answer(repaired.text, policy, retrieval.state_chunks, situation)
        candidates = [
            build_candidate("original", original.text, original_audit, policy, state_count),
            build_candidate("repair", repaired.text, repair_audit, policy, state_count),
        ]
        chosen = select_better_answer(candidates)
        logger.info(
            "NODE_CALL node=repair request_id=%s selected=%s original_score=%s repair_score=%s "
            "original_complete=%s repair_complete=%s",
            state.get("request_id"),
            chosen.source,
            candidates[0].score,
            candidates[1].score,
            candidates[0].complete,
            candidates[1].complete,
        )
        emit(
            state,
            "repair_outcome",
            {
                "selected": chosen.source,
                "original_score": candidates[0].score,
                "repair_score": candidates[1].score,
                "original_complete": candidates[0].complete,
                "repair_complete": candidates[1].complete,
                "repair_flags": repair_audit.flags(),
            },
        )
        return {
            "repair_ran": True,
            "candidates": candidates,
            "selected_source": chosen.source,
            "final_text": chosen.text,
            "final_audit": chosen.audit,
            "stage_status": set_status(state, "repair", status),
            "stage_notes": push_note(state, node="repair", summary=f"Selected {chosen.source} answer"),
        }

    return _run


def finalize_node():
    def _run(state: Dict[str, Any]) -> Dict[str, Any]:
        policy = state["policy"]
        retrieval = state["retrieval"]
        situation = state.get("effective_situation")
        if state.get("repair_ran"):
            candidates = list(state.get("candidates") or [])
            text, audit, source = state["final_text"], state["final_audit"], state["selected_source"]
        else:
            synthesis, audit = state["synthesis"], state["audit_result"]
            candidates = [build_candidate("original", synthesis.text, audit, policy, len(retrieval.state_chunks))]
            text, source = synthesis.text, "original"

        text, audit, source = finalize_answer(text, audit, source, policy, retrieval.state_chunks, situation)
        update = decide_situation_update(
            str(state.get("question") or ""),
            state.get("situation_context"),
            has_artifact=bool(state.get("artifacts")),
        )
        logger.info(
            "NODE_CALL node=finalize request_id=%s source=%s words=%s chars=%s situation_update=%s",
            state.get("request_id"),
            source,
            word_count(text),
            len(text),
            update.should_update,
        )
        emit(
            state,
            "answer_finalized",
            {
                "source": source,
                "words": word_count(text),
                "chars": len(text),
                "flags": audit.flags(),
                "situation_update": update.should_update,
            },
        )
        return {
            "candidates": candidates,
            "final_text": text,
            "final_audit": audit,
            "selected_source": source,
            "situation_update": update,
            "stage_status": set_status(state, "finalize", StageStatus.OK),
            "stage_notes": push_note(state, node="finalize", summary=f"Final answer from {source}"),
        }

    return _run
