# graph/audit.py
from __future__ import annotations
import re
from typing import Any, Dict, List, Optional, Tuple

from govqa.core.logging import get_logger
from govqa.graph.drift import detect_answer_drift
from govqa.graph.stage_log import emit, push_note, set_status
from govqa.schemas.answer import AnswerPolicy, AuditResult, AuditViolation, FormatStats, StageStatus
from govqa.schemas.evidence import Chunk
from govqa.schemas.situation import SituationContext

logger = get_logger("govqa.graph.audit")

BULLET_RE = re.compile(r"^\s*[-•*]\s+")
STATE_CITATION_RE = re.compile(r"\[S\d+\]")
RSA_REFERENCE_RE = re.compile(r"\bRSA\s+(\d+[-:]?[A-Z]?(?:[-:]\d+)?)", re.I)

# Tails never span a line break.
LLM_TAIL_PATTERNS = (
    re.compile(r"\bnext[^\S\n]+steps?\b", re.I),
    re.compile(r"\bconsult[^\S\n]+counsel\b", re.I),
    re.compile(r"\byou[^\S\n]+may[^\S\n]+wish[^\S\n]+to\b", re.I),
    re.compile(r"\bi[^\S\n]+recommend\b", re.I),
    re.compile(r"\bwhat[^\S\n]+to[^\S\n]+pull[^\S\n]+next\b", re.I),
    re.compile(r"\bwhat[^\S\n]+would[^\S\n]+clarify\b", re.I),
    re.compile(r"\bfurther[^\S\n]+research\b", re.I),
    re.compile(r"\bseek[^\S\n]+legal[^\S\n]+advice\b", re.I),
    re.compile(r"\bconsider[^\S\n]+consulting\b", re.I),
)

ABSOLUTE_LEGAL_PATTERNS = (
    re.compile(r"\bis\s+illegal\b", re.I),
    re.compile(r"\bwill\s+be\s+liable\b", re.I),
    re.compile(r"\bmust\s+result\s+in\b", re.I),
    re.compile(r"\bguaranteed\s+to\b", re.I),
    re.compile(r"\bwill\s+definitely\b", re.I),
    re.compile(r"\bis\s+certainly\s+illegal\b", re.I),
    re.compile(r"\bautomatically\s+(?:liable|responsible)\b", re.I),
)

PROCEDURE_CLAIMS = (
    re.compile(r"\bPublic\s+Integrity\s+Unit\s+(?:process|procedure|requires?)\b", re.I),
    re.compile(r"\bDOJ\s+(?:process|procedure|requires?)\b", re.I),
    re.compile(r"\bmust\s+file\s+(?:within|by)\s+\d+\s+days?\b", re.I),
    re.compile(r"\bstatute\s+of\s+limitations?\s+(?:is|requires?)\s+\d+", re.I),
)

REPAIR_HINTS = {
    "uncited_rsa": "Remove specific RSA section numbers that are not in the provided state documents, or speak generally about NH law.",
    "uncited_procedure": "Remove specific procedure/process claims that are not supported by cited sources.",
    "absolute_legal_claim": "Qualify absolute legal claims (is illegal, will be liable) with hedged language.",
    "off_topic_drift": "Stay focused on the current situation. Do not substitute or heavily reference unrelated cases.",
    "llm_tail": 'Remove "next steps", "consult counsel", "you may wish to", and similar phrases.',
}


def _heading_patterns(name: str) -> Tuple[re.Pattern, ...]:
    h = re.escape(name)
    return (
        re.compile(rf"^#+\s*(?:\*\*)?{h}:?(?:\*\*)?[:\s]*", re.I | re.M),
        re.compile(rf"\d+\.\s*\*\*{h}:?\*\*[:\s]*", re.I),
        re.compile(rf"\*\*{h}:?\*\*[:\s]*", re.I),
        re.compile(rf"\d+\.\s*{h}[:\s]+", re.I),
        re.compile(rf"^{h}[:\s]+", re.I | re.M),
    )


def locate_headings(text: str, policy: AnswerPolicy) -> List[Tuple[str, int, int]]:
    """(heading, start, end) for each policy heading found, sorted by position."""
    found = []
    for name in policy.heading_names:
        for pattern in _heading_patterns(name):
            m = pattern.search(text)
            if m:
                found.append((name, m.start(), m.end()))
                break
    return sorted(found, key=lambda f: f[1])


def extract_sections(text: str, policy: AnswerPolicy) -> Dict[str, str]:
    found = locate_headings(text, policy)
    sections: Dict[str, str] = {}
    for idx, (name, _start, end) in enumerate(found):
        stop = found[idx + 1][1] if idx + 1 < len(found) else len(text)
        sections[name] = text[end:stop].strip() if stop > end else ""
    return sections


def bullet_lines(content: str) -> List[str]:
    return [line for line in content.splitlines() if BULLET_RE.match(line)]


def find_tails(text: str) -> List[str]:
    found = []
    for p in LLM_TAIL_PATTERNS:
        m = p.search(text)
        if m:
            found.append(m.group(0))
    return found


def strip_tails(text: str) -> str:
    """Remove tail phrases until none remain."""
    prev = None
    while prev != text:
        prev = text
        for p in LLM_TAIL_PATTERNS:
            text = p.sub("", text)
    return text


def word_count(text: str) -> int:
    return len(text.split())


def _bullet_checks(bullets: List[str], limit: int, where: str, policy: AnswerPolicy) -> List[AuditViolation]:
    out: List[AuditViolation] = []
    if len(bullets) > limit:
        out.append(
            AuditViolation(
                type="format_violation",
                severity="warning",
                evidence=f'"{where}" has {len(bullets)} bullets (max {limit})',
            )
        )
    for b in bullets:
        if word_count(b) > policy.max_bullet_words:
            out.append(
                AuditViolation(
                    type="format_violation",
                    severity="warning",
                    evidence=f"Bullet too long ({word_count(b)} words): {b.strip()[:60]}",
                )
            )
    return out


def validate_answer_format(text: str, policy: AnswerPolicy, state_count: int) -> Tuple[List[AuditViolation], FormatStats]:
    """Structural checks only: length, headings, bullets, law-section citations, tails."""
    violations: List[AuditViolation] = []
    words = word_count(text)
    stats = FormatStats(word_count=words, char_count=len(text))

    if words > policy.max_words:
        violations.append(
            AuditViolation(type="format_violation", severity="error", evidence=f"Word count {words} exceeds {policy.max_words}")
        )
    if policy.max_chars is not None and len(text) > policy.max_chars:
        violations.append(
            AuditViolation(
                type="format_violation", severity="error", evidence=f"Length {len(text)} chars exceeds {policy.max_chars}"
            )
        )

    if policy.headings:
        found = locate_headings(text, policy)
        sections = extract_sections(text, policy)
        stats.headings_found = [f[0] for f in found]
        stats.missing_headings = [h for h in policy.heading_names if h not in sections]
        if stats.missing_headings:
            violations.append(
                AuditViolation(
                    type="format_violation",
                    severity="warning",
                    evidence=f"Missing headings: {', '.join(stats.missing_headings)}",
                )
            )
        expected = [h for h in policy.heading_names if h in sections]
        if stats.headings_found != expected:
            violations.append(
                AuditViolation(
                    type="format_violation",
                    severity="warning",
                    evidence=f"Headings out of order: {' > '.join(stats.headings_found)}",
                )
            )

        for name, content in sections.items():
            bullets = bullet_lines(content)
            stats.bullet_counts[name] = len(bullets)
            violations += _bullet_checks(bullets, policy.bullet_limit(name), name, policy)
            if policy.user_citation_section and name != policy.user_citation_section and "[USER]" in content:
                violations.append(
                    AuditViolation(
                        type="format_violation",
                        severity="warning",
                        evidence=f'[USER] citation outside "{policy.user_citation_section}" (in "{name}")',
                    )
                )

        if policy.law_section:
            law = sections.get(policy.law_section, "")
            stats.law_section_state_citations = len(STATE_CITATION_RE.findall(law))
            if state_count > 0 and stats.law_section_state_citations < policy.min_state_citations_in_law_section:
                violations.append(
                    AuditViolation(
                        type="missing_state_citation",
                        severity="error",
                        evidence=(
                            f'"{policy.law_section}" has {stats.law_section_state_citations} [Sx] citations, '
                            f"needs {policy.min_state_citations_in_law_section}"
                        ),
                    )
                )
    else:
        bullets = bullet_lines(text)
        stats.bullet_counts["body"] = len(bullets)
        violations += _bullet_checks(bullets, policy.max_bullets or 0, "body", policy)
        stats.law_section_state_citations = len(STATE_CITATION_RE.findall(text))

    tails = find_tails(text)
    if tails:
        violations.append(
            AuditViolation(type="llm_tail", severity="warning", evidence=f"Found disallowed phrases: {', '.join(tails)}")
        )
    return violations, stats


def _context(text: str, start: int, end: int, before: int, after: int) -> str:
    return text[max(0, start - before): end + after]


def uncited_rsa_violations(text: str, state_text: str) -> List[AuditViolation]:
    out: List[AuditViolation] = []
    seen: List[str] = []
    lowered_state = state_text.lower()
    for m in RSA_REFERENCE_RE.finditer(text):
        number = m.group(1)
        if number in seen:
            continue
        if STATE_CITATION_RE.search(_context(text, m.start(), m.end(), 20, 30)):
            continue
        if number.lower() in lowered_state:
            continue
        seen.append(number)
        out.append(AuditViolation(type="uncited_rsa", severity="error", evidence=f"RSA {number} cited without a state source"))
    return out


def audit_answer(
    text: str,
    policy: AnswerPolicy,
    state_chunks: List[Chunk],
    situation: Optional[SituationContext] = None,
) -> AuditResult:
    """Full audit of one answer. Error-severity violations ask for a repair."""
    violations, stats = validate_answer_format(text, policy, len(state_chunks))
    state_text = " ".join(f"{c.title} {c.content}" for c in state_chunks)

    violations += uncited_rsa_violations(text, state_text)

    for p in ABSOLUTE_LEGAL_PATTERNS:
        m = p.search(text)
        if m:
            violations.append(
                AuditViolation(
                    type="absolute_legal_claim",
                    severity="warning",
                    evidence=f'Absolute claim found: "{_context(text, m.start(), m.end(), 30, 30).strip()}"',
                )
            )

    for p in PROCEDURE_CLAIMS:
        m = p.search(text)
        if not m:
            continue
        near = _context(text, m.start(), m.end(), 10, 30)
        keyword = m.group(0).split()[0].lower()
        if not STATE_CITATION_RE.search(near) and keyword not in state_text.lower():
            violations.append(
                AuditViolation(type="uncited_procedure", severity="error", evidence=f'Unsupported procedure claim: "{m.group(0)}"')
            )

    drift = detect_answer_drift(text, situation)
    if drift.has_drift:
        violations.append(
            AuditViolation(
                type="off_topic_drift",
                severity="warning",
                evidence=f"{drift.severity} drift (coverage {drift.situation_coverage:.2f}): {', '.join(drift.drifted_to) or 'situation not covered'}",
            )
        )

    return AuditResult(
        violations=violations,
        passed=not violations,
        should_repair=any(v.severity == "error" for v in violations),
        repair_hint=build_repair_hint(violations, policy),
        stats=stats,
    )


def build_repair_hint(violations: List[AuditViolation], policy: AnswerPolicy) -> str:
    hints: List[str] = []
    for v in violations:
        if v.type == "format_violation":
            if policy.headings:
                limits = "/".join(str(h.max_bullets) for h in policy.headings if h.max_bullets)
                hint = (
                    f"Shorten answer to {policy.max_words} words max. Reduce bullets to section limits ({limits}). "
                    f"Keep all {len(policy.headings)} required headings in order."
                )
            else:
                hint = f"Shorten answer to {policy.max_chars or policy.max_words} characters max and at most {policy.max_bullets} bullets."
        elif v.type == "missing_state_citation":
            hint = (
                f"Add at least {policy.min_state_citations_in_law_section} [Sx] citations to "
                f'"{policy.law_section}" section using provided state documents.'
            )
        else:
            hint = REPAIR_HINTS[v.type]
        if hint not in hints:
            hints.append(hint)
    return " ".join(hints)


def audit_node():
    def _run(state: Dict[str, Any]) -> Dict[str, Any]:
        policy = state["policy"]
        result = audit_answer(
            state["synthesis"].text,
            policy,
            state["retrieval"].state_chunks,
            state.get("effective_situation"),
        )
        logger.info(
            "NODE_CALL node=audit request_id=%s passed=%s should_repair=%s flags=%s",
            state.get("request_id"),
            result.passed,
            result.should_repair,
            ",".join(result.flags()),
        )
        for v in result.violations:
            if v.severity == "warning":
                logger.warning("AUDIT_WARNING type=%s evidence=%s", v.type, v.evidence[:200])
        emit(
            state,
            "audit_result",
            {"passed": result.passed, "should_repair": result.should_repair, "flags": result.flags()},
        )
        return {
            "audit_result": result,
            "stage_status": set_status(state, "audit", StageStatus.ESCALATE if result.should_repair else StageStatus.OK),
            "stage_notes": push_note(
                state, node="audit", summary="Audit passed" if result.passed else f"{len(result.violations)} violations"
            ),
        }

    return _run
