import pytest

from conftest import bullet, build_answer, chunk
from govqa.graph.answer_policy import PROSE_POLICY, SECTIONED_POLICY
from govqa.graph.audit import audit_answer, word_count
from govqa.graph.repair import (
    PLACEHOLDER,
    finalize_answer,
    hard_truncate_answer,
    normalize_answer_format,
    route_after_audit,
    score_answer,
    select_better_answer,
)
from govqa.schemas.answer import AuditResult, ScoredAnswer

STATE = [chunk("Municipal Contracting Handbook", doc_id="s1"), chunk("Procurement Guide", doc_id="s2")]


def _scored(source, score, complete):
    return ScoredAnswer(source=source, text=source, score=score, complete=complete, word_count=200, audit=AuditResult())


def test_score_answer():
    assert score_answer(build_answer(), SECTIONED_POLICY, 2) == (85, True, 297)
    assert score_answer(build_answer(law_citations=()), SECTIONED_POLICY, 2) == (63, True, 297)
    assert score_answer(build_answer(), SECTIONED_POLICY, 0) == (65, True, 297)

    score, complete, words = score_answer(build_answer(bullets=1, summary_words=10), SECTIONED_POLICY, 2)
    assert complete is False
    assert words < SECTIONED_POLICY.min_complete_words
    assert score == 50 - 2 - 30


@pytest.mark.parametrize(
    "original, repair, expected",
    [
        ((60, False), (40, True), "repair"),
        ((40, True), (90, False), "original"),
        ((70, True), (70, True), "original"),
        ((70, True), (71, True), "repair"),
        ((30, False), (20, False), "original"),
    ],
)
def test_select_better_answer(original, repair, expected):
    chosen = select_better_answer([_scored("original", *original), _scored("repair", *repair)])
    assert chosen.source == expected


def test_select_with_single_candidate():
    assert select_better_answer([_scored("original", 10, False)]).source == "original"


def test_normalize_reduces_violations_and_is_idempotent():
    messy = build_answer(bullets=6, extra="Next steps: consult counsel.")
    before = audit_answer(messy, SECTIONED_POLICY, STATE)
    once = normalize_answer_format(messy, SECTIONED_POLICY)
    after = audit_answer(once, SECTIONED_POLICY, STATE)

    assert after.format_violation_count() < before.format_violation_count()
    assert after.format_violation_count() == 0
    assert "consult counsel" not in once.lower()
    assert normalize_answer_format(once, SECTIONED_POLICY) == once


def test_normalize_fills_missing_sections():
    text = "**Bottom line**\nThe contract was renewed [L1].\n\n**What happened**\n" + bullet(10, "[L1]")
    out = normalize_answer_format(text, SECTIONED_POLICY)

    for name in SECTIONED_POLICY.heading_names:
        assert f"**{name}**" in out
    assert f"- {PLACEHOLDER}" in out
    assert normalize_answer_format(out, SECTIONED_POLICY) == out


def test_normalize_prose_caps_bullets():
    text = "The board approved it [S1].\n" + "\n".join(bullet(30, "[L1]") for _ in range(9))
    out = normalize_answer_format(text, PROSE_POLICY)

    assert out.count("\n- ") == PROSE_POLICY.max_bullets
    assert len(out) <= PROSE_POLICY.max_chars
    assert normalize_answer_format(out, PROSE_POLICY) == out


def test_hard_truncate_respects_limits_without_markers():
    text = build_answer(bullets=7, bullet_words=30, summary_words=75)
    out = hard_truncate_answer(text, SECTIONED_POLICY)

    assert "..." not in out and "…" not in out
    assert word_count(out) <= SECTIONED_POLICY.max_words
    summary = out.split("\n\n")[0].split("\n", 1)[1]
    assert word_count(summary) <= 50
    for line in out.splitlines():
        if line.startswith("- "):
            assert word_count(line) <= SECTIONED_POLICY.max_bullet_words
    assert "[L1]" in out
    assert audit_answer(out, SECTIONED_POLICY, STATE).format_violation_count() == 0


def test_finalize_keeps_clean_answer():
    text = build_answer()
    audit = audit_answer(text, SECTIONED_POLICY, STATE)
    assert finalize_answer(text, audit, "repair", SECTIONED_POLICY, STATE) == (text, audit, "repair")


def test_finalize_normalizes_when_it_helps():
    text = build_answer(bullets=6)
    audit = audit_answer(text, SECTIONED_POLICY, STATE)
    out, out_audit, source = finalize_answer(text, audit, "original", SECTIONED_POLICY, STATE)

    assert source == "original_normalized"
    assert out_audit.format_violation_count() == 0
    assert out != text


def test_route_after_audit():
    assert route_after_audit({"audit_result": AuditResult(should_repair=True)}) == "repair"
    assert route_after_audit({"audit_result": AuditResult()}) == "finalize"
