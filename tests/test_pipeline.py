from __future__ import annotations

import pytest

from conftest import FakeGenerationOracle, FakeRetrievalOracle, build_answer, planner_json, refs
from govqa.core.config import PipelineConfig
from govqa.core.errors import QuotaExhaustedError
from govqa.graph.runner import answer_question
from govqa.session.store import InMemorySessionStore
from govqa.schemas.situation import SituationContext
from govqa.stream.emitter import EventCollector

QUESTION = "How should the town handle the boardwalk maintenance contract?"


def _two_lane_retrieval() -> FakeRetrievalOracle:
    local = refs(
        [
            "Selectboard Minutes March 2024",
            "Selectboard Minutes April 2024",
            "Town Report 2023",
            "Warrant 2024",
            "Recreation Committee Minutes",
        ],
        ["loc-1", "loc-2", "loc-3", "loc-4", "loc-5"],
    )
    state = refs(
        [
            "RSA 32:5 Budget Procedures",
            "RSA 32:5 Commentary",
            "Municipal Contracting Handbook",
            "Municipal Contracting Handbook Appendix",
        ],
        ["state-a", "state-a", "state-b", "state-b"],
    )
    return FakeRetrievalOracle({"local": local, "state": state})


async def test_missing_law_citations_trigger_one_repair_and_repair_is_selected():
    generation = FakeGenerationOracle([planner_json(), build_answer(law_citations=()), build_answer()])
    retrieval = _two_lane_retrieval()
    collector = EventCollector()

    result = await answer_question(
        QUESTION,
        "s1",
        generation=generation,
        retrieval=retrieval,
        config=PipelineConfig(),
        send=collector,
    )

    assert result.record_strength.tier == "A"
    assert result.record_strength.state_count == 4
    assert result.record_strength.local_count == 5
    assert result.record_strength.distinct_state_docs == 2
    assert len(generation.calls) == 3
    assert "**REPAIR ATTEMPT**" in generation.calls[2]["system"]
    assert result.debug.repair_ran is True
    assert result.debug.selected_answer_source == "repair"
    assert result.debug.repair_score > result.debug.original_score
    assert result.debug.original_complete and result.debug.repair_complete
    assert "missing_state_citation:error" in result.debug.initial_audit_flags
    assert "missing_state_citation:error" not in result.debug.audit_flags
    assert result.answer == build_answer()
    assert result.doc_source_type == "mixed"
    assert "RSA 32:5 Budget Procedures" in result.source_documents
    assert len(retrieval.calls) == 2
    assert collector.types()[0] == "run_start"
    assert collector.types()[-1] == "run_end"
    assert "repair_outcome" in collector.types()


async def test_clean_answer_skips_repair():
    generation = FakeGenerationOracle([planner_json(), build_answer()])

    result = await answer_question(
        QUESTION, "s1", generation=generation, retrieval=_two_lane_retrieval(), config=PipelineConfig()
    )

    assert len(generation.calls) == 2
    assert result.debug.repair_ran is False
    assert result.debug.selected_answer_source == "original"
    assert result.debug.repair_score is None
    assert result.debug.final_word_count == len(build_answer().split())


async def test_empty_retrieval_with_gated_out_situation_states_limitation():
    store = InMemorySessionStore()
    store.put_situation_context(
        "s2",
        SituationContext(title="Constitution Park boardwalk vote", entities=["Constitution Park", "Select Board"]),
    )
    generation = FakeGenerationOracle(["not json at all", ""])
    retrieval = FakeRetrievalOracle()

    result = await answer_question(
        "What did the budget committee decide on the warrant article?",
        "s2",
        generation=generation,
        retrieval=retrieval,
        config=PipelineConfig(),
        store=store,
        history=[{"role": "user", "content": "Tell me about the Constitution Park boardwalk vote."}],
    )

    assert result.debug.gate is not None
    assert result.debug.gate.use_situation_context is False
    assert result.record_strength.tier == "C"
    assert result.doc_source_type == "none"
    assert result.source_documents == []
    assert result.debug.used_second_pass is True
    assert len(retrieval.calls) == 4

    synth_prompt = generation.calls[1]["user"]
    assert "=== NO ARCHIVE DOCUMENTS FOUND ===" in synth_prompt
    assert "=== LOCAL DOCUMENTS ===" not in synth_prompt
    assert "=== RECENT CONVERSATION ===" not in synth_prompt
    assert "do not provide sufficient detail" in result.answer
    assert "Constitution Park" not in result.answer
    assert result.debug.stage_status["plan"].value == "recovered_with_heuristic"
    assert result.debug.stage_status["synthesize"].value == "recovered_with_heuristic"
    assert result.debug.issue_map_summary["used_fallback"] is True


async def test_quota_exhaustion_propagates_with_error_event():
    generation = FakeGenerationOracle([QuotaExhaustedError("quota exceeded")])
    collector = EventCollector()

    with pytest.raises(QuotaExhaustedError):
        await answer_question(
            QUESTION,
            "s3",
            generation=generation,
            retrieval=_two_lane_retrieval(),
            config=PipelineConfig(),
            send=collector,
        )

    assert collector.types()[-2:] == ["error", "run_end"]
    assert collector.events[-1]["data"] == {"ok": False}


async def test_provider_quota_error_during_synthesis_is_typed():
    generation = FakeGenerationOracle([planner_json(), RuntimeError("429 RESOURCE_EXHAUSTED: try later")])

    with pytest.raises(QuotaExhaustedError) as exc:
        await answer_question(
            QUESTION, "s4", generation=generation, retrieval=_two_lane_retrieval(), config=PipelineConfig()
        )

    assert exc.value.stage == "synthesize"


async def test_long_paste_becomes_user_text():
    paste = "Selectboard Minutes\n\n" + ("The board discussed the boardwalk maintenance contract at length. " * 20)
    generation = FakeGenerationOracle([planner_json(), build_answer()])

    await answer_question(
        paste, "s5", generation=generation, retrieval=_two_lane_retrieval(), config=PipelineConfig()
    )

    assert "=== PASTE: Selectboard Minutes ===" in generation.calls[0]["user"]
    assert "=== USER-PROVIDED TEXT [USER] ===" in generation.calls[1]["user"]
