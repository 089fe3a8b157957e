import math

import pytest

from conftest import FakeRetrievalOracle, chunk, refs
from govqa.core.errors import QuotaExhaustedError
from govqa.graph.heuristics import fallback_plan
from govqa.graph.lanes_node import retrieve_two_lanes, search_lane
from govqa.graph.retrieval_quality import (
    RetrievalFocus,
    build_local_query,
    build_state_query,
    classify_authority,
    dedupe_chunks,
    detect_retrieval_drift,
    evaluate_quality,
    is_authoritative,
    label_selection,
    merge_and_rank,
    state_lane_width,
)
from govqa.schemas.answer import StageStatus
from govqa.schemas.issue import LanePlan, MustInclude
from govqa.schemas.situation import SituationContext


def test_local_query_carries_town_and_boards():
    query = build_local_query(["boardwalk contract"], "Hollis", ["select board"])
    assert query.startswith("boardwalk contract (Town of Hollis) [Boards: select board]")
    assert "[Document types: minutes" in query


def test_state_query_is_anchored():
    assert "New Hampshire RSA" in build_state_query(["contract bidding"])


def test_state_lane_widens_for_legal_questions():
    assert state_lane_width(8, 5, 0.7) == (12, 7)
    assert state_lane_width(12, 7, 0.9) == (14, 8)
    assert state_lane_width(8, 5, 0.2) == (8, 5)


def test_dedupe_keeps_higher_scored_title():
    chunks = [chunk("Warrant 2024", score=0.4), chunk("warrant  2024!", score=0.9), chunk("Budget", score=0.1)]
    out = dedupe_chunks(chunks)
    assert [c.score for c in out] == [0.9, 0.1]


def test_merge_guarantees_state_for_legal_questions(config):
    local = [chunk(f"Minutes {i}", lane="local", score=1.0) for i in range(20)]
    state = [chunk(f"Guide {i}", score=0.1) for i in range(5)]
    merged = merge_and_rank(local, state, "Is the vote valid?", None, 0.7, 20, 5, config)

    assert len(merged) == config.merged_cap
    assert sum(1 for c in merged if c.lane == "state") == 3
    assert sum(1 for c in merged if c.lane == "local") == 12
    assert merged[0].lane == "state"


def test_merge_prefers_situation_matches(config):
    situation = SituationContext(title="Constitution Park boardwalk", entities=["Constitution Park"])
    local = [
        chunk("Library roof", lane="local", score=1.0),
        chunk("Constitution Park boardwalk bids", lane="local", score=0.5),
    ]
    merged = merge_and_rank(local, [], "What about the boardwalk?", situation, 0.2, 10, 5, config)
    assert merged[0].title == "Constitution Park boardwalk bids"


def test_merge_without_situation_respects_cap(config):
    local = [chunk(f"Minutes {i}", lane="local") for i in range(30)]
    merged = merge_and_rank(local, [], "question", None, 0.2, 30, 5, config)
    assert len(merged) == config.merged_cap


def test_label_selection_caps_lanes():
    merged = [chunk("RSA 32:5", score=1.0), chunk("Minutes", lane="local"), chunk("Handbook"), chunk("Other")]
    local, state, labelled = label_selection(merged, 5, 2)

    assert [c.label for c in state] == ["[S1]", "[S2]"]
    assert [c.label for c in local] == ["[L1]"]
    assert len(labelled) == 3
    assert state[0].authority == "rsa"
    assert local[0].authority == "minutes"


def test_authority_classification():
    assert classify_authority("NHMA Town Officers Guide", "", "state") == "nhma"
    assert classify_authority("Procurement guide", "", "state") == "official"
    assert classify_authority("Local News", "", "local") == "news"
    assert is_authoritative([chunk("Attorney General memo")])
    assert not is_authoritative([chunk("Handbook")])


def test_quality_escalates_on_empty_results(config):
    report = evaluate_quality([], RetrievalFocus(), "question", config)
    assert report.should_escalate is True
    assert report.escalation_reason.startswith("Low confidence")


def test_quality_detects_drift(config):
    focus = RetrievalFocus(entities=["Constitution Park"])
    chunks = [chunk(f"Smith property appeal {i}", content="Smith property appeal hearing") for i in range(4)]
    drift, drifted = detect_retrieval_drift(chunks, focus)
    assert drift is True
    assert drifted == ["smith"]


def test_search_lane_degrades_on_error():
    oracle = FakeRetrievalOracle(error=RuntimeError("index offline"))
    assert search_lane(oracle, "local", "q", "local", 5) == []


def test_search_lane_propagates_quota():
    oracle = FakeRetrievalOracle(error=RuntimeError("429 Too Many Requests: quota exceeded"))
    with pytest.raises(QuotaExhaustedError) as exc:
        search_lane(oracle, "state", "q", "state", 5)
    assert exc.value.stage == "retrieve_state"


def test_search_lane_builds_scored_chunks():
    oracle = FakeRetrievalOracle({"local": refs(["A", "B", "C"], ["a", "b", "c"])})
    chunks = search_lane(oracle, "local", "q", "local", 2)
    assert [c.title for c in chunks] == ["A", "B"]
    assert chunks[0].score > chunks[1].score
    assert chunks[1].document_ids == ["b"]


async def test_empty_retrieval_reports_no_archive(config):
    oracle = FakeRetrievalOracle()
    question = "What did the budget committee decide on the warrant article?"
    result, status = await retrieve_two_lanes(oracle, question, fallback_plan(question, config), config)

    assert result.archive_chunks_found is False
    assert result.local_chunks == [] and result.state_chunks == []
    assert result.used_second_pass is True
    assert status == StageStatus.ESCALATE
    assert len(oracle.calls) == 4
    assert {c["k"] for c in oracle.calls[2:]} == {config.escalation_local_k, config.escalation_state_k}


async def test_strong_retrieval_runs_one_pass(config):
    oracle = FakeRetrievalOracle(
        {
            "local": refs(["Minutes A", "Minutes B", "Minutes C"], ["a", "b", "c"]),
            "state": refs(["RSA 32:5", "Handbook"], ["s1", "s2"]),
        }
    )
    question = "How should the town handle the boardwalk maintenance contract?"
    result, status = await retrieve_two_lanes(oracle, question, fallback_plan(question, config), config)

    assert status == StageStatus.OK
    assert result.used_second_pass is False
    assert [c.label for c in result.state_chunks] == ["[S1]", "[S2]"]
    assert result.authoritative_state_present is True
    assert result.archive_chunks_found is True


def test_merge_honors_plan_state_floor(config):
    local = [chunk(f"Minutes {i}", lane="local", score=1.0) for i in range(20)]
    state = [chunk(f"Guide {i}", score=0.1) for i in range(5)]

    without_floor = merge_and_rank(local, state, "Who plows the roads?", None, 0.2, 20, 5, config)
    with_floor = merge_and_rank(local, state, "Who plows the roads?", None, 0.2, 20, 5, config, min_state=4)

    assert sum(1 for c in without_floor if c.lane == "state") == 0
    assert sum(1 for c in with_floor if c.lane == "state") == 4
    assert len(with_floor) == config.merged_cap


def test_merge_honors_plan_local_floor(config):
    local = [chunk(f"Minutes {i}", lane="local", score=0.05) for i in range(5)]
    state = [chunk(f"Guide {i}", score=1.0) for i in range(20)]
    merged = merge_and_rank(local, state, "Is the vote valid?", None, 0.7, 5, 20, config, min_state=1, min_local=2)

    assert sum(1 for c in merged if c.lane == "local") == 2
    assert len(merged) == config.merged_cap


def test_merge_reserves_slots_for_on_topic_chunks(config):
    situation = SituationContext(title="Constitution Park boardwalk", entities=["Constitution Park"])
    off_topic = [chunk(f"Library roof {i}", lane="local", content="Library roof repairs.", score=1.0) for i in range(20)]
    on_topic = [
        chunk(f"Constitution Park boardwalk bid {i}", lane="local", content="Bids for the Constitution Park boardwalk.", score=0.1)
        for i in range(8)
    ]
    merged = merge_and_rank(off_topic + on_topic, [], "What about the boardwalk?", situation, 0.2, 30, 5, config)

    reserved = math.ceil(config.merged_cap * config.on_topic_fraction)
    assert len(merged) == config.merged_cap
    assert sum(1 for c in merged if "Constitution Park" in c.title) == reserved
    assert all("Constitution Park" in c.title for c in merged[:reserved])


async def test_retrieval_keeps_plan_minimum_state_chunks(config):
    local_titles = [f"Minutes {i}" for i in range(20)]
    state_titles = [f"Guide {i}" for i in range(5)]
    oracle = FakeRetrievalOracle(
        {"local": refs(local_titles, local_titles), "state": refs(state_titles, state_titles)}
    )
    question = "Who maintains the boardwalk?"
    planner = fallback_plan(question, config)
    plan = planner.plan.model_copy(
        update={
            "local": LanePlan(queries=planner.plan.local.queries, k=20, cap=15),
            "must_include": MustInclude(min_state=4, min_local_facts=2),
        }
    )
    planner = planner.model_copy(
        update={"plan": plan, "issue_map": planner.issue_map.model_copy(update={"legal_salience": 0.2})}
    )
    result, _ = await retrieve_two_lanes(oracle, question, planner, config)

    assert len(result.state_chunks) >= 4
    assert len(result.local_chunks) >= 2
