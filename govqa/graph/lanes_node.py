# graph/lanes_node.py
from __future__ import annotations
import asyncio
from typing import Any, Dict, List, Optional, Tuple

from govqa.core.config import PipelineConfig
from govqa.core.errors import QuotaExhaustedError, is_quota_error
from govqa.core.logging import get_logger
from govqa.graph.retrieval_quality import (
    average_situation_alignment,
    build_focus,
    build_local_query,
    build_state_query,
    evaluate_quality,
    expanded_local_query,
    expanded_state_query,
    is_authoritative,
    label_selection,
    legal_topic_coverage,
    merge_and_rank,
    state_lane_width,
    topic_alignment,
)
from govqa.graph.stage_log import emit, push_note, set_status
from govqa.schemas.answer import StageStatus
from govqa.schemas.evidence import Chunk, RetrievalDebug, RetrievalResult
from govqa.schemas.issue import PlannerOutput
from govqa.schemas.situation import SituationContext
from govqa.tools.rag.retriever import RetrievalOracle

logger = get_logger("govqa.graph.lanes")


def search_lane(oracle: RetrievalOracle, lane: str, query: str, corpus: str, k: int) -> List[Chunk]:
    """One oracle call for one lane. Non-quota failures degrade to an empty lane."""
    try:
        result = oracle.search(query, corpus, k)
    except QuotaExhaustedError:
        raise
    except Exception as e:
        if is_quota_error(e):
            raise QuotaExhaustedError(str(e), stage=f"retrieve_{lane}") from e
        logger.exception("LANE_ERROR lane=%s corpus=%s error=%s", lane, corpus, type(e).__name__)
        return []

    chunks: List[Chunk] = []
    for idx, ref in enumerate(result.document_references[:k]):
        chunks.append(
            Chunk(
                lane=lane,
                title=ref.title,
                content=ref.snippet or result.raw_text,
                score=1.0 - idx * 0.05,
                document_ids=[ref.doc_id],
            )
        )
    logger.info("LANE_RESULT lane=%s corpus=%s k=%s chunks=%s", lane, corpus, k, len(chunks))
    return chunks


async def fan_out(
    oracle: RetrievalOracle,
    local_query: str,
    state_query: str,
    local_k: int,
    state_k: int,
    config: PipelineConfig,
) -> Tuple[List[Chunk], List[Chunk]]:
    local, state = await asyncio.gather(
        asyncio.to_thread(search_lane, oracle, "local", local_query, config.local_corpus, local_k),
        asyncio.to_thread(search_lane, oracle, "state", state_query, config.state_corpus, state_k),
    )
    return local, state


async def retrieve_two_lanes(
    oracle: RetrievalOracle,
    question: str,
    planner: PlannerOutput,
    config: PipelineConfig,
    situation: Optional[SituationContext] = None,
    town: Optional[str] = None,
    artifact_text: str = "",
) -> Tuple[RetrievalResult, StageStatus]:
    issue = planner.issue_map
    plan = planner.plan
    town = town or issue.town
    salience = issue.legal_salience
    focus = build_focus(question, issue, situation, artifact_text)

    local_k, local_cap = plan.local.k, plan.local.cap
    state_k, state_cap = state_lane_width(plan.state.k, plan.state.cap, salience)
    floors = plan.must_include

    local_query = build_local_query(plan.local.queries, town, focus.boards)
    state_query = build_state_query(plan.state.queries)
    local, state = await fan_out(oracle, local_query, state_query, local_k, state_k, config)

    merged = merge_and_rank(
        local, state, question, situation, salience, local_cap, state_cap, config, floors.min_state, floors.min_local_facts
    )
    quality = evaluate_quality(merged, focus, question, config)
    debug = RetrievalDebug(local_query=local_query, state_query=state_query)
    status = StageStatus.OK
    used_second_pass = False

    if quality.should_escalate:
        logger.info("RETRIEVAL_ESCALATE reason=%s", quality.escalation_reason)
        status = StageStatus.ESCALATE
        debug.expanded_local_query = expanded_local_query(question, focus, town)
        debug.expanded_state_query = expanded_state_query(question, focus)
        local2, state2 = await fan_out(
            oracle,
            debug.expanded_local_query,
            debug.expanded_state_query,
            config.escalation_local_k,
            config.escalation_state_k,
            config,
        )
        local, state = local + local2, state + state2
        merged = merge_and_rank(
            local, state, question, situation, salience, local_cap, state_cap, config, floors.min_state, floors.min_local_facts
        )
        used_second_pass = True

    sel_local, sel_state, labelled = label_selection(merged, local_cap, state_cap)
    selected = sel_local + sel_state
    if situation is not None:
        alignment = average_situation_alignment(selected, situation)
    else:
        alignment = topic_alignment(selected, focus)

    debug.local_retrieved = len(local)
    debug.state_retrieved = len(state)
    debug.merged_total = len(merged)

    result = RetrievalResult(
        local_chunks=sel_local,
        state_chunks=sel_state,
        merged=labelled,
        archive_chunks_found=bool(selected),
        used_second_pass=used_second_pass,
        retrieval_confidence=quality.confidence,
        topic_alignment=quality.topic_alignment,
        drift_detected=quality.drift_detected,
        drift_entities=quality.drift_entities,
        escalation_reason=quality.escalation_reason,
        situation_alignment=alignment,
        legal_topic_coverage=legal_topic_coverage(sel_state, focus.legal_topics),
        authoritative_state_present=is_authoritative(sel_state),
        debug=debug,
    )
    return result, status


def lanes_node(config: PipelineConfig, oracle: RetrievalOracle):
    async def _run(state: Dict[str, Any]) -> Dict[str, Any]:
        logger.info(
            "NODE_CALL node=retrieve request_id=%s session_id=%s",
            state.get("request_id"),
            state.get("session_id"),
        )
        result, status = await retrieve_two_lanes(
            oracle,
            str(state.get("question") or ""),
            state["planner_output"],
            config,
            situation=state.get("effective_situation"),
            town=state.get("town") or config.town,
            artifact_text=str(state.get("artifact_text") or ""),
        )
        logger.info(
            "NODE_DONE node=retrieve request_id=%s local=%s state=%s second_pass=%s confidence=%.2f alignment=%.2f",
            state.get("request_id"),
            len(result.local_chunks),
            len(result.state_chunks),
            result.used_second_pass,
            result.retrieval_confidence,
            result.situation_alignment,
        )
        emit(
            state,
            "retrieval_complete",
            {
                "local": len(result.local_chunks),
                "state": len(result.state_chunks),
                "archive_chunks_found": result.archive_chunks_found,
                "used_second_pass": result.used_second_pass,
                "escalation_reason": result.escalation_reason,
            },
        )
        return {
            "retrieval": result,
            "stage_status": set_status(state, "retrieve", status),
            "stage_notes": push_note(
                state,
                node="retrieve",
                summary="Retrieval complete" if result.archive_chunks_found else "No archive documents found",
                extra={"second_pass": result.used_second_pass, "reason": result.escalation_reason},
            ),
        }

    return _run
