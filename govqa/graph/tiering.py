# graph/tiering.py
from __future__ import annotations
from typing import Any, Dict

from govqa.core.config import PipelineConfig
from govqa.core.logging import get_logger
from govqa.graph.retrieval_quality import distinct_documents
from govqa.graph.stage_log import emit, push_note, set_status
from govqa.schemas.answer import StageStatus
from govqa.schemas.evidence import RecordStrength, RetrievalResult, Tier

logger = get_logger("govqa.graph.tiering")


def compute_tier(
    state_count: int,
    authoritative: bool,
    distinct_state_docs: int,
    alignment: float,
    salience: float,
    config: PipelineConfig,
) -> Tier:
    """Pure tier decision. A computed C is promoted to B for well-evidenced legal questions."""
    if (
        state_count >= config.tier_a_min_state
        and (authoritative or distinct_state_docs >= 2)
        and alignment >= config.tier_a_min_alignment
    ):
        return "A"
    if state_count >= config.tier_b_min_state and alignment >= config.tier_b_min_alignment:
        return "B"
    if salience >= config.promote_salience and state_count >= config.tier_b_min_state:
        return "B"
    return "C"


def compute_record_strength(retrieval: RetrievalResult, salience: float, config: PipelineConfig) -> RecordStrength:
    distinct_state = distinct_documents(retrieval.state_chunks)
    tier = compute_tier(
        len(retrieval.state_chunks),
        retrieval.authoritative_state_present,
        distinct_state,
        retrieval.situation_alignment,
        salience,
        config,
    )
    return RecordStrength(
        tier=tier,
        local_count=len(retrieval.local_chunks),
        state_count=len(retrieval.state_chunks),
        distinct_local_docs=distinct_documents(retrieval.local_chunks),
        distinct_state_docs=distinct_state,
        situation_alignment=retrieval.situation_alignment,
        legal_topic_coverage=retrieval.legal_topic_coverage,
        authoritative_state_present=retrieval.authoritative_state_present,
    )


def tier_node(config: PipelineConfig):
    def _run(state: Dict[str, Any]) -> Dict[str, Any]:
        salience = state["planner_output"].issue_map.legal_salience
        strength = compute_record_strength(state["retrieval"], salience, config)
        logger.info(
            "NODE_CALL node=tier request_id=%s tier=%s state=%s local=%s alignment=%.2f",
            state.get("request_id"),
            strength.tier,
            strength.state_count,
            strength.local_count,
            strength.situation_alignment,
        )
        emit(state, "tier_computed", strength.model_dump())
        return {
            "record_strength": strength,
            "stage_status": set_status(state, "tier", StageStatus.OK),
            "stage_notes": push_note(state, node="tier", summary=f"Tier {strength.tier}"),
        }

    return _run
