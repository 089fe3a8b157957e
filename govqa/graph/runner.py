# graph/runner.py
from __future__ import annotations
import time
import uuid
from typing import Any, Callable, Dict, List, Optional

from langgraph.graph import END, StateGraph

from govqa.core.config import PipelineConfig, load_config
from govqa.core.logging import get_logger
from govqa.graph.audit import audit_node
from govqa.graph.lanes_node import lanes_node
from govqa.graph.planner_node import artifact_prompt_text, planner_node
from govqa.graph.repair import finalize_node, repair_node, route_after_audit
from govqa.graph.situation_gate import gate_node
from govqa.graph.sources import classify_doc_source_type, detect_session_source, source_document_names
from govqa.graph.synthesizer_node import synthesizer_node
from govqa.graph.tiering import tier_node
from govqa.llm.oracle import GenerationOracle, build_generation_oracle
from govqa.schemas.answer import DebugInfo, PipelineResult, ScoredAnswer
from govqa.schemas.state import PipelineState
from govqa.session.store import SessionStore
from govqa.stream.emitter import Emitter
from govqa.tools.rag.retriever import RetrievalOracle, build_retrieval_oracle

logger = get_logger("govqa.graph.runner")


def build_graph(config: PipelineConfig, generation: GenerationOracle, retrieval: RetrievalOracle):
    g = StateGraph(PipelineState)
    g.add_node("gate", gate_node(config))
    g.add_node("plan", planner_node(config, generation))
    g.add_node("retrieve", lanes_node(config, retrieval))
    g.add_node("tier", tier_node(config))
    g.add_node("synthesize", synthesizer_node(config, generation))
    g.add_node("audit", audit_node())
    g.add_node("repair", repair_node(generation))
    g.add_node("finalize", finalize_node())
    g.set_entry_point("gate")
    g.add_edge("gate", "plan")
    g.add_edge("plan", "retrieve")
    g.add_edge("retrieve", "tier")
    g.add_edge("tier", "synthesize")
    g.add_edge("synthesize", "audit")
    g.add_conditional_edges(
        "audit",
        route_after_audit,
        {
            "repair": "repair",
            "finalize": "finalize",
        },
    )
    g.add_edge("repair", "finalize")
    g.add_edge("finalize", END)
    return g.compile()


async def run_pipeline(app, state: Dict[str, Any], send: Optional[Callable[[Dict[str, Any]], None]] = None) -> Dict[str, Any]:
    """Run the compiled graph with telemetry. Failures are reported, then re-raised."""
    em = Emitter(request_id=state["request_id"], session_id=state.get("session_id"), send=send)
    em.emit("run_start", {"session_id": state.get("session_id"), "question_chars": len(state.get("question") or "")})
    state["emitter"] = em
    try:
        out = await app.ainvoke(state)
    except Exception as e:
        logger.error("RUN_FAILED request_id=%s error=%s: %s", state["request_id"], type(e).__name__, e)
        em.emit("error", {"error": str(e), "type": type(e).__name__})
        em.emit("run_end", {"ok": False})
        raise
    em.emit("run_end", {"ok": True})
    return out


def _candidate(candidates: List[ScoredAnswer], source: str) -> Optional[ScoredAnswer]:
    return next((c for c in candidates if c.source == source), None)


def build_result(out: Dict[str, Any], started: float) -> PipelineResult:
    retrieval = out["retrieval"]
    strength = out["record_strength"]
    planner = out["planner_output"]
    issue = planner.issue_map
    candidates = list(out.get("candidates") or [])
    original = _candidate(candidates, "original")
    repaired = _candidate(candidates, "repair")
    text = out["final_text"]

    debug = DebugInfo(
        request_id=out["request_id"],
        issue_map_summary={
            "town": issue.town,
            "situation_title": issue.situation_title,
            "entities": issue.entities,
            "legal_topics": issue.legal_topics,
            "boards": issue.boards,
            "requested_output": issue.requested_output,
            "legal_salience": issue.legal_salience,
            "planner_confidence": issue.planner_confidence,
            "used_fallback": planner.used_fallback,
        },
        plan_queries={"local": planner.plan.local.queries, "state": planner.plan.state.queries},
        retrieval_counts={
            "local": len(retrieval.local_chunks),
            "state": len(retrieval.state_chunks),
            "merged": retrieval.debug.merged_total,
            "local_retrieved": retrieval.debug.local_retrieved,
            "state_retrieved": retrieval.debug.state_retrieved,
        },
        used_second_pass=retrieval.used_second_pass,
        escalation_reason=retrieval.escalation_reason,
        tier=strength.tier,
        audit_flags=out["final_audit"].flags(),
        initial_audit_flags=out["audit_result"].flags(),
        repair_ran=bool(out.get("repair_ran")),
        selected_answer_source=out["selected_source"],
        original_score=original.score if original else None,
        repair_score=repaired.score if repaired else None,
        original_complete=original.complete if original else None,
        repair_complete=repaired.complete if repaired else None,
        final_char_count=len(text),
        final_word_count=len(text.split()),
        stage_status=dict(out.get("stage_status") or {}),
        gate=out.get("gate_result"),
        situation_update=out.get("situation_update"),
    )
    return PipelineResult(
        answer=text,
        source_documents=source_document_names(retrieval.local_chunks + retrieval.state_chunks),
        doc_source_type=classify_doc_source_type(len(retrieval.local_chunks), len(retrieval.state_chunks)),
        record_strength=strength,
        debug=debug,
        duration_ms=int((time.time() - started) * 1000),
    )


async def answer_question(
    question: str,
    session_id: str,
    *,
    generation: Optional[GenerationOracle] = None,
    retrieval: Optional[RetrievalOracle] = None,
    config: Optional[PipelineConfig] = None,
    store: Optional[SessionStore] = None,
    history: Optional[List[Dict[str, str]]] = None,
    town: Optional[str] = None,
    send: Optional[Callable[[Dict[str, Any]], None]] = None,
    request_id: Optional[str] = None,
) -> PipelineResult:
    """Answer one question end to end. Only quota exhaustion escapes as an error."""
    started = time.time()
    config = config or load_config()
    generation = generation or build_generation_oracle(config)
    retrieval = retrieval or build_retrieval_oracle(config)
    request_id = request_id or uuid.uuid4().hex[:12]

    situation = store.get_situation_context(session_id) if store is not None else None
    artifacts = list(reversed(store.get_session_artifacts(session_id))) if store is not None else []
    detection = detect_session_source(question)
    if detection.artifact is not None:
        artifacts.insert(0, detection.artifact)

    state: Dict[str, Any] = {
        "request_id": request_id,
        "session_id": session_id,
        "question": question,
        "town": town,
        "history": list(history or []),
        "situation_context": situation,
        "artifacts": artifacts,
        "artifact_text": artifact_prompt_text(artifacts),
        "repair_ran": False,
        "stage_status": {},
        "stage_notes": [],
    }
    logger.info(
        "RUN_START request_id=%s session_id=%s situation=%s artifacts=%s",
        request_id,
        session_id,
        situation.title if situation is not None else None,
        len(artifacts),
    )

    app = build_graph(config, generation, retrieval)
    out = await run_pipeline(app, state, send)
    result = build_result(out, started)
    logger.info(
        "RUN_DONE request_id=%s tier=%s source=%s words=%s duration_ms=%s",
        request_id,
        result.record_strength.tier,
        result.debug.selected_answer_source,
        result.debug.final_word_count,
        result.duration_ms,
    )
    return result
