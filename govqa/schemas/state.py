# schemas/state.py
from __future__ import annotations
from typing import Any, Dict, List, Optional, TypedDict

from govqa.schemas.answer import AnswerPolicy, AuditResult, ScoredAnswer, StageStatus, SynthesisResult
from govqa.schemas.evidence import RecordStrength, RetrievalResult
from govqa.schemas.issue import PlannerOutput
from govqa.schemas.situation import Artifact, GateResult, SituationContext, SituationUpdate


class PipelineState(TypedDict, total=False):
    # identity
    request_id: str
    session_id: str

    # telemetry emitter (runtime only)
    emitter: Any

    # inputs
    question: str
    town: Optional[str]
    history: List[Dict[str, str]]
    situation_context: Optional[SituationContext]
    artifacts: List[Artifact]

    # gate
    gate_result: GateResult
    effective_situation: Optional[SituationContext]
    effective_history: List[Dict[str, str]]
    artifact_text: str

    # stages
    planner_output: PlannerOutput
    retrieval: RetrievalResult
    record_strength: RecordStrength
    policy: AnswerPolicy
    synthesis: SynthesisResult
    audit_result: AuditResult
    repair_ran: bool
    candidates: List[ScoredAnswer]
    selected_source: str
    final_text: str
    final_audit: AuditResult
    situation_update: SituationUpdate

    stage_status: Dict[str, StageStatus]
    stage_notes: List[Dict[str, Any]]
