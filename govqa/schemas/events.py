# schemas/events.py
from __future__ import annotations
from typing import Any, Dict, Literal, Optional
from pydantic import BaseModel, Field


EventType = Literal[
    "run_start", "situation_gated", "plan_complete", "retrieval_complete",
    "tier_computed", "synthesis_complete", "audit_result", "repair_outcome",
    "answer_finalized", "error", "run_end",
]


class TelemetryEvent(BaseModel):
    type: EventType
    request_id: str
    session_id: Optional[str] = None
    ts_ms: int
    data: Dict[str, Any] = Field(default_factory=dict)
