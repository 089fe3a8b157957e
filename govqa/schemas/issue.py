# schemas/issue.py
from __future__ import annotations
from typing import List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field

RequestedOutput = Literal["explain", "steps", "cite_laws", "risk", "process"]
Priority = Literal["law-first", "facts-first", "process-first"]

REQUESTED_OUTPUTS = ("explain", "steps", "cite_laws", "risk", "process")
PRIORITIES = ("law-first", "facts-first", "process-first")


class IssueMap(BaseModel):
    model_config = ConfigDict(frozen=True)

    town: Optional[str] = None
    situation_title: str = ""
    entities: List[str] = Field(default_factory=list)
    actions: List[str] = Field(default_factory=list)
    legal_topics: List[str] = Field(default_factory=list)
    boards: List[str] = Field(default_factory=list)
    time_hints: List[str] = Field(default_factory=list)
    requested_output: RequestedOutput = "explain"
    legal_salience: float = Field(default=0.2, ge=0.0, le=1.0)
    planner_confidence: float = Field(default=0.5, ge=0.0, le=1.0)


class LanePlan(BaseModel):
    queries: List[str] = Field(default_factory=list)
    k: int
    cap: int


class MustInclude(BaseModel):
    min_state: int = 1
    min_local_facts: int = 2


class RetrievalPlan(BaseModel):
    local: LanePlan
    state: LanePlan
    must_include: MustInclude = Field(default_factory=MustInclude)
    priority: Priority = "facts-first"
    reason: str = ""


class ParsedPlan(BaseModel):
    """Raw oracle plan after decoding, before validation."""

    issue_map: dict = Field(default_factory=dict)
    retrieval_plan: dict = Field(default_factory=dict)


class PlannerOutput(BaseModel):
    issue_map: IssueMap
    plan: RetrievalPlan
    used_fallback: bool = False
    dropped_entities: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
