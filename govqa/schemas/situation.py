# schemas/situation.py
from __future__ import annotations
from typing import List, Literal, Optional
from pydantic import BaseModel, Field

ContentType = Literal["minutes", "article", "document", "paste"]


class TimeRange(BaseModel):
    start: Optional[str] = None
    end: Optional[str] = None


class SituationContext(BaseModel):
    """Cross-turn topic anchor owned by the session store."""

    title: str
    entities: List[str] = Field(default_factory=list)
    time_range: Optional[TimeRange] = None
    source_refs: List[str] = Field(default_factory=list)
    last_updated_at: Optional[float] = None


class Artifact(BaseModel):
    title: str
    text: str
    content_type: ContentType = "paste"


class GateResult(BaseModel):
    score: float = 0.0
    use_situation_context: bool = False
    reasons: List[str] = Field(default_factory=list)
    question_domain: Optional[str] = None
    situation_domain: Optional[str] = None


class SituationUpdate(BaseModel):
    should_update: bool
    new_context: Optional[SituationContext] = None
    confidence: float
    reason: str
