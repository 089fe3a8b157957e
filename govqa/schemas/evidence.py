# schemas/evidence.py
from __future__ import annotations
from typing import List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field

Lane = Literal["local", "state"]
Authority = Literal["rsa", "nhma", "official", "minutes", "news", "other"]
Tier = Literal["A", "B", "C"]


class DocumentReference(BaseModel):
    doc_id: str
    title: str
    snippet: str = ""
    score: Optional[float] = None


class SearchResult(BaseModel):
    document_references: List[DocumentReference] = Field(default_factory=list)
    raw_text: str = ""


class Chunk(BaseModel):
    lane: Lane
    label: Optional[str] = None
    title: str
    content: str = ""
    score: float = 0.0
    document_ids: List[str] = Field(default_factory=list)
    authority: Authority = "other"


class RetrievalDebug(BaseModel):
    local_query: str = ""
    state_query: str = ""
    expanded_local_query: Optional[str] = None
    expanded_state_query: Optional[str] = None
    local_retrieved: int = 0
    state_retrieved: int = 0
    merged_total: int = 0


class RetrievalResult(BaseModel):
    local_chunks: List[Chunk] = Field(default_factory=list)
    state_chunks: List[Chunk] = Field(default_factory=list)
    merged: List[Chunk] = Field(default_factory=list)
    archive_chunks_found: bool = False
    used_second_pass: bool = False
    retrieval_confidence: float = 0.0
    topic_alignment: float = 0.0
    drift_detected: bool = False
    drift_entities: List[str] = Field(default_factory=list)
    escalation_reason: Optional[str] = None
    situation_alignment: float = 0.5
    legal_topic_coverage: float = 1.0
    authoritative_state_present: bool = False
    debug: RetrievalDebug = Field(default_factory=RetrievalDebug)


class QualityReport(BaseModel):
    confidence: float
    topic_alignment: float
    drift_detected: bool = False
    drift_entities: List[str] = Field(default_factory=list)
    should_escalate: bool = False
    escalation_reason: Optional[str] = None


class RecordStrength(BaseModel):
    model_config = ConfigDict(frozen=True)

    tier: Tier
    local_count: int = 0
    state_count: int = 0
    distinct_local_docs: int = 0
    distinct_state_docs: int = 0
    situation_alignment: float = 0.0
    legal_topic_coverage: float = 0.0
    authoritative_state_present: bool = False
