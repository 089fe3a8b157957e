# schemas/answer.py
from __future__ import annotations
from enum import Enum
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field

from govqa.schemas.evidence import RecordStrength
from govqa.schemas.situation import GateResult, SituationUpdate

ViolationType = Literal[
    "format_violation",
    "missing_state_citation",
    "uncited_rsa",
    "uncited_procedure",
    "absolute_legal_claim",
    "llm_tail",
    "off_topic_drift",
]
Severity = Literal["error", "warning"]
DocSourceType = Literal["none", "local", "statewide", "mixed"]
AnswerSource = Literal[
    "original",
    "repair",
    "original_normalized",
    "repair_normalized",
    "original_truncated",
    "repair_truncated",
]


class StageStatus(str, Enum):
    OK = "ok"
    RECOVERED_WITH_HEURISTIC = "recovered_with_heuristic"
    ESCALATE = "escalate"
    FATAL = "fatal"


class HeadingRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    max_bullets: int


class AnswerPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    profile: Literal["sectioned", "prose"] = "sectioned"
    max_words: int = 500
    max_chars: Optional[int] = None
    headings: List[HeadingRule] = Field(default_factory=list)
    max_bullet_words: int = 20
    max_bullets: Optional[int] = None
    min_complete_words: int = 180
    sweet_spot_words: tuple[int, int] = (200, 500)
    max_output_tokens: int = 4000
    temperature: float = 0.3
    min_state_citations_in_law_section: int = 2
    law_section: Optional[str] = None
    user_citation_section: Optional[str] = None
    summary_section: Optional[str] = None
    summary_max_words: int = 60

    @property
    def heading_names(self) -> List[str]:
        return [h.name for h in self.headings]

    def bullet_limit(self, heading: str) -> int:
        for h in self.headings:
            if h.name == heading:
                return h.max_bullets
        return self.max_bullets or 0


class AuditViolation(BaseModel):
    type: ViolationType
    severity: Severity
    evidence: str = ""


class FormatStats(BaseModel):
    word_count: int = 0
    char_count: int = 0
    headings_found: List[str] = Field(default_factory=list)
    missing_headings: List[str] = Field(default_factory=list)
    bullet_counts: Dict[str, int] = Field(default_factory=dict)
    law_section_state_citations: int = 0


class AuditResult(BaseModel):
    violations: List[AuditViolation] = Field(default_factory=list)
    passed: bool = True
    should_repair: bool = False
    repair_hint: str = ""
    stats: FormatStats = Field(default_factory=FormatStats)

    def format_violation_count(self) -> int:
        return sum(1 for v in self.violations if v.type == "format_violation")

    def flags(self) -> List[str]:
        return [f"{v.type}:{v.severity}" for v in self.violations]


class SynthesisResult(BaseModel):
    text: str
    citations_used: List[str] = Field(default_factory=list)
    used_fallback: bool = False


class ScoredAnswer(BaseModel):
    source: Literal["original", "repair"]
    text: str
    score: int
    complete: bool
    word_count: int
    audit: AuditResult


class DebugInfo(BaseModel):
    request_id: str
    issue_map_summary: Dict[str, Any] = Field(default_factory=dict)
    plan_queries: Dict[str, List[str]] = Field(default_factory=dict)
    retrieval_counts: Dict[str, int] = Field(default_factory=dict)
    used_second_pass: bool = False
    escalation_reason: Optional[str] = None
    tier: Optional[str] = None
    audit_flags: List[str] = Field(default_factory=list)
    initial_audit_flags: List[str] = Field(default_factory=list)
    repair_ran: bool = False
    selected_answer_source: Optional[AnswerSource] = None
    original_score: Optional[int] = None
    repair_score: Optional[int] = None
    original_complete: Optional[bool] = None
    repair_complete: Optional[bool] = None
    final_char_count: int = 0
    final_word_count: int = 0
    stage_status: Dict[str, StageStatus] = Field(default_factory=dict)
    gate: Optional[GateResult] = None
    situation_update: Optional[SituationUpdate] = None


class PipelineResult(BaseModel):
    answer: str
    source_documents: List[str] = Field(default_factory=list)
    doc_source_type: DocSourceType = "none"
    record_strength: RecordStrength
    debug: DebugInfo
    duration_ms: int = 0
