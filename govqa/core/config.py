# core/config.py
from __future__ import annotations
import os
from typing import Any, Dict, Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict

from govqa.core.constants import DEFAULT_EMBEDDING_MODEL, DEFAULT_MODEL, DEFAULT_PROVIDER, LOCAL_CORPUS, STATE_CORPUS

ENV_PREFIX = "GOVQA_"


def bootstrap_env() -> None:
    """Load .env into environment variables."""
    load_dotenv()


class PipelineConfig(BaseModel):
    """Every tunable threshold of the pipeline. Built once, passed into each node factory."""

    model_config = ConfigDict(frozen=True)

    provider: str = DEFAULT_PROVIDER
    model: str = DEFAULT_MODEL
    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    index_root: str = "data/indexes"
    answer_profile: Literal["sectioned", "prose"] = "sectioned"
    local_corpus: str = LOCAL_CORPUS
    state_corpus: str = STATE_CORPUS
    town: Optional[str] = None

    # situation gate
    gate_threshold: float = 2.0
    domain_penalty: float = 2.0

    # planner
    planner_temperature: float = 0.2
    planner_max_tokens: int = 1200
    max_queries_per_lane: int = 6
    conservative_confidence: float = 0.4
    conservative_max_queries: int = 2
    local_k: int = 12
    local_cap: int = 10
    state_k: int = 8
    state_cap: int = 5

    # retrieval
    state_bonus_weight: float = 0.12
    situation_weight: float = 0.3
    on_topic_fraction: float = 0.4
    on_topic_threshold: float = 0.2
    merged_cap: int = 15
    min_retrieval_confidence: float = 0.35
    min_topic_alignment: float = 0.30
    high_stakes_confidence: float = 0.5
    drift_chunk_fraction: float = 0.3
    escalation_local_k: int = 16
    escalation_state_k: int = 12

    # tiering
    tier_a_min_state: int = 4
    tier_a_min_alignment: float = 0.30
    tier_b_min_state: int = 2
    tier_b_min_alignment: float = 0.20
    promote_salience: float = 0.6

    # synthesis
    synth_temperature: float = 0.3
    # None keeps the answer profile's own output ceiling
    synth_max_tokens: Optional[int] = None


def _coerce(raw: str, current: Any) -> Any:
    if isinstance(current, bool):
        return raw.strip().lower() in {"1", "true", "yes", "on"}
    if isinstance(current, int):
        return int(raw)
    if isinstance(current, float):
        return float(raw)
    return raw


def load_config(**overrides: Any) -> PipelineConfig:
    """Defaults, then GOVQA_<FIELD> env vars, then explicit keyword overrides."""
    bootstrap_env()
    defaults = PipelineConfig()
    values: Dict[str, Any] = {}
    for name in PipelineConfig.model_fields:
        raw = os.getenv(ENV_PREFIX + name.upper())
        if raw is None or raw == "":
            continue
        values[name] = _coerce(raw, getattr(defaults, name))
    values.update(overrides)
    return PipelineConfig(**values)
