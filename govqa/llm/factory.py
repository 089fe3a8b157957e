# llm/factory.py
from __future__ import annotations
from typing import List, Optional

from govqa.core.constants import PROVIDER_MODELS
from govqa.core.logging import get_logger
from govqa.llm.base import known_model, normalize
from govqa.llm.openai_llm import build_openai
from govqa.llm.anthropic_llm import build_anthropic
from govqa.llm.gemini_llm import build_gemini

logger = get_logger("govqa.llm.factory")

PROVIDER_FALLBACK_MODELS = {
    "openai": ("gpt-4o-mini", "gpt-4.1-mini"),
    "anthropic": ("claude-3-5-haiku-20241022", "claude-3-5-sonnet-20241022"),
    "gemini": ("gemini-2.0-flash", "gemini-1.5-flash-002"),
}


def is_not_found_error(e: Exception) -> bool:
    s = str(e).lower()
    return "not_found" in s or "not found" in s or "404" in s


def model_candidates(provider: str, selected_model: str) -> List[str]:
    out: List[str] = []
    for m in (selected_model, *PROVIDER_MODELS.get(provider, ()), *PROVIDER_FALLBACK_MODELS.get(provider, ())):
        if m and m not in out:
            out.append(m)
    return out


def get_llm(
    provider: Optional[str],
    model: Optional[str],
    temperature: float = 0.2,
    max_tokens: Optional[int] = None,
):
    p, m = normalize(provider, model)
    if not known_model(p, m):
        logger.warning("LLM_UNKNOWN_MODEL provider=%s model=%s", p, m)
    try:
        if p == "openai":
            return build_openai(m, temperature, max_tokens)
        if p == "anthropic":
            return build_anthropic(m, temperature, max_tokens)
        return build_gemini(m, temperature, max_tokens)
    except RuntimeError as e:
        # Missing provider key: fall back to OpenAI.
        if p != "openai":
            logger.warning("LLM_PROVIDER_FALLBACK provider=%s error=%s", p, e)
            return build_openai("gpt-4o-mini", temperature, max_tokens)
        raise e
