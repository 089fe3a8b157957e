# llm/oracle.py
from __future__ import annotations
from typing import Any, Optional, Protocol

from langchain_core.messages import HumanMessage, SystemMessage

from govqa.core.config import PipelineConfig
from govqa.core.errors import OracleError, QuotaExhaustedError, is_quota_error
from govqa.core.logging import get_logger
from govqa.llm.base import normalize
from govqa.llm.factory import get_llm, is_not_found_error, model_candidates

logger = get_logger("govqa.llm.oracle")


class GenerationOracle(Protocol):
    def generate(self, system_instruction: str, user_prompt: str, temperature: float, max_output_tokens: int) -> str:
        ...


def message_text(msg: Any) -> str:
    content = getattr(msg, "content", msg)
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type") == "text":
                parts.append(str(part.get("text") or ""))
        return "".join(parts)
    return str(content or "")


class LangChainGenerationOracle:
    """Generation oracle over the provider factory (OpenAI / Anthropic / Gemini chat models)."""

    def __init__(self, provider: Optional[str] = None, model: Optional[str] = None):
        self.provider, self.model = normalize(provider, model)

    def generate(self, system_instruction: str, user_prompt: str, temperature: float, max_output_tokens: int) -> str:
        messages = [SystemMessage(content=system_instruction), HumanMessage(content=user_prompt)]
        last_err: Optional[Exception] = None
        for candidate in model_candidates(self.provider, self.model):
            try:
                llm = get_llm(self.provider, candidate, temperature=temperature, max_tokens=max_output_tokens)
                out = llm.invoke(messages)
            except Exception as e:
                if is_quota_error(e):
                    logger.error("LLM_QUOTA provider=%s model=%s", self.provider, candidate)
                    raise QuotaExhaustedError(str(e)) from e
                if is_not_found_error(e):
                    logger.warning("LLM_MODEL_NOT_FOUND provider=%s model=%s", self.provider, candidate)
                    last_err = e
                    continue
                raise OracleError(f"{type(e).__name__}: {e}") from e
            text = message_text(out)
            logger.info(
                "LLM_CALL provider=%s model=%s prompt_chars=%d out_chars=%d",
                self.provider,
                candidate,
                len(system_instruction) + len(user_prompt),
                len(text),
            )
            return text
        raise OracleError(f"No available model for provider={self.provider}: {last_err}")


def build_generation_oracle(config: PipelineConfig) -> LangChainGenerationOracle:
    return LangChainGenerationOracle(config.provider, config.model)
