# llm/base.py
from __future__ import annotations
import os
from typing import Any, Dict, Optional

from govqa.core.constants import DEFAULT_MODEL, DEFAULT_PROVIDER, PROVIDER_MODELS, SUPPORTED_PROVIDERS


def require_env(name: str) -> None:
    if not os.getenv(name):
        raise RuntimeError(f"Missing env var: {name}")


def normalize(provider: Optional[str], model: Optional[str]) -> tuple[str, str]:
    p = (provider or DEFAULT_PROVIDER).lower()
    if p not in SUPPORTED_PROVIDERS:
        raise ValueError(f"Unsupported provider: {p}")
    m = (model or (DEFAULT_MODEL if p == DEFAULT_PROVIDER else PROVIDER_MODELS[p][0])).strip()
    if not m:
        raise ValueError("Model cannot be empty")
    return p, m


def known_model(provider: str, model: str) -> bool:
    if model in PROVIDER_MODELS.get(provider, ()):
        return True
    prefixes = {"openai": ("gpt-", "o", "chatgpt-"), "anthropic": ("claude-",), "gemini": ("gemini-",)}
    return model.startswith(prefixes.get(provider, ()))


def common_kwargs(temperature: float, max_tokens: Optional[int]) -> Dict[str, Any]:
    kw: Dict[str, Any] = {"streaming": False, "temperature": temperature}
    if max_tokens:
        kw["max_tokens"] = max_tokens
    return kw
