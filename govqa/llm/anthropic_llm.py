# llm/anthropic_llm.py
from __future__ import annotations
from typing import Optional

from langchain_anthropic import ChatAnthropic

from govqa.llm.base import common_kwargs, require_env


def build_anthropic(model: str, temperature: float, max_tokens: Optional[int] = None):
    require_env("ANTHROPIC_API_KEY")
    # ChatAnthropic requires an explicit ceiling
    return ChatAnthropic(model=model, **common_kwargs(temperature, max_tokens or 4096))
