# llm/openai_llm.py
from __future__ import annotations
from typing import Optional

from langchain_openai import ChatOpenAI

from govqa.llm.base import common_kwargs, require_env


def build_openai(model: str, temperature: float, max_tokens: Optional[int] = None):
    require_env("OPENAI_API_KEY")
    return ChatOpenAI(model=model, **common_kwargs(temperature, max_tokens))
