# llm/gemini_llm.py
from __future__ import annotations
from typing import Optional

from langchain_google_genai import ChatGoogleGenerativeAI

from govqa.llm.base import require_env


def build_gemini(model: str, temperature: float, max_tokens: Optional[int] = None):
    # LangChain reads GOOGLE_API_KEY from the environment
    require_env("GOOGLE_API_KEY")
    kw = {"temperature": temperature}
    if max_tokens:
        kw["max_output_tokens"] = max_tokens
    return ChatGoogleGenerativeAI(model=model, **kw)
