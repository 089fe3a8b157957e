# core/jsonx.py
from __future__ import annotations
import json
import re
from typing import Any, Dict

_FENCE_RE = re.compile(r"```(?:json)?\s*\n?", re.IGNORECASE)


def strip_code_fences(text: str) -> str:
    return _FENCE_RE.sub("", text or "").strip()


def extract_json(text: str) -> Dict[str, Any]:
    """Best-effort: parse full text, else parse the first {...} block."""
    text = strip_code_fences(text)
    if not text:
        raise ValueError("Empty LLM output")

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        a = text.find("{")
        b = text.rfind("}")
        if a == -1 or b == -1 or b <= a:
            raise ValueError("No JSON object found in LLM output")
        data = json.loads(text[a : b + 1])

    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data
