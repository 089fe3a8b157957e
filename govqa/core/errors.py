# core/errors.py
from __future__ import annotations
from typing import Any, Optional


class GovQAError(Exception):
    """Base class for pipeline errors."""


class QuotaExhaustedError(GovQAError):
    """An oracle reported quota exhaustion. Never retried, always propagated."""

    def __init__(self, message: str = "Generation quota exhausted", stage: Optional[str] = None):
        super().__init__(message)
        self.stage = stage


class OracleError(GovQAError):
    """A non-quota oracle failure. Callers degrade instead of retrying."""


class DecodeError(GovQAError):
    """Planner output could not be decoded into a plan.

    Returned as a value from ``decode_plan`` so call sites branch on the tag
    instead of catching.
    """

    def __init__(self, reason: str, raw_preview: str = ""):
        super().__init__(reason)
        self.reason = reason
        self.raw_preview = raw_preview[:200]


_QUOTA_STATUSES = {"RESOURCE_EXHAUSTED", "rate_limit_exceeded", "insufficient_quota"}


def _looks_like_quota(obj: Any) -> bool:
    if obj is None:
        return False
    if isinstance(obj, dict):
        code = obj.get("code") or obj.get("status_code")
        status = obj.get("status") or obj.get("type")
        message = str(obj.get("message") or "")
    else:
        code = getattr(obj, "code", None) or getattr(obj, "status_code", None)
        status = getattr(obj, "status", None)
        message = str(getattr(obj, "message", "") or "")
    if code == 429 or str(code) == "429":
        return True
    if isinstance(status, str) and status in _QUOTA_STATUSES:
        return True
    return "quota" in message.lower() or "RESOURCE_EXHAUSTED" in message


def is_quota_error(exc: BaseException) -> bool:
    """Recognize quota exhaustion across Gemini, OpenAI and Anthropic error shapes."""
    if isinstance(exc, QuotaExhaustedError):
        return True
    text = str(exc)
    if "quota" in text.lower() or "RESOURCE_EXHAUSTED" in text:
        return True
    if _looks_like_quota(exc):
        return True
    nested = getattr(exc, "error", None) or getattr(exc, "body", None)
    if isinstance(nested, dict) and isinstance(nested.get("error"), dict):
        nested = nested["error"]
    return _looks_like_quota(nested)
