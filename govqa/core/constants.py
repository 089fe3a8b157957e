# core/constants.py
from __future__ import annotations

SUPPORTED_PROVIDERS = ("openai", "anthropic", "gemini")

PROVIDER_MODELS = {
    "openai": ("gpt-4o-mini", "gpt-4.1-mini", "gpt-4o"),
    "anthropic": (
        "claude-3-5-sonnet-20241022",
        "claude-3-5-haiku-20241022",
        "claude-3-7-sonnet-latest",
    ),
    "gemini": (
        "gemini-2.0-flash",
        "gemini-1.5-flash-002",
        "gemini-1.5-pro-002",
    ),
}

DEFAULT_PROVIDER = "openai"
DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"

# corpus handles passed to the retrieval oracle
LOCAL_CORPUS = "local"
STATE_CORPUS = "state"

MAX_ARTIFACTS = 2
MAX_ARTIFACT_CHARS = 10_000
MAX_USER_TEXT_CHARS = 12_000
MAX_CHUNK_PROMPT_CHARS = 2_000
MAX_HISTORY_TURNS = 4
MAX_HISTORY_CHARS = 200
MAX_STAGE_NOTES = 120
