from __future__ import annotations
import json
from typing import Any, Dict, List, Optional, Sequence

import pytest

from govqa.core.config import PipelineConfig
from govqa.schemas.evidence import Chunk, DocumentReference, SearchResult

FILLER = "the board reviewed the boardwalk maintenance contract terms and recorded the outcome in minutes".split()


class FakeGenerationOracle:
    """Returns scripted responses in order; an Exception entry is raised instead."""

    def __init__(self, responses: Sequence[Any]):
        self.responses = list(responses)
        self.calls: List[Dict[str, Any]] = []

    def generate(self, system_instruction: str, user_prompt: str, temperature: float, max_output_tokens: int) -> str:
        self.calls.append(
            {
                "system": system_instruction,
                "user": user_prompt,
                "temperature": temperature,
                "max_output_tokens": max_output_tokens,
            }
        )
        if not self.responses:
            raise AssertionError("unexpected generation call")
        out = self.responses.pop(0)
        if isinstance(out, BaseException):
            raise out
        return out


class FakeRetrievalOracle:
    def __init__(self, results: Optional[Dict[str, SearchResult]] = None, error: Optional[BaseException] = None):
        self.results = results or {}
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    def search(self, query: str, corpus_handle: str, max_results: int) -> SearchResult:
        self.calls.append({"query": query, "corpus": corpus_handle, "k": max_results})
        if self.error is not None:
            raise self.error
        return self.results.get(corpus_handle, SearchResult())


def refs(titles: List[str], doc_ids: List[str], snippet: str = "") -> SearchResult:
    return SearchResult(
        document_references=[
            DocumentReference(doc_id=d, title=t, snippet=snippet or f"Excerpt from {t}.") for t, d in zip(titles, doc_ids)
        ]
    )


def chunk(title: str, lane: str = "state", content: str = "", score: float = 1.0, doc_id: str = "") -> Chunk:
    return Chunk(lane=lane, title=title, content=content or f"Excerpt from {title}.", score=score, document_ids=[doc_id or title])


def bullet(n_words: int, citation: Optional[str] = None) -> str:
    words = (FILLER * 3)[:n_words]
    if citation:
        words.append(citation)
    return "- " + " ".join(words)


def build_answer(
    law_citations: Sequence[str] = ("[S1]", "[S2]"),
    bullets: int = 4,
    bullet_words: int = 14,
    summary_words: int = 30,
    extra: str = "",
) -> str:
    """A five-heading answer; with defaults it is complete and has no format violations."""
    law = [bullet(bullet_words, law_citations[i] if i < len(law_citations) else None) for i in range(bullets)]
    blocks = [
        "**Bottom line**\n" + " ".join((FILLER * 5)[:summary_words]),
        "**What happened**\n" + "\n".join(bullet(bullet_words, "[L1]") for _ in range(bullets)),
        "**What the law generally requires**\n" + "\n".join(law),
        "**What this changes**\n" + "\n".join(bullet(bullet_words, "[L2]") for _ in range(bullets)),
        "**Unknowns that matter**\n" + "\n".join(bullet(bullet_words) for _ in range(bullets)),
    ]
    text = "\n\n".join(blocks)
    return f"{text}\n{extra}" if extra else text


def planner_json(**issue: Any) -> str:
    issue_map = {
        "town": None,
        "situationTitle": "Boardwalk maintenance contract",
        "entities": [],
        "actions": [],
        "legalTopics": [],
        "boards": [],
        "timeHints": [],
        "requestedOutput": "explain",
        "legalSalience": 0.3,
        "plannerConfidence": 0.8,
    }
    issue_map.update(issue)
    return json.dumps(
        {
            "issueMap": issue_map,
            "retrievalPlan": {
                "local": {"queries": ["boardwalk maintenance contract"], "k": 12, "cap": 10},
                "state": {"queries": ["municipal contract procedures"], "k": 8, "cap": 5},
                "mustInclude": {"minState": 1, "minLocalFacts": 2},
                "priority": "facts-first",
                "reason": "contract question",
            },
        }
    )


@pytest.fixture
def config() -> PipelineConfig:
    return PipelineConfig()
