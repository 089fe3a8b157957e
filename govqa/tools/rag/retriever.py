# tools/rag/retriever.py
from __future__ import annotations
import os
from pathlib import Path
from typing import Any, Dict, List, Protocol

from langchain_community.vectorstores import FAISS
from langchain_openai import OpenAIEmbeddings

from govqa.core.config import PipelineConfig
from govqa.core.constants import DEFAULT_EMBEDDING_MODEL
from govqa.core.logging import get_logger
from govqa.schemas.evidence import DocumentReference, SearchResult

logger = get_logger("govqa.tools.rag.retriever")


class RetrievalOracle(Protocol):
    def search(self, query: str, corpus_handle: str, max_results: int) -> SearchResult:
        ...


def doc_title(metadata: Dict[str, Any]) -> str:
    title = metadata.get("title")
    if title:
        return str(title)
    src = str(metadata.get("source", "unknown"))
    page = metadata.get("page")
    return Path(src).name + (f" (p.{page + 1})" if isinstance(page, int) else "")


class FaissRetrievalOracle:
    """Semantic search over saved FAISS indexes, one directory per corpus handle."""

    def __init__(self, index_root: str | Path, embedding_model: str = DEFAULT_EMBEDDING_MODEL):
        self.index_root = Path(index_root)
        self.embedding_model = embedding_model
        self._stores: Dict[str, FAISS] = {}

    def _load(self, corpus_handle: str) -> FAISS | None:
        if corpus_handle in self._stores:
            return self._stores[corpus_handle]
        if not os.getenv("OPENAI_API_KEY"):
            raise RuntimeError("Missing env var: OPENAI_API_KEY (embeddings)")
        idx = self.index_root / corpus_handle
        if not idx.exists():
            logger.warning("RAG_INDEX_MISSING corpus=%s path=%s", corpus_handle, idx)
            return None
        vs = FAISS.load_local(str(idx), OpenAIEmbeddings(model=self.embedding_model), allow_dangerous_deserialization=True)
        self._stores[corpus_handle] = vs
        return vs

    def search(self, query: str, corpus_handle: str, max_results: int) -> SearchResult:
        vs = self._load(corpus_handle)
        if vs is None:
            return SearchResult()
        hits = vs.similarity_search_with_score(query, k=max(1, int(max_results)))

        refs: List[DocumentReference] = []
        for d, dist in hits:
            src = str(d.metadata.get("source", "unknown"))
            refs.append(
                DocumentReference(
                    doc_id=str(d.metadata.get("doc_id") or src),
                    title=doc_title(d.metadata),
                    snippet=d.page_content,
                    # Lower distance is better for FAISS.
                    score=-float(dist),
                )
            )
        logger.info("RAG_SEARCH corpus=%s k=%s hits=%s", corpus_handle, max_results, len(refs))
        return SearchResult(document_references=refs, raw_text="\n\n".join(r.snippet for r in refs))


def build_retrieval_oracle(config: PipelineConfig) -> FaissRetrievalOracle:
    return FaissRetrievalOracle(config.index_root, embedding_model=config.embedding_model)
