"""Query-side entry point: load the artifact once, then search it.

`RetrievalContext` memoizes the loaded artifact behind a SingleFlight so that
concurrent first queries share a single load. The query embedder is owned by
an optional Vectorizer and is loaded lazily the same way.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional

import numpy as np

from ..config import SEARCH_MODES
from ..embeddings.vectorizer import Vectorizer
from ..errors import UnavailableError, ValidationError
from ..models import Document, KnowledgeBase, SearchFilters, SearchResult
from ..singleflight import SingleFlight
from ..store.artifact import load_artifact, validate_artifact
from ..store.text_index import TextIndex
from .filters import apply_filters
from .hybrid import HybridRanker
from .semantic import cosine_scan, vector_matrix

logger = logging.getLogger(__name__)

MIN_QUERY_TOKENS = 2
DEFAULT_LIMIT = 20
# Candidates pulled from each retriever before filtering and fusion
CANDIDATE_FACTOR = 2


@dataclass
class LoadedKB:
    kb: KnowledgeBase
    text_index: TextIndex
    docs_by_id: dict[str, Document]
    vector_docs: list[Document]
    vectors: np.ndarray

    @property
    def has_embeddings(self) -> bool:
        return bool(self.vector_docs)


def load_kb(kb: KnowledgeBase) -> LoadedKB:
    """Deserialize indexes and check integrity. Raises StructuralError."""
    text_index = validate_artifact(kb)
    vector_docs, vectors = vector_matrix(kb.docs, kb.index.embeddings or {})
    logger.info(
        f"Loaded knowledge base: {len(kb.docs)} documents, "
        f"{len(vector_docs)} vectors, generated {kb.meta.generated_at}"
    )
    return LoadedKB(
        kb=kb,
        text_index=text_index,
        docs_by_id={d.id: d for d in kb.docs},
        vector_docs=vector_docs,
        vectors=vectors,
    )


def directory_loader(output_dir: str | Path) -> Callable[[], KnowledgeBase]:
    def _load() -> KnowledgeBase:
        return load_artifact(output_dir)
    return _load


def query_tokens(query: str) -> list[str]:
    return query.split()


class RetrievalContext:
    """Memoized artifact plus keyword, semantic and hybrid search over it."""

    def __init__(
        self,
        loader: Callable[[], KnowledgeBase],
        vectorizer: Optional[Vectorizer] = None,
        ranker: Optional[HybridRanker] = None,
    ) -> None:
        self.vectorizer = vectorizer
        self.ranker = ranker or HybridRanker()
        self._kb = SingleFlight(lambda: load_kb(loader()))

    @staticmethod
    def from_directory(output_dir: str | Path, vectorizer: Optional[Vectorizer] = None) -> "RetrievalContext":
        return RetrievalContext(directory_loader(output_dir), vectorizer=vectorizer)

    # -- lifecycle ---------------------------------------------------------

    def loaded(self) -> LoadedKB:
        return self._kb.get()

    def warm_up(self) -> Optional[threading.Thread]:
        """Load the artifact now and start the query embedder in the background."""
        self.loaded()
        if self.vectorizer is None:
            return None
        return self.vectorizer.warm_up()

    def reset(self) -> None:
        self._kb.reset()
        if self.vectorizer is not None:
            self.vectorizer.reset()

    # -- search ------------------------------------------------------------

    def search(
        self,
        query: str,
        filters: Optional[SearchFilters] = None,
        limit: int = DEFAULT_LIMIT,
        mode: str = "keyword",
    ) -> list[SearchResult]:
        if len(query_tokens(query)) < MIN_QUERY_TOKENS:
            raise ValidationError(f"Query must contain at least {MIN_QUERY_TOKENS} words: {query!r}")
        if mode not in SEARCH_MODES:
            raise ValidationError(f"Unknown search mode: {mode!r}. Must be one of {SEARCH_MODES}.")
        if limit <= 0:
            raise ValidationError(f"Invalid limit: {limit}. Must be positive.")

        if mode == "keyword":
            return self.keyword_search(query, filters, limit)
        if mode == "semantic":
            return self.semantic_search(query, filters, limit)
        return self.hybrid_search(query, filters, limit)

    def keyword_search(self, query: str, filters: Optional[SearchFilters], limit: int) -> list[SearchResult]:
        loaded = self.loaded()
        hits = loaded.text_index.search(query)
        results = (
            SearchResult(doc=loaded.docs_by_id[doc_id], score=score, metadata={"mode": "keyword"})
            for doc_id, score in hits
        )
        return _take(apply_filters(results, filters), limit)

    def semantic_search(self, query: str, filters: Optional[SearchFilters], limit: int) -> list[SearchResult]:
        loaded = self.loaded()
        if not loaded.has_embeddings:
            raise UnavailableError("Semantic search requires embeddings; rebuild with embeddings enabled")
        if self.vectorizer is None:
            raise UnavailableError("Semantic search requires an embedding backend")

        try:
            query_vec = self.vectorizer.embed(query)
        except Exception as e:
            raise UnavailableError(f"Embedding backend unavailable: {e}") from e

        try:
            scored = cosine_scan(query_vec, loaded.vector_docs, loaded.vectors)
        except ValueError as e:
            raise UnavailableError(f"Query embedding does not match the index: {e}") from e
        results = (SearchResult(doc=d, score=s, metadata={"mode": "semantic"}) for d, s in scored)
        return _take(apply_filters(results, filters), limit)

    def hybrid_search(self, query: str, filters: Optional[SearchFilters], limit: int) -> list[SearchResult]:
        keyword = self.keyword_search(query, filters, limit * CANDIDATE_FACTOR)
        try:
            semantic = self.semantic_search(query, filters, limit * CANDIDATE_FACTOR)
        except UnavailableError as e:
            logger.info(f"Hybrid search falling back to keyword only: {e}")
            semantic = []
        merged = self.ranker.merge(keyword, semantic, k=limit)
        return [
            SearchResult(doc=r.doc, score=r.score, metadata={**r.metadata, "mode": "hybrid"})
            for r in merged
        ]

    # -- facets ------------------------------------------------------------

    def repos(self) -> list[str]:
        return sorted({d.source_key for d in self.loaded().kb.docs})

    def languages(self) -> list[str]:
        return sorted({d.language for d in self.loaded().kb.docs})

    def tags(self) -> list[str]:
        return sorted({t for d in self.loaded().kb.docs for t in d.tags})

    def file_types(self) -> list[str]:
        return sorted({d.file_extension for d in self.loaded().kb.docs if d.file_extension})

    def has_embeddings(self) -> bool:
        return self.loaded().has_embeddings

    def meta(self) -> dict[str, Any]:
        return self.loaded().kb.meta.to_dict()


def _take(results, limit: int) -> list[SearchResult]:
    out: list[SearchResult] = []
    for r in results:
        if len(out) >= limit:
            break
        out.append(r)
    return out


_default_lock = threading.Lock()
_default: Optional[RetrievalContext] = None


def configure_default_context(ctx: RetrievalContext) -> None:
    global _default
    with _default_lock:
        _default = ctx


def default_context() -> RetrievalContext:
    """Process-wide context; reads `./dist` unless configured otherwise."""
    global _default
    with _default_lock:
        if _default is None:
            _default = RetrievalContext.from_directory("dist")
        return _default


def reset_default_context() -> None:
    global _default
    with _default_lock:
        ctx, _default = _default, None
    if ctx is not None:
        ctx.reset()


def search(
    query: str,
    filters: Optional[SearchFilters] = None,
    limit: int = DEFAULT_LIMIT,
    mode: str = "keyword",
) -> list[SearchResult]:
    return default_context().search(query, filters=filters, limit=limit, mode=mode)
