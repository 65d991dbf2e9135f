"""repokb: searchable knowledge base over source-controlled documents.

Builds a redacted, chunked, keyword (and optionally vector) indexed artifact
from repository checkouts and serves keyword, semantic and hybrid retrieval
over it.

Public API:
- KBConfig
- KnowledgeBaseBuilder
- RetrievalContext
- search
"""

from .config import KBConfig
from .indexer.builder import KnowledgeBaseBuilder
from .retrieval.retriever import RetrievalContext, search

__all__ = ["KBConfig", "KnowledgeBaseBuilder", "RetrievalContext", "search"]
