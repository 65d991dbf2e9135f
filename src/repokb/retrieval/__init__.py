from .filters import apply_filters, matches
from .hybrid import HybridRanker
from .retriever import (
    LoadedKB,
    RetrievalContext,
    configure_default_context,
    default_context,
    reset_default_context,
    search,
)
from .semantic import cosine_scan

__all__ = [
    "HybridRanker",
    "LoadedKB",
    "RetrievalContext",
    "apply_filters",
    "configure_default_context",
    "cosine_scan",
    "default_context",
    "matches",
    "reset_default_context",
    "search",
]
