from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from ..models import SearchResult


@dataclass
class HybridRanker:
    """Fuse keyword and semantic result lists into one ranking.

    Each list is folded into a single accumulator in turn (keyword first). A
    result seen for the first time is inserted at `score * weight`; a result
    already present is averaged in as `(existing + score * weight) / (1 + weight)`.

    The divisor makes this a running average rather than a true weighted sum:
    a document found by both retrievers with keyword 0.8 and semantic 0.6
    scores (0.48 + 0.24) / 1.4 ~= 0.514, and it can rank below a document found
    by only one of them. Scores are not normalized across the two retrievers
    first, so the keyword side (unbounded bm25) usually dominates.
    """

    keyword_weight: float = 0.6
    semantic_weight: float = 0.4

    def merge(
        self, keyword: Sequence[SearchResult], semantic: Sequence[SearchResult], k: int
    ) -> list[SearchResult]:
        by_id: dict[str, SearchResult] = {}
        self._fold(by_id, keyword, self.keyword_weight, "keyword_score")
        self._fold(by_id, semantic, self.semantic_weight, "semantic_score")
        # sorted() is stable: ties keep first-insertion order
        out = sorted(by_id.values(), key=lambda r: r.score, reverse=True)
        return out[:k]

    @staticmethod
    def _fold(
        by_id: dict[str, SearchResult], results: Sequence[SearchResult], weight: float, label: str
    ) -> None:
        for r in results:
            weighted = r.score * weight
            existing = by_id.get(r.id)
            if existing is None:
                by_id[r.id] = SearchResult(
                    doc=r.doc, score=weighted, metadata={**r.metadata, label: r.score}
                )
            else:
                by_id[r.id] = SearchResult(
                    doc=existing.doc,
                    score=(existing.score + weighted) / (1 + weight),
                    metadata={**existing.metadata, label: r.score},
                )
