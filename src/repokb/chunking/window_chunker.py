from __future__ import annotations

from dataclasses import dataclass

from .base import Chunked, window_spans

@dataclass
class WindowChunker:
    """Fallback: non-overlapping windows that end on line boundaries."""
    max_chunk_size: int = 3000

    def chunk(self, text: str) -> list[Chunked]:
        return window_spans(text, 0, len(text), self.max_chunk_size, "window")
