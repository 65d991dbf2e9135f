from __future__ import annotations

from dataclasses import dataclass

from .base import Chunked, HEADING_LINE_RE, span, window_cut

@dataclass
class MarkdownChunker:
    """Chunk heading-delimited prose.

    Lines accumulate into the open chunk. A heading closes the open chunk only
    if it already meets `min_chunk_size`; otherwise the heading joins it. An
    open chunk that grows past `max_chunk_size` is split at the last blank line
    that leaves at least `min_chunk_size` behind. Without one it is cut at
    the last line break that fits, and mid-line only when no line break does.
    """

    max_chunk_size: int = 3000
    min_chunk_size: int = 100

    def chunk(self, text: str) -> list[Chunked]:
        out: list[Chunked] = []
        start: int | None = None  # offset of the open chunk
        end = 0                   # end offset of its last line (newline excluded)
        blanks: list[int] = []    # offsets of blank lines inside the open chunk

        offset = 0
        for line in text.split("\n"):
            line_start = offset
            line_end = offset + len(line)
            offset = line_end + 1

            if start is not None and HEADING_LINE_RE.match(line):
                if end - start >= self.min_chunk_size:
                    out.append(span(text, start, end, "md_heading"))
                    start = None
                    blanks = []

            if start is None:
                start = line_start
            elif not line.strip():
                blanks.append(line_start)
            end = line_end

            while end - start > self.max_chunk_size:
                cut = self._split_point(start, blanks)
                if cut is not None:
                    out.append(span(text, start, cut - 1, "md_split"))
                    start = cut
                else:
                    piece_end, start_next = window_cut(text, start, self.max_chunk_size, self.min_chunk_size)
                    out.append(span(text, start, piece_end, "md_split"))
                    start = start_next
                blanks = [b for b in blanks if b > start]

        if start is not None and end > start:
            out.append(span(text, start, end, "md_heading"))
        return out

    def _split_point(self, start: int, blanks: list[int]) -> int | None:
        """Offset of the blank line to split before, or None for a hard cut."""
        for b in reversed(blanks):
            size = b - 1 - start
            if self.min_chunk_size <= size <= self.max_chunk_size:
                return b
        return None
