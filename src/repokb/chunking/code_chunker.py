from __future__ import annotations

import re
from dataclasses import dataclass, field

from .base import Chunked, span, window_spans

BRACE_DECLARATION_RES = [
    re.compile(r"^(export\s+)?(async\s+)?function\s+\w+"),
    re.compile(r"^(export\s+)?class\s+\w+"),
    re.compile(r"^(export\s+)?const\s+\w+\s*=\s*(async\s+)?\("),
]

PYTHON_DECLARATION_RES = [
    re.compile(r"^(async\s+)?def\s+\w+"),
    re.compile(r"^class\s+\w+"),
]

@dataclass
class CodeChunker:
    """Chunk source code at declaration boundaries using brace depth.

    This is a line-and-brace heuristic, not a parser: braces inside string or
    comment literals are counted like any other, which can shift boundaries.

    A boundary opens on a line starting a declaration and closes after the
    line where depth returns to zero and which contains a `}`. Segments longer
    than `max_chunk_size` are sliced into line-aligned windows.

    `match_stripped` selects whether declarations are matched against the
    stripped line (brace languages, matching nested declarations too) or the
    raw line (indentation-scoped languages, top level only).
    """

    max_chunk_size: int = 3000
    declarations: list[re.Pattern[str]] = field(default_factory=lambda: list(BRACE_DECLARATION_RES))
    match_stripped: bool = True

    def boundaries(self, lines: list[str]) -> list[int]:
        """Line indexes where segments start, with len(lines) as the sentinel."""
        bounds = [0]
        depth = 0
        in_declaration = False

        for i, line in enumerate(lines):
            trimmed = line.strip()
            depth += line.count("{")
            depth -= line.count("}")

            candidate = trimmed if self.match_stripped else line
            if any(p.match(candidate) for p in self.declarations):
                if bounds[-1] != i:
                    bounds.append(i)
                in_declaration = True

            if in_declaration and depth == 0 and "}" in trimmed:
                bounds.append(i + 1)
                in_declaration = False

        bounds.append(len(lines))
        return bounds

    def chunk(self, text: str) -> list[Chunked]:
        lines = text.split("\n")
        starts: list[int] = []
        offset = 0
        for line in lines:
            starts.append(offset)
            offset += len(line) + 1

        out: list[Chunked] = []
        bounds = self.boundaries(lines)
        for first, stop in zip(bounds, bounds[1:]):
            if stop <= first:
                continue
            seg_start = starts[first]
            seg_end = starts[stop - 1] + len(lines[stop - 1])
            if seg_end - seg_start > self.max_chunk_size:
                out.extend(window_spans(text, seg_start, seg_end, self.max_chunk_size, "code_window"))
            else:
                out.append(span(text, seg_start, seg_end, "code_block"))
        return out

def python_chunker(max_chunk_size: int = 3000) -> CodeChunker:
    return CodeChunker(
        max_chunk_size=max_chunk_size,
        declarations=list(PYTHON_DECLARATION_RES),
        match_stripped=False,
    )
