from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Protocol

TITLE_WIDTH = 80
UNTITLED = "Untitled"

HEADING_LINE_RE = re.compile(r"^(#+)\s+(.+)$")
_FIRST_HEADING_RE = re.compile(r"^#+\s+(.+)$", re.MULTILINE)

# Declaration names, in priority order; the first pattern that matches wins.
DECLARATION_NAME_RES = [
    re.compile(r"(?:export\s+)?(?:async\s+)?function\s+(\w+)"),
    re.compile(r"(?:export\s+)?class\s+(\w+)"),
    re.compile(r"(?:export\s+)?const\s+(\w+)\s*=\s*(?:async\s+)?\("),
    re.compile(r"^(?:async\s+)?def\s+(\w+)", re.MULTILINE),
]

@dataclass(frozen=True)
class Chunked:
    """A span of the source text: `text == source[start:end]`."""
    start: int
    end: int
    text: str
    anchor_type: str

    def __len__(self) -> int:
        return self.end - self.start

class Chunker(Protocol):
    def chunk(self, text: str) -> list[Chunked]:
        ...

class ChunkerRegistry:
    def __init__(self, fallback: Chunker) -> None:
        self._by_language: dict[str, Chunker] = {}
        self.fallback = fallback

    def register(self, language: str, chunker: Chunker) -> None:
        self._by_language[language] = chunker

    def get(self, language: str) -> Chunker:
        return self._by_language.get(language, self.fallback)

def span(source: str, start: int, end: int, anchor_type: str) -> Chunked:
    return Chunked(start=start, end=end, text=source[start:end], anchor_type=anchor_type)

def window_cut(source: str, pos: int, size: int, min_size: int = 1) -> tuple[int, int]:
    """End of a window opened at `pos`, and the offset the next window opens at.

    The window ends before the last newline within `size` characters. It is
    cut mid-line at `pos + size` only when no such newline leaves at least
    `min_size` non-blank characters in the window.
    """
    limit = pos + size
    nl = source.rfind("\n", pos, limit + 1)
    if nl > pos and len(source[pos:nl].strip()) >= min_size:
        return nl, nl + 1
    return limit, limit

def window_spans(
    source: str,
    start: int,
    end: int,
    size: int,
    anchor_type: str,
    min_size: int = 1,
) -> list[Chunked]:
    """Non-overlapping windows of at most `size` characters over source[start:end].

    Windows end on line boundaries, so consecutive windows share a line only
    when that line alone is longer than `size`.
    """
    out: list[Chunked] = []
    pos = start
    while end - pos > size:
        cut, pos_next = window_cut(source, pos, size, min_size)
        out.append(span(source, pos, cut, anchor_type))
        pos = pos_next
    if pos < end:
        out.append(span(source, pos, end, anchor_type))
    return out

def extract_title(content: str, structure: str) -> str:
    """Title by priority: heading, declaration name, first line, placeholder."""
    if structure == "text":
        m = _FIRST_HEADING_RE.search(content)
        if m:
            return m.group(1).strip()
    elif structure == "code":
        for pattern in DECLARATION_NAME_RES:
            m = pattern.search(content)
            if m:
                return m.group(1)

    for line in content.split("\n"):
        if line.strip():
            return line.strip()[:TITLE_WIDTH]
    return UNTITLED
