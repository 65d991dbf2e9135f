"""Turn one file's text into bounded, line-addressed Documents."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from ..hashing import content_hash, document_id
from ..models import Document
from ..utils import language_from_path
from .base import ChunkerRegistry, extract_title, window_spans
from .code_chunker import CodeChunker, python_chunker
from .markdown_chunker import MarkdownChunker
from .window_chunker import WindowChunker

STRUCTURED_TEXT_LANGUAGES = ("markdown",)
STRUCTURED_CODE_LANGUAGES = ("typescript", "javascript", "python")

@dataclass(frozen=True)
class ChunkingOptions:
    max_chunk_size: int = 3000
    min_chunk_size: int = 100

def build_registry(options: ChunkingOptions) -> ChunkerRegistry:
    registry = ChunkerRegistry(fallback=WindowChunker(max_chunk_size=options.max_chunk_size))
    registry.register("markdown", MarkdownChunker(
        max_chunk_size=options.max_chunk_size,
        min_chunk_size=options.min_chunk_size,
    ))
    registry.register("typescript", CodeChunker(max_chunk_size=options.max_chunk_size))
    registry.register("javascript", CodeChunker(max_chunk_size=options.max_chunk_size))
    registry.register("python", python_chunker(max_chunk_size=options.max_chunk_size))
    return registry

def _structure(language: str) -> str:
    if language in STRUCTURED_TEXT_LANGUAGES:
        return "text"
    if language in STRUCTURED_CODE_LANGUAGES:
        return "code"
    return "plain"

def _trimmed_spans(text: str, spans: Sequence[tuple[int, int]]) -> list[tuple[int, int]]:
    out = []
    for start, end in spans:
        piece = text[start:end]
        stripped = piece.strip()
        if not stripped:
            continue
        lead = len(piece) - len(piece.lstrip())
        out.append((start + lead, start + lead + len(stripped)))
    return out

def _pack(text: str, spans: list[tuple[int, int]], options: ChunkingOptions) -> list[tuple[int, int]]:
    """Fold spans under min_chunk_size forward so only the last chunk can be short.

    A short span absorbs its successor when the result fits. When it does not,
    the two are re-windowed together from the short span's start.
    """
    out: list[tuple[int, int]] = []
    buf: tuple[int, int] | None = None
    for start, end in spans:
        if buf is None:
            buf = (start, end)
        elif buf[1] - buf[0] >= options.min_chunk_size:
            out.append(buf)
            buf = (start, end)
        elif end - buf[0] <= options.max_chunk_size:
            buf = (buf[0], end)
        else:
            windows = window_spans(
                text, buf[0], end, options.max_chunk_size, "window", options.min_chunk_size,
            )
            pieces = _trimmed_spans(text, [(w.start, w.end) for w in windows])
            out.extend(pieces[:-1])
            buf = pieces[-1]
    if buf is not None:
        out.append(buf)
    return out

def chunk_file(
    text: str,
    source_key: str,
    path: str,
    language: str | None = None,
    options: ChunkingOptions | None = None,
    tags: Sequence[str] = (),
    registry: ChunkerRegistry | None = None,
) -> list[Document]:
    """Chunk `text` (the full, already redacted file) into Documents.

    Every excerpt is a contiguous slice of `text`, so line numbers come straight
    from character offsets. Consecutive excerpts share a line only when that
    line alone is longer than `max_chunk_size`.
    """
    options = options or ChunkingOptions()
    language = language or language_from_path(path)
    registry = registry or build_registry(options)

    chunked = registry.get(language).chunk(text)
    spans = _trimmed_spans(text, [(c.start, c.end) for c in chunked])
    spans = _pack(text, spans, options)

    structure = _structure(language)
    docs: list[Document] = []
    for seq, (start, end) in enumerate(spans):
        excerpt = text[start:end]
        start_line = text.count("\n", 0, start) + 1
        docs.append(Document(
            id=document_id(source_key, path, seq),
            source_key=source_key,
            path=path,
            language=language,
            start_line=start_line,
            end_line=start_line + excerpt.count("\n"),
            title=extract_title(excerpt, structure),
            content_excerpt=excerpt,
            content_hash=content_hash(excerpt),
            tags=tuple(tags),
        ))
    return docs
