"""Assemble, validate, persist and read the knowledge-base artifact.

The artifact is written in two equivalent encodings: `kb.min.json` (compact)
and `kb.json` (indented). Readers prefer the compact one and fall back to the
readable one. Both files are written only after validation and the size check
pass, so a failed build leaves nothing partial behind.
"""
from __future__ import annotations

import json
import logging
import os
import tempfile
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Sequence

from ..config import MAX_ARTIFACT_BYTES, SOURCE_SCOPES
from ..errors import StructuralError, UnavailableError
from ..models import Document, KBIndex, KBMeta, KnowledgeBase, RepoPRStats
from .text_index import TextIndex

logger = logging.getLogger(__name__)

KB_FILENAME = "kb.json"
KB_MIN_FILENAME = "kb.min.json"


def encode_compact(kb: KnowledgeBase) -> str:
    return json.dumps(kb.to_dict(), separators=(",", ":"), ensure_ascii=False)


def encode_readable(kb: KnowledgeBase) -> str:
    return json.dumps(kb.to_dict(), indent=2, ensure_ascii=False)


def assemble_artifact(
    docs: Sequence[Document],
    vectors: Optional[dict[str, list[float]]] = None,
    *,
    source_scope: str = "private-local",
    version: str = "unknown",
    pr_stats: Optional[list[RepoPRStats]] = None,
    generated_at: Optional[str] = None,
) -> tuple[KnowledgeBase, TextIndex]:
    """Build the text index and wrap everything into a validated artifact.

    Documents without a vector are simply absent from the vector map. A vector
    for an id that is not in `docs` is a structural error.
    """
    docs = list(docs)
    text_index = TextIndex.build(docs)
    meta = KBMeta(
        generated_at=generated_at or datetime.now(timezone.utc).isoformat(),
        source_scope=source_scope,
        repo_count=len({d.source_key for d in docs}),
        doc_count=len(docs),
        version=version,
        pr_stats=pr_stats or None,
    )
    index = KBIndex(text_index=text_index.serialize(), embeddings=dict(vectors) if vectors else None)
    kb = KnowledgeBase(meta=meta, docs=docs, index=index)
    validate_artifact(kb, text_index)
    logger.info(f"Assembled artifact: {len(docs)} documents, {len(vectors or {})} vectors")
    return kb, text_index


def _doc_problems(idx: int, doc: Document) -> list[str]:
    problems = []
    if not doc.id:
        problems.append(f"Doc {idx}: missing id")
    if not doc.source_key:
        problems.append(f"Doc {idx}: missing repo")
    if not doc.path:
        problems.append(f"Doc {idx}: missing path")
    if not doc.language:
        problems.append(f"Doc {idx}: missing lang")
    if doc.start_line < 1 or doc.end_line < doc.start_line:
        problems.append(f"Doc {idx}: invalid loc {doc.start_line}-{doc.end_line}")
    if not doc.content_excerpt.strip():
        problems.append(f"Doc {idx}: missing contentExcerpt")
    if not doc.content_hash:
        problems.append(f"Doc {idx}: missing hash")
    return problems


def validate_artifact(kb: KnowledgeBase, text_index: Optional[TextIndex] = None) -> TextIndex:
    """Check referential integrity; raise StructuralError listing every problem.

    Returns the text index (loaded from the blob when not supplied).
    """
    problems: list[str] = []
    meta = kb.meta

    if not meta.generated_at:
        problems.append("Missing meta.generatedAt")
    if meta.source_scope not in SOURCE_SCOPES:
        problems.append(f"Invalid meta.sourceScope: {meta.source_scope!r}")
    if meta.repo_count < 0:
        problems.append("Invalid meta.repoCount")
    if meta.doc_count != len(kb.docs):
        problems.append(f"meta.docCount ({meta.doc_count}) doesn't match docs length ({len(kb.docs)})")

    for idx, doc in enumerate(kb.docs):
        problems.extend(_doc_problems(idx, doc))

    ids = [d.id for d in kb.docs]
    dupes = sorted(i for i, n in Counter(ids).items() if n > 1)
    if dupes:
        problems.append(f"Duplicate document ids: {', '.join(dupes[:10])}")
    id_set = set(ids)

    if text_index is None:
        if not kb.index.text_index:
            problems.append("Missing index.textIndex")
        else:
            try:
                text_index = TextIndex.load(kb.index.text_index)
            except Exception as e:
                problems.append(f"Unreadable index.textIndex: {e}")

    if text_index is not None:
        indexed = text_index.doc_ids()
        indexed_set = set(indexed)
        if len(indexed) != len(indexed_set):
            problems.append("Text index contains duplicate document ids")
        missing = id_set - indexed_set
        extra = indexed_set - id_set
        if missing:
            problems.append(f"{len(missing)} document(s) missing from text index")
        if extra:
            problems.append(f"Text index references {len(extra)} unknown document id(s)")

    vectors = kb.index.embeddings or {}
    unknown = [k for k in vectors if k not in id_set]
    if unknown:
        problems.append(f"Vector map references {len(unknown)} unknown document id(s)")
    dims = {len(v) for v in vectors.values()}
    if 0 in dims:
        problems.append("Vector map contains empty vectors")
    if len(dims) > 1:
        problems.append(f"Vector map has inconsistent dimensions: {sorted(dims)}")

    if problems:
        raise StructuralError("Knowledge base validation failed", problems)
    assert text_index is not None
    return text_index


def _stage(target: Path, content: str) -> str:
    """Write `content` to a temp file beside `target` and return its path."""
    fd, tmp = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
    except BaseException:
        os.unlink(tmp)
        raise
    return tmp


def _atomic_write_all(files: Sequence[tuple[Path, str]]) -> None:
    """Stage every file before any of them replaces its target.

    A failure while staging leaves every target as it was.
    """
    staged: list[tuple[str, Path]] = []
    try:
        for target, content in files:
            staged.append((_stage(target, content), target))
        for tmp, target in staged:
            os.replace(tmp, target)
    finally:
        for tmp, _ in staged:
            if os.path.exists(tmp):
                os.unlink(tmp)


def write_artifact(kb: KnowledgeBase, output_dir: str | Path, max_bytes: int = MAX_ARTIFACT_BYTES) -> int:
    """Validate, enforce the size ceiling and write both encodings.

    Returns the compact size in bytes.
    """
    validate_artifact(kb)

    compact = encode_compact(kb)
    size = len(compact.encode("utf-8"))
    if size > max_bytes:
        raise StructuralError(
            f"KB size ({size / 1024 / 1024:.2f}MB) exceeds limit ({max_bytes / 1024 / 1024:.2f}MB)"
        )
    logger.info(f"KB size: {size / 1024 / 1024:.2f}MB")

    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)
    readable = encode_readable(kb)
    _atomic_write_all([(out / KB_MIN_FILENAME, compact), (out / KB_FILENAME, readable)])
    logger.info(f"Written {out / KB_MIN_FILENAME} and {out / KB_FILENAME}")
    return size


def read_artifact(path: str | Path) -> KnowledgeBase:
    """Parse one encoding. Raises OSError if unreadable, StructuralError if malformed."""
    raw = Path(path).read_text(encoding="utf-8")
    try:
        data: Any = json.loads(raw)
    except json.JSONDecodeError as e:
        raise StructuralError(f"Invalid JSON in {path}: {e}") from e
    if not isinstance(data, dict) or not all(k in data for k in ("meta", "docs", "index")):
        raise StructuralError(f"Invalid KB structure in {path}")
    try:
        return KnowledgeBase.from_dict(data)
    except (KeyError, TypeError, ValueError) as e:
        raise StructuralError(f"Invalid KB structure in {path}: {e}") from e


def load_artifact(output_dir: str | Path) -> KnowledgeBase:
    """Load the compact encoding, falling back to the readable one."""
    out = Path(output_dir)
    compact_path = out / KB_MIN_FILENAME
    readable_path = out / KB_FILENAME

    if not compact_path.exists() and not readable_path.exists():
        raise UnavailableError(f"No knowledge base found in {out}; run a build first")

    try:
        return read_artifact(compact_path)
    except (OSError, StructuralError) as e:
        logger.warning(f"Failed to load {compact_path}, falling back to {readable_path}: {e}")

    try:
        return read_artifact(readable_path)
    except OSError as e:
        raise UnavailableError(f"Failed to load knowledge base from {out}: {e}") from e
