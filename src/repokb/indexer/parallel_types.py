"""Data classes for the parallel build pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from ..models import Document
from ..security.redactor import RedactionResult


@dataclass
class FileTask:
    """One file queued for redaction and chunking."""

    order: int
    repo: str
    root: Path
    rel_path: str


@dataclass
class FileResult:
    """Result from a per-file worker; `error` is set instead of raising."""

    order: int
    repo: str
    rel_path: str
    docs: list[Document] = field(default_factory=list)
    redaction: RedactionResult | None = None
    error: str | None = None


@dataclass
class BuildStats:
    """Statistics from a knowledge-base build."""

    units_acquired: int = 0
    units_failed: int = 0
    files_scanned: int = 0
    files_indexed: int = 0
    files_failed: int = 0
    documents_created: int = 0
    embeddings_created: int = 0
    files_with_secrets: int = 0
    artifact_bytes: int = 0
    elapsed_seconds: float = 0.0
    output_dir: Path | None = None
