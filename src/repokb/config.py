from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
import os
import tomllib

MAX_ARTIFACT_BYTES = 20 * 1024 * 1024
SOURCE_SCOPES = ("public-only", "private-local")
SEARCH_MODES = ("keyword", "semantic", "hybrid")

def _expand(p: str) -> str:
    return os.path.expandvars(os.path.expanduser(p))

@dataclass(frozen=True)
class RepoSource:
    """An already-acquired checkout to index, keyed by its logical name."""

    name: str   # e.g. "owner/repo"
    root: Path

    def __post_init__(self):
        if isinstance(self.root, str):
            object.__setattr__(self, 'root', Path(_expand(self.root)))

@dataclass(frozen=True)
class KBConfig:
    """Build and retrieval settings for one knowledge base.

    Loaded from `repokb.toml` by `from_toml`, which rejects unknown scopes and
    out-of-range sizes before any build starts.
    """

    output_dir: Path
    repos: list[RepoSource] = field(default_factory=list)
    source_scope: str = "private-local"

    def __post_init__(self):
        """Convert string paths to Path objects and expand ~ and environment variables."""
        if isinstance(self.output_dir, str):
            object.__setattr__(self, 'output_dir', Path(_expand(self.output_dir)))
        if isinstance(self.crossref_file, str):
            object.__setattr__(self, 'crossref_file', Path(_expand(self.crossref_file)))

    # Chunking
    max_chunk_size: int = 3000
    min_chunk_size: int = 100

    # Redaction (empirical constants, see DESIGN.md)
    entropy_threshold: float = 3.5
    min_secret_length: int = 16

    # Embeddings
    generate_embeddings: bool = False
    embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2"
    embedding_device: str = "cpu"  # cpu|cuda|mps
    embedding_batch_size: int = 10
    embedding_workers: int = 2
    embedding_truncate_chars: int = 512  # same cap at build and query time
    offline_mode: bool = False

    # Retrieval
    default_limit: int = 20
    default_mode: str = "keyword"

    # Build
    build_workers: int = 8
    max_artifact_bytes: int = MAX_ARTIFACT_BYTES
    crossref_file: Path | None = None

    @staticmethod
    def from_toml(path: str | Path) -> "KBConfig":
        path = Path(path)
        data = tomllib.loads(path.read_text(encoding="utf-8"))
        sources = data.get("sources", {})
        output = data.get("output", {})
        chunking = data.get("chunking", {})
        red = data.get("redaction", {})
        emb = data.get("embeddings", {})
        ret = data.get("retrieval", {})
        build = data.get("build", {})

        base = path.parent

        def _resolve(p: str) -> Path:
            q = Path(_expand(p))
            return q if q.is_absolute() else (base / q).resolve()

        repos = []
        for entry in sources.get("repo", []):
            if "path" not in entry:
                raise ValueError("Each [[sources.repo]] entry needs a 'path'.")
            root = _resolve(entry["path"])
            repos.append(RepoSource(name=entry.get("name") or root.name, root=root))

        source_scope = sources.get("scope", "private-local")
        if source_scope not in SOURCE_SCOPES:
            raise ValueError(f"Invalid sources.scope: {source_scope}. Must be one of {SOURCE_SCOPES}.")

        output_dir = _resolve(output.get("dir", "dist"))

        max_chunk_size = int(chunking.get("max_chunk_size", 3000))
        min_chunk_size = int(chunking.get("min_chunk_size", 100))
        if max_chunk_size < 100 or max_chunk_size > 50000:
            raise ValueError(f"Invalid max_chunk_size: {max_chunk_size}. Must be between 100 and 50000.")
        if min_chunk_size < 1 or min_chunk_size >= max_chunk_size:
            raise ValueError(f"Invalid min_chunk_size: {min_chunk_size}. Must be between 1 and max_chunk_size.")

        entropy_threshold = float(red.get("entropy_threshold", 3.5))
        min_secret_length = int(red.get("min_token_length", 16))
        if entropy_threshold <= 0:
            raise ValueError(f"Invalid entropy_threshold: {entropy_threshold}. Must be positive.")
        if min_secret_length < 1:
            raise ValueError(f"Invalid min_token_length: {min_secret_length}. Must be at least 1.")

        batch_size = int(emb.get("batch_size", 10))
        if batch_size <= 0 or batch_size > 10000:
            raise ValueError(f"Invalid batch_size: {batch_size}. Must be between 1 and 10000.")

        device = emb.get("device", "cpu")
        valid_devices = ("cpu", "cuda", "mps")
        if device not in valid_devices:
            raise ValueError(f"Invalid device: {device}. Must be one of {valid_devices}.")

        embedding_workers = int(emb.get("workers", 2))
        if embedding_workers <= 0 or embedding_workers > 64:
            raise ValueError(f"Invalid embeddings.workers: {embedding_workers}. Must be between 1 and 64.")

        truncate_chars = int(emb.get("truncate_chars", 512))
        if truncate_chars <= 0:
            raise ValueError(f"Invalid truncate_chars: {truncate_chars}. Must be positive.")

        # Environment variable takes precedence if explicitly set
        offline_mode_env = os.environ.get("HF_OFFLINE_MODE")
        if offline_mode_env is not None:
            offline_mode = offline_mode_env.lower() in ("1", "true", "yes")
        else:
            offline_mode = bool(emb.get("offline_mode", False))

        # SIDE EFFECT: affects the entire Python process.
        if offline_mode:
            os.environ.setdefault("HF_HUB_OFFLINE", "1")
            os.environ.setdefault("TRANSFORMERS_OFFLINE", "1")

        default_limit = int(ret.get("limit", 20))
        if default_limit <= 0 or default_limit > 1000:
            raise ValueError(f"Invalid limit: {default_limit}. Must be between 1 and 1000.")
        default_mode = ret.get("mode", "keyword")
        if default_mode not in SEARCH_MODES:
            raise ValueError(f"Invalid mode: {default_mode}. Must be one of {SEARCH_MODES}.")

        build_workers = int(build.get("workers", 8))
        if build_workers <= 0 or build_workers > 256:
            raise ValueError(f"Invalid build.workers: {build_workers}. Must be between 1 and 256.")

        max_artifact_bytes = int(build.get("max_artifact_mb", 20)) * 1024 * 1024
        if max_artifact_bytes <= 0:
            raise ValueError("Invalid build.max_artifact_mb. Must be positive.")

        crossref_file = build.get("crossref_file")

        return KBConfig(
            output_dir=output_dir,
            repos=repos,
            source_scope=source_scope,
            max_chunk_size=max_chunk_size,
            min_chunk_size=min_chunk_size,
            entropy_threshold=entropy_threshold,
            min_secret_length=min_secret_length,
            generate_embeddings=bool(emb.get("generate", False)),
            embedding_model=emb.get("model", "sentence-transformers/all-MiniLM-L6-v2"),
            embedding_device=device,
            embedding_batch_size=batch_size,
            embedding_workers=embedding_workers,
            embedding_truncate_chars=truncate_chars,
            offline_mode=offline_mode,
            default_limit=default_limit,
            default_mode=default_mode,
            build_workers=build_workers,
            max_artifact_bytes=max_artifact_bytes,
            crossref_file=_resolve(crossref_file) if crossref_file else None,
        )
