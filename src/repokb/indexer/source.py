"""Source acquisition: enumerate indexable files of already-acquired checkouts."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from fnmatch import fnmatch
from pathlib import Path
from typing import Protocol, Sequence

from ..config import RepoSource
from ..errors import TransientError

logger = logging.getLogger(__name__)

DEFAULT_DENYLIST = (
    ".env",
    "*.pem",
    "*.key",
    "**/credentials/**",
    "**/secrets/**",
    "**/node_modules/**",
    "**/dist/**",
    "**/build/**",
    "**/.git/**",
    "**/.next/**",
    "**/.cache/**",
    "**/coverage/**",
    "**/*.log",
    "**/package-lock.json",
    "**/yarn.lock",
    "**/pnpm-lock.yaml",
)

ALLOWED_EXTENSIONS = (
    ".md", ".txt", ".ts", ".tsx", ".js", ".jsx", ".json", ".yml", ".yaml", ".sql", ".py",
)


@dataclass(frozen=True)
class SourceManifest:
    """One acquired source unit: a repo checkout and the files to index from it."""
    repo: str
    root: Path
    commit: str
    files: tuple[str, ...] = ()  # paths relative to root, forward slashes


class SourceProvider(Protocol):
    """Acquires source units one at a time so a failing unit can be skipped."""

    def units(self) -> Sequence[str]:
        ...

    def acquire(self, unit: str) -> SourceManifest:
        """Raise TransientError when this unit cannot be acquired."""
        ...


def matches_pattern(rel_path: str, pattern: str) -> bool:
    """Glob match in the spirit of .gitignore.

    - "**/x" matches x at any depth, including the root
    - "dir/**" and "dir/" match everything under dir
    - a pattern without "/" is matched against every path component
    """
    rel_path = rel_path.replace("\\", "/")
    pattern = pattern.replace("\\", "/").lstrip("/")
    if not pattern:
        return False

    if pattern.endswith("/"):
        pattern = pattern + "**"

    if pattern.startswith("**/"):
        suffix = pattern[3:]
        parts = rel_path.split("/")
        return any(matches_pattern("/".join(parts[i:]), suffix) for i in range(len(parts)))

    if pattern.endswith("/**"):
        prefix = pattern[:-3]
        parts = rel_path.split("/")
        # prefix may itself be a glob: test every leading directory run
        return any(fnmatch("/".join(parts[:i]), prefix) for i in range(1, len(parts)))

    if "/" not in pattern:
        return any(fnmatch(part, pattern) for part in rel_path.split("/"))

    return fnmatch(rel_path, pattern)


def _read_patterns(path: Path) -> list[str]:
    if not path.exists():
        return []
    lines = path.read_text(encoding="utf-8", errors="replace").splitlines()
    return [ln.strip() for ln in lines if ln.strip() and not ln.strip().startswith("#")]


@dataclass
class IgnoreRules:
    denylist: list[str] = field(default_factory=lambda: list(DEFAULT_DENYLIST))
    allowlist: list[str] = field(default_factory=list)
    extensions: tuple[str, ...] = ALLOWED_EXTENSIONS

    @staticmethod
    def for_root(root: Path) -> "IgnoreRules":
        """Defaults plus `.ragignore` (with `!pattern` allowlist) and `.gitignore`."""
        rules = IgnoreRules()
        for line in _read_patterns(root / ".ragignore"):
            if line.startswith("!"):
                rules.allowlist.append(line[1:])
            else:
                rules.denylist.append(line)
        for line in _read_patterns(root / ".gitignore"):
            # gitignore negations are not honored; only .ragignore can re-include
            if not line.startswith("!") and line not in rules.denylist:
                rules.denylist.append(line)
        return rules

    def include(self, rel_path: str) -> bool:
        if any(matches_pattern(rel_path, p) for p in self.allowlist):
            return True
        if any(matches_pattern(rel_path, p) for p in self.denylist):
            return False
        return Path(rel_path).suffix.lower() in self.extensions


def read_commit(root: Path) -> str:
    """Resolve HEAD from the checkout's .git directory without invoking git."""
    git_dir = root / ".git"
    head = git_dir / "HEAD"
    if not head.is_file():
        return "unknown"
    try:
        ref = head.read_text(encoding="utf-8").strip()
        if not ref.startswith("ref:"):
            return ref or "unknown"
        ref_name = ref.split(":", 1)[1].strip()
        ref_file = git_dir / ref_name
        if ref_file.is_file():
            return ref_file.read_text(encoding="utf-8").strip() or "unknown"
        packed = git_dir / "packed-refs"
        if packed.is_file():
            for line in packed.read_text(encoding="utf-8").splitlines():
                parts = line.strip().split(" ", 1)
                if len(parts) == 2 and parts[1] == ref_name:
                    return parts[0]
    except OSError as e:
        logger.debug(f"Could not read commit for {root}: {e}")
    return "unknown"


@dataclass
class LocalSourceProvider:
    """Index checkouts that already exist on disk (no cloning, no network)."""
    sources: list[RepoSource]

    def scan_files(self, root: Path, rules: IgnoreRules | None = None) -> list[str]:
        rules = rules or IgnoreRules.for_root(root)
        files: list[str] = []
        for p in sorted(root.rglob("*")):
            if not p.is_file():
                continue
            rel_path = p.relative_to(root).as_posix()
            if rules.include(rel_path):
                files.append(rel_path)
        return files

    def manifest(self, source: RepoSource) -> SourceManifest:
        root = source.root
        if not root.is_dir():
            raise TransientError(f"Source {source.name} not found at {root}")
        try:
            files = self.scan_files(root)
        except OSError as e:
            raise TransientError(f"Failed to scan {source.name} at {root}: {e}") from e
        return SourceManifest(repo=source.name, root=root, commit=read_commit(root), files=tuple(files))

    def units(self) -> list[str]:
        return [s.name for s in self.sources]

    def acquire(self, unit: str) -> SourceManifest:
        for source in self.sources:
            if source.name == unit:
                return self.manifest(source)
        raise TransientError(f"Unknown source: {unit}")
