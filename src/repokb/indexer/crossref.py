"""Pull-request cross references attached to documents after chunking.

The remote host that actually serves pull requests is an external
collaborator; the build only sees it through `CrossReferenceProvider`.
`StaticCrossReferenceProvider` reads a JSON export for local builds:

    {
      "owner/repo": {
        "pullRequests": [
          {"number": 7, "title": "...", "state": "open", "createdAt": "...",
           "updatedAt": "...", "url": "...", "files": ["docs/guide.md"]}
        ]
      }
    }
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Protocol, Sequence

from ..models import PullRequestInfo, RepoPRStats

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class CrossReferenceProvider(Protocol):
    def pull_requests(self, repo: str) -> list[PullRequestInfo]:
        ...

    def files_to_pull_requests(self, repo: str) -> dict[str, list[PullRequestInfo]]:
        ...


def _parse_time(value: str) -> datetime:
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (ValueError, AttributeError):
        return _EPOCH
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def pick_latest(prs: Sequence[PullRequestInfo]) -> Optional[PullRequestInfo]:
    """Most recently updated pull request; the first one wins a tie."""
    latest: Optional[PullRequestInfo] = None
    for pr in prs:
        if latest is None or _parse_time(pr.updated_at) > _parse_time(latest.updated_at):
            latest = pr
    return latest


def pr_stats(repo: str, prs: Sequence[PullRequestInfo]) -> RepoPRStats:
    return RepoPRStats(
        repo=repo,
        total_prs=len(prs),
        open_prs=sum(1 for p in prs if p.state == "open"),
        closed_prs=sum(1 for p in prs if p.state == "closed"),
        merged_prs=sum(1 for p in prs if p.state == "merged"),
    )


def prs_for_path(mapping: dict[str, list[PullRequestInfo]], path: str) -> list[PullRequestInfo]:
    """Pull requests recorded for `path`; keys may be rooted differently than the path."""
    path = path.lstrip("/")
    if path in mapping:
        return mapping[path]
    for key, prs in mapping.items():
        key_norm = key.lstrip("/")
        if key_norm.endswith("/" + path) or path.endswith("/" + key_norm):
            return prs
    return []


@dataclass
class StaticCrossReferenceProvider:
    data: dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def from_file(path: str | Path) -> "StaticCrossReferenceProvider":
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        if not isinstance(raw, dict):
            raise ValueError(f"Cross-reference file must contain a JSON object: {path}")
        return StaticCrossReferenceProvider(data=raw)

    def _entries(self, repo: str) -> list[dict[str, Any]]:
        entry = self.data.get(repo) or {}
        return list(entry.get("pullRequests") or [])

    def pull_requests(self, repo: str) -> list[PullRequestInfo]:
        return [PullRequestInfo.from_dict(e) for e in self._entries(repo)]

    def files_to_pull_requests(self, repo: str) -> dict[str, list[PullRequestInfo]]:
        mapping: dict[str, list[PullRequestInfo]] = {}
        for e in self._entries(repo):
            pr = PullRequestInfo.from_dict(e)
            files = e.get("files") or []
            if "changedFilesCount" not in e:
                pr = PullRequestInfo(**{**pr.__dict__, "changed_files_count": len(files)})
            for f in files:
                mapping.setdefault(str(f).lstrip("/"), []).append(pr)
        return mapping


@dataclass
class RepoCrossReferences:
    """Per-repo lookups resolved once before files are processed."""
    stats: Optional[RepoPRStats] = None
    by_path: dict[str, list[PullRequestInfo]] = field(default_factory=dict)

    def latest_for(self, path: str) -> Optional[PullRequestInfo]:
        return pick_latest(prs_for_path(self.by_path, path))


def resolve(provider: Optional[CrossReferenceProvider], repo: str) -> RepoCrossReferences:
    """Fetch stats and file mapping for `repo`; any lookup failure leaves the field unset."""
    if provider is None:
        return RepoCrossReferences()
    refs = RepoCrossReferences()
    try:
        refs.stats = pr_stats(repo, provider.pull_requests(repo))
    except Exception as e:
        logger.warning(f"Pull request lookup failed for {repo}: {e}")
    try:
        refs.by_path = provider.files_to_pull_requests(repo)
    except Exception as e:
        logger.warning(f"Pull request file mapping failed for {repo}: {e}")
    return refs
