from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

PR_STATES = ("open", "closed", "merged")

@dataclass(frozen=True)
class PullRequestInfo:
    """Change request that touched a file; attached to documents post-hoc."""
    number: int
    title: str
    changed_files_count: int
    state: str
    created_at: str
    updated_at: str
    url: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "number": self.number,
            "title": self.title,
            "changedFilesCount": self.changed_files_count,
            "state": self.state,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "url": self.url,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "PullRequestInfo":
        return PullRequestInfo(
            number=int(data["number"]),
            title=str(data.get("title", "")),
            changed_files_count=int(data.get("changedFilesCount", 0)),
            state=str(data.get("state", "open")),
            created_at=str(data.get("createdAt", "")),
            updated_at=str(data.get("updatedAt", "")),
            url=str(data.get("url", "")),
        )

@dataclass(frozen=True)
class RepoPRStats:
    repo: str
    total_prs: int
    open_prs: int
    closed_prs: int
    merged_prs: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "repo": self.repo,
            "totalPRs": self.total_prs,
            "openPRs": self.open_prs,
            "closedPRs": self.closed_prs,
            "mergedPRs": self.merged_prs,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "RepoPRStats":
        return RepoPRStats(
            repo=str(data["repo"]),
            total_prs=int(data.get("totalPRs", 0)),
            open_prs=int(data.get("openPRs", 0)),
            closed_prs=int(data.get("closedPRs", 0)),
            merged_prs=int(data.get("mergedPRs", 0)),
        )

@dataclass(frozen=True)
class Document:
    """A bounded, line-addressed excerpt of a source file.

    The atomic retrievable unit. `id` is derived from (source_key, path,
    sequence) and stays stable across rebuilds while content is unchanged.
    """
    id: str
    source_key: str
    path: str
    language: str
    start_line: int
    end_line: int
    title: str
    content_excerpt: str
    content_hash: str
    tags: tuple[str, ...] = ()
    pull_request: Optional[PullRequestInfo] = None

    @property
    def file_extension(self) -> str:
        name = self.path.rsplit("/", 1)[-1]
        if "." not in name:
            return ""
        return name.rsplit(".", 1)[-1].lower()

    def citation(self) -> str:
        return f"{self.source_key}/{self.path}:{self.start_line}-{self.end_line}"

    def source_url(self, branch: str = "main") -> str:
        return (
            f"https://github.com/{self.source_key}/blob/{branch}/{self.path}"
            f"#L{self.start_line}-L{self.end_line}"
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "repo": self.source_key,
            "path": self.path,
            "lang": self.language,
            "loc": {"startLine": self.start_line, "endLine": self.end_line},
            "title": self.title,
            "contentExcerpt": self.content_excerpt,
            "tags": list(self.tags),
            "hash": self.content_hash,
        }
        if self.pull_request is not None:
            out["pullRequest"] = self.pull_request.to_dict()
        return out

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "Document":
        loc = data.get("loc") or {}
        pr = data.get("pullRequest")
        return Document(
            id=str(data["id"]),
            source_key=str(data["repo"]),
            path=str(data["path"]),
            language=str(data["lang"]),
            start_line=int(loc["startLine"]),
            end_line=int(loc["endLine"]),
            title=str(data.get("title", "")),
            content_excerpt=str(data["contentExcerpt"]),
            content_hash=str(data["hash"]),
            tags=tuple(data.get("tags") or ()),
            pull_request=PullRequestInfo.from_dict(pr) if pr else None,
        )

@dataclass(frozen=True)
class KBMeta:
    generated_at: str
    source_scope: str
    repo_count: int
    doc_count: int
    version: str
    pr_stats: Optional[list[RepoPRStats]] = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "generatedAt": self.generated_at,
            "sourceScope": self.source_scope,
            "repoCount": self.repo_count,
            "docCount": self.doc_count,
            "version": self.version,
        }
        if self.pr_stats:
            out["prStats"] = [s.to_dict() for s in self.pr_stats]
        return out

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "KBMeta":
        stats = data.get("prStats")
        return KBMeta(
            generated_at=str(data.get("generatedAt", "")),
            source_scope=str(data.get("sourceScope", "")),
            repo_count=int(data.get("repoCount", 0)),
            doc_count=int(data.get("docCount", -1)),
            version=str(data.get("version", "unknown")),
            pr_stats=[RepoPRStats.from_dict(s) for s in stats] if stats else None,
        )

@dataclass(frozen=True)
class KBIndex:
    text_index: str  # base64 SQLite image, see store.text_index
    embeddings: Optional[dict[str, list[float]]] = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"textIndex": self.text_index}
        if self.embeddings is not None:
            out["embeddings"] = self.embeddings
        return out

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "KBIndex":
        return KBIndex(
            text_index=str(data.get("textIndex", "")),
            embeddings=data.get("embeddings"),
        )

@dataclass(frozen=True)
class KnowledgeBase:
    """The persisted artifact: metadata, documents and serialized indexes."""
    meta: KBMeta
    docs: list[Document]
    index: KBIndex

    def to_dict(self) -> dict[str, Any]:
        return {
            "meta": self.meta.to_dict(),
            "docs": [d.to_dict() for d in self.docs],
            "index": self.index.to_dict(),
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "KnowledgeBase":
        return KnowledgeBase(
            meta=KBMeta.from_dict(data["meta"]),
            docs=[Document.from_dict(d) for d in data["docs"]],
            index=KBIndex.from_dict(data["index"]),
        )

@dataclass(frozen=True)
class SearchFilters:
    """Optional conjunctive predicates applied to every search mode."""
    repo: Optional[str] = None
    language: Optional[str] = None
    tag: Optional[str] = None
    pr_status: Optional[str] = None  # open|closed|merged|all
    file_type: Optional[str] = None  # extension without dot, e.g. "md"

@dataclass(frozen=True)
class SearchResult:
    doc: Document
    score: float
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def id(self) -> str:
        return self.doc.id
