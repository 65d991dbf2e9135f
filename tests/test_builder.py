"""
End-to-end tests for the knowledge-base build pipeline.
"""

from pathlib import Path

import pytest

from repokb.config import KBConfig, RepoSource
from repokb.errors import StructuralError
from repokb.indexer.builder import REDACTED_PLACEHOLDER, KnowledgeBaseBuilder
from repokb.indexer.crossref import StaticCrossReferenceProvider
from repokb.indexer.source import LocalSourceProvider
from repokb.retrieval.retriever import RetrievalContext
from repokb.security.redactor import REDACTION_MARKER
from repokb.store.artifact import KB_FILENAME, KB_MIN_FILENAME, load_artifact

GITHUB_TOKEN = "ghp_" + "a1" * 18

README = f"""---
tags: [guide, setup]
---
# API

The api #backend service stores every token in the database.

Token: {GITHUB_TOKEN}
"""

DB_TS = """export function connect(url: string) {
  // open the database connection
  return openPool(url);
}
"""


def _touch(root: Path, rel: str, text: str) -> None:
    p = root / rel
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(text, encoding="utf-8")


@pytest.fixture
def checkout(tmp_path) -> Path:
    root = tmp_path / "api"
    _touch(root, "README.md", README)
    _touch(root, "src/db.ts", DB_TS)
    _touch(root, "token.txt", GITHUB_TOKEN + "\n")
    _touch(root, ".env", "API_KEY=abcdefghijklmnopqrstuvwxyz\n")
    _touch(root, "assets/logo.png", "not really a png")
    _touch(root, ".git/HEAD", "ref: refs/heads/main\n")
    _touch(root, ".git/refs/heads/main", "4f2a9c1e0b7d\n")
    return root


def _cfg(tmp_path: Path, checkout: Path, **overrides) -> KBConfig:
    return KBConfig(
        output_dir=tmp_path / "dist",
        repos=[RepoSource(name="acme/api", root=checkout)],
        **overrides,
    )


class TestBuild:
    """A full build over a small checkout."""

    def test_stats(self, tmp_path, checkout):
        stats = KnowledgeBaseBuilder(_cfg(tmp_path, checkout)).build()

        assert stats.units_acquired == 1
        assert stats.units_failed == 0
        assert stats.files_scanned == 3
        assert stats.files_indexed == 3
        assert stats.files_failed == 0
        assert stats.documents_created == 3
        assert stats.files_with_secrets == 2
        assert stats.embeddings_created == 0
        assert stats.artifact_bytes > 0

    def test_artifact_contents(self, tmp_path, checkout):
        KnowledgeBaseBuilder(_cfg(tmp_path, checkout)).build()
        kb = load_artifact(tmp_path / "dist")

        assert (tmp_path / "dist" / KB_MIN_FILENAME).exists()
        assert (tmp_path / "dist" / KB_FILENAME).exists()
        assert [d.id for d in kb.docs] == [
            "acme/api:README.md:0",
            "acme/api:src/db.ts:0",
            "acme/api:token.txt:0",
        ]
        assert kb.meta.version == "4f2a9c1e0b7d"
        assert kb.meta.repo_count == 1
        assert kb.meta.doc_count == 3
        assert kb.index.embeddings is None

    def test_secrets_never_reach_the_artifact(self, tmp_path, checkout):
        KnowledgeBaseBuilder(_cfg(tmp_path, checkout)).build()

        for name in (KB_MIN_FILENAME, KB_FILENAME):
            raw = (tmp_path / "dist" / name).read_text(encoding="utf-8")
            assert GITHUB_TOKEN not in raw
            assert "abcdefghijklmnopqrstuvwxyz" not in raw

        readme = load_artifact(tmp_path / "dist").docs[0]
        assert f"Token: {REDACTION_MARKER}" in readme.content_excerpt

    def test_fully_redacted_excerpt_gets_placeholder(self, tmp_path, checkout):
        KnowledgeBaseBuilder(_cfg(tmp_path, checkout)).build()
        token_doc = load_artifact(tmp_path / "dist").docs[2]

        assert token_doc.content_excerpt == REDACTED_PLACEHOLDER

    def test_markdown_tags(self, tmp_path, checkout):
        KnowledgeBaseBuilder(_cfg(tmp_path, checkout)).build()
        docs = load_artifact(tmp_path / "dist").docs

        assert docs[0].tags == ("backend", "guide", "setup")
        assert docs[1].tags == ()

    def test_language_and_lines(self, tmp_path, checkout):
        KnowledgeBaseBuilder(_cfg(tmp_path, checkout)).build()
        readme, db, _ = load_artifact(tmp_path / "dist").docs

        assert readme.language == "markdown"
        assert readme.title == "API"
        assert (readme.start_line, readme.end_line) == (1, 8)
        assert db.language == "typescript"
        assert db.title == "connect"
        assert (db.start_line, db.end_line) == (1, 4)

    def test_rebuild_is_deterministic(self, tmp_path, checkout):
        KnowledgeBaseBuilder(_cfg(tmp_path, checkout, build_workers=1)).build()
        first = [d.to_dict() for d in load_artifact(tmp_path / "dist").docs]

        KnowledgeBaseBuilder(_cfg(tmp_path, checkout, build_workers=8)).build()
        second = [d.to_dict() for d in load_artifact(tmp_path / "dist").docs]

        assert first == second

    def test_keyword_search_over_built_artifact(self, tmp_path, checkout):
        KnowledgeBaseBuilder(_cfg(tmp_path, checkout)).build()
        ctx = RetrievalContext.from_directory(tmp_path / "dist")

        results = ctx.search("connect database")
        assert {r.id for r in results} == {"acme/api:README.md:0", "acme/api:src/db.ts:0"}


class TestFailureHandling:
    """Recoverable failures are skipped; structural failures write nothing."""

    def test_missing_source_is_skipped(self, tmp_path, checkout):
        cfg = KBConfig(
            output_dir=tmp_path / "dist",
            repos=[
                RepoSource(name="acme/gone", root=tmp_path / "gone"),
                RepoSource(name="acme/api", root=checkout),
            ],
        )
        stats = KnowledgeBaseBuilder(cfg).build()

        assert stats.units_failed == 1
        assert stats.units_acquired == 1
        assert stats.documents_created == 3

    def test_provider_exception_skips_only_that_source(self, tmp_path, checkout):
        local = LocalSourceProvider([
            RepoSource(name="acme/api", root=checkout),
            RepoSource(name="acme/web", root=checkout),
        ])

        class FlakyProvider:
            def units(self):
                return ["acme/api", "acme/broken", "acme/web"]

            def acquire(self, unit):
                if unit == "acme/broken":
                    raise RuntimeError("clone exploded")
                return local.acquire(unit)

        builder = KnowledgeBaseBuilder(_cfg(tmp_path, checkout), source_provider=FlakyProvider())
        stats = builder.build()

        assert stats.units_failed == 1
        assert stats.units_acquired == 2
        repos = {d.source_key for d in load_artifact(tmp_path / "dist").docs}
        assert repos == {"acme/api", "acme/web"}

    def test_unreadable_file_is_skipped(self, tmp_path, checkout, monkeypatch):
        from repokb.indexer import builder as builder_module
        real_read = builder_module.safe_read_text

        def flaky_read(path):
            if path.name == "db.ts":
                raise OSError("permission denied")
            return real_read(path)

        monkeypatch.setattr("repokb.indexer.builder.safe_read_text", flaky_read)
        stats = KnowledgeBaseBuilder(_cfg(tmp_path, checkout)).build()

        assert stats.files_failed == 1
        assert stats.files_indexed == 2
        ids = [d.id for d in load_artifact(tmp_path / "dist").docs]
        assert "acme/api:src/db.ts:0" not in ids

    def test_worker_crash_is_contained(self, tmp_path, checkout, monkeypatch):
        def crash(*args, **kwargs):
            raise RuntimeError("chunker bug")

        monkeypatch.setattr("repokb.indexer.builder.chunk_file", crash)
        stats = KnowledgeBaseBuilder(_cfg(tmp_path, checkout)).build()

        assert stats.files_failed == 3
        assert load_artifact(tmp_path / "dist").docs == []

    def test_size_ceiling_writes_nothing(self, tmp_path, checkout):
        with pytest.raises(StructuralError, match="exceeds limit"):
            KnowledgeBaseBuilder(_cfg(tmp_path, checkout, max_artifact_bytes=200)).build()

        assert not (tmp_path / "dist" / KB_MIN_FILENAME).exists()
        assert not (tmp_path / "dist" / KB_FILENAME).exists()


class TestCrossReferences:
    """Latest pull request per file and per-repo stats."""

    EXPORT = {
        "acme/api": {
            "pullRequests": [
                {
                    "number": 10, "title": "Old docs", "state": "merged",
                    "createdAt": "2024-01-01T00:00:00Z", "updatedAt": "2024-01-02T00:00:00Z",
                    "url": "https://github.com/acme/api/pull/10", "files": ["README.md"],
                },
                {
                    "number": 11, "title": "New docs", "state": "open",
                    "createdAt": "2024-02-01T00:00:00Z", "updatedAt": "2024-02-02T00:00:00Z",
                    "url": "https://github.com/acme/api/pull/11", "files": ["README.md"],
                },
            ]
        }
    }

    def test_latest_pr_attached(self, tmp_path, checkout):
        builder = KnowledgeBaseBuilder(
            _cfg(tmp_path, checkout), crossref_provider=StaticCrossReferenceProvider(self.EXPORT)
        )
        builder.build()
        kb = load_artifact(tmp_path / "dist")

        readme, db, _ = kb.docs
        assert readme.pull_request.number == 11
        assert readme.pull_request.state == "open"
        assert db.pull_request is None
        assert [s.to_dict() for s in kb.meta.pr_stats] == [
            {"repo": "acme/api", "totalPRs": 2, "openPRs": 1, "closedPRs": 0, "mergedPRs": 1}
        ]

    def test_crossref_file_from_config(self, tmp_path, checkout):
        import json
        export = tmp_path / "prs.json"
        export.write_text(json.dumps(self.EXPORT), encoding="utf-8")

        KnowledgeBaseBuilder(_cfg(tmp_path, checkout, crossref_file=export)).build()
        assert load_artifact(tmp_path / "dist").docs[0].pull_request.number == 11

    def test_provider_failure_does_not_fail_build(self, tmp_path, checkout):
        class Down:
            def pull_requests(self, repo):
                raise ConnectionError("host unreachable")

            def files_to_pull_requests(self, repo):
                raise ConnectionError("host unreachable")

        stats = KnowledgeBaseBuilder(_cfg(tmp_path, checkout), crossref_provider=Down()).build()

        assert stats.documents_created == 3
        kb = load_artifact(tmp_path / "dist")
        assert kb.meta.pr_stats is None
        assert all(d.pull_request is None for d in kb.docs)


class TestEmbeddings:
    """Optional vector phase."""

    def test_vectors_written_and_searchable(self, tmp_path, checkout, vectorizer):
        stats = KnowledgeBaseBuilder(_cfg(tmp_path, checkout), vectorizer=vectorizer).build()

        assert stats.embeddings_created == 3
        kb = load_artifact(tmp_path / "dist")
        assert set(kb.index.embeddings) == {d.id for d in kb.docs}

        ctx = RetrievalContext.from_directory(tmp_path / "dist", vectorizer=vectorizer)
        results = ctx.search("database index", mode="semantic")
        assert results
        assert all(r.score > 0 for r in results)

    def test_backend_unavailable_builds_keyword_only(self, tmp_path, checkout):
        from repokb.embeddings.vectorizer import Vectorizer

        def broken():
            raise OSError("model not cached")

        stats = KnowledgeBaseBuilder(
            _cfg(tmp_path, checkout), vectorizer=Vectorizer(embedder_factory=broken)
        ).build()

        assert stats.embeddings_created == 0
        assert load_artifact(tmp_path / "dist").index.embeddings is None
