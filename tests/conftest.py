"""Shared fixtures: small in-memory corpora and a deterministic embedder."""

from __future__ import annotations

import re
from typing import Sequence

import numpy as np
import pytest

from repokb.embeddings.vectorizer import Vectorizer
from repokb.hashing import content_hash
from repokb.models import Document, PullRequestInfo

VOCAB = ["database", "index", "vector", "search", "secret", "token", "chunk", "python", "deploy", "cache"]


class FakeEmbedder:
    """Bag-of-words over a fixed vocabulary; counts backend calls."""

    model_id = "fake-bow"

    def __init__(self) -> None:
        self.calls = 0
        self.seen: list[str] = []

    def embed_texts(self, texts: Sequence[str]) -> np.ndarray:
        self.calls += 1
        self.seen.extend(texts)
        rows = []
        for t in texts:
            words = re.findall(r"\w+", t.lower())
            rows.append([float(words.count(v)) for v in VOCAB])
        return np.asarray(rows, dtype=np.float32).reshape(len(texts), len(VOCAB))


def make_pr(number: int, state: str = "open", updated_at: str = "2024-01-01T00:00:00Z") -> PullRequestInfo:
    return PullRequestInfo(
        number=number,
        title=f"PR {number}",
        changed_files_count=1,
        state=state,
        created_at="2024-01-01T00:00:00Z",
        updated_at=updated_at,
        url=f"https://github.com/acme/api/pull/{number}",
    )


def make_doc(
    doc_id: str,
    content: str,
    *,
    repo: str = "acme/api",
    path: str = "docs/a.md",
    lang: str = "markdown",
    title: str = "Untitled",
    tags: Sequence[str] = (),
    pr: PullRequestInfo | None = None,
) -> Document:
    return Document(
        id=doc_id,
        source_key=repo,
        path=path,
        language=lang,
        start_line=1,
        end_line=1 + content.count("\n"),
        title=title,
        content_excerpt=content,
        content_hash=content_hash(content),
        tags=tuple(tags),
        pull_request=pr,
    )


@pytest.fixture
def corpus() -> list[Document]:
    """Four documents across two repos, languages, tags and PR states."""
    return [
        make_doc(
            "acme/api:docs/search.md:0",
            "How the vector search engine ranks results with cosine similarity.",
            path="docs/search.md",
            title="Vector search",
            tags=("search",),
            pr=make_pr(1, "open"),
        ),
        make_doc(
            "acme/api:src/db.ts:0",
            "export function connectDatabase() { return database.index(); }",
            path="src/db.ts",
            lang="typescript",
            title="connectDatabase",
        ),
        make_doc(
            "acme/web:README.md:0",
            "Deploy the cache layer before the web tier.",
            repo="acme/web",
            path="README.md",
            title="Deploy guide",
            tags=("ops",),
            pr=make_pr(2, "merged"),
        ),
        make_doc(
            "acme/web:notes/tokens.txt:0",
            "Rotate every secret token monthly; secret storage uses the vault.",
            repo="acme/web",
            path="notes/tokens.txt",
            lang="text",
            title="Token rotation",
        ),
    ]


@pytest.fixture
def fake_embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def vectorizer(fake_embedder: FakeEmbedder) -> Vectorizer:
    return Vectorizer(embedder_factory=lambda: fake_embedder, batch_size=2, max_workers=2)
