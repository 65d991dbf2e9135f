"""Field-weighted inverted text index backed by SQLite FTS5.

The whole index lives in an in-memory SQLite database which is serialized to
an opaque base64 blob for the artifact and deserialized on load, so queries
never require a rebuild.
"""
from __future__ import annotations

import base64
import re
import sqlite3
import threading
from typing import Iterable, Sequence

from ..models import Document

# Relative field weights; any scoring parity depends on these exact ratios.
FIELD_WEIGHTS: dict[str, float] = {
    "title": 10.0,
    "content": 1.0,
    "path": 5.0,
    "repo": 3.0,
    "lang": 2.0,
}

SCHEMA_SQL = """
CREATE VIRTUAL TABLE IF NOT EXISTS docs_fts USING fts5(
  doc_id UNINDEXED,
  title,
  content,
  path,
  repo,
  lang,
  tokenize='porter unicode61'
);
"""

# doc_id carries weight 0; the remaining weights follow column order.
_BM25 = "bm25(docs_fts, 0.0, {})".format(", ".join(str(w) for w in FIELD_WEIGHTS.values()))

_TERM_RE = re.compile(r"\w+", re.UNICODE)


def _match_expression(query: str) -> str | None:
    """Any-term FTS5 expression; each term is quoted so operators stay literal."""
    terms = list(dict.fromkeys(t.lower() for t in _TERM_RE.findall(query)))
    if not terms:
        return None
    return " OR ".join('"{}"'.format(t.replace('"', '""')) for t in terms)


def _connect() -> sqlite3.Connection:
    conn = sqlite3.connect(":memory:", check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


class TextIndex:
    """Ranked keyword search over document fields.

    Scores are `-bm25(...)`, so higher is better. Ties keep insertion order
    (document order at build time).
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._lock = threading.Lock()

    @staticmethod
    def build(docs: Iterable[Document]) -> "TextIndex":
        conn = _connect()
        conn.executescript(SCHEMA_SQL)
        conn.executemany(
            "INSERT INTO docs_fts(doc_id, title, content, path, repo, lang) VALUES(?,?,?,?,?,?)",
            [(d.id, d.title, d.content_excerpt, d.path, d.source_key, d.language) for d in docs],
        )
        conn.commit()
        return TextIndex(conn)

    @staticmethod
    def load(blob: str) -> "TextIndex":
        data = base64.b64decode(blob.encode("ascii"), validate=True)
        conn = _connect()
        conn.deserialize(data)
        # Fail early on a blob that is not one of ours.
        conn.execute("SELECT doc_id FROM docs_fts LIMIT 1").fetchall()
        return TextIndex(conn)

    def serialize(self) -> str:
        with self._lock:
            data = self._conn.serialize()
        return base64.b64encode(data).decode("ascii")

    def doc_ids(self) -> list[str]:
        with self._lock:
            rows = self._conn.execute("SELECT doc_id FROM docs_fts ORDER BY rowid").fetchall()
        return [r["doc_id"] for r in rows]

    def search(self, query: str, limit: int | None = None) -> list[tuple[str, float]]:
        expr = _match_expression(query)
        if expr is None:
            return []
        sql = (
            f"SELECT doc_id, {_BM25} AS score FROM docs_fts "
            "WHERE docs_fts MATCH ? ORDER BY score, rowid"
        )
        params: Sequence[object] = (expr,)
        if limit is not None:
            sql += " LIMIT ?"
            params = (expr, int(limit))
        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()
        return [(r["doc_id"], -float(r["score"])) for r in rows]

    def close(self) -> None:
        with self._lock:
            self._conn.close()
