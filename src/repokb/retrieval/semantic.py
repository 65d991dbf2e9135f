from __future__ import annotations

from typing import Sequence

import numpy as np

from ..models import Document


def vector_matrix(docs: Sequence[Document], vectors: dict[str, list[float]]) -> tuple[list[Document], np.ndarray]:
    """Stack vectors in document order, skipping documents that have none."""
    present = [d for d in docs if d.id in vectors]
    if not present:
        return [], np.zeros((0, 0), dtype=np.float32)
    mat = np.asarray([vectors[d.id] for d in present], dtype=np.float32)
    return present, mat


def cosine_scan(query_vec: np.ndarray, docs: Sequence[Document], matrix: np.ndarray) -> list[tuple[Document, float]]:
    """Cosine similarity of `query_vec` against every row, best first.

    Non-positive similarities are dropped. Equal scores keep document order.
    """
    if matrix.size == 0:
        return []
    q = np.asarray(query_vec, dtype=np.float32).reshape(-1)
    if q.shape[0] != matrix.shape[1]:
        raise ValueError(f"Query vector has {q.shape[0]} dims, index has {matrix.shape[1]}")

    q_norm = float(np.linalg.norm(q))
    row_norms = np.linalg.norm(matrix, axis=1)
    denom = row_norms * (q_norm if q_norm else 1.0)
    denom[denom == 0] = 1.0
    sims = (matrix @ q) / denom

    order = np.argsort(-sims, kind="stable")
    return [(docs[i], float(sims[i])) for i in order if sims[i] > 0]
