from __future__ import annotations

from typing import Protocol, Sequence
import numpy as np

class Embedder(Protocol):
    """Black-box text -> vector backend."""
    model_id: str

    def embed_texts(self, texts: Sequence[str]) -> np.ndarray:
        ...
