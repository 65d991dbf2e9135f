from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence
import logging

import numpy as np

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "sentence-transformers/all-MiniLM-L6-v2"

@dataclass
class SentenceTransformersEmbedder:
    """Local sentence-transformers model. Documents and queries share one encoding path."""
    model_id: str = DEFAULT_MODEL
    device: str = "cpu"
    batch_size: int = 10
    offline: bool = False
    dims: int = field(init=False, default=0)

    def __post_init__(self) -> None:
        import warnings
        warnings.filterwarnings("ignore", message="resource_tracker: There appear to be.*leaked semaphore")

        from sentence_transformers import SentenceTransformer  # type: ignore
        self._model = SentenceTransformer(self.model_id, device=self.device, local_files_only=self.offline)
        dims = self._model.get_sentence_embedding_dimension()
        self.dims = int(dims) if dims else 0
        logger.info(f"Embedding model ready: {self.model_id} ({self.dims} dims)")

    def embed_texts(self, texts: Sequence[str]) -> np.ndarray:
        if not texts:
            return np.zeros((0, self.dims), dtype=np.float32)
        return self._model.encode(
            list(texts),
            batch_size=self.batch_size,
            convert_to_numpy=True,
            normalize_embeddings=True,
            show_progress_bar=False,
        )
