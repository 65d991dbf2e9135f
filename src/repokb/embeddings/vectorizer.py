"""Vectorizer phase: turn documents and queries into normalized vectors.

The embedding backend is injected as a factory and loaded lazily, once, through
a SingleFlight. The same truncation cap applies to documents and queries so
cosine comparisons stay symmetric.
"""
from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Sequence

import numpy as np

from ..models import Document
from ..singleflight import SingleFlight
from .base import Embedder

if TYPE_CHECKING:
    from ..config import KBConfig

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 10
DEFAULT_TRUNCATE_CHARS = 512
VECTOR_DECIMALS = 6  # precision kept in the persisted vector map


def l2_normalize(vectors: np.ndarray) -> np.ndarray:
    arr = np.atleast_2d(np.asarray(vectors, dtype=np.float32))
    norms = np.linalg.norm(arr, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return arr / norms


def document_text(doc: Document) -> str:
    return f"{doc.title}\n{doc.content_excerpt}"


def sentence_transformers_factory(
    model_id: str, device: str = "cpu", batch_size: int = DEFAULT_BATCH_SIZE, offline: bool = False
) -> Callable[[], Embedder]:
    def _load() -> Embedder:
        from .sentence_transformers import SentenceTransformersEmbedder
        logger.info(f"Loading embedding model {model_id} on {device}")
        return SentenceTransformersEmbedder(
            model_id=model_id, device=device, batch_size=batch_size, offline=offline
        )
    return _load


@dataclass
class Vectorizer:
    embedder_factory: Callable[[], Embedder]
    batch_size: int = DEFAULT_BATCH_SIZE
    max_workers: int = 2
    truncate_chars: int = DEFAULT_TRUNCATE_CHARS
    _backend: SingleFlight[Embedder] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if self.batch_size <= 0:
            raise ValueError(f"Invalid batch_size: {self.batch_size}")
        self._backend = SingleFlight(self.embedder_factory)

    @property
    def ready(self) -> bool:
        return self._backend.ready

    def backend(self) -> Embedder:
        return self._backend.get()

    def warm_up(self) -> threading.Thread:
        """Start loading the backend in the background; keyword work is unaffected."""
        def _run() -> None:
            try:
                self.backend()
            except Exception as e:
                logger.warning(f"Embedding backend warm-up failed: {e}")

        t = threading.Thread(target=_run, name="repokb-embedder-warmup", daemon=True)
        t.start()
        return t

    def reset(self) -> None:
        self._backend.reset()

    def truncate(self, text: str) -> str:
        return text[:self.truncate_chars]

    def embed_texts(self, texts: Sequence[str]) -> np.ndarray:
        raw = self.backend().embed_texts([self.truncate(t) for t in texts])
        vectors = l2_normalize(raw)
        if vectors.shape[0] != len(texts):
            raise ValueError(f"Embedding backend returned {vectors.shape[0]} vectors for {len(texts)} texts")
        return vectors

    def embed(self, text: str) -> np.ndarray:
        return self.embed_texts([text])[0]

    def embed_documents(self, docs: Sequence[Document]) -> dict[str, list[float]]:
        """Embed documents in fixed-size batches.

        Batches run with bounded parallelism; results are mapped back by
        position so the id -> vector map does not depend on completion order.
        A backend that cannot be loaded turns this phase into a no-op.
        """
        if not docs:
            return {}
        try:
            self.backend()
        except Exception as e:
            logger.warning(f"Embedding backend unavailable, continuing with keyword index only: {e}")
            return {}

        batches = [list(docs[i:i + self.batch_size]) for i in range(0, len(docs), self.batch_size)]
        logger.info(f"Generating embeddings for {len(docs)} documents in {len(batches)} batches")

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            results = list(executor.map(self._embed_batch, batches))

        vectors: dict[str, list[float]] = {}
        for batch, batch_vectors in zip(batches, results):
            if batch_vectors is None:
                continue
            for doc, vec in zip(batch, batch_vectors):
                vectors[doc.id] = [round(float(x), VECTOR_DECIMALS) for x in vec]

        logger.info(f"Generated {len(vectors)} embeddings")
        return vectors

    def _embed_batch(self, batch: list[Document]) -> np.ndarray | None:
        try:
            return self.embed_texts([document_text(d) for d in batch])
        except Exception as e:
            logger.warning(f"Embedding batch starting at {batch[0].id} failed: {e}")
            return None


def vectorizer_from_config(cfg: "KBConfig") -> Vectorizer:
    return Vectorizer(
        embedder_factory=sentence_transformers_factory(
            cfg.embedding_model,
            device=cfg.embedding_device,
            batch_size=cfg.embedding_batch_size,
            offline=cfg.offline_mode,
        ),
        batch_size=cfg.embedding_batch_size,
        max_workers=cfg.embedding_workers,
        truncate_chars=cfg.embedding_truncate_chars,
    )
