from .base import Embedder
from .vectorizer import Vectorizer, document_text, l2_normalize, sentence_transformers_factory, vectorizer_from_config

__all__ = [
    "Embedder",
    "Vectorizer",
    "document_text",
    "l2_normalize",
    "sentence_transformers_factory",
    "vectorizer_from_config",
]
