from .base import Chunked, Chunker, ChunkerRegistry, extract_title
from .file_chunker import ChunkingOptions, chunk_file

__all__ = ["Chunked", "Chunker", "ChunkerRegistry", "ChunkingOptions", "chunk_file", "extract_title"]
