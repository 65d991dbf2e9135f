from __future__ import annotations

import hashlib

CONTENT_HASH_LENGTH = 16

def content_hash(text: str) -> str:
    """Fixed-length SHA-256 fingerprint of a chunk's text."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:CONTENT_HASH_LENGTH]

def document_id(source_key: str, path: str, sequence: int) -> str:
    return f"{source_key}:{path}:{sequence}"
