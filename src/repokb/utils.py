from __future__ import annotations

import logging
import re
from pathlib import Path

import frontmatter

logger = logging.getLogger(__name__)

TAG_RE = re.compile(r"(?<!\w)#([A-Za-z0-9_/-]+)")

LANGUAGE_BY_SUFFIX = {
    ".md": "markdown",
    ".txt": "text",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".js": "javascript",
    ".jsx": "javascript",
    ".json": "json",
    ".yml": "yaml",
    ".yaml": "yaml",
    ".sql": "sql",
    ".py": "python",
}

def language_from_path(path: str) -> str:
    suffix = Path(path).suffix.lower()
    return LANGUAGE_BY_SUFFIX.get(suffix, "text")

def parse_tags(text: str) -> list[str]:
    return [m.group(1) for m in TAG_RE.finditer(text)]

def markdown_tags(raw: str) -> list[str]:
    """Front-matter `tags` plus inline #tags, sorted and de-duplicated.

    Only the tag list is read; the text itself is left untouched so line
    numbers stay relative to the original file.
    """
    fm_tags: list[str] = []
    body = raw
    try:
        post = frontmatter.loads(raw)
        body = post.content
        tags = post.metadata.get("tags")
        if isinstance(tags, list):
            fm_tags = [str(t) for t in tags]
        elif isinstance(tags, str):
            fm_tags = [t.strip() for t in tags.split(",") if t.strip()]
    except Exception as e:
        logger.debug(f"Front matter not parsed: {e}")
    return sorted(set(fm_tags + parse_tags(body)))

def safe_read_text(path: Path, max_bytes: int = 10_000_000) -> str:
    b = path.read_bytes()
    if len(b) > max_bytes:
        raise ValueError(f"File too large for text read: {path} ({len(b)} bytes)")
    return b.decode("utf-8", errors="replace")
