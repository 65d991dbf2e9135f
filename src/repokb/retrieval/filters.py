"""Attribute filters applied identically in every search mode."""
from __future__ import annotations

from typing import Iterable, Iterator, Optional

from ..models import Document, SearchFilters, SearchResult

PR_STATUS_WILDCARD = "all"


def matches(doc: Document, filters: Optional[SearchFilters]) -> bool:
    """True when `doc` passes every supplied predicate; unset predicates pass."""
    if filters is None:
        return True
    if filters.repo is not None and doc.source_key != filters.repo:
        return False
    if filters.language is not None and doc.language != filters.language:
        return False
    if filters.tag is not None and filters.tag not in doc.tags:
        return False
    if filters.pr_status is not None and filters.pr_status != PR_STATUS_WILDCARD:
        if doc.pull_request is None or doc.pull_request.state != filters.pr_status:
            return False
    if filters.file_type is not None:
        wanted = filters.file_type.lower().lstrip(".")
        if doc.file_extension != wanted:
            return False
    return True


def apply_filters(results: Iterable[SearchResult], filters: Optional[SearchFilters]) -> Iterator[SearchResult]:
    for r in results:
        if matches(r.doc, filters):
            yield r
