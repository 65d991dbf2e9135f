"""Typed errors raised by the build pipeline and the retrieval engine.

Callers can tell apart "malformed input", "feature disabled / nothing built yet"
and "broken artifact" without inspecting messages.
"""
from __future__ import annotations


class RepoKBError(Exception):
    """Base class for all repokb errors."""


class ValidationError(RepoKBError):
    """Malformed request, e.g. a query with fewer than two words."""


class UnavailableError(RepoKBError):
    """A feature was requested but its prerequisite data is absent.

    Raised for semantic search on an artifact without vectors, when no
    embedding backend can be loaded, or when no knowledge base has been built.
    """


class StructuralError(RepoKBError):
    """Artifact failed referential-integrity or size validation.

    Fatal to a build (nothing is written) and to a load.
    """

    def __init__(self, message: str, problems: list[str] | None = None) -> None:
        self.problems = list(problems or [])
        if self.problems:
            message = message + ":\n" + "\n".join(f"  - {p}" for p in self.problems)
        super().__init__(message)


class TransientError(RepoKBError):
    """Recoverable failure acquiring a single file or source unit."""
