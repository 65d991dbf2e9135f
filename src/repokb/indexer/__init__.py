from .builder import KnowledgeBaseBuilder, REDACTED_PLACEHOLDER
from .crossref import CrossReferenceProvider, StaticCrossReferenceProvider, pick_latest, pr_stats
from .parallel_types import BuildStats, FileResult
from .source import IgnoreRules, LocalSourceProvider, SourceManifest, SourceProvider

__all__ = [
    "BuildStats",
    "CrossReferenceProvider",
    "FileResult",
    "IgnoreRules",
    "KnowledgeBaseBuilder",
    "LocalSourceProvider",
    "REDACTED_PLACEHOLDER",
    "SourceManifest",
    "SourceProvider",
    "StaticCrossReferenceProvider",
    "pick_latest",
    "pr_stats",
]
