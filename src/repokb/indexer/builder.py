from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, replace
from typing import Optional

from ..chunking.base import ChunkerRegistry
from ..chunking.file_chunker import ChunkingOptions, build_registry, chunk_file
from ..config import KBConfig
from ..embeddings.vectorizer import Vectorizer, vectorizer_from_config
from ..errors import TransientError
from ..hashing import content_hash
from ..models import Document, RepoPRStats
from ..security.redactor import REDACTION_MARKER, Redactor, ScanReport
from ..store.artifact import assemble_artifact, write_artifact
from ..utils import language_from_path, markdown_tags, safe_read_text
from .crossref import CrossReferenceProvider, RepoCrossReferences, StaticCrossReferenceProvider, resolve
from .parallel_types import BuildStats, FileResult, FileTask
from .source import LocalSourceProvider, SourceManifest, SourceProvider

logger = logging.getLogger(__name__)

REDACTED_PLACEHOLDER = "[Content redacted - see original file]"


def _fully_redacted(excerpt: str) -> bool:
    return not excerpt.replace(REDACTION_MARKER, "").strip()


@dataclass
class KnowledgeBaseBuilder:
    """Build the knowledge-base artifact from configured sources.

    Files are processed in parallel but the resulting document list is always
    in manifest order, then file order, then chunk order.
    """

    cfg: KBConfig
    source_provider: Optional[SourceProvider] = None
    crossref_provider: Optional[CrossReferenceProvider] = None
    redactor: Optional[Redactor] = None
    vectorizer: Optional[Vectorizer] = None

    def __post_init__(self) -> None:
        if self.source_provider is None:
            self.source_provider = LocalSourceProvider(list(self.cfg.repos))
        if self.crossref_provider is None and self.cfg.crossref_file is not None:
            self.crossref_provider = StaticCrossReferenceProvider.from_file(self.cfg.crossref_file)
        if self.redactor is None:
            self.redactor = Redactor(
                entropy_threshold=self.cfg.entropy_threshold,
                min_token_length=self.cfg.min_secret_length,
            )
        if self.vectorizer is None and self.cfg.generate_embeddings:
            self.vectorizer = vectorizer_from_config(self.cfg)

        self.options = ChunkingOptions(
            max_chunk_size=self.cfg.max_chunk_size,
            min_chunk_size=self.cfg.min_chunk_size,
        )
        self.chunkers: ChunkerRegistry = build_registry(self.options)

    def acquire(self, stats: BuildStats) -> list[SourceManifest]:
        assert self.source_provider is not None
        manifests: list[SourceManifest] = []
        for unit in self.source_provider.units():
            try:
                manifest = self.source_provider.acquire(unit)
            except TransientError as e:
                logger.warning(f"Skipping source {unit}: {e}")
                stats.units_failed += 1
                continue
            except Exception as e:
                logger.error(f"Source provider failed on {unit}: {e}")
                stats.units_failed += 1
                continue
            logger.info(f"Acquired {manifest.repo} @ {manifest.commit[:12]}: {len(manifest.files)} files")
            manifests.append(manifest)
        stats.units_acquired = len(manifests)
        return manifests

    def process_file(self, task: FileTask, refs: RepoCrossReferences) -> FileResult:
        """Read, redact, tag, chunk and cross-reference one file."""
        assert self.redactor is not None
        result = FileResult(order=task.order, repo=task.repo, rel_path=task.rel_path)
        try:
            raw = safe_read_text(task.root / task.rel_path)
        except (OSError, ValueError) as e:
            result.error = str(e)
            return result

        redaction = self.redactor.redact(raw)
        text = redaction.redacted_text
        language = language_from_path(task.rel_path)
        tags = markdown_tags(text) if language == "markdown" else []

        docs = chunk_file(
            text,
            source_key=task.repo,
            path=task.rel_path,
            language=language,
            options=self.options,
            tags=tags,
            registry=self.chunkers,
        )

        pr = refs.latest_for(task.rel_path)
        out: list[Document] = []
        for doc in docs:
            if _fully_redacted(doc.content_excerpt):
                doc = replace(doc, content_excerpt=REDACTED_PLACEHOLDER, content_hash=content_hash(REDACTED_PLACEHOLDER))
            if pr is not None:
                doc = replace(doc, pull_request=pr)
            out.append(doc)

        result.docs = out
        result.redaction = redaction
        return result

    def resolve_crossrefs(self, manifests: list[SourceManifest]) -> dict[str, RepoCrossReferences]:
        refs_by_repo: dict[str, RepoCrossReferences] = {}
        for manifest in manifests:
            if manifest.repo not in refs_by_repo:
                refs_by_repo[manifest.repo] = resolve(self.crossref_provider, manifest.repo)
        return refs_by_repo

    def process_files(
        self,
        manifests: list[SourceManifest],
        refs_by_repo: dict[str, RepoCrossReferences],
        stats: BuildStats,
    ) -> list[FileResult]:
        tasks: list[FileTask] = []
        for manifest in manifests:
            for rel_path in manifest.files:
                tasks.append(FileTask(order=len(tasks), repo=manifest.repo, root=manifest.root, rel_path=rel_path))

        stats.files_scanned = len(tasks)
        logger.info(f"Found {len(tasks)} files to index")

        results: list[FileResult] = []
        with ThreadPoolExecutor(max_workers=self.cfg.build_workers) as executor:
            futures = {
                executor.submit(self.process_file, t, refs_by_repo[t.repo]): t
                for t in tasks
            }
            for future in as_completed(futures):
                task = futures[future]
                try:
                    result = future.result()
                except Exception as e:
                    logger.error(f"Worker crashed for {task.repo}/{task.rel_path}: {e}")
                    result = FileResult(order=task.order, repo=task.repo, rel_path=task.rel_path, error=str(e))
                if result.error:
                    logger.warning(f"Failed to process {task.repo}/{task.rel_path}: {result.error}")
                    stats.files_failed += 1
                results.append(result)

        results.sort(key=lambda r: r.order)
        return results

    def build(self) -> BuildStats:
        start = time.time()
        stats = BuildStats(output_dir=self.cfg.output_dir)

        manifests = self.acquire(stats)
        refs_by_repo = self.resolve_crossrefs(manifests)
        results = self.process_files(manifests, refs_by_repo, stats)

        report = ScanReport()
        docs: list[Document] = []
        for r in results:
            if r.error:
                continue
            stats.files_indexed += 1
            if r.redaction is not None:
                report.add(r.redaction)
            docs.extend(r.docs)
        stats.documents_created = len(docs)
        stats.files_with_secrets = report.files_with_secrets
        logger.info(f"Processed {len(docs)} document chunks from {stats.files_indexed} files ({stats.files_failed} failed)")
        for line in report.render().splitlines():
            logger.info(f"Secret scan: {line.strip()}")

        vectors: Optional[dict[str, list[float]]] = None
        if self.vectorizer is not None:
            vectors = self.vectorizer.embed_documents(docs)
            stats.embeddings_created = len(vectors)

        kb, text_index = assemble_artifact(
            docs,
            vectors,
            source_scope=self.cfg.source_scope,
            version=manifests[0].commit if manifests else "unknown",
            pr_stats=self._pr_stats(docs, refs_by_repo),
        )
        text_index.close()
        stats.artifact_bytes = write_artifact(kb, self.cfg.output_dir, self.cfg.max_artifact_bytes)

        stats.elapsed_seconds = time.time() - start
        logger.info(
            f"Build complete: {kb.meta.repo_count} repos, {len(docs)} documents, "
            f"{stats.embeddings_created} embeddings in {stats.elapsed_seconds:.1f}s"
        )
        return stats

    @staticmethod
    def _pr_stats(docs: list[Document], refs_by_repo: dict[str, RepoCrossReferences]) -> list[RepoPRStats]:
        repos_with_docs = list(dict.fromkeys(d.source_key for d in docs))
        out = []
        for repo in repos_with_docs:
            refs = refs_by_repo.get(repo)
            if refs is not None and refs.stats is not None:
                out.append(refs.stats)
        return out
