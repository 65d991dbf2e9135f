from __future__ import annotations

# Suppress harmless multiprocessing resource tracker warnings (common on macOS)
import warnings
warnings.filterwarnings("ignore", message="resource_tracker: There appear to be.*leaked semaphore")

from pathlib import Path
import dataclasses
import json
import logging
from typing import NoReturn

import typer

from .config import KBConfig, SEARCH_MODES
from .embeddings.vectorizer import vectorizer_from_config
from .errors import RepoKBError, ValidationError
from .indexer.builder import KnowledgeBaseBuilder
from .models import SearchFilters
from .retrieval.retriever import RetrievalContext

app = typer.Typer(add_completion=False, no_args_is_help=True)

def _cfg(config: str) -> KBConfig:
    try:
        return KBConfig.from_toml(config)
    except FileNotFoundError:
        raise typer.BadParameter(f"Config file not found: {config}. Run `repokb init` first.")
    except ValueError as e:
        raise typer.BadParameter(str(e))

def _setup_logging(log_file: str | None, log_level: str, verbose: bool) -> None:
    level = logging.DEBUG if verbose else getattr(logging, log_level.upper(), logging.INFO)

    fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"

    handlers: list[logging.Handler] = []

    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter(fmt, datefmt))
    handlers.append(console)

    if log_file:
        from logging.handlers import RotatingFileHandler
        file_handler = RotatingFileHandler(
            log_file, maxBytes=10 * 1024 * 1024, backupCount=5
        )
        file_handler.setFormatter(logging.Formatter(fmt, datefmt))
        handlers.append(file_handler)

    logger = logging.getLogger("repokb")
    logger.setLevel(level)
    for h in handlers:
        logger.addHandler(h)

def _fail(e: RepoKBError) -> NoReturn:
    typer.echo(f"Error: {e}", err=True)
    raise typer.Exit(code=1)

@app.command()
def init(repo: list[str] = typer.Option(..., help="Checkout to index, as PATH or NAME=PATH (repeatable)"),
         output: str = typer.Option("dist", help="Directory the artifact is written to"),
         out: str = typer.Option("repokb.toml", help="Write example config to this path")):
    """Write a starter repokb.toml."""
    entries = []
    for r in repo:
        name, _, path = r.rpartition("=")
        name = name or Path(path).name
        entries.append(f'[[sources.repo]]\nname = "{name}"\npath = "{path}"\n')

    outp = Path(out)
    outp.write_text(f"""[sources]
# public-only | private-local
scope = "private-local"

{chr(10).join(entries)}
[output]
dir = "{output}"

[chunking]
max_chunk_size = 3000
min_chunk_size = 100

[redaction]
entropy_threshold = 3.5
min_token_length = 16

[embeddings]
generate = false
model = "sentence-transformers/all-MiniLM-L6-v2"
batch_size = 10
workers = 2
truncate_chars = 512
device = "cpu"
# Set to true to use cached models only (no HuggingFace downloads)
# Can also be controlled via HF_OFFLINE_MODE environment variable
offline_mode = false

[retrieval]
limit = 20
mode = "keyword"

[build]
workers = 8
max_artifact_mb = 20
# crossref_file = "pull_requests.json"
""", encoding="utf-8")
    typer.echo(f"Wrote {outp}")

@app.command()
def build(
    config: str = typer.Option("repokb.toml"),
    workers: int = typer.Option(None, help="Override build.workers"),
    embeddings: bool = typer.Option(None, help="Override embeddings.generate (true/false)"),
    log_file: str = typer.Option(None, "--log-file", "-l", help="Log file path for audit trail"),
    log_level: str = typer.Option("INFO", "--log-level", help="Log level: DEBUG, INFO, WARNING, ERROR"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose (DEBUG) logging"),
):
    """Build the knowledge base from the configured sources."""
    cfg = _cfg(config)
    _setup_logging(log_file, log_level, verbose)

    if workers is not None:
        cfg = dataclasses.replace(cfg, build_workers=workers)
    if embeddings is not None:
        cfg = dataclasses.replace(cfg, generate_embeddings=embeddings)

    try:
        stats = KnowledgeBaseBuilder(cfg).build()
    except RepoKBError as e:
        _fail(e)

    typer.echo(
        f"Build complete: {stats.files_indexed} files, {stats.documents_created} documents, "
        f"{stats.embeddings_created} embeddings in {stats.elapsed_seconds:.1f}s"
    )
    if stats.files_failed > 0:
        typer.echo(f"  ({stats.files_failed} files failed)")
    if stats.units_failed > 0:
        typer.echo(f"  ({stats.units_failed} sources skipped)")
    if stats.files_with_secrets > 0:
        typer.echo(f"  ({stats.files_with_secrets} files had secrets redacted)")
    typer.echo(f"  Output: {cfg.output_dir} ({stats.artifact_bytes / 1024 / 1024:.2f}MB)")

@app.command()
def query(q: str, config: str = typer.Option("repokb.toml"),
          k: int = typer.Option(None, help="Maximum results (default: retrieval.limit)"),
          mode: str = typer.Option(None, help=f"One of {', '.join(SEARCH_MODES)} (default: retrieval.mode)"),
          repo: str = typer.Option(None, help="Only this source, e.g. owner/repo"),
          language: str = typer.Option(None, help="Only this language"),
          tag: str = typer.Option(None, help="Only documents carrying this tag"),
          pr_status: str = typer.Option(None, "--pr-status", help="open, closed, merged or all"),
          file_type: str = typer.Option(None, "--file-type", help="File extension, e.g. md")):
    """Search the knowledge base; prints JSON."""
    cfg = _cfg(config)
    mode = mode or cfg.default_mode
    vectorizer = vectorizer_from_config(cfg) if mode != "keyword" else None
    ctx = RetrievalContext.from_directory(cfg.output_dir, vectorizer=vectorizer)
    filters = SearchFilters(repo=repo, language=language, tag=tag, pr_status=pr_status, file_type=file_type)

    try:
        hits = ctx.search(q, filters=filters, limit=k or cfg.default_limit, mode=mode)
    except ValidationError as e:
        raise typer.BadParameter(str(e))
    except RepoKBError as e:
        _fail(e)

    results = []
    for h in hits:
        result_dict = {
            "id": h.id,
            "score": h.score,
            "title": h.doc.title,
            "citation": h.doc.citation(),
            "url": h.doc.source_url(),
            "lang": h.doc.language,
            "tags": list(h.doc.tags),
            "snippet": h.doc.content_excerpt[:300],
            "metadata": h.metadata,
        }
        if h.doc.pull_request is not None:
            result_dict["pullRequest"] = h.doc.pull_request.to_dict()
        results.append(result_dict)

    typer.echo(json.dumps(results, indent=2))

@app.command()
def status(config: str = typer.Option("repokb.toml")):
    """Show what the current artifact contains."""
    cfg = _cfg(config)
    ctx = RetrievalContext.from_directory(cfg.output_dir)
    try:
        meta = ctx.meta()
        repos = ctx.repos()
        languages = ctx.languages()
        has_embeddings = ctx.has_embeddings()
    except RepoKBError as e:
        _fail(e)

    typer.echo(f"Generated: {meta.get('generatedAt')}")
    typer.echo(f"Scope: {meta.get('sourceScope')}")
    typer.echo(f"Version: {meta.get('version')}")
    typer.echo(f"Documents: {meta.get('docCount')}")
    typer.echo(f"Repositories ({len(repos)}): {', '.join(repos)}")
    typer.echo(f"Languages: {', '.join(languages)}")
    typer.echo(f"Embeddings: {'yes' if has_embeddings else 'no'}")
    for s in meta.get("prStats", []):
        typer.echo(f"  {s['repo']}: {s['openPRs']} open / {s['totalPRs']} PRs")

if __name__ == "__main__":
    app()
