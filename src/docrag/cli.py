"""docrag CLI."""

import asyncio
import mimetypes
from pathlib import Path
from typing import Optional
from uuid import UUID

import typer
from rich.console import Console
from rich.table import Table

from docrag.config import settings
from docrag.errors import CacheUnavailableError, DocRagError
from docrag.logging_config import configure_logging
from docrag.models import AccessLevel, EngineId, IngestOptions, RAGConfig, SearchConfig
from docrag.pipeline import build_template_profile, parse_document
from docrag.storage import (
    ConceptRepository,
    DocumentRepository,
    close_db,
    get_session,
    init_db,
)

app = typer.Typer(
    name="docrag",
    help="Document ingestion and verified, citation-grounded question answering",
    add_completion=False,
)
console = Console()


@app.callback()
def main() -> None:
    configure_logging(settings.log_level)


def _run(coro):
    async def runner():
        try:
            return await coro
        finally:
            await close_db()

    return asyncio.run(runner())


def _guess_mime_type(path: Path) -> str:
    if path.suffix.lower() == ".md":
        return "text/markdown"
    return mimetypes.guess_type(path.name)[0] or "application/octet-stream"


@app.command("init-db")
def init_db_command() -> None:
    """Create the pgvector extension and all tables."""
    _run(init_db())
    console.print("[green]Database initialized[/green]")


@app.command()
def ingest(
    file_path: Path = typer.Argument(..., exists=True, dir_okay=False, help="File to ingest"),
    owner: str = typer.Option("local", help="Owner id"),
    access_level: AccessLevel = typer.Option(AccessLevel.PRIVATE, help="Access level"),
    template_profile: Optional[str] = typer.Option(None, help="Force a template profile id"),
    skip_embedding: bool = typer.Option(False, help="Store chunks without embeddings"),
    dry_run: bool = typer.Option(False, help="Parse and chunk only, do not store"),
) -> None:
    """Ingest a PDF, text or markdown file."""
    from docrag.runtime import get_ingestion_pipeline

    console.print(f"[bold blue]Ingesting:[/bold blue] {file_path}")
    options = IngestOptions(
        owner_id=owner,
        access_level=access_level,
        skip_embedding=skip_embedding,
        skip_storage=dry_run,
        template_profile_id=template_profile,
    )
    try:
        result = _run(
            get_ingestion_pipeline().ingest(
                file_path.read_bytes(), _guess_mime_type(file_path), file_path.name, options
            )
        )
    except DocRagError as e:
        console.print(f"[red]Ingestion failed:[/red] {e}")
        raise typer.Exit(code=1)

    stats = result.stats
    console.print(f"Status: [bold]{result.status}[/bold]  Document: {result.document_id or '-'}")
    console.print(
        f"[dim]{stats.page_count} pages, {stats.chunk_count} chunks "
        f"({stats.boilerplate_chunk_count} boilerplate), {stats.total_time_ms:.0f} ms[/dim]"
    )
    for warning in result.diagnostics.warnings:
        console.print(f"[yellow]warning:[/yellow] {warning}")


@app.command()
def ask(
    query: str = typer.Argument(..., help="Question to answer"),
    owner: str = typer.Option("local", help="Owner id"),
    chat_id: Optional[UUID] = typer.Option(None, help="Continue an existing chat"),
    engine: EngineId = typer.Option(EngineId.COMPAT, help="Answer engine"),
    skip_verification: bool = typer.Option(False, help="Skip the auditor"),
) -> None:
    """Answer a question from the ingested documents."""
    from docrag.runtime import get_orchestrator

    config = RAGConfig.from_settings(
        settings,
        engine=engine,
        skip_verification=skip_verification,
        search=SearchConfig(owner_id=owner),
    )
    response = _run(get_orchestrator().answer(query, config, owner_id=owner, chat_id=chat_id))

    console.print(response.response)
    console.print()
    for source in response.sources:
        console.print(
            f"[dim][{source.citation_id}] {source.filename or 'Unknown'}, "
            f"p.{source.page_number} ({source.relevance_score:.2f})[/dim]"
        )

    flags = []
    if response.cached:
        flags.append("cached")
    if response.degraded:
        flags.append(f"degraded:{response.error_code}")
    status = "[green]verified[/green]" if response.verified else "[yellow]unverified[/yellow]"
    console.print(
        f"{status} confidence={response.confidence:.2f} engine={response.engine.value} "
        f"{' '.join(flags)} [dim]chat {response.chat_id}[/dim]"
    )


@app.command()
def status(limit: int = typer.Option(10, help="Number of recent documents to list")) -> None:
    """Show document and cache status."""
    from docrag.runtime import get_cache

    async def collect():
        async with get_session() as session:
            repo = DocumentRepository(session)
            total = await repo.count_all()
            recent = await repo.list_recent(limit)
        cache = get_cache()
        cache_stats = await cache.stats() if cache else None
        return total, recent, cache_stats

    total, recent, cache_stats = _run(collect())

    console.print("[bold blue]docrag status[/bold blue]")
    console.print(f"Documents: {total}")
    table = Table("Filename", "Status", "Pages", "Template", "OCR rescue")
    for doc in recent:
        table.add_row(
            doc.filename,
            str(doc.processing_status),
            str(doc.page_count or "-"),
            doc.template_profile_id if doc.template_matched else "-",
            doc.ocr_rescue_engine if doc.ocr_rescue_applied else "-",
        )
    console.print(table)

    if cache_stats is None:
        console.print("[dim]Cache disabled[/dim]")
    else:
        console.print(
            f"Cache: {cache_stats.total_entries} entries, {cache_stats.total_hits} hits, "
            f"redis={'yes' if cache_stats.l1_available else 'no'}"
        )


@app.command("cache-sweep")
def cache_sweep() -> None:
    """Delete expired semantic cache entries."""
    from docrag.runtime import get_cache

    cache = get_cache()
    if cache is None:
        console.print("[yellow]Cache disabled[/yellow]")
        return
    try:
        deleted = _run(cache.clear_expired())
    except CacheUnavailableError as e:
        console.print(f"[red]Cache sweep failed:[/red] {e}")
        raise typer.Exit(code=1)
    console.print(f"Deleted {deleted} expired entries")


@app.command("cache-stats")
def cache_stats() -> None:
    """Show semantic cache statistics."""
    from docrag.runtime import get_cache

    cache = get_cache()
    if cache is None:
        console.print("[yellow]Cache disabled[/yellow]")
        return
    try:
        stats = _run(cache.stats())
    except CacheUnavailableError as e:
        console.print(f"[red]Cache unavailable:[/red] {e}")
        raise typer.Exit(code=1)
    console.print(f"Entries: {stats.total_entries}")
    console.print(f"Hits: {stats.total_hits}")
    console.print(f"Average confidence: {stats.avg_confidence:.2f}")
    console.print(f"Redis tier: {'available' if stats.l1_available else 'not configured'}")


@app.command("template-build")
def template_build(
    pdf_path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Sample PDF"),
    profile_id: str = typer.Option(..., "--id", help="Profile id"),
    name: Optional[str] = typer.Option(None, help="Display name"),
    threshold: float = typer.Option(0.65, help="Match threshold (0.4-0.95)"),
    output_dir: Optional[Path] = typer.Option(None, help="Defaults to the profile directory"),
) -> None:
    """Build a template profile from a representative PDF."""
    document = parse_document(pdf_path.read_bytes(), "application/pdf")
    profile = build_template_profile(
        document,
        profile_id,
        name=name,
        threshold=threshold,
        metadata={"source": pdf_path.name},
    )

    target_dir = output_dir or Path(settings.template_profile_dir)
    target_dir.mkdir(parents=True, exist_ok=True)
    target = target_dir / f"{profile.id}.json"
    target.write_text(
        profile.model_dump_json(by_alias=True, exclude_none=True, indent=2), encoding="utf-8"
    )
    console.print(
        f"[green]Wrote {target}[/green] ({len(profile.anchors)} anchors, "
        f"{len(profile.sampled_pages)} sampled pages)"
    )


@app.command()
def terms(
    status_filter: str = typer.Option("pending", "--status", help="pending, approved or rejected"),
    limit: int = typer.Option(50, help="Maximum rows"),
) -> None:
    """List mined term candidates."""

    async def collect():
        async with get_session() as session:
            return await ConceptRepository(session).list_term_candidates(status_filter, limit)

    rows = _run(collect())
    table = Table("Id", "Term", "Frequency", "Confidence", "Source")
    for row in rows:
        table.add_row(
            str(row.id), row.term_original, str(row.frequency), f"{row.confidence:.2f}", row.source_type
        )
    console.print(table)


@app.command("terms-approve")
def terms_approve(
    candidate_id: UUID = typer.Argument(..., help="Term candidate id"),
    concept_key: str = typer.Option(..., "--key", help="Concept key, e.g. RELEASE_GATE"),
    definition: str = typer.Option(..., help="Approved definition"),
    label: Optional[str] = typer.Option(None, help="Concept label"),
    reviewer: Optional[str] = typer.Option(None, help="Reviewer id"),
) -> None:
    """Approve a term candidate as a concept alias with a definition."""

    async def approve():
        async with get_session() as session:
            return await ConceptRepository(session).approve_term_candidate(
                candidate_id, concept_key, definition, reviewer_id=reviewer, label=label
            )

    result = _run(approve())
    if result is None:
        console.print(f"[red]Candidate {candidate_id} not found[/red]")
        raise typer.Exit(code=1)
    console.print(f"[green]Approved[/green] concept {result.concept_id}, alias {result.alias_id}")


@app.command("terms-reject")
def terms_reject(
    candidate_id: UUID = typer.Argument(..., help="Term candidate id"),
    reviewer: Optional[str] = typer.Option(None, help="Reviewer id"),
) -> None:
    """Reject a term candidate."""

    async def reject():
        async with get_session() as session:
            return await ConceptRepository(session).reject_term_candidate(candidate_id, reviewer)

    if not _run(reject()):
        console.print(f"[red]Candidate {candidate_id} not found[/red]")
        raise typer.Exit(code=1)
    console.print("[green]Rejected[/green]")


if __name__ == "__main__":
    app()
