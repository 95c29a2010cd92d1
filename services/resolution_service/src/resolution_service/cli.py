"""
Operator CLI for the identity-resolution layer.

Usage:
    quotelog-resolve init-db                       # Create tables (dev; use alembic in prod)
    quotelog-resolve resolve "Sen. Ted Cruz"       # Resolve one speaker name
    quotelog-resolve ingest quotes.jsonl           # Resolve + dedup extracted quote candidates
    quotelog-resolve review list|stats             # Inspect the disambiguation queue
    quotelog-resolve review merge|reject|skip ID   # Resolve one queue item
    quotelog-resolve review batch merge 1 2 3      # Resolve several items, one savepoint each
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from quotelog_core.db.base import Base
from quotelog_core.db.session import SessionLocal, engine
from resolution_service.errors import ResolutionError
from resolution_service.person_resolution.resolver import NewPerson, PendingReview, Resolution, Resolved
from resolution_service.person_resolution.review_queue import DisambiguationQueue
from resolution_service.pipeline import IdentityPipeline, QuoteCandidate
from resolution_service.quote_dedup.merge import ArticleRef
from resolution_service.repositories import SqlPersonRepository
from resolution_service.settings import settings

app = typer.Typer(name="quotelog-resolve", help="Quote dedup and speaker identity resolution.")
review_app = typer.Typer(help="Disambiguation review queue.")
app.add_typer(review_app, name="review")
console = Console()


@app.callback()
def main(log_level: str = typer.Option(settings.log_level, "--log-level", help="Python logging level.")) -> None:
    logging.basicConfig(
        level=log_level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
    )


def _describe(resolution: Resolution) -> str:
    if isinstance(resolution, Resolved):
        return f"[green]resolved[/green] person={resolution.person_id} confidence={resolution.confidence:.2f}"
    if isinstance(resolution, PendingReview):
        return (
            f"[yellow]pending review[/yellow] item={resolution.queue_item_id} "
            f"candidate={resolution.candidate_id} attached_to={resolution.person_id} "
            f"confidence={resolution.confidence:.2f}"
        )
    return f"[cyan]new person[/cyan] person={resolution.person_id}"


@app.command("init-db")
def init_db() -> None:
    """Create all tables on the configured database."""
    Base.metadata.create_all(engine)
    console.print(f"[green]✓ Schema created[/green] ({engine.url.render_as_string(hide_password=True)})")


@app.command()
def resolve(
    name: str,
    title: str | None = typer.Option(None, "--title", "-t", help="Speaker title, e.g. 'Texas senator'."),
    context: str | None = typer.Option(None, "--context", "-c", help="Context sentence around the quote."),
) -> None:
    """Resolve one speaker name to a person id."""

    async def run() -> Resolution:
        async with IdentityPipeline.from_settings(SessionLocal, settings) as pipeline:
            return await pipeline.resolve_person(name, title, context)

    console.print(_describe(asyncio.run(run())))


@app.command()
def ingest(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSONL file of quote candidates."),
) -> None:
    """
    Resolve and deduplicate quote candidates, one JSON object per line.

    Each line carries the extractor fields (text, personHintName,
    personHintTitle, quoteType, context, sourceUrl, topics, keywords) plus
    optional articleId / articleUrl.
    """

    async def run() -> tuple[Table, int]:
        table = Table(title=f"Ingested {path.name}")
        table.add_column("Line", justify="right")
        table.add_column("Speaker")
        table.add_column("Resolution")
        table.add_column("Quote", justify="right")
        table.add_column("Duplicate")
        failures = 0
        async with IdentityPipeline.from_settings(SessionLocal, settings) as pipeline:
            for lineno, line in enumerate(path.read_text(encoding="utf-8").splitlines(), start=1):
                if not line.strip():
                    continue
                try:
                    raw = json.loads(line)
                    candidate = QuoteCandidate.from_dict(raw)
                except ValueError as exc:
                    failures += 1
                    console.print(f"[red]line {lineno}: {exc}[/red]")
                    continue
                article = ArticleRef(id=raw.get("articleId"), url=raw.get("articleUrl") or candidate.source_url)
                outcome = await pipeline.ingest_candidate(candidate, article)
                table.add_row(
                    str(lineno),
                    candidate.speaker_name,
                    _describe(outcome.resolution),
                    str(outcome.quote.id),
                    "yes" if outcome.quote.is_duplicate else "no",
                )
        return table, failures

    table, failures = asyncio.run(run())
    console.print(table)
    if failures:
        raise typer.Exit(code=1)


def _queue() -> DisambiguationQueue:
    session = SessionLocal()
    return DisambiguationQueue(session, SqlPersonRepository(session))


@review_app.command("list")
def review_list(
    limit: int = typer.Option(20, "--limit", "-l"),
    offset: int = typer.Option(0, "--offset"),
) -> None:
    """Show pending items, oldest first."""
    queue = _queue()
    page = queue.list_pending(limit=limit, offset=offset)
    table = Table(title=f"Pending review ({page.total})")
    table.add_column("ID", justify="right")
    table.add_column("New name")
    table.add_column("Candidate")
    table.add_column("Score", justify="right")
    table.add_column("Aliases")
    table.add_column("Recent quotes")
    for item in page.items:
        candidate = f"{item.candidate_name} (#{item.candidate_person_id})" if item.candidate_person_id else "-"
        score = f"{item.similarity_score:.2f}" if item.similarity_score is not None else "-"
        table.add_row(
            str(item.id),
            item.new_name,
            candidate,
            score,
            ", ".join(item.candidate_aliases),
            "\n".join(item.candidate_recent_quotes),
        )
    console.print(table)
    queue.session.close()


@review_app.command("stats")
def review_stats() -> None:
    queue = _queue()
    stats = queue.stats()
    console.print(f"pending: {stats.pending}  resolved (24h): {stats.resolved_today}")
    queue.session.close()


def _apply(action: str, item_id: int) -> None:
    queue = _queue()
    try:
        outcome = getattr(queue, action)(item_id)
    except ResolutionError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    finally:
        queue.session.close()
    suffix = f" person={outcome.person_id}" if outcome.person_id is not None else ""
    console.print(f"[green]item {item_id}: {outcome.action}[/green]{suffix}")


@review_app.command("merge")
def review_merge(item_id: int) -> None:
    """Attach the queued name to the suggested candidate."""
    _apply("merge", item_id)


@review_app.command("reject")
def review_reject(item_id: int) -> None:
    """Treat the queued name as a different person."""
    _apply("reject", item_id)


@review_app.command("skip")
def review_skip(item_id: int) -> None:
    """Move an item to the back of the queue."""
    _apply("skip", item_id)


@review_app.command("batch")
def review_batch(action: str, item_ids: list[int]) -> None:
    """Apply merge or reject to several items; failures do not roll back the others."""
    if action not in ("merge", "reject"):
        raise typer.BadParameter("action must be merge or reject")
    queue = _queue()
    try:
        results = queue.batch(action, item_ids)
    finally:
        queue.session.close()
    table = Table(title=f"Batch {action}")
    table.add_column("ID", justify="right")
    table.add_column("Result")
    table.add_column("Person", justify="right")
    for row in results:
        status = f"[green]{row['action']}[/green]" if row["success"] else f"[red]{row['reason']}[/red]"
        table.add_row(str(row["id"]), status, str(row.get("person_id") or "-"))
    console.print(table)


if __name__ == "__main__":
    app()
