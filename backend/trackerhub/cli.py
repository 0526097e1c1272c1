"""Typer-based CLI for operating the tracker store outside the HTTP API."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from trackerhub.core.config import get_settings
from trackerhub.core.db import dispose_engine, get_session_factory, init_models
from trackerhub.core.errors import TrackerHubError
from trackerhub.core.logging import setup_logging
from trackerhub.models.email import PipelineResult
from trackerhub.models.tracker import ImportMode, ImportResult
from trackerhub.services import bulk_import, export, ledger, rows, trackers
from trackerhub.services.email_source import JsonFileEmailSource
from trackerhub.services.extraction import ExtractionEngine
from trackerhub.services.pipeline import InboxPipeline

app = typer.Typer(help="Tracker Hub maintenance utilities")
console = Console()


def _run(coro):
    async def runner():
        try:
            return await coro
        finally:
            await dispose_engine()

    try:
        return asyncio.run(runner())
    except TrackerHubError as exc:
        typer.secho(exc.message, fg=typer.colors.RED)
        raise typer.Exit(code=1) from exc


async def _import_csv(slug: str, user_id: str, csv_path: Path, mode: ImportMode) -> ImportResult:
    settings = get_settings()
    await init_models()
    async with get_session_factory()() as session:
        tracker = await trackers.get_tracker_by_slug(session, slug)
        content = csv_path.read_text(encoding="utf-8")
        return await bulk_import.import_csv(session, tracker, user_id, content, mode=mode, settings=settings)


async def _export_csv(slug: str, user_id: str) -> tuple[str, str]:
    async with get_session_factory()() as session:
        tracker = await trackers.get_tracker_by_slug(session, slug)
        await trackers.get_owned_tracker(session, tracker.id, user_id)
        schema = trackers.to_schema(tracker)
        tracker_rows, _ = await rows.list_rows(session, schema.id, limit=None)
        return export.export_filename(schema.slug), export.export_tracker_csv(schema, tracker_rows)


async def _process_inbox(user_id: str, inbox: Path, count: Optional[int]) -> PipelineResult:
    settings = get_settings()
    await init_models()
    pipeline = InboxPipeline(
        session_factory=get_session_factory(),
        email_source=JsonFileEmailSource(inbox),
        engine=ExtractionEngine.from_settings(settings),
        settings=settings,
    )
    return await pipeline.run(user_id, count)


async def _cleanup_ledger() -> int:
    settings = get_settings()
    async with get_session_factory()() as session:
        return await ledger.cleanup_stale(session, settings=settings)


@app.callback()
def main() -> None:
    setup_logging(get_settings().log_level, renderer="console", stream=sys.stderr)


@app.command("init-db")
def init_db() -> None:
    """Create any missing tables."""

    _run(init_models())
    typer.secho("Database ready", fg=typer.colors.GREEN)


@app.command("import-csv")
def import_csv(
    slug: str = typer.Argument(..., help="Slug of the target tracker."),
    csv_path: Path = typer.Argument(..., exists=True, dir_okay=False, help="CSV file with a header line."),
    user_id: str = typer.Option(..., "--user", "-u", help="Owner of the tracker."),
    mode: str = typer.Option("append", "--mode", "-m", help="append, update or replace."),
) -> None:
    """Import rows into a tracker from a CSV file."""

    if mode not in ("append", "update", "replace"):
        raise typer.BadParameter("Mode must be one of append, update or replace.")

    result = _run(_import_csv(slug, user_id, csv_path, mode))
    typer.secho("Import complete", fg=typer.colors.GREEN)
    typer.echo(f"Imported: {result.imported}")
    typer.echo(f"Updated: {result.updated}")

    if result.failed:
        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Row")
        table.add_column("Error")
        for failure in result.failed:
            table.add_row(str(failure.row), failure.error)
        console.print(table)
        raise typer.Exit(code=1)


@app.command("export-csv")
def export_csv(
    slug: str = typer.Argument(..., help="Slug of the tracker to export."),
    user_id: str = typer.Option(..., "--user", "-u", help="Owner of the tracker."),
    output_dir: Path = typer.Option(Path("./data/exports"), "--output-dir", "-o", help="Directory for the CSV file."),
) -> None:
    """Write a tracker's rows to a dated CSV file."""

    filename, content = _run(_export_csv(slug, user_id))
    output_dir.mkdir(parents=True, exist_ok=True)
    target = output_dir / filename
    target.write_text(content, encoding="utf-8")
    typer.secho(f"Exported to {target}", fg=typer.colors.GREEN)


@app.command("process-inbox")
def process_inbox(
    user_id: str = typer.Option(..., "--user", "-u", help="Mailbox owner."),
    inbox: Optional[Path] = typer.Option(None, "--inbox", help="JSON inbox file (defaults to INBOX_PATH)."),
    count: Optional[int] = typer.Option(None, "--count", "-n", help="How many recent messages to consider."),
) -> None:
    """Run the inbox pipeline once for a user."""

    settings = get_settings()
    if not settings.openai_api_key:
        raise typer.BadParameter("OpenAI API key not provided via environment.")

    result = _run(_process_inbox(user_id, inbox or Path(settings.inbox_path), count))
    colour = typer.colors.GREEN if result.success else typer.colors.RED
    typer.secho(result.message, fg=colour)

    stats = result.statistics
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Metric")
    table.add_column("Value")
    table.add_row("Fetched", str(stats.total_items))
    table.add_row("Already processed", str(stats.skipped_already_processed))
    table.add_row("Updates created", str(stats.successful_updates))
    table.add_row("Failed", str(stats.failed_processing))
    table.add_row("Proposals", str(stats.total_proposals))
    console.print(table)

    for failed in result.failed_items:
        console.print(f"[red]{failed.source_id}: {failed.error}[/]")


@app.command("cleanup-ledger")
def cleanup_ledger() -> None:
    """Delete processed-message entries past the cleanup age."""

    deleted = _run(_cleanup_ledger())
    typer.echo(f"Ledger entries removed: {deleted}")


if __name__ == "__main__":  # pragma: no cover
    app()
