"""Command line interface for NoteFinder."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, Optional, TypeVar

import typer
from rich.console import Console
from rich.progress import BarColumn, Progress, TextColumn
from rich.table import Table

from notefinder.application import NoteFinder
from notefinder.config import save_config
from notefinder.errors import NoteFinderError
from notefinder.index.search import SearchResult
from notefinder.models import COLLECTIONS, Collection
from notefinder.vault.watcher import watch_repository

console = Console()
app = typer.Typer(help="NoteFinder - local semantic search for Markdown and PDF notes")

T = TypeVar("T")


def _setup_logging(verbose: bool) -> int:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")
    return level


def _run(main: Callable[[], Awaitable[T]]) -> T:
    """Run ``main`` on a fresh event loop, turning NoteFinder errors into exit code 1."""
    try:
        return asyncio.run(main())
    except NoteFinderError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc


def _open(vault: Path, level: int) -> NoteFinder:
    return NoteFinder.from_vault(vault, log_level=level)


async def _require_ready(finder: NoteFinder) -> None:
    if not finder.service.is_ready():
        await finder.close()
        console.print("[red]AI model is not ready. Run 'notefinder setup' first.[/red]")
        raise typer.Exit(code=1)


def _print_results(results: list[SearchResult]) -> None:
    if not results:
        console.print("[yellow]No matches found.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Score")
    table.add_column("Note")
    table.add_column("Source")
    table.add_column("Excerpt")
    for result in results:
        table.add_row(f"{result.score:.4f}", result.path, result.source, result.excerpt[:180])
    console.print(table)


@app.command()
def setup(
    vault: Path = typer.Option(Path("."), "--vault", help="Vault folder", resolve_path=True, file_okay=False),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Download the embedding model (if needed) and start the inference worker."""
    level = _setup_logging(verbose)

    async def main() -> bool:
        finder = _open(vault, level)
        try:
            finder.store.load()
            with Progress(TextColumn("{task.description}"), BarColumn(), console=console) as progress:
                task = progress.add_task("Checking model files...", total=100)

                def report(message: str, percent: int) -> None:
                    progress.update(task, description=message, completed=percent)

                ok = await finder.setup_model(report)
                progress.update(task, completed=100)
            return ok
        finally:
            await finder.close()

    ok = _run(main)
    if not ok:
        console.print("[red]Setup failed. See the log for details.[/red]")
        raise typer.Exit(code=1)
    console.print("[green]AI model ready.[/green]")


@app.command()
def status(
    vault: Path = typer.Option(Path("."), "--vault", help="Vault folder", resolve_path=True, file_okay=False),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Show the persisted model state and settings."""
    level = _setup_logging(verbose)
    finder = _open(vault, level)
    config = finder.config

    console.print(f"Vault: [bold]{config.vault_path}[/bold]")
    console.print(f"Status: [bold]{finder.service.status.value}[/bold] ({finder.service.message})")
    console.print(f"Model: {config.model_repo} (downloaded: {finder.service.is_model_downloaded()})")
    enabled = ", ".join(c.value for c in config.enabled_collections()) or "none"
    console.print(f"Collections: {enabled}")
    console.print(
        f"Min text length: {config.min_text_length}, max suggestions: {config.max_suggestions}, "
        f"auto index: {config.auto_index}"
    )


@app.command()
def configure(
    vault: Path = typer.Option(Path("."), "--vault", help="Vault folder", resolve_path=True, file_okay=False),
    titles: Optional[bool] = typer.Option(None, "--titles/--no-titles", help="Index note titles"),
    headings: Optional[bool] = typer.Option(None, "--headings/--no-headings", help="Index section headings"),
    content: Optional[bool] = typer.Option(None, "--content/--no-content", help="Index note content"),
    min_text_length: Optional[int] = typer.Option(None, help="Minimum text length for suggestions"),
    max_suggestions: Optional[int] = typer.Option(None, help="Number of related notes to suggest"),
    auto_index: Optional[bool] = typer.Option(None, "--auto-index/--no-auto-index", help="Re-index notes on change"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Change indexing settings."""
    level = _setup_logging(verbose)
    finder = _open(vault, level)
    config = finder.config
    updates = {
        "index_titles": titles,
        "index_headings": headings,
        "index_content": content,
        "min_text_length": min_text_length,
        "max_suggestions": max_suggestions,
        "auto_index": auto_index,
    }
    for name, value in updates.items():
        if value is not None:
            setattr(config, name, value)
    save_config(config)
    console.print(f"Settings saved to [bold]{config.settings_path}[/bold]")


@app.command()
def index(
    vault: Path = typer.Option(Path("."), "--vault", help="Vault folder", resolve_path=True, file_okay=False),
    collection: Optional[Collection] = typer.Option(None, "--type", help="Index only this collection"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Run a full indexing pass for one or all enabled collections."""
    level = _setup_logging(verbose)

    async def main() -> None:
        finder = _open(vault, level)
        await finder.start(check_consistency=False)
        await _require_ready(finder)
        try:
            with Progress(TextColumn("{task.description}"), BarColumn(), console=console) as progress:
                tasks = {}

                def report(current: Collection, done: int, total: int) -> None:
                    if current not in tasks:
                        tasks[current] = progress.add_task(f"Indexing {current.value}", total=total)
                    progress.update(tasks[current], completed=done)

                if collection is None:
                    results = await finder.engine.index_all(report)
                else:
                    results = {collection: await finder.engine.index_specific_type(collection, report)}
        finally:
            await finder.close()

        for current, stats in results.items():
            console.print(
                f"{current.value}: embedded {stats.embedded}, skipped {stats.skipped}, "
                f"removed {stats.removed}, failed {stats.failed}"
            )

    _run(main)


@app.command("index-note")
def index_note(
    path: str = typer.Argument(..., help="Note path relative to the vault"),
    vault: Path = typer.Option(Path("."), "--vault", help="Vault folder", resolve_path=True, file_okay=False),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Index a single note."""
    level = _setup_logging(verbose)

    async def main() -> None:
        finder = _open(vault, level)
        await finder.start(check_consistency=False)
        await _require_ready(finder)
        try:
            doc = finder.repository.get_document(path)
            if doc is None:
                raise typer.BadParameter(f"Note not found: {path}")
            stats = await finder.engine.index_note(doc)
        finally:
            await finder.close()
        console.print(f"{path}: embedded {stats.embedded}, skipped {stats.skipped}, failed {stats.failed}")

    _run(main)


@app.command()
def search(
    query: str = typer.Argument(..., help="Query text"),
    vault: Path = typer.Option(Path("."), "--vault", help="Vault folder", resolve_path=True, file_okay=False),
    top_k: int = typer.Option(5, help="Number of results to display"),
    min_score: float = typer.Option(0.0, help="Drop results scoring below this"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Execute a semantic search."""
    level = _setup_logging(verbose)

    async def main() -> list[SearchResult]:
        finder = _open(vault, level)
        await finder.start(check_consistency=False)
        await _require_ready(finder)
        try:
            return await finder.search.search_by_text(query, top_k=top_k, min_score=min_score)
        finally:
            await finder.close()

    _print_results(_run(main))


@app.command()
def related(
    path: str = typer.Argument(..., help="Note path relative to the vault"),
    vault: Path = typer.Option(Path("."), "--vault", help="Vault folder", resolve_path=True, file_okay=False),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Suggest notes related to the given one."""
    level = _setup_logging(verbose)

    async def main() -> list[SearchResult]:
        finder = _open(vault, level)
        await finder.start(check_consistency=False)
        await _require_ready(finder)
        try:
            return await finder.related_to(path)
        finally:
            await finder.close()

    _print_results(_run(main))


@app.command()
def stats(
    vault: Path = typer.Option(Path("."), "--vault", help="Vault folder", resolve_path=True, file_okay=False),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Show index statistics."""
    level = _setup_logging(verbose)
    finder = _open(vault, level)
    finder.store.load()
    current = finder.store.get_stats()

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Collection")
    table.add_column("Indexed")
    table.add_column("Enabled")
    for collection in COLLECTIONS:
        table.add_row(
            collection.value,
            str(current.count_for(collection)),
            "yes" if finder.config.is_enabled(collection) else "no",
        )
    console.print(table)
    console.print(f"Total notes: {current.total_notes}")
    console.print(f"Database size: {current.database_size_kb} KB")
    console.print(f"Last update: {current.last_update}")
    if current.is_indexing:
        console.print(
            f"[yellow]Indexing {current.current_indexing_type.value}: "
            f"{current.current_indexing_progress}/{current.total_indexing_items}[/yellow]"
        )


@app.command()
def watch(
    vault: Path = typer.Option(Path("."), "--vault", help="Vault folder", resolve_path=True, file_okay=False),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Keep the index up to date while notes change. Stop with Ctrl+C."""
    level = _setup_logging(verbose)

    async def main() -> None:
        finder = _open(vault, level)
        try:
            await finder.start()
            console.print(f"Watching [bold]{finder.config.vault_path}[/bold]...")
            await watch_repository(finder.repository, finder.coordinator)
        finally:
            await finder.close()

    try:
        _run(main)
    except KeyboardInterrupt:
        console.print("Stopped.")


@app.command()
def reset(
    vault: Path = typer.Option(Path("."), "--vault", help="Vault folder", resolve_path=True, file_okay=False),
    models: bool = typer.Option(False, "--models", help="Also delete the downloaded model and settings"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Delete the embeddings database (and optionally the model)."""
    level = _setup_logging(verbose)
    what = "all NoteFinder data including the model" if models else "the embeddings database"
    if not yes and not typer.confirm(f"Delete {what}?"):
        raise typer.Abort()

    async def main() -> None:
        finder = _open(vault, level)
        try:
            finder.store.load()
            if models:
                await finder.hard_reset()
            else:
                await finder.soft_reset()
        finally:
            await finder.close()

    _run(main)
    console.print("[green]Reset complete.[/green]")


@app.command("reset-worker")
def reset_worker(
    vault: Path = typer.Option(Path("."), "--vault", help="Vault folder", resolve_path=True, file_okay=False),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Kill and restart the inference worker, clearing its crash history."""
    level = _setup_logging(verbose)

    async def main() -> bool:
        finder = _open(vault, level)
        try:
            ok = await finder.client.force_reset()
            finder.service.load_model()
            if ok:
                ok = await finder.service.test_inference() is not None
            return ok
        finally:
            await finder.close()

    if not _run(main):
        console.print("[red]Worker reset failed.[/red]")
        raise typer.Exit(code=1)
    console.print("[green]Worker reset.[/green]")
