"""grimoire ingest — load the pf2e data export into the vector store.

Steps:
  1. discover   category directories → record files
  2. parse      records → documents (skips and errors counted, never fatal)
  3. chunk      documents → rule chunks
  4. clear      (--clear) delete every stored chunk
  5. embed      batched embedding requests (unless --skip-embedding)
  6. write      batched INSERTs, then report the final row count

--dry-run stops after step 3 and prints a cost estimate.
"""

from __future__ import annotations

import sqlite3
import time
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.table import Table

from grimoire.cli.errors import err_ingest_failed, err_source_not_found, err_store_write
from grimoire.cli.options import load_settings, require_api_key, select_categories
from grimoire.db.connection import Database
from grimoire.db.repository import ChunkRepository
from grimoire.db.schema import initialize
from grimoire.ingest.chunker import DocumentChunker
from grimoire.ingest.discovery import DiscoveredFile, discover_files
from grimoire.ingest.embedder import EmbeddingClient
from grimoire.ingest.embedding_writer import EmbeddingWriter
from grimoire.ingest.pipeline import IngestStats, collect_chunks

console = Console()


def ingest_cmd(
    source: Annotated[
        Path | None,
        typer.Option("--source", "-s", help="pf2e packs directory (default: ingest.source)."),
    ] = None,
    categories: Annotated[
        str | None,
        typer.Option("--categories", "-c", help="Comma-separated directories or labels, e.g. spells,feat."),
    ] = None,
    clear: Annotated[
        bool,
        typer.Option("--clear", help="Delete all stored chunks before writing."),
    ] = False,
    skip_embedding: Annotated[
        bool,
        typer.Option("--skip-embedding", help="Write chunks without embeddings."),
    ] = False,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Parse and chunk only; no database or API calls."),
    ] = False,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Vector store path (default: database.path)."),
    ] = None,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompts."),
    ] = False,
) -> None:
    """Parse, chunk, embed, and store the rules corpus."""
    started = time.monotonic()
    cfg = load_settings(console)
    data_dir = source or Path(cfg.ingest.source)
    db_path = db or Path(cfg.database.path)
    selected = select_categories(console, cfg, categories)

    mode = "DRY RUN" if dry_run else "SKIP EMBEDDING" if skip_embedding else "FULL"
    console.print("[bold]Pathfinder 2e rules ingestion[/]")
    console.print(f"  Source:          {data_dir}")
    console.print(f"  Mode:            {mode}")
    console.print(f"  Clear existing:  {clear}")
    if categories:
        console.print(f"  Categories:      {', '.join(selected.values())}")

    if not data_dir.is_dir():
        console.print(err_source_not_found(str(data_dir)))
        raise typer.Exit(1)

    files = discover_files(data_dir, selected)
    if not files:
        console.print("[yellow]No files found.[/] Check --source and --categories.")
        raise typer.Exit(0)
    console.print(f"  Files:           {len(files):,}")

    chunker = DocumentChunker(
        max_chars=cfg.chunking.max_chunk_chars, overlap_chars=cfg.chunking.overlap_chars
    )
    stats = parse_and_chunk(console, files, chunker, cfg.chunking.min_content_chars)
    _print_parse_summary(stats)

    if dry_run:
        console.print("\n[bold]Dry run complete[/] — nothing written.")
        _print_cost(stats)
        console.print(f"  Elapsed: {time.monotonic() - started:.1f}s")
        return

    if not stats.chunks:
        console.print("[yellow]No chunks produced; nothing to write.[/]")
        raise typer.Exit(0)

    if not skip_embedding:
        require_api_key(console, cfg.embedding.model)
        _print_cost(stats)

    if not yes and (clear or not skip_embedding):
        action = "Clear the store and write" if clear else "Write"
        suffix = "" if skip_embedding else " (embedding API calls are billed)"
        if not typer.confirm(f"{action} {len(stats.chunks):,} chunks{suffix}?", default=True):
            console.print("[dim]Aborted.[/]")
            raise typer.Exit(0)

    database = Database(db_path)
    conn = database.connect()
    try:
        initialize(conn)
        repo = ChunkRepository(conn, dimensions=cfg.embedding.dimensions)
        if clear:
            removed = repo.clear_chunks()
            console.print(f"[green]✓[/] Cleared {removed:,} existing chunks")

        embedder = None if skip_embedding else EmbeddingClient(cfg.embedding)
        writer = EmbeddingWriter(repo, embedder, db_batch_size=cfg.ingest.db_batch_size)
        written = _write_with_progress(writer, stats, skip_embedding)
        final_count = repo.count()
        stored_by_category = repo.count_by_category()
    except (sqlite3.Error, ValueError) as exc:
        console.print(err_store_write(str(db_path), exc))
        raise typer.Exit(1)
    except Exception as exc:
        console.print(err_ingest_failed(exc))
        raise typer.Exit(1)
    finally:
        conn.close()

    console.print(f"[green]✓[/] Wrote {written:,} chunks ({'no embeddings' if skip_embedding else 'embedded'})")
    console.print(f"Database now contains [bold]{final_count:,}[/] chunks.")
    _print_store_categories(stored_by_category)
    console.print(f"  Elapsed: {time.monotonic() - started:.1f}s")


# ------------------------------------------------------------------
# Stages with progress display
# ------------------------------------------------------------------


def parse_and_chunk(
    out: Console, files: list[DiscoveredFile], chunker: DocumentChunker, min_chars: int
) -> IngestStats:
    """Run collect_chunks behind a per-file progress bar (shared with analyze)."""
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        transient=True,
        console=out,
    ) as prog:
        task = prog.add_task("Parsing…", total=len(files))
        return collect_chunks(
            files,
            chunker=chunker,
            min_chars=min_chars,
            on_file=lambda _f: prog.advance(task),
        )


def _write_with_progress(writer: EmbeddingWriter, stats: IngestStats, skip_embedding: bool) -> int:
    total = len(stats.chunks)
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        transient=True,
        console=console,
    ) as prog:
        embed_task = None
        if not skip_embedding:
            embed_task = prog.add_task("Embedding…", total=total)
        write_task = prog.add_task("Writing…", total=total)

        def _on_embed(done: int, _total: int) -> None:
            if embed_task is not None:
                prog.update(embed_task, completed=done)

        def _on_write(done: int, _total: int) -> None:
            prog.update(write_task, completed=done)

        return writer.write(
            stats.chunks,
            skip_embedding=skip_embedding,
            on_embed_batch=_on_embed,
            on_write_batch=_on_write,
        )


# ------------------------------------------------------------------
# Reporting
# ------------------------------------------------------------------


def _print_parse_summary(stats: IngestStats) -> None:
    console.print(f"  Parsed:          {stats.parsed:,} documents")
    console.print(f"  Skipped:         {stats.skipped:,}")
    console.print(f"  Errors:          {stats.errors:,} files")
    console.print(f"  Total chunks:    {len(stats.chunks):,}")

    by_category = stats.chunks_by_category
    if not by_category:
        return
    table = Table(title="Chunks per category", show_header=True, header_style="bold")
    table.add_column("Category")
    table.add_column("Chunks", justify="right")
    for category, count in by_category.items():
        table.add_row(category, f"{count:,}")
    console.print(table)

    for cat in stats.sorted_categories():
        for error in cat.errors[:3]:
            console.print(f"  [red]✗[/] {error}")


def _print_store_categories(counts: dict[str, int]) -> None:
    if not counts:
        return
    table = Table(title="Stored chunks by category", show_header=True, header_style="bold")
    table.add_column("Category")
    table.add_column("Rows", justify="right")
    for category, rows in counts.items():
        table.add_row(category, f"{rows:,}")
    console.print(table)


def _print_cost(stats: IngestStats) -> None:
    console.print(f"  Total content:     {stats.total_chars:,} chars")
    console.print(f"  Estimated tokens:  ~{stats.estimated_tokens:,}")
    console.print(f"  Estimated cost:    ~${stats.estimated_cost:.3f}")
