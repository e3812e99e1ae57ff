"""grimoire analyze — corpus report without touching the database or the network.

Scans the data export the same way ``grimoire ingest`` does and reports
per-category counts, length distributions, skip reasons, markup frequency,
publication sources, traits, parse errors, and the embedding cost estimate.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from grimoire.cli.errors import err_source_not_found
from grimoire.cli.ingest import parse_and_chunk
from grimoire.cli.options import load_settings, select_categories
from grimoire.ingest.chunker import DocumentChunker
from grimoire.ingest.discovery import discover_files
from grimoire.ingest.pipeline import IngestStats, percentile

console = Console()

_LIST_LIMIT = 30
_ERROR_LIMIT = 10


def analyze_cmd(
    source: Annotated[
        Path | None,
        typer.Option("--source", "-s", help="pf2e packs directory (default: ingest.source)."),
    ] = None,
    categories: Annotated[
        str | None,
        typer.Option("--categories", "-c", help="Comma-separated directories or labels."),
    ] = None,
) -> None:
    """Report corpus statistics (dry run: no database, no API calls)."""
    cfg = load_settings(console)
    data_dir = source or Path(cfg.ingest.source)
    selected = select_categories(console, cfg, categories)

    if not data_dir.is_dir():
        console.print(err_source_not_found(str(data_dir)))
        raise typer.Exit(1)

    files = discover_files(data_dir, selected)
    if not files:
        console.print("[yellow]No files found.[/] Check --source and --categories.")
        raise typer.Exit(0)

    chunker = DocumentChunker(
        max_chars=cfg.chunking.max_chunk_chars, overlap_chars=cfg.chunking.overlap_chars
    )
    stats = parse_and_chunk(console, files, chunker, cfg.chunking.min_content_chars)

    _show_category_table(stats)
    _show_content_distribution(stats)
    _show_chunk_distribution(stats)
    _show_skip_reasons(stats)
    _show_notation(stats)
    _show_list("Unique publication sources", stats.sources)
    _show_list("Unique traits", stats.traits)
    _show_errors(stats)
    _show_cost(stats)


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


def _show_category_table(stats: IngestStats) -> None:
    table = Table(title="Per-category summary", show_header=True, header_style="bold", show_footer=True)
    table.add_column("Category", footer="TOTAL")
    table.add_column("Files", justify="right", footer=f"{stats.files:,}")
    table.add_column("Parsed", justify="right", footer=f"{stats.parsed:,}")
    table.add_column("Skipped", justify="right", footer=f"{stats.skipped:,}")
    table.add_column("Errors", justify="right", footer=f"{stats.errors:,}")
    table.add_column("Chunks", justify="right", footer=f"{len(stats.chunks):,}")

    lengths = [n for c in stats.categories.values() for n in c.content_lengths]
    overall = round(sum(lengths) / len(lengths)) if lengths else 0
    table.add_column("Avg len", justify="right", footer=f"{overall:,}")

    for cat in stats.sorted_categories():
        table.add_row(
            cat.category,
            f"{cat.file_count:,}",
            f"{cat.parsed_count:,}",
            f"{cat.skipped_count:,}",
            f"{cat.error_count:,}",
            f"{cat.chunk_count:,}",
            f"{cat.average_length:,}",
        )
    console.print(table)


def _show_content_distribution(stats: IngestStats) -> None:
    table = Table(title="Content length distribution (parsed documents)", header_style="bold")
    table.add_column("Category")
    for name in ("Min", "Median", "P95", "Max"):
        table.add_column(name, justify="right")

    for cat in stats.sorted_categories():
        if not cat.content_lengths:
            continue
        values = sorted(cat.content_lengths)
        table.add_row(
            cat.category,
            f"{values[0]:,}",
            f"{percentile(values, 50):,}",
            f"{percentile(values, 95):,}",
            f"{values[-1]:,}",
        )
    console.print(table)


def _show_chunk_distribution(stats: IngestStats) -> None:
    console.print("\n[bold]Chunk length distribution[/]")
    values = sorted(stats.chunk_lengths)
    if not values:
        console.print("  (no chunks)")
        return
    console.print(f"  Total chunks:      {len(values):,}")
    console.print(f"  Min:               {values[0]:,} chars")
    console.print(f"  Median:            {percentile(values, 50):,} chars")
    console.print(f"  P95:               {percentile(values, 95):,} chars")
    console.print(f"  Max:               {values[-1]:,} chars")
    console.print(f"  Estimated tokens:  ~{stats.estimated_tokens:,} (at ~4 chars/token)")

    extra_chunks = len(values) - stats.parsed
    console.print(f"  Documents split into several chunks produced {extra_chunks:,} extra chunks")


def _show_skip_reasons(stats: IngestStats) -> None:
    console.print("\n[bold]Skip reasons[/]")
    reasons = stats.skip_reasons
    if not reasons:
        console.print("  (none)")
    for reason, count in reasons.most_common():
        console.print(f"  {reason}: {count:,}")


def _show_notation(stats: IngestStats) -> None:
    console.print("\n[bold]Markup reference frequency[/]")
    labels = {
        "uuid_refs": "@UUID references",
        "damage_refs": "@Damage references",
        "check_refs": "@Check references",
        "embed_refs": "@Embed references",
        "localize_refs": "@Localize references",
    }
    for key, count in stats.notation.as_dict().items():
        console.print(f"  {labels.get(key, key) + ':':<24}{count:,}")


def _show_list(title: str, values: set[str]) -> None:
    console.print(f"\n[bold]{title} ({len(values):,})[/]")
    ordered = sorted(values)
    for value in ordered[:_LIST_LIMIT]:
        console.print(f"  {value}", markup=False)
    if len(ordered) > _LIST_LIMIT:
        console.print(f"  ... and {len(ordered) - _LIST_LIMIT:,} more")


def _show_errors(stats: IngestStats) -> None:
    if not stats.errors:
        return
    console.print(f"\n[bold red]Parse errors ({stats.errors:,})[/]")
    for cat in stats.sorted_categories():
        for error in cat.errors[:_ERROR_LIMIT]:
            console.print(f"  {error}", markup=False)
        if cat.error_count > _ERROR_LIMIT:
            console.print(f"  ... and {cat.error_count - _ERROR_LIMIT:,} more errors in {cat.category}")


def _show_cost(stats: IngestStats) -> None:
    console.print("\n[bold]Embedding cost estimate[/]")
    console.print(f"  Total content:     {stats.total_chars:,} chars")
    console.print(f"  Estimated tokens:  ~{stats.estimated_tokens:,}")
    console.print(f"  Estimated cost:    ~${stats.estimated_cost:.3f} (text-embedding-3-small)")
