"""grimoire search — retrieval smoke test against the populated store."""

from __future__ import annotations

import sqlite3
from contextlib import closing
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape

from grimoire.cli.errors import err_embedding_failed, err_empty_store, err_no_db, err_search_failed
from grimoire.cli.options import load_settings, require_api_key
from grimoire.db.connection import Database
from grimoire.db.models import RetrievedChunk
from grimoire.db.repository import ChunkRepository
from grimoire.db.schema import initialize
from grimoire.ingest.embedder import EmbeddingClient
from grimoire.rag.retriever import Retriever

console = Console()

PRESET_QUERIES: tuple[str, ...] = (
    "How does flanking work?",
    "What does the blinded condition do?",
    "What are the alchemist class abilities?",
    "How do I Aid another player?",
    "What is the fireball spell?",
    "What feats does a human get?",
    "How does the dying condition work?",
    "What is the acolyte background?",
    "How much HP does a barbarian get?",
    "What are the domains of Abadar?",
    "How does the Grab an Edge reaction work?",
    "What does the frightened condition do?",
    "What is a versatile heritage?",
    "How does persistent damage work?",
    "What equipment can a rogue use?",
)

# Cosine similarity never drops below -1, so this floor keeps every row.
NO_FLOOR = -1.0
PREVIEW_CHARS = 150


def search_cmd(
    query: Annotated[
        str | None,
        typer.Option("--query", "-q", help="Question to embed and search for."),
    ] = None,
    preset: Annotated[
        bool,
        typer.Option("--preset", help="Run the built-in set of test questions."),
    ] = False,
    top_k: Annotated[
        int,
        typer.Option("--top-k", "-k", min=1, help="Results per query."),
    ] = 5,
    category: Annotated[
        str | None,
        typer.Option("--category", help="Only return chunks of this category label."),
    ] = None,
    threshold: Annotated[
        float | None,
        typer.Option("--threshold", help="Minimum similarity (default: no floor)."),
    ] = None,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Vector store path (default: database.path)."),
    ] = None,
) -> None:
    """Embed test questions and print the ranked chunks they retrieve."""
    if not query and not preset:
        console.print(
            "[red]Error:[/] Nothing to search for.\n"
            '  Run:  grimoire search --query "How does flanking work?"\n'
            "  or:   grimoire search --preset"
        )
        raise typer.Exit(1)

    cfg = load_settings(console)
    db_path = db or Path(cfg.database.path)
    database = Database(db_path)
    if not database.exists:
        console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)

    with closing(database.connect()) as conn:
        initialize(conn)
        count = ChunkRepository(conn).count()
    console.print(f"Database contains [bold]{count:,}[/] chunks.")
    if count == 0:
        console.print(err_empty_store(str(db_path)))
        raise typer.Exit(1)

    require_api_key(console, cfg.embedding.model)
    embedder = EmbeddingClient(cfg.embedding)
    retriever = Retriever(database, cfg.retrieval)
    floor = NO_FLOOR if threshold is None else threshold

    queries = list(PRESET_QUERIES) if preset else [query]
    if preset:
        console.print(f"Running {len(queries)} preset queries (top-{top_k} each)")

    for q in queries:
        try:
            vector = embedder.embed_query(q)
        except Exception as exc:
            console.print(err_embedding_failed(exc))
            raise typer.Exit(1)
        try:
            results = retriever.search(vector, top_k=top_k, similarity_threshold=floor, category=category)
        except sqlite3.Error as exc:
            console.print(err_search_failed(str(db_path), exc))
            raise typer.Exit(1)
        _print_results(q, category, results)


def _preview(content: str) -> str:
    return content.replace("\n", " ")[:PREVIEW_CHARS]


def _print_results(query: str, category: str | None, results: list[RetrievedChunk]) -> None:
    suffix = f" (category: {category})" if category else ""
    console.print(f'\n[bold]Query:[/] "{escape(query)}"{suffix}')
    console.print("-" * 70)
    if not results:
        console.print("  No results found.")
        return
    for i, r in enumerate(results, start=1):
        console.print(f"  {i}. [cyan]{r.similarity:.4f}[/cyan]  {escape(r.title)}", highlight=False)
        console.print(f"     Category: {r.category} | Source: {r.source or 'N/A'}", markup=False)
        console.print(f"     {_preview(r.content)}...", markup=False)
