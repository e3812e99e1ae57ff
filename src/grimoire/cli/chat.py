"""grimoire chat — ask the rules assistant from the terminal.

With a QUESTION, streams one answer and exits (exit code 1 if the answer
ended in an error event). Without one, starts an interactive session that
keeps the conversation history in memory.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.prompt import Prompt
from rich.table import Table

from grimoire.cli.errors import err_history_file, err_no_db, err_system_prompt
from grimoire.cli.options import load_settings, require_api_key
from grimoire.config import GrimoireConfig
from grimoire.db.connection import Database
from grimoire.ingest.embedder import EmbeddingClient
from grimoire.rag.assembler import ConversationTurn, load_system_prompt
from grimoire.rag.chat import (
    ChatOrchestrator,
    DoneEvent,
    ErrorEvent,
    SourcesEvent,
    TokenEvent,
    encode_sse,
)
from grimoire.rag.llm_client import ChatModel
from grimoire.rag.retriever import Retriever

console = Console()

_QUIT_WORDS = {"", "exit", "quit"}


def chat_cmd(
    question: Annotated[
        str | None,
        typer.Argument(help="Question to ask. Omit for an interactive session."),
    ] = None,
    history: Annotated[
        Path | None,
        typer.Option("--history", help='JSON file of prior turns: [{"role": ..., "content": ...}].'),
    ] = None,
    top_k: Annotated[
        int | None,
        typer.Option("--top-k", "-k", min=1, help="Chunks retrieved per question (default: retrieval.top_k)."),
    ] = None,
    threshold: Annotated[
        float | None,
        typer.Option("--threshold", help="Minimum similarity (default: retrieval.similarity_threshold)."),
    ] = None,
    as_json: Annotated[
        bool,
        typer.Option("--json", help="Print the raw event stream (server-sent-events framing)."),
    ] = False,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Vector store path (default: database.path)."),
    ] = None,
) -> None:
    """Ask a rules question; the answer streams as it is generated."""
    if question is not None and not question.strip():
        console.print("[red]Error:[/] The question is empty.")
        raise typer.Exit(1)

    cfg = load_settings(console)
    database = Database(db or Path(cfg.database.path))
    if not database.exists:
        console.print(err_no_db(str(database.db_path)))
        raise typer.Exit(1)

    require_api_key(console, cfg.embedding.model)
    require_api_key(console, cfg.generation.model)

    turns = _load_history(history) if history is not None else []

    try:
        system_prompt = load_system_prompt(cfg.generation.system_prompt)
    except OSError as exc:
        console.print(err_system_prompt(str(cfg.generation.system_prompt), exc))
        raise typer.Exit(1)

    orchestrator = build_orchestrator(cfg, database, system_prompt, top_k=top_k, threshold=threshold)

    if question is not None:
        _, ok = asyncio.run(ask(orchestrator, question, turns, as_json=as_json))
        if not ok:
            raise typer.Exit(1)
        return

    _interactive(orchestrator, turns, as_json)


def build_orchestrator(
    cfg: GrimoireConfig,
    database: Database,
    system_prompt: str,
    top_k: int | None = None,
    threshold: float | None = None,
) -> ChatOrchestrator:
    """Wire the configured clients into one orchestrator."""
    return ChatOrchestrator(
        embedder=EmbeddingClient(cfg.embedding),
        retriever=Retriever(database, cfg.retrieval),
        chat_model=ChatModel(cfg.generation),
        system_prompt=system_prompt,
        top_k=top_k if top_k is not None else cfg.retrieval.top_k,
        similarity_threshold=threshold if threshold is not None else cfg.retrieval.similarity_threshold,
    )


async def ask(
    orchestrator: ChatOrchestrator,
    question: str,
    history: list[ConversationTurn],
    as_json: bool = False,
) -> tuple[str, bool]:
    """Stream one answer to the console. Returns (answer text, succeeded)."""
    parts: list[str] = []
    async for event in orchestrator.stream(question, history):
        if as_json:
            console.out(encode_sse(event), end="", highlight=False)
        if isinstance(event, TokenEvent):
            parts.append(event.text)
        if isinstance(event, ErrorEvent):
            if not as_json:
                console.print(f"\n[red]Error:[/] {escape(event.message)}")
            return "".join(parts), False
        if as_json:
            continue

        if isinstance(event, SourcesEvent):
            _print_sources(event)
        elif isinstance(event, TokenEvent):
            console.out(event.text, end="", highlight=False)
        elif isinstance(event, DoneEvent):
            console.out("")
    return "".join(parts), True


def _print_sources(event: SourcesEvent) -> None:
    if not event.sources:
        console.print("[yellow]No matching rules found; answering without context.[/]")
        return
    table = Table(title="Sources", header_style="bold", show_lines=False)
    table.add_column("Similarity", justify="right")
    table.add_column("Title")
    table.add_column("Category")
    table.add_column("Source")
    for s in event.sources:
        table.add_row(f"{s.similarity:.3f}", escape(s.title), s.category, escape(s.source or "N/A"))
    console.print(table)


def _interactive(orchestrator: ChatOrchestrator, turns: list[ConversationTurn], as_json: bool) -> None:
    console.print("[bold]Grimoire rules chat[/]  (empty line or 'exit' to quit)")
    while True:
        try:
            question = Prompt.ask("\n[bold cyan]You[/]", console=console, default="", show_default=False)
        except (EOFError, KeyboardInterrupt):
            break
        if question.strip().lower() in _QUIT_WORDS:
            break
        answer, ok = asyncio.run(ask(orchestrator, question, turns, as_json=as_json))
        if ok and answer:
            turns.append(ConversationTurn("user", question))
            turns.append(ConversationTurn("assistant", answer))


def _load_history(path: Path) -> list[ConversationTurn]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        console.print(err_history_file(str(path), str(exc)))
        raise typer.Exit(1)

    if not isinstance(data, list) or not all(isinstance(item, dict) for item in data):
        console.print(err_history_file(str(path), "expected a JSON list of objects"))
        raise typer.Exit(1)
    try:
        return [ConversationTurn.from_dict(item) for item in data]
    except ValueError as exc:
        console.print(err_history_file(str(path), str(exc)))
        raise typer.Exit(1)
