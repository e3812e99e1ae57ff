"""Grimoire CLI entry point."""

from __future__ import annotations

import importlib.metadata
import logging
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler

from grimoire.cli.analyze import analyze_cmd
from grimoire.cli.chat import chat_cmd
from grimoire.cli.ingest import ingest_cmd
from grimoire.cli.search import search_cmd

# Third-party loggers kept at WARNING even with --verbose.
_NOISY_LOGGERS = ("LiteLLM", "httpx", "httpcore", "openai")


def _installed_version() -> str:
    try:
        return importlib.metadata.version("grimoire")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"grimoire {_installed_version()}")
        raise typer.Exit()


def configure_logging(verbose: bool) -> None:
    """Route library logging through one RichHandler on stderr."""
    root = logging.getLogger()
    for handler in [h for h in root.handlers if isinstance(h, RichHandler)]:
        root.removeHandler(handler)
    root.addHandler(
        RichHandler(
            console=Console(stderr=True),
            show_path=False,
            rich_tracebacks=True,
            markup=False,
        )
    )
    root.setLevel(logging.DEBUG if verbose else logging.WARNING)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


app = typer.Typer(
    name="grimoire",
    help=(
        "Grimoire — Pathfinder 2e rules assistant.\n\n"
        "  grimoire ingest   Load the pf2e data export into the vector store.\n"
        "  grimoire chat     Ask a rules question against the stored rules."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show debug logging."),
    ] = False,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """Grimoire — Pathfinder 2e rules assistant."""
    configure_logging(verbose)


app.command("ingest")(ingest_cmd)
app.command("analyze")(analyze_cmd)
app.command("search")(search_cmd)
app.command("chat")(chat_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed Grimoire version."""
    typer.echo(f"grimoire {_installed_version()}")


if __name__ == "__main__":
    app()
