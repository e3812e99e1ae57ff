"""Helpers shared by the grimoire commands: config loading and flag resolution."""

from __future__ import annotations

import typer
from rich.console import Console

from grimoire.cli.errors import err_config, err_no_api_key, err_no_categories
from grimoire.config import ConfigError, GrimoireConfig, load_config
from grimoire.ingest.discovery import filter_categories
from grimoire.rag.llm_client import validate_api_key


def load_settings(console: Console) -> GrimoireConfig:
    """Load the layered config, or print the problem and exit 1."""
    try:
        return load_config()
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1)


def select_categories(console: Console, cfg: GrimoireConfig, categories: str | None) -> dict[str, str]:
    """Apply a comma-separated ``--categories`` flag to the configured mapping."""
    if not categories:
        return dict(cfg.ingest.categories)
    wanted = [c.strip() for c in categories.split(",") if c.strip()]
    selected = filter_categories(cfg.ingest.categories, wanted)
    if not selected:
        console.print(err_no_categories(wanted, cfg.ingest.categories))
        raise typer.Exit(1)
    return selected


def require_api_key(console: Console, model: str) -> None:
    """Exit 1 with an actionable message when *model*'s provider key is missing."""
    try:
        validate_api_key(model)
    except EnvironmentError:
        provider = model.split("/")[0] if "/" in model else "openai"
        console.print(err_no_api_key(provider))
        raise typer.Exit(1)
