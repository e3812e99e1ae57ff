"""Grimoire rich error messages — actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from grimoire.cli.errors import err_no_api_key, err_no_db
    console.print(err_no_api_key("azure"))
    raise typer.Exit(1)
"""

from __future__ import annotations

from collections.abc import Iterable


def err_no_api_key(provider: str) -> str:
    """No API key for *provider*.

    Example:
        No API key for 'azure'. Set:  export AZURE_API_KEY=...
    """
    env_map = {
        "openai": "OPENAI_API_KEY",
        "azure": "AZURE_API_KEY",
        "anthropic": "ANTHROPIC_API_KEY",
        "cohere": "COHERE_API_KEY",
        "mistral": "MISTRAL_API_KEY",
    }
    env_var = env_map.get(provider.lower(), f"{provider.upper()}_API_KEY")
    hint = ""
    if provider.lower() == "azure":
        hint = "\n  Also set AZURE_API_BASE (or embedding.api_base / generation.api_base in grimoire.yaml)."
    return (
        f"[red]Error:[/] No API key for '{provider}'.\n"
        f"  Set:  export {env_var}=...{hint}"
    )


def err_config(message: str) -> str:
    """Configuration file rejected by ``load_config``."""
    return (
        f"[red]Error:[/] Invalid configuration.\n  {message}\n"
        "  Fix grimoire.yaml (project) or ~/.grimoire/config.yaml (global)."
    )


def err_source_not_found(source: str) -> str:
    """Data directory passed to ingest/analyze does not exist."""
    return (
        f"[red]Error:[/] Data directory not found: '{source}'\n"
        "  Point --source at the exported pf2e packs directory, e.g.:\n"
        "    grimoire ingest --source ./data/pf2e"
    )


def err_no_categories(wanted: Iterable[str], available: Iterable[str]) -> str:
    """--categories matched nothing in the configured category mapping."""
    return (
        f"[red]Error:[/] No categories match: {', '.join(wanted)}\n"
        f"  Available: {', '.join(sorted(available))}"
    )


def err_no_db(db_path: str = ".grimoire.db") -> str:
    """No vector store file at *db_path*."""
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Run:  grimoire ingest"
    )


def err_empty_store(db_path: str) -> str:
    """The store exists but holds no rule chunks."""
    return (
        f"[red]Error:[/] The database '{db_path}' contains no rule chunks.\n"
        "  Run:  grimoire ingest  to populate it first."
    )


def err_store_write(db_path: str, exc: BaseException) -> str:
    """A batch write to the vector store failed."""
    return (
        f"[red]Error:[/] Writing to '{db_path}' failed: {exc}\n"
        "  Batches written before the failure are kept.\n"
        "  Re-run with --clear to start from an empty store."
    )


def err_ingest_failed(exc: BaseException) -> str:
    """Embedding generation (or another provider call) failed."""
    return (
        f"[red]Ingestion failed:[/] {exc}\n"
        "  Check the embedding model, endpoint, and API key, or re-run with\n"
        "  --skip-embedding to load text only."
    )


def err_system_prompt(path: str, exc: BaseException) -> str:
    """generation.system_prompt points at an unreadable file."""
    return (
        f"[red]Error:[/] Cannot read system prompt '{path}': {exc}\n"
        "  Fix generation.system_prompt in grimoire.yaml, or remove it to use the built-in prompt."
    )


def err_history_file(path: str, reason: str) -> str:
    """--history file is missing or malformed."""
    return (
        f"[red]Error:[/] Cannot load conversation history from '{path}': {reason}\n"
        '  Expected a JSON list like:  [{"role": "user", "content": "..."}]'
    )


def err_embedding_failed(exc: BaseException) -> str:
    """Embedding a query failed at the provider."""
    return (
        f"[red]Error:[/] Embedding request failed: {exc}\n"
        "  Check embedding.model, embedding.api_base, and the provider API key."
    )


def err_search_failed(db_path: str, exc: BaseException) -> str:
    """Similarity search against the store failed."""
    return (
        f"[red]Error:[/] Searching '{db_path}' failed: {exc}\n"
        "  If embedding.dimensions changed since the last ingest, re-run:\n"
        "    grimoire ingest --clear"
    )
