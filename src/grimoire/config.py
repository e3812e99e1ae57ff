"""Grimoire configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site — not in this module)
  2. Environment variables  (GRIMOIRE_EMBEDDING_MODEL, GRIMOIRE_GENERATION_MODEL,
                             GRIMOIRE_DB, GRIMOIRE_DATA_DIR)
  3. Per-project grimoire.yaml  (current working directory)
  4. Global ~/.grimoire/config.yaml  (model defaults only — no API keys)
  5. Hardcoded defaults

Provider credentials are read by litellm from its own environment variables
(AZURE_API_KEY, OPENAI_API_KEY, ...). Global config must never contain them.
All YAML reads use yaml.safe_load() — never yaml.load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".grimoire"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "grimoire.yaml"

# Matches: api_key, apikey, api-key, api_secret, _token (suffix), standalone token,
# standalone secret, _secret (suffix), password, passwd, credential(s).
# Does NOT match legitimate config keys like max_tokens or top_k.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"
    r"|_token$"
    r"|^token$"
    r"|_secret$"
    r"|^secret$"
    r"|passw(?:ord|d)"
    r"|credential",
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["embedding", "generation", "retrieval", "chunking", "ingest", "database"]
)

# Data directory name under the source root → category label stored in rule_chunks.
DEFAULT_CATEGORIES: dict[str, str] = {
    "spells": "spell",
    "feats": "feat",
    "actions": "action",
    "conditions": "condition",
    "classes": "class",
    "ancestries": "ancestry",
    "heritages": "heritage",
    "backgrounds": "background",
    "class-features": "class-feature",
    "ancestry-features": "ancestry-feature",
    "equipment": "equipment",
    "deities": "deity",
    "journals": "journal",
    "hazards": "hazard",
    "familiar-abilities": "familiar-ability",
    "bestiary-ability-glossary-srd": "bestiary-ability",
}


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class EmbeddingCfg:
    """Embedding provider and batching configuration (grimoire.yaml: embedding:).

    Attributes:
        model: LiteLLM embedding model string (``azure/<deployment>`` for Azure).
        dimensions: Vector dimensions requested from the provider and stored.
        batch_size: Texts per embedding request during ingestion.
        batch_delay: Seconds to pause between consecutive batches.
        retry_wait: Fixed wait in seconds before retrying a throttled or failed batch.
        max_server_retries: Retries allowed for server-side (5xx) failures.
        query_rate_limit_retries: Rate-limit (429) retries allowed when embedding a chat
            question; ingestion batches retry 429 without limit.
        api_base: Optional endpoint override (e.g. the Azure resource URL).
        api_version: Optional API version (Azure only).
    """

    model: str = "azure/text-embedding-3-small"
    dimensions: int = 1536
    batch_size: int = 100
    batch_delay: float = 0.2
    retry_wait: float = 1.0
    max_server_retries: int = 3
    query_rate_limit_retries: int = 3
    api_base: str | None = None
    api_version: str | None = None


@dataclass
class GenerationCfg:
    """Chat completion configuration (grimoire.yaml: generation:)."""

    model: str = "azure/gpt-4o"
    temperature: float = 0.2
    max_tokens: int = 1024
    system_prompt: str | None = None  # local path to a prompt file
    api_base: str | None = None
    api_version: str | None = None


@dataclass
class RetrievalCfg:
    """Vector search defaults (grimoire.yaml: retrieval:)."""

    top_k: int = 8
    similarity_threshold: float = 0.3


@dataclass
class ChunkingCfg:
    """Chunk size thresholds in characters of plain text (grimoire.yaml: chunking:)."""

    max_chunk_chars: int = 6000
    overlap_chars: int = 200
    min_content_chars: int = 20


@dataclass
class IngestCfg:
    """Ingestion source and write batching (grimoire.yaml: ingest:)."""

    source: str = "data/pf2e"
    db_batch_size: int = 50
    categories: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_CATEGORIES))


@dataclass
class DatabaseCfg:
    """Vector store location (grimoire.yaml: database:)."""

    path: str = ".grimoire.db"


@dataclass
class GrimoireConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    generation: GenerationCfg = field(default_factory=GenerationCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    chunking: ChunkingCfg = field(default_factory=ChunkingCfg)
    ingest: IngestCfg = field(default_factory=IngestCfg)
    database: DatabaseCfg = field(default_factory=DatabaseCfg)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names."""

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Global config '{source}' contains a forbidden key '{full}'.\n"
                        f"  API keys must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {str(k).upper().replace('-', '_')}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}' — ignored.",
                UserWarning,
                stacklevel=4,
            )


def _validate(cfg: GrimoireConfig) -> None:
    """Reject values the pipeline cannot run with."""
    if cfg.embedding.dimensions < 1:
        raise ConfigError(f"embedding.dimensions must be >= 1, got {cfg.embedding.dimensions}")
    if cfg.embedding.batch_size < 1:
        raise ConfigError(f"embedding.batch_size must be >= 1, got {cfg.embedding.batch_size}")
    if cfg.embedding.max_server_retries < 0 or cfg.embedding.query_rate_limit_retries < 0:
        raise ConfigError("embedding retry counts must be >= 0")
    if cfg.ingest.db_batch_size < 1:
        raise ConfigError(f"ingest.db_batch_size must be >= 1, got {cfg.ingest.db_batch_size}")
    if cfg.retrieval.top_k < 1:
        raise ConfigError(f"retrieval.top_k must be >= 1, got {cfg.retrieval.top_k}")
    if not -1.0 <= cfg.retrieval.similarity_threshold <= 1.0:
        raise ConfigError(
            "retrieval.similarity_threshold must be in [-1.0, 1.0], "
            f"got {cfg.retrieval.similarity_threshold}"
        )
    if cfg.chunking.overlap_chars >= cfg.chunking.max_chunk_chars:
        raise ConfigError("chunking.overlap_chars must be smaller than chunking.max_chunk_chars")
    prompt = cfg.generation.system_prompt
    if prompt and prompt.startswith(("http://", "https://", "ftp://", "//")):
        raise ConfigError(
            f"generation.system_prompt must be a local file path, not a URL: '{prompt}'"
        )


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _optional_str(value: Any) -> str | None:
    return str(value) if value not in (None, "") else None


def _cfg_from_dict(data: dict[str, Any]) -> GrimoireConfig:
    """Build a *GrimoireConfig* from a merged raw YAML dict."""
    cfg = GrimoireConfig()

    if "embedding" in data:
        e = data["embedding"] or {}
        d = cfg.embedding
        cfg.embedding = EmbeddingCfg(
            model=str(e.get("model", d.model)),
            dimensions=int(e.get("dimensions", d.dimensions)),
            batch_size=int(e.get("batch_size", d.batch_size)),
            batch_delay=float(e.get("batch_delay", d.batch_delay)),
            retry_wait=float(e.get("retry_wait", d.retry_wait)),
            max_server_retries=int(e.get("max_server_retries", d.max_server_retries)),
            query_rate_limit_retries=int(
                e.get("query_rate_limit_retries", d.query_rate_limit_retries)
            ),
            api_base=_optional_str(e.get("api_base", d.api_base)),
            api_version=_optional_str(e.get("api_version", d.api_version)),
        )

    if "generation" in data:
        g = data["generation"] or {}
        d = cfg.generation
        cfg.generation = GenerationCfg(
            model=str(g.get("model", d.model)),
            temperature=float(g.get("temperature", d.temperature)),
            max_tokens=int(g.get("max_tokens", d.max_tokens)),
            system_prompt=_optional_str(g.get("system_prompt", d.system_prompt)),
            api_base=_optional_str(g.get("api_base", d.api_base)),
            api_version=_optional_str(g.get("api_version", d.api_version)),
        )

    if "retrieval" in data:
        r = data["retrieval"] or {}
        cfg.retrieval = RetrievalCfg(
            top_k=int(r.get("top_k", cfg.retrieval.top_k)),
            similarity_threshold=float(
                r.get("similarity_threshold", cfg.retrieval.similarity_threshold)
            ),
        )

    if "chunking" in data:
        c = data["chunking"] or {}
        d = cfg.chunking
        cfg.chunking = ChunkingCfg(
            max_chunk_chars=int(c.get("max_chunk_chars", d.max_chunk_chars)),
            overlap_chars=int(c.get("overlap_chars", d.overlap_chars)),
            min_content_chars=int(c.get("min_content_chars", d.min_content_chars)),
        )

    if "ingest" in data:
        i = data["ingest"] or {}
        categories = i.get("categories")
        cfg.ingest = IngestCfg(
            source=str(i.get("source", cfg.ingest.source)),
            db_batch_size=int(i.get("db_batch_size", cfg.ingest.db_batch_size)),
            categories=(
                {str(k): str(v) for k, v in categories.items()}
                if isinstance(categories, dict)
                else dict(DEFAULT_CATEGORIES)
            ),
        )

    if "database" in data:
        db = data["database"] or {}
        cfg.database = DatabaseCfg(path=str(db.get("path", cfg.database.path)))

    return cfg


def _apply_env_overrides(cfg: GrimoireConfig) -> GrimoireConfig:
    """Apply GRIMOIRE_* environment variable overrides (layer 2)."""
    if model := os.environ.get("GRIMOIRE_GENERATION_MODEL"):
        cfg.generation.model = model
    if model := os.environ.get("GRIMOIRE_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if db_path := os.environ.get("GRIMOIRE_DB"):
        cfg.database.path = db_path
    if data_dir := os.environ.get("GRIMOIRE_DATA_DIR"):
        cfg.ingest.source = data_dir
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> GrimoireConfig:
    """Load and return a merged *GrimoireConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *grimoire.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Raises:
        ConfigError: If global config contains API-key-like fields, or a value
            is out of range.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    if global_path.exists():
        raw_global = yaml.safe_load(global_path.read_text(encoding="utf-8")) or {}
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = yaml.safe_load(project_cfg_path.read_text(encoding="utf-8")) or {}
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _cfg_from_dict(merged)
    cfg = _apply_env_overrides(cfg)
    _validate(cfg)
    return cfg
