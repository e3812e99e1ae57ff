"""Grimoire vector store layer."""

from grimoire.db.connection import Database
from grimoire.db.migrations import MIGRATIONS, run_migrations
from grimoire.db.models import RetrievedChunk, RetrievedSource, RuleChunk, StoredChunk
from grimoire.db.repository import ChunkRepository
from grimoire.db.schema import initialize

__all__ = [
    "Database",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
    "ChunkRepository",
    "RuleChunk",
    "StoredChunk",
    "RetrievedChunk",
    "RetrievedSource",
]
