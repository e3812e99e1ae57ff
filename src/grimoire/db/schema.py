"""Vector store DDL and initialization.

One table, ``rule_chunks``: a chunk of rules text, its provenance, and its
embedding stored as a float32 BLOB (``sqlite_vec.serialize_float32``). The
embedding column is NULL for rows written with ``--skip-embedding``; those
rows are never returned by similarity search.
"""

from __future__ import annotations

import sqlite3

# Insertion column order used by ChunkRepository.write_chunks().
COLUMNS_WITH_EMBEDDING: tuple[str, ...] = (
    "id",
    "title",
    "category",
    "source",
    "content",
    "embedding",
    "source_id",
    "source_file",
    "metadata",
)
COLUMNS_WITHOUT_EMBEDDING: tuple[str, ...] = tuple(
    c for c in COLUMNS_WITH_EMBEDDING if c != "embedding"
)

CREATE_RULE_CHUNKS = """
CREATE TABLE IF NOT EXISTS rule_chunks (
    id          TEXT PRIMARY KEY,
    title       TEXT NOT NULL,
    category    TEXT NOT NULL,
    source      TEXT,
    content     TEXT NOT NULL,
    embedding   BLOB,
    source_id   TEXT,
    source_file TEXT,
    metadata    TEXT NOT NULL DEFAULT '{}',
    created_at  DATETIME NOT NULL DEFAULT (datetime('now'))
);
"""

CREATE_CATEGORY_INDEX = """
CREATE INDEX IF NOT EXISTS idx_rule_chunks_category ON rule_chunks(category);
"""


def initialize(conn: sqlite3.Connection) -> None:
    """Initialize the database schema via the migration runner (idempotent)."""
    from grimoire.db.migrations import run_migrations

    run_migrations(conn)
