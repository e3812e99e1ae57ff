"""Repository for the ``rule_chunks`` vector store.

Single interface for batched chunk writes, clearing, counting, and cosine
similarity search through sqlite-vec's ``vec_distance_cosine``.
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from collections.abc import Callable, Sequence

import sqlite_vec

from grimoire.db.models import RetrievedChunk, StoredChunk
from grimoire.db.schema import COLUMNS_WITH_EMBEDDING, COLUMNS_WITHOUT_EMBEDDING

logger = logging.getLogger(__name__)

DEFAULT_WRITE_BATCH = 50
DEFAULT_TOP_K = 8
DEFAULT_SIMILARITY_THRESHOLD = 0.3


class ChunkRepository:
    """Data access layer for ``rule_chunks``.

    Wraps an open sqlite3.Connection; the connection is owned by the caller
    and must be closed after use.
    """

    def __init__(self, conn: sqlite3.Connection, dimensions: int | None = None) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with sqlite-vec loaded and schema
                initialised (see grimoire.db.schema.initialize).
            dimensions: Expected embedding length. When set, write_chunks()
                rejects vectors of any other length.
        """
        self._conn = conn
        self._dimensions = dimensions

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def write_chunks(
        self,
        chunks: Sequence[StoredChunk],
        batch_size: int = DEFAULT_WRITE_BATCH,
        with_embeddings: bool = True,
        on_batch: Callable[[int, int], None] | None = None,
    ) -> int:
        """Insert *chunks* in multi-row INSERT statements of *batch_size* rows.

        Each row gets a fresh UUID4. With *with_embeddings* False the embedding
        column is left out of the statement entirely (stored as NULL).

        Args:
            chunks: Chunks to persist, in order.
            batch_size: Rows per INSERT statement; one commit per batch.
            with_embeddings: Whether to write the embedding column.
            on_batch: Optional ``(rows_written, total)`` callback after each batch.

        Returns:
            Number of rows written.

        Raises:
            ValueError: A chunk has no embedding, or one of the wrong length,
                while *with_embeddings* is set. Raised before its batch is sent.
            sqlite3.Error: The store rejected a batch. Earlier batches stay committed.
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")

        columns = COLUMNS_WITH_EMBEDDING if with_embeddings else COLUMNS_WITHOUT_EMBEDDING
        row_placeholder = "(" + ", ".join("?" * len(columns)) + ")"
        total = len(chunks)
        written = 0

        for start in range(0, total, batch_size):
            batch = chunks[start : start + batch_size]
            params: list[object] = []
            for stored in batch:
                params.extend(self._row_values(stored, with_embeddings))

            sql = (
                f"INSERT INTO rule_chunks ({', '.join(columns)}) VALUES "
                + ", ".join([row_placeholder] * len(batch))
            )
            self._conn.execute(sql, params)
            self._conn.commit()

            written += len(batch)
            logger.debug("Wrote batch of %d rows (%d/%d)", len(batch), written, total)
            if on_batch is not None:
                on_batch(written, total)

        return written

    def _row_values(self, stored: StoredChunk, with_embeddings: bool) -> list[object]:
        chunk = stored.chunk
        values: list[object] = [
            str(uuid.uuid4()),
            chunk.title,
            chunk.category,
            chunk.source,
            chunk.content,
        ]
        if with_embeddings:
            values.append(self._serialize(stored))
        values.extend([chunk.source_id, chunk.source_file, chunk.metadata_json])
        return values

    def _serialize(self, stored: StoredChunk) -> bytes:
        vector = stored.embedding
        if vector is None:
            raise ValueError(f"Chunk '{stored.chunk.title}' has no embedding")
        if self._dimensions is not None and len(vector) != self._dimensions:
            raise ValueError(
                f"Chunk '{stored.chunk.title}' has a {len(vector)}-dimension embedding, "
                f"expected {self._dimensions}"
            )
        return sqlite_vec.serialize_float32(vector)

    def clear_chunks(self) -> int:
        """Delete every row. Returns the number of rows removed."""
        cur = self._conn.execute("DELETE FROM rule_chunks")
        self._conn.commit()
        return cur.rowcount

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def count(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM rule_chunks").fetchone()[0]

    def count_by_category(self) -> dict[str, int]:
        """Return ``{category: rows}`` sorted by row count, largest first."""
        rows = self._conn.execute(
            "SELECT category, COUNT(*) AS n FROM rule_chunks "
            "GROUP BY category ORDER BY n DESC, category"
        ).fetchall()
        return {r["category"]: r["n"] for r in rows}

    def search(
        self,
        query_vector: list[float],
        top_k: int = DEFAULT_TOP_K,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
        category: str | None = None,
    ) -> list[RetrievedChunk]:
        """Cosine similarity search over embedded rows, best match first.

        similarity = 1 - cosine distance. Rows below *similarity_threshold*
        are never returned, and rows stored without an embedding are ignored.

        Raises:
            ValueError: If *top_k* < 1.
        """
        if top_k < 1:
            raise ValueError(f"top_k must be >= 1, got {top_k}")

        where = "embedding IS NOT NULL"
        params: list[object] = [sqlite_vec.serialize_float32(query_vector)]
        if category:
            where += " AND category = ?"
            params.append(category)
        params.extend([similarity_threshold, top_k])

        rows = self._conn.execute(
            f"""
            SELECT id, title, category, source, content, similarity FROM (
                SELECT id, title, category, source, content,
                       1 - vec_distance_cosine(embedding, ?) AS similarity
                FROM rule_chunks
                WHERE {where}
            )
            WHERE similarity >= ?
            ORDER BY similarity DESC
            LIMIT ?
            """,
            params,
        ).fetchall()
        return [_row_to_retrieved(r) for r in rows]


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------

def _row_to_retrieved(row: sqlite3.Row) -> RetrievedChunk:
    return RetrievedChunk(
        id=row["id"],
        title=row["title"],
        category=row["category"],
        source=row["source"],
        content=row["content"],
        similarity=float(row["similarity"]),
    )
