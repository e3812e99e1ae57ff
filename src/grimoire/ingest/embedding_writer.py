"""Embedding writer: embed chunk contents in batches, then persist them.

What is embedded is the chunk content exactly as stored (it already starts
with the document name for multi-part chunks), so the stored text and the
vector always describe the same string.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence

from grimoire.db.models import RuleChunk, StoredChunk
from grimoire.db.repository import DEFAULT_WRITE_BATCH, ChunkRepository
from grimoire.ingest.embedder import EmbeddingClient

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


class EmbeddingMismatchError(RuntimeError):
    """The provider returned a different number of vectors than texts sent."""


class EmbeddingWriter:
    """Write chunks to the store, with or without embeddings.

    Args:
        repo:     Open ChunkRepository.
        embedder: Client used to embed chunk contents. May be None when every
                  write is made with ``skip_embedding=True``.
        db_batch_size: Rows per INSERT statement.
    """

    def __init__(
        self,
        repo: ChunkRepository,
        embedder: EmbeddingClient | None = None,
        db_batch_size: int = DEFAULT_WRITE_BATCH,
    ) -> None:
        self._repo = repo
        self._embedder = embedder
        self._db_batch_size = db_batch_size

    def embed(
        self, chunks: Sequence[RuleChunk], on_batch: ProgressCallback | None = None
    ) -> list[StoredChunk]:
        """Pair each chunk with its embedding vector, preserving order."""
        if self._embedder is None:
            raise RuntimeError("EmbeddingWriter was created without an embedding client")
        vectors = self._embedder.embed_texts([c.content for c in chunks], on_batch=on_batch)
        if len(vectors) != len(chunks):
            raise EmbeddingMismatchError(
                f"Embedding provider returned {len(vectors)} vectors for {len(chunks)} chunks"
            )
        return [StoredChunk(chunk=c, embedding=v) for c, v in zip(chunks, vectors)]

    def write(
        self,
        chunks: Sequence[RuleChunk],
        skip_embedding: bool = False,
        on_embed_batch: ProgressCallback | None = None,
        on_write_batch: ProgressCallback | None = None,
    ) -> int:
        """Embed (unless *skip_embedding*) and persist *chunks*. Returns rows written.

        All embeddings are generated before the first row is written, so an
        embedding failure leaves the store untouched.
        """
        if skip_embedding:
            stored = [StoredChunk(chunk=c) for c in chunks]
        else:
            stored = self.embed(chunks, on_batch=on_embed_batch)
            logger.info("Embedded %d chunks", len(stored))

        written = self._repo.write_chunks(
            stored,
            batch_size=self._db_batch_size,
            with_embeddings=not skip_embedding,
            on_batch=on_write_batch,
        )
        logger.info("Wrote %d chunks to the store", written)
        return written
