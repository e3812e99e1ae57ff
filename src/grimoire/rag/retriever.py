"""Dense retriever over the rule_chunks store.

Each search opens its own connection, so concurrent chat requests (each
running its search on a worker thread) never share SQLite state.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from contextlib import closing

from grimoire.config import RetrievalCfg
from grimoire.db.connection import Database
from grimoire.db.models import RetrievedChunk
from grimoire.db.repository import ChunkRepository

logger = logging.getLogger(__name__)


class Retriever:
    """Nearest-neighbour search with a similarity floor.

    Args:
        db: Database handle (a path; connections are opened per search).
        config: Default ``top_k`` and ``similarity_threshold``.
    """

    def __init__(self, db: Database, config: RetrievalCfg | None = None) -> None:
        self._db = db
        self.config = config or RetrievalCfg()

    def search(
        self,
        query_vector: Sequence[float],
        top_k: int | None = None,
        similarity_threshold: float | None = None,
        category: str | None = None,
    ) -> list[RetrievedChunk]:
        """Return up to *top_k* chunks at or above the threshold, best first."""
        k = self.config.top_k if top_k is None else top_k
        threshold = (
            self.config.similarity_threshold if similarity_threshold is None else similarity_threshold
        )
        with closing(self._db.connect()) as conn:
            rows = ChunkRepository(conn).search(
                query_vector, top_k=k, similarity_threshold=threshold, category=category
            )
        logger.debug("Search (top_k=%d, threshold=%.2f) returned %d chunks", k, threshold, len(rows))
        return rows

    async def asearch(
        self,
        query_vector: Sequence[float],
        top_k: int | None = None,
        similarity_threshold: float | None = None,
        category: str | None = None,
    ) -> list[RetrievedChunk]:
        return await asyncio.to_thread(
            self.search, query_vector, top_k, similarity_threshold, category
        )
