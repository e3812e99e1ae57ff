"""Domain models for the vector store layer."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any


@dataclass
class RuleChunk:
    """A retrieval unit produced by the chunker, ready to be embedded."""

    title: str
    category: str
    source: str | None
    content: str
    source_id: str | None = None
    source_file: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def metadata_json(self) -> str:
        return json.dumps(self.metadata, ensure_ascii=False, sort_keys=True)


@dataclass
class StoredChunk:
    """A RuleChunk paired with its embedding (None when embedding was skipped).

    The row id is generated at write time, not here.
    """

    chunk: RuleChunk
    embedding: list[float] | None = None


@dataclass
class RetrievedSource:
    title: str
    category: str
    source: str | None
    similarity: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "category": self.category,
            "source": self.source,
            "similarity": self.similarity,
        }


@dataclass
class RetrievedChunk:
    """One similarity search row, best-first order is the caller's contract."""

    id: str
    title: str
    category: str
    source: str | None
    content: str
    similarity: float

    def to_source(self) -> RetrievedSource:
        return RetrievedSource(
            title=self.title,
            category=self.category,
            source=self.source,
            similarity=self.similarity,
        )
