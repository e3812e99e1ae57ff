"""Parse-and-chunk stage of an ingestion run, with the counters its reports need.

``collect_chunks`` is shared by ``grimoire ingest`` and ``grimoire analyze``:
it parses every discovered file, chunks every document, and accumulates
per-category statistics. Nothing here touches the store or the network.
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from grimoire.db.models import RuleChunk
from grimoire.ingest.chunker import DocumentChunker
from grimoire.ingest.discovery import DiscoveredFile
from grimoire.ingest.extractor import MIN_CONTENT_CHARS, parse_file
from grimoire.ingest.notation import NotationStats

logger = logging.getLogger(__name__)

# USD per 1M tokens for text-embedding-3-small.
EMBEDDING_PRICE_PER_MILLION = 0.02


def estimate_tokens(total_chars: int) -> int:
    """Whole-corpus token estimate at ~4 characters per token."""
    return round(total_chars / 4)


def estimate_cost(tokens: int, price_per_million: float = EMBEDDING_PRICE_PER_MILLION) -> float:
    return tokens / 1_000_000 * price_per_million


def percentile(sorted_values: list[int], p: float) -> int:
    """Nearest-rank percentile of an ascending list (0 for an empty list)."""
    if not sorted_values:
        return 0
    idx = math.ceil(p / 100 * len(sorted_values)) - 1
    return sorted_values[max(0, idx)]


@dataclass
class CategoryStats:
    """Counters for the files discovered under one category label."""

    category: str
    file_count: int = 0
    parsed_count: int = 0
    skipped_count: int = 0
    chunk_count: int = 0
    content_lengths: list[int] = field(default_factory=list)
    skip_reasons: Counter[str] = field(default_factory=Counter)
    errors: list[str] = field(default_factory=list)

    @property
    def error_count(self) -> int:
        return len(self.errors)

    @property
    def average_length(self) -> int:
        if not self.content_lengths:
            return 0
        return round(sum(self.content_lengths) / len(self.content_lengths))


@dataclass
class IngestStats:
    """Everything the parse-and-chunk stage produced and counted."""

    categories: dict[str, CategoryStats] = field(default_factory=dict)
    chunks: list[RuleChunk] = field(default_factory=list)
    notation: NotationStats = field(default_factory=NotationStats)
    sources: set[str] = field(default_factory=set)
    traits: set[str] = field(default_factory=set)

    def category(self, label: str) -> CategoryStats:
        if label not in self.categories:
            self.categories[label] = CategoryStats(category=label)
        return self.categories[label]

    @property
    def files(self) -> int:
        return sum(c.file_count for c in self.categories.values())

    @property
    def parsed(self) -> int:
        return sum(c.parsed_count for c in self.categories.values())

    @property
    def skipped(self) -> int:
        return sum(c.skipped_count for c in self.categories.values())

    @property
    def errors(self) -> int:
        return sum(c.error_count for c in self.categories.values())

    @property
    def skip_reasons(self) -> Counter[str]:
        total: Counter[str] = Counter()
        for c in self.categories.values():
            total.update(c.skip_reasons)
        return total

    @property
    def chunks_by_category(self) -> dict[str, int]:
        """Chunk counts keyed by the chunk's own category, largest first."""
        return dict(Counter(c.category for c in self.chunks).most_common())

    @property
    def chunk_lengths(self) -> list[int]:
        return [len(c.content) for c in self.chunks]

    @property
    def total_chars(self) -> int:
        return sum(self.chunk_lengths)

    @property
    def estimated_tokens(self) -> int:
        return estimate_tokens(self.total_chars)

    @property
    def estimated_cost(self) -> float:
        return estimate_cost(self.estimated_tokens)

    def sorted_categories(self) -> list[CategoryStats]:
        """Categories ordered by file count, largest first."""
        return sorted(self.categories.values(), key=lambda c: c.file_count, reverse=True)


def collect_chunks(
    files: Iterable[DiscoveredFile],
    chunker: DocumentChunker | None = None,
    min_chars: int = MIN_CONTENT_CHARS,
    on_file: Callable[[DiscoveredFile], None] | None = None,
) -> IngestStats:
    """Parse and chunk every file in *files*, accumulating IngestStats.

    Parse errors and skips are counted per category and never abort the run.
    """
    chunker = chunker or DocumentChunker()
    stats = IngestStats()

    for file in files:
        cat = stats.category(file.category)
        cat.file_count += 1

        result = parse_file(file.path, file.category, min_chars=min_chars)
        stats.notation += result.notation
        if on_file is not None:
            on_file(file)

        if result.error:
            cat.errors.append(f"{file.path}: {result.error}")
            logger.warning("Failed to parse %s: %s", file.path, result.error)
            continue

        cat.skipped_count += result.skipped_count
        cat.skip_reasons.update(result.skip_reasons)

        for doc in result.documents:
            cat.parsed_count += 1
            cat.content_lengths.append(len(doc.content))
            if doc.source:
                stats.sources.add(doc.source)
            stats.traits.update(t for t in doc.metadata.get("traits", []) if isinstance(t, str))

            chunks = chunker.chunk(doc)
            cat.chunk_count += len(chunks)
            stats.chunks.extend(chunks)

    logger.info(
        "Parsed %d documents from %d files (%d skipped, %d errors), %d chunks",
        stats.parsed,
        stats.files,
        stats.skipped,
        stats.errors,
        len(stats.chunks),
    )
    return stats
