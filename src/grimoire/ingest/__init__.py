"""Grimoire ingest pipeline: discovery, notation normalizing, extraction, chunking, embedding."""

from grimoire.ingest.chunker import DocumentChunker
from grimoire.ingest.discovery import DiscoveredFile, discover_files, filter_categories
from grimoire.ingest.embedder import EmbeddingClient, RetryPolicy
from grimoire.ingest.embedding_writer import EmbeddingMismatchError, EmbeddingWriter
from grimoire.ingest.extractor import ExtractionResult, ParsedDocument, extract, parse_file
from grimoire.ingest.notation import NotationStats, normalize
from grimoire.ingest.pipeline import IngestStats, collect_chunks

__all__ = [
    "DocumentChunker",
    "DiscoveredFile",
    "discover_files",
    "filter_categories",
    "EmbeddingClient",
    "RetryPolicy",
    "EmbeddingWriter",
    "EmbeddingMismatchError",
    "ExtractionResult",
    "ParsedDocument",
    "extract",
    "parse_file",
    "NotationStats",
    "normalize",
    "IngestStats",
    "collect_chunks",
]
