"""Tests for the grimoire search CLI command."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import yaml
from typer.testing import CliRunner

from grimoire.cli.main import app
from grimoire.cli.search import PRESET_QUERIES, _preview
from grimoire.db.connection import Database
from grimoire.db.models import RuleChunk, StoredChunk
from grimoire.db.repository import ChunkRepository
from grimoire.db.schema import initialize

runner = CliRunner()


@pytest.fixture
def store(isolated_config: Path) -> Path:
    (isolated_config / "grimoire.yaml").write_text(yaml.dump({"embedding": {"dimensions": 3}}), encoding="utf-8")
    db_path = isolated_config / ".grimoire.db"
    with Database(db_path) as conn:
        initialize(conn)
        ChunkRepository(conn, dimensions=3).write_chunks(
            [
                StoredChunk(
                    RuleChunk(title="Flanking", category="rules", source="Player Core",
                              content="Flanking\n\nA flanked creature is off-guard."),
                    [1.0, 0.0, 0.0],
                ),
                StoredChunk(
                    RuleChunk(title="Fireball", category="spell", source=None, content="A burst of fire."),
                    [0.0, 1.0, 0.0],
                ),
            ]
        )
    return db_path


def _embedding(vector):
    response = MagicMock()
    response.data = [{"index": 0, "embedding": vector}]
    return response


def test_requires_query_or_preset(isolated_config):
    result = runner.invoke(app, ["search"])
    assert result.exit_code == 1
    assert "--preset" in result.output


def test_missing_db(isolated_config):
    result = runner.invoke(app, ["search", "--query", "flanking"])
    assert result.exit_code == 1
    assert "No database found" in result.output


def test_refuses_empty_store(isolated_config):
    with Database(isolated_config / ".grimoire.db") as conn:
        initialize(conn)
    result = runner.invoke(app, ["search", "--query", "flanking"])
    assert result.exit_code == 1
    assert "contains no rule chunks" in result.output


def test_query_prints_ranked_results(store):
    with patch("grimoire.ingest.embedder.litellm.embedding", return_value=_embedding([1.0, 0.1, 0.0])):
        result = runner.invoke(app, ["search", "--query", "How does flanking work?"])

    assert result.exit_code == 0, result.output
    assert "Database contains 2 chunks" in result.output
    lines = result.output.splitlines()
    first = next(i for i, line in enumerate(lines) if "1." in line and "Flanking" in line)
    assert "Fireball" in lines[first + 3]
    assert "Source: N/A" in result.output
    assert "Flanking  A flanked creature is off-guard...." in result.output


def test_threshold_and_category(store):
    with patch("grimoire.ingest.embedder.litellm.embedding", return_value=_embedding([1.0, 0.0, 0.0])):
        result = runner.invoke(app, ["search", "-q", "flanking", "--threshold", "0.5"])
    assert "Flanking" in result.output
    assert "Fireball" not in result.output

    with patch("grimoire.ingest.embedder.litellm.embedding", return_value=_embedding([1.0, 0.0, 0.0])):
        result = runner.invoke(app, ["search", "-q", "flanking", "--category", "spell"])
    assert "(category: spell)" in result.output
    assert "Fireball" in result.output
    assert "Flanking" not in result.output


def test_preset_runs_every_query(store):
    with patch(
        "grimoire.ingest.embedder.litellm.embedding", return_value=_embedding([0.0, 1.0, 0.0])
    ) as mock_embed:
        result = runner.invoke(app, ["search", "--preset", "--top-k", "1"])
    assert result.exit_code == 0, result.output
    assert mock_embed.call_count == len(PRESET_QUERIES) == 15
    assert result.output.count("Query:") == 15


def test_embedding_error_exits(store):
    with patch("grimoire.ingest.embedder.litellm.embedding", side_effect=RuntimeError("bad deployment")):
        result = runner.invoke(app, ["search", "-q", "flanking"])
    assert result.exit_code == 1
    assert "bad deployment" in result.output


def test_store_error_exits_with_advice(store):
    with (
        patch("grimoire.ingest.embedder.litellm.embedding", return_value=_embedding([1.0, 0.0])),
        patch(
            "grimoire.cli.search.Retriever.search",
            side_effect=sqlite3.OperationalError("Vector dimension mismatch"),
        ),
    ):
        result = runner.invoke(app, ["search", "-q", "flanking"])
    assert result.exit_code == 1
    assert "Vector dimension mismatch" in result.output
    assert "grimoire ingest --clear" in result.output


def test_preview_flattens_and_truncates():
    text = "line one\nline two " + "x" * 300
    preview = _preview(text)
    assert "\n" not in preview
    assert len(preview) == 150
