"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from grimoire.db.connection import Database
from grimoire.db.schema import initialize


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / ".grimoire.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def isolated_config(tmp_path, monkeypatch):
    """Run in tmp_path with no global config, no GRIMOIRE_* overrides, and a fake API key."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr("grimoire.config._GLOBAL_CONFIG_PATH", tmp_path / "home" / "config.yaml")
    for var in ("GRIMOIRE_GENERATION_MODEL", "GRIMOIRE_EMBEDDING_MODEL", "GRIMOIRE_DB", "GRIMOIRE_DATA_DIR"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("AZURE_API_KEY", "test-key")
    return tmp_path
