"""Tests for the grimoire CLI entry point."""

from __future__ import annotations

import logging

from rich.logging import RichHandler
from typer.testing import CliRunner

from grimoire.cli.main import app, configure_logging

runner = CliRunner()


def test_version_command():
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert result.output.startswith("grimoire ")


def test_version_flag():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert "grimoire" in result.output


def test_help_lists_commands():
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    for name in ("ingest", "analyze", "search", "chat", "version"):
        assert name in result.output


def test_configure_logging_installs_single_rich_handler():
    root = logging.getLogger()
    previous_level = root.level
    try:
        configure_logging(verbose=True)
        configure_logging(verbose=True)
        rich_handlers = [h for h in root.handlers if isinstance(h, RichHandler)]
        assert len(rich_handlers) == 1
        assert root.level == logging.DEBUG
        assert logging.getLogger("LiteLLM").level == logging.WARNING

        configure_logging(verbose=False)
        assert root.level == logging.WARNING
    finally:
        for handler in [h for h in root.handlers if isinstance(h, RichHandler)]:
            root.removeHandler(handler)
        root.setLevel(previous_level)
