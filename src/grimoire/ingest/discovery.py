"""Locate compendium JSON files under the data directory, grouped by category."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path

from grimoire.config import DEFAULT_CATEGORIES

logger = logging.getLogger(__name__)

# Foundry folder metadata, not a rules record.
_FOLDERS_FILE = "_folders.json"


@dataclass(frozen=True)
class DiscoveredFile:
    path: Path
    category: str


def _find_json_files(directory: Path) -> list[Path]:
    return sorted(
        p for p in directory.rglob("*.json") if p.is_file() and p.name != _FOLDERS_FILE
    )


def discover_files(
    data_dir: Path | str,
    categories: Mapping[str, str] = DEFAULT_CATEGORIES,
) -> list[DiscoveredFile]:
    """Return every record file under *data_dir* for the given ``{directory: label}`` map.

    Directories are visited in mapping order; files within one directory are
    sorted. A missing category directory is logged and skipped.
    """
    root = Path(data_dir)
    files: list[DiscoveredFile] = []
    for dir_name, label in categories.items():
        category_dir = root / dir_name
        if not category_dir.is_dir():
            logger.warning("Category directory not found, skipping: %s", category_dir)
            continue
        found = _find_json_files(category_dir)
        logger.debug("Discovered %d files in %s/ (%s)", len(found), dir_name, label)
        files.extend(DiscoveredFile(path=p, category=label) for p in found)
    return files


def filter_categories(categories: Mapping[str, str], wanted: Iterable[str]) -> dict[str, str]:
    """Keep the entries whose directory name or label appears in *wanted*."""
    wanted_set = {w.strip() for w in wanted if w.strip()}
    return {d: label for d, label in categories.items() if d in wanted_set or label in wanted_set}
