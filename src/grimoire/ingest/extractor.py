"""Document extractor: one compendium JSON record -> zero or more ParsedDocuments.

Three record shapes are recognised by category label:

- ``journal``: every page of the journal entry becomes its own document.
- ``hazard``: description, disable, reset, and routine fields plus the
  hazard's embedded item descriptions are joined into one document.
- anything else: the standard ``system.description.value`` field, with
  common metadata plus a per-category field table.

Extraction never raises for bad data. Skips are reported through
``ExtractionResult.skip_reasons`` and unreadable files through ``error``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, NamedTuple

from grimoire.ingest.notation import NotationStats, is_localize_only, normalize

logger = logging.getLogger(__name__)

MIN_CONTENT_CHARS = 20


@dataclass
class ParsedDocument:
    """Plain-text content of one rules entity plus provenance and metadata."""

    source_id: str
    source_file: str
    name: str
    type: str
    category: str
    source: str
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class ExtractionResult:
    """Outcome of extracting a single record.

    ``skip_reasons`` holds one entry per skipped unit: the record itself, or
    each journal page dropped from an otherwise usable journal.
    """

    documents: list[ParsedDocument] = field(default_factory=list)
    skipped: bool = False
    skip_reason: str | None = None
    error: str | None = None
    skip_reasons: list[str] = field(default_factory=list)
    notation: NotationStats = field(default_factory=NotationStats)

    @property
    def skipped_count(self) -> int:
        return len(self.skip_reasons)

    @classmethod
    def skip(cls, reason: str, notation: NotationStats) -> ExtractionResult:
        return cls(skipped=True, skip_reason=reason, skip_reasons=[reason], notation=notation)


# ---------------------------------------------------------------------------
# Record accessor
# ---------------------------------------------------------------------------


class RecordView:
    """Read-only dotted-path access over a decoded JSON object.

    Every accessor returns ``None`` (or an empty list) for a missing path or
    a value of the wrong type, so extractors never branch on KeyError.
    """

    def __init__(self, data: Any) -> None:
        self._data = data if isinstance(data, dict) else {}

    def get(self, path: str) -> Any | None:
        current: Any = self._data
        for key in path.split("."):
            if not isinstance(current, dict):
                return None
            current = current.get(key)
        return current

    def text(self, path: str) -> str | None:
        value = self.get(path)
        return value if isinstance(value, str) else None

    def strings(self, path: str) -> list[str]:
        value = self.get(path)
        if not isinstance(value, list):
            return []
        return [v for v in value if isinstance(v, str)]

    def mapping(self, path: str) -> dict[str, Any] | None:
        value = self.get(path)
        return value if isinstance(value, dict) else None

    def number(self, path: str) -> int | float | None:
        value = self.get(path)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        return value

    def records(self, path: str) -> list[RecordView]:
        value = self.get(path)
        if not isinstance(value, list):
            return []
        return [RecordView(v) for v in value if isinstance(v, dict)]


# ---------------------------------------------------------------------------
# Metadata field tables
# ---------------------------------------------------------------------------


class _Field(NamedTuple):
    key: str
    path: str
    kind: str  # strings | text | mapping | number | count | values


def _read_field(view: RecordView, f: _Field) -> Any | None:
    """Return the field value, or None when it should be left out of metadata."""
    if f.kind == "strings":
        return view.strings(f.path) or None
    if f.kind == "text":
        return view.text(f.path) or None
    if f.kind == "mapping":
        return view.mapping(f.path)
    if f.kind == "number":
        return view.number(f.path)
    if f.kind == "count":
        # zero hit points / speed means "not recorded"
        return view.number(f.path) or None
    if f.kind == "values":
        values = [r.text("value") for r in view.records(f.path)]
        return [v for v in values if v] or None
    raise ValueError(f"unknown field kind: {f.kind}")


_SPELL_FIELDS = (
    _Field("traditions", "system.traits.traditions", "strings"),
    _Field("casting_time", "system.time.value", "text"),
    _Field("range", "system.range.value", "text"),
    _Field("duration", "system.duration.value", "text"),
    _Field("save", "system.defense.save.statistic", "text"),
)
_FEAT_FIELDS = (
    _Field("feat_category", "system.category", "text"),
    _Field("action_type", "system.actionType.value", "text"),
    _Field("prerequisites", "system.prerequisites.value", "values"),
)
_ACTION_FIELDS = (
    _Field("action_type", "system.actionType.value", "text"),
    _Field("action_cost", "system.actions.value", "number"),
)
_EQUIPMENT_FIELDS = (
    _Field("price", "system.price.value", "mapping"),
    _Field("bulk", "system.bulk.value", "number"),
    _Field("usage", "system.usage.value", "text"),
)
_CLASS_FIELDS = (
    _Field("hp", "system.hp", "count"),
    _Field("key_ability", "system.keyAbility.value", "strings"),
)
_ANCESTRY_FIELDS = (
    _Field("hp", "system.hp", "count"),
    _Field("speed", "system.speed", "count"),
    _Field("size", "system.size", "text"),
    _Field("vision", "system.vision", "text"),
    _Field("languages", "system.languages.value", "strings"),
)
_DEITY_FIELDS = (
    _Field("domains", "system.domains", "mapping"),
    _Field("skill", "system.skill", "strings"),
    _Field("deity_category", "system.category", "text"),
)
_BACKGROUND_FIELDS = (
    _Field("trained_skills", "system.trainedSkills", "mapping"),
)

CATEGORY_FIELDS: dict[str, tuple[_Field, ...]] = {
    "spell": _SPELL_FIELDS,
    "feat": _FEAT_FIELDS,
    "action": _ACTION_FIELDS,
    "equipment": _EQUIPMENT_FIELDS,
    "class": _CLASS_FIELDS,
    "ancestry": _ANCESTRY_FIELDS,
    "deity": _DEITY_FIELDS,
    "background": _BACKGROUND_FIELDS,
}

_HAZARD_FIELDS = (
    _Field("level", "system.details.level.value", "number"),
    _Field("traits", "system.traits.value", "strings"),
)

# Hazard text parts in output order: (path, label prefix)
_HAZARD_PARTS = (
    ("system.details.description", ""),
    ("system.details.disable", "Disable: "),
    ("system.details.reset", "Reset: "),
    ("system.details.routine", "Routine: "),
)


def _collect(view: RecordView, table: tuple[_Field, ...]) -> dict[str, Any]:
    meta: dict[str, Any] = {}
    for f in table:
        value = _read_field(view, f)
        if value is not None:
            meta[f.key] = value
    return meta


def _rarity(view: RecordView) -> str | None:
    rarity = view.text("system.traits.rarity")
    return rarity if rarity and rarity != "common" else None


def _common_metadata(view: RecordView) -> dict[str, Any]:
    meta: dict[str, Any] = {}
    level = view.get("system.level.value")
    if level is not None:
        meta["level"] = level
    traits = view.strings("system.traits.value")
    if traits:
        meta["traits"] = traits
    if rarity := _rarity(view):
        meta["rarity"] = rarity
    publication = view.mapping("system.publication") or {}
    if publication.get("remaster"):
        meta["remaster"] = True
    if publication.get("license"):
        meta["license"] = publication["license"]
    return meta


# ---------------------------------------------------------------------------
# Per-shape extractors
# ---------------------------------------------------------------------------


def _extract_standard(
    view: RecordView, category: str, source_file: str, stats: NotationStats, min_chars: int
) -> ExtractionResult:
    html = view.text("system.description.value")
    if not html or not html.strip():
        return ExtractionResult.skip("empty-description", stats)
    if is_localize_only(html):
        return ExtractionResult.skip("localize-only", stats)

    content = normalize(html, stats)
    if len(content) < min_chars:
        return ExtractionResult.skip("content-too-short", stats)

    metadata = _common_metadata(view)
    metadata.update(_collect(view, CATEGORY_FIELDS.get(category, ())))

    doc = ParsedDocument(
        source_id=view.text("_id") or "",
        source_file=source_file,
        name=view.text("name") or "Unknown",
        type=view.text("type") or category,
        category=category,
        source=view.text("system.publication.title") or "",
        content=content,
        metadata=metadata,
    )
    return ExtractionResult(documents=[doc], notation=stats)


def _extract_hazard(
    view: RecordView, source_file: str, stats: NotationStats, min_chars: int
) -> ExtractionResult:
    parts: list[str] = []
    for path, prefix in _HAZARD_PARTS:
        html = view.text(path)
        if html:
            parts.append(prefix + normalize(html, stats))

    for item in view.records("items"):
        html = item.text("system.description.value")
        if not html:
            continue
        text = normalize(html, stats)
        if text:
            item_name = item.text("name")
            parts.append(f"{item_name}: {text}" if item_name else text)

    content = "\n\n".join(p for p in parts if p)
    if len(content) < min_chars:
        return ExtractionResult.skip("content-too-short", stats)

    metadata = _collect(view, _HAZARD_FIELDS)
    if rarity := _rarity(view):
        metadata["rarity"] = rarity
    if view.get("system.details.isComplex"):
        metadata["is_complex"] = True
    ac = view.number("system.attributes.ac.value")
    if ac is not None:
        metadata["ac"] = ac
    hp = view.number("system.attributes.hp.max")
    if hp is not None:
        metadata["hp"] = hp

    doc = ParsedDocument(
        source_id=view.text("_id") or "",
        source_file=source_file,
        name=view.text("name") or "Unknown",
        type="hazard",
        category="hazard",
        source=view.text("system.details.publication.title") or "",
        content=content,
        metadata=metadata,
    )
    return ExtractionResult(documents=[doc], notation=stats)


# Keyword -> category, first match wins.
_JOURNAL_CATEGORIES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("class",), "class-journal"),
    (("ancestr",), "ancestry-journal"),
    (("archetype",), "archetype-journal"),
    (("domain",), "domain-journal"),
    (("gm", "screen", "remaster", "hero"), "rules"),
)


def journal_category(journal_name: str) -> str:
    """Map a journal's display name to the category its pages are filed under."""
    lower = journal_name.lower()
    for keywords, category in _JOURNAL_CATEGORIES:
        if any(k in lower for k in keywords):
            return category
    return "journal"


def _extract_journal(
    view: RecordView, source_file: str, stats: NotationStats, min_chars: int
) -> ExtractionResult:
    journal_name = view.text("name") or "Unknown Journal"
    pages = view.records("pages")
    if not pages:
        return ExtractionResult.skip("no-pages", stats)

    category = journal_category(journal_name)
    documents: list[ParsedDocument] = []
    page_skips: list[str] = []

    for page in pages:
        html = page.text("text.content")
        if not html or not html.strip():
            page_skips.append("empty-content")
            continue
        if is_localize_only(html):
            page_skips.append("localize-only")
            continue
        content = normalize(html, stats)
        if len(content) < min_chars:
            page_skips.append("content-too-short")
            continue

        documents.append(
            ParsedDocument(
                source_id=page.text("_id") or "",
                source_file=source_file,
                name=page.text("name") or "Unknown Page",
                type="journal",
                category=category,
                source=journal_name,
                content=content,
                metadata={"journal_name": journal_name},
            )
        )

    if not documents:
        return ExtractionResult.skip("all-pages-empty", stats)
    return ExtractionResult(documents=documents, skip_reasons=page_skips, notation=stats)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def extract(
    record: dict[str, Any],
    category: str,
    source_file: str,
    stats: NotationStats | None = None,
    min_chars: int = MIN_CONTENT_CHARS,
) -> ExtractionResult:
    """Extract documents from an already-decoded *record* filed under *category*."""
    stats = stats if stats is not None else NotationStats()
    view = RecordView(record)
    if category == "journal":
        return _extract_journal(view, source_file, stats, min_chars)
    if category == "hazard":
        return _extract_hazard(view, source_file, stats, min_chars)
    return _extract_standard(view, category, source_file, stats, min_chars)


def parse_file(
    path: Path | str,
    category: str,
    stats: NotationStats | None = None,
    min_chars: int = MIN_CONTENT_CHARS,
) -> ExtractionResult:
    """Read, decode, and extract one JSON file.

    Unreadable or malformed files yield a result with ``error`` set and no
    documents; nothing is raised.
    """
    stats = stats if stats is not None else NotationStats()
    try:
        record = json.loads(Path(path).read_text(encoding="utf-8"))
        return extract(record, category, str(path), stats, min_chars)
    except (OSError, ValueError, TypeError, AttributeError) as exc:
        logger.debug("Failed to parse %s: %s", path, exc)
        return ExtractionResult(skipped=True, error=str(exc), notation=stats)
