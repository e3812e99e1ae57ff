"""Foundry VTT rich-text normalizer: inline notation rewrites, then HTML to plain text.

The compendium descriptions are HTML peppered with Foundry enrichers
(``@UUID[...]``, ``@Damage[...]``, ``@Check[...]``, roll macros, ...). Each
enricher has a rule that rewrites it to the words a player would read; the
rules run in a fixed order (see ``RULES``) and the remaining HTML is rendered
to plain text by ``html_to_text``.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass, fields

import html2text
from bs4 import BeautifulSoup


@dataclass
class NotationStats:
    """Occurrence counters for the enrichers seen while normalizing (diagnostic only)."""

    uuid_refs: int = 0
    damage_refs: int = 0
    check_refs: int = 0
    embed_refs: int = 0
    localize_refs: int = 0

    def __iadd__(self, other: NotationStats) -> NotationStats:
        for f in fields(self):
            setattr(self, f.name, getattr(self, f.name) + getattr(other, f.name))
        return self

    @property
    def total(self) -> int:
        return sum(getattr(self, f.name) for f in fields(self))

    def as_dict(self) -> dict[str, int]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


Rule = Callable[[str, "NotationStats | None"], str]


def _count(stats: NotationStats | None, attr: str) -> None:
    if stats is not None:
        setattr(stats, attr, getattr(stats, attr) + 1)


# ---------------------------------------------------------------------------
# Rewrite rules (applied in RULES order)
# ---------------------------------------------------------------------------

_GLYPH_RE = re.compile(r'<span\s+class="action-glyph">([^<]+)</span>', re.IGNORECASE)
_GLYPHS: dict[str, str] = {
    "1": "[one-action]",
    "A": "[one-action]",
    "2": "[two-actions]",
    "D": "[two-actions]",
    "3": "[three-actions]",
    "T": "[three-actions]",
    "r": "[reaction]",
    "R": "[reaction]",
    "f": "[free-action]",
    "F": "[free-action]",
}


def replace_action_glyphs(text: str, stats: NotationStats | None = None) -> str:
    """``<span class="action-glyph">2</span>`` -> ``[two-actions]``."""

    def _sub(m: re.Match[str]) -> str:
        glyph = m.group(1).strip()
        return _GLYPHS.get(glyph, f"[{glyph}-action]")

    return _GLYPH_RE.sub(_sub, text)


_UUID_LABELLED_RE = re.compile(r"@UUID\[([^\]]+)\]\{([^}]+)\}")
_UUID_RE = re.compile(r"@UUID\[([^\]]+)\]")


def _name_from_ref(ref_path: str) -> str:
    last = ref_path.split(".")[-1] or ref_path
    if ":" in last:
        return last.split(":")[-1].strip()
    return re.sub(r"\b\w", lambda m: m.group().upper(), last.replace("-", " "))


def replace_uuid_refs(text: str, stats: NotationStats | None = None) -> str:
    """``@UUID[...Item.Doomed]{Doomed 1}`` -> ``Doomed 1``; bare refs use the last path segment."""

    def _labelled(m: re.Match[str]) -> str:
        _count(stats, "uuid_refs")
        return m.group(2)

    def _bare(m: re.Match[str]) -> str:
        _count(stats, "uuid_refs")
        return _name_from_ref(m.group(1))

    return _UUID_RE.sub(_bare, _UUID_LABELLED_RE.sub(_labelled, text))


# One level of nested brackets: @Damage[(1d8+6)[void]|options:x]
_DAMAGE_RE = re.compile(r"@Damage\[((?:[^\[\]]|\[[^\]]*\])*)\]")
_DAMAGE_TYPES_RE = re.compile(r"\[([^\]]+)\]\s*$")
_WRAPPING_PARENS_RE = re.compile(r"^\((.+)\)$")
_DYNAMIC_MARKERS = ("@item", "ceil(", "floor(")


def replace_damage_refs(text: str, stats: NotationStats | None = None) -> str:
    """``@Damage[6d12[cold]|options:area-damage]`` -> ``6d12 cold damage``.

    Formulas that depend on the item (``@item.level``, ``ceil(``, ``floor(``)
    cannot be resolved offline and collapse to the damage types alone.
    """

    def _sub(m: re.Match[str]) -> str:
        _count(stats, "damage_refs")
        main = m.group(1).split("|")[0]

        types_match = _DAMAGE_TYPES_RE.search(main)
        damage_types = types_match.group(1).replace(",", " ") if types_match else ""
        formula = main[: main.rfind("[")].strip() if types_match else main.strip()
        formula = _WRAPPING_PARENS_RE.sub(r"\1", formula)

        if any(marker in formula for marker in _DYNAMIC_MARKERS):
            return f"{damage_types} damage" if damage_types else "damage"
        if formula and damage_types:
            return f"{formula} {damage_types} damage"
        if formula:
            return f"{formula} damage"
        if damage_types:
            return f"{damage_types} damage"
        return "damage"

    return _DAMAGE_RE.sub(_sub, text)


_CHECK_RE = re.compile(r"@Check\[([^\]]+)\]")
_SAVES = frozenset({"reflex", "fortitude", "will"})


def replace_check_refs(text: str, stats: NotationStats | None = None) -> str:
    """``@Check[reflex|dc:29|basic]`` -> ``Reflex save (DC 29, basic)``."""

    def _sub(m: re.Match[str]) -> str:
        _count(stats, "check_refs")
        check_type = ""
        dc = ""
        basic = False
        for part in m.group(1).split("|"):
            if part.startswith("type:"):
                check_type = part[5:]
            elif part.startswith("dc:"):
                dc = part[3:]
            elif part == "basic":
                basic = True
            elif not part.startswith(("options:", "traits:")) and not check_type:
                check_type = part

        type_name = check_type[:1].upper() + check_type[1:]
        kind = "save" if check_type.lower() in _SAVES else "check"
        label = f"{type_name} {kind}".strip()

        details = []
        if dc:
            details.append(f"DC {dc}")
        if basic:
            details.append("basic")
        return f"{label} ({', '.join(details)})" if details else label

    return _CHECK_RE.sub(_sub, text)


_TEMPLATE_LABELLED_RE = re.compile(r"@Template\[([^\]]+)\]\{([^}]+)\}")
_TEMPLATE_RE = re.compile(r"@Template\[([^\]]+)\]")


def replace_template_refs(text: str, stats: NotationStats | None = None) -> str:
    """``@Template[cone|distance:30]`` -> ``30-foot cone``."""

    def _bare(m: re.Match[str]) -> str:
        parts = m.group(1).split("|")
        shape = parts[0] or "area"
        distance = ""
        for part in parts:
            if part.startswith("distance:"):
                distance = part[9:]
        return f"{distance}-foot {shape}" if distance else shape

    text = _TEMPLATE_LABELLED_RE.sub(lambda m: m.group(2), text)
    return _TEMPLATE_RE.sub(_bare, text)


_EMBED_RE = re.compile(r"@Embed\[([^\]]+)\](?:\{([^}]+)\})?")


def replace_embed_refs(text: str, stats: NotationStats | None = None) -> str:
    """``@Embed[...]{Label}`` -> ``[See: Label]``; unlabelled embeds are dropped."""

    def _sub(m: re.Match[str]) -> str:
        _count(stats, "embed_refs")
        label = m.group(2)
        return f"[See: {label}]" if label else ""

    return _EMBED_RE.sub(_sub, text)


_LOCALIZE_RE = re.compile(r"@Localize\[([^\]]+)\]")


def replace_localize_refs(text: str, stats: NotationStats | None = None) -> str:
    """Drop ``@Localize[...]``; the translation tables are not part of the corpus."""

    def _sub(m: re.Match[str]) -> str:
        _count(stats, "localize_refs")
        return ""

    return _LOCALIZE_RE.sub(_sub, text)


_ROLL_LABELLED_RE = re.compile(r"\[\[/[^\]]+\]\]\{([^}]+)\}")
_ROLL_GMR_RE = re.compile(r"\[\[/gmr\s+(\S+)[^\]]*\]\]")
_ROLL_ANY_RE = re.compile(r"\[\[[^\]]*\]\]")


def replace_roll_macros(text: str, stats: NotationStats | None = None) -> str:
    """``[[/gmr 1d4 #Recharge]]{1d4 rounds}`` -> ``1d4 rounds``; ``[[/gmr 1d10 #days]]`` -> ``1d10``."""
    text = _ROLL_LABELLED_RE.sub(lambda m: m.group(1), text)
    text = _ROLL_GMR_RE.sub(lambda m: m.group(1), text)
    return _ROLL_ANY_RE.sub("", text)


RULES: tuple[Rule, ...] = (
    replace_action_glyphs,
    replace_uuid_refs,
    replace_damage_refs,
    replace_check_refs,
    replace_template_refs,
    replace_embed_refs,
    replace_localize_refs,
    replace_roll_macros,
)


# ---------------------------------------------------------------------------
# HTML -> plain text
# ---------------------------------------------------------------------------

_PRUNE_TAGS = ["script", "style", "img", "head", "template"]
_HEADING_LINE_RE = re.compile(r"^#{1,6}\s+(.*?)\s*#*$", re.MULTILINE)
_HR_LINE_RE = re.compile(r"^\s*\* \* \*\s*$", re.MULTILINE)


def _converter() -> html2text.HTML2Text:
    # A fresh converter per document; HTML2Text keeps parser state between calls.
    h2t = html2text.HTML2Text()
    h2t.ignore_links = True
    h2t.ignore_images = True
    h2t.ignore_emphasis = True
    h2t.unicode_snob = True
    h2t.escape_backslash = False
    h2t.escape_dot = False
    h2t.escape_plus = False
    h2t.escape_dash = False
    h2t.body_width = 0  # no line wrapping
    return h2t


def html_to_text(html: str) -> str:
    """Render *html* to plain text.

    Non-content tags are pruned with BeautifulSoup, the rest is rendered by
    html2text: paragraphs separated by blank lines, ``<br>`` a line break,
    list items ``* item`` lines, tables ``|``-separated rows and ``<hr>`` a
    ``---`` line. Links keep only their text; images and emphasis markers
    are dropped.

    Headings are emitted as their own paragraph in UPPER CASE. That is the
    only heading marker left in the plain text, and
    ``grimoire.ingest.chunker.is_heading`` depends on it to find section
    boundaries.
    """
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup.find_all(_PRUNE_TAGS):
        tag.decompose()
    text = _converter().handle(str(soup))
    text = _HEADING_LINE_RE.sub(lambda m: m.group(1).upper(), text)
    text = _HR_LINE_RE.sub("---", text)
    text = re.sub(r"[ \t]+$", "", text, flags=re.MULTILINE)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

_TAG_RE = re.compile(r"<[^>]*>")
_LOCALIZE_ANY_RE = re.compile(r"@Localize\[[^\]]*\]")


def is_localize_only(html: str) -> bool:
    """True when *html* has no text beyond tags and ``@Localize[...]`` references."""
    stripped = _LOCALIZE_ANY_RE.sub("", _TAG_RE.sub("", html))
    return not stripped.strip()


def normalize(raw_markup: str, stats: NotationStats | None = None) -> str:
    """Rewrite Foundry enrichers in *raw_markup*, then render it to plain text.

    Args:
        raw_markup: Description HTML as stored in the compendium JSON.
        stats: Optional counters, incremented once per enricher occurrence.

    Returns:
        Plain text; empty string for empty or whitespace-only input.
    """
    if not raw_markup or not raw_markup.strip():
        return ""
    text = raw_markup
    for rule in RULES:
        text = rule(text, stats)
    return html_to_text(text)
