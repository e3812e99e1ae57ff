"""Heading- and paragraph-aware chunker for normalized rules documents.

Small documents stay whole. Larger ones are split at UPPER CASE heading lines
(the form ``grimoire.ingest.notation.html_to_text`` renders headings in),
adjacent small sections are merged back together, and anything still too
large is split at paragraph boundaries with a character overlap.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from grimoire.db.models import RuleChunk
from grimoire.ingest.extractor import ParsedDocument

MAX_CHUNK_CHARS = 6000
CHUNK_OVERLAP_CHARS = 200

_PARAGRAPH_RE = re.compile(r"\n\n+")
_SEPARATOR_RE = re.compile(r"^[-=*_]+$")
_CAPITAL_RE = re.compile(r"[A-Z]")


def is_heading(line: str) -> bool:
    """True for a trimmed line that reads as a rendered heading.

    Headings are recognised purely by case: at least three characters, no
    lower-case letters, at least one ASCII capital, and not a digit run, a
    separator rule, or a table row.
    """
    trimmed = line.strip()
    return (
        len(trimmed) >= 3
        and trimmed == trimmed.upper()
        and _CAPITAL_RE.search(trimmed) is not None
        and not trimmed.isdigit()
        and not _SEPARATOR_RE.match(trimmed)
        and not trimmed.startswith("|")
    )


@dataclass
class Section:
    heading: str
    body: str


def split_at_headings(text: str) -> list[Section]:
    """Split *text* into sections; text before the first heading has heading ``""``."""
    sections: list[Section] = []
    heading = ""
    body: list[str] = []

    for line in text.split("\n"):
        if is_heading(line):
            if body or heading:
                sections.append(Section(heading, "\n".join(body).strip()))
            heading = line.strip()
            body = []
        else:
            body.append(line)

    if body or heading:
        sections.append(Section(heading, "\n".join(body).strip()))
    return sections


def split_at_paragraphs(text: str, max_chars: int, overlap_chars: int) -> list[str]:
    """Pack paragraphs into pieces of at most *max_chars*.

    Each new piece starts with the last *overlap_chars* characters of the
    previous one, shortened (or dropped) when the full overlap would push the
    piece past *max_chars*. The overlap is a raw character suffix and may
    begin mid-word. A single paragraph longer than *max_chars* is kept whole.
    """
    pieces: list[str] = []
    current = ""

    for para in _PARAGRAPH_RE.split(text):
        if len(current) + len(para) + 2 > max_chars and current:
            pieces.append(current.strip())
            keep = min(overlap_chars, max_chars - len(para) - 2)
            current = current[-keep:] + "\n\n" + para if keep > 0 else para
        else:
            current += ("\n\n" if current else "") + para

    if current.strip():
        pieces.append(current.strip())
    return [p for p in pieces if p]


def _title_case(heading: str) -> str:
    return re.sub(r"\b\w", lambda m: m.group().upper(), heading.lower())


class DocumentChunker:
    """Turn ParsedDocuments into RuleChunks sized for embedding."""

    def __init__(
        self,
        max_chars: int = MAX_CHUNK_CHARS,
        overlap_chars: int = CHUNK_OVERLAP_CHARS,
    ) -> None:
        if max_chars < 1:
            raise ValueError("max_chars must be >= 1")
        if not 0 <= overlap_chars < max_chars:
            raise ValueError("overlap_chars must be in [0, max_chars)")
        self.max_chars = max_chars
        self.overlap_chars = overlap_chars

    def _text_budget(self, name: str) -> int:
        # Multi-part chunks carry a "<name>\n\n" prefix inside max_chars.
        return max(1, self.max_chars - len(name) - 2)

    def chunk(self, doc: ParsedDocument) -> list[RuleChunk]:
        if len(doc.content) <= self.max_chars:
            return [self._make(doc, doc.name, doc.content)]

        sections = split_at_headings(doc.content)
        if len(sections) > 1:
            return self._chunk_sections(doc, sections)

        pieces = split_at_paragraphs(doc.content, self._text_budget(doc.name), self.overlap_chars)
        if len(pieces) == 1:
            return [self._make(doc, doc.name, pieces[0])]
        return [
            self._make(doc, f"{doc.name} (Part {i})", f"{doc.name}\n\n{piece}")
            for i, piece in enumerate(pieces, start=1)
        ]

    def _chunk_sections(self, doc: ParsedDocument, sections: list[Section]) -> list[RuleChunk]:
        name = doc.name
        budget = self._text_budget(name)
        chunks: list[RuleChunk] = []
        title = name
        content = ""

        for section in sections:
            text = f"{section.heading}\n\n{section.body}" if section.heading else section.body
            section_title = f"{name} - {_title_case(section.heading)}" if section.heading else name

            if len(content) + len(text) + 2 > budget and content:
                chunks.append(self._make(doc, title, f"{name}\n\n{content}"))
                title = section_title
                content = ""

            if len(text) > budget:
                if content:
                    chunks.append(self._make(doc, title, f"{name}\n\n{content}"))
                    content = ""
                pieces = split_at_paragraphs(text, budget, self.overlap_chars)
                for i, piece in enumerate(pieces, start=1):
                    piece_title = f"{section_title} (Part {i})" if len(pieces) > 1 else section_title
                    chunks.append(self._make(doc, piece_title, f"{name}\n\n{piece}"))
                title = name
            else:
                if section.heading:
                    title = section_title
                content += ("\n\n" if content else "") + text

        if content.strip():
            chunks.append(self._make(doc, title, f"{name}\n\n{content}"))
        return chunks

    @staticmethod
    def _make(doc: ParsedDocument, title: str, content: str) -> RuleChunk:
        return RuleChunk(
            title=title,
            category=doc.category,
            source=doc.source,
            content=content,
            source_id=doc.source_id,
            source_file=doc.source_file,
            metadata=doc.metadata,
        )
