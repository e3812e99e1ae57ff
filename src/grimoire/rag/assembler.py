"""Prompt assembly: persona preamble, retrieved context, and conversation history.

Message layout sent to the chat model:

  1. system    persona preamble + "## Retrieved Context" + one block per chunk
  2. history   caller-supplied turns, in order, with their own roles
  3. user      the current question
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path

from grimoire.db.models import RetrievedChunk

logger = logging.getLogger(__name__)

CONTEXT_HEADER = "\n\n## Retrieved Context\n\n"

DEFAULT_SYSTEM_PROMPT = """\
You are a rules assistant for the Pathfinder Second Edition roleplaying game.

Answer questions about the game's rules using the retrieved rules text below.

- Base every answer on the retrieved context. Cite the rule or item by its
  title, and the book it comes from when one is given.
- If the context does not cover the question, say so plainly instead of
  guessing, and suggest what the player could look up.
- Prefer the remastered rules (Player Core, GM Core) when sources disagree,
  and point out the difference.
- Quote action costs, traits, DCs, and damage exactly as written.
- Keep answers short and direct. Use a list when explaining a sequence of steps."""

ROLES = ("user", "assistant")


@dataclass(frozen=True)
class ConversationTurn:
    """One prior message of the conversation.

    Raises:
        ValueError: On an unknown role or empty content.
    """

    role: str
    content: str

    def __post_init__(self) -> None:
        if self.role not in ROLES:
            raise ValueError(f"role must be one of {ROLES}, got {self.role!r}")
        if not isinstance(self.content, str) or not self.content.strip():
            raise ValueError("content must be a non-empty string")

    @classmethod
    def from_dict(cls, data: dict) -> ConversationTurn:
        return cls(role=data.get("role", ""), content=data.get("content", ""))

    def to_message(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


def load_system_prompt(path: Path | str | None = None) -> str:
    """Return the persona preamble: the file at *path*, or the built-in one.

    Raises:
        OSError: If *path* is given but cannot be read.
    """
    if path is None:
        return DEFAULT_SYSTEM_PROMPT
    text = Path(path).expanduser().read_text(encoding="utf-8")
    logger.info("System prompt loaded from %s", path)
    return text.strip()


def format_chunk(chunk: RetrievedChunk) -> str:
    return (
        f"[Official] Title: {chunk.title}\n"
        f"Category: {chunk.category}\n"
        f"Source: {chunk.source or ''}\n"
        f"Content: {chunk.content}"
    )


def format_context(chunks: Iterable[RetrievedChunk]) -> str:
    """Render retrieved chunks as labelled blocks separated by blank lines."""
    return "\n\n".join(format_chunk(c) for c in chunks)


def build_messages(
    system_prompt: str,
    chunks: Sequence[RetrievedChunk],
    history: Sequence[ConversationTurn],
    message: str,
) -> list[dict[str, str]]:
    """Assemble the full message list for one chat request."""
    messages = [{"role": "system", "content": system_prompt + CONTEXT_HEADER + format_context(chunks)}]
    messages.extend(turn.to_message() for turn in history)
    messages.append({"role": "user", "content": message})
    return messages
