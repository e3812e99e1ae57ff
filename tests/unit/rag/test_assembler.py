"""Tests for prompt assembly."""

from __future__ import annotations

import pytest

from grimoire.db.models import RetrievedChunk
from grimoire.rag.assembler import (
    DEFAULT_SYSTEM_PROMPT,
    ConversationTurn,
    build_messages,
    format_context,
    load_system_prompt,
)

FLANKING = RetrievedChunk(
    id="1",
    title="Flanking",
    category="rules",
    source="Player Core",
    content="When you and an ally are on opposite sides of a creature, it is off-guard.",
    similarity=0.91,
)
OFF_GUARD = RetrievedChunk(
    id="2", title="Off-Guard", category="condition", source=None, content="-2 AC.", similarity=0.8
)


def test_format_context_blocks():
    text = format_context([FLANKING, OFF_GUARD])
    assert text == (
        "[Official] Title: Flanking\nCategory: rules\nSource: Player Core\n"
        "Content: When you and an ally are on opposite sides of a creature, it is off-guard."
        "\n\n"
        "[Official] Title: Off-Guard\nCategory: condition\nSource: \nContent: -2 AC."
    )


def test_format_context_empty():
    assert format_context([]) == ""


def test_build_messages_layout():
    history = [
        ConversationTurn("user", "What is flanking?"),
        ConversationTurn("assistant", "Two allies on opposite sides."),
    ]
    messages = build_messages("You are helpful.", [FLANKING], history, "Does it stack?")

    assert [m["role"] for m in messages] == ["system", "user", "assistant", "user"]
    system = messages[0]["content"]
    assert system.startswith("You are helpful.\n\n## Retrieved Context\n\n[Official] Title: Flanking")
    assert messages[1]["content"] == "What is flanking?"
    assert messages[2]["content"] == "Two allies on opposite sides."
    assert messages[-1] == {"role": "user", "content": "Does it stack?"}


def test_build_messages_without_context():
    messages = build_messages("Persona", [], [], "Hello")
    assert messages[0]["content"] == "Persona\n\n## Retrieved Context\n\n"
    assert len(messages) == 2


@pytest.mark.parametrize(
    "role, content",
    [("system", "x"), ("", "x"), ("user", ""), ("assistant", "   ")],
)
def test_conversation_turn_validation(role, content):
    with pytest.raises(ValueError):
        ConversationTurn(role, content)


def test_conversation_turn_from_dict():
    turn = ConversationTurn.from_dict({"role": "assistant", "content": "ok"})
    assert turn.to_message() == {"role": "assistant", "content": "ok"}
    with pytest.raises(ValueError):
        ConversationTurn.from_dict({"content": "no role"})


def test_load_system_prompt_default():
    assert load_system_prompt(None) == DEFAULT_SYSTEM_PROMPT
    assert "Pathfinder" in DEFAULT_SYSTEM_PROMPT


def test_load_system_prompt_from_file(tmp_path):
    path = tmp_path / "prompt.md"
    path.write_text("You are a goblin sage.\n", encoding="utf-8")
    assert load_system_prompt(path) == "You are a goblin sage."


def test_load_system_prompt_missing_file(tmp_path):
    with pytest.raises(OSError):
        load_system_prompt(tmp_path / "missing.md")
