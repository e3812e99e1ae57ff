"""Retrieval-augmented chat orchestrator and its event stream.

One ``ChatOrchestrator.stream`` call serves one question. The caller receives,
in order:

  sources   exactly once, before any token (possibly an empty list)
  token     zero or more answer fragments, in arrival order
  done      on normal completion, or
  error     when any stage fails; nothing follows it

A blank question, or a failure while embedding it or searching the store,
yields a single ``error`` event and no ``sources``. Closing the generator (``aclose()`` or task
cancellation) stops the pipeline at its current await and closes the upstream
completion stream.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncGenerator, AsyncIterator, Sequence
from dataclasses import dataclass, field
from typing import Any, ClassVar, Protocol

from grimoire.db.models import RetrievedChunk, RetrievedSource
from grimoire.rag.assembler import ConversationTurn, build_messages

logger = logging.getLogger(__name__)

UNEXPECTED_ERROR = "An unexpected error occurred"
EMPTY_MESSAGE = "Message must not be empty"


# ------------------------------------------------------------------
# Events
# ------------------------------------------------------------------


@dataclass(frozen=True)
class SourcesEvent:
    type: ClassVar[str] = "sources"
    sources: list[RetrievedSource] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "data": [s.to_dict() for s in self.sources]}


@dataclass(frozen=True)
class TokenEvent:
    type: ClassVar[str] = "token"
    text: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "data": self.text}


@dataclass(frozen=True)
class DoneEvent:
    type: ClassVar[str] = "done"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type}


@dataclass(frozen=True)
class ErrorEvent:
    type: ClassVar[str] = "error"
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "data": self.message}


ChatEvent = SourcesEvent | TokenEvent | DoneEvent | ErrorEvent


def encode_sse(event: ChatEvent) -> str:
    """Frame *event* as one server-sent-events message."""
    return f"data: {json.dumps(event.to_dict(), ensure_ascii=False)}\n\n"


def error_message(exc: BaseException) -> str:
    return str(exc).strip() or UNEXPECTED_ERROR


# ------------------------------------------------------------------
# Collaborators
# ------------------------------------------------------------------


class QueryEmbedder(Protocol):
    async def aembed_query(self, text: str) -> list[float]: ...


class ChunkSearcher(Protocol):
    async def asearch(
        self, query_vector: Sequence[float], top_k: int | None = None, similarity_threshold: float | None = None
    ) -> list[RetrievedChunk]: ...


class StreamingModel(Protocol):
    def stream(self, messages: Sequence[dict[str, str]]) -> AsyncGenerator[str, None]: ...


# ------------------------------------------------------------------
# Orchestrator
# ------------------------------------------------------------------


class ChatOrchestrator:
    """Embed the question, retrieve rules context, and stream the model's answer.

    All collaborators are injected and hold configuration only, so one
    orchestrator can serve any number of concurrent ``stream`` calls.

    Args:
        embedder: Provides ``aembed_query`` (normally an ``EmbeddingClient``).
        retriever: Provides ``asearch`` (normally a ``Retriever``).
        chat_model: Provides ``stream(messages)`` (normally a ``ChatModel``).
        system_prompt: Persona preamble placed before the retrieved context.
        top_k: Maximum chunks retrieved per question.
        similarity_threshold: Minimum cosine similarity for a retrieved chunk.
    """

    def __init__(
        self,
        embedder: QueryEmbedder,
        retriever: ChunkSearcher,
        chat_model: StreamingModel,
        system_prompt: str,
        top_k: int = 8,
        similarity_threshold: float = 0.3,
    ) -> None:
        self._embedder = embedder
        self._retriever = retriever
        self._chat_model = chat_model
        self.system_prompt = system_prompt
        self.top_k = top_k
        self.similarity_threshold = similarity_threshold

    async def stream(
        self, message: str, history: Sequence[ConversationTurn] = ()
    ) -> AsyncIterator[ChatEvent]:
        """Yield the event sequence for one question.

        Failures are reported as a final ``ErrorEvent``, never raised; a blank
        *message* yields ``ErrorEvent(EMPTY_MESSAGE)`` alone.
        """
        if not message or not message.strip():
            logger.warning("Rejected blank chat message")
            yield ErrorEvent(EMPTY_MESSAGE)
            return

        logger.info("Processing chat: message length %d, history size %d", len(message), len(history))
        logger.debug("User message: %r", message)

        try:
            vector = await self._embedder.aembed_query(message)
            logger.info("Query embedded (%d dimensions)", len(vector))
            chunks = await self._retriever.asearch(vector, self.top_k, self.similarity_threshold)
        except Exception as exc:
            logger.error("Chat retrieval failed: %s", exc, exc_info=True)
            yield ErrorEvent(error_message(exc))
            return

        logger.info("Retrieved %d rule chunks", len(chunks))
        if chunks:
            logger.debug(
                "Top chunks: %s",
                ", ".join(f"{c.title!r} ({c.category}, {c.similarity:.4f})" for c in chunks),
            )
        else:
            logger.warning("No relevant chunks found for query")

        yield SourcesEvent([c.to_source() for c in chunks])

        messages = build_messages(self.system_prompt, chunks, history, message)
        logger.info("Built %d messages (1 system + %d history + 1 user)", len(messages), len(history))

        upstream = self._chat_model.stream(messages)
        tokens = 0
        try:
            async for fragment in upstream:
                if fragment:
                    tokens += 1
                    yield TokenEvent(fragment)
        except Exception as exc:
            logger.error("Chat completion failed: %s", exc, exc_info=True)
            yield ErrorEvent(error_message(exc))
            return
        finally:
            await upstream.aclose()

        logger.info("Completion stream finished: %d tokens emitted", tokens)
        yield DoneEvent()
