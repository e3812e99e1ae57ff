"""LiteLLM embedding client with batching and a rate-limit-aware retry policy.

Both the ingestion pipeline (sync, batched) and the chat path (async, one
query at a time) embed through ``EmbeddingClient`` so they share one model
configuration. Retries run through tenacity with a fixed wait:

- HTTP 429 (rate limited): wait ``retry_wait`` seconds and try the same
  request again. Ingestion batches have no attempt limit; a chat question
  gives up after ``query_rate_limit_retries`` so the caller always gets an
  answer or an error.
- HTTP 5xx: wait ``retry_wait`` seconds and retry, at most
  ``max_server_retries`` times; then the error propagates.
- Anything else propagates immediately.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any

import litellm
from tenacity import AsyncRetrying, RetryCallState, Retrying, retry_if_exception, wait_fixed
from tenacity.stop import stop_base

from grimoire.config import EmbeddingCfg

logger = logging.getLogger(__name__)

litellm.suppress_debug_info = True

RATE_LIMITED = 429


def status_code_of(exc: BaseException) -> int | None:
    """Return the HTTP status carried by a provider exception, if any."""
    for attr in ("status_code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None


def is_retryable(exc: BaseException) -> bool:
    """True for rate limiting (429) and server-side (5xx) failures."""
    status = status_code_of(exc)
    return status is not None and (status == RATE_LIMITED or status >= 500)


class _StopOnBudget(stop_base):
    """Stops once either failure budget for one request is spent.

    Holds per-request counters, so a fresh instance is built for each request.
    """

    def __init__(self, max_server_retries: int, max_rate_limit_retries: int | None) -> None:
        self.max_server_retries = max_server_retries
        self.max_rate_limit_retries = max_rate_limit_retries
        self.server_failures = 0
        self.rate_limits = 0

    def __call__(self, retry_state: RetryCallState) -> bool:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if exc is not None and status_code_of(exc) == RATE_LIMITED:
            self.rate_limits += 1
            return self.max_rate_limit_retries is not None and self.rate_limits > self.max_rate_limit_retries
        self.server_failures += 1
        return self.server_failures > self.max_server_retries


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
    status = status_code_of(exc) if exc is not None else None
    if status == RATE_LIMITED:
        logger.warning("Embedding request rate limited (429); retrying in %.1fs", delay)
    else:
        logger.warning(
            "Embedding request failed (%s); retrying in %.1fs (attempt %d)",
            status,
            delay,
            retry_state.attempt_number,
        )


@dataclass(frozen=True)
class RetryPolicy:
    """Wait and attempt limits for one embedding request.

    Attributes:
        wait: Fixed seconds between attempts.
        max_server_retries: Retries allowed for 5xx failures.
        max_rate_limit_retries: Retries allowed for 429 failures; None retries
            until the provider accepts the request.
    """

    wait: float = 1.0
    max_server_retries: int = 3
    max_rate_limit_retries: int | None = None

    def _options(self) -> dict[str, Any]:
        return {
            "retry": retry_if_exception(is_retryable),
            "stop": _StopOnBudget(self.max_server_retries, self.max_rate_limit_retries),
            "wait": wait_fixed(self.wait),
            "before_sleep": _log_retry,
            "reraise": True,
        }

    def retrying(self, sleep: Callable[[float], None] = time.sleep) -> Retrying:
        """A tenacity controller for one blocking request."""
        return Retrying(sleep=sleep, **self._options())

    def async_retrying(
        self, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ) -> AsyncRetrying:
        """A tenacity controller for one awaitable request."""
        return AsyncRetrying(sleep=sleep, **self._options())


def _field(item: Any, key: str) -> Any:
    return item[key] if isinstance(item, dict) else getattr(item, key)


def _ordered_vectors(response: Any) -> list[list[float]]:
    """Vectors from an embedding response, in input order (sorted by ``index``)."""
    items = sorted(response.data, key=lambda item: _field(item, "index"))
    return [list(_field(item, "embedding")) for item in items]


class EmbeddingClient:
    """Embed texts with ``litellm.embedding`` / ``litellm.aembedding``.

    Holds configuration only, so one instance can serve concurrent callers.

    Args:
        config: Model, dimensions, batching, and retry settings.
        sleep: Blocking sleep used between batches and before retries.
        async_sleep: Awaitable sleep used on the async path.
    """

    def __init__(
        self,
        config: EmbeddingCfg | None = None,
        sleep: Callable[[float], None] = time.sleep,
        async_sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config or EmbeddingCfg()
        self.policy = RetryPolicy(
            wait=self.config.retry_wait,
            max_server_retries=self.config.max_server_retries,
        )
        self.query_policy = RetryPolicy(
            wait=self.config.retry_wait,
            max_server_retries=self.config.max_server_retries,
            max_rate_limit_retries=self.config.query_rate_limit_retries,
        )
        self._sleep = sleep
        self._async_sleep = async_sleep

    def _request_kwargs(self, texts: Sequence[str]) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self.config.model,
            "input": list(texts),
            "dimensions": self.config.dimensions,
        }
        if self.config.api_base:
            kwargs["api_base"] = self.config.api_base
        if self.config.api_version:
            kwargs["api_version"] = self.config.api_version
        return kwargs

    # ------------------------------------------------------------------
    # Sync path (ingestion)
    # ------------------------------------------------------------------

    def _embed_once(self, texts: Sequence[str]) -> list[list[float]]:
        return _ordered_vectors(litellm.embedding(**self._request_kwargs(texts)))

    def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed one batch in a single request; ``result[i]`` belongs to ``texts[i]``."""
        if not texts:
            return []
        return self.policy.retrying(self._sleep)(self._embed_once, texts)

    def embed_texts(
        self,
        texts: Sequence[str],
        batch_size: int | None = None,
        delay: float | None = None,
        on_batch: Callable[[int, int], None] | None = None,
    ) -> list[list[float]]:
        """Embed *texts* in sequential batches, pausing *delay* seconds between them.

        Args:
            texts: Texts to embed, in order.
            batch_size: Texts per request (default ``config.batch_size``).
            delay: Pause between batches (default ``config.batch_delay``); not
                applied after the final batch.
            on_batch: Optional ``(texts_done, total)`` progress callback.

        Returns:
            One vector per input text, in input order.
        """
        size = batch_size or self.config.batch_size
        pause = self.config.batch_delay if delay is None else delay
        total = len(texts)
        vectors: list[list[float]] = []

        for start in range(0, total, size):
            batch = texts[start : start + size]
            vectors.extend(self.embed_batch(batch))
            logger.debug("Embedded batch %d-%d of %d", start + 1, start + len(batch), total)
            if on_batch is not None:
                on_batch(len(vectors), total)
            if start + size < total and pause > 0:
                self._sleep(pause)

        return vectors

    def embed_query(self, text: str) -> list[float]:
        return self.embed_batch([text])[0]

    # ------------------------------------------------------------------
    # Async path (chat)
    # ------------------------------------------------------------------

    async def _aembed_once(self, texts: Sequence[str]) -> list[list[float]]:
        return _ordered_vectors(await litellm.aembedding(**self._request_kwargs(texts)))

    async def aembed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        """Async embed_batch with the bounded query policy."""
        if not texts:
            return []
        return await self.query_policy.async_retrying(self._async_sleep)(self._aembed_once, texts)

    async def aembed_query(self, text: str) -> list[float]:
        return (await self.aembed_batch([text]))[0]
