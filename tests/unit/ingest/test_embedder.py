"""Tests for EmbeddingClient: ordering, batching, and the retry policy."""

from __future__ import annotations

import asyncio
import itertools
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from grimoire.config import EmbeddingCfg
from grimoire.ingest.embedder import EmbeddingClient, RetryPolicy, is_retryable, status_code_of


class ProviderError(Exception):
    def __init__(self, status_code: int | None, message: str = "provider error") -> None:
        super().__init__(message)
        self.status_code = status_code


def _response(vectors_by_index: dict[int, list[float]], order: list[int] | None = None):
    order = order if order is not None else sorted(vectors_by_index)
    mock = MagicMock()
    mock.data = [{"index": i, "embedding": vectors_by_index[i]} for i in order]
    return mock


def _client(**cfg) -> tuple[EmbeddingClient, list[float]]:
    sleeps: list[float] = []
    client = EmbeddingClient(EmbeddingCfg(**cfg), sleep=sleeps.append)
    return client, sleeps


# ------------------------------------------------------------------
# RetryPolicy
# ------------------------------------------------------------------


def test_status_code_of():
    assert status_code_of(ProviderError(429)) == 429
    assert status_code_of(ValueError("x")) is None


@pytest.mark.parametrize("status", [429, 500, 502, 503])
def test_rate_limit_and_server_errors_are_retryable(status):
    assert is_retryable(ProviderError(status))


@pytest.mark.parametrize("status", [400, 401, 404, None])
def test_other_errors_not_retryable(status):
    assert not is_retryable(ProviderError(status))


def test_policy_controllers_use_fixed_wait():
    sleeps: list[float] = []
    calls = iter([ProviderError(503), ProviderError(429), "ok"])

    def flaky():
        result = next(calls)
        if isinstance(result, Exception):
            raise result
        return result

    retrying = RetryPolicy(wait=2.5, max_server_retries=1, max_rate_limit_retries=1).retrying(sleeps.append)
    assert retrying(flaky) == "ok"
    assert sleeps == [2.5, 2.5]


def test_policy_rate_limit_budget_is_separate_from_server_budget():
    sleeps: list[float] = []
    errors = [ProviderError(429), ProviderError(500), ProviderError(429), ProviderError(429, "still throttled")]

    def always_fails():
        raise errors.pop(0)

    retrying = RetryPolicy(wait=1.0, max_server_retries=1, max_rate_limit_retries=2).retrying(sleeps.append)
    with pytest.raises(ProviderError, match="still throttled"):
        retrying(always_fails)
    assert sleeps == [1.0, 1.0, 1.0]


# ------------------------------------------------------------------
# embed_batch
# ------------------------------------------------------------------


def test_embed_batch_empty_makes_no_call():
    client, _ = _client()
    with patch("grimoire.ingest.embedder.litellm.embedding") as mock_embed:
        assert client.embed_batch([]) == []
    mock_embed.assert_not_called()


def test_embed_batch_passes_model_settings():
    client, _ = _client(
        model="azure/emb", dimensions=3, api_base="https://example.openai.azure.com", api_version="2024-06-01"
    )
    with patch(
        "grimoire.ingest.embedder.litellm.embedding", return_value=_response({0: [1.0, 0.0, 0.0]})
    ) as mock_embed:
        client.embed_batch(["hello"])
    mock_embed.assert_called_once_with(
        model="azure/emb",
        input=["hello"],
        dimensions=3,
        api_base="https://example.openai.azure.com",
        api_version="2024-06-01",
    )


def test_embed_batch_omits_unset_endpoint_settings():
    client, _ = _client()
    with patch(
        "grimoire.ingest.embedder.litellm.embedding", return_value=_response({0: [0.5]})
    ) as mock_embed:
        client.embed_batch(["hello"])
    kwargs = mock_embed.call_args.kwargs
    assert "api_base" not in kwargs
    assert "api_version" not in kwargs


@pytest.mark.parametrize("order", list(itertools.permutations(range(4))))
def test_embed_batch_output_follows_input_order(order):
    texts = ["a", "b", "c", "d"]
    vectors = {i: [float(i)] for i in range(4)}
    client, _ = _client()
    with patch("grimoire.ingest.embedder.litellm.embedding", return_value=_response(vectors, list(order))):
        result = client.embed_batch(texts)
    assert result == [[0.0], [1.0], [2.0], [3.0]]


def test_embed_batch_accepts_attribute_style_items():
    item = MagicMock()
    item.index = 0
    item.embedding = [0.25, 0.75]
    response = MagicMock()
    response.data = [item]
    client, _ = _client()
    with patch("grimoire.ingest.embedder.litellm.embedding", return_value=response):
        assert client.embed_batch(["x"]) == [[0.25, 0.75]]


def test_rate_limit_retries_until_success():
    client, sleeps = _client(retry_wait=1.0, max_server_retries=3)
    failures = [ProviderError(429)] * 10
    with patch(
        "grimoire.ingest.embedder.litellm.embedding",
        side_effect=failures + [_response({0: [1.0]})],
    ) as mock_embed:
        assert client.embed_batch(["x"]) == [[1.0]]
    assert mock_embed.call_count == 11
    assert sleeps == [1.0] * 10


def test_server_error_retried_then_succeeds():
    client, sleeps = _client(retry_wait=0.5)
    with patch(
        "grimoire.ingest.embedder.litellm.embedding",
        side_effect=[ProviderError(502), ProviderError(500), _response({0: [1.0]})],
    ):
        assert client.embed_batch(["x"]) == [[1.0]]
    assert sleeps == [0.5, 0.5]


def test_server_error_propagates_after_max_retries():
    client, sleeps = _client(retry_wait=1.0, max_server_retries=3)
    with patch(
        "grimoire.ingest.embedder.litellm.embedding",
        side_effect=[ProviderError(500, "boom")] * 4,
    ) as mock_embed:
        with pytest.raises(ProviderError, match="boom"):
            client.embed_batch(["x"])
    assert mock_embed.call_count == 4
    assert sleeps == [1.0, 1.0, 1.0]


def test_client_error_propagates_immediately():
    client, sleeps = _client()
    with patch(
        "grimoire.ingest.embedder.litellm.embedding", side_effect=ProviderError(400, "bad request")
    ) as mock_embed:
        with pytest.raises(ProviderError):
            client.embed_batch(["x"])
    assert mock_embed.call_count == 1
    assert sleeps == []


def test_retry_is_logged_at_warning(caplog):
    client, _ = _client()
    with patch(
        "grimoire.ingest.embedder.litellm.embedding",
        side_effect=[ProviderError(429), _response({0: [1.0]})],
    ):
        with caplog.at_level("WARNING", logger="grimoire.ingest.embedder"):
            client.embed_batch(["x"])
    assert "rate limited" in caplog.text


# ------------------------------------------------------------------
# embed_texts
# ------------------------------------------------------------------


def _echo_embedding(**kwargs):
    return _response({i: [float(len(t))] for i, t in enumerate(kwargs["input"])})


def test_embed_texts_batches_and_delays_between_batches_only():
    client, sleeps = _client(batch_size=2, batch_delay=0.2)
    texts = ["a", "bb", "ccc", "dddd", "eeeee"]
    progress = []
    with patch("grimoire.ingest.embedder.litellm.embedding", side_effect=_echo_embedding) as mock_embed:
        result = client.embed_texts(texts, on_batch=lambda d, t: progress.append((d, t)))
    assert result == [[1.0], [2.0], [3.0], [4.0], [5.0]]
    assert mock_embed.call_count == 3
    assert [c.kwargs["input"] for c in mock_embed.call_args_list] == [["a", "bb"], ["ccc", "dddd"], ["eeeee"]]
    assert sleeps == [0.2, 0.2]
    assert progress == [(2, 5), (4, 5), (5, 5)]


def test_embed_texts_explicit_overrides():
    client, sleeps = _client()
    with patch("grimoire.ingest.embedder.litellm.embedding", side_effect=_echo_embedding) as mock_embed:
        client.embed_texts(["a", "b", "c"], batch_size=1, delay=0)
    assert mock_embed.call_count == 3
    assert sleeps == []


def test_embed_query():
    client, _ = _client()
    with patch("grimoire.ingest.embedder.litellm.embedding", return_value=_response({0: [0.1, 0.2]})):
        assert client.embed_query("flanking") == [0.1, 0.2]


# ------------------------------------------------------------------
# Async path
# ------------------------------------------------------------------


def test_aembed_query_uses_async_provider_call():
    client = EmbeddingClient(EmbeddingCfg(dimensions=2))
    mock = AsyncMock(return_value=_response({0: [0.3, 0.4]}))
    with patch("grimoire.ingest.embedder.litellm.aembedding", mock):
        assert asyncio.run(client.aembed_query("flanking")) == [0.3, 0.4]
    assert mock.await_args.kwargs["input"] == ["flanking"]


def test_aembed_batch_retries_rate_limit_with_async_sleep():
    waits: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        waits.append(seconds)

    client = EmbeddingClient(EmbeddingCfg(retry_wait=1.0), async_sleep=fake_sleep)
    mock = AsyncMock(side_effect=[ProviderError(429), _response({0: [1.0]})])
    with patch("grimoire.ingest.embedder.litellm.aembedding", mock):
        assert asyncio.run(client.aembed_batch(["x"])) == [[1.0]]
    assert waits == [1.0]


def test_aembed_batch_client_error_propagates():
    client = EmbeddingClient(EmbeddingCfg())
    mock = AsyncMock(side_effect=ProviderError(401, "Embedding API error"))
    with patch("grimoire.ingest.embedder.litellm.aembedding", mock):
        with pytest.raises(ProviderError, match="Embedding API error"):
            asyncio.run(client.aembed_batch(["x"]))


def test_aembed_batch_gives_up_on_sustained_rate_limiting():
    waits: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        waits.append(seconds)

    client = EmbeddingClient(
        EmbeddingCfg(retry_wait=1.0, query_rate_limit_retries=2), async_sleep=fake_sleep
    )
    mock = AsyncMock(side_effect=ProviderError(429, "Too Many Requests"))
    with patch("grimoire.ingest.embedder.litellm.aembedding", mock):
        with pytest.raises(ProviderError, match="Too Many Requests"):
            asyncio.run(client.aembed_batch(["x"]))
    assert mock.await_count == 3
    assert waits == [1.0, 1.0]


def test_sync_batches_keep_retrying_past_the_query_limit():
    client, sleeps = _client(retry_wait=1.0, query_rate_limit_retries=1)
    with patch(
        "grimoire.ingest.embedder.litellm.embedding",
        side_effect=[ProviderError(429)] * 5 + [_response({0: [1.0]})],
    ):
        assert client.embed_batch(["x"]) == [[1.0]]
    assert sleeps == [1.0] * 5
