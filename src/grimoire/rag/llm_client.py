"""LiteLLM chat client: API key validation and the streaming completion model.

Every generation call in the chat pipeline routes through ``ChatModel``.
API key presence is validated by the CLI before the first provider call.
"""

from __future__ import annotations

import inspect
import logging
import os
from collections.abc import AsyncIterator, Sequence
from typing import Any

import litellm

from grimoire.config import GenerationCfg

logger = logging.getLogger(__name__)

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True


# ------------------------------------------------------------------
# Provider → env var mapping for API key validation
# ------------------------------------------------------------------

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "azure": "AZURE_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "cohere": "COHERE_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "ollama": None,  # Local, no key required
    "ollama_chat": None,
}


def validate_api_key(model: str) -> None:
    """Check that the required API key env var is set for *model*.

    Args:
        model: LiteLLM model string in 'provider/model' format.

    Raises:
        EnvironmentError: If the required key is missing from environment.
    """
    provider = model.split("/")[0].lower() if "/" in model else "openai"
    env_var = _PROVIDER_ENV.get(provider, "OPENAI_API_KEY")

    if env_var is None:
        return

    if not os.getenv(env_var):
        raise EnvironmentError(
            f"API key not found for provider '{provider}'. "
            f"Set the {env_var} environment variable."
        )


def _delta_content(chunk: Any) -> str | None:
    """Text carried by one streamed completion chunk, if any.

    Azure sends a leading chunk with no choices (content-filter results).
    """
    choices = getattr(chunk, "choices", None)
    if not choices:
        return None
    delta = getattr(choices[0], "delta", None)
    content = getattr(delta, "content", None)
    return content if isinstance(content, str) else None


class ChatModel:
    """Streaming chat completions through ``litellm.acompletion``.

    Holds configuration only; each ``stream`` call owns its provider stream.
    """

    def __init__(self, config: GenerationCfg | None = None) -> None:
        self.config = config or GenerationCfg()

    def _request_kwargs(self, messages: Sequence[dict[str, str]]) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self.config.model,
            "messages": list(messages),
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
            "stream": True,
        }
        if self.config.api_base:
            kwargs["api_base"] = self.config.api_base
        if self.config.api_version:
            kwargs["api_version"] = self.config.api_version
        return kwargs

    async def stream(self, messages: Sequence[dict[str, str]]) -> AsyncIterator[str]:
        """Yield answer fragments in arrival order.

        The provider stream is closed on every exit path, including when the
        consumer stops iterating early.
        """
        response = await litellm.acompletion(**self._request_kwargs(messages))
        try:
            async for chunk in response:
                content = _delta_content(chunk)
                if content:
                    yield content
        finally:
            aclose = getattr(response, "aclose", None)
            if aclose is not None:
                result = aclose()
                if inspect.isawaitable(result):
                    await result
            logger.debug("Closed completion stream for %s", self.config.model)
