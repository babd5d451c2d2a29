"""Thinking capability backed by litellm.

litellm handles provider detection from the model string prefix
(e.g. "anthropic/claude-...", "gemini/gemini-...", "openai/gpt-...") and
reads API keys from environment variables. Transient network errors are
retried here with tenacity; anything that escapes ``think`` is final.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from taskloop.llm.message import Message, TokenUsage

if TYPE_CHECKING:
    from litellm import ModelResponse

logger = logging.getLogger(__name__)


@dataclass
class ThinkResult:
    """Raw model text plus usage for one thinking call."""

    raw_text: str
    usage: TokenUsage = field(default_factory=TokenUsage)


@dataclass
class ProviderConfig:
    """Configuration for an LLM provider."""

    model: str
    temperature: float | None = None
    max_tokens: int | None = None
    reasoning_effort: str | None = None  # "low", "medium", or "high"
    json_mode: bool = True


@dataclass
class LiteLLMProvider:
    """Concrete thinking capability using ``litellm.acompletion``."""

    _config: ProviderConfig

    @property
    def config(self) -> ProviderConfig:
        return self._config

    async def think(self, messages: Sequence[Message], **options: Any) -> ThinkResult:
        """Send ``messages`` and return the assistant text.

        ``options`` override request kwargs (``temperature``, ``max_tokens``...).
        """
        import litellm

        kwargs: dict[str, Any] = {
            "model": self._config.model,
            "messages": [m.to_openai_dict() for m in messages],
        }
        if self._config.temperature is not None:
            kwargs["temperature"] = self._config.temperature
        if self._config.max_tokens is not None:
            kwargs["max_tokens"] = self._config.max_tokens
        if self._config.json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        if self._config.reasoning_effort:
            # Global side-effect on litellm's module state.
            litellm.modify_params = True
            kwargs["reasoning_effort"] = self._config.reasoning_effort
        kwargs.update(options)

        logger.debug(
            "think: model=%s messages=%d", self._config.model, len(kwargs["messages"])
        )
        response = await _acompletion_with_retry(**kwargs)
        return _to_think_result(response)


@retry(
    retry=retry_if_exception_type((ConnectionError, TimeoutError, OSError)),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=30),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)
async def _acompletion_with_retry(**kwargs: Any) -> ModelResponse:
    """Call litellm.acompletion with retry on transient errors."""
    import litellm

    return await litellm.acompletion(**kwargs)


def _to_think_result(response: Any) -> ThinkResult:
    choices = getattr(response, "choices", None) or []
    text = ""
    if choices:
        message = getattr(choices[0], "message", None)
        text = getattr(message, "content", None) or ""
    return ThinkResult(
        raw_text=text,
        usage=TokenUsage.from_response(getattr(response, "usage", None)),
    )


def create_provider(
    model: str,
    temperature: float | None = None,
    max_tokens: int | None = None,
    reasoning_effort: str | None = None,
    json_mode: bool = True,
) -> LiteLLMProvider:
    """Create a LiteLLM provider.

    Args:
        model: Model name with provider prefix (e.g. "openai/gpt-4o-mini").
        temperature: Sampling temperature.
        max_tokens: Max output tokens.
        reasoning_effort: Reasoning effort level ("low", "medium", "high").
        json_mode: Ask the provider for a JSON object response.
    """
    config = ProviderConfig(
        model=model,
        temperature=temperature,
        max_tokens=max_tokens,
        reasoning_effort=reasoning_effort,
        json_mode=json_mode,
    )
    return LiteLLMProvider(_config=config)
