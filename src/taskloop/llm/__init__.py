"""LLM abstraction layer — the thinking capability, unified via litellm."""

from taskloop.llm.message import Message, TokenUsage
from taskloop.llm.provider import (
    LiteLLMProvider,
    ProviderConfig,
    ThinkResult,
    create_provider,
)

__all__ = [
    "LiteLLMProvider",
    "Message",
    "ProviderConfig",
    "ThinkResult",
    "TokenUsage",
    "create_provider",
]
