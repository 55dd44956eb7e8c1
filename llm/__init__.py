"""LLM abstraction layer for multiple providers."""

from errors import LLMUnsupportedModelError

from .base import BaseLLM
from .litellm_adapter import LITELLM_PREFIXES, LiteLLMAdapter
from .message_types import LLMMessage, LLMResponse, StopReason, TokenUsage, ToolCall, ToolResult
from .model_manager import ModelManager, ModelProfile


def create_llm(profile: ModelProfile) -> BaseLLM:
    """Factory function to create the LLM client for a provider profile.

    Args:
        profile: Resolved provider profile; ``profile.provider`` selects the client

    Returns:
        BaseLLM instance

    Raises:
        LLMUnsupportedModelError: If the provider is unknown
    """
    provider = profile.provider.lower()
    if provider not in LITELLM_PREFIXES:
        raise LLMUnsupportedModelError(
            f"Unknown LLM provider: {provider}. "
            f"Supported providers: {', '.join(sorted(LITELLM_PREFIXES))}"
        )
    return LiteLLMAdapter(profile)


__all__ = [
    "BaseLLM",
    "LLMMessage",
    "LLMResponse",
    "StopReason",
    "TokenUsage",
    "ToolCall",
    "ToolResult",
    "LiteLLMAdapter",
    "ModelManager",
    "ModelProfile",
    "create_llm",
]
