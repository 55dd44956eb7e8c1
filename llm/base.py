"""Base LLM interface for supporting multiple LLM providers."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from .message_types import LLMMessage, LLMResponse


class BaseLLM(ABC):
    """Abstract base class for LLM clients.

    The agent loop only ever talks to this interface; provider selection happens
    in ``llm.create_llm``.
    """

    @abstractmethod
    async def chat(
        self,
        messages: List[LLMMessage],
        tools: Optional[List[Dict[str, Any]]] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> LLMResponse:
        """Send the conversation and return the model's reply.

        Args:
            messages: Conversation so far
            tools: Optional list of tool schemas (OpenAI function format)
            temperature: Sampling temperature, provider default if None
            max_tokens: Completion token limit, provider default if None

        Returns:
            LLMResponse with content, tool calls, finish reason and usage

        Raises:
            LLMError: subclasses for network, rate limit, invalid response and
                unsupported model failures
        """

    @abstractmethod
    def count_tokens(self, messages: List[LLMMessage]) -> int:
        """Estimate the prompt size of *messages* in tokens."""

    @property
    def provider_name(self) -> str:
        """Name of the LLM provider."""
        return self.__class__.__name__.replace("LLM", "")
