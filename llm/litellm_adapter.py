"""LiteLLM adapter: one BaseLLM implementation for every configured provider."""

import json
import logging
from typing import Any, Dict, List, Optional

import litellm

from errors import (
    LLMInvalidResponseError,
    LLMNetworkError,
    LLMRateLimitError,
    LLMUnsupportedModelError,
)
from utils import get_logger

from .base import BaseLLM
from .message_types import LLMMessage, LLMResponse, StopReason, TokenUsage, ToolCall
from .model_manager import ModelProfile
from .retry import RetryConfig, with_retry

logger = get_logger(__name__)

# Suppress LiteLLM's verbose logging to console
litellm_logger = logging.getLogger("LiteLLM")
litellm_logger.setLevel(logging.WARNING)
litellm_logger.propagate = False

# Provider name -> LiteLLM model prefix
LITELLM_PREFIXES = {
    "openai": "openai",
    "anthropic": "anthropic",
    "azure": "azure",
    "google": "gemini",
    "ollama": "ollama",
    "openrouter": "openrouter",
    "doubao": "volcengine",
}

_NETWORK_ERRORS = (
    litellm.APIConnectionError,
    litellm.Timeout,
    litellm.ServiceUnavailableError,
    litellm.InternalServerError,
)


class LiteLLMAdapter(BaseLLM):
    """LiteLLM adapter supporting every provider in ``LITELLM_PREFIXES``."""

    def __init__(self, profile: ModelProfile):
        """Initialize LiteLLM adapter.

        Args:
            profile: Resolved provider profile

        Raises:
            LLMUnsupportedModelError: If the provider has no LiteLLM mapping
        """
        prefix = LITELLM_PREFIXES.get(profile.provider)
        if prefix is None:
            raise LLMUnsupportedModelError(f"Unsupported provider: {profile.provider}")

        self.profile = profile
        self.model = f"{prefix}/{profile.model}"
        self.retry_config = RetryConfig.from_profile(profile)

        litellm.drop_params = True
        litellm.suppress_debug_info = True

        # Also suppress httpx and openai loggers that LiteLLM uses
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("openai").setLevel(logging.WARNING)

        logger.info(f"Initialized LiteLLM adapter for provider: {profile.provider}, model: {self.model}")

    @property
    def provider_name(self) -> str:
        return self.profile.provider

    @with_retry()
    async def _make_api_call_async(self, **call_params):
        """Internal async API call with retry logic."""
        return await litellm.acompletion(**call_params)

    def _build_call_params(
        self,
        messages: List[LLMMessage],
        tools: Optional[List[Dict[str, Any]]],
        temperature: Optional[float],
        max_tokens: Optional[int],
    ) -> Dict[str, Any]:
        call_params: Dict[str, Any] = {
            "model": self.model,
            "messages": [msg.to_dict() for msg in messages],
            "max_tokens": max_tokens if max_tokens is not None else self.profile.max_tokens,
            "temperature": temperature if temperature is not None else self.profile.temperature,
            "timeout": self.profile.timeout,
        }
        if self.profile.api_key:
            call_params["api_key"] = self.profile.api_key
        if self.profile.api_base:
            call_params["api_base"] = self.profile.api_base
        if self.profile.api_version:
            call_params["api_version"] = self.profile.api_version
        if tools:
            call_params["tools"] = tools
            call_params["parallel_tool_calls"] = self.profile.parallel_tool_calls
        return call_params

    async def chat(
        self,
        messages: List[LLMMessage],
        tools: Optional[List[Dict[str, Any]]] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> LLMResponse:
        """Async LLM call via LiteLLM with automatic transport retry."""
        call_params = self._build_call_params(messages, tools, temperature, max_tokens)

        logger.debug(
            f"Calling LiteLLM with model: {self.model}, messages: {len(messages)}, "
            f"tools: {len(tools) if tools else 0}"
        )
        try:
            response = await self._make_api_call_async(**call_params)
        except litellm.RateLimitError as e:
            raise LLMRateLimitError(str(e)) from e
        except _NETWORK_ERRORS as e:
            raise LLMNetworkError(str(e)) from e
        except litellm.NotFoundError as e:
            raise LLMUnsupportedModelError(str(e)) from e

        return self._convert_response(response)

    def _convert_response(self, response) -> LLMResponse:
        """Convert a LiteLLM response to LLMResponse."""
        choices = getattr(response, "choices", None)
        if not choices:
            raise LLMInvalidResponseError("LLM response contained no choices")

        message = choices[0].message
        finish_reason = StopReason.normalize(choices[0].finish_reason)

        content = message.content if isinstance(message.content, str) else ""

        tool_calls = []
        for tc in getattr(message, "tool_calls", None) or []:
            arguments = tc.function.arguments
            if not isinstance(arguments, str):
                arguments = json.dumps(arguments)
            tool_calls.append(ToolCall(id=tc.id, name=tc.function.name, arguments=arguments or "{}"))

        usage = None
        if getattr(response, "usage", None):
            usage = TokenUsage(
                input_tokens=response.usage.get("prompt_tokens", 0) or 0,
                output_tokens=response.usage.get("completion_tokens", 0) or 0,
            )
            logger.debug(f"Token Usage: Input={usage.input_tokens}, Output={usage.output_tokens}")

        return LLMResponse(
            content=content or "",
            tool_calls=tool_calls,
            finish_reason=finish_reason,
            usage=usage,
            model=getattr(response, "model", None),
        )

    def count_tokens(self, messages: List[LLMMessage]) -> int:
        """Count prompt tokens with litellm.token_counter, chars/4 as fallback."""
        msg_dicts = [msg.to_dict() for msg in messages]
        try:
            return litellm.token_counter(model=self.model, messages=msg_dicts)
        except Exception as e:
            logger.debug(f"litellm.token_counter failed ({e}), using fallback")
            text = "".join(str(m.get("content") or "") for m in msg_dicts)
            return max(1, len(text) // 4)
