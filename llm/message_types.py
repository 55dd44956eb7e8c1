"""Provider-neutral message, tool-call and response types."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, TypedDict


class FunctionBlock(TypedDict):
    name: str
    arguments: str


class ToolCallBlock(TypedDict):
    """Tool call in OpenAI wire format."""

    id: str
    type: str
    function: FunctionBlock


class StopReason:
    """Normalized finish reasons (OpenAI vocabulary)."""

    STOP = "stop"
    TOOL_CALLS = "tool_calls"
    LENGTH = "length"

    _ALIASES = {
        "end_turn": STOP,
        "stop_sequence": STOP,
        "tool_use": TOOL_CALLS,
        "function_call": TOOL_CALLS,
        "max_tokens": LENGTH,
    }

    @classmethod
    def normalize(cls, reason: Optional[str]) -> str:
        if not reason:
            return cls.STOP
        return cls._ALIASES.get(reason, reason)


@dataclass(frozen=True)
class ToolCall:
    """A tool invocation requested by the model.

    ``arguments`` is the raw JSON string produced by the model; tools decode it.
    """

    id: str
    name: str
    arguments: str = "{}"

    def to_block(self) -> ToolCallBlock:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


@dataclass(frozen=True)
class ToolResult:
    """Outcome of one tool call; ``error`` is None on success."""

    tool_call_id: str
    content: str
    name: Optional[str] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
        )

    def to_dict(self) -> Dict[str, int]:
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass
class LLMMessage:
    """Unified message format across all LLM providers."""

    role: str  # "system", "user", "assistant", "tool"
    content: Optional[str] = None
    tool_calls: Optional[List[ToolCall]] = None
    tool_call_id: Optional[str] = None
    name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the OpenAI-compatible dict LiteLLM expects."""
        data: Dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            data["tool_calls"] = [tc.to_block() for tc in self.tool_calls]
        if self.tool_call_id:
            data["tool_call_id"] = self.tool_call_id
        if self.name:
            data["name"] = self.name
        return data


@dataclass
class LLMResponse:
    """Unified response format across all LLM providers."""

    content: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)
    finish_reason: str = StopReason.STOP
    usage: Optional[TokenUsage] = None
    model: Optional[str] = None

    def to_message(self) -> LLMMessage:
        return LLMMessage(
            role="assistant",
            content=self.content,
            tool_calls=list(self.tool_calls) or None,
        )
