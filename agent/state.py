"""Task, step and execution records for the agent loop."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from llm.message_types import LLMResponse, TokenUsage, ToolCall, ToolResult
from llm.model_manager import ModelManager, ModelProfile

if TYPE_CHECKING:
    from .reflection import ErrorReflection


class AgentState(str, Enum):
    IDLE = "idle"
    THINKING = "thinking"
    CALLING_TOOL = "calling_tool"
    REFLECTING = "reflecting"
    COMPLETED = "completed"
    ERROR = "error"


class ExecutionStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"
    MAX_STEPS_REACHED = "max_steps_reached"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class AgentConfig:
    """Everything the loop needs besides the task, tools and LLM client.

    Attributes:
        profile: Provider parameters (temperature, max tokens, parallel tool calls)
        max_steps: Hard cap on loop iterations
        max_reflection_depth: Maximum error reflections per execution
    """

    profile: ModelProfile
    max_steps: int = 20
    max_reflection_depth: int = 3

    @classmethod
    def from_config(
        cls,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        manager: Optional[ModelManager] = None,
        max_steps: Optional[int] = None,
    ) -> "AgentConfig":
        """Resolve Config and models.yaml into an AgentConfig."""
        from config import Config

        manager = manager or ModelManager()
        return cls(
            profile=manager.get_profile(provider, model=model),
            max_steps=max_steps if max_steps is not None else Config.MAX_STEPS,
            max_reflection_depth=Config.MAX_REFLECTION_DEPTH,
        )


@dataclass(frozen=True)
class AgentTask:
    instruction: str
    config: AgentConfig


@dataclass(frozen=True)
class AgentStep:
    """One finalized loop iteration."""

    step_number: int
    state: AgentState
    thought: Optional[str] = None
    tool_calls: Optional[List[ToolCall]] = None
    tool_results: Optional[List[ToolResult]] = None
    llm_response: Optional[LLMResponse] = None
    reflection: Optional[str] = None
    error: Optional[str] = None
    extra: Optional[Dict[str, str]] = None
    llm_usage: Optional[TokenUsage] = None

    def __post_init__(self):
        if (
            self.tool_calls is not None
            and self.tool_results is not None
            and len(self.tool_calls) != len(self.tool_results)
        ):
            raise ValueError(
                f"Step {self.step_number}: {len(self.tool_calls)} tool calls "
                f"but {len(self.tool_results)} results"
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step_number": self.step_number,
            "state": self.state.value,
            "thought": self.thought,
            "tool_calls": [tc.to_block() for tc in self.tool_calls or []],
            "tool_results": [
                {"tool_call_id": r.tool_call_id, "content": r.content, "error": r.error}
                for r in self.tool_results or []
            ],
            "llm_response": self.llm_response.content if self.llm_response else None,
            "reflection": self.reflection,
            "error": self.error,
            "extra": self.extra,
            "llm_usage": self.llm_usage.to_dict() if self.llm_usage else None,
        }


@dataclass
class AgentExecution:
    """Aggregate state of one task run; owned and mutated only by the agent."""

    task: str
    max_steps: int
    status: ExecutionStatus = ExecutionStatus.RUNNING
    steps: List[AgentStep] = field(default_factory=list)
    current_step: int = 0
    usage: TokenUsage = field(default_factory=TokenUsage)
    final_result: Optional[str] = None
    errors: List[BaseException] = field(default_factory=list)
    reflections: List["ErrorReflection"] = field(default_factory=list)
    start_time: datetime = field(default_factory=datetime.now)
    _started: float = field(default_factory=time.monotonic, init=False, repr=False)
    _finished: Optional[float] = field(default=None, init=False, repr=False)

    @property
    def elapsed(self) -> float:
        end = self._finished if self._finished is not None else time.monotonic()
        return end - self._started

    @property
    def success(self) -> bool:
        return self.status == ExecutionStatus.COMPLETED

    @property
    def is_finished(self) -> bool:
        return self._finished is not None

    def record_step(self, step: AgentStep) -> None:
        """Append a finalized step; step numbers must continue the sequence."""
        expected = len(self.steps) + 1
        if step.step_number != expected:
            raise ValueError(f"Expected step {expected}, got step {step.step_number}")
        self.steps.append(step)

    def finish(self, status: ExecutionStatus, final_result: Optional[str] = None) -> None:
        self.status = status
        if final_result is not None:
            self.final_result = final_result
        self._finished = time.monotonic()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task": self.task,
            "status": self.status.value,
            "success": self.success,
            "final_result": self.final_result,
            "current_step": self.current_step,
            "max_steps": self.max_steps,
            "start_time": self.start_time.isoformat(),
            "execution_time": round(self.elapsed, 3),
            "token_usage": self.usage.to_dict(),
            "errors": [str(e) for e in self.errors],
        }
