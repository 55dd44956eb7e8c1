"""Base agent class: collaborators and helpers shared by agent loops."""

import asyncio
from abc import ABC, abstractmethod
from typing import Awaitable, List, Optional, Sequence

from config import Config
from llm import BaseLLM, LLMMessage, LLMResponse, ToolCall, ToolResult
from tools.base import BaseTool
from utils import get_logger

from .reflection import ErrorReflector
from .retry_coordinator import RetryCoordinator
from .sinks import StatusSink, TrajectorySink
from .state import AgentConfig, AgentExecution, AgentState, AgentStep
from .tool_executor import ToolExecutor
from .tool_registry import ToolRegistry

logger = get_logger(__name__)


class BaseAgent(ABC):
    """Abstract base class for agent loops."""

    def __init__(
        self,
        llm: BaseLLM,
        tools: Sequence[BaseTool],
        config: AgentConfig,
        status_sink: Optional[StatusSink] = None,
        trajectory_sink: Optional[TrajectorySink] = None,
        reflector: Optional[ErrorReflector] = None,
        coordinator: Optional[RetryCoordinator] = None,
        sink_timeout: Optional[float] = None,
    ):
        """Initialize the agent.

        Args:
            llm: LLM client every step talks to
            tools: Tools available to the agent; names must be unique
            config: Provider profile and loop limits
            status_sink: Optional live progress display
            trajectory_sink: Optional execution recorder
            reflector: Error reflector, built from ``llm`` and ``config`` if omitted
            coordinator: Retry coordinator, default one if omitted
            sink_timeout: Seconds allowed per sink call (default: Config.SINK_TIMEOUT)
        """
        self.llm = llm
        self.config = config
        self.registry = ToolRegistry(tools)
        self.tool_executor = ToolExecutor(self.registry)
        self.reflector = reflector or ErrorReflector(
            llm, max_reflection_depth=config.max_reflection_depth
        )
        self.coordinator = coordinator or RetryCoordinator()
        self.status_sink = status_sink
        self.trajectory_sink = trajectory_sink
        self.sink_timeout = Config.SINK_TIMEOUT if sink_timeout is None else sink_timeout

        self.state = AgentState.IDLE

    @abstractmethod
    async def run(self, task) -> str:
        """Execute the agent on a task and return final answer."""
        pass

    async def _call_llm(
        self, messages: List[LLMMessage], config: Optional[AgentConfig] = None
    ) -> LLMResponse:
        """Call the LLM with the run profile's parameters and all tool schemas."""
        profile = (config or self.config).profile
        logger.debug(f"Calling LLM with {len(messages)} messages")
        response = await self.llm.chat(
            messages=list(messages),
            tools=self.registry.get_tool_schemas() or None,
            temperature=profile.temperature,
            max_tokens=profile.max_tokens,
        )
        logger.debug(
            f"LLM replied: finish_reason={response.finish_reason}, "
            f"tool_calls={len(response.tool_calls)}"
        )
        return response

    async def _execute_tools(
        self, tool_calls: List[ToolCall], config: Optional[AgentConfig] = None
    ) -> List[ToolResult]:
        """Run one step's tool calls, concurrently when the profile allows it."""
        profile = (config or self.config).profile
        parallel = profile.parallel_tool_calls and len(tool_calls) > 1
        return await self.tool_executor.execute(tool_calls, parallel=parallel)

    async def _finalize_step(self, step: AgentStep, execution: AgentExecution) -> None:
        """Record a finished step and report it to the sinks."""
        execution.record_step(step)
        if self.status_sink is not None:
            await self._call_sink("status update", self.status_sink.update(step, execution))
        if self.trajectory_sink is not None:
            await self._call_sink("trajectory step", self.trajectory_sink.record_step(step))

    async def _notify_finished(self, execution: AgentExecution) -> None:
        if self.status_sink is not None:
            await self._call_sink("status summary", self.status_sink.summarize(execution))
        if self.trajectory_sink is not None:
            await self._call_sink(
                "trajectory execution", self.trajectory_sink.record_execution(execution)
            )

    async def _call_sink(self, label: str, call: Awaitable[None]) -> None:
        try:
            await asyncio.wait_for(call, timeout=self.sink_timeout)
        except TimeoutError:
            logger.warning(f"Sink call '{label}' timed out after {self.sink_timeout}s")
        except Exception:
            logger.warning(f"Sink call '{label}' failed", exc_info=True)
