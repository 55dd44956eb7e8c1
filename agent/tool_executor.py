"""Tool execution engine: runs the tool calls of one step."""

import asyncio
from typing import List, Optional, cast

from config import Config
from errors import ToolInvalidArgumentsError
from llm.message_types import ToolCall, ToolResult
from utils import get_logger

from .tool_registry import ToolRegistry

logger = get_logger(__name__)

TOOL_NOT_FOUND = "tool not found"


class ToolExecutor:
    """Executes tool calls requested by the LLM.

    Every call yields exactly one ToolResult carrying the call's id; a failing
    tool never raises out of the executor.
    """

    def __init__(self, registry: ToolRegistry, timeout: Optional[float] = None):
        self.registry = registry
        self.timeout = Config.TOOL_TIMEOUT if timeout is None else timeout

    async def execute_tool_call(self, tool_call: ToolCall) -> ToolResult:
        """Execute a single tool call and return its result."""
        tool = self.registry.get(tool_call.name)
        if tool is None:
            logger.warning(f"Tool '{tool_call.name}' not found (call {tool_call.id})")
            return ToolResult(
                tool_call_id=tool_call.id,
                content=f"Tool '{tool_call.name}' not found",
                name=tool_call.name,
                error=TOOL_NOT_FOUND,
            )

        deadline = asyncio.timeout(self.timeout if self.timeout and self.timeout > 0 else None)
        try:
            async with deadline:
                content = await tool.invoke(tool_call.arguments)
        except TimeoutError as e:
            if deadline.expired():
                error = f"timed out after {self.timeout}s"
            else:
                error = f"execution failed: {e}"
        except ToolInvalidArgumentsError as e:
            error = f"invalid arguments: {e}"
        except Exception as e:
            error = f"execution failed: {e}"
        else:
            return ToolResult(tool_call_id=tool_call.id, content=content, name=tool_call.name)

        logger.debug(f"Tool {tool_call.name} ({tool_call.id}) failed: {error}")
        return ToolResult(
            tool_call_id=tool_call.id,
            content=f"Error executing {tool_call.name}: {error}",
            name=tool_call.name,
            error=error,
        )

    async def execute_sequential(self, tool_calls: List[ToolCall]) -> List[ToolResult]:
        """Execute tool calls one at a time, in request order."""
        results: List[ToolResult] = []
        for tc in tool_calls:
            result = await self.execute_tool_call(tc)
            logger.debug(
                f"Tool result: {result.content[:200]}{'...' if len(result.content) > 200 else ''}"
            )
            results.append(result)
        return results

    async def execute_parallel(self, tool_calls: List[ToolCall]) -> List[ToolResult]:
        """Execute tool calls concurrently; results keep request order."""
        results: List[Optional[ToolResult]] = [None] * len(tool_calls)

        async def _run(index: int, tc: ToolCall) -> None:
            results[index] = await self.execute_tool_call(tc)

        async with asyncio.TaskGroup() as tg:
            for i, tc in enumerate(tool_calls):
                tg.create_task(_run(i, tc))

        # TaskGroup has awaited every task, so each slot is filled
        return cast(List[ToolResult], results)

    async def execute(self, tool_calls: List[ToolCall], parallel: bool = False) -> List[ToolResult]:
        """Dispatch one step's calls; concurrency only pays off for more than one."""
        if parallel and len(tool_calls) > 1:
            logger.debug(f"Executing {len(tool_calls)} tools in parallel")
            return await self.execute_parallel(tool_calls)
        return await self.execute_sequential(tool_calls)
