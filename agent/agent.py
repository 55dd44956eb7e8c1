"""Loop agent implementation."""

import asyncio
from typing import List, Optional, Union

from errors import FailureDiagnostics, MaxIterationsReachedError, attach_diagnostics
from llm import LLMMessage, LLMResponse, ToolResult
from utils import get_logger

from .base import BaseAgent
from .reflection import ErrorContext, ErrorReflection
from .state import (
    AgentConfig,
    AgentExecution,
    AgentState,
    AgentStep,
    AgentTask,
    ExecutionStatus,
)

logger = get_logger(__name__)


class LoopAgent(BaseAgent):
    """Primary agent implementation: think, call tools, recover, repeat."""

    SYSTEM_PROMPT = """<role>
You are a helpful AI assistant that uses tools to accomplish tasks efficiently and reliably.
</role>

<workflow>
For each request, follow this pattern:
1. THINK: Analyze what's needed, choose the best tools
2. ACT: Execute with appropriate tools
3. OBSERVE: Check results and learn from them
4. REPEAT or COMPLETE: Continue the loop or finish

When a tool fails, read its error and adjust your approach instead of repeating the same call.
</workflow>

<completion>
When the task is finished, reply without calling tools and say "task completed",
followed by the final answer.
</completion>"""

    COMPLETION_INDICATORS = (
        "task complete",
        "task completed",
        "done",
        "finished",
        "completed successfully",
        "task finished",
        "work complete",
        "work completed",
    )

    CONTINUE_PROMPT = "Please continue with the task or provide more details about your progress."

    last_execution: Optional[AgentExecution] = None
    last_transcript: Optional[List[LLMMessage]] = None

    async def run(self, task: Union[str, AgentTask]) -> str:
        """Drive a task to completion.

        Args:
            task: Instruction text, or an AgentTask carrying its own configuration

        Returns:
            Final answer text of the completing LLM response

        Raises:
            MaxIterationsReachedError: Step budget exhausted before completion
            CriticalReflectionError: Reflection depth exhausted
            Exception: Any error the reflector did not retry, unchanged
        """
        if isinstance(task, str):
            task = AgentTask(instruction=task, config=self.config)
        max_steps = task.config.max_steps

        execution = AgentExecution(task=task.instruction, max_steps=max_steps)
        transcript: List[LLMMessage] = [
            LLMMessage(role="system", content=self.SYSTEM_PROMPT),
            LLMMessage(role="user", content=task.instruction),
        ]
        self.last_execution = execution
        self.last_transcript = transcript
        logger.info(f"Starting task (max {max_steps} steps): {task.instruction[:200]}")

        try:
            result = await self._run_loop(execution, transcript, task.config)
        except asyncio.CancelledError:
            execution.finish(ExecutionStatus.CANCELLED)
            self.state = AgentState.ERROR
            logger.info(f"Task cancelled at step {execution.current_step}")
            raise
        except Exception as e:
            status = (
                ExecutionStatus.MAX_STEPS_REACHED
                if isinstance(e, MaxIterationsReachedError)
                else ExecutionStatus.ERROR
            )
            execution.finish(status)
            self.state = AgentState.ERROR
            attach_diagnostics(e, self._diagnostics(execution))
            logger.error(f"Task failed with {type(e).__name__}: {e}")
            await self._notify_finished(execution)
            raise

        execution.finish(ExecutionStatus.COMPLETED, final_result=result)
        logger.info(
            f"Task completed in {execution.current_step} steps, {execution.elapsed:.1f}s, "
            f"{execution.usage.total_tokens} tokens"
        )
        await self._notify_finished(execution)
        return result

    async def _run_loop(
        self, execution: AgentExecution, transcript: List[LLMMessage], config: AgentConfig
    ) -> str:
        while execution.current_step < execution.max_steps:
            execution.current_step += 1
            step_number = execution.current_step
            logger.debug(f"Step {step_number}/{execution.max_steps}")

            self.state = AgentState.THINKING
            try:
                response = await self._call_llm(transcript, config)
            except Exception as e:
                await self._recover(e, execution, transcript, config)
                continue

            if response.usage:
                execution.usage = execution.usage + response.usage
            transcript.append(response.to_message())

            if response.tool_calls:
                await self._handle_tool_calls(response, execution, transcript, config)
                continue

            if self._is_complete(response.content):
                self.state = AgentState.COMPLETED
                await self._finalize_step(
                    self._response_step(step_number, AgentState.COMPLETED, response), execution
                )
                return response.content

            transcript.append(LLMMessage(role="user", content=self.CONTINUE_PROMPT))
            await self._finalize_step(
                self._response_step(step_number, AgentState.THINKING, response), execution
            )

        logger.warning(f"Maximum steps ({execution.max_steps}) reached without completion")
        raise MaxIterationsReachedError(execution.max_steps)

    async def _handle_tool_calls(
        self,
        response: LLMResponse,
        execution: AgentExecution,
        transcript: List[LLMMessage],
        config: AgentConfig,
    ) -> None:
        self.state = AgentState.CALLING_TOOL
        results = await self._execute_tools(response.tool_calls, config)
        for result in results:
            transcript.append(
                LLMMessage(
                    role="tool",
                    content=result.content,
                    tool_call_id=result.tool_call_id,
                    name=result.name,
                )
            )

        reflection = self._tool_failure_reflection(results)
        state = AgentState.CALLING_TOOL
        if reflection is not None:
            self.state = state = AgentState.REFLECTING
            transcript.append(LLMMessage(role="assistant", content=reflection))

        step = AgentStep(
            step_number=execution.current_step,
            state=state,
            thought=response.content or None,
            tool_calls=list(response.tool_calls),
            tool_results=results,
            llm_response=response,
            reflection=reflection,
            llm_usage=response.usage,
        )
        await self._finalize_step(step, execution)

    async def _recover(
        self,
        error: Exception,
        execution: AgentExecution,
        transcript: List[LLMMessage],
        config: AgentConfig,
    ) -> None:
        """Reflect on a failed step; append the recovery message or raise."""
        self.state = AgentState.ERROR
        logger.warning(f"Step {execution.current_step} failed: {type(error).__name__}: {error}")
        execution.errors.append(error)

        context = ErrorContext(
            task=execution.task,
            current_step=execution.current_step,
            last_tool_used=self._last_tool_used(execution),
            elapsed=execution.elapsed,
            previous_errors=tuple(execution.errors),
        )
        try:
            reflection: Optional[ErrorReflection] = await self.reflector.reflect(
                error, context, max_depth=config.max_reflection_depth
            )
        except Exception:
            logger.warning("Error reflection failed, giving up on recovery", exc_info=True)
            reflection = None

        extra = None
        if reflection is not None:
            execution.reflections.append(reflection)
            extra = {
                "category": reflection.category.value,
                "failure_kind": reflection.failure_kind.value,
                "should_retry": str(reflection.should_retry).lower(),
            }
        step = AgentStep(
            step_number=execution.current_step,
            state=AgentState.ERROR,
            reflection=reflection.suggestion if reflection is not None else None,
            error=f"{type(error).__name__}: {error}",
            extra=extra,
        )
        await self._finalize_step(step, execution)

        if reflection is None:
            raise error

        message = await self.coordinator.recover(
            error, reflection, execution.current_step, execution.max_steps
        )
        transcript.append(message)
        self.state = AgentState.THINKING

    def _is_complete(self, content: str) -> bool:
        text = (content or "").lower()
        return any(indicator in text for indicator in self.COMPLETION_INDICATORS)

    @staticmethod
    def _tool_failure_reflection(results: List[ToolResult]) -> Optional[str]:
        failed = [r for r in results if not r.success]
        if not failed:
            return None
        issues = ", ".join(f"Tool {r.tool_call_id}: {r.error}" for r in failed)
        return (
            f"I encountered issues with some tools: {issues}. "
            "Let me analyze the results and adjust my approach."
        )

    @staticmethod
    def _response_step(step_number: int, state: AgentState, response: LLMResponse) -> AgentStep:
        return AgentStep(
            step_number=step_number,
            state=state,
            thought=response.content or None,
            llm_response=response,
            llm_usage=response.usage,
        )

    @staticmethod
    def _last_tool_used(execution: AgentExecution) -> Optional[str]:
        for step in reversed(execution.steps):
            if step.tool_calls:
                return step.tool_calls[0].name
        return None

    @staticmethod
    def _diagnostics(execution: AgentExecution) -> FailureDiagnostics:
        root_cause = None
        if execution.reflections:
            last = execution.reflections[-1]
            root_cause = last.root_cause or last.suggestion
        return FailureDiagnostics(
            step=execution.current_step, elapsed=execution.elapsed, root_cause=root_cause
        )
