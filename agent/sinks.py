"""Observer interfaces the agent reports progress to.

Sinks never influence control flow: the agent bounds each call by
``Config.SINK_TIMEOUT`` and only logs sink failures.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .state import AgentExecution, AgentStep


@runtime_checkable
class StatusSink(Protocol):
    """Receives live progress for display."""

    async def update(self, step: AgentStep, execution: AgentExecution) -> None:
        """Called once for every finalized step."""
        ...  # pragma: no cover

    async def summarize(self, execution: AgentExecution) -> None:
        """Called once when the execution reaches a terminal state."""
        ...  # pragma: no cover


@runtime_checkable
class TrajectorySink(Protocol):
    """Append-only record of an execution; the persisted format is its own."""

    async def record_step(self, step: AgentStep) -> None:
        ...  # pragma: no cover

    async def record_execution(self, execution: AgentExecution) -> None:
        ...  # pragma: no cover
