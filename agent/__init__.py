"""Agent module for taskloop.

This module provides the agent loop and its collaborators:

- LoopAgent: think / call tools / recover loop under a step budget
- ToolRegistry, ToolExecutor: tool lookup and sequential or concurrent dispatch
- ErrorReflector, RetryCoordinator: two-tier failure analysis and retry
"""

from .agent import LoopAgent
from .base import BaseAgent
from .reflection import (
    ErrorCategory,
    ErrorContext,
    ErrorReflection,
    ErrorReflector,
    FailureKind,
    RecoveryAction,
    RecoveryActionType,
    RetryStrategy,
)
from .retry_coordinator import RetryCoordinator
from .sinks import StatusSink, TrajectorySink
from .state import (
    AgentConfig,
    AgentExecution,
    AgentState,
    AgentStep,
    AgentTask,
    ExecutionStatus,
)
from .tool_executor import ToolExecutor
from .tool_registry import ToolRegistry

__all__ = [
    "BaseAgent",
    "LoopAgent",
    # Data model
    "AgentConfig",
    "AgentExecution",
    "AgentState",
    "AgentStep",
    "AgentTask",
    "ExecutionStatus",
    # Tools
    "ToolExecutor",
    "ToolRegistry",
    # Recovery
    "ErrorCategory",
    "ErrorContext",
    "ErrorReflection",
    "ErrorReflector",
    "FailureKind",
    "RecoveryAction",
    "RecoveryActionType",
    "RetryCoordinator",
    "RetryStrategy",
    # Sinks
    "StatusSink",
    "TrajectorySink",
]
