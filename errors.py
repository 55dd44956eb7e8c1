"""Exception taxonomy shared by the agent loop, LLM clients and tools.

Every failure that leaves ``LoopAgent.run`` carries a ``FailureDiagnostics``
record. Exceptions from this module expose it as ``error.diagnostics``; foreign
exceptions get the same information attached as a note.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class FailureDiagnostics:
    """Where and how an execution ended."""

    step: int
    elapsed: float
    root_cause: Optional[str] = None

    def describe(self) -> str:
        text = f"failed at step {self.step} after {self.elapsed:.1f}s"
        if self.root_cause:
            text += f" (root cause: {self.root_cause})"
        return text


class AgentError(Exception):
    """Base class for all taskloop errors."""

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__doc__ or self.__class__.__name__)
        self.diagnostics: Optional[FailureDiagnostics] = None


class ConfigurationError(AgentError):
    """Invalid agent or provider configuration."""


# Tool errors


class ToolError(AgentError):
    """Base class for failures raised by or about a tool."""


class ToolNotFoundError(ToolError):
    """Requested tool is not registered."""

    def __init__(self, tool_name: str):
        super().__init__(f"Tool '{tool_name}' not found")
        self.tool_name = tool_name


class ToolInvalidArgumentsError(ToolError):
    """Tool arguments could not be decoded or do not match the tool."""


class ToolExecutionError(ToolError):
    """Tool raised while executing."""


# LLM errors


class LLMError(AgentError):
    """Base class for LLM client failures."""


class LLMInvalidResponseError(LLMError):
    """LLM returned no usable choice."""


class LLMNetworkError(LLMError):
    """LLM endpoint could not be reached or the connection dropped."""


class LLMRateLimitError(LLMError):
    """Provider rejected the call because of rate limiting."""


class LLMUnsupportedModelError(LLMError):
    """Provider or model is not supported."""


class ParsingError(AgentError):
    """Structured content could not be parsed."""


# Terminal loop errors


class MaxIterationsReachedError(AgentError):
    """Maximum iterations reached"""

    def __init__(self, max_steps: int):
        super().__init__(f"Maximum iterations reached ({max_steps} steps)")
        self.max_steps = max_steps


class CriticalReflectionError(AgentError):
    """Error reflection depth exhausted; manual intervention required."""

    def __init__(self, message: str, original_error: Optional[BaseException] = None):
        super().__init__(message)
        self.original_error = original_error


def attach_diagnostics(error: BaseException, diagnostics: FailureDiagnostics) -> None:
    """Attach diagnostics to *error* without changing its type or message."""
    if isinstance(error, AgentError):
        error.diagnostics = diagnostics
    else:
        error.add_note(f"taskloop: {diagnostics.describe()}")
