"""Base tool interface for all agent tools."""

import inspect
import json
from abc import ABC, abstractmethod
from typing import Any, Dict

from errors import ToolExecutionError, ToolInvalidArgumentsError


class BaseTool(ABC):
    """Abstract base class for all tools.

    Implementations may be invoked concurrently when parallel tool calls are
    enabled; they must not share mutable state across simultaneous calls, or
    must serialize internally.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique tool identifier."""
        pass

    @property
    @abstractmethod
    def description(self) -> str:
        """Human-readable description for the LLM."""
        pass

    @property
    @abstractmethod
    def parameters(self) -> Dict[str, Any]:
        """JSON Schema properties for tool parameters."""
        pass

    @abstractmethod
    async def execute(self, **kwargs) -> str:
        """Execute the tool and return result as string."""
        raise NotImplementedError

    async def invoke(self, arguments: str) -> str:
        """Decode the model's JSON argument string and execute.

        Raises:
            ToolInvalidArgumentsError: Arguments are not a JSON object or do not
                match ``execute``'s signature
            ToolExecutionError: The tool itself failed
        """
        try:
            kwargs = json.loads(arguments) if arguments and arguments.strip() else {}
        except json.JSONDecodeError as e:
            raise ToolInvalidArgumentsError(f"Invalid JSON arguments: {e}") from e
        if not isinstance(kwargs, dict):
            raise ToolInvalidArgumentsError("Arguments must be a JSON object")

        missing = [key for key in self.required_parameters() if key not in kwargs]
        if missing:
            raise ToolInvalidArgumentsError(f"Missing required arguments: {', '.join(missing)}")

        try:
            inspect.signature(self.execute).bind(**kwargs)
        except TypeError as e:
            raise ToolInvalidArgumentsError(str(e)) from e

        try:
            return str(await self.execute(**kwargs))
        except (ToolInvalidArgumentsError, ToolExecutionError):
            raise
        except Exception as e:
            raise ToolExecutionError(str(e)) from e

    def required_parameters(self) -> list:
        # Parameters without a 'default' value are required
        return [key for key, value in self.parameters.items() if "default" not in value]

    def to_schema(self) -> Dict[str, Any]:
        """Convert to the OpenAI function-calling schema format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": {
                    "type": "object",
                    "properties": self.parameters,
                    "required": self.required_parameters(),
                },
            },
        }
