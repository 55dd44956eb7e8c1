"""Name -> tool mapping built once per agent."""

from typing import Any, Dict, Iterable, List, Optional

from errors import ConfigurationError
from tools.base import BaseTool


class ToolRegistry:
    """Immutable lookup table of the tools available to one agent."""

    def __init__(self, tools: Iterable[BaseTool]):
        self._tools: Dict[str, BaseTool] = {}
        for tool in tools:
            if tool.name in self._tools:
                raise ConfigurationError(f"Duplicate tool name: '{tool.name}'")
            self._tools[tool.name] = tool
        self._schemas = [tool.to_schema() for tool in self._tools.values()]

    def get(self, name: str) -> Optional[BaseTool]:
        return self._tools.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    @property
    def names(self) -> List[str]:
        return list(self._tools)

    def get_tool_schemas(self) -> List[Dict[str, Any]]:
        """Get OpenAI function-format schemas for all tools."""
        return list(self._schemas)
