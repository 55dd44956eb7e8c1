"""Tool the model calls to report that the task is finished."""

from typing import Any, Dict, Optional

from .base import BaseTool


class TaskDoneTool(BaseTool):
    """Mark the current task as complete, optionally with its output."""

    @property
    def name(self) -> str:
        return "task_done"

    @property
    def description(self) -> str:
        return "Mark the current task as complete and optionally provide output"

    @property
    def parameters(self) -> Dict[str, Any]:
        return {
            "output": {
                "type": "string",
                "description": "Optional output or result of the completed task",
                "default": None,
            }
        }

    async def execute(self, output: Optional[str] = None) -> str:
        if output:
            return f"Task completed successfully. Output: {output}"
        return "Task completed successfully."
