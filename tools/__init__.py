"""Tools package for agent tool implementations."""

from .base import BaseTool
from .task_done import TaskDoneTool

__all__ = ["BaseTool", "TaskDoneTool"]
