"""Utility modules for taskloop."""

from .logger import get_log_file_path, get_logger, setup_logger

# Note: terminal_ui and trajectory are NOT imported here; they depend on
# config and agent types. Import them directly:
#   from utils.terminal_ui import ConsoleStatusSink
#   from utils.trajectory import TrajectoryRecorder

__all__ = [
    "setup_logger",
    "get_logger",
    "get_log_file_path",
]
