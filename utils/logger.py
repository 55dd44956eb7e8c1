"""Logging setup for taskloop.

Modules always log through ``get_logger(__name__)``. Records reach a file only
after ``setup_logger()`` runs (the CLI calls it for ``--verbose``); every run then
gets its own file under ~/.taskloop/logs/.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from .runtime import get_log_dir

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Libraries that log every HTTP request at INFO/DEBUG
QUIET_LOGGERS = ("LiteLLM", "litellm", "httpx", "httpcore", "openai")

_log_file_path: Optional[str] = None


def _run_log_file(log_dir: str) -> Path:
    directory = Path(log_dir)
    directory.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return directory / f"taskloop_{stamp}.log"


def setup_logger(
    log_dir: Optional[str] = None,
    log_level: Optional[str] = None,
    log_to_console: bool = False,
) -> Optional[str]:
    """Attach a per-run file handler to the root logger.

    Calling it again is a no-op and returns the file chosen the first time.

    Args:
        log_dir: Where to put the log file (default: ~/.taskloop/logs/)
        log_level: Level name; defaults to Config.LOG_LEVEL
        log_to_console: Also echo WARNING and above to stderr

    Returns:
        Path of the log file
    """
    global _log_file_path

    if _log_file_path is not None:
        return _log_file_path

    if log_level is None:
        from config import Config

        log_level = Config.LOG_LEVEL
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.DEBUG

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    log_file = _run_log_file(log_dir or get_log_dir())

    handlers: list[logging.Handler] = [logging.FileHandler(log_file, encoding="utf-8")]
    handlers[0].setLevel(level)
    if log_to_console:
        stderr = logging.StreamHandler()
        stderr.setLevel(logging.WARNING)
        handlers.append(stderr)

    root = logging.getLogger()
    root.setLevel(level)
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _log_file_path = str(log_file)
    root.info("Logging to %s at %s", _log_file_path, logging.getLevelName(level))
    return _log_file_path


def get_logger(name: str) -> logging.Logger:
    """Module logger; file output starts once setup_logger() has run."""
    return logging.getLogger(name)


def get_log_file_path() -> Optional[str]:
    """Path of this run's log file, or None when file logging is off."""
    return _log_file_path
