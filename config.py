"""Process-wide settings for taskloop, read from ~/.taskloop/config.

The file holds KEY=VALUE lines. Provider profiles are kept separately in
~/.taskloop/models.yaml (see llm.model_manager).
"""

import os
from contextlib import suppress
from typing import Callable, Optional, TypeVar

from errors import ConfigurationError

# Not taken from utils.runtime: utils.logger reads Config lazily and utils imports logger
_RUNTIME_DIR = os.path.join(os.path.expanduser("~"), ".taskloop")
CONFIG_FILE = os.path.join(_RUNTIME_DIR, "config")

_TEMPLATE = """\
# taskloop settings (KEY=VALUE, # starts a comment)

# Provider used when --provider is not given; profiles live in models.yaml
DEFAULT_PROVIDER=anthropic

MAX_STEPS=20
MAX_REFLECTION_DEPTH=3

# Seconds before one tool call is abandoned
TOOL_TIMEOUT=600
# Seconds a status or trajectory sink may block a step
SINK_TIMEOUT=5

# Backoff for transport-level LLM retries
RETRY_INITIAL_DELAY=1.0
RETRY_MAX_DELAY=60.0

# Empty means ~/.taskloop/trajectories
TRAJECTORY_DIR=

LOG_LEVEL=DEBUG
"""

T = TypeVar("T")


def read_settings(path: str) -> dict[str, str]:
    """Return the KEY=VALUE pairs in *path*; a missing file yields {}."""
    settings: dict[str, str] = {}
    with suppress(FileNotFoundError), open(path, encoding="utf-8") as f:
        for raw in f:
            line = raw.split("#", 1)[0].strip()
            key, sep, value = line.partition("=")
            if sep and key.strip():
                settings[key.strip()] = value.strip()
    return settings


def _write_template(path: str) -> None:
    if os.path.exists(path):
        return
    # Read-only home: fall back to built-in defaults
    with suppress(OSError):
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(_TEMPLATE)


_write_template(CONFIG_FILE)


class _Reader:
    """Typed lookups into parsed settings, remembering values that fail to parse."""

    def __init__(self, settings: dict[str, str]):
        self.settings = settings
        self.problems: list[str] = []

    def text(self, key: str, default: Optional[str]) -> Optional[str]:
        return self.settings.get(key) or default

    def get(self, key: str, default: T, cast: Callable[[str], T]) -> T:
        raw = self.settings.get(key)
        if raw is None or raw == "":
            return default
        try:
            return cast(raw)
        except ValueError:
            self.problems.append(f"{key}={raw!r} is not a valid {cast.__name__}")
            return default


class Config:
    """Settings shared by the CLI, the LLM layer and AgentConfig.from_config.

    Read as ``Config.MAX_STEPS`` etc. Values come from ~/.taskloop/config at
    import time; tests patch attributes directly or call ``load``.
    """

    DEFAULT_PROVIDER: str
    MAX_STEPS: int
    MAX_REFLECTION_DEPTH: int
    TOOL_TIMEOUT: float
    SINK_TIMEOUT: float
    RETRY_INITIAL_DELAY: float
    RETRY_MAX_DELAY: float
    RETRY_EXPONENTIAL_BASE: float = 2.0
    RETRY_JITTER: bool = True
    TRAJECTORY_DIR: Optional[str]
    # Only used once --verbose turns on file logging
    LOG_LEVEL: str

    _problems: list[str] = []

    @classmethod
    def load(cls, settings: dict[str, str]) -> None:
        """Replace every setting with the values in *settings* or their defaults."""
        reader = _Reader(settings)
        cls.DEFAULT_PROVIDER = reader.text("DEFAULT_PROVIDER", "anthropic")
        cls.MAX_STEPS = reader.get("MAX_STEPS", 20, int)
        cls.MAX_REFLECTION_DEPTH = reader.get("MAX_REFLECTION_DEPTH", 3, int)
        cls.TOOL_TIMEOUT = reader.get("TOOL_TIMEOUT", 600.0, float)
        cls.SINK_TIMEOUT = reader.get("SINK_TIMEOUT", 5.0, float)
        cls.RETRY_INITIAL_DELAY = reader.get("RETRY_INITIAL_DELAY", 1.0, float)
        cls.RETRY_MAX_DELAY = reader.get("RETRY_MAX_DELAY", 60.0, float)
        cls.TRAJECTORY_DIR = reader.text("TRAJECTORY_DIR", None)
        cls.LOG_LEVEL = reader.text("LOG_LEVEL", "DEBUG").upper()
        cls._problems = reader.problems

    @classmethod
    def validate(cls) -> None:
        """Reject unparsable or out-of-range settings.

        Raises:
            ConfigurationError: Listing every problem found
        """
        problems = list(cls._problems)
        if cls.MAX_STEPS < 1:
            problems.append("MAX_STEPS must be at least 1")
        if cls.MAX_REFLECTION_DEPTH < 0:
            problems.append("MAX_REFLECTION_DEPTH must not be negative")
        for name in ("TOOL_TIMEOUT", "SINK_TIMEOUT"):
            if getattr(cls, name) <= 0:
                problems.append(f"{name} must be positive")
        if cls.RETRY_MAX_DELAY < cls.RETRY_INITIAL_DELAY:
            problems.append("RETRY_MAX_DELAY must not be below RETRY_INITIAL_DELAY")

        if problems:
            raise ConfigurationError(f"Invalid {CONFIG_FILE}: " + "; ".join(problems))


Config.load(read_settings(CONFIG_FILE))
