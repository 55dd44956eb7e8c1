"""Provider profiles with YAML persistence and environment overrides."""

from __future__ import annotations

import os
import tempfile
from contextlib import suppress
from dataclasses import dataclass, field, replace
from typing import Any

import yaml

from errors import ConfigurationError
from utils import get_logger
from utils.runtime import get_models_file

logger = get_logger(__name__)

DEFAULT_CONFIG_TEMPLATE = """# Provider Configuration
# This file is gitignored - do not commit to version control
#
# The key under `providers` is the provider name used by `llm.create_llm`
# (openai, anthropic, azure, google, ollama, openrouter, doubao).
#
# Supported fields:
#   - model: Model identifier (required)
#   - api_key: API key (or set the provider's environment variable)
#   - api_base: Custom base URL (optional)
#   - api_version: API version (azure only)
#   - max_tokens: Completion token limit (default: 4096)
#   - temperature: Sampling temperature (default: 0.5)
#   - parallel_tool_calls: Run multiple tool calls of one step concurrently (default: false)
#   - max_retries: Transport retries per LLM call (default: 10)
#   - timeout: Request timeout in seconds (default: 600)

providers:
  # anthropic:
  #   model: claude-sonnet-4-20250514
  #   api_key: sk-ant-...
  # openai:
  #   model: gpt-4o
  #   parallel_tool_calls: true
  # ollama:
  #   model: llama3.1
  #   api_base: http://localhost:11434
default: null
"""

# Environment variables consulted per provider: (api_key, api_base, api_version)
PROVIDER_ENV_VARS: dict[str, tuple[str | None, str | None, str | None]] = {
    "openai": ("OPENAI_API_KEY", "OPENAI_API_BASE", None),
    "anthropic": ("ANTHROPIC_API_KEY", "ANTHROPIC_API_BASE", None),
    "azure": ("AZURE_OPENAI_API_KEY", "AZURE_OPENAI_ENDPOINT", "AZURE_OPENAI_API_VERSION"),
    "google": ("GOOGLE_API_KEY", "GOOGLE_API_BASE", None),
    "ollama": (None, "OLLAMA_BASE_URL", None),
    "openrouter": ("OPENROUTER_API_KEY", "OPENROUTER_BASE_URL", None),
    "doubao": ("DOUBAO_API_KEY", "DOUBAO_BASE_URL", None),
}

DEFAULT_MODELS = {
    "openai": "gpt-4o",
    "anthropic": "claude-sonnet-4-20250514",
    "azure": "gpt-4o",
    "google": "gemini-1.5-pro-002",
    "ollama": "llama3.1",
    "openrouter": "anthropic/claude-3.5-sonnet",
    "doubao": "doubao-pro-4k",
}

_KNOWN_FIELDS = {
    "model",
    "api_key",
    "api_base",
    "api_version",
    "max_tokens",
    "temperature",
    "parallel_tool_calls",
    "max_retries",
    "timeout",
}


def _coerce_int(value: Any, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except (ValueError, TypeError):
        return default


def _coerce_float(value: Any, default: float) -> float:
    if value is None or isinstance(value, bool):
        return default
    try:
        return float(str(value).strip())
    except (ValueError, TypeError):
        return default


def _coerce_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        v = value.strip().lower()
        if v in {"true", "1", "yes", "y", "on"}:
            return True
        if v in {"false", "0", "no", "n", "off"}:
            return False
    return default


@dataclass(frozen=True)
class ModelProfile:
    """Resolved parameters for one provider."""

    provider: str
    model: str
    api_key: str | None = None
    api_base: str | None = None
    api_version: str | None = None
    max_tokens: int = 4096
    temperature: float = 0.5
    parallel_tool_calls: bool = False
    max_retries: int = 10
    timeout: int = 600
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, provider: str, data: dict[str, Any]) -> "ModelProfile":
        model = data.get("model") or DEFAULT_MODELS.get(provider)
        if not model:
            raise ConfigurationError(f"Provider '{provider}' has no model configured")

        def _opt_str(key: str) -> str | None:
            value = data.get(key)
            return None if value is None else str(value)

        return cls(
            provider=provider,
            model=str(model),
            api_key=_opt_str("api_key"),
            api_base=_opt_str("api_base"),
            api_version=_opt_str("api_version"),
            max_tokens=_coerce_int(data.get("max_tokens"), default=4096),
            temperature=_coerce_float(data.get("temperature"), default=0.5),
            parallel_tool_calls=_coerce_bool(data.get("parallel_tool_calls"), default=False),
            max_retries=_coerce_int(data.get("max_retries"), default=10),
            timeout=_coerce_int(data.get("timeout"), default=600),
            extra={k: v for k, v in data.items() if k not in _KNOWN_FIELDS},
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "parallel_tool_calls": self.parallel_tool_calls,
            "max_retries": self.max_retries,
            "timeout": self.timeout,
        }
        if self.api_key:
            result["api_key"] = self.api_key
        if self.api_base is not None:
            result["api_base"] = self.api_base
        if self.api_version is not None:
            result["api_version"] = self.api_version
        if self.extra:
            result.update(self.extra)
        return result

    def with_environment(self, environ: dict[str, str] | None = None) -> "ModelProfile":
        """Return a copy where provider environment variables override file values."""
        environ = os.environ if environ is None else environ
        key_var, base_var, version_var = PROVIDER_ENV_VARS.get(self.provider, (None, None, None))
        updates: dict[str, Any] = {}
        if key_var and environ.get(key_var):
            updates["api_key"] = environ[key_var]
        if base_var and environ.get(base_var):
            updates["api_base"] = environ[base_var]
        if version_var and environ.get(version_var):
            updates["api_version"] = environ[version_var]
        return replace(self, **updates) if updates else self


class ModelManager:
    """Loads provider profiles from ``~/.taskloop/models.yaml``.

    Resolution priority for each value: command line > environment > file > defaults.
    Providers absent from the file but with an API key in the environment are
    added with default parameters.
    """

    def __init__(self, config_path: str | None = None, environ: dict[str, str] | None = None):
        self.config_path = config_path or get_models_file()
        self.environ = os.environ if environ is None else environ
        self.profiles: dict[str, ModelProfile] = {}
        self.default_provider: str | None = None
        self._load()

    def _atomic_write(self, content: str) -> None:
        directory = os.path.dirname(self.config_path) or "."
        os.makedirs(directory, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(prefix=".models.", suffix=".tmp", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.replace(tmp_path, self.config_path)
            with suppress(OSError):
                os.chmod(self.config_path, 0o600)
        finally:
            with suppress(OSError):
                os.unlink(tmp_path)

    def _load(self) -> None:
        if not os.path.exists(self.config_path):
            with suppress(OSError):
                self._atomic_write(DEFAULT_CONFIG_TEMPLATE)
                logger.info(f"Created provider config template at {self.config_path}")

        config: dict[str, Any] = {}
        if os.path.exists(self.config_path):
            with open(self.config_path, encoding="utf-8") as f:
                try:
                    config = yaml.safe_load(f) or {}
                except yaml.YAMLError as e:
                    raise ConfigurationError(f"Invalid YAML in {self.config_path}: {e}") from e

        providers = config.get("providers") or {}
        if not isinstance(providers, dict):
            logger.warning("Invalid models.yaml format: 'providers' should be a mapping")
            providers = {}

        for name, data in providers.items():
            if not isinstance(name, str) or not name.strip():
                continue
            if not isinstance(data, dict):
                logger.warning(f"Invalid provider config for '{name}', skipping")
                continue
            profile = ModelProfile.from_dict(name.strip().lower(), data)
            self.profiles[profile.provider] = profile.with_environment(self.environ)

        for name, (key_var, _, _) in PROVIDER_ENV_VARS.items():
            if name not in self.profiles and key_var and self.environ.get(key_var):
                self.profiles[name] = ModelProfile.from_dict(name, {}).with_environment(
                    self.environ
                )

        default = config.get("default")
        self.default_provider = default if isinstance(default, str) else None
        logger.info(f"Loaded {len(self.profiles)} provider profiles from {self.config_path}")

    def save(self) -> None:
        config = {
            "providers": {name: profile.to_dict() for name, profile in self.profiles.items()},
            "default": self.default_provider,
        }
        header = "# Provider Configuration\n# This file is gitignored - do not commit to version control\n\n"
        body = yaml.safe_dump(config, sort_keys=False, allow_unicode=True)
        self._atomic_write(header + body)

    def list_providers(self) -> list[str]:
        return list(self.profiles.keys())

    def get_profile(self, provider: str | None = None, model: str | None = None) -> ModelProfile:
        """Resolve the profile for *provider* (or the default one).

        Args:
            provider: Provider name; falls back to the file default, then Config.DEFAULT_PROVIDER
            model: Optional model override from the command line

        Raises:
            ConfigurationError: If no usable profile exists
        """
        if provider is None:
            from config import Config

            provider = self.default_provider or Config.DEFAULT_PROVIDER
        provider = provider.lower()

        profile = self.profiles.get(provider)
        if profile is None:
            if provider not in DEFAULT_MODELS:
                raise ConfigurationError(f"Provider '{provider}' is not configured")
            profile = ModelProfile.from_dict(provider, {}).with_environment(self.environ)

        if model:
            profile = replace(profile, model=model)
        return profile
