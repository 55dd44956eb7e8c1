"""Transport-level retry for LLM calls.

This is the inner retry layer: it re-sends one request after connection drops,
timeouts, 5xx and 429 responses before the error ever reaches the agent loop.
Errors that survive it are classified by ``agent.reflection``.
"""

import asyncio
import random
from dataclasses import dataclass
from functools import wraps
from typing import TYPE_CHECKING, Awaitable, Callable, Optional, TypeVar

from errors import LLMError, LLMNetworkError, LLMRateLimitError
from utils import get_logger

if TYPE_CHECKING:
    from .model_manager import ModelProfile

logger = get_logger(__name__)
T = TypeVar("T")

# Lowercase substrings that identify a rate-limit failure in an error message
RATE_LIMIT_MARKERS = (
    "429",
    "rate limit",
    "rate_limit",
    "ratelimit",
    "quota",
    "too many requests",
    "resourceexhausted",
)

_TRANSIENT_MARKERS = (
    "timeout",
    "timed out",
    "connection",
    "server error",
    "overloaded",
    "502",
    "503",
    "504",
)

# Packages whose exceptions describe a failed provider request
_PROVIDER_PACKAGES = ("litellm", "openai", "anthropic", "httpx", "httpcore")

_TRANSIENT_TYPE_NAMES = ("APIConnectionError", "Timeout", "ServiceUnavailable", "InternalServerError")


def _is_provider_error(error: BaseException) -> bool:
    """True for errors raised while talking to a model; only their text is trusted."""
    if isinstance(error, LLMError):
        return True
    return type(error).__module__.split(".")[0] in _PROVIDER_PACKAGES


@dataclass(frozen=True)
class RetryConfig:
    """Backoff policy for one LLM client.

    Attributes:
        max_retries: Retries after the first attempt; 0 disables retrying
        initial_delay: Delay before the first retry, in seconds
        max_delay: Upper bound for any single delay
        exponential_base: Growth factor between consecutive delays
        jitter: Scale each delay by a random factor in [0.5, 1.5)
    """

    max_retries: int = 5
    initial_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0
    jitter: bool = True

    @classmethod
    def from_profile(cls, profile: "ModelProfile") -> "RetryConfig":
        """Take the retry budget from the profile and the backoff shape from Config."""
        from config import Config

        return cls(
            max_retries=max(0, profile.max_retries),
            initial_delay=Config.RETRY_INITIAL_DELAY,
            max_delay=Config.RETRY_MAX_DELAY,
            exponential_base=Config.RETRY_EXPONENTIAL_BASE,
            jitter=Config.RETRY_JITTER,
        )

    def get_delay(self, attempt: int) -> float:
        """Delay before retry number *attempt* (0-indexed)."""
        delay = min(self.initial_delay * (self.exponential_base**attempt), self.max_delay)
        if self.jitter:
            delay = delay * (0.5 + random.random())
        return delay


def is_rate_limit_error(error: BaseException) -> bool:
    """True if *error* looks like a provider rate limit.

    Checks the taxonomy type, an HTTP ``status_code`` of 429 and the exception
    type name. Message text is only consulted for provider errors.
    """
    if isinstance(error, LLMRateLimitError):
        return True
    if getattr(error, "status_code", None) == 429:
        return True
    if "RateLimit" in type(error).__name__:
        return True
    if not _is_provider_error(error):
        return False
    text = str(error).lower()
    return any(marker in text for marker in RATE_LIMIT_MARKERS)


def is_retryable_error(error: BaseException) -> bool:
    """True if re-sending the same request may succeed."""
    if is_rate_limit_error(error):
        return True
    if isinstance(error, (LLMNetworkError, ConnectionError, TimeoutError)):
        return True

    status = getattr(error, "status_code", None)
    if isinstance(status, int):
        return status >= 500 or status == 408

    if any(name in type(error).__name__ for name in _TRANSIENT_TYPE_NAMES):
        return True
    if not _is_provider_error(error):
        return False
    text = str(error).lower()
    return any(marker in text for marker in _TRANSIENT_MARKERS)


def with_retry(config: Optional[RetryConfig] = None):
    """Decorator retrying a coroutine function on transient errors.

    When no config is given, the decorated method's instance may provide one as
    ``self.retry_config``. Non-transient errors and the error of the final
    attempt propagate unchanged.
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            retry_config = config
            if retry_config is None and args:
                retry_config = getattr(args[0], "retry_config", None)
            if retry_config is None:
                retry_config = RetryConfig()

            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    if attempt >= retry_config.max_retries or not is_retryable_error(e):
                        raise

                    delay = retry_config.get_delay(attempt)
                    attempt += 1
                    kind = "Rate limit" if is_rate_limit_error(e) else "Transient"
                    logger.warning(
                        f"{kind} error in {func.__name__}: {e}. "
                        f"Retry {attempt}/{retry_config.max_retries} in {delay:.1f}s"
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator
