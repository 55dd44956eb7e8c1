"""Error reflection: classify a failure and decide whether and how to retry.

Resolution is two-tier. An ordered list of local ``RetryStrategy`` objects is
consulted first; the first one that can handle the classified error produces
the decision without any LLM call. Only when none matches is the LLM asked for
a structured diagnosis. At most ``max_reflection_depth`` reflections run per
execution; past that every failure is critical.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Protocol, Sequence, Tuple

from errors import (
    LLMInvalidResponseError,
    LLMNetworkError,
    LLMRateLimitError,
    LLMUnsupportedModelError,
    ParsingError,
    ToolError,
)
from llm.base import BaseLLM
from llm.message_types import LLMMessage
from llm.retry import is_rate_limit_error
from utils import get_logger

logger = get_logger(__name__)


class ErrorCategory(str, Enum):
    TOOL_EXECUTION = "tool-execution"
    LLM_COMMUNICATION = "llm-communication"
    PARSING = "parsing"
    RATE_LIMIT = "rate-limit"
    UNKNOWN = "unknown"


class FailureKind(str, Enum):
    TRANSIENT = "transient"
    PERMANENT = "permanent"
    RECURRING = "recurring"
    CRITICAL = "critical"


class RecoveryActionType(str, Enum):
    RESET_STATE = "reset_state"
    CLEAR_CACHE = "clear_cache"
    CHANGE_APPROACH = "change_approach"
    VALIDATE_INPUT = "validate_input"
    CUSTOM = "custom"


@dataclass(frozen=True)
class RecoveryAction:
    """A remediation applied before a retry; ``command`` is set only for CUSTOM."""

    type: RecoveryActionType
    command: Optional[str] = None

    @classmethod
    def parse(cls, description: str) -> "RecoveryAction":
        """Map free text like "reset state" or "clear_cache" onto an action."""
        key = description.strip().lower().replace(" ", "_")
        for action_type in RecoveryActionType:
            if action_type is not RecoveryActionType.CUSTOM and key == action_type.value:
                return cls(action_type)
        return cls(RecoveryActionType.CUSTOM, command=description)

    def __str__(self) -> str:
        if self.type is RecoveryActionType.CUSTOM:
            return f"custom({self.command})"
        return self.type.value


@dataclass(frozen=True)
class ErrorContext:
    """What the agent knew when the error happened.

    ``previous_errors`` holds every error of the execution so far, oldest
    first, including the one being reflected on.
    """

    task: str
    current_step: int
    last_tool_used: Optional[str]
    elapsed: float
    previous_errors: Tuple[BaseException, ...] = ()


@dataclass(frozen=True)
class ErrorReflection:
    category: ErrorCategory
    failure_kind: FailureKind
    suggestion: str
    should_retry: bool
    retry_delay: Optional[float] = None
    recovery_actions: Tuple[RecoveryAction, ...] = ()
    root_cause: Optional[str] = None
    alternatives: Tuple[str, ...] = ()
    confidence: Optional[float] = None
    escalated: bool = False

    @property
    def is_critical(self) -> bool:
        return self.failure_kind is FailureKind.CRITICAL


@dataclass
class ErrorAnalysis:
    error: BaseException
    category: ErrorCategory = ErrorCategory.UNKNOWN
    is_retryable: bool = False
    context_patterns: List[str] = field(default_factory=list)
    previous_failures: int = 0
    has_repeated_failures: bool = False


def classify_error(error: BaseException) -> Tuple[ErrorCategory, bool]:
    """Return the category of *error* and whether it is retryable by default."""
    if isinstance(error, ToolError):
        return ErrorCategory.TOOL_EXECUTION, True
    if isinstance(error, LLMRateLimitError):
        return ErrorCategory.RATE_LIMIT, True
    if isinstance(error, LLMNetworkError):
        return ErrorCategory.LLM_COMMUNICATION, True
    if isinstance(error, (LLMInvalidResponseError, LLMUnsupportedModelError)):
        return ErrorCategory.LLM_COMMUNICATION, False
    if isinstance(error, (ParsingError, json.JSONDecodeError)):
        return ErrorCategory.PARSING, True
    if is_rate_limit_error(error):
        return ErrorCategory.RATE_LIMIT, True
    if isinstance(error, (ConnectionError, TimeoutError)):
        return ErrorCategory.LLM_COMMUNICATION, True
    return ErrorCategory.UNKNOWN, False


# Retry strategies


class RetryStrategy(Protocol):
    def can_handle(self, analysis: ErrorAnalysis) -> bool: ...

    def create_reflection(self, analysis: ErrorAnalysis) -> ErrorReflection: ...


def _fast_path_reflection(
    analysis: ErrorAnalysis,
    suggestion: str,
    should_retry: bool,
    retry_delay: float,
    actions: Sequence[RecoveryAction] = (),
) -> ErrorReflection:
    recurring = analysis.has_repeated_failures
    return ErrorReflection(
        category=analysis.category,
        failure_kind=FailureKind.RECURRING if recurring else FailureKind.TRANSIENT,
        suggestion=suggestion,
        should_retry=should_retry,
        retry_delay=retry_delay,
        recovery_actions=tuple(actions),
        confidence=0.5 if recurring else 0.9,
    )


class NetworkRetryStrategy:
    """Transient connectivity failures: exponential backoff capped at 30s."""

    MAX_DELAY = 30.0
    MAX_FAILURES = 5

    def can_handle(self, analysis: ErrorAnalysis) -> bool:
        return analysis.category is ErrorCategory.LLM_COMMUNICATION and analysis.is_retryable

    def create_reflection(self, analysis: ErrorAnalysis) -> ErrorReflection:
        delay = min(2.0**analysis.previous_failures, self.MAX_DELAY)
        return _fast_path_reflection(
            analysis,
            "Network connectivity issue detected. Retrying with exponential backoff.",
            should_retry=analysis.previous_failures < self.MAX_FAILURES,
            retry_delay=delay,
        )


class ToolExecutionRetryStrategy:
    MAX_FAILURES = 3

    def can_handle(self, analysis: ErrorAnalysis) -> bool:
        return analysis.category is ErrorCategory.TOOL_EXECUTION

    def create_reflection(self, analysis: ErrorAnalysis) -> ErrorReflection:
        return _fast_path_reflection(
            analysis,
            "Tool execution failed. Retrying with cleaned inputs.",
            should_retry=analysis.previous_failures < self.MAX_FAILURES,
            retry_delay=0.5,
            actions=[RecoveryAction(RecoveryActionType.VALIDATE_INPUT)],
        )


class ParsingRetryStrategy:
    # Parsing failures rarely fix themselves; smaller budget than network errors
    MAX_FAILURES = 2

    def can_handle(self, analysis: ErrorAnalysis) -> bool:
        return analysis.category is ErrorCategory.PARSING

    def create_reflection(self, analysis: ErrorAnalysis) -> ErrorReflection:
        return _fast_path_reflection(
            analysis,
            "Response parsing failed. Retrying with structured output request.",
            should_retry=analysis.previous_failures < self.MAX_FAILURES,
            retry_delay=0.1,
        )


class RateLimitRetryStrategy:
    WAIT_SECONDS = 60.0

    def can_handle(self, analysis: ErrorAnalysis) -> bool:
        return analysis.category is ErrorCategory.RATE_LIMIT

    def create_reflection(self, analysis: ErrorAnalysis) -> ErrorReflection:
        return _fast_path_reflection(
            analysis,
            "Rate limit exceeded. Waiting before retry.",
            should_retry=True,
            retry_delay=self.WAIT_SECONDS,
        )


def default_strategies() -> List[RetryStrategy]:
    return [
        NetworkRetryStrategy(),
        ToolExecutionRetryStrategy(),
        ParsingRetryStrategy(),
        RateLimitRetryStrategy(),
    ]


REFLECTION_SYSTEM_PROMPT = """\
You are an expert error analysis system for AI agents. Your job is to analyze failures \
and suggest intelligent recovery strategies.

Focus on:
- Identifying patterns in failures
- Suggesting specific, actionable recovery steps
- Determining optimal retry timing
- Providing alternative approaches when retries are unlikely to succeed

Be precise and practical in your recommendations."""

_REFLECTION_PROMPT = """\
I need help analyzing and recovering from an error that occurred during task execution.

Error Details:
- Type: {category}
- Error: {error}
- Attempt: {attempt}/{max_depth}
- Previous failures: {previous_failures}
- Recurring failure: {recurring}

Context:
- Task: {task}
- Step: {step}
- Last tool used: {last_tool}
- Execution time: {elapsed:.1f}s
- Context patterns: {patterns}

Recent errors: {recent_errors}

Please provide:
1. Root cause analysis
2. Recommended recovery actions (reset_state, clear_cache, change_approach, validate_input, or a custom command)
3. Whether to retry and after what delay
4. Alternative approaches if retry fails

Respond in JSON format with the structure:
{{
  "rootCause": "string",
  "shouldRetry": boolean,
  "retryDelay": number_or_null,
  "recoveryActions": ["action1", "action2"],
  "alternatives": ["alt1", "alt2"],
  "confidence": number_0_to_1
}}"""

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


class ErrorReflector:
    """Diagnoses failures of the agent loop and produces retry decisions."""

    def __init__(
        self,
        llm: BaseLLM,
        max_reflection_depth: int = 3,
        strategies: Optional[List[RetryStrategy]] = None,
    ):
        self.llm = llm
        self.max_reflection_depth = max_reflection_depth
        self.strategies = default_strategies() if strategies is None else strategies

    async def reflect(
        self,
        error: BaseException,
        context: ErrorContext,
        attempt: Optional[int] = None,
        max_depth: Optional[int] = None,
    ) -> ErrorReflection:
        """Reflect on an error and suggest recovery actions.

        Args:
            error: The exception that escaped the step
            context: Execution context; ``previous_errors`` includes *error*
            attempt: Reflection attempt number, defaults to the number of errors so far
            max_depth: Depth limit for this execution, defaults to ``max_reflection_depth``

        Returns:
            ErrorReflection; critical once the depth limit is exceeded

        Raises:
            Exception: Whatever the escalation LLM call raises
        """
        if attempt is None:
            attempt = max(len(context.previous_errors), 1)

        if max_depth is None:
            max_depth = self.max_reflection_depth

        analysis = self.analyze(error, context)

        if attempt > max_depth:
            logger.warning(f"Reflection depth {max_depth} exceeded at attempt {attempt}")
            return ErrorReflection(
                category=analysis.category,
                failure_kind=FailureKind.CRITICAL,
                suggestion="Maximum reflection depth reached. Manual intervention required.",
                should_retry=False,
            )

        for strategy in self.strategies:
            if strategy.can_handle(analysis):
                reflection = strategy.create_reflection(analysis)
                logger.info(
                    f"{type(strategy).__name__} handled {analysis.category.value} error: "
                    f"retry={reflection.should_retry}, delay={reflection.retry_delay}"
                )
                return reflection

        return await self._escalate(analysis, context, attempt, max_depth)

    def analyze(self, error: BaseException, context: ErrorContext) -> ErrorAnalysis:
        category, retryable = classify_error(error)
        return ErrorAnalysis(
            error=error,
            category=category,
            is_retryable=retryable,
            context_patterns=self._extract_context_patterns(context),
            previous_failures=len(context.previous_errors),
            has_repeated_failures=self._has_repeated_failures(context),
        )

    @staticmethod
    def _extract_context_patterns(context: ErrorContext) -> List[str]:
        patterns = []
        messages = [str(e) for e in context.previous_errors]
        if len(set(messages)) < len(messages):
            patterns.append("repeated_error_messages")
        if context.last_tool_used is not None:
            patterns.append("tool_execution_context")
        if context.elapsed > 60:
            patterns.append("long_execution_time")
        return patterns

    @staticmethod
    def _has_repeated_failures(context: ErrorContext) -> bool:
        if len(context.previous_errors) < 2:
            return False
        first, second = context.previous_errors[-2:]
        return classify_error(first)[0] is classify_error(second)[0]

    async def _escalate(
        self, analysis: ErrorAnalysis, context: ErrorContext, attempt: int, max_depth: int
    ) -> ErrorReflection:
        prompt = _REFLECTION_PROMPT.format(
            category=analysis.category.value,
            error=str(analysis.error) or type(analysis.error).__name__,
            attempt=attempt,
            max_depth=max_depth,
            previous_failures=analysis.previous_failures,
            recurring="yes" if analysis.has_repeated_failures else "no",
            task=context.task,
            step=context.current_step,
            last_tool=context.last_tool_used or "None",
            elapsed=context.elapsed,
            patterns=", ".join(analysis.context_patterns) or "none",
            recent_errors="; ".join(str(e) for e in context.previous_errors),
        )
        messages = [
            LLMMessage(role="system", content=REFLECTION_SYSTEM_PROMPT),
            LLMMessage(role="user", content=prompt),
        ]

        logger.info(f"Escalating {analysis.category.value} error to LLM reflection")
        response = await self.llm.chat(messages=messages, tools=None, temperature=0.1, max_tokens=1000)
        return self.parse_reflection(response.content, analysis)

    @staticmethod
    def parse_reflection(content: str, analysis: ErrorAnalysis) -> ErrorReflection:
        """Parse the escalation reply; malformed replies yield a basic fallback."""
        text = (content or "").strip()
        match = _FENCE_RE.match(text)
        if match:
            text = match.group(1)

        try:
            data = json.loads(text)
            if not isinstance(data, dict):
                raise ValueError("reflection reply is not a JSON object")
        except ValueError as e:
            logger.warning(f"Failed to parse reflection reply: {e}")
            return ErrorReflection(
                category=analysis.category,
                failure_kind=(
                    FailureKind.TRANSIENT if analysis.is_retryable else FailureKind.PERMANENT
                ),
                suggestion="Failed to parse detailed reflection. Basic recovery attempted.",
                should_retry=analysis.is_retryable,
                retry_delay=1.0,
                escalated=True,
            )

        should_retry = data.get("shouldRetry")
        if not isinstance(should_retry, bool):
            should_retry = analysis.is_retryable

        retry_delay = data.get("retryDelay")
        if isinstance(retry_delay, bool) or not isinstance(retry_delay, (int, float)):
            retry_delay = None
        elif retry_delay < 0:
            retry_delay = 0.0

        actions = data.get("recoveryActions")
        alternatives = data.get("alternatives")
        confidence = data.get("confidence")
        root_cause = data.get("rootCause")
        if not isinstance(root_cause, str) or not root_cause.strip():
            root_cause = None

        if analysis.has_repeated_failures:
            kind = FailureKind.RECURRING
        elif analysis.is_retryable:
            kind = FailureKind.TRANSIENT
        else:
            kind = FailureKind.PERMANENT

        return ErrorReflection(
            category=analysis.category,
            failure_kind=kind,
            suggestion=root_cause or "Unknown error occurred",
            should_retry=should_retry,
            retry_delay=float(retry_delay) if retry_delay is not None else None,
            recovery_actions=tuple(
                RecoveryAction.parse(a) for a in actions or [] if isinstance(a, str) and a.strip()
            )
            if isinstance(actions, list)
            else (),
            root_cause=root_cause,
            alternatives=tuple(a for a in alternatives if isinstance(a, str))
            if isinstance(alternatives, list)
            else (),
            confidence=float(confidence)
            if isinstance(confidence, (int, float)) and not isinstance(confidence, bool)
            else None,
            escalated=True,
        )
