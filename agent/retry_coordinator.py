"""Turns an ErrorReflection into either a resumable step or a terminal error."""

import asyncio
from typing import Awaitable, Callable, Optional

from errors import CriticalReflectionError
from llm.message_types import LLMMessage
from utils import get_logger

from .reflection import ErrorReflection, RecoveryAction, RecoveryActionType

logger = get_logger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]
CustomActionHandler = Callable[[str], Awaitable[None]]

RECOVERY_MESSAGE = (
    "I encountered an error but I'm attempting to recover: {suggestion}. "
    "Let me try a different approach."
)


class RetryCoordinator:
    """Applies the retry decision produced by the ErrorReflector.

    Args:
        sleep: Awaitable used for the retry delay, ``asyncio.sleep`` by default
        custom_handler: Optional coroutine receiving the command of custom actions
    """

    def __init__(
        self,
        sleep: Optional[SleepFunc] = None,
        custom_handler: Optional[CustomActionHandler] = None,
    ):
        self._sleep = sleep or asyncio.sleep
        self._custom_handler = custom_handler

    async def recover(
        self,
        error: BaseException,
        reflection: ErrorReflection,
        current_step: int,
        max_steps: int,
    ) -> LLMMessage:
        """Prepare the next attempt after *error*.

        Returns:
            The assistant message to append to the transcript before resuming

        Raises:
            CriticalReflectionError: If the reflection is critical
            BaseException: *error* itself, unchanged, when no retry will happen
        """
        if reflection.is_critical:
            raise CriticalReflectionError(reflection.suggestion, original_error=error) from error

        if not reflection.should_retry:
            logger.info(f"Reflection declined retry for {type(error).__name__}: {error}")
            raise error

        if current_step >= max_steps:
            logger.info(f"No steps left for retry ({current_step}/{max_steps})")
            raise error

        for action in reflection.recovery_actions:
            await self._apply(action)

        if reflection.retry_delay:
            logger.warning(
                f"{reflection.category.value} error, retrying in {reflection.retry_delay:.1f}s"
            )
            await self._sleep(reflection.retry_delay)

        return LLMMessage(
            role="assistant",
            content=RECOVERY_MESSAGE.format(suggestion=reflection.suggestion),
        )

    async def _apply(self, action: RecoveryAction) -> None:
        if action.type is RecoveryActionType.CUSTOM:
            logger.info(f"Recovery action: custom command '{action.command}'")
            if self._custom_handler is not None and action.command:
                await self._custom_handler(action.command)
            return
        # The loop holds no cache or mutable tool state; these are recorded only.
        logger.info(f"Recovery action: {action.type.value}")
