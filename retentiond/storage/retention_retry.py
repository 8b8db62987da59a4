"""
Retry with exponential backoff for retention operations.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying, RetryCallState, RetryError,
    retry_if_exception_type, stop_after_attempt, wait_exponential
)

from .retention_errors import ExhaustedRetriesError

logger = logging.getLogger(__name__)

T = TypeVar('T')


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    on_failure: Optional[Callable[[int, int, BaseException], None]] = None
) -> T:
    """
    Run ``operation`` until it succeeds or ``max_attempts`` is reached.

    The delay before attempt ``k + 1`` is ``base_delay * 2 ** (k - 1)``.
    The final failure is raised without any further delay.

    Args:
        operation: Zero-argument coroutine function to run
        max_attempts: Total number of attempts allowed
        base_delay: Delay in seconds after the first failed attempt
        sleep: Awaitable sleep used between attempts
        on_failure: Optional callback receiving (attempt, max_attempts, error)

    Returns:
        The operation's result

    Raises:
        ExhaustedRetriesError: If every attempt failed
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

    def after_attempt(retry_state: RetryCallState):
        error = retry_state.outcome.exception()
        logger.warning(f"Attempt {retry_state.attempt_number}/{max_attempts} failed: {error}")
        if on_failure is not None:
            on_failure(retry_state.attempt_number, max_attempts, error)

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=base_delay),
        retry=retry_if_exception_type(Exception),
        after=after_attempt,
        sleep=sleep
    )

    try:
        async for attempt in retrying:
            with attempt:
                return await operation()
    except RetryError as e:
        last_error = e.last_attempt.exception()
        raise ExhaustedRetriesError(e.last_attempt.attempt_number, last_error) from last_error
