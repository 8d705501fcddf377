"""Retry logic with exponential backoff and jitter.

Provides resilient retry mechanisms for handling transient failures in
upstream extractor calls.

Example:
    >>> from formextract.resilience.retry import async_retry_with_backoff, RetryConfig
    >>> config = RetryConfig(max_attempts=3, initial_delay_seconds=1.0)
    >>> data = await async_retry_with_backoff(
    ...     client.complete,
    ...     config,
    ...     (ExternalServiceError,),
    ...     messages=messages,
    ... )
"""

import asyncio
import random
from typing import Awaitable, Callable, Any, Type, Tuple
from dataclasses import dataclass
import logging

from formextract.core.config import BACKOFF_MULTIPLIER, INITIAL_BACKOFF, MAX_BACKOFF, MAX_RETRIES

logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    """Configuration for retry logic.

    Attributes:
        max_attempts: Maximum number of attempts (including initial)
        initial_delay_seconds: Initial delay before first retry
        max_delay_seconds: Maximum delay between retries
        exponential_base: Base for exponential backoff (delay *= base ** attempt)
        jitter: Whether to add random jitter to delays
    """
    max_attempts: int = MAX_RETRIES
    initial_delay_seconds: float = INITIAL_BACKOFF
    max_delay_seconds: float = MAX_BACKOFF
    exponential_base: float = BACKOFF_MULTIPLIER
    jitter: bool = True


def compute_delay(config: RetryConfig, attempt: int) -> float:
    """Delay before retry number `attempt + 1` (attempt is 0-based)."""
    delay = min(
        config.initial_delay_seconds * (config.exponential_base ** attempt),
        config.max_delay_seconds,
    )
    if config.jitter:
        delay = delay * (0.5 + random.random())  # Random between 50% and 150%
    return delay


def _is_retryable(exc: Exception) -> bool:
    # Errors from our hierarchy say whether retrying can help.
    return getattr(exc, "retryable", True)


async def async_retry_with_backoff(
    func: Callable[..., Awaitable[Any]],
    config: RetryConfig,
    retryable_exceptions: Tuple[Type[Exception], ...],
    *args,
    **kwargs
) -> Any:
    """Await a coroutine function, retrying with exponential backoff and jitter.

    Exceptions outside `retryable_exceptions`, or carrying ``retryable=False``,
    are raised immediately.

    Args:
        func: Coroutine function to execute
        config: Retry configuration
        retryable_exceptions: Tuple of exception types that trigger retry
        *args: Positional arguments for func
        **kwargs: Keyword arguments for func

    Returns:
        Result from successful function call

    Raises:
        Last exception if all retry attempts fail
    """
    for attempt in range(config.max_attempts):
        try:
            return await func(*args, **kwargs)
        except retryable_exceptions as e:
            if not _is_retryable(e):
                raise

            if attempt == config.max_attempts - 1:
                logger.error(
                    f"All {config.max_attempts} retry attempts failed: {type(e).__name__}: {e}",
                    extra={"retry_attempt": attempt + 1},
                )
                raise

            delay = compute_delay(config, attempt)
            logger.warning(
                f"Attempt {attempt + 1}/{config.max_attempts} failed: {type(e).__name__}: {e}. "
                f"Retrying in {delay:.2f}s...",
                extra={"retry_attempt": attempt + 1},
            )
            await asyncio.sleep(delay)

    raise ValueError(f"max_attempts must be >= 1, got {config.max_attempts}")
