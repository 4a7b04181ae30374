"""Async retry utilities.

This module wraps fallible async operations with a bounded number of attempts
and a delay between them. Two modes are supported:

- strict: exhaustion raises RetryExhaustedError chained from the last error
- lenient: exhaustion returns None so the caller can degrade gracefully

Only the configured retryable exception types are retried. Anything else
(for example PersistenceError) propagates on first occurrence.

Example:
    >>> from book_forge.retry import RetryConfig
    >>>
    >>> policy = RetryConfig(max_attempts=3, initial_delay=2.0)
    >>> text = await policy.run(lambda: generator.generate(prompt, model, scope))
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from .exceptions import InvocationError, ParseExhaustedError, RetryExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

FailureCallback = Callable[[int, int, BaseException], None]

DEFAULT_RETRYABLE: tuple[type[Exception], ...] = (InvocationError, ParseExhaustedError)


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    delay: float = 2.0,
    *,
    strict: bool = True,
    retryable: tuple[type[Exception], ...] = DEFAULT_RETRYABLE,
    on_failure: FailureCallback | None = None,
    exponential_base: float = 1.0,
    max_delay: float = 60.0,
    label: str | None = None,
) -> T | None:
    """Run an async operation with bounded retries.

    Args:
        operation: Zero-argument callable returning an awaitable
        max_attempts: Maximum number of attempts (including the first)
        delay: Delay in seconds before the second attempt
        strict: Raise on exhaustion when True, return None when False
        retryable: Exception types that trigger another attempt
        on_failure: Called as on_failure(attempt, max_attempts, error) for
            every failed attempt
        exponential_base: Multiplier applied to the delay after each retry
            (1.0 keeps the delay constant)
        max_delay: Upper bound for the delay
        label: Name used in log messages (defaults to the operation name)

    Returns:
        The operation result, or None in lenient mode after exhaustion

    Raises:
        RetryExhaustedError: In strict mode after the final failed attempt
        Exception: Any non-retryable exception, immediately
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    name = label or getattr(operation, "__name__", "operation")
    current_delay = delay
    last_exception: Exception | None = None

    for attempt in range(1, max_attempts + 1):
        try:
            return await operation()
        except retryable as e:
            last_exception = e
            if on_failure is not None:
                on_failure(attempt, max_attempts, e)
            if attempt < max_attempts:
                logger.warning(
                    f"Attempt {attempt}/{max_attempts} failed for {name}: {e}. "
                    f"Retrying in {current_delay:.1f}s..."
                )
                await asyncio.sleep(current_delay)
                current_delay = min(current_delay * exponential_base, max_delay)
            else:
                logger.error(f"All {max_attempts} attempts failed for {name}: {e}")

    if not strict:
        return None

    raise RetryExhaustedError(
        f"All attempts failed for {name}",
        attempts=max_attempts,
        last_error=last_exception,
    ) from last_exception


@dataclass(frozen=True)
class RetryConfig:
    """Retry settings for one kind of operation.

    Attributes:
        max_attempts: Maximum number of attempts
        initial_delay: Delay before first retry (seconds)
        max_delay: Maximum delay between retries (seconds)
        exponential_base: Backoff multiplier
        retryable: Exception types that trigger another attempt

    Example:
        >>> config = RetryConfig(max_attempts=5, initial_delay=0.5)
        >>> await config.run(lambda: generator.generate(prompt, model, scope))
    """

    max_attempts: int = 3
    initial_delay: float = 2.0
    max_delay: float = 60.0
    exponential_base: float = 1.0
    retryable: tuple[type[Exception], ...] = DEFAULT_RETRYABLE

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        strict: bool = True,
        on_failure: FailureCallback | None = None,
        label: str | None = None,
    ) -> T | None:
        """Run an operation with this configuration.

        See retry_async for the meaning of the keyword arguments.
        """
        return await retry_async(
            operation,
            max_attempts=self.max_attempts,
            delay=self.initial_delay,
            strict=strict,
            retryable=self.retryable,
            on_failure=on_failure,
            exponential_base=self.exponential_base,
            max_delay=self.max_delay,
            label=label,
        )

