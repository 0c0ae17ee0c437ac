"""Bounded retry loop returning tagged results."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, TypeVar, Union

import httpx

from .errors import ApiError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class Ok(Generic[T]):
    """Operation succeeded."""

    value: T
    attempts: int = 1


@dataclass
class RetryableError:
    """Operation failed in a way that may succeed if repeated."""

    error: Exception
    attempts: int = 1


@dataclass
class FatalError:
    """Operation failed and repeating it will not help."""

    error: Exception
    attempts: int = 1


RetryResult = Union[Ok, RetryableError, FatalError]


def classify_exception(error: Exception) -> Union[RetryableError, FatalError]:
    """Decide whether an exception from an external call is worth retrying."""
    if isinstance(error, ApiError):
        return RetryableError(error) if error.retryable else FatalError(error)
    if isinstance(error, httpx.TransportError):
        return RetryableError(error)
    return FatalError(error)


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    max_retries: int,
    base_delay: float,
    classify: Callable[[Exception], Union[RetryableError, FatalError]] = classify_exception,
    description: str = "operation",
) -> RetryResult:
    """Run an async operation with exponential backoff.

    The operation is attempted at most ``1 + max_retries`` times. Between
    attempts the loop sleeps ``base_delay * 2**(attempt - 1)`` seconds.

    Args:
        operation: Zero-argument coroutine factory
        max_retries: Number of retries after the first attempt
        base_delay: Delay in seconds before the first retry
        classify: Maps an exception to RetryableError or FatalError
        description: Label used in log messages

    Returns:
        Ok with the value, or the last RetryableError/FatalError
    """
    total_attempts = 1 + max(0, max_retries)
    result: RetryResult = FatalError(RuntimeError(f"{description} was never attempted"), 0)

    for attempt in range(1, total_attempts + 1):
        try:
            value = await operation()
            return Ok(value, attempt)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            result = classify(e)
            result.attempts = attempt

        if isinstance(result, FatalError):
            logger.error(f"{description} failed with non-retryable error: {result.error}")
            return result

        if attempt < total_attempts:
            wait_time = base_delay * 2 ** (attempt - 1)
            logger.warning(
                f"{description} failed (attempt {attempt}/{total_attempts}): "
                f"{result.error}, retrying in {wait_time}s..."
            )
            await asyncio.sleep(wait_time)

    logger.error(f"{description} failed after {total_attempts} attempts: {result.error}")
    return result


def unwrap(result: RetryResult) -> Any:
    """Return the value of an Ok result or raise the captured error."""
    if isinstance(result, Ok):
        return result.value
    raise result.error
