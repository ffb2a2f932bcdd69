"""Retry logic with exponential backoff for remote service calls.

This module provides a decorator for automatic retry of transient failures
(embedding service hiccups during ingestion) with exponential backoff and
jitter.
"""

import asyncio
import functools
import inspect
import logging
import random
import time
from typing import Any, Callable, Set, Type, TypeVar, cast

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

# HTTP status codes that should trigger retry
RETRYABLE_STATUS_CODES: Set[int] = {
    429,  # Rate limit
    500,  # Server error
    502,  # Bad gateway
    503,  # Service unavailable
}

# HTTP status codes that should NOT trigger retry
NON_RETRYABLE_STATUS_CODES: Set[int] = {
    400,  # Bad request
    401,  # Unauthorized
    403,  # Forbidden
    404,  # Not found (e.g. embedding model not pulled)
    422,  # Unprocessable entity
}

# Retry configuration
MAX_RETRIES = 3
BASE_DELAY = 1.0  # seconds
MAX_JITTER = 0.5  # seconds


def retry_with_backoff(
    max_retries: int = MAX_RETRIES,
    base_delay: float = BASE_DELAY,
    max_jitter: float = MAX_JITTER,
    retryable_exceptions: tuple[Type[Exception], ...] = (Exception,),
) -> Callable[[F], F]:
    """Decorator that retries a function with exponential backoff.

    Retries on 429/500/502/503 responses and on network timeouts and
    connection errors. Does NOT retry on 400/401/403/404/422.

    Args:
        max_retries: Maximum number of retry attempts (default: 3)
        base_delay: Base delay in seconds for exponential backoff (default: 1.0)
        max_jitter: Maximum random jitter in seconds (default: 0.5)
        retryable_exceptions: Tuple of exception types to retry

    Returns:
        Decorated function with retry logic
    """

    def decorator(func: F) -> F:
        def _next_delay(attempt: int, error: Exception) -> float | None:
            should_retry = _should_retry_exception(error, retryable_exceptions)
            if not should_retry or attempt >= max_retries:
                if attempt >= max_retries:
                    logger.error(
                        f"{func.__name__} failed after {max_retries} retries: {error}"
                    )
                return None

            delay = (base_delay * (2**attempt)) + (random.random() * max_jitter)
            logger.warning(
                f"{func.__name__} attempt {attempt + 1}/{max_retries} failed: {error}. "
                f"Retrying in {delay:.2f}s..."
            )
            return delay

        @functools.wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    delay = _next_delay(attempt, e)
                    if delay is None:
                        raise
                    await asyncio.sleep(delay)
            raise RuntimeError("Unexpected retry loop exit")

        @functools.wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except Exception as e:
                    delay = _next_delay(attempt, e)
                    if delay is None:
                        raise
                    time.sleep(delay)
            raise RuntimeError("Unexpected retry loop exit")

        if inspect.iscoroutinefunction(func):
            return cast(F, async_wrapper)
        return cast(F, sync_wrapper)

    return decorator


def _should_retry_exception(
    exception: Exception, retryable_exceptions: tuple[Type[Exception], ...]
) -> bool:
    """Determine if an exception should trigger a retry.

    Args:
        exception: The exception that was raised
        retryable_exceptions: Tuple of exception types to retry

    Returns:
        True if the exception should trigger retry, False otherwise
    """
    status_code = _extract_status_code(exception)

    if status_code:
        if status_code in NON_RETRYABLE_STATUS_CODES:
            return False
        if status_code in RETRYABLE_STATUS_CODES:
            return True

    exception_str = str(exception).lower()
    network_errors = [
        "timeout",
        "connection",
        "network",
        "timed out",
        "connection reset",
        "connection refused",
    ]

    for error in network_errors:
        if error in exception_str:
            return True

    return isinstance(exception, retryable_exceptions)


def _extract_status_code(exception: Exception) -> int | None:
    """Extract HTTP status code from exception.

    Args:
        exception: Exception that may contain status code

    Returns:
        HTTP status code if found, None otherwise
    """
    status_code = getattr(exception, "status_code", None)
    if isinstance(status_code, int):
        return status_code

    code = getattr(exception, "code", None)
    if isinstance(code, int):
        return code

    # httpx.HTTPStatusError carries the response
    response = getattr(exception, "response", None)
    if response is not None and isinstance(getattr(response, "status_code", None), int):
        return int(response.status_code)

    return None
