"""Retry utilities for HTTP calls using tenacity.

Examples:
    Retry a records API page fetch with exponential backoff::

        >>> @with_retry(max_attempts=3)
        ... async def fetch_page(url: str) -> dict[str, object]:
        ...     response = await client.get(url)
        ...     response.raise_for_status()
        ...     return response.json()

    Retry only on a domain exception, without the default HTTP set::

        >>> fetch = with_retry(max_attempts=2, exceptions=(TransientNetworkError,))(
        ...     downloader.fetch
        ... )
"""

from collections.abc import Callable
from typing import TypeVar

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

DEFAULT_RETRYABLE: tuple[type[Exception], ...] = (
    httpx.HTTPStatusError,
    httpx.TimeoutException,
    httpx.TransportError,
)

T = TypeVar("T")


def with_retry(
    max_attempts: int = 3,
    min_wait: float = 2,
    max_wait: float = 10,
    exceptions: tuple[type[Exception], ...] | None = None,
    extra_exceptions: tuple[type[Exception], ...] = (),
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator for retrying async functions with exponential backoff.

    Retries on HTTP errors (status errors, timeouts, transport errors) by
    default. Pass ``exceptions`` to replace that set entirely, or
    ``extra_exceptions`` to extend it.

    Args:
        max_attempts: Maximum number of attempts (1 disables retrying).
        min_wait: Minimum wait time between retries in seconds.
        max_wait: Maximum wait time between retries in seconds.
        exceptions: Exception types to retry on instead of the HTTP defaults.
        extra_exceptions: Additional exception types to retry on.

    Returns:
        Decorator that wraps the function with retry logic. The last
        exception is re-raised once attempts are exhausted.
    """
    base = DEFAULT_RETRYABLE if exceptions is None else exceptions
    retryable = (*base, *extra_exceptions)
    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
        retry=retry_if_exception_type(retryable),
        reraise=True,
    )
