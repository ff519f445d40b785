"""
Retry utilities with exponential backoff.

Bounded async retries with jitter for ingest-time embedding calls. The
embedding gateway itself never retries, and the question pipeline does not
retry at all; only document ingest opts in through INGEST_EMBED_RETRY.
"""
import asyncio
import random
import logging
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from apps.rag.errors import UpstreamError

logger = logging.getLogger(__name__)

T = TypeVar('T')


class RetryExhausted(UpstreamError):
    """Raised when all retries have been exhausted."""
    code = 'RETRY_EXHAUSTED'

    def __init__(self, message: str, attempts: int, last_exception: Exception):
        super().__init__(message)
        self.attempts = attempts
        self.last_exception = last_exception


# Retry configuration for embedding generation during ingest
EMBEDDING_RETRY_CONFIG = {
    'max_retries': 2,        # Total 3 attempts (1 initial + 2 retries)
    'initial_backoff': 1.0,  # 1 second
    'backoff_multiplier': 2.0,
    'max_backoff': 10.0,
    'jitter_percent': 0.25,  # ±25%
}


def calculate_backoff(
    attempt: int,
    initial_backoff: float,
    backoff_multiplier: float,
    max_backoff: float,
    jitter_percent: float
) -> float:
    """
    Calculate backoff time with exponential increase and jitter.

    Args:
        attempt: Current retry attempt (0-indexed)
        initial_backoff: Base backoff in seconds
        backoff_multiplier: Exponential multiplier
        max_backoff: Maximum backoff cap
        jitter_percent: Random jitter range (0.25 = ±25%)

    Returns:
        Backoff time in seconds
    """
    backoff = initial_backoff * (backoff_multiplier ** attempt)
    backoff = min(backoff, max_backoff)

    jitter_range = backoff * jitter_percent
    backoff += random.uniform(-jitter_range, jitter_range)

    return max(0.0, backoff)


def is_retriable_error(exception: Exception) -> bool:
    """
    Determine if an exception is retriable.

    Returns True for connection failures, timeouts, 5xx status codes and
    empty responses. Returns False for 4xx errors and malformed responses,
    where another attempt would fail the same way.
    """
    error_msg = str(exception).lower()

    non_retriable_patterns = [
        '400',
        '401',
        '403',
        '404',
        'model not found',
        'invalid',
        'not supported',
    ]
    for pattern in non_retriable_patterns:
        if pattern in error_msg:
            return False

    retriable_patterns = [
        'connect',
        'timed out',
        'timeout',
        'temporarily unavailable',
        '500',
        '502',
        '503',
        '504',
        'overloaded',
        'empty',
    ]
    for pattern in retriable_patterns:
        if pattern in error_msg:
            return True

    return False


async def retry_with_backoff(
    func: Callable[[], Awaitable[T]],
    config: dict,
    exceptions: Tuple[Type[Exception], ...] = (UpstreamError,),
    on_retry: Optional[Callable[[int, Exception, float], None]] = None,
) -> T:
    """
    Await a coroutine factory with retry and exponential backoff.

    Args:
        func: Zero-argument callable returning a new awaitable per attempt
        config: Retry configuration dict
        exceptions: Tuple of exception types to catch
        on_retry: Optional callback(attempt, exception, backoff) called before each retry

    Returns:
        Result of the first successful attempt

    Raises:
        RetryExhausted: If all attempts fail with retriable errors
        Exception: If a non-retriable exception is raised
    """
    max_retries = config['max_retries']
    attempt = 0
    last_exception = None

    while attempt <= max_retries:
        try:
            return await func()
        except exceptions as e:
            last_exception = e

            if not is_retriable_error(e):
                logger.warning(f"Non-retriable error on attempt {attempt + 1}: {e}")
                raise

            if attempt >= max_retries:
                break

            backoff = calculate_backoff(
                attempt,
                config['initial_backoff'],
                config['backoff_multiplier'],
                config['max_backoff'],
                config['jitter_percent']
            )

            logger.warning(
                f"Retriable error on attempt {attempt + 1}/{max_retries + 1}: {e}. "
                f"Retrying in {backoff:.2f}s"
            )

            if on_retry:
                on_retry(attempt, e, backoff)

            await asyncio.sleep(backoff)
            attempt += 1

    raise RetryExhausted(
        f"All {max_retries + 1} attempts failed. Last error: {last_exception}",
        attempts=attempt + 1,
        last_exception=last_exception
    )
