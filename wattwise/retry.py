"""
Bounded exponential-backoff retry for backend calls.

Only rate limits, unparseable responses and network failures are retried.
Anything else (bad credentials, programming errors) propagates on the first
attempt, and the last error is re-raised unchanged once the budget is spent.
"""

import asyncio
import inspect
import json
import logging
from typing import Awaitable, Callable, Optional, TypeVar

import httpx

from .errors import NetworkError, RateLimited, ResponseError


logger = logging.getLogger(__name__)

T = TypeVar("T")

RetryCallback = Callable[[Optional[str]], object]

DEFAULT_BASE_DELAY = 2.0

RATE_LIMIT = "Rate Limit"
PARSE_ERROR = "Parse Error"
NETWORK_ERROR = "Network Error"


def _status_code(exc: BaseException) -> Optional[int]:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    return getattr(exc, "status_code", None)


def classify_failure(exc: BaseException) -> Optional[str]:
    """Return the retryable failure category for ``exc``, or None."""
    message = str(exc).lower()
    if (
        isinstance(exc, RateLimited)
        or _status_code(exc) == 429
        or "rate limit" in message
        or "rate_limit_exceeded" in message
    ):
        return RATE_LIMIT
    if isinstance(exc, (ResponseError, json.JSONDecodeError)):
        return PARSE_ERROR
    if isinstance(exc, (NetworkError, httpx.TransportError, ConnectionError, asyncio.TimeoutError)):
        return NETWORK_ERROR
    return None


async def _notify(on_retry: Optional[RetryCallback], message: Optional[str]) -> None:
    if on_retry is None:
        return
    result = on_retry(message)
    if inspect.isawaitable(result):
        await result


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    max_retries: int,
    base_delay: float = DEFAULT_BASE_DELAY,
    on_retry: Optional[RetryCallback] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run ``fn`` with up to ``max_retries`` re-attempts after the first call.

    Args:
        fn: Zero-argument coroutine function performing one full attempt
        max_retries: Number of re-attempts allowed after the first attempt
        base_delay: Seconds to wait before the first re-attempt; doubles after each
        on_retry: Receives None when a re-attempt starts and a status message
            when a retryable failure is about to be retried
        sleep: Awaitable delay function

    Returns:
        Whatever ``fn`` returns on its first successful attempt
    """
    delay = base_delay
    attempt = 1
    retries_left = max(0, max_retries)

    while True:
        if attempt > 1:
            await _notify(on_retry, None)
        try:
            return await fn()
        except Exception as e:
            category = classify_failure(e)
            if category is None or retries_left <= 0:
                raise

            message = f"Attempt {attempt} failed ({category}). Retrying in {delay:g}s..."
            logger.warning("%s Cause: %s", message, e)
            await _notify(on_retry, message)

            await sleep(delay)
            delay *= 2
            retries_left -= 1
            attempt += 1
