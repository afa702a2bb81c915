"""
Retry Logic — surviving transient model API failures.

Model calls fail: networks drop, rate limits hit, the API is briefly
overloaded. Transient failures are retried with exponential backoff and
jitter; everything else is raised immediately so the caller can turn it into
a ModelUnavailableError.
"""

from __future__ import annotations

import asyncio
import random
from typing import Any, Awaitable, Callable, Optional

import anthropic
import structlog

logger = structlog.get_logger(__name__)

# Status codes worth another attempt: rate limit, server errors, overload.
RETRYABLE_STATUS_CODES = frozenset({408, 409, 429, 500, 502, 503, 504, 529})


class RetryConfig:
    """Backoff parameters for model calls."""

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 0.5,
        max_delay: float = 8.0,
        exponential_base: float = 2.0,
        jitter_range: float = 0.25,
    ):
        self.max_retries = max(0, int(max_retries))
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter_range = jitter_range


def is_retryable_error(error: Exception) -> bool:
    """
    Decide whether an error is transient.

    Rate limits, 5xx responses, timeouts and connection failures are retried.
    Authentication, permission and bad-request errors are not: repeating the
    same request cannot fix them.
    """
    if isinstance(error, (anthropic.RateLimitError, anthropic.InternalServerError)):
        return True
    if isinstance(error, anthropic.APIStatusError):
        return error.status_code in RETRYABLE_STATUS_CODES
    if isinstance(error, (anthropic.APIConnectionError, anthropic.APITimeoutError)):
        return True
    if isinstance(error, (ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return True
    return False


def _retry_after_seconds(error: Exception) -> Optional[float]:
    response = getattr(error, "response", None)
    if response is None:
        return None
    try:
        value = response.headers.get("retry-after")
    except AttributeError:
        return None
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def compute_delay(
    attempt: int,
    config: RetryConfig,
    retry_after: Optional[float] = None,
) -> float:
    """
    Delay before retry number ``attempt + 1``.

        delay = min(max_delay, base_delay * exponential_base ** attempt) ± jitter

    A server-provided Retry-After wins, capped at max_delay.
    """
    if retry_after is not None and retry_after > 0:
        return min(retry_after, config.max_delay)

    delay = min(config.base_delay * (config.exponential_base ** attempt), config.max_delay)
    jitter = delay * config.jitter_range * (2 * random.random() - 1)
    return max(0.0, delay + jitter)


async def with_retries(
    func: Callable[[], Awaitable[Any]],
    config: Optional[RetryConfig] = None,
    on_retry: Optional[Callable[[int, Exception, float], Any]] = None,
) -> Any:
    """
    Run ``func`` (a zero-argument coroutine factory) with retries.

    Raises the last error once retries are exhausted, or the first
    non-retryable error immediately.
    """
    if config is None:
        config = RetryConfig()

    attempt = 0
    while True:
        try:
            return await func()
        except Exception as e:
            if not is_retryable_error(e):
                logger.error(
                    "retry.non_retryable_error",
                    error_type=type(e).__name__,
                    error=str(e)[:200],
                    attempt=attempt,
                )
                raise
            if attempt >= config.max_retries:
                logger.error(
                    "retry.exhausted",
                    error_type=type(e).__name__,
                    error=str(e)[:200],
                    total_attempts=attempt + 1,
                )
                raise

            delay = compute_delay(attempt, config, _retry_after_seconds(e))
            attempt += 1
            logger.warning(
                "retry.attempt",
                error_type=type(e).__name__,
                attempt=attempt,
                max_retries=config.max_retries,
                delay_seconds=round(delay, 2),
            )
            if on_retry:
                on_retry(attempt, e, delay)
            await asyncio.sleep(delay)
