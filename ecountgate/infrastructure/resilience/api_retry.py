"""Exponential backoff for transient upstream failures.

with_retry() resubmits an async call when should_retry() classifies the
failure as transient (5xx, timeout, network failure). Delays grow
exponentially, are capped, and carry a small random jitter. After the last
attempt the original error is re-raised unchanged.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import httpx

# Domain Layer Imports
from ecountgate.domain.errors import GateError, TransportError
from ecountgate.domain.events.api_events import RetryScheduled, dispatch_event

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryConfig:
    """Backoff parameters. max_attempts counts retries, not the first try."""
    max_attempts: int = 3
    initial_delay_ms: int = 2000
    multiplier: float = 2
    max_delay_ms: int = 8000
    jitter_factor: float = 0.1


@dataclass(frozen=True)
class RetryContext:
    attempt: int          # 1-based number of the attempt that just failed
    max_attempts: int
    delay_ms: int
    error: BaseException


ShouldRetry = Callable[[BaseException, RetryContext], bool]
OnRetry = Callable[[RetryContext], Any]


def calculate_delay(attempt: int, config: RetryConfig) -> int:
    """Delay in ms after the given failed attempt (1-based)."""
    base_delay = config.initial_delay_ms * (config.multiplier ** (attempt - 1))
    capped_delay = min(base_delay, config.max_delay_ms)
    jitter_range = capped_delay * config.jitter_factor
    jitter = random.uniform(-jitter_range, jitter_range)
    return int(round(capped_delay + jitter))


async def with_retry(
    fn: Callable[[], Awaitable[Any]],
    should_retry: ShouldRetry,
    config: Optional[RetryConfig] = None,
    on_retry: Optional[OnRetry] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    endpoint: Optional[str] = None,
) -> Any:
    """Runs fn, retrying transient failures with exponential backoff.

    Args:
        fn: Zero-argument coroutine function to run.
        should_retry: Decides, per failure, whether another attempt is made.
        config: Backoff parameters (defaults to RetryConfig()).
        on_retry: Called with the RetryContext before each backoff sleep.
        sleep: Coroutine used for backoff waits, in seconds.
        endpoint: Label for logs and events.

    Returns:
        The result of the first successful attempt.

    Raises:
        Exception: The last error, when it is not retryable or the attempts
            are exhausted.
    """
    config = config or RetryConfig()
    total_attempts = config.max_attempts + 1

    for attempt in range(1, total_attempts + 1):
        try:
            return await fn()
        except Exception as e:
            if attempt >= total_attempts:
                logger.warning(f"All {total_attempts} attempts failed for {endpoint or 'call'}: {e}")
                raise

            delay_ms = calculate_delay(attempt, config)
            context = RetryContext(attempt=attempt, max_attempts=config.max_attempts, delay_ms=delay_ms, error=e)
            if not should_retry(e, context):
                raise

            if on_retry is not None:
                on_retry(context)
            logger.info(
                f"Transient error on attempt {attempt}/{total_attempts} for {endpoint or 'call'}: "
                f"{type(e).__name__}. Retrying in {delay_ms}ms..."
            )
            dispatch_event(RetryScheduled(attempt_number=attempt, delay_ms=delay_ms, error_type=type(e).__name__, endpoint=endpoint))
            await sleep(delay_ms / 1000)

    raise RuntimeError("unreachable: retry loop exited without result")


# --- Transient error classification ---

def is_timeout_error(error: BaseException) -> bool:
    if isinstance(error, GateError):
        return error.code == "TIMEOUT"
    return isinstance(error, (asyncio.TimeoutError, httpx.TimeoutException))


def is_network_error(error: BaseException) -> bool:
    if isinstance(error, TransportError):
        return error.code == "NETWORK_ERROR"
    if isinstance(error, httpx.TimeoutException):
        return False
    return isinstance(error, (httpx.TransportError, ConnectionError))


def is_transient_error(error: BaseException, context: Optional[RetryContext] = None) -> bool:
    """True for 5xx responses, timeouts and network failures.

    Rate-limit, validation, auth (including session expiry) and error
    budget errors are never transient; they have their own handling.
    """
    if isinstance(error, TransportError) and error.status_code is not None:
        return 500 <= error.status_code < 600
    return is_timeout_error(error) or is_network_error(error)
