"""Retry executor with exponential backoff

Wraps calls to external billing APIs with tenacity. Retryable failures
(network errors, timeouts, HTTP 429/5xx) are retried with bounded
exponential backoff and ±25% jitter; anything else is re-raised on the first failure.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field, replace
from typing import Awaitable, Callable, Dict, TypeVar

import httpx
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

logger = logging.getLogger(__name__)

T = TypeVar("T")

JITTER_RATIO = 0.25

_STATUS_ATTRIBUTES = ("status_code", "http_status", "status")


def is_retryable_error(error: BaseException) -> bool:
    """
    Default retry classifier

    Retryable:
    - connection reset / refused, timeouts
    - errors flagged with ``retryable = True`` (e.g. ProviderTransient)
    - errors exposing an HTTP status of 429 or >= 500
    """
    flagged = getattr(error, "retryable", None)
    if flagged is not None:
        return bool(flagged)

    if isinstance(error, (ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return True

    if isinstance(error, (httpx.TimeoutException, httpx.TransportError)):
        return True

    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return status == 429 or status >= 500

    for attribute in _STATUS_ATTRIBUTES:
        status = getattr(error, attribute, None)
        if isinstance(status, int):
            return status == 429 or status >= 500

    return False


@dataclass(frozen=True)
class RetryConfig:
    """
    Retry policy

    Worst-case added latency is bounded by roughly max_retries * max_delay * 1.25.
    """

    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0
    is_retryable: Callable[[BaseException], bool] = field(default=is_retryable_error)
    label: str = "operation"

    def with_label(self, label: str) -> "RetryConfig":
        return replace(self, label=label)


def compute_delay(config: RetryConfig, attempt: int) -> float:
    """Backoff delay in seconds for a zero-based attempt, jitter included"""
    delay = min(config.initial_delay * (config.backoff_multiplier ** attempt), config.max_delay)
    jitter = delay * JITTER_RATIO * (random.random() * 2 - 1)
    return max(0.0, delay + jitter)


def _backoff(config: RetryConfig) -> Callable[[RetryCallState], float]:
    def wait(retry_state: RetryCallState) -> float:
        return compute_delay(config, retry_state.attempt_number - 1)

    return wait


def _log_retry(config: RetryConfig) -> Callable[[RetryCallState], None]:
    def before_sleep(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception()
        logger.warning(
            f"{config.label} attempt {retry_state.attempt_number}/{config.max_retries + 1} failed "
            f"({type(error).__name__}), retrying in {retry_state.next_action.sleep * 1000:.0f}ms"
        )

    return before_sleep


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    config: RetryConfig = RetryConfig(),
) -> T:
    """
    Execute an async callable with retry logic

    Args:
        fn: Zero-argument coroutine factory; called once per attempt
        config: Retry policy

    Returns:
        Whatever fn returns on its first successful attempt

    Raises:
        The last error once retries are exhausted, or immediately when the
        error is not retryable.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(config.max_retries + 1),
        wait=_backoff(config),
        retry=retry_if_exception(config.is_retryable),
        before_sleep=_log_retry(config),
        sleep=asyncio.sleep,
        reraise=True,
    )
    try:
        return await retrying(fn)
    except Exception as e:
        logger.error(
            f"{config.label} failed after {retrying.statistics.get('attempt_number', 1)} attempt(s): "
            f"{type(e).__name__}: {e}"
        )
        raise


RETRY_CONFIGS: Dict[str, RetryConfig] = {
    # Card processor: standard backoff
    "stripe": RetryConfig(max_retries=3, initial_delay=1.0, label="stripe"),
    # Marketplace billing API: leaky-bucket limited, same budget
    "shopify": RetryConfig(max_retries=3, initial_delay=1.0, label="shopify"),
    # Latency-sensitive paths answering a provider webhook
    "webhook_ack": RetryConfig(max_retries=1, initial_delay=0.25, max_delay=1.0, label="webhook_ack"),
    # Best-effort background re-sync
    "sync": RetryConfig(max_retries=5, initial_delay=2.0, max_delay=30.0, label="sync"),
}
