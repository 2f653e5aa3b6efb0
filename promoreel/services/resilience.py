"""Retry-with-backoff executor shared by every backend call.

Wraps tenacity's AsyncRetrying with a classification step: an error is
retried only when one of the policy's ``retryable_errors`` patterns appears
(case-insensitively) in its message or category. Terminal backend errors
and missing resources are never retried.

Usage:
    from promoreel.services.resilience import execute, policy_for

    result = await execute(lambda attempt: backend.call(request),
                           policy_for("gemini"))
"""

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, TypeVar

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
)
from tenacity.wait import wait_base

from promoreel.config import RetryPolicy, Settings, settings as default_settings
from promoreel.errors import ResourceMissingError, TerminalBackendError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Upper bound (exclusive) of the multiplicative jitter applied to each delay
JITTER_CEILING = 0.3


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------
def error_category(exc: BaseException) -> str:
    """Collect the classification hints an exception carries.

    Looks at an explicit ``category`` attribute, an HTTP ``status_code``,
    and vendor ``code``/``status`` fields (google-genai APIError), then adds
    a category derived from the httpx exception class where one applies.
    """
    parts: list[str] = []
    for attr in ("category", "status_code", "code", "status"):
        value = getattr(exc, attr, None)
        if value is not None and not callable(value):
            parts.append(str(value))

    if isinstance(exc, httpx.HTTPStatusError):
        parts.append(str(exc.response.status_code))
    if isinstance(exc, (httpx.TimeoutException, TimeoutError, asyncio.TimeoutError)):
        parts.append("timeout")
    elif isinstance(exc, (httpx.NetworkError, ConnectionError)):
        parts.append("connection reset")

    return " ".join(parts)


def is_retryable(exc: BaseException, policy: RetryPolicy) -> bool:
    """Return True if ``exc`` matches one of the policy's retryable patterns."""
    if isinstance(exc, (TerminalBackendError, ResourceMissingError)):
        return False
    haystack = f"{exc} {error_category(exc)}".lower()
    return any(pattern.lower() in haystack for pattern in policy.retryable_errors)


# ---------------------------------------------------------------------------
# Backoff
# ---------------------------------------------------------------------------
def compute_delay(
    attempt: int, policy: RetryPolicy, jitter: Optional[float] = None
) -> float:
    """Delay before the attempt following ``attempt`` (1-based), in seconds.

    ``min(initial * multiplier**(attempt-1) * (1 + jitter), max_delay)`` with
    jitter drawn uniformly from [0, 0.3) unless given.
    """
    if jitter is None:
        jitter = random.random() * JITTER_CEILING
    base = policy.initial_delay * policy.backoff_multiplier ** (attempt - 1)
    return min(base * (1 + jitter), policy.max_delay)


class wait_policy_backoff(wait_base):
    """tenacity wait strategy driven by a RetryPolicy."""

    def __init__(self, policy: RetryPolicy):
        self.policy = policy

    def __call__(self, retry_state: RetryCallState) -> float:
        return compute_delay(retry_state.attempt_number, self.policy)


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------
async def execute(
    operation: Callable[[int], Awaitable[T]],
    policy: RetryPolicy,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``operation`` with retries according to ``policy``.

    Args:
        operation: Async callable receiving the 1-based attempt number.
        policy: Thresholds and retryable patterns for the backend.
        sleep: Awaitable used between attempts (tests pass a no-op).

    Returns:
        Whatever ``operation`` returns on its first successful attempt.

    Raises:
        The last error when it is not retryable or after
        ``policy.max_retries + 1`` attempts.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_retries + 1),
        wait=wait_policy_backoff(policy),
        retry=retry_if_exception(lambda exc: is_retryable(exc, policy)),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        sleep=sleep,
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            result = await operation(attempt.retry_state.attempt_number)
    return result


def policy_for(backend: str, settings: Optional[Settings] = None) -> RetryPolicy:
    """Return the retry policy configured for ``backend`` (or the default)."""
    settings = settings or default_settings
    return getattr(settings.retry, backend, None) or settings.retry.default
