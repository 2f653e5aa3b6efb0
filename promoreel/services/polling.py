"""Bounded polling of long-running backend operations.

Veo video jobs and Replicate predictions both return a handle that has to be
checked until it settles. ``poll_operation`` drives that as an explicit state
machine (SUBMITTED -> POLLING -> SUCCEEDED | FAILED | TIMED_OUT) with a fixed
interval and a bounded number of checks.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from promoreel.errors import PollTimeoutError, TerminalBackendError, TransientBackendError

logger = logging.getLogger(__name__)

H = TypeVar("H")


class OperationState(str, Enum):
    SUBMITTED = "submitted"
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass
class PollStatus(Generic[H]):
    """One observation of a remote operation.

    ``handle`` is the refreshed vendor object; ``error`` is set only for
    FAILED. A ``transient`` failure (server-side overload) is worth
    resubmitting, so it surfaces as a retryable error.
    """

    state: OperationState
    handle: H
    error: Optional[str] = None
    transient: bool = False


@dataclass
class PollOutcome(Generic[H]):
    state: OperationState
    handle: H
    attempts: int


async def poll_operation(
    name: str,
    handle: H,
    check: Callable[[H], Awaitable[PollStatus[H]]],
    *,
    interval: float,
    max_attempts: int,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> PollOutcome[H]:
    """Poll ``handle`` until it succeeds, fails or runs out of attempts.

    Args:
        name: Operation identifier used in logs and errors.
        handle: Handle returned by the submit call.
        check: Async callable refreshing the handle and classifying it.
        interval: Seconds to wait between checks.
        max_attempts: Maximum number of checks before giving up.
        sleep: Awaitable used between checks.

    Returns:
        PollOutcome in the SUCCEEDED state with the final handle.

    Raises:
        TransientBackendError: The operation failed with a transient error.
        TerminalBackendError: The operation reported failure or cancellation.
        PollTimeoutError: Still processing after ``max_attempts`` checks.
    """
    state = OperationState.SUBMITTED
    attempts = 0

    while attempts < max_attempts:
        if state is OperationState.POLLING:
            await sleep(interval)
        state = OperationState.POLLING
        attempts += 1

        status = await check(handle)
        handle = status.handle

        if status.state is OperationState.SUCCEEDED:
            logger.info(f"Operation {name} succeeded after {attempts} poll(s)")
            return PollOutcome(state=OperationState.SUCCEEDED, handle=handle, attempts=attempts)

        if status.state is OperationState.FAILED:
            logger.warning(f"Operation {name} failed: {status.error}")
            if status.transient:
                raise TransientBackendError(
                    status.error or f"Operation {name} failed", category="503"
                )
            raise TerminalBackendError(
                status.error or f"Operation {name} failed", category="operation-failed"
            )

        logger.debug(f"Operation {name} still processing ({attempts}/{max_attempts})")

    state = OperationState.TIMED_OUT
    logger.warning(f"Operation {name} {state.value} after {attempts} polls")
    raise PollTimeoutError(name, attempts)
