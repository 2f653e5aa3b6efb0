"""Polling state machine for long-running backend operations."""

import pytest

from promoreel.errors import PollTimeoutError, TerminalBackendError, TransientBackendError
from promoreel.services.polling import OperationState, PollStatus, poll_operation


class Sleeps:
    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


def scripted(*states, error=None, transient=False):
    """A check() that walks through ``states`` and counts its calls."""
    remaining = list(states)
    seen = []

    async def check(handle):
        seen.append(handle)
        state = remaining.pop(0) if remaining else states[-1]
        return PollStatus(
            state,
            {"checks": len(seen)},
            error=error if state is OperationState.FAILED else None,
            transient=transient,
        )

    check.seen = seen
    return check


@pytest.mark.asyncio
async def test_succeeds_after_pending_checks():
    sleeps = Sleeps()
    check = scripted(OperationState.POLLING, OperationState.POLLING, OperationState.SUCCEEDED)

    outcome = await poll_operation("op-1", {"checks": 0}, check, interval=5, max_attempts=10, sleep=sleeps)

    assert outcome.state is OperationState.SUCCEEDED
    assert outcome.attempts == 3
    assert outcome.handle == {"checks": 3}
    assert sleeps.calls == [5, 5]


@pytest.mark.asyncio
async def test_immediate_success_never_sleeps():
    sleeps = Sleeps()
    outcome = await poll_operation(
        "op-2", {}, scripted(OperationState.SUCCEEDED), interval=5, max_attempts=3, sleep=sleeps
    )
    assert outcome.attempts == 1
    assert sleeps.calls == []


@pytest.mark.asyncio
async def test_reported_failure_is_terminal():
    check = scripted(OperationState.POLLING, OperationState.FAILED, error="content filtered")
    with pytest.raises(TerminalBackendError, match="content filtered") as exc_info:
        await poll_operation("op-3", {}, check, interval=1, max_attempts=5, sleep=Sleeps())
    assert not isinstance(exc_info.value, PollTimeoutError)


@pytest.mark.asyncio
async def test_transient_failure_is_retryable():
    check = scripted(OperationState.FAILED, error="backend overloaded", transient=True)
    with pytest.raises(TransientBackendError, match="overloaded"):
        await poll_operation("op-4", {}, check, interval=1, max_attempts=5, sleep=Sleeps())


@pytest.mark.asyncio
async def test_times_out_after_max_attempts():
    sleeps = Sleeps()
    check = scripted(OperationState.POLLING)

    with pytest.raises(PollTimeoutError) as exc_info:
        await poll_operation("op-5", {}, check, interval=2, max_attempts=4, sleep=sleeps)

    assert exc_info.value.attempts == 4
    assert exc_info.value.operation == "op-5"
    assert isinstance(exc_info.value, TerminalBackendError)
    assert len(check.seen) == 4
    assert sleeps.calls == [2, 2, 2]
