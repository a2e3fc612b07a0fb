"""Retry manager bounds, backoff schedule, and short-circuiting."""

import pytest

from teampay.common.errors import ProcessorError
from teampay.common.retry import PaymentRetryManager, RetryOptions, retry_operation


class Operation:
    """Async callable that fails `failures` times with `error`, then returns 'ok'."""

    def __init__(self, error: Exception, failures: int) -> None:
        self.error = error
        self.failures = failures
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


def manager(sleeps, **options) -> PaymentRetryManager:
    async def fake_sleep(delay):
        sleeps.append(delay)

    return PaymentRetryManager(RetryOptions(**options), sleep=fake_sleep)


@pytest.mark.asyncio
async def test_always_retryable_failure_runs_exactly_max_attempts():
    sleeps: list[float] = []
    error = ProcessorError(status_code=503)
    op = Operation(error, failures=99)

    with pytest.raises(ProcessorError) as excinfo:
        await manager(sleeps).execute_with_retry(op)

    assert excinfo.value is error
    assert op.calls == 3
    assert sleeps == [1.0, 2.0]


@pytest.mark.asyncio
async def test_non_retryable_failure_runs_once():
    sleeps: list[float] = []
    op = Operation(ProcessorError(status_code=400, error_code="CARD_TOKEN_EXPIRED"), failures=99)

    with pytest.raises(ProcessorError):
        await manager(sleeps).execute_with_retry(op)

    assert op.calls == 1
    assert sleeps == []


@pytest.mark.asyncio
async def test_card_declined_is_retried_up_to_the_bound():
    sleeps: list[float] = []
    op = Operation(ProcessorError(status_code=402, error_code="CARD_DECLINED"), failures=99)

    with pytest.raises(ProcessorError):
        await manager(sleeps, max_attempts=4).execute_with_retry(op)

    assert op.calls == 4


@pytest.mark.asyncio
async def test_success_after_transient_failures_resets_state():
    sleeps: list[float] = []
    retries: list[int] = []
    mgr = manager(sleeps)
    op = Operation(ProcessorError(status_code=500), failures=2)

    result = await mgr.execute_with_retry(op, on_retry=lambda attempt, exc: retries.append(attempt))

    assert result == "ok"
    assert op.calls == 3
    assert retries == [1, 2]
    assert mgr.get_retry_state().attempt == 0


def test_delay_is_exponential_and_capped():
    mgr = PaymentRetryManager(RetryOptions(base_delay=1.0, backoff_multiplier=2, max_delay=10.0))

    assert [mgr.calculate_delay(k) for k in range(1, 7)] == [1.0, 2.0, 4.0, 8.0, 10.0, 10.0]


@pytest.mark.asyncio
async def test_sleep_schedule_follows_backoff_with_cap():
    sleeps: list[float] = []
    op = Operation(ProcessorError(status_code=503), failures=99)

    with pytest.raises(ProcessorError):
        await manager(sleeps, max_attempts=6, base_delay=1.0, max_delay=5.0).execute_with_retry(op)

    assert sleeps == [1.0, 2.0, 4.0, 5.0, 5.0]


def test_retry_state_and_reset():
    mgr = PaymentRetryManager(RetryOptions(max_attempts=3))
    mgr.current_attempt = 3

    state = mgr.get_retry_state()
    assert state.can_retry is False
    assert state.total_attempts == 3
    assert state.next_retry_delay == 4.0

    mgr.reset()
    assert mgr.get_retry_state().can_retry is True


@pytest.mark.asyncio
async def test_retry_operation_one_shot():
    op = Operation(ProcessorError(status_code=400, error_code="CARD_TOKEN_USED"), failures=0)

    assert await retry_operation(op, max_attempts=2) == "ok"
