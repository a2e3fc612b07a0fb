"""Bounded exponential-backoff retry around a single processor call.

Retrying a charge is only safe because every attempt reuses the same
idempotency key; the processor deduplicates an attempt that already succeeded
server-side.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from teampay.common.logging import logger
from teampay.common.metrics import retries_total
from teampay.services.provider_adapter.errors import is_retryable_error


T = TypeVar("T")


@dataclass(frozen=True)
class RetryOptions:
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0


@dataclass(frozen=True)
class RetryState:
    attempt: int
    can_retry: bool
    next_retry_delay: float
    total_attempts: int


DEFAULT_RETRY_OPTIONS = RetryOptions()


class PaymentRetryManager:
    """Runs one charge attempt sequence; use one instance per in-flight payment."""

    def __init__(
        self,
        options: RetryOptions = DEFAULT_RETRY_OPTIONS,
        is_retryable: Callable[[BaseException], bool] = is_retryable_error,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        service_name: str = "teampay-api",
    ) -> None:
        self.options = options
        self.is_retryable = is_retryable
        self.sleep = sleep
        self.service_name = service_name
        self.current_attempt = 0
        self.last_error: BaseException | None = None

    def calculate_delay(self, attempt: int) -> float:
        """Backoff before the attempt following `attempt`, capped at `max_delay`."""

        delay = self.options.base_delay * self.options.backoff_multiplier ** (attempt - 1)
        return min(delay, self.options.max_delay)

    def should_retry(self, error: BaseException) -> bool:
        self.last_error = error
        if self.current_attempt >= self.options.max_attempts:
            return False
        return self.is_retryable(error)

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        on_retry: Callable[[int, BaseException], None] | None = None,
    ) -> T:
        """Await `operation` until it succeeds, fails terminally, or attempts run out."""

        self.current_attempt = 0
        while True:
            self.current_attempt += 1
            try:
                result = await operation()
            except Exception as exc:
                logger.warning(
                    "payment attempt failed attempt=%s/%s error=%s",
                    self.current_attempt,
                    self.options.max_attempts,
                    type(exc).__name__,
                )
                if not self.should_retry(exc):
                    raise

                delay = self.calculate_delay(self.current_attempt)
                retries_total.labels(service=self.service_name, dependency="square").inc()
                logger.info(
                    "retrying payment delay_s=%s next_attempt=%s/%s",
                    delay,
                    self.current_attempt + 1,
                    self.options.max_attempts,
                )
                if on_retry is not None:
                    on_retry(self.current_attempt, exc)
                await self.sleep(delay)
                continue

            self.current_attempt = 0
            return result

    def get_retry_state(self) -> RetryState:
        """Snapshot for progress feedback while a sequence is running."""

        return RetryState(
            attempt=self.current_attempt,
            can_retry=self.current_attempt < self.options.max_attempts,
            next_retry_delay=self.calculate_delay(max(1, self.current_attempt)),
            total_attempts=self.options.max_attempts,
        )

    def reset(self) -> None:
        self.current_attempt = 0
        self.last_error = None


async def retry_operation(operation: Callable[[], Awaitable[T]], **options) -> T:
    """One-shot helper: retry `operation` with `RetryOptions(**options)`."""

    manager = PaymentRetryManager(RetryOptions(**options))
    return await manager.execute_with_retry(operation)
