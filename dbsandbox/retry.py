"""
Retry utility shared by every provisioning stage.

Each stage (network, container, migration, connection) gets its own
RetryPolicy from the configuration; all of them go through retry_async so the
attempt/backoff/logging behaviour is identical everywhere.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterator, Optional, Tuple, Type, TypeVar

from .errors import RetryExhaustedError, TransientInfraError

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded retry schedule.

    Attributes:
        max_attempts: Total number of attempts, including the first one
        initial_delay: Delay in seconds before the second attempt
        multiplier: Growth factor applied to the delay after every attempt
            (1.0 gives a constant backoff)
        max_delay: Upper bound for a single delay in seconds
    """
    max_attempts: int = 5
    initial_delay: float = 0.5
    multiplier: float = 2.0
    max_delay: float = 10.0

    @classmethod
    def constant(cls, max_attempts: int, delay: float) -> "RetryPolicy":
        return cls(max_attempts=max_attempts, initial_delay=delay, multiplier=1.0, max_delay=delay)

    @classmethod
    def exponential(
        cls,
        max_attempts: int,
        initial_delay: float = 0.5,
        multiplier: float = 2.0,
        max_delay: float = 10.0,
    ) -> "RetryPolicy":
        return cls(
            max_attempts=max_attempts,
            initial_delay=initial_delay,
            multiplier=multiplier,
            max_delay=max_delay,
        )

    def delays(self) -> Iterator[float]:
        """Yield the delay to sleep after each failed attempt but the last."""
        delay = self.initial_delay
        for _ in range(self.max_attempts - 1):
            yield min(delay, self.max_delay)
            delay *= self.multiplier

    def total_delay(self) -> float:
        """Worst-case time spent sleeping between attempts."""
        return sum(self.delays())


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    description: str,
    retry_on: Tuple[Type[BaseException], ...] = (TransientInfraError,),
    logger: Optional[logging.Logger] = None,
) -> T:
    """
    Await operation until it succeeds or the policy runs out of attempts.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt
        policy: Attempt budget and backoff schedule
        description: Human readable name used in logs and errors
        retry_on: Exception types that count as a failed attempt; anything
            else propagates immediately
        logger: Logger for attempt/exhaustion messages

    Returns:
        The value returned by the first successful attempt

    Raises:
        RetryExhaustedError: If every attempt failed with a retryable error
    """
    log = logger if logger is not None else logging.getLogger(__name__)
    delays = policy.delays()
    last_error: Optional[BaseException] = None

    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await operation()
        except retry_on as e:
            last_error = e
            if attempt < policy.max_attempts:
                delay = next(delays)
                log.warning(
                    f"{description} attempt {attempt}/{policy.max_attempts} failed, "
                    f"retrying in {delay:.2f}s: {e}"
                )
                await asyncio.sleep(delay)
            else:
                log.error(f"{description} failed after {policy.max_attempts} attempt(s): {e}")

    raise RetryExhaustedError(description, policy.max_attempts, last_error)
