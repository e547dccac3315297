"""Bounded exponential-backoff retry for ledger calls."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Tuple, Type, TypeVar

from .errors import TransientError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt budget and base delay (seconds) for one call site."""

    max_attempts: int = 3
    base_delay: float = 1.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must not be negative")

    def delay_before(self, attempt: int) -> float:
        """Delay preceding *attempt* (1-based): ``base * 2 ** (attempt - 2)``."""

        if attempt <= 1:
            return 0.0
        return self.base_delay * 2 ** (attempt - 2)

    def total_delay(self) -> float:
        return sum(self.delay_before(attempt) for attempt in range(2, self.max_attempts + 1))


class RetryExecutor:
    """Run operations under a :class:`RetryPolicy`.

    The executor is stateless apart from its ``sleep`` function, which tests
    replace to observe delays without waiting. Whether a failure is worth
    retrying is decided by its type: only instances of ``retry_on`` are
    retried, everything else propagates on the spot. When the last attempt
    fails the original exception is re-raised as is.
    """

    def __init__(self, sleep: Callable[[float], None] = time.sleep) -> None:
        self._sleep = sleep

    def execute(
        self,
        operation: Callable[[], T],
        policy: RetryPolicy,
        *,
        retry_on: Tuple[Type[BaseException], ...] = (TransientError,),
        description: str = "operation",
    ) -> T:
        attempt = 1
        while True:
            try:
                return operation()
            except retry_on as exc:
                if attempt >= policy.max_attempts:
                    logger.error(
                        "%s failed after %d attempt(s): %s", description, attempt, exc
                    )
                    raise
                attempt += 1
                delay = policy.delay_before(attempt)
                logger.warning(
                    "%s failed (%s); retrying in %.1fs (attempt %d/%d)",
                    description,
                    exc,
                    delay,
                    attempt,
                    policy.max_attempts,
                )
                self._sleep(delay)


def retry_call(
    operation: Callable[[], T],
    policy: RetryPolicy,
    *,
    retry_on: Tuple[Type[BaseException], ...] = (TransientError,),
    description: str = "operation",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Functional shortcut for :meth:`RetryExecutor.execute`."""

    return RetryExecutor(sleep=sleep).execute(
        operation, policy, retry_on=retry_on, description=description
    )
