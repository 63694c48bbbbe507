"""Exponential backoff with jitter, shared by every I/O boundary."""

from __future__ import annotations

import random
import time
from dataclasses import dataclass, field
from typing import Callable, TypeVar

from ..config import RetryConfig
from ..errors import DeadlineExceeded

T = TypeVar("T")

RetryPredicate = Callable[[Exception], bool]
FailureHook = Callable[[Exception, int], None]


@dataclass
class RetryPolicy:
    """Retry an operation up to ``max_attempts`` times.

    The wait before retry ``n`` (1-based) is
    ``min(base_delay * 2 ** (n - 1) + uniform(0, jitter), max_delay)``.

    When a ``deadline`` (an absolute reading of ``clock``) is supplied, each
    attempt's timeout is capped to the remaining time, and the policy raises
    :class:`DeadlineExceeded` as soon as the remaining time cannot cover the
    next wait, instead of sleeping past it.
    """

    max_attempts: int = 6
    base_delay: float = 1.0
    max_delay: float = 12.0
    jitter: float = 0.5
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)
    rng: random.Random = field(default_factory=random.Random, repr=False)

    @classmethod
    def from_config(cls, config: RetryConfig, **overrides) -> "RetryPolicy":
        return cls(
            max_attempts=config.max_attempts,
            base_delay=config.base_delay,
            max_delay=config.max_delay,
            jitter=config.jitter,
            **overrides,
        )

    def backoff(self, attempt: int) -> float:
        base = self.base_delay * (2 ** (attempt - 1))
        jitter = self.rng.uniform(0, self.jitter) if self.jitter > 0 else 0.0
        return min(base + jitter, self.max_delay)

    def max_total_wait(self, attempts: int | None = None) -> float:
        """Upper bound on cumulative sleep across ``attempts`` attempts."""

        count = (attempts or self.max_attempts) - 1
        return sum(
            min(self.base_delay * (2 ** (n - 1)) + self.jitter, self.max_delay)
            for n in range(1, count + 1)
        )

    def call(
        self,
        operation: Callable[[float | None], T],
        *,
        timeout: float | None = None,
        deadline: float | None = None,
        retry_on: RetryPredicate | None = None,
        on_failure: FailureHook | None = None,
    ) -> T:
        """Run ``operation(attempt_timeout)`` until it succeeds or attempts run out.

        The last error is re-raised once attempts are exhausted or when
        ``retry_on`` rejects it.
        """

        last_error: Exception | None = None
        for attempt in range(1, self.max_attempts + 1):
            attempt_timeout = timeout
            if deadline is not None:
                remaining = deadline - self.clock()
                if remaining <= 0:
                    raise DeadlineExceeded(
                        f"Deadline exceeded before attempt {attempt}"
                    ) from last_error
                attempt_timeout = remaining if timeout is None else min(timeout, remaining)
            try:
                return operation(attempt_timeout)
            except Exception as exc:  # noqa: BLE001
                last_error = exc
                if on_failure is not None:
                    on_failure(exc, attempt)
                if retry_on is not None and not retry_on(exc):
                    raise
                if attempt >= self.max_attempts:
                    raise
            wait = self.backoff(attempt)
            if deadline is not None and self.clock() + wait >= deadline:
                raise DeadlineExceeded(
                    f"Deadline would expire during backoff after attempt {attempt}"
                ) from last_error
            self.sleep(wait)
        raise AssertionError("unreachable")  # pragma: no cover


__all__ = ["RetryPolicy"]
