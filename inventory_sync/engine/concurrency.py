"""Self-tuning concurrency limit and timed circuit breaker for image fetches."""

from __future__ import annotations

import random
import time
from collections import deque
from threading import Condition, Lock
from typing import Callable

import structlog

from ..config import BreakerConfig, ConcurrencyConfig


class CircuitBreaker:
    """Open for a fixed cooldown once overload signals pile up.

    Signals are kept in a timestamped sliding window. The breaker opens when
    the most recent ``sample_size`` signals inside the window number at least
    ``threshold``. It closes again purely by time; there is no half-open trial call.
    """

    def __init__(
        self,
        window_seconds: float = 120.0,
        sample_size: int = 30,
        threshold: int = 8,
        cooldown_seconds: float = 15.0,
        max_tracked: int = 200,
        clock: Callable[[], float] = time.monotonic,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.window_seconds = window_seconds
        self.sample_size = sample_size
        self.threshold = threshold
        self.cooldown_seconds = cooldown_seconds
        self.clock = clock
        self.logger = logger or structlog.get_logger("inventory_sync.breaker")
        self._signals: deque[float] = deque(maxlen=max_tracked)
        self._open_until = 0.0
        self._lock = Lock()

    @classmethod
    def from_config(cls, config: BreakerConfig, **overrides) -> "CircuitBreaker":
        return cls(
            window_seconds=config.window_seconds,
            sample_size=config.sample_size,
            threshold=config.threshold,
            cooldown_seconds=config.cooldown_seconds,
            max_tracked=config.max_tracked,
            **overrides,
        )

    def record(self) -> bool:
        """Record one overload signal; return True if this opened the breaker."""

        with self._lock:
            now = self.clock()
            self._signals.append(now)
            self._prune(now)
            recent = min(len(self._signals), self.sample_size)
            if recent >= self.threshold and now >= self._open_until:
                self._open_until = now + self.cooldown_seconds
                self.logger.warning(
                    "breaker_opened",
                    recent_signals=recent,
                    cooldown_seconds=self.cooldown_seconds,
                )
                return True
            return False

    def is_open(self) -> bool:
        with self._lock:
            return self.clock() < self._open_until

    def recent_signals(self) -> int:
        with self._lock:
            self._prune(self.clock())
            return min(len(self._signals), self.sample_size)

    def _prune(self, now: float) -> None:
        horizon = now - self.window_seconds
        while self._signals and self._signals[0] < horizon:
            self._signals.popleft()


class AdaptiveConcurrencyController:
    """Shared limit read before every dispatch, nudged by fetch outcomes.

    One controller belongs to one sync run. Worker threads call
    :meth:`acquire`/:meth:`release` around each task, :meth:`record_success`
    on a successful image fetch and :meth:`record_overload` on every
    timeout or overload status.
    """

    def __init__(
        self,
        initial: int = 3,
        floor: int = 1,
        ceiling: int = 6,
        increase_probability: float = 0.1,
        breaker: CircuitBreaker | None = None,
        rng: random.Random | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        if floor < 1 or not floor <= initial <= ceiling:
            raise ValueError("Concurrency must satisfy 1 <= floor <= initial <= ceiling")
        self.floor = floor
        self.ceiling = ceiling
        self.initial = initial
        self.increase_probability = increase_probability
        self.breaker = breaker or CircuitBreaker()
        self.rng = rng or random.Random()
        self.logger = logger or structlog.get_logger("inventory_sync.concurrency")
        self._limit = initial
        self._active = 0
        self._condition = Condition()

    @classmethod
    def from_config(
        cls,
        concurrency: ConcurrencyConfig,
        breaker: BreakerConfig,
        *,
        clock: Callable[[], float] = time.monotonic,
        rng: random.Random | None = None,
    ) -> "AdaptiveConcurrencyController":
        return cls(
            initial=concurrency.initial,
            floor=concurrency.floor,
            ceiling=concurrency.ceiling,
            increase_probability=concurrency.increase_probability,
            breaker=CircuitBreaker.from_config(breaker, clock=clock),
            rng=rng,
        )

    @property
    def limit(self) -> int:
        with self._condition:
            return self._limit

    @property
    def active(self) -> int:
        with self._condition:
            return self._active

    def acquire(self) -> None:
        """Block until ``active < limit``, then take a slot."""

        with self._condition:
            while self._active >= self._limit:
                self._condition.wait()
            self._active += 1

    def release(self) -> None:
        with self._condition:
            self._active = max(0, self._active - 1)
            self._condition.notify_all()

    def allows_request(self) -> bool:
        return not self.breaker.is_open()

    def record_success(self) -> None:
        # no upward nudges while the breaker is cooling down
        if self.breaker.is_open():
            return
        with self._condition:
            if self._limit >= self.ceiling:
                return
            if self.rng.random() < self.increase_probability:
                self._limit += 1
                self._condition.notify_all()
                self.logger.info("concurrency_increased", limit=self._limit)

    def record_overload(self) -> None:
        with self._condition:
            if self._limit > self.floor:
                self._limit -= 1
                self.logger.warning("concurrency_decreased", limit=self._limit)
        self.breaker.record()

    def snapshot(self) -> dict[str, int | bool]:
        with self._condition:
            limit, active = self._limit, self._active
        return {"limit": limit, "active": active, "breaker_open": self.breaker.is_open()}


__all__ = ["AdaptiveConcurrencyController", "CircuitBreaker"]
