"""Bounded exponential backoff for registry calls."""

from __future__ import annotations

import logging
import random
import time
from typing import Any, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """Brief: Retry a callable with exponential backoff until it succeeds or a
    bound is reached.

    Inputs:
      - max_attempts: Maximum number of calls (including the first); None for
        no attempt bound.
      - max_elapsed: Maximum seconds spent retrying, measured from the first
        call; None for no time bound. At least one bound must be set.
      - initial_interval: Delay after the first failure, in seconds.
      - multiplier: Growth factor applied to the delay after each failure.
      - max_interval: Cap on a single delay.
      - randomization: Jitter factor in [0, 1); each delay is drawn uniformly
        from ``delay * (1 +/- randomization)``.
      - sleep / clock: Injectable time functions (tests pass fakes).

    Outputs:
      - RetryPolicy instance; raises ValueError when unbounded.

    Example:
      >>> calls = []
      >>> policy = RetryPolicy(max_attempts=3, sleep=lambda s: None)
      >>> def flaky():
      ...     calls.append(1)
      ...     if len(calls) < 3:
      ...         raise RuntimeError("down")
      ...     return "ok"
      >>> policy.call(flaky), len(calls)
      ('ok', 3)
    """

    def __init__(
        self,
        max_attempts: Optional[int] = None,
        max_elapsed: Optional[float] = None,
        initial_interval: float = 0.5,
        multiplier: float = 1.5,
        max_interval: float = 60.0,
        randomization: float = 0.0,
        sleep: Callable[[float], Any] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_attempts is None and max_elapsed is None:
            raise ValueError("retry policy needs max_attempts or max_elapsed")
        if max_attempts is not None and int(max_attempts) < 1:
            raise ValueError("max_attempts must be >= 1")
        if max_elapsed is not None and float(max_elapsed) < 0:
            raise ValueError("max_elapsed must be >= 0")
        if not 0.0 <= float(randomization) < 1.0:
            raise ValueError("randomization must be in [0, 1)")

        self.max_attempts = int(max_attempts) if max_attempts is not None else None
        self.max_elapsed = float(max_elapsed) if max_elapsed is not None else None
        self.initial_interval = max(0.0, float(initial_interval))
        self.multiplier = max(1.0, float(multiplier))
        self.max_interval = max(self.initial_interval, float(max_interval))
        self.randomization = float(randomization)
        self._sleep = sleep
        self._clock = clock

    def __repr__(self) -> str:
        return (
            f"RetryPolicy(max_attempts={self.max_attempts}, "
            f"max_elapsed={self.max_elapsed}, initial_interval={self.initial_interval})"
        )

    def _jitter(self, delay: float) -> float:
        if not self.randomization:
            return delay
        spread = delay * self.randomization
        return random.uniform(delay - spread, delay + spread)

    def call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Brief: Invoke fn(*args, **kwargs) under this policy.

        Inputs:
          - fn: Callable to invoke; any exception counts as a failure.
          - *args / **kwargs: Forwarded to fn.

        Outputs:
          - fn's return value. When the bound is reached the last exception
            is re-raised unchanged.
        """

        start = self._clock()
        interval = self.initial_interval
        attempt = 0
        while True:
            attempt += 1
            try:
                return fn(*args, **kwargs)
            except Exception as exc:
                if self.max_attempts is not None and attempt >= self.max_attempts:
                    raise
                delay = min(self._jitter(interval), self.max_interval)
                if self.max_elapsed is not None:
                    remaining = self.max_elapsed - (self._clock() - start)
                    if remaining <= 0:
                        raise
                    delay = min(delay, remaining)
                logger.debug(
                    "attempt %d of %s failed (%s); retrying in %.2fs",
                    attempt,
                    getattr(fn, "__name__", "call"),
                    exc,
                    delay,
                )
                self._sleep(delay)
                interval = min(interval * self.multiplier, self.max_interval)
