"""
Circuit breaker guarding the timer-driven sweep.

State Machine:
    CLOSED → (threshold consecutive failures) → OPEN
    OPEN → (cooldown elapsed) → HALF_OPEN
    HALF_OPEN → (success) → CLOSED
    HALF_OPEN → (failure) → OPEN, cooldown restarts

Only infrastructure failures (NetworkError) are recorded as failures. Any
success while CLOSED or HALF_OPEN resets the consecutive-failure counter.
The clock is injected so tests can step time without real timers.
"""
import logging
import time
from enum import Enum
from typing import Callable, Optional

from app.config import BREAKER_COOLDOWN_SECONDS, BREAKER_FAILURE_THRESHOLD

logger = logging.getLogger(__name__)


class BreakerState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    def __init__(
        self,
        failure_threshold: int = BREAKER_FAILURE_THRESHOLD,
        cooldown_seconds: float = BREAKER_COOLDOWN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._state = BreakerState.CLOSED
        self._consecutive_failures = 0
        self._opened_at: Optional[float] = None

    @property
    def state(self) -> BreakerState:
        if self._state is BreakerState.OPEN and self._cooldown_elapsed():
            self._state = BreakerState.HALF_OPEN
            logger.info("Circuit breaker cooldown elapsed, allowing a trial sweep")
        return self._state

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    def allows_sweep(self) -> bool:
        return self.state is not BreakerState.OPEN

    def record_success(self) -> None:
        state = self.state
        self._consecutive_failures = 0
        if state is BreakerState.HALF_OPEN:
            self._state = BreakerState.CLOSED
            self._opened_at = None
            logger.info("Circuit breaker closed after successful trial")

    def record_failure(self) -> None:
        state = self.state
        if state is BreakerState.OPEN:
            return
        if state is BreakerState.HALF_OPEN:
            self._trip("trial sweep failed")
            return
        self._consecutive_failures += 1
        if self._consecutive_failures >= self.failure_threshold:
            self._trip(f"{self._consecutive_failures} consecutive failures")

    def reset(self) -> None:
        self._state = BreakerState.CLOSED
        self._consecutive_failures = 0
        self._opened_at = None

    def seconds_until_trial(self) -> float:
        if self._state is not BreakerState.OPEN or self._opened_at is None:
            return 0.0
        return max(0.0, self.cooldown_seconds - (self._clock() - self._opened_at))

    def _trip(self, reason: str) -> None:
        self._state = BreakerState.OPEN
        self._opened_at = self._clock()
        self._consecutive_failures = 0
        logger.warning(f"Circuit breaker opened ({reason}), pausing sweeps for {self.cooldown_seconds}s")

    def _cooldown_elapsed(self) -> bool:
        return self._opened_at is not None and self._clock() - self._opened_at >= self.cooldown_seconds
