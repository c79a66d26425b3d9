"""
Circuit breaker for the upstream language-model provider.

- Opens when the error rate over a sliding window crosses a threshold
  (after a minimum number of calls)
- Stays open for a cool-down, rejecting calls immediately
- Half-open afterwards: a single trial call decides between closing and
  re-opening

Runs on the event loop only, so no locking is needed.
"""
import time
from collections import deque
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Optional, Tuple

from encyclopedia_ai.core.logging import get_logger

logger = get_logger(__name__)


class CircuitState(Enum):
    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject immediately
    HALF_OPEN = "half_open"  # One trial call allowed


class CircuitBreakerOpenError(Exception):
    """Raised when the breaker rejects a call without attempting it."""


class CircuitBreaker:
    def __init__(
        self,
        name: str,
        failure_threshold: float = 0.5,
        time_window_seconds: float = 60.0,
        open_duration_seconds: float = 30.0,
        min_requests_for_threshold: int = 6,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.time_window_seconds = time_window_seconds
        self.open_duration_seconds = open_duration_seconds
        self.min_requests_for_threshold = min_requests_for_threshold
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._history: Deque[Tuple[float, bool]] = deque()
        self._opened_at: Optional[float] = None
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitState:
        self._refresh()
        return self._state

    def _refresh(self) -> None:
        now = self._clock()
        cutoff = now - self.time_window_seconds
        while self._history and self._history[0][0] < cutoff:
            self._history.popleft()

        if self._state == CircuitState.OPEN and self._opened_at is not None:
            if now - self._opened_at >= self.open_duration_seconds:
                self._state = CircuitState.HALF_OPEN
                self._trial_in_flight = False
                logger.info("circuit_breaker_half_open", circuit_breaker=self.name)

    def _error_rate(self) -> float:
        if not self._history:
            return 0.0
        failures = sum(1 for _, ok in self._history if not ok)
        return failures / len(self._history)

    def _open(self) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
        self._history.clear()
        logger.warning("circuit_breaker_opened", circuit_breaker=self.name)

    def _record(self, success: bool) -> None:
        if self._state == CircuitState.HALF_OPEN:
            self._trial_in_flight = False
            if success:
                self._state = CircuitState.CLOSED
                self._opened_at = None
                logger.info("circuit_breaker_closed", circuit_breaker=self.name)
            else:
                self._open()
            return

        self._history.append((self._clock(), success))
        if (
            self._state == CircuitState.CLOSED
            and len(self._history) >= self.min_requests_for_threshold
            and self._error_rate() >= self.failure_threshold
        ):
            logger.warning(
                "circuit_breaker_threshold_exceeded",
                circuit_breaker=self.name,
                error_rate=self._error_rate(),
                total=len(self._history),
            )
            self._open()

    async def call_async(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """
        Await ``func`` under breaker protection.

        Raises:
            CircuitBreakerOpenError: the breaker is open, or half-open with
            its trial call already in flight.
        """
        state = self.state
        if state == CircuitState.OPEN:
            raise CircuitBreakerOpenError(f"Circuit breaker {self.name} is OPEN")
        if state == CircuitState.HALF_OPEN:
            if self._trial_in_flight:
                raise CircuitBreakerOpenError(f"Circuit breaker {self.name} is HALF_OPEN")
            self._trial_in_flight = True

        try:
            result = await func(*args, **kwargs)
        except Exception:
            self._record(False)
            raise
        except BaseException:
            # Cancellation says nothing about upstream health
            if self._state == CircuitState.HALF_OPEN:
                self._trial_in_flight = False
            raise
        self._record(True)
        return result

    def get_metrics(self) -> dict:
        self._refresh()
        return {
            "name": self.name,
            "state": self._state.value,
            "recent_requests": len(self._history),
            "error_rate": self._error_rate(),
            "opened_at": self._opened_at,
        }
