"""
Circuit breaker for the model backend and the Redis cache.

- Opens when the error rate over `time_window_seconds` reaches
  `failure_threshold` (with at least `min_requests_for_threshold` samples)
- Stays open for `open_duration_seconds`
- Half-open admits `half_open_max_probes` concurrent probe calls;
  one success closes the circuit, one failure reopens it
"""
import time
from collections import deque
from enum import Enum
from threading import Lock
from typing import Any, Awaitable, Callable, Deque, Optional, Tuple, Type

from learnassist.core.logging import get_logger

logger = get_logger(__name__)


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerOpenError(Exception):
    """Raised instead of calling the protected function while the circuit is open."""

    def __init__(self, name: str, state: CircuitState):
        super().__init__(f"Circuit breaker {name} is {state.value.upper()}")
        self.name = name
        self.state = state


class CircuitBreaker:
    """Sliding-window error-rate circuit breaker for async callables."""

    def __init__(
        self,
        name: str,
        failure_threshold: float = 0.5,
        time_window_seconds: int = 60,
        open_duration_seconds: int = 30,
        min_requests_for_threshold: int = 10,
        half_open_max_probes: int = 1,
        ignored_exceptions: Tuple[Type[BaseException], ...] = (),
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.time_window_seconds = time_window_seconds
        self.open_duration_seconds = open_duration_seconds
        self.min_requests_for_threshold = min_requests_for_threshold
        self.half_open_max_probes = half_open_max_probes
        # Failures of these types say nothing about backend health (e.g. a 400).
        self.ignored_exceptions = ignored_exceptions
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._lock = Lock()
        self._outcomes: Deque[Tuple[float, bool]] = deque()
        self._opened_at: Optional[float] = None
        self._probes_in_flight = 0

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._refresh(self._clock())
            return self._state

    def _refresh(self, now: float) -> None:
        cutoff = now - self.time_window_seconds
        while self._outcomes and self._outcomes[0][0] < cutoff:
            self._outcomes.popleft()

        if self._state == CircuitState.OPEN and self._opened_at is not None:
            if now - self._opened_at >= self.open_duration_seconds:
                self._state = CircuitState.HALF_OPEN
                self._probes_in_flight = 0
                logger.info("circuit_breaker_half_open", circuit_breaker=self.name)

    def _trip(self, now: float, **fields: Any) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = now
        self._outcomes.clear()
        logger.warning("circuit_breaker_opened", circuit_breaker=self.name, **fields)

    def _acquire(self) -> bool:
        """Return True when the call is a half-open probe."""
        with self._lock:
            self._refresh(self._clock())
            if self._state == CircuitState.OPEN:
                raise CircuitBreakerOpenError(self.name, self._state)
            if self._state == CircuitState.HALF_OPEN:
                if self._probes_in_flight >= self.half_open_max_probes:
                    raise CircuitBreakerOpenError(self.name, self._state)
                self._probes_in_flight += 1
                return True
            return False

    def _record(self, success: bool, probe: bool) -> None:
        now = self._clock()
        with self._lock:
            if probe:
                self._probes_in_flight = max(0, self._probes_in_flight - 1)
                if self._state != CircuitState.HALF_OPEN:
                    return
                if success:
                    self._state = CircuitState.CLOSED
                    self._opened_at = None
                    self._outcomes.clear()
                    logger.info("circuit_breaker_closed", circuit_breaker=self.name)
                else:
                    self._trip(now, reason="half_open_probe_failed")
                return

            self._outcomes.append((now, success))
            self._refresh(now)
            if self._state != CircuitState.CLOSED:
                return
            total = len(self._outcomes)
            if total < self.min_requests_for_threshold:
                return
            failures = sum(1 for _, ok in self._outcomes if not ok)
            error_rate = failures / total
            if error_rate >= self.failure_threshold:
                self._trip(now, error_rate=error_rate, failures=failures, total=total)

    async def call_async(self, func: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
        """
        Await `func(*args, **kwargs)` under circuit protection.

        Raises:
            CircuitBreakerOpenError: circuit open, or half-open with its probe slots taken
        """
        probe = self._acquire()
        try:
            result = await func(*args, **kwargs)
        except self.ignored_exceptions:
            self._record(True, probe)
            raise
        except Exception:
            self._record(False, probe)
            raise
        self._record(True, probe)
        return result

    def get_metrics(self) -> dict:
        with self._lock:
            self._refresh(self._clock())
            total = len(self._outcomes)
            failures = sum(1 for _, ok in self._outcomes if not ok)
            return {
                "name": self.name,
                "state": self._state.value,
                "recent_requests": total,
                "recent_failures": failures,
                "error_rate": failures / total if total else 0.0,
                "opened_at": self._opened_at,
            }
