"""
Circuit breaker pattern to stop calling an upstream capability that keeps failing.

States:
- CLOSED: Normal operation, requests pass through
- OPEN: Too many failures, requests are rejected (or served by a fallback)
- HALF_OPEN: Testing recovery, probes pass until enough succeed

One breaker guards one capability (e.g. "search", "reviews"). Breaker state
lives for the lifetime of the process and is never persisted.
"""

import enum
import threading
import time
from typing import Callable, Optional, Type, TypeVar

from .logger import get_logger

logger = get_logger()

T = TypeVar("T")


class CircuitState(str, enum.Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitOpenError(RuntimeError):
    """Raised when a call is rejected because the circuit is OPEN."""

    def __init__(self, name: str, retry_after: float = 0.0):
        self.name = name
        self.retry_after = retry_after
        super().__init__(
            f"Service [{name}] is temporarily unavailable. "
            f"Retry after {retry_after:.0f}s"
        )


class CircuitBreaker:
    """
    Failure tracker wrapping calls to one upstream capability.

    Counters are updated under a lock; the lock is never held while the
    protected function runs.
    """

    CLOSED = CircuitState.CLOSED
    OPEN = CircuitState.OPEN
    HALF_OPEN = CircuitState.HALF_OPEN

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        half_open_successes: int = 2,
        expected_exception: Type[BaseException] = Exception,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize circuit breaker.

        Args:
            name: Capability name, used in errors and logs
            failure_threshold: Number of failures before opening circuit
            reset_timeout: Seconds to wait in OPEN before probing
            half_open_successes: Probe successes needed to close again
            expected_exception: Exception type that counts as failure
            clock: Monotonic time source in seconds
        """
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.half_open_successes = half_open_successes
        self.expected_exception = expected_exception
        self._clock = clock
        self._lock = threading.Lock()

        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None

    def call(
        self,
        func: Callable[..., T],
        *args,
        fallback: Optional[Callable[[], T]] = None,
        **kwargs,
    ) -> T:
        """
        Execute function with circuit breaker protection.

        Raises:
            CircuitOpenError: If circuit is OPEN and no fallback was given
            Original exception: If function fails in CLOSED/HALF_OPEN state
        """
        rejected = False
        retry_after = 0.0
        with self._lock:
            if self.state == CircuitState.OPEN:
                if self._should_attempt_reset():
                    self.success_count = 0
                    self._transition(CircuitState.HALF_OPEN)
                else:
                    rejected = True
                    retry_after = self._time_until_reset()

        if rejected:
            logger.warning("Circuit open, rejecting request", breaker=self.name)
            if fallback is not None:
                return fallback()
            raise CircuitOpenError(self.name, retry_after)

        try:
            result = func(*args, **kwargs)
        except self.expected_exception:
            self._on_failure()
            raise
        self._on_success()
        return result

    def _should_attempt_reset(self) -> bool:
        """Check if enough time has passed to attempt reset."""
        if self.last_failure_time is None:
            return True
        return self._clock() - self.last_failure_time > self.reset_timeout

    def _time_until_reset(self) -> float:
        """Calculate seconds until circuit can be tested."""
        if self.last_failure_time is None:
            return 0.0
        elapsed = self._clock() - self.last_failure_time
        return max(0.0, self.reset_timeout - elapsed)

    def _transition(self, new_state: CircuitState):
        old_state = self.state
        self.state = new_state
        transition = f"{old_state.value} -> {new_state.value}"
        logger.record_circuit_transition(self.name, transition)
        if new_state == CircuitState.OPEN:
            logger.error(
                "Circuit opened due to failures",
                breaker=self.name,
                transition=transition,
                failure_count=self.failure_count,
            )
        else:
            logger.info("Circuit state changed", breaker=self.name, transition=transition)

    def _on_success(self):
        with self._lock:
            if self.state == CircuitState.HALF_OPEN:
                self.success_count += 1
                if self.success_count >= self.half_open_successes:
                    self.failure_count = 0
                    self.success_count = 0
                    self._transition(CircuitState.CLOSED)
            else:
                self.failure_count = 0

    def _on_failure(self):
        with self._lock:
            self.failure_count += 1
            self.last_failure_time = self._clock()
            if self.state == CircuitState.HALF_OPEN:
                self.success_count = 0
                self._transition(CircuitState.OPEN)
            elif (
                self.state == CircuitState.CLOSED
                and self.failure_count >= self.failure_threshold
            ):
                self._transition(CircuitState.OPEN)

    def reset(self):
        """Manually reset the circuit breaker."""
        with self._lock:
            self.failure_count = 0
            self.success_count = 0
            self.last_failure_time = None
            self.state = CircuitState.CLOSED
