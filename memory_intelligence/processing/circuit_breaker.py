"""
Circuit breaker guarding background AI backend work.
"""

import logging
import threading
import time
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional

from ..errors import CircuitOpen

if TYPE_CHECKING:
    from ..observability.monitor import PerformanceMonitor

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    """Breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Process-wide failure gate.

    closed -> open after `failure_threshold` consecutive failures.
    open -> half_open once `cooldown_seconds` have elapsed; exactly one
    probe request is admitted. A successful probe closes the breaker, a
    failed one reopens it and restarts the cool-down.

    All transitions happen under a single lock.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        cooldown_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at: Optional[float] = None
        self._probe_in_flight = False
        self._unsubscribe: Optional[Callable[[], None]] = None

    @classmethod
    def from_config(cls, config, clock: Callable[[], float] = time.monotonic) -> "CircuitBreaker":
        return cls(
            failure_threshold=config.failure_threshold,
            cooldown_seconds=config.cooldown_seconds,
            clock=clock,
        )

    @property
    def state(self) -> CircuitState:
        """Current state, accounting for an elapsed cool-down."""
        with self._lock:
            self._maybe_half_open()
            return self._state

    @property
    def failure_count(self) -> int:
        with self._lock:
            return self._failure_count

    def allow_request(self) -> bool:
        """
        Whether a call may proceed now.

        In half_open only the first caller gets True until the probe
        outcome is recorded.
        """
        with self._lock:
            self._maybe_half_open()
            if self._state == CircuitState.CLOSED:
                return True
            if self._state == CircuitState.HALF_OPEN and not self._probe_in_flight:
                self._probe_in_flight = True
                return True
            return False

    def retry_after(self) -> float:
        """Seconds until the breaker may admit a probe (0 when not open)."""
        with self._lock:
            if self._state != CircuitState.OPEN or self._opened_at is None:
                return 0.0
            return max(0.0, self._opened_at + self.cooldown_seconds - self._clock())

    def record_success(self) -> None:
        """
        Record a successful call.

        Successes of calls admitted before the breaker opened are ignored
        while it is open; in half_open only the admitted probe closes it.
        """
        with self._lock:
            self._maybe_half_open()
            if self._state == CircuitState.CLOSED:
                self._failure_count = 0
                return
            if self._state == CircuitState.HALF_OPEN and self._probe_in_flight:
                logger.info("Circuit breaker closed after successful probe")
                self._state = CircuitState.CLOSED
                self._failure_count = 0
                self._opened_at = None
                self._probe_in_flight = False

    def record_failure(self) -> None:
        with self._lock:
            self._maybe_half_open()
            if self._state == CircuitState.HALF_OPEN:
                self._open()
                logger.warning("Circuit breaker probe failed; reopening")
                return

            self._failure_count += 1
            if self._state == CircuitState.CLOSED and self._failure_count >= self.failure_threshold:
                self._open()
                logger.warning(
                    f"Circuit breaker opened after {self._failure_count} consecutive failures; "
                    f"cooling down for {self.cooldown_seconds:.0f}s"
                )

    def call(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """
        Run func through the breaker, recording its outcome.

        Raises:
            CircuitOpen: If the breaker refuses the call.
        """
        if not self.allow_request():
            raise CircuitOpen(retry_after=self.retry_after())
        try:
            result = func(*args, **kwargs)
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result

    def reset(self) -> None:
        """Force the breaker closed."""
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._opened_at = None
            self._probe_in_flight = False

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            self._maybe_half_open()
            return {
                "state": self._state.value,
                "failure_count": self._failure_count,
                "failure_threshold": self.failure_threshold,
                "cooldown_seconds": self.cooldown_seconds,
                "opened_at": self._opened_at,
            }

    def attach(self, monitor: "PerformanceMonitor", component: str = "processor") -> None:
        """
        Feed the breaker from a monitor's samples for one component.

        Attaching again replaces the previous subscription.
        """
        self.detach()

        def listener(sample_component: str, duration_ms: float, success: bool) -> None:
            if sample_component != component:
                return
            if success:
                self.record_success()
            else:
                self.record_failure()

        self._unsubscribe = monitor.subscribe(listener)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    # Callers must hold self._lock
    def _open(self) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
        self._probe_in_flight = False

    def _maybe_half_open(self) -> None:
        if (
            self._state == CircuitState.OPEN
            and self._opened_at is not None
            and self._clock() - self._opened_at >= self.cooldown_seconds
        ):
            self._state = CircuitState.HALF_OPEN
            self._probe_in_flight = False
            logger.info("Circuit breaker half-open; admitting one probe")
