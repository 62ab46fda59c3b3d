"""
In-process circuit breaker.

    CLOSED ──(failure_threshold failures)──▶ OPEN
    OPEN ──(reset_timeout elapsed, next call)──▶ HALF_OPEN
    HALF_OPEN ──(success_threshold successes)──▶ CLOSED   (one trial call at a time)
    HALF_OPEN ──(any failure)──▶ OPEN

State lives in the process only and is not shared across instances. Breakers
are built explicitly by whoever composes the service (see
CircuitBreakerRegistry.default) and injected where needed.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, TypeVar

from stability.errors import CircuitOpenError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class CircuitBreakerConfig:
    failure_threshold: int = 5
    reset_timeout: float = 30.0   # seconds
    success_threshold: int = 2


class CircuitBreaker:
    """Per-dependency breaker. Thread-safe; fn itself runs outside the lock."""

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._mutex = threading.Lock()
        self.state = CircuitState.CLOSED
        self.failures = 0
        self.successes = 0
        self.last_failure_time: Optional[float] = None
        self._trial_in_flight = False

    def execute(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        trial = False
        with self._mutex:
            if self.state == CircuitState.OPEN:
                elapsed = self._clock() - (self.last_failure_time or 0.0)
                if elapsed >= self.config.reset_timeout:
                    self._move_to(CircuitState.HALF_OPEN)
                    self.successes = 0
                else:
                    raise CircuitOpenError(self.name, self.config.reset_timeout - elapsed)
            if self.state == CircuitState.HALF_OPEN:
                if self._trial_in_flight:
                    raise CircuitOpenError(self.name)
                self._trial_in_flight = trial = True

        try:
            result = fn(*args, **kwargs)
        except Exception:
            self._on_failure(trial)
            raise
        self._on_success(trial)
        return result

    def _on_success(self, trial: bool = False) -> None:
        with self._mutex:
            if trial:
                self._trial_in_flight = False
            if self.state == CircuitState.HALF_OPEN:
                self.successes += 1
                if self.successes >= self.config.success_threshold:
                    self._move_to(CircuitState.CLOSED)
                    self.failures = 0
                    self.successes = 0
            else:
                self.failures = 0

    def _on_failure(self, trial: bool = False) -> None:
        with self._mutex:
            if trial:
                self._trial_in_flight = False
            self.failures += 1
            self.last_failure_time = self._clock()
            if self.state == CircuitState.HALF_OPEN:
                self._move_to(CircuitState.OPEN)
                self.successes = 0
            elif self.failures >= self.config.failure_threshold:
                self._move_to(CircuitState.OPEN)

    def _move_to(self, new_state: CircuitState) -> None:
        if new_state != self.state:
            logger.warning("circuit %s: %s -> %s (failures=%d)",
                           self.name, self.state.value, new_state.value, self.failures)
            self.state = new_state

    def reset(self) -> None:
        with self._mutex:
            self.state = CircuitState.CLOSED
            self.failures = 0
            self.successes = 0
            self.last_failure_time = None
            self._trial_in_flight = False

    def get_status(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failures": self.failures,
            "successes": self.successes,
            "last_failure_time": self.last_failure_time,
        }


# ---------------------------------------------------------------------------
# Composition
# ---------------------------------------------------------------------------

# Tuned per external dependency
DEPENDENCY_BREAKER_CONFIGS: Dict[str, CircuitBreakerConfig] = {
    "payment_provider": CircuitBreakerConfig(failure_threshold=3, reset_timeout=60.0, success_threshold=2),
    "email_provider":   CircuitBreakerConfig(failure_threshold=5, reset_timeout=30.0, success_threshold=2),
    "pdf_renderer":     CircuitBreakerConfig(failure_threshold=3, reset_timeout=15.0, success_threshold=1),
}


class CircuitBreakerRegistry:
    """Owns the breakers for one process. Built by the application composer."""

    def __init__(self, breakers: Optional[Dict[str, CircuitBreaker]] = None) -> None:
        self._breakers: Dict[str, CircuitBreaker] = dict(breakers or {})

    @classmethod
    def default(cls, clock: Callable[[], float] = time.monotonic) -> "CircuitBreakerRegistry":
        return cls({
            name: CircuitBreaker(name, config, clock=clock)
            for name, config in DEPENDENCY_BREAKER_CONFIGS.items()
        })

    def get(self, name: str) -> CircuitBreaker:
        try:
            return self._breakers[name]
        except KeyError:
            raise KeyError(f"No circuit breaker registered for {name!r}") from None

    def register(self, breaker: CircuitBreaker) -> None:
        self._breakers[breaker.name] = breaker

    def get_status(self) -> Dict[str, Dict[str, Any]]:
        return {name: b.get_status() for name, b in self._breakers.items()}
