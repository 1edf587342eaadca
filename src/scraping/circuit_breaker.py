"""
Circuit breaker провайдера.

Состояния:
- CLOSED: вызовы проходят. После failure_threshold подряд идущих ошибок → OPEN.
- OPEN: вызовы отклоняются локально до next_attempt_time, затем → HALF_OPEN.
- HALF_OPEN: ровно один пробный вызов. Успех → CLOSED, ошибка → снова OPEN.
"""
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum

from loguru import logger


class CircuitState(StrEnum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass(frozen=True)
class CircuitBreakerState:
    """Снимок состояния breaker для мониторинга."""

    state: CircuitState
    consecutive_failures: int
    last_failure_time: float | None
    next_attempt_time: float | None


class CircuitBreaker:
    """Потокобезопасный circuit breaker одного провайдера."""

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock
        self._lock = threading.Lock()

        self._state = CircuitState.CLOSED
        self._failures = 0
        self._last_failure_time: float | None = None
        self._next_attempt_time: float | None = None
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failures

    def is_open(self) -> bool:
        """OPEN и время пробного вызова ещё не наступило — провайдер пропускаем."""
        with self._lock:
            return (
                self._state == CircuitState.OPEN
                and self._clock() < (self._next_attempt_time or 0)
            )

    def allow_request(self) -> bool:
        """
        Разрешить вызов. OPEN с истёкшим таймаутом переходит в HALF_OPEN
        и пропускает ровно один пробный вызов.
        """
        with self._lock:
            if self._state == CircuitState.CLOSED:
                return True

            if self._state == CircuitState.OPEN:
                if self._clock() < (self._next_attempt_time or 0):
                    return False
                self._state = CircuitState.HALF_OPEN
                self._trial_in_flight = True
                logger.info(f"[circuit] {self.name}: HALF_OPEN, trial call allowed")
                return True

            # HALF_OPEN: пробный вызов уже идёт
            if self._trial_in_flight:
                return False
            self._trial_in_flight = True
            return True

    def record_success(self) -> None:
        with self._lock:
            self._failures = 0
            self._last_failure_time = None
            self._trial_in_flight = False
            if self._state != CircuitState.CLOSED:
                self._state = CircuitState.CLOSED
                self._next_attempt_time = None
                logger.info(f"[circuit] {self.name}: CLOSED, provider recovered")

    def record_failure(self) -> None:
        with self._lock:
            now = self._clock()
            self._last_failure_time = now
            self._trial_in_flight = False

            if self._state == CircuitState.HALF_OPEN:
                self._state = CircuitState.OPEN
                self._next_attempt_time = now + self.reset_timeout
                logger.warning(f"[circuit] {self.name}: trial failed, OPEN again "
                               f"for {self.reset_timeout:.0f}s")
                return

            self._failures += 1
            if self._state == CircuitState.CLOSED and self._failures >= self.failure_threshold:
                self._state = CircuitState.OPEN
                self._next_attempt_time = now + self.reset_timeout
                logger.warning(f"[circuit] {self.name}: OPEN after {self._failures} "
                               f"consecutive failures, retry in {self.reset_timeout:.0f}s")

    def reset(self) -> None:
        """Принудительно вернуть в CLOSED (ручное восстановление оператором)."""
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failures = 0
            self._last_failure_time = None
            self._next_attempt_time = None
            self._trial_in_flight = False

    def snapshot(self) -> CircuitBreakerState:
        with self._lock:
            return CircuitBreakerState(
                state=self._state,
                consecutive_failures=self._failures,
                last_failure_time=self._last_failure_time,
                next_attempt_time=self._next_attempt_time,
            )
