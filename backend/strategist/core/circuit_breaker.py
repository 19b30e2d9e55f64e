"""Circuit breakers guarding the LLM, embedding, database and enrichment providers."""

import enum
import logging
import threading
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from strategist.core.exceptions import ServiceUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(enum.Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerOpen(ServiceUnavailableError):
    """A provider is refusing calls while its circuit is open (503)."""

    def __init__(self, service_name: str, retry_after: float = 0.0) -> None:
        super().__init__(
            service_name,
            "A service dependency is temporarily unavailable. Please try again in a moment.",
        )
        self.service_name = service_name
        self.details["retry_after_seconds"] = round(max(retry_after, 0.0), 1)


class CircuitBreaker:
    """Trip after consecutive failures, probe once after a cool-down.

    Callers outside a turn let ``CircuitBreakerOpen`` propagate to the API
    error handler. Inside a turn it degrades like any other provider failure.

    Args:
        service_name: Identifier for the protected provider, used in logs and
            the health report.
        failure_threshold: Consecutive failures before the circuit opens.
        recovery_timeout: Seconds an open circuit waits before allowing a probe.
    """

    def __init__(
        self,
        service_name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
    ) -> None:
        self.service_name = service_name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout

        self._failures = 0
        self._opened_at = 0.0
        self._state = CircuitState.CLOSED
        self._lock = threading.Lock()

    def _cooldown_remaining(self) -> float:
        return self.recovery_timeout - (time.monotonic() - self._opened_at)

    @property
    def state(self) -> CircuitState:
        """Current state; an open circuit past its cool-down reads as half-open."""
        with self._lock:
            if self._state == CircuitState.OPEN and self._cooldown_remaining() <= 0:
                self._state = CircuitState.HALF_OPEN
                logger.info("Circuit half-open, probing %s", self.service_name)
            return self._state

    def snapshot(self) -> dict[str, Any]:
        """State and failure streak for the health endpoint."""
        state = self.state
        return {"state": state.value, "failures": self._failures}

    def check(self) -> None:
        """Refuse the call while the circuit is open.

        Raises:
            CircuitBreakerOpen: With the seconds left before a probe is allowed.
        """
        if self.state != CircuitState.OPEN:
            return
        with self._lock:
            retry_after = self._cooldown_remaining()
        raise CircuitBreakerOpen(self.service_name, retry_after)

    def record_success(self) -> None:
        with self._lock:
            if self._state != CircuitState.CLOSED:
                logger.warning("Circuit closed for %s after recovery", self.service_name)
            self._failures = 0
            self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        """Count a failure. A failed half-open probe re-opens at once."""
        with self._lock:
            self._failures += 1
            probing = self._state == CircuitState.HALF_OPEN
            if not probing and self._failures < self.failure_threshold:
                return
            if self._state != CircuitState.OPEN:
                logger.warning(
                    "Circuit opened for %s",
                    self.service_name,
                    extra={"failures": self._failures, "probe_failed": probing},
                )
            self._state = CircuitState.OPEN
            self._opened_at = time.monotonic()

    async def call_async(
        self, func: Callable[..., Awaitable[T]], *args: object, **kwargs: object
    ) -> T:
        """Await ``func`` under this breaker, recording the outcome.

        Raises:
            CircuitBreakerOpen: If the circuit is open.
        """
        self.check()
        try:
            result = await func(*args, **kwargs)
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result


llm_circuit_breaker = CircuitBreaker("llm", failure_threshold=5, recovery_timeout=60.0)
embedding_circuit_breaker = CircuitBreaker("embeddings", failure_threshold=5, recovery_timeout=30.0)
supabase_circuit_breaker = CircuitBreaker("supabase", failure_threshold=5, recovery_timeout=30.0)
search_circuit_breaker = CircuitBreaker("web_search", failure_threshold=3, recovery_timeout=60.0)
instagram_circuit_breaker = CircuitBreaker("instagram", failure_threshold=3, recovery_timeout=120.0)


def get_all_circuit_breakers() -> dict[str, CircuitBreaker]:
    """All provider breakers keyed by service name."""
    return {
        breaker.service_name: breaker
        for breaker in (
            llm_circuit_breaker,
            embedding_circuit_breaker,
            supabase_circuit_breaker,
            search_circuit_breaker,
            instagram_circuit_breaker,
        )
    }
