"""Circuit breakers for outbound API operations.

A breaker stops calling a failing dependency for a cooldown period so
that one broken provider endpoint cannot cascade into the rest of the
system. Breakers are kept per ``<provider>:<operation>`` by the
CircuitBreakerManager.
"""

import dataclasses
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, TypeVar

from conduit.domain.events.api_events import CircuitStateChanged, EventDispatcher
from conduit.domain.models.common import make_breaker_key
from conduit.domain.models.errors import ApiError, CircuitOpenError, TRANSPORT_ERROR_CODES

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "CLOSED"        # Normal operation
    OPEN = "OPEN"            # Failing fast
    HALF_OPEN = "HALF_OPEN"  # Trial calls allowed


def counts_as_failure(error: BaseException) -> bool:
    """Default error filter: network failures, timeouts and 5xx count; 4xx do not."""
    if not isinstance(error, ApiError):
        return False
    if error.code in TRANSPORT_ERROR_CODES:
        return True
    return error.status is not None and error.status >= 500


@dataclass
class CircuitBreakerConfig:
    failure_threshold: int = 5          # Counted failures before opening
    success_threshold: int = 2          # Consecutive successes to close from half-open
    timeout_seconds: float = 60.0       # Time spent OPEN before a trial call
    volume_threshold: int = 10          # Minimum requests before evaluating
    error_filter: Callable[[BaseException], bool] = counts_as_failure


@dataclass
class CircuitStats:
    failures: int = 0
    successes: int = 0
    total_requests: int = 0
    consecutive_successes: int = 0
    last_failure_time: Optional[float] = None


class CircuitBreaker:
    """Failure-isolation state machine for one operation."""

    def __init__(
        self,
        config: CircuitBreakerConfig,
        name: str = "default",
        clock: Callable[[], float] = time.monotonic,
        events: Optional[EventDispatcher] = None,
    ):
        self.config = config
        self.name = name
        self._clock = clock
        self._events = events
        self._state = CircuitState.CLOSED
        self._stats = CircuitStats()
        self._next_attempt_at = 0.0

    async def execute(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Runs ``fn`` under the breaker.

        Raises:
            CircuitOpenError: If the breaker is OPEN and the cooldown has not
                elapsed. ``fn`` is not invoked and no request is counted.
            Exception: Whatever ``fn`` raised, unchanged.
        """
        if self._state is CircuitState.OPEN:
            now = self._clock()
            if now < self._next_attempt_at:
                raise CircuitOpenError(self.name, retry_after=self._next_attempt_at - now)
            self._transition(CircuitState.HALF_OPEN)
            self._stats.consecutive_successes = 0

        try:
            result = await fn()
        except Exception as e:
            self._on_failure(e)
            raise
        self._on_success()
        return result

    def _on_success(self) -> None:
        self._stats.successes += 1
        self._stats.total_requests += 1
        self._stats.consecutive_successes += 1

        if (
            self._state is CircuitState.HALF_OPEN
            and self._stats.consecutive_successes >= self.config.success_threshold
        ):
            self._close()

    def _on_failure(self, error: BaseException) -> None:
        if not self.config.error_filter(error):
            logger.debug(f"Breaker {self.name}: ignoring non-counted error {type(error).__name__}")
            return

        self._stats.failures += 1
        self._stats.total_requests += 1
        self._stats.last_failure_time = self._clock()
        self._stats.consecutive_successes = 0

        if self._state is CircuitState.HALF_OPEN:
            self._open()
        elif (
            self._state is CircuitState.CLOSED
            and self._stats.total_requests >= self.config.volume_threshold
            and self._stats.failures >= self.config.failure_threshold
        ):
            self._open()

    def _open(self) -> None:
        self._transition(CircuitState.OPEN)
        self._next_attempt_at = self._clock() + self.config.timeout_seconds
        self._stats = CircuitStats(last_failure_time=self._stats.last_failure_time)
        logger.warning(f"Circuit breaker {self.name} OPEN for {self.config.timeout_seconds:.0f}s")

    def _close(self) -> None:
        self._transition(CircuitState.CLOSED)
        self._stats = CircuitStats()

    def _transition(self, new_state: CircuitState) -> None:
        old_state = self._state
        self._state = new_state
        if old_state is new_state:
            return
        logger.info(f"Circuit breaker {self.name}: {old_state.value} -> {new_state.value}")
        if self._events:
            self._events.dispatch(CircuitStateChanged(
                breaker_key=self.name, old_state=old_state.value, new_state=new_state.value
            ))

    def get_state(self) -> CircuitState:
        return self._state

    def get_stats(self) -> CircuitStats:
        return dataclasses.replace(self._stats)

    def reset(self) -> None:
        self._close()


class CircuitBreakerManager:
    """Lazily creates and holds one breaker per ``<provider>:<operation>``."""

    def __init__(
        self,
        provider_configs: Optional[Mapping[str, Mapping[str, Any]]] = None,
        clock: Callable[[], float] = time.monotonic,
        events: Optional[EventDispatcher] = None,
    ):
        """Initializes the manager.

        Args:
            provider_configs: Per-provider overrides of CircuitBreakerConfig
                fields (e.g. ``{'hubspot': {'timeout_seconds': 30}}``).
            clock: Monotonic clock shared by all breakers.
            events: Dispatcher for state change events.
        """
        self._provider_configs: Dict[str, Dict[str, Any]] = {
            name: dict(overrides) for name, overrides in (provider_configs or {}).items()
        }
        self._clock = clock
        self._events = events
        self._breakers: Dict[str, CircuitBreaker] = {}

    def get_breaker(self, provider: str, operation: str, **overrides: Any) -> CircuitBreaker:
        key = make_breaker_key(provider, operation)
        breaker = self._breakers.get(key)
        if breaker is None:
            settings = {**self._provider_configs.get(provider, {}), **overrides}
            config = dataclasses.replace(CircuitBreakerConfig(), **settings)
            breaker = CircuitBreaker(config, name=key, clock=self._clock, events=self._events)
            self._breakers[key] = breaker
            logger.debug(f"Created circuit breaker {key}: {config}")
        return breaker

    async def execute(self, provider: str, operation: str, fn: Callable[[], Awaitable[T]]) -> T:
        breaker = self.get_breaker(provider, operation)
        try:
            return await breaker.execute(fn)
        except CircuitOpenError as e:
            e.provider = e.provider or provider
            e.operation = e.operation or operation
            raise

    def get_status(self) -> Dict[str, Dict[str, Any]]:
        return {
            key: {"state": breaker.get_state().value, "stats": dataclasses.asdict(breaker.get_stats())}
            for key, breaker in self._breakers.items()
        }

    def reset(self, key: Optional[str] = None) -> None:
        if key is not None:
            breaker = self._breakers.get(key)
            if breaker:
                breaker.reset()
            return
        for breaker in self._breakers.values():
            breaker.reset()
