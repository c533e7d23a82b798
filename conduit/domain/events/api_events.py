"""Domain Events related to outbound API calls and resilience.

Emitted by the request pipeline and its collaborators when calls are
deferred, retried, fail, succeed, or when breaker/token state changes.
"""

import logging
from dataclasses import dataclass, field
import time
from typing import Callable, List, Optional


@dataclass
class DomainEvent:
    """Base class for domain events."""
    pass


# --- Specific API Events ---

@dataclass
class ApiCallInitiated(DomainEvent):
    """Event triggered when an API call is about to be made."""
    provider: str
    operation: str
    method: str
    url: str
    timestamp: float = field(default_factory=time.time)


@dataclass
class ApiCallSucceeded(DomainEvent):
    """Event triggered when an API call succeeds."""
    provider: str
    operation: str
    status: int
    latency_ms: float
    timestamp: float = field(default_factory=time.time)


@dataclass
class ApiCallFailed(DomainEvent):
    """Event triggered when an API call fails definitively (after retries)."""
    provider: str
    operation: str
    error_code: str
    error_message: str
    status: Optional[int] = None
    timestamp: float = field(default_factory=time.time)


@dataclass
class ApiCallDeferred(DomainEvent):
    """Event triggered when an API call has to queue for a rate-limit slot."""
    provider: str
    operation: str
    queue_length: int
    timestamp: float = field(default_factory=time.time)


@dataclass
class RetryScheduled(DomainEvent):
    """Event triggered when a retry is scheduled for a failed API call."""
    provider: str
    operation: str
    attempt_number: int
    delay_seconds: float
    error_code: Optional[str] = None
    timestamp: float = field(default_factory=time.time)


@dataclass
class CacheHit(DomainEvent):
    """Event triggered when a read is served from the response cache."""
    provider: str
    operation: str
    cache_key: str
    timestamp: float = field(default_factory=time.time)


@dataclass
class CircuitStateChanged(DomainEvent):
    """Event triggered when a circuit breaker transitions between states."""
    breaker_key: str
    old_state: str
    new_state: str
    timestamp: float = field(default_factory=time.time)


@dataclass
class TokenRefreshed(DomainEvent):
    """Event triggered after a successful OAuth token refresh."""
    provider: str
    user_id: str
    expires_at: Optional[float] = None
    timestamp: float = field(default_factory=time.time)


class EventDispatcher:
    """Fans pipeline events out to registered listeners.

    Listener failures are logged and never break the call being observed.
    """

    def __init__(self, logger_name: str = __name__):
        self._logger = logging.getLogger(logger_name)
        self._listeners: List[Callable[[DomainEvent], None]] = []

    def subscribe(self, listener: Callable[[DomainEvent], None]) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: Callable[[DomainEvent], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def dispatch(self, event: DomainEvent) -> None:
        self._logger.debug(f"EVENT: {event}")
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                self._logger.warning(f"Event listener {listener!r} failed on {type(event).__name__}: {e}")
