import pytest

from conduit.domain.events.api_events import CircuitStateChanged
from conduit.domain.models.errors import ApiError, ApiErrorCode, CircuitOpenError
from conduit.infrastructure.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerManager,
    CircuitState,
    counts_as_failure,
)


def server_error() -> ApiError:
    return ApiError(ApiErrorCode.INTERNAL_ERROR, "boom", "p", "op", retryable=True, status=500)


def not_found() -> ApiError:
    return ApiError(ApiErrorCode.NOT_FOUND, "missing", "p", "op", status=404)


class Calls:
    """Async callable that fails with the queued errors, then succeeds."""

    def __init__(self, *errors: Exception):
        self.errors = list(errors)
        self.count = 0

    async def __call__(self):
        self.count += 1
        if self.errors:
            raise self.errors.pop(0)
        return "ok"


@pytest.fixture
def breaker(clock, events):
    config = CircuitBreakerConfig(failure_threshold=2, success_threshold=2, timeout_seconds=10, volume_threshold=2)
    return CircuitBreaker(config, name="p:op", clock=clock, events=events)


async def fail_times(breaker: CircuitBreaker, n: int, error_factory=server_error) -> None:
    for _ in range(n):
        with pytest.raises(ApiError):
            await breaker.execute(Calls(error_factory()))


def test_default_error_filter():
    assert counts_as_failure(server_error())
    assert counts_as_failure(ApiError(ApiErrorCode.TIMEOUT, "t", "p", "op", retryable=True))
    assert counts_as_failure(ApiError(ApiErrorCode.NETWORK_ERROR, "n", "p", "op", retryable=True))
    assert not counts_as_failure(not_found())
    assert not counts_as_failure(RuntimeError("not an api error"))


@pytest.mark.asyncio
async def test_opens_after_threshold_and_rejects_without_calling(breaker: CircuitBreaker, clock):
    await fail_times(breaker, 2)
    assert breaker.get_state() is CircuitState.OPEN

    fn = Calls()
    clock.advance(4)
    with pytest.raises(CircuitOpenError) as exc_info:
        await breaker.execute(fn)

    assert fn.count == 0
    assert exc_info.value.code is ApiErrorCode.SERVICE_UNAVAILABLE
    assert exc_info.value.retryable is False
    assert exc_info.value.retry_after == pytest.approx(6)
    assert breaker.get_stats().total_requests == 0


@pytest.mark.asyncio
async def test_original_error_is_reraised(breaker: CircuitBreaker):
    error = server_error()
    with pytest.raises(ApiError) as exc_info:
        await breaker.execute(Calls(error))
    assert exc_info.value is error


@pytest.mark.asyncio
async def test_recovers_through_half_open(breaker: CircuitBreaker, clock, events):
    await fail_times(breaker, 2)
    clock.advance(10)

    assert await breaker.execute(Calls()) == "ok"
    assert breaker.get_state() is CircuitState.HALF_OPEN

    assert await breaker.execute(Calls()) == "ok"
    assert breaker.get_state() is CircuitState.CLOSED
    assert breaker.get_stats().total_requests == 0

    transitions = [(e.old_state, e.new_state) for e in events.received if isinstance(e, CircuitStateChanged)]
    assert transitions == [("CLOSED", "OPEN"), ("OPEN", "HALF_OPEN"), ("HALF_OPEN", "CLOSED")]


@pytest.mark.asyncio
async def test_half_open_failure_reopens(breaker: CircuitBreaker, clock):
    await fail_times(breaker, 2)
    clock.advance(10)

    await fail_times(breaker, 1)
    assert breaker.get_state() is CircuitState.OPEN
    with pytest.raises(CircuitOpenError):
        await breaker.execute(Calls())


@pytest.mark.asyncio
async def test_client_errors_are_ignored(breaker: CircuitBreaker):
    await fail_times(breaker, 10, not_found)
    assert breaker.get_state() is CircuitState.CLOSED
    assert breaker.get_stats().failures == 0
    assert breaker.get_stats().total_requests == 0


@pytest.mark.asyncio
async def test_volume_threshold_delays_opening(clock):
    config = CircuitBreakerConfig(failure_threshold=1, volume_threshold=3)
    breaker = CircuitBreaker(config, clock=clock)

    assert await breaker.execute(Calls()) == "ok"
    await fail_times(breaker, 1)
    assert breaker.get_state() is CircuitState.CLOSED

    await fail_times(breaker, 1)
    assert breaker.get_state() is CircuitState.OPEN


@pytest.mark.asyncio
async def test_opening_keeps_last_failure_time(breaker: CircuitBreaker, clock):
    await fail_times(breaker, 2)
    stats = breaker.get_stats()
    assert stats.failures == 0
    assert stats.last_failure_time == clock()


@pytest.mark.asyncio
async def test_reset_closes(breaker: CircuitBreaker):
    await fail_times(breaker, 2)
    breaker.reset()
    assert breaker.get_state() is CircuitState.CLOSED
    assert await breaker.execute(Calls()) == "ok"


# --- Manager ---

def test_manager_merges_provider_config(clock):
    manager = CircuitBreakerManager({"hubspot": {"timeout_seconds": 30, "success_threshold": 3}}, clock=clock)

    hubspot = manager.get_breaker("hubspot", "search")
    assert hubspot.name == "hubspot:search"
    assert hubspot.config.timeout_seconds == 30
    assert hubspot.config.success_threshold == 3
    assert hubspot.config.failure_threshold == 5

    other = manager.get_breaker("xero", "list")
    assert other.config == CircuitBreakerConfig()
    assert manager.get_breaker("hubspot", "search") is hubspot


@pytest.mark.asyncio
async def test_manager_fills_provider_and_operation_on_rejection(clock):
    manager = CircuitBreakerManager({"p": {"failure_threshold": 1, "volume_threshold": 1}}, clock=clock)
    with pytest.raises(ApiError):
        await manager.execute("p", "op", Calls(server_error()))

    with pytest.raises(CircuitOpenError) as exc_info:
        await manager.execute("p", "op", Calls())
    assert exc_info.value.provider == "p"
    assert exc_info.value.operation == "op"
    assert exc_info.value.breaker_key == "p:op"

    status = manager.get_status()
    assert status["p:op"]["state"] == "OPEN"

    manager.reset("p:op")
    assert manager.get_status()["p:op"]["state"] == "CLOSED"
