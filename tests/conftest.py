import time
from typing import Callable, List, Optional

import httpx
import pytest
from typer.testing import CliRunner

from conduit.core.services.request_pipeline import ResilienceContext
from conduit.domain.events.api_events import DomainEvent, EventDispatcher
from conduit.infrastructure.auth.credential_store import InMemoryCredentialStore
from conduit.infrastructure.config.settings import clear_test_config
from conduit.infrastructure.providers.registry import ProviderRegistry


class FakeClock:
    """Manually advanced clock, callable like time.monotonic."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Stands in for asyncio.sleep in retry tests; records delays, never waits."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture(scope="session")
def runner():
    """Provides a Typer CliRunner instance."""
    return CliRunner()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_sleep():
    return RecordingSleep()


@pytest.fixture
def events():
    """An EventDispatcher plus the list of every event it dispatched."""
    dispatcher = EventDispatcher()
    received: List[DomainEvent] = []
    dispatcher.subscribe(received.append)
    dispatcher.received = received
    return dispatcher


@pytest.fixture
def credential_store():
    return InMemoryCredentialStore()


@pytest.fixture(autouse=True)
def isolated_provider_env(monkeypatch):
    """Removes provider secrets that may be set on the machine running the tests."""
    for provider in ("ANTHROPIC", "HUBSPOT", "PANDADOC", "SENDGRID", "SLACK", "XERO"):
        for suffix in ("API_KEY", "CLIENT_ID", "CLIENT_SECRET"):
            monkeypatch.delenv(f"{provider}_{suffix}", raising=False)
    yield
    clear_test_config()


@pytest.fixture
def make_context(clock, fake_sleep, events, credential_store):
    """Factory for a ResilienceContext whose HTTP traffic goes to ``handler``."""
    contexts: List[ResilienceContext] = []

    def _make(handler: Callable, registry: Optional[ProviderRegistry] = None) -> ResilienceContext:
        context = ResilienceContext.create(
            registry=registry or ProviderRegistry(),
            credential_store=credential_store,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            events=events,
            clock=clock,
            wall_clock=time.time,
            retry_sleep=fake_sleep,
            default_timeout=5.0,
            sweep_interval=60.0,
        )
        contexts.append(context)
        return context

    return _make
