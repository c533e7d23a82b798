"""Core service that executes outbound API calls with resilience.

Every call goes through the same stages:

1. Cache lookup for opted-in reads.
2. Rate-limit admission per (provider, user).
3. Auth resolution, HTTP call, response parsing and error classification,
   all under the ``<provider>:<operation>`` circuit breaker.
4. Cache population on success.

Stages 2-4 run inside the provider's retry policy. All shared state lives
in a ``ResilienceContext`` owned by the caller.
"""

import asyncio
import copy
import logging
import time
from typing import Any, Callable, Dict, Optional

import httpx

from conduit.domain.events.api_events import (
    ApiCallDeferred,
    ApiCallFailed,
    ApiCallInitiated,
    ApiCallSucceeded,
    CacheHit,
    EventDispatcher,
    RetryScheduled,
)
from conduit.domain.interfaces.credential_store import CredentialStore
from conduit.domain.interfaces.provider_adapter import ProviderAdapter
from conduit.domain.models.common import AuthMethod, CacheKey
from conduit.domain.models.errors import ApiError, ApiErrorCode
from conduit.domain.models.request import ApiResponse, RequestDescriptor
from conduit.infrastructure.auth.credential_store import InMemoryCredentialStore, JsonFileCredentialStore
from conduit.infrastructure.auth.token_manager import TokenManager
from conduit.infrastructure.cache.caching_service import CacheKeyBuilder, CacheManager
from conduit.infrastructure.config import settings
from conduit.infrastructure.http.error_mapping import classify_transport_error
from conduit.infrastructure.monitoring.api_logger import ApiLogger
from conduit.infrastructure.providers.config import ProviderConfig
from conduit.infrastructure.providers.registry import ProviderRegistry
from conduit.infrastructure.resilience.api_retry import Sleep, with_retry
from conduit.infrastructure.resilience.circuit_breaker import CircuitBreakerManager
from conduit.infrastructure.resilience.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


class ResilienceContext:
    """All process-local pipeline state: limiter, breakers, caches, tokens.

    Use ``create`` to build one from configuration, and ``aclose`` (or
    ``async with``) to release the HTTP client and stop the cache sweeper.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        rate_limiter: RateLimiter,
        breakers: CircuitBreakerManager,
        caches: CacheManager,
        token_manager: TokenManager,
        credential_store: CredentialStore,
        http_client: httpx.AsyncClient,
        events: EventDispatcher,
        api_logger: Optional[ApiLogger] = None,
        default_timeout: float = settings.DEFAULT_TIMEOUT_SECONDS,
        retry_sleep: Sleep = asyncio.sleep,
        owns_http_client: bool = True,
    ):
        self.registry = registry
        self.rate_limiter = rate_limiter
        self.breakers = breakers
        self.caches = caches
        self.token_manager = token_manager
        self.credential_store = credential_store
        self.http_client = http_client
        self.events = events
        self.api_logger = api_logger or ApiLogger()
        self.default_timeout = default_timeout
        self.retry_sleep = retry_sleep
        self._owns_http_client = owns_http_client

    @classmethod
    def create(
        cls,
        registry: Optional[ProviderRegistry] = None,
        credential_store: Optional[CredentialStore] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        events: Optional[EventDispatcher] = None,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
        retry_sleep: Sleep = asyncio.sleep,
        default_timeout: Optional[float] = None,
        sweep_interval: Optional[float] = None,
    ) -> "ResilienceContext":
        """Builds a context from the provider registry and settings.

        Args:
            registry: Provider registry (defaults to built-ins plus config overrides).
            credential_store: Token storage. Defaults to the JSON file store when
                ``credentials.file`` is configured, else an in-memory store.
            http_client: Shared client. A client passed in is not closed by ``aclose``.
            events: Event dispatcher shared by all components.
            clock: Monotonic clock for limiter, breakers and caches.
            wall_clock: Unix-time clock for token expiry.
            retry_sleep: Backoff sleep, injectable for tests.
            default_timeout: Per-call timeout for providers without one.
            sweep_interval: Seconds between cache sweeps.
        """
        registry = registry or ProviderRegistry.from_settings()
        events = events or EventDispatcher()
        if credential_store is None:
            credentials_file = settings.get_credentials_file()
            credential_store = (
                JsonFileCredentialStore(credentials_file, clock=wall_clock)
                if credentials_file
                else InMemoryCredentialStore(clock=wall_clock)
            )
        owns_http_client = http_client is None
        http_client = http_client or httpx.AsyncClient()
        timeout = default_timeout if default_timeout is not None else settings.get_default_timeout()

        return cls(
            registry=registry,
            rate_limiter=RateLimiter(registry.rate_limit_configs(), clock=clock),
            breakers=CircuitBreakerManager(registry.circuit_breaker_configs(), clock=clock, events=events),
            caches=CacheManager(
                registry.cache_configs(),
                sweep_interval=sweep_interval or settings.get_cache_sweep_interval(),
                clock=clock,
            ),
            token_manager=TokenManager(
                registry, credential_store, http_client, events=events, clock=wall_clock,
                refresh_timeout_seconds=timeout,
            ),
            credential_store=credential_store,
            http_client=http_client,
            events=events,
            default_timeout=timeout,
            retry_sleep=retry_sleep,
            owns_http_client=owns_http_client,
        )

    async def __aenter__(self) -> "ResilienceContext":
        self.caches.start_sweeper()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.caches.stop_sweeper()
        if self._owns_http_client:
            await self.http_client.aclose()


def parse_response_body(response: httpx.Response) -> Any:
    """JSON for ``application/json`` responses, text otherwise."""
    content_type = response.headers.get("content-type", "")
    if "application/json" in content_type:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            logger.warning(f"Response declared JSON but could not be decoded ({len(response.content)} bytes)")
    return response.text


class RequestPipeline:
    """Runs RequestDescriptors through cache, limiter, breaker and retry."""

    def __init__(self, context: ResilienceContext):
        self.context = context

    async def request(self, descriptor: RequestDescriptor) -> ApiResponse:
        """Executes one outbound call.

        Returns:
            The response; ``cached`` is True when served from the cache.

        Raises:
            ValueError: For unknown or disabled providers.
            ApiError: For every classified failure, after retries.
        """
        ctx = self.context
        config = ctx.registry.get(descriptor.provider)
        adapter = ctx.registry.adapter(descriptor.provider)

        cache_key: Optional[CacheKey] = None
        if descriptor.wants_cache:
            cache_key = self._cache_key(descriptor)
            cached = ctx.caches.get_cache(config.name).get(cache_key)
            if cached is not None:
                logger.debug(f"Cache hit for {config.name}:{descriptor.operation} ({cache_key})")
                ctx.events.dispatch(CacheHit(provider=config.name, operation=descriptor.operation, cache_key=cache_key))
                return cached.as_cached()

        async def attempt() -> ApiResponse:
            await self._admit(descriptor, config)

            async def call() -> ApiResponse:
                return await self._perform(descriptor, config, adapter, cache_key)

            if descriptor.skip_circuit_breaker:
                return await call()
            return await ctx.breakers.execute(config.name, descriptor.operation, call)

        def on_retry(attempt_number: int, error: BaseException, delay: float) -> None:
            code = error.code.value if isinstance(error, ApiError) else None
            logger.info(
                f"Retrying {config.name}:{descriptor.operation} (attempt {attempt_number}) after {delay:.2f}s: {error}"
            )
            ctx.events.dispatch(RetryScheduled(
                provider=config.name,
                operation=descriptor.operation,
                attempt_number=attempt_number,
                delay_seconds=delay,
                error_code=code,
            ))

        try:
            if descriptor.skip_retry:
                return await attempt()
            return await with_retry(attempt, config.retry, on_retry=on_retry, sleep=ctx.retry_sleep)
        except ApiError as e:
            ctx.events.dispatch(ApiCallFailed(
                provider=config.name,
                operation=descriptor.operation,
                error_code=e.code.value,
                error_message=e.message,
                status=e.status,
            ))
            raise

    @staticmethod
    def _cache_key(descriptor: RequestDescriptor) -> CacheKey:
        options = descriptor.cache_options
        if options and options.key:
            return CacheKey(options.key)
        return CacheKeyBuilder.build({
            "provider": descriptor.provider,
            "user_id": descriptor.user_id,
            "path": descriptor.path,
            "query": descriptor.query,
        })

    async def _admit(self, descriptor: RequestDescriptor, config: ProviderConfig) -> None:
        """Waits for a rate-limit slot for (provider, user)."""
        limiter = self.context.rate_limiter
        if descriptor.skip_rate_limit or not limiter.is_configured(config.name):
            return
        status = limiter.get_status(config.name, descriptor.user_id)
        if status and (status["queue_length"] > 0 or status["available_tokens"] < 1):
            self.context.events.dispatch(ApiCallDeferred(
                provider=config.name,
                operation=descriptor.operation,
                queue_length=status["queue_length"] + 1,
            ))
        await limiter.acquire(config.name, descriptor.user_id)

    async def _auth_headers(
        self, descriptor: RequestDescriptor, config: ProviderConfig, adapter: ProviderAdapter
    ) -> Dict[str, str]:
        if descriptor.auth_method is AuthMethod.NONE:
            return {}
        if descriptor.auth_method is AuthMethod.SYSTEM:
            api_key = config.system_api_key.read_key() if config.system_api_key else None
            if not api_key:
                raise ApiError(
                    ApiErrorCode.UNAUTHORIZED,
                    "System API key not configured",
                    config.name,
                    descriptor.operation,
                )
            return adapter.build_system_key_headers(api_key)
        token = await self.context.token_manager.get_valid_token(descriptor.user_id, config.name)
        return adapter.build_oauth_headers(token)

    async def _perform(
        self,
        descriptor: RequestDescriptor,
        config: ProviderConfig,
        adapter: ProviderAdapter,
        cache_key: Optional[CacheKey],
    ) -> ApiResponse:
        """One HTTP exchange: auth, send, parse, classify, cache."""
        ctx = self.context
        provider, operation = config.name, descriptor.operation
        method = descriptor.method.value
        url = config.endpoint_url(descriptor.path)

        headers = {
            **config.default_headers,
            **await self._auth_headers(descriptor, config, adapter),
            **descriptor.headers,
        }
        timeout = descriptor.timeout_seconds or config.timeout_seconds or ctx.default_timeout

        ctx.events.dispatch(ApiCallInitiated(provider=provider, operation=operation, method=method, url=url))
        started_at = ctx.api_logger.log_request(
            provider, operation, method, url, headers=headers, body=descriptor.body, user_id=descriptor.user_id,
            secret_headers=(config.system_api_key.header_name,) if config.system_api_key else (),
        )

        try:
            response = await ctx.http_client.request(
                method,
                url,
                params=descriptor.query,
                headers=headers,
                json=descriptor.body,
                timeout=timeout,
            )
        except httpx.HTTPError as e:
            ctx.api_logger.log_response(provider, operation, method, url, started_at, status=0, error=e)
            raise classify_transport_error(provider, operation, e) from e

        data = parse_response_body(response)
        response_headers = dict(response.headers)
        latency_ms = ctx.api_logger.log_response(
            provider, operation, method, url, started_at,
            status=response.status_code, response_headers=response_headers, response_body=data,
        )

        if not response.is_success:
            error = adapter.map_error(operation, response.status_code, data, response_headers)
            if error.is_auth_error and descriptor.auth_method is AuthMethod.OAUTH:
                ctx.token_manager.clear_token(descriptor.user_id, provider)
            raise error

        result = ApiResponse(data=data, status=response.status_code, headers=response_headers)
        if cache_key is not None:
            ttl = descriptor.cache_options.ttl_seconds if descriptor.cache_options else None
            ctx.caches.get_cache(provider).set(cache_key, copy.deepcopy(result), ttl_seconds=ttl)

        ctx.events.dispatch(ApiCallSucceeded(
            provider=provider, operation=operation, status=response.status_code, latency_ms=latency_ms
        ))
        return result
