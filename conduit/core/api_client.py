"""Facade over the request pipeline for integration code.

Integrations call ``get``/``post``/... with a provider, user, path and a
logical operation name; everything else (auth, limits, breakers, retry,
caching) is handled by the pipeline.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from conduit.core.services.request_pipeline import RequestPipeline, ResilienceContext
from conduit.domain.models.common import AuthMethod, HttpMethod
from conduit.domain.models.request import ApiResponse, CacheOptions, RequestDescriptor

logger = logging.getLogger(__name__)


@dataclass
class ConnectionStatus:
    connected: bool
    auth_method: Optional[AuthMethod] = None


class ApiClient:
    """Entry point for outbound provider calls."""

    def __init__(self, context: ResilienceContext):
        self.context = context
        self.pipeline = RequestPipeline(context)

    async def request(self, descriptor: RequestDescriptor) -> ApiResponse:
        return await self.pipeline.request(descriptor)

    async def _call(
        self,
        method: HttpMethod,
        provider: str,
        user_id: str,
        path: str,
        operation: str,
        account_id: Optional[str] = None,
        cache: Optional[CacheOptions] = None,
        **options: Any,
    ) -> ApiResponse:
        descriptor = RequestDescriptor(
            provider=provider,
            user_id=user_id,
            path=path,
            operation=operation,
            method=method,
            account_id=account_id,
            cache_options=cache,
            **options,
        )
        return await self.pipeline.request(descriptor)

    async def get(self, provider: str, user_id: str, path: str, operation: str,
                  account_id: Optional[str] = None, **options: Any) -> ApiResponse:
        """Issues a GET. Pass ``cache=CacheOptions(enabled=True)`` to cache the result."""
        return await self._call(HttpMethod.GET, provider, user_id, path, operation, account_id, **options)

    async def post(self, provider: str, user_id: str, path: str, operation: str,
                   account_id: Optional[str] = None, **options: Any) -> ApiResponse:
        return await self._call(HttpMethod.POST, provider, user_id, path, operation, account_id, **options)

    async def put(self, provider: str, user_id: str, path: str, operation: str,
                  account_id: Optional[str] = None, **options: Any) -> ApiResponse:
        return await self._call(HttpMethod.PUT, provider, user_id, path, operation, account_id, **options)

    async def patch(self, provider: str, user_id: str, path: str, operation: str,
                    account_id: Optional[str] = None, **options: Any) -> ApiResponse:
        return await self._call(HttpMethod.PATCH, provider, user_id, path, operation, account_id, **options)

    async def delete(self, provider: str, user_id: str, path: str, operation: str,
                     account_id: Optional[str] = None, **options: Any) -> ApiResponse:
        return await self._call(HttpMethod.DELETE, provider, user_id, path, operation, account_id, **options)

    # --- Status and connections ---

    def get_status(self) -> Dict[str, Any]:
        """Monitoring snapshot of limiters, breakers and configured providers."""
        registry = self.context.registry
        configs = registry.enabled_configs()
        return {
            "rate_limiter": {
                config.name: self.context.rate_limiter.get_status(config.name) for config in configs
            },
            "circuit_breakers": self.context.breakers.get_status(),
            "providers": [
                {"name": config.name, "display_name": config.display_name, "enabled": config.enabled}
                for config in configs
            ],
        }

    async def is_provider_connected(
        self, user_id: str, provider: str, allow_system_key: bool = False
    ) -> ConnectionStatus:
        """Whether calls for this user can authenticate with the provider.

        A stored access token means an OAuth connection. Otherwise, when
        ``allow_system_key`` is set, a configured system key counts too.
        Expiry is not checked; an expired token is refreshed on first use.
        """
        stored = await self.context.credential_store.get(user_id, provider)
        if stored and stored.access_token:
            return ConnectionStatus(connected=True, auth_method=AuthMethod.OAUTH)

        if allow_system_key:
            try:
                config = self.context.registry.get(provider)
            except ValueError:
                logger.debug(f"No system key check for unknown or disabled provider {provider}")
            else:
                if config.has_system_key():
                    return ConnectionStatus(connected=True, auth_method=AuthMethod.SYSTEM)

        return ConnectionStatus(connected=False)

    async def disconnect(self, user_id: str, provider: str) -> None:
        """Forgets the user's provider credentials, cached and stored."""
        self.context.token_manager.clear_token(user_id, provider)
        await self.context.credential_store.delete(user_id, provider)
        logger.info(f"Disconnected {provider} for user {user_id}")

    def reset(self) -> None:
        """Clears all response caches and closes all circuit breakers."""
        self.context.caches.clear_all()
        self.context.breakers.reset()
