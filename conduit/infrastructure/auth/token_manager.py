"""OAuth access token management.

Hands out valid access tokens per (user, provider). Tokens are cached in
memory; an expired or missing one is resolved from the credential store,
refreshing it against the provider's token endpoint when needed.
Concurrent callers for the same (user, provider) share one resolution, so
at most one refresh request is in flight per key.
"""

import asyncio
import logging
import time
from typing import Callable, Dict, Optional

import httpx

from conduit.domain.events.api_events import EventDispatcher, TokenRefreshed
from conduit.domain.interfaces.credential_store import CredentialStore
from conduit.domain.models.errors import ApiError, ApiErrorCode
from conduit.domain.models.tokens import DEFAULT_EXPIRY_BUFFER_SECONDS, TokenInfo
from conduit.infrastructure.providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)

TOKEN_REFRESH_OPERATION = "token_refresh"


def _token_error(provider: str, message: str, status: Optional[int] = None) -> ApiError:
    return ApiError(
        ApiErrorCode.TOKEN_INVALID,
        message,
        provider,
        TOKEN_REFRESH_OPERATION,
        retryable=False,
        status=status,
    )


class TokenManager:
    """Caches and refreshes OAuth access tokens."""

    def __init__(
        self,
        registry: ProviderRegistry,
        credential_store: CredentialStore,
        http_client: httpx.AsyncClient,
        events: Optional[EventDispatcher] = None,
        clock: Callable[[], float] = time.time,
        buffer_seconds: float = DEFAULT_EXPIRY_BUFFER_SECONDS,
        refresh_timeout_seconds: float = 30.0,
    ):
        """Initializes the TokenManager.

        Args:
            registry: Provider registry supplying the refresh adapters.
            credential_store: Durable storage for tokens.
            http_client: Shared client used for token endpoint calls.
            events: Dispatcher for TokenRefreshed events.
            clock: Wall clock (Unix seconds), matching stored expiry times.
            buffer_seconds: Tokens expiring within this window count as expired.
            refresh_timeout_seconds: Timeout for the token endpoint call.
        """
        self._registry = registry
        self._store = credential_store
        self._http = http_client
        self._events = events
        self._clock = clock
        self._buffer = buffer_seconds
        self._refresh_timeout = refresh_timeout_seconds
        self._tokens: Dict[str, TokenInfo] = {}
        self._inflight: Dict[str, "asyncio.Task[TokenInfo]"] = {}

    @staticmethod
    def _key(user_id: str, provider: str) -> str:
        return f"{user_id}:{provider}"

    def _is_valid(self, token: TokenInfo) -> bool:
        return token.is_valid(now=self._clock(), buffer_seconds=self._buffer)

    async def get_valid_token(self, user_id: str, provider: str) -> str:
        """Returns an access token that will stay valid beyond the buffer window.

        Raises:
            ApiError: TOKEN_INVALID when no usable token can be obtained.
                Never retryable.
        """
        key = self._key(user_id, provider)
        cached = self._tokens.get(key)
        if cached and self._is_valid(cached):
            return cached.access_token

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.get_running_loop().create_task(self._resolve(user_id, provider))
            self._inflight[key] = task
            task.add_done_callback(lambda t, k=key: self._settle(k, t))
        else:
            logger.debug(f"Joining in-flight token resolution for {key}")

        # Shielded so one cancelled caller does not abort the shared resolution
        token = await asyncio.shield(task)
        return token.access_token

    def _settle(self, key: str, task: "asyncio.Task[TokenInfo]") -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled():
            # Marks the exception retrieved when every waiter was cancelled
            task.exception()

    async def _resolve(self, user_id: str, provider: str) -> TokenInfo:
        try:
            stored = await self._store.get(user_id, provider)

            if stored and stored.access_token:
                candidate = TokenInfo(
                    access_token=stored.access_token,
                    provider=provider,
                    user_id=user_id,
                    refresh_token=stored.refresh_token,
                    expires_at=stored.access_token_expires_at,
                )
                if self._is_valid(candidate):
                    self.cache_token(candidate)
                    return candidate

            if not stored or not stored.refresh_token:
                raise _token_error(provider, "No refresh token available")

            return await self._refresh(user_id, provider, stored.refresh_token)
        except ApiError:
            raise
        except Exception as e:
            logger.error(f"Token refresh for {user_id}:{provider} failed: {e}", exc_info=True)
            raise _token_error(provider, f"Failed to refresh token: {e}") from e

    async def _refresh(self, user_id: str, provider: str, refresh_token: str) -> TokenInfo:
        adapter = self._registry.adapter(provider)
        refresh_request = adapter.build_refresh_request(refresh_token)

        logger.info(f"Refreshing {provider} access token for user {user_id}")
        response = await self._http.post(
            refresh_request.url,
            data=refresh_request.data,
            headers=refresh_request.headers,
            timeout=self._refresh_timeout,
        )
        if response.status_code >= 400:
            try:
                detail = response.json().get("error")
            except ValueError:
                detail = None
            raise _token_error(
                provider,
                f"Token refresh failed with status {response.status_code}: {detail or 'Failed to refresh token'}",
                status=response.status_code,
            )

        result = adapter.parse_refresh_response(response.json())
        await self._store.update(user_id, provider, result)

        now = self._clock()
        token = TokenInfo(
            access_token=result.access_token,
            provider=provider,
            user_id=user_id,
            refresh_token=result.refresh_token or refresh_token,
            expires_at=now + result.expires_in if result.expires_in is not None else None,
        )
        self.cache_token(token)
        if self._events:
            self._events.dispatch(TokenRefreshed(provider=provider, user_id=user_id, expires_at=token.expires_at))
        return token

    def cache_token(self, token: TokenInfo) -> None:
        self._tokens[self._key(token.user_id, token.provider)] = token

    def get_cached_token(self, user_id: str, provider: str) -> Optional[TokenInfo]:
        return self._tokens.get(self._key(user_id, provider))

    def clear_token(self, user_id: str, provider: str) -> None:
        """Forgets the cached token, e.g. on disconnect."""
        self._tokens.pop(self._key(user_id, provider), None)

    def clear_all(self) -> None:
        self._tokens.clear()
