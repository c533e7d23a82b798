"""Request and response models for the pipeline.

A ``RequestDescriptor`` fully describes one outbound call; the pipeline
turns it into an ``ApiResponse`` or raises an ``ApiError``.
"""

import copy
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional

from conduit.domain.models.common import AuthMethod, HttpMethod


@dataclass
class CacheOptions:
    """Per-request opt-in for response caching (reads only)."""
    enabled: bool = False
    ttl_seconds: Optional[float] = None
    key: Optional[str] = None  # Explicit key; derived from the request when None


@dataclass
class RequestDescriptor:
    provider: str
    user_id: str
    path: str
    operation: str
    method: HttpMethod = HttpMethod.GET
    account_id: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)
    body: Any = None
    query: Optional[Dict[str, Any]] = None
    cache_options: Optional[CacheOptions] = None
    auth_method: AuthMethod = AuthMethod.OAUTH
    skip_rate_limit: bool = False
    skip_retry: bool = False
    skip_circuit_breaker: bool = False
    timeout_seconds: Optional[float] = None  # Falls back to the provider timeout

    def __post_init__(self) -> None:
        # Accept plain strings from callers
        if not isinstance(self.method, HttpMethod):
            self.method = HttpMethod(str(self.method).upper())
        self.auth_method = AuthMethod(self.auth_method)

    @property
    def wants_cache(self) -> bool:
        """True when this is a read and the caller opted into caching."""
        return self.method.is_read and bool(self.cache_options and self.cache_options.enabled)


@dataclass
class ApiResponse:
    data: Any
    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    cached: bool = False

    def as_cached(self) -> "ApiResponse":
        """Copy of this response flagged as served from cache."""
        return replace(self, data=copy.deepcopy(self.data), headers=dict(self.headers), cached=True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data": self.data,
            "status": self.status,
            "headers": self.headers,
            "cached": self.cached,
        }
