"""Defines common Value Objects used across the pipeline.

These objects represent simple values such as provider names, user ids,
cache keys and bucket keys, keeping call signatures self-describing.
"""

from enum import Enum
from typing import NewType, TypedDict, Optional

# === Core Value Objects ===

ProviderName = NewType("ProviderName", str)    # e.g. 'hubspot', 'xero'
UserId = NewType("UserId", str)                # Owner of the provider connection
OperationName = NewType("OperationName", str)  # Logical call name, e.g. 'search_contacts'

# === Rate Limiting Context ===
BucketKey = NewType("BucketKey", str)          # '<provider>:<key>'

# === Circuit Breaker Context ===
BreakerKey = NewType("BreakerKey", str)        # '<provider>:<operation>'

# === Caching Context ===
CacheKey = NewType("CacheKey", str)            # Unique key for a cache entry
CachePrefix = NewType("CachePrefix", str)      # Per-provider key prefix, e.g. 'hubspot:'


class AuthMethod(str, Enum):
    """How the pipeline authenticates an outbound call."""
    OAUTH = "oauth"
    SYSTEM = "system"
    NONE = "none"


class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"

    @property
    def is_read(self) -> bool:
        return self is HttpMethod.GET


class ClientAuthStyle(str, Enum):
    """Where OAuth client credentials go on a token refresh request."""
    POST = "post"    # client_id / client_secret in the form body
    BASIC = "basic"  # HTTP Basic header


def make_bucket_key(provider: str, key: Optional[str] = None) -> BucketKey:
    return BucketKey(f"{provider}:{key or 'default'}")


def make_breaker_key(provider: str, operation: str) -> BreakerKey:
    return BreakerKey(f"{provider}:{operation}")


# --- Structured Data ---

class BucketStatus(TypedDict):
    """Monitoring snapshot of one token bucket."""
    available_tokens: int
    queue_length: int
