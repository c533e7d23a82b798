"""Provider configuration models.

A ``ProviderConfig`` bundles everything the pipeline needs to talk to one
provider: endpoint, auth methods and the per-provider resilience settings.
``apply_overrides`` merges a YAML ``providers.<name>`` section into one.
"""

import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from conduit.domain.models.common import AuthMethod, ClientAuthStyle
from conduit.infrastructure.cache.caching_service import CacheConfig
from conduit.infrastructure.config.settings import get_env_secret
from conduit.infrastructure.resilience.api_retry import RetryConfig
from conduit.infrastructure.resilience.circuit_breaker import CircuitBreakerConfig
from conduit.infrastructure.resilience.rate_limiter import RateLimitConfig

logger = logging.getLogger(__name__)


@dataclass
class OAuthConfig:
    token_url: str
    client_auth: ClientAuthStyle = ClientAuthStyle.POST
    client_id_env: Optional[str] = None
    client_secret_env: Optional[str] = None
    scopes: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if isinstance(self.client_auth, str):
            self.client_auth = ClientAuthStyle(self.client_auth.lower())

    def client_credentials(self) -> Tuple[Optional[str], Optional[str]]:
        """Reads the OAuth client id and secret from the environment."""
        return get_env_secret(self.client_id_env), get_env_secret(self.client_secret_env)


@dataclass
class SystemApiKeyConfig:
    env_var: str
    header_name: str = "Authorization"
    header_template: str = "{key}"

    def read_key(self) -> Optional[str]:
        return get_env_secret(self.env_var)

    def format_header(self, api_key: str) -> Dict[str, str]:
        return {self.header_name: self.header_template.replace("{key}", api_key)}


@dataclass
class ProviderConfig:
    name: str
    display_name: str
    base_url: str
    timeout_seconds: Optional[float] = None  # None means the configured default
    oauth: Optional[OAuthConfig] = None
    system_api_key: Optional[SystemApiKeyConfig] = None
    default_headers: Dict[str, str] = field(default_factory=dict)
    rate_limit: Optional[RateLimitConfig] = None
    circuit_breaker: Dict[str, Any] = field(default_factory=dict)  # CircuitBreakerConfig field overrides
    retry: RetryConfig = field(default_factory=RetryConfig)
    cache: Optional[CacheConfig] = None
    adapter: Optional[str] = None  # Adapter name; defaults to the provider name
    enabled: bool = True

    def __post_init__(self) -> None:
        if self.cache is None:
            self.cache = CacheConfig(key_prefix=f"{self.name}:")

    @property
    def auth_methods(self) -> List[AuthMethod]:
        methods = []
        if self.oauth:
            methods.append(AuthMethod.OAUTH)
        if self.system_api_key:
            methods.append(AuthMethod.SYSTEM)
        return methods

    def has_system_key(self) -> bool:
        return bool(self.system_api_key and self.system_api_key.read_key())

    def endpoint_url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"


def _oauth_from_mapping(name: str, values: Mapping[str, Any], base: Optional[OAuthConfig]) -> OAuthConfig:
    current = dataclasses.asdict(base) if base else {}
    current.update(values)
    if "token_url" not in current:
        raise ValueError(f"OAuth configuration for provider {name} requires token_url")
    current.setdefault("client_id_env", f"{name.upper()}_CLIENT_ID")
    current.setdefault("client_secret_env", f"{name.upper()}_CLIENT_SECRET")
    return OAuthConfig(**current)


def _replace(obj: Any, values: Mapping[str, Any], section: str, provider: str) -> Any:
    try:
        return dataclasses.replace(obj, **values)
    except TypeError as e:
        raise ValueError(f"Invalid '{section}' settings for provider {provider}: {e}") from e


def _rate_limit(values: Mapping[str, Any], provider: str) -> RateLimitConfig:
    try:
        return RateLimitConfig(**values)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid 'rate_limit' settings for provider {provider}: {e}") from e


def apply_overrides(base: Optional[ProviderConfig], name: str, overrides: Mapping[str, Any]) -> ProviderConfig:
    """Returns ``base`` with a YAML override section applied.

    Args:
        base: The built-in config, or None when the section adds a new provider.
        name: Provider name.
        overrides: The ``providers.<name>`` mapping from configuration.

    Raises:
        ValueError: If a new provider lacks ``base_url`` or a section is malformed.
    """
    if base is None:
        if "base_url" not in overrides:
            raise ValueError(f"Provider {name} is not built in and its configuration has no base_url")
        config = ProviderConfig(name=name, display_name=overrides.get("display_name", name), base_url=overrides["base_url"])
    else:
        config = dataclasses.replace(base, default_headers=dict(base.default_headers),
                                     circuit_breaker=dict(base.circuit_breaker))

    for key, value in overrides.items():
        if key in ("display_name", "base_url", "timeout_seconds", "adapter", "enabled"):
            setattr(config, key, value)
        elif key == "default_headers":
            config.default_headers.update(value or {})
        elif key == "oauth":
            config.oauth = _oauth_from_mapping(name, value or {}, config.oauth) if value is not False else None
        elif key == "system_api_key":
            if value is False:
                config.system_api_key = None
            else:
                current = dataclasses.asdict(config.system_api_key) if config.system_api_key else {}
                current.update(value or {})
                current.setdefault("env_var", f"{name.upper()}_API_KEY")
                config.system_api_key = SystemApiKeyConfig(**current)
        elif key == "rate_limit":
            config.rate_limit = _rate_limit(value, name) if value else None
        elif key == "circuit_breaker":
            merged = {**config.circuit_breaker, **(value or {})}
            _replace(CircuitBreakerConfig(), merged, key, name)
            config.circuit_breaker = merged
        elif key == "retry":
            config.retry = _replace(config.retry, value or {}, key, name)
        elif key == "cache":
            config.cache = _replace(config.cache, value or {}, key, name)
        else:
            logger.warning(f"Ignoring unknown setting '{key}' for provider {name}")
    return config
