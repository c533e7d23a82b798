"""Provider registry.

Holds the built-in provider table, merges configuration overrides into it
and hands out one adapter per provider.
"""

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional

from conduit.domain.interfaces.provider_adapter import ProviderAdapter
from conduit.domain.models.common import ClientAuthStyle
from conduit.infrastructure.cache.caching_service import CacheConfig
from conduit.infrastructure.config import settings
from conduit.infrastructure.providers.adapters import create_adapter
from conduit.infrastructure.providers.config import (
    OAuthConfig,
    ProviderConfig,
    SystemApiKeyConfig,
    apply_overrides,
)
from conduit.infrastructure.resilience.api_retry import RetryConfig
from conduit.infrastructure.resilience.rate_limiter import RateLimitConfig

logger = logging.getLogger(__name__)

DISPLAY_NAMES = {
    "hubspot": "HubSpot",
    "pandadoc": "PandaDoc",
    "microsoft": "Microsoft",
    "anthropic": "Anthropic",
    "sendgrid": "SendGrid",
    "slack": "Slack",
    "xero": "Xero",
}


def display_name_for(provider: str) -> str:
    return DISPLAY_NAMES.get(provider.lower(), provider[:1].upper() + provider[1:])


def _oauth(provider: str, token_url: str, client_auth: ClientAuthStyle, scopes: List[str]) -> OAuthConfig:
    return OAuthConfig(
        token_url=token_url,
        client_auth=client_auth,
        client_id_env=f"{provider.upper()}_CLIENT_ID",
        client_secret_env=f"{provider.upper()}_CLIENT_SECRET",
        scopes=scopes,
    )


def builtin_providers() -> Dict[str, ProviderConfig]:
    """Fresh copies of the built-in provider configurations."""
    return {
        "anthropic": ProviderConfig(
            name="anthropic",
            display_name="Anthropic",
            base_url="https://api.anthropic.com",
            system_api_key=SystemApiKeyConfig("ANTHROPIC_API_KEY", "x-api-key", "{key}"),
        ),
        "hubspot": ProviderConfig(
            name="hubspot",
            display_name="HubSpot",
            base_url="https://api.hubapi.com",
            timeout_seconds=30.0,
            oauth=_oauth(
                "hubspot",
                "https://api.hubapi.com/oauth/v1/token",
                ClientAuthStyle.POST,
                ["crm.objects.contacts.read", "crm.objects.contacts.write"],
            ),
            system_api_key=SystemApiKeyConfig("HUBSPOT_API_KEY", "Authorization", "Bearer {key}"),
            rate_limit=RateLimitConfig(max_requests=100, window_seconds=10, max_burst=10),
            circuit_breaker={"failure_threshold": 5, "success_threshold": 3, "timeout_seconds": 30.0, "volume_threshold": 10},
            retry=RetryConfig(max_attempts=3, initial_delay=1.0, max_delay=10.0),
            cache=CacheConfig(ttl_seconds=5 * 60, max_size=500, key_prefix="hubspot:"),
        ),
        "pandadoc": ProviderConfig(
            name="pandadoc",
            display_name="PandaDoc",
            base_url="https://api.pandadoc.com/public/v1",
            timeout_seconds=60.0,
            oauth=_oauth(
                "pandadoc",
                "https://api.pandadoc.com/oauth2/access_token",
                ClientAuthStyle.POST,
                ["read+write"],
            ),
            system_api_key=SystemApiKeyConfig("PANDADOC_API_KEY", "Authorization", "API-Key {key}"),
            rate_limit=RateLimitConfig(max_requests=30, window_seconds=60, max_burst=5),
            circuit_breaker={"failure_threshold": 3, "success_threshold": 2, "timeout_seconds": 60.0, "volume_threshold": 5},
            retry=RetryConfig(max_attempts=3, initial_delay=2.0, max_delay=20.0),
            cache=CacheConfig(ttl_seconds=10 * 60, max_size=200, key_prefix="pandadoc:"),
        ),
        "sendgrid": ProviderConfig(
            name="sendgrid",
            display_name="SendGrid",
            base_url="https://api.sendgrid.com/v3",
            system_api_key=SystemApiKeyConfig("SENDGRID_API_KEY", "Authorization", "Bearer {key}"),
        ),
        "slack": ProviderConfig(
            name="slack",
            display_name="Slack",
            base_url="https://slack.com/api",
            oauth=_oauth(
                "slack",
                "https://slack.com/api/oauth.v2.access",
                ClientAuthStyle.POST,
                ["channels:read", "chat:write", "users:read"],
            ),
            system_api_key=SystemApiKeyConfig("SLACK_API_KEY", "Authorization", "Bearer {key}"),
        ),
        "xero": ProviderConfig(
            name="xero",
            display_name="Xero",
            base_url="https://api.xero.com/api.xro/2.0",
            oauth=_oauth(
                "xero",
                "https://identity.xero.com/connect/token",
                ClientAuthStyle.BASIC,
                ["accounting.contacts.read", "offline_access"],
            ),
            system_api_key=SystemApiKeyConfig("XERO_API_KEY", "Authorization", "Bearer {key}"),
            default_headers={"Accept": "application/json"},
        ),
    }


class ProviderRegistry:
    """Provider configurations and their adapters, keyed by lower-case name."""

    def __init__(self, configs: Optional[Iterable[ProviderConfig]] = None):
        self._configs: Dict[str, ProviderConfig] = {}
        self._adapters: Dict[str, ProviderAdapter] = {}
        for config in configs if configs is not None else builtin_providers().values():
            self.register(config)

    @classmethod
    def from_settings(cls, overrides: Optional[Mapping[str, Mapping[str, Any]]] = None) -> "ProviderRegistry":
        """Built-in providers merged with the ``providers:`` configuration section.

        Raises:
            ValueError: If an override section is malformed.
        """
        configs = builtin_providers()
        sections = overrides if overrides is not None else settings.get_provider_overrides()
        for name, values in sections.items():
            key = name.lower()
            configs[key] = apply_overrides(configs.get(key), key, values)
            logger.debug(f"Applied configuration overrides for provider {key}")
        return cls(configs.values())

    def register(self, config: ProviderConfig) -> None:
        name = config.name.lower()
        self._configs[name] = config
        self._adapters[name] = create_adapter(config)

    def get(self, provider: str) -> ProviderConfig:
        """Returns the config for a provider.

        Raises:
            ValueError: If the provider is unknown or disabled.
        """
        config = self._configs.get(provider.lower())
        if config is None:
            raise ValueError(f"Unknown provider: {provider}")
        if not config.enabled:
            raise ValueError(f"Provider {provider} is not enabled")
        return config

    def adapter(self, provider: str) -> ProviderAdapter:
        self.get(provider)
        return self._adapters[provider.lower()]

    def names(self) -> List[str]:
        return sorted(self._configs)

    def enabled_configs(self) -> List[ProviderConfig]:
        return [self._configs[name] for name in self.names() if self._configs[name].enabled]

    def rate_limit_configs(self) -> Dict[str, RateLimitConfig]:
        return {c.name: c.rate_limit for c in self.enabled_configs() if c.rate_limit}

    def circuit_breaker_configs(self) -> Dict[str, Dict[str, Any]]:
        return {c.name: dict(c.circuit_breaker) for c in self.enabled_configs() if c.circuit_breaker}

    def cache_configs(self) -> Dict[str, CacheConfig]:
        return {c.name: c.cache for c in self.enabled_configs() if c.cache}

    def __contains__(self, provider: str) -> bool:
        return provider.lower() in self._configs
