"""Provider adapters.

``GenericAdapter`` covers any provider described purely by configuration.
The subclasses add the error shapes a few providers are known to return.
"""

import base64
import logging
from typing import Any, Dict, Mapping, Type

from conduit.domain.interfaces.provider_adapter import ProviderAdapter, RefreshRequest
from conduit.domain.models.common import ClientAuthStyle
from conduit.domain.models.errors import ApiError, ApiErrorCode
from conduit.domain.models.tokens import TokenRefreshResult
from conduit.infrastructure.http.error_mapping import map_status_error
from conduit.infrastructure.providers.config import ProviderConfig

logger = logging.getLogger(__name__)


class GenericAdapter(ProviderAdapter):
    """Adapter driven entirely by a ProviderConfig."""

    def __init__(self, config: ProviderConfig):
        self.config = config
        self.name = config.name

    def build_oauth_headers(self, access_token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {access_token}"}

    def build_system_key_headers(self, api_key: str) -> Dict[str, str]:
        if not self.config.system_api_key:
            raise ValueError(f"No system API key configuration for provider: {self.name}")
        return self.config.system_api_key.format_header(api_key)

    def map_error(self, operation: str, status: int, data: Any, headers: Mapping[str, str]) -> ApiError:
        return map_status_error(self.name, operation, status, data, headers)

    def build_refresh_request(self, refresh_token: str) -> RefreshRequest:
        oauth = self.config.oauth
        if oauth is None:
            raise ValueError(f"Provider {self.name} has no OAuth configuration")

        client_id, client_secret = oauth.client_credentials()
        if not client_id or not client_secret:
            raise ValueError(f"Missing client credentials for provider {self.name}")

        data = {"grant_type": "refresh_token", "refresh_token": refresh_token}
        headers = {"Accept": "application/json"}
        if oauth.client_auth is ClientAuthStyle.BASIC:
            encoded = base64.b64encode(f"{client_id}:{client_secret}".encode("utf-8")).decode("ascii")
            headers["Authorization"] = f"Basic {encoded}"
        else:
            data["client_id"] = client_id
            data["client_secret"] = client_secret
        return RefreshRequest(url=oauth.token_url, data=data, headers=headers)

    def parse_refresh_response(self, data: Mapping[str, Any]) -> TokenRefreshResult:
        access_token = data.get("access_token") if isinstance(data, Mapping) else None
        if not access_token:
            raise ValueError(f"Token response from {self.name} has no access_token")
        expires_in = data.get("expires_in")
        return TokenRefreshResult(
            access_token=str(access_token),
            refresh_token=data.get("refresh_token"),
            expires_in=float(expires_in) if expires_in is not None else None,
        )


class HubSpotAdapter(GenericAdapter):
    def map_error(self, operation: str, status: int, data: Any, headers: Mapping[str, str]) -> ApiError:
        if isinstance(data, Mapping) and data.get("category") == "VALIDATION_ERROR":
            return ApiError(
                ApiErrorCode.VALIDATION_ERROR,
                data.get("message") or "Validation failed",
                self.name,
                operation,
                context=data.get("errors"),
                status=status,
            )
        return super().map_error(operation, status, data, headers)


class PandaDocAdapter(GenericAdapter):
    def map_error(self, operation: str, status: int, data: Any, headers: Mapping[str, str]) -> ApiError:
        if status == 402:
            return ApiError(ApiErrorCode.QUOTA_EXCEEDED, "PandaDoc quota exceeded", self.name, operation, status=status)
        return super().map_error(operation, status, data, headers)


class XeroAdapter(GenericAdapter):
    def map_error(self, operation: str, status: int, data: Any, headers: Mapping[str, str]) -> ApiError:
        body = data if isinstance(data, Mapping) else {}

        if status == 403 and "token" in str(body.get("Message") or ""):
            return ApiError(
                ApiErrorCode.TOKEN_INVALID,
                "Xero token has expired or is invalid",
                self.name,
                operation,
                status=status,
            )

        elements = body.get("Elements")
        if status == 400 and elements:
            messages = [
                error.get("Message")
                for element in elements
                for error in (element.get("ValidationErrors") or [])
                if error.get("Message")
            ]
            return ApiError(
                ApiErrorCode.VALIDATION_ERROR,
                ", ".join(messages) or "Validation error",
                self.name,
                operation,
                context=elements,
                status=status,
            )

        return super().map_error(operation, status, data, headers)


ADAPTER_CLASSES: Dict[str, Type[GenericAdapter]] = {
    "generic": GenericAdapter,
    "hubspot": HubSpotAdapter,
    "pandadoc": PandaDocAdapter,
    "xero": XeroAdapter,
}


def create_adapter(config: ProviderConfig) -> ProviderAdapter:
    """Selects the adapter class by ``config.adapter`` or the provider name."""
    adapter_name = config.adapter or config.name
    adapter_cls = ADAPTER_CLASSES.get(adapter_name, GenericAdapter)
    if config.adapter and config.adapter not in ADAPTER_CLASSES:
        logger.warning(f"Unknown adapter '{config.adapter}' for provider {config.name}. Using generic adapter.")
    return adapter_cls(config)
