"""Interface for provider-specific behaviour.

Each provider gets one adapter, selected when the provider registry is
built. The pipeline and token manager only talk to this capability set
and never branch on provider names.
"""

import abc
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping

from ..models.errors import ApiError
from ..models.tokens import TokenRefreshResult


@dataclass
class RefreshRequest:
    """A fully built token-endpoint request."""
    url: str
    data: Dict[str, str]
    headers: Dict[str, str] = field(default_factory=dict)


class ProviderAdapter(abc.ABC):
    """Abstract Base Class for provider capabilities."""

    name: str

    @abc.abstractmethod
    def build_oauth_headers(self, access_token: str) -> Dict[str, str]:
        """Auth headers for a user's OAuth access token."""
        pass

    @abc.abstractmethod
    def build_system_key_headers(self, api_key: str) -> Dict[str, str]:
        """Auth headers for the system API key, using the provider's template."""
        pass

    @abc.abstractmethod
    def map_error(
        self, operation: str, status: int, data: Any, headers: Mapping[str, str]
    ) -> ApiError:
        """Classifies a non-success HTTP response into an ApiError."""
        pass

    @abc.abstractmethod
    def build_refresh_request(self, refresh_token: str) -> RefreshRequest:
        """Builds the grant_type=refresh_token request for this provider.

        Raises:
            ValueError: If the provider has no OAuth configuration.
        """
        pass

    @abc.abstractmethod
    def parse_refresh_response(self, data: Mapping[str, Any]) -> TokenRefreshResult:
        """Parses the token endpoint's JSON response."""
        pass
