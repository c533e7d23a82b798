"""Conversion of pipeline failures into caller-facing tool responses.

Tools built on the ApiClient report failures as structured dicts instead of
raising; auth failures additionally tell the user how to reconnect.
"""

from typing import Any, Dict, Optional, Union

from conduit.domain.models.common import AuthMethod
from conduit.domain.models.errors import ApiError
from conduit.infrastructure.providers.config import ProviderConfig
from conduit.infrastructure.providers.registry import display_name_for

AUTO_AUTH = "auto"  # Tool-level mode: OAuth when connected, else system key


def error_to_tool_response(error: ApiError, connections_url: Optional[str] = None) -> Dict[str, Any]:
    """Structured response for a failed call.

    Auth failures (UNAUTHORIZED, TOKEN_EXPIRED, TOKEN_INVALID or HTTP 401)
    carry ``authenticated: False`` and a reconnect hint.
    """
    response: Dict[str, Any] = {"error": True, **error.to_dict()}

    if error.is_auth_error or error.status == 401:
        name = display_name_for(error.provider)
        response["authenticated"] = False
        response["message"] = (
            f"{name} token expired. Please reconnect your {name} account on the connections page."
        )
        if connections_url:
            response["connections_url"] = connections_url
    return response


def auth_required_message(
    provider: str,
    auth_method: Union[AuthMethod, str],
    config: Optional[ProviderConfig] = None,
) -> str:
    """Explains why a provider cannot be used yet.

    Args:
        provider: Provider name.
        auth_method: "oauth", "system" or "auto".
        config: Provider config, used in auto mode to tell which auth
            methods the provider supports.
    """
    name = display_name_for(provider)
    method = auth_method.value if isinstance(auth_method, AuthMethod) else str(auth_method).lower()

    not_connected = f"{name} account not connected. Please visit the connections page to link your {name} account."
    no_system_key = f"System API key for {name} not configured. Please contact your administrator."

    if method == AuthMethod.OAUTH.value:
        return not_connected
    if method == AuthMethod.SYSTEM.value:
        return no_system_key

    has_oauth = bool(config and config.oauth)
    has_system_key = bool(config and config.system_api_key)
    if has_oauth and not has_system_key:
        return not_connected
    if has_system_key and not has_oauth:
        return no_system_key
    return (
        f"{name} authentication not available. You can either connect your account on the connections "
        f"page or contact your administrator to configure a system API key."
    )


def auth_required_response(
    provider: str,
    auth_method: Union[AuthMethod, str],
    config: Optional[ProviderConfig] = None,
    connections_url: Optional[str] = None,
) -> Dict[str, Any]:
    """Structured response for a tool whose provider is not connected."""
    method = auth_method.value if isinstance(auth_method, AuthMethod) else str(auth_method).lower()
    response: Dict[str, Any] = {
        "error": True,
        "authenticated": False,
        "message": auth_required_message(provider, method, config),
        "provider": provider,
        "auth_method": method,
    }
    if connections_url and method != AuthMethod.SYSTEM.value:
        response["connections_url"] = connections_url
    return response
