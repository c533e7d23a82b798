from conduit.core.tool_responses import (
    AUTO_AUTH,
    auth_required_message,
    auth_required_response,
    error_to_tool_response,
)
from conduit.domain.models.common import AuthMethod
from conduit.domain.models.errors import ApiError, ApiErrorCode
from conduit.infrastructure.providers.config import ProviderConfig, SystemApiKeyConfig
from conduit.infrastructure.providers.registry import builtin_providers

CONNECTIONS_URL = "https://app.example/connections"


def test_plain_error_response():
    error = ApiError(ApiErrorCode.NOT_FOUND, "Resource not found", "hubspot", "get_contact", status=404)
    assert error_to_tool_response(error, CONNECTIONS_URL) == {
        "error": True,
        "code": "NOT_FOUND",
        "message": "Resource not found",
        "provider": "hubspot",
        "operation": "get_contact",
        "retryable": False,
    }


def test_auth_error_response_asks_to_reconnect():
    error = ApiError(ApiErrorCode.TOKEN_INVALID, "No refresh token available", "hubspot", "token_refresh")
    response = error_to_tool_response(error, CONNECTIONS_URL)

    assert response["authenticated"] is False
    assert response["code"] == "TOKEN_INVALID"
    assert response["message"] == (
        "HubSpot token expired. Please reconnect your HubSpot account on the connections page."
    )
    assert response["connections_url"] == CONNECTIONS_URL


def test_status_401_counts_as_auth_error():
    error = ApiError(ApiErrorCode.UNKNOWN, "odd", "xero", "list", status=401)
    response = error_to_tool_response(error)
    assert response["authenticated"] is False
    assert "connections_url" not in response


def test_retry_after_and_context_are_included():
    error = ApiError(ApiErrorCode.RATE_LIMITED, "Rate limit exceeded", "slack", "post", retryable=True,
                     retry_after=30.0, context={"scope": "chat"})
    response = error_to_tool_response(error)
    assert response["retry_after"] == 30.0
    assert response["context"] == {"scope": "chat"}
    assert "authenticated" not in response


def test_auth_required_messages():
    assert auth_required_message("pandadoc", AuthMethod.OAUTH) == (
        "PandaDoc account not connected. Please visit the connections page to link your PandaDoc account."
    )
    assert auth_required_message("pandadoc", "system") == (
        "System API key for PandaDoc not configured. Please contact your administrator."
    )


def test_auto_mode_depends_on_supported_methods():
    providers = builtin_providers()
    assert "authentication not available" in auth_required_message("hubspot", AUTO_AUTH, providers["hubspot"])
    assert auth_required_message("anthropic", AUTO_AUTH, providers["anthropic"]).startswith("System API key for Anthropic")

    oauth_only = ProviderConfig(name="acme", display_name="Acme", base_url="https://acme.example",
                                oauth=providers["slack"].oauth)
    assert auth_required_message("acme", AUTO_AUTH, oauth_only).startswith("Acme account not connected")

    key_only = ProviderConfig(name="acme", display_name="Acme", base_url="https://acme.example",
                              system_api_key=SystemApiKeyConfig("ACME_API_KEY"))
    assert auth_required_message("acme", "AUTO", key_only).startswith("System API key for Acme")


def test_auth_required_response():
    response = auth_required_response("xero", AuthMethod.OAUTH, connections_url=CONNECTIONS_URL)
    assert response == {
        "error": True,
        "authenticated": False,
        "message": "Xero account not connected. Please visit the connections page to link your Xero account.",
        "provider": "xero",
        "auth_method": "oauth",
        "connections_url": CONNECTIONS_URL,
    }

    system = auth_required_response("xero", "system", connections_url=CONNECTIONS_URL)
    assert "connections_url" not in system
