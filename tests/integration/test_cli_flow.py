import json
from unittest.mock import MagicMock

import httpx
import pytest
from typer.testing import CliRunner

from conduit.main import app


@pytest.fixture
def mock_console_display(mocker) -> MagicMock:
    """Patches the CLI's ConsoleDisplay instance."""
    return mocker.patch("conduit.main.display")


@pytest.fixture(autouse=True)
def quiet_logging(mocker):
    """Keeps the callback from replacing the root logger's handlers."""
    return mocker.patch("conduit.main.setup_logging")


@pytest.fixture
def provider_api(mocker, make_context):
    """Routes the CLI's HTTP traffic to a handler and records the requests."""
    state = {"responses": [httpx.Response(200, json={"results": []})], "requests": []}

    def handler(request: httpx.Request) -> httpx.Response:
        state["requests"].append(request)
        return state["responses"].pop(0) if len(state["responses"]) > 1 else state["responses"][0]

    mocker.patch("conduit.main.build_context", side_effect=lambda: make_context(handler))
    return state


def test_providers_command(runner: CliRunner, mock_console_display: MagicMock):
    """Test that 'providers' shows the enabled provider table."""
    result = runner.invoke(app, ["providers"])

    assert result.exit_code == 0, result.stdout
    mock_console_display.display_providers.assert_called_once()
    configs = list(mock_console_display.display_providers.call_args.args[0])
    assert "hubspot" in [c.name for c in configs]


def test_status_command(runner: CliRunner, mock_console_display: MagicMock, provider_api):
    """Test that 'status' passes the client status snapshot to the display."""
    result = runner.invoke(app, ["status"])

    assert result.exit_code == 0, result.stdout
    status = mock_console_display.display_status.call_args.args[0]
    assert status["rate_limiter"]["hubspot"]["available_tokens"] == 10
    assert status["circuit_breakers"] == {}


def test_status_help_describes_fresh_state(runner: CliRunner):
    """Test that 'status --help' says the snapshot comes from a new client."""
    result = runner.invoke(app, ["status", "--help"])

    assert result.exit_code == 0, result.stdout
    assert "freshly" in result.stdout
    assert "configured" in result.stdout


def test_request_command_success(runner: CliRunner, mock_console_display: MagicMock, provider_api, monkeypatch):
    """Test a system-key request with query parameters and a JSON body."""
    monkeypatch.setenv("HUBSPOT_API_KEY", "hs-key")

    result = runner.invoke(app, [
        "request", "hubspot", "/crm/v3/objects/contacts/search",
        "-X", "post",
        "--operation", "search_contacts",
        "-q", "archived=false",
        "-d", json.dumps({"limit": 5}),
    ])

    assert result.exit_code == 0, result.stdout
    request = provider_api["requests"][0]
    assert request.method == "POST"
    assert request.headers["authorization"] == "Bearer hs-key"
    assert request.url.params["archived"] == "false"
    assert json.loads(request.content) == {"limit": 5}

    response = mock_console_display.display_response.call_args.args[0]
    assert response.status == 200
    assert response.data == {"results": []}
    mock_console_display.display_error.assert_not_called()


def test_request_command_api_error(runner: CliRunner, mock_console_display: MagicMock, provider_api, monkeypatch):
    """Test that a classified failure exits with code 1."""
    monkeypatch.setenv("HUBSPOT_API_KEY", "hs-key")
    provider_api["responses"] = [httpx.Response(404, json={})]

    result = runner.invoke(app, ["request", "hubspot", "/crm/v3/objects/contacts/1"])

    assert result.exit_code == 1
    mock_console_display.display_error.assert_called_once_with("NOT_FOUND: Resource not found")
    assert len(provider_api["requests"]) == 1


def test_request_command_without_system_key(runner: CliRunner, mock_console_display: MagicMock, provider_api):
    """Test that a missing system key is reported without any HTTP call."""
    result = runner.invoke(app, ["request", "hubspot", "/crm/v3/objects/contacts", "--no-retry"])

    assert result.exit_code == 1
    mock_console_display.display_error.assert_called_once_with("UNAUTHORIZED: System API key not configured")
    assert provider_api["requests"] == []


def test_request_command_unknown_provider(runner: CliRunner, mock_console_display: MagicMock, provider_api):
    """Test that an unknown provider exits with code 2."""
    result = runner.invoke(app, ["request", "nope", "/x"])

    assert result.exit_code == 2
    mock_console_display.display_error.assert_called_once_with("Unknown provider: nope")


def test_request_command_rejects_bad_query(runner: CliRunner, mock_console_display: MagicMock, provider_api):
    """Test that malformed --query values are a usage error."""
    result = runner.invoke(app, ["request", "hubspot", "/x", "-q", "novalue"])

    assert result.exit_code == 2
    assert provider_api["requests"] == []


def test_log_level_option_reaches_setup(runner: CliRunner, mock_console_display: MagicMock, quiet_logging):
    """Test that --log-level is passed to logging setup."""
    result = runner.invoke(app, ["--log-level", "DEBUG", "providers"])

    assert result.exit_code == 0, result.stdout
    assert quiet_logging.call_args.kwargs["log_level"] == "DEBUG"
