import logging

import pytest

from conduit.infrastructure.monitoring.api_logger import (
    MAX_LOGGED_BODY_CHARS,
    REDACTED,
    ApiLogger,
    sanitize_headers,
    sanitize_payload,
)
from conduit.infrastructure.monitoring.logger_setup import setup_logging


def test_sanitize_headers():
    headers = {"Authorization": "Bearer secret", "X-API-Key": "k", "api-key": "k", "Accept": "application/json"}
    assert sanitize_headers(headers) == {
        "Authorization": REDACTED,
        "X-API-Key": REDACTED,
        "api-key": REDACTED,
        "Accept": "application/json",
    }
    assert sanitize_headers(None) == {}


def test_sanitize_headers_matches_credential_like_names():
    headers = {"X-Auth-Token": "t", "X-Shop-Secret": "s", "X-Apikey": "k", "Content-Type": "application/json"}
    assert sanitize_headers(headers) == {
        "X-Auth-Token": REDACTED,
        "X-Shop-Secret": REDACTED,
        "X-Apikey": REDACTED,
        "Content-Type": "application/json",
    }


def test_sanitize_headers_with_named_secret_headers():
    headers = {"X-Acme-Credential": "sk-live", "Accept": "*/*"}
    assert sanitize_headers(headers) == headers
    assert sanitize_headers(headers, secret_headers=["x-acme-credential"]) == {
        "X-Acme-Credential": REDACTED,
        "Accept": "*/*",
    }


def test_log_request_redacts_named_secret_headers(caplog):
    caplog.set_level(logging.INFO)
    ApiLogger().log_request(
        "acme", "list", "GET", "https://api.acme.test/x",
        headers={"X-Acme-Credential": "sk-live-SECRET123"},
        secret_headers=("X-Acme-Credential",),
    )
    assert "sk-live-SECRET123" not in caplog.text
    assert REDACTED in caplog.text


def test_sanitize_payload_is_recursive():
    payload = {
        "email": "a@example.com",
        "password": "hunter2",
        "nested": {"access_token": "t", "items": [{"client_secret": "s", "name": "n"}]},
    }
    assert sanitize_payload(payload) == {
        "email": "a@example.com",
        "password": REDACTED,
        "nested": {"access_token": REDACTED, "items": [{"client_secret": REDACTED, "name": "n"}]},
    }
    # Input is not modified
    assert payload["password"] == "hunter2"


def test_log_request_redacts_secrets(caplog):
    caplog.set_level(logging.INFO)
    ApiLogger().log_request(
        "hubspot", "create_contact", "POST", "https://api.hubapi.com/x",
        headers={"Authorization": "Bearer secret-token"},
        body={"refresh_token": "secret-refresh", "name": "Ada"},
        user_id="u1",
    )
    assert "[API Request] POST hubspot:create_contact" in caplog.text
    assert "secret-token" not in caplog.text
    assert "secret-refresh" not in caplog.text
    assert "Ada" in caplog.text


def test_log_response_levels(caplog):
    caplog.set_level(logging.INFO)
    api_logger = ApiLogger()
    started = api_logger.log_request("p", "op", "GET", "https://p.example")

    duration = api_logger.log_response("p", "op", "GET", "https://p.example", started, 200)
    assert duration >= 0
    api_logger.log_response("p", "op", "GET", "https://p.example", started, 503)
    api_logger.log_response("p", "op", "GET", "https://p.example", started, 0, error=TimeoutError("slow"))

    responses = [r for r in caplog.records if "[API Response]" in r.getMessage()]
    assert [r.levelno for r in responses] == [logging.INFO, logging.ERROR, logging.ERROR]
    assert "error=TimeoutError: slow" in responses[-1].getMessage()


def test_large_bodies_are_truncated(caplog):
    caplog.set_level(logging.INFO)
    ApiLogger().log_request("p", "op", "POST", "https://p.example", body={"blob": "x" * 5000})
    message = caplog.records[-1].getMessage()
    assert "...(truncated)" in message
    assert len(message) < MAX_LOGGED_BODY_CHARS + 500


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        if handler not in handlers:
            handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)
    for name in ("httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.NOTSET)


def test_setup_logging_accepts_level_names(restore_root_logger, tmp_path):
    log_file = tmp_path / "conduit.log"
    setup_logging("warning", log_file=str(log_file))
    assert restore_root_logger.level == logging.WARNING
    assert len(restore_root_logger.handlers) == 2
    assert logging.getLogger("httpx").level == logging.WARNING
    for handler in restore_root_logger.handlers:
        handler.close()

    setup_logging("DEBUG")
    assert restore_root_logger.level == logging.DEBUG
    assert logging.getLogger("httpcore").level == logging.DEBUG


def test_setup_logging_unknown_level_falls_back_to_info(restore_root_logger):
    setup_logging("chatty")
    assert restore_root_logger.level == logging.INFO
