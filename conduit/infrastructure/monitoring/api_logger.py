"""Request/response logging for outbound API calls.

Secrets never reach the log: any header or payload key that looks like a
credential is redacted, payloads recursively. Callers may name extra secret
headers, such as a provider-defined API key header.
"""

import logging
import time
from typing import Any, Dict, Iterable, Mapping, Optional

REDACTED = "[REDACTED]"

SENSITIVE_KEY_FRAGMENTS = (
    "authorization",
    "api-key",
    "apikey",
    "x-api-key",
    "secret",
    "password",
    "token",
    "client_secret",
    "refresh_token",
)
# Header names are matched more broadly, e.g. X-Auth-Token or X-Auth-Key
SENSITIVE_HEADER_FRAGMENTS = SENSITIVE_KEY_FRAGMENTS + ("auth",)

# Keeps very large bodies out of the log
MAX_LOGGED_BODY_CHARS = 1000

logger = logging.getLogger(__name__)


def _is_sensitive_key(key: Any, fragments: Iterable[str] = SENSITIVE_KEY_FRAGMENTS) -> bool:
    lowered = str(key).lower()
    return any(fragment in lowered for fragment in fragments)


def sanitize_headers(
    headers: Optional[Mapping[str, str]], secret_headers: Iterable[str] = ()
) -> Dict[str, str]:
    extra = {name.lower() for name in secret_headers}
    return {
        key: REDACTED if _is_sensitive_key(key, SENSITIVE_HEADER_FRAGMENTS) or key.lower() in extra else value
        for key, value in (headers or {}).items()
    }


def sanitize_payload(payload: Any) -> Any:
    """Returns a copy of ``payload`` with credential-looking fields redacted."""
    if isinstance(payload, Mapping):
        return {
            key: REDACTED if _is_sensitive_key(key) else sanitize_payload(value)
            for key, value in payload.items()
        }
    if isinstance(payload, (list, tuple)):
        return [sanitize_payload(item) for item in payload]
    return payload


def _preview(payload: Any) -> Any:
    if payload is None:
        return None
    text = repr(sanitize_payload(payload))
    if len(text) > MAX_LOGGED_BODY_CHARS:
        return text[:MAX_LOGGED_BODY_CHARS] + "...(truncated)"
    return text


class ApiLogger:
    """Logs one line per request and one per outcome."""

    def __init__(self, log: Optional[logging.Logger] = None):
        self._log = log or logger

    def log_request(
        self,
        provider: str,
        operation: str,
        method: str,
        url: str,
        headers: Optional[Mapping[str, str]] = None,
        body: Any = None,
        user_id: Optional[str] = None,
        secret_headers: Iterable[str] = (),
    ) -> float:
        """Logs an outgoing request and returns its start time for ``log_response``.

        ``secret_headers`` names headers to redact on top of the built-in rules.
        """
        self._log.info(
            f"[API Request] {method} {provider}:{operation} {url} user={user_id} "
            f"headers={sanitize_headers(headers, secret_headers)} body={_preview(body)}"
        )
        return time.monotonic()

    def log_response(
        self,
        provider: str,
        operation: str,
        method: str,
        url: str,
        started_at: float,
        status: int,
        response_headers: Optional[Mapping[str, str]] = None,
        response_body: Any = None,
        error: Optional[BaseException] = None,
    ) -> float:
        """Logs the outcome of a request.

        Status 0 means no response was received. Returns the latency in ms.
        """
        duration_ms = (time.monotonic() - started_at) * 1000
        message = (
            f"[API Response] {status} {method} {provider}:{operation} {url} "
            f"duration={duration_ms:.0f}ms headers={sanitize_headers(response_headers)} "
            f"body={_preview(response_body)}"
        )
        if error is not None or status >= 400 or status == 0:
            if error is not None:
                message += f" error={type(error).__name__}: {error}"
            self._log.error(message)
        else:
            self._log.info(message)
        return duration_ms
