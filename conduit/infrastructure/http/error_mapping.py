"""Classification of failed HTTP calls into ApiErrors.

The request pipeline classifies every failure here and nowhere else: a
non-2xx response goes through the provider adapter (which falls back to
``map_status_error``), a transport exception goes through
``classify_transport_error``.
"""

import logging
from typing import Any, Mapping, Optional

import httpx

from conduit.domain.models.errors import ApiError, ApiErrorCode

logger = logging.getLogger(__name__)


def _body_field(data: Any, name: str) -> Any:
    return data.get(name) if isinstance(data, Mapping) else None


def parse_retry_after(headers: Mapping[str, str]) -> Optional[float]:
    """Seconds from a ``Retry-After`` header; HTTP-date values are ignored."""
    value = None
    for key, header_value in headers.items():
        if key.lower() == "retry-after":
            value = header_value
            break
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.debug(f"Ignoring non-numeric Retry-After header: {value!r}")
        return None


def map_status_error(
    provider: str,
    operation: str,
    status: int,
    data: Any,
    headers: Mapping[str, str],
) -> ApiError:
    """Maps an HTTP error status to the ApiError taxonomy.

    Args:
        provider: Provider the call went to.
        operation: Logical operation name.
        status: HTTP status code of the response.
        data: Parsed response body (dict for JSON, str otherwise).
        headers: Response headers.

    Returns:
        The classified error. 429 and 5xx are retryable; everything else is not.
    """
    def error(code: ApiErrorCode, message: str, retryable: bool = False, **extra: Any) -> ApiError:
        return ApiError(code, message, provider, operation, retryable=retryable, status=status, **extra)

    body_message = _body_field(data, "message")

    if status == 400:
        return error(ApiErrorCode.BAD_REQUEST, body_message or "Bad request")
    if status == 401:
        return error(ApiErrorCode.UNAUTHORIZED, "Authentication required")
    if status == 403:
        return error(ApiErrorCode.FORBIDDEN, "Access forbidden")
    if status == 404:
        return error(ApiErrorCode.NOT_FOUND, "Resource not found")
    if status == 409:
        return error(ApiErrorCode.CONFLICT, body_message or "Resource conflict")
    if status == 422:
        return error(
            ApiErrorCode.VALIDATION_ERROR,
            body_message or "Validation failed",
            context=_body_field(data, "errors"),
        )
    if status == 429:
        return error(
            ApiErrorCode.RATE_LIMITED,
            "Rate limit exceeded",
            retryable=True,
            retry_after=parse_retry_after(headers),
        )
    if status == 500:
        return error(ApiErrorCode.INTERNAL_ERROR, "Internal server error", retryable=True)
    if status in (502, 503):
        return error(ApiErrorCode.SERVICE_UNAVAILABLE, "Service temporarily unavailable", retryable=True)
    if status == 504:
        return error(ApiErrorCode.GATEWAY_TIMEOUT, "Gateway timeout", retryable=True)

    return error(ApiErrorCode.UNKNOWN, f"Unexpected error: {status}", retryable=status >= 500)


def classify_transport_error(provider: str, operation: str, exc: Exception) -> ApiError:
    """Maps an exception raised before any response arrived.

    httpx timeouts become TIMEOUT, other transport failures NETWORK_ERROR
    (both retryable). ApiErrors pass through untouched.
    """
    if isinstance(exc, ApiError):
        return exc
    if isinstance(exc, httpx.TimeoutException):
        return ApiError(ApiErrorCode.TIMEOUT, "Request timeout", provider, operation, retryable=True)
    if isinstance(exc, httpx.TransportError):
        return ApiError(
            ApiErrorCode.NETWORK_ERROR,
            f"Network connection failed: {exc}",
            provider,
            operation,
            retryable=True,
        )
    return ApiError(ApiErrorCode.UNKNOWN, str(exc) or "Unknown error occurred", provider, operation)
