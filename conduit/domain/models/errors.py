"""Error taxonomy for outbound API calls.

Every failure that leaves the request pipeline is an ``ApiError`` carrying a
code from ``ApiErrorCode``. Downstream logic (retry predicates, breaker
filters, tool responses) matches on the code and HTTP status instead of
probing raw transport exceptions.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ApiErrorCode(str, Enum):
    # Client errors
    BAD_REQUEST = "BAD_REQUEST"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    VALIDATION_ERROR = "VALIDATION_ERROR"

    # Rate limiting
    RATE_LIMITED = "RATE_LIMITED"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"

    # Server errors
    INTERNAL_ERROR = "INTERNAL_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    GATEWAY_TIMEOUT = "GATEWAY_TIMEOUT"

    # Network errors
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT"

    # Auth errors
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    TOKEN_INVALID = "TOKEN_INVALID"

    UNKNOWN = "UNKNOWN"


AUTH_ERROR_CODES = frozenset({
    ApiErrorCode.UNAUTHORIZED,
    ApiErrorCode.TOKEN_EXPIRED,
    ApiErrorCode.TOKEN_INVALID,
})

TRANSPORT_ERROR_CODES = frozenset({
    ApiErrorCode.NETWORK_ERROR,
    ApiErrorCode.TIMEOUT,
})


class ApiError(Exception):
    """A classified failure of an outbound API call."""

    def __init__(
        self,
        code: ApiErrorCode,
        message: str,
        provider: str,
        operation: str,
        retryable: bool = False,
        retry_after: Optional[float] = None,
        context: Optional[Any] = None,
        status: Optional[int] = None,
    ):
        """Initializes the ApiError.

        Args:
            code: Taxonomy code for the failure.
            message: Human-readable description.
            provider: Provider the call was made to.
            operation: Logical operation name of the call.
            retryable: Whether retrying the call may succeed.
            retry_after: Seconds the provider asked us to wait, if known.
            context: Provider-supplied details (e.g. validation errors).
            status: HTTP status code, when the failure came from a response.
        """
        super().__init__(message)
        self.code = code
        self.message = message
        self.provider = provider
        self.operation = operation
        self.retryable = retryable
        self.retry_after = retry_after
        self.context = context
        self.status = status

    @property
    def is_auth_error(self) -> bool:
        return self.code in AUTH_ERROR_CODES

    def to_dict(self) -> Dict[str, Any]:
        """Serializable view of the error for callers and logs."""
        data: Dict[str, Any] = {
            "code": self.code.value,
            "message": self.message,
            "provider": self.provider,
            "operation": self.operation,
            "retryable": self.retryable,
        }
        if self.retry_after is not None:
            data["retry_after"] = self.retry_after
        if self.context is not None:
            data["context"] = self.context
        return data

    def __repr__(self) -> str:
        return (
            f"ApiError(code={self.code.value}, provider={self.provider!r}, "
            f"operation={self.operation!r}, status={self.status}, retryable={self.retryable})"
        )


class CircuitOpenError(ApiError):
    """Raised when a call is rejected because its circuit breaker is OPEN."""

    def __init__(self, breaker_key: str, retry_after: float, provider: str = "", operation: str = ""):
        self.breaker_key = breaker_key
        super().__init__(
            code=ApiErrorCode.SERVICE_UNAVAILABLE,
            message=f"Circuit breaker '{breaker_key}' is OPEN. Retry after {retry_after:.1f}s",
            provider=provider,
            operation=operation,
            retryable=False,
            retry_after=retry_after,
        )
