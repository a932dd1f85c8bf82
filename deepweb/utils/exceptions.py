"""
Client error type.

WHAT: One exception type for every failure the client surfaces
WHY: Callers dispatch on a kind tag instead of a class hierarchy
HOW: ClientError carries ErrorKind plus kind-specific payload fields
"""

import enum
from typing import Any, Optional


class ErrorKind(str, enum.Enum):
    """Category of a ClientError."""
    VALIDATION = "validation"
    API = "api"
    NETWORK = "network"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


API_ERROR_CODES = {
    400: "API_BAD_REQUEST",
    401: "API_UNAUTHORIZED",
    403: "API_FORBIDDEN",
    404: "API_NOT_FOUND",
    429: "API_RATE_LIMITED",
    500: "API_SERVER_ERROR",
    501: "API_NOT_IMPLEMENTED",
    502: "API_BAD_GATEWAY",
    503: "API_UNAVAILABLE",
    504: "API_TIMEOUT",
}

USER_MESSAGES = {
    400: "Invalid request. Please check your input and try again.",
    401: "Authentication failed. Please check your API key in settings.",
    403: "Access denied. Your API key may not have the required permissions.",
    404: "Resource not found. The API endpoint may have changed.",
    429: "Too many requests. Please wait a moment and try again.",
    500: "Server error. The service is experiencing issues.",
    501: "This provider does not support the requested operation.",
    502: "Gateway error. Unable to reach the API service.",
    503: "Service unavailable. Please try again later.",
    504: "Request timeout. The server took too long to respond.",
}

DEFAULT_RATE_LIMIT_DELAY = 10.0
DEFAULT_SERVER_ERROR_DELAY = 5.0


def is_recoverable_status(status_code: int) -> bool:
    """429 and 5xx may succeed on retry; other 4xx need user action."""
    return status_code == 429 or status_code >= 500


class ClientError(Exception):
    """
    Error raised by providers and the API client.

    Attributes:
        kind: ErrorKind category used for dispatch
        code: Stable string code (API_UNAUTHORIZED, VALIDATION_ERROR, ...)
        status_code: HTTP status for API errors, 0 for network failures
        recoverable: Whether retrying the same request may succeed
        field: Offending input field for validation errors
        payload: Parsed response body or constraint details
        retry_after: Server-provided retry delay in seconds
        context: Endpoint / model / provider the call was made against
    """

    def __init__(
        self,
        message: str,
        kind: ErrorKind,
        code: str,
        *,
        status_code: Optional[int] = None,
        recoverable: bool = False,
        field: Optional[str] = None,
        payload: Optional[Any] = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.code = code
        self.status_code = status_code
        self.recoverable = recoverable
        self.field = field
        self.payload = payload
        self.retry_after = retry_after
        self.context: dict[str, Any] = {}

    # ---- constructors ----

    @classmethod
    def validation(cls, message: str, field: Optional[str] = None, value: Any = None, **constraints) -> "ClientError":
        payload = {"value": value, "constraints": constraints} if value is not None or constraints else None
        return cls(message, ErrorKind.VALIDATION, "VALIDATION_ERROR", field=field, payload=payload)

    @classmethod
    def configuration(cls, message: str, field: str, value: Any = None, **constraints) -> "ClientError":
        error = cls.validation(message, field, value, **constraints)
        error.code = "CONFIGURATION_ERROR"
        return error

    @classmethod
    def api(
        cls,
        message: str,
        status_code: int,
        payload: Optional[Any] = None,
        retry_after: Optional[float] = None,
    ) -> "ClientError":
        if status_code == 0:
            return cls.network(message)
        return cls(
            message,
            ErrorKind.API,
            API_ERROR_CODES.get(status_code, "API_UNKNOWN_ERROR"),
            status_code=status_code,
            recoverable=is_recoverable_status(status_code),
            payload=payload,
            retry_after=retry_after,
        )

    @classmethod
    def network(cls, message: str = "Network connection failed") -> "ClientError":
        return cls(message, ErrorKind.NETWORK, "NETWORK_ERROR", status_code=0, recoverable=True)

    @classmethod
    def timeout(cls, message: str = "Request timed out", timeout: Optional[float] = None) -> "ClientError":
        payload = {"timeout": timeout} if timeout is not None else None
        return cls(message, ErrorKind.TIMEOUT, "REQUEST_TIMEOUT", recoverable=True, payload=payload)

    @classmethod
    def cancelled(cls, message: str = "Request was cancelled") -> "ClientError":
        return cls(message, ErrorKind.CANCELLED, "REQUEST_CANCELLED")

    # ---- helpers ----

    def with_context(self, **context) -> "ClientError":
        """Attach call context without overwriting what is already known."""
        for key, value in context.items():
            if value is not None:
                self.context.setdefault(key, value)
        return self

    def retry_delay(self) -> float:
        """Suggested delay in seconds before retrying (0 = don't retry)."""
        if self.kind is not ErrorKind.API or self.status_code is None:
            return 0.0
        if self.status_code == 429:
            return self.retry_after if self.retry_after is not None else DEFAULT_RATE_LIMIT_DELAY
        if self.status_code >= 500:
            return DEFAULT_SERVER_ERROR_DELAY
        return 0.0

    @property
    def user_message(self) -> str:
        if self.kind is ErrorKind.API:
            return USER_MESSAGES.get(self.status_code, "An unexpected API error occurred.")
        if self.kind is ErrorKind.NETWORK:
            return "Unable to connect to the server. Please check your internet connection."
        if self.kind is ErrorKind.TIMEOUT:
            return "The request timed out. The server may be busy."
        if self.kind is ErrorKind.CANCELLED:
            return "The request was cancelled."
        return self.message

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "code": self.code,
            "message": self.message,
            "status_code": self.status_code,
            "recoverable": self.recoverable,
            "field": self.field,
            "retry_after": self.retry_after,
            "context": dict(self.context),
        }

    def __repr__(self) -> str:
        return f"ClientError(kind={self.kind.value!r}, code={self.code!r}, message={self.message!r})"
