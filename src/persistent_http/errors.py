"""Error taxonomy for the persistent HTTP client.

Build-time errors (headers, query, body) are raised before anything touches
the network and are never retried. Transport errors are classified by the
executor; only connection-class failures are retried.
"""

from __future__ import annotations


class HttpClientError(Exception):
    """Base class for every error raised by this package."""


class HeaderConflict(HttpClientError, ValueError):
    """An explicit ``Host`` header disagrees with the configured host."""

    def __init__(self, expected: str, actual: str) -> None:
        super().__init__(
            "Host header does not match the request URI host: "
            f"expected {expected}, got {actual}"
        )
        self.expected = expected
        self.actual = actual


class AmbiguousQuery(HttpClientError, ValueError):
    """Query data was supplied both in the path and as parameters."""


class UnsupportedPayloadType(HttpClientError, TypeError):
    """The payload cannot be viewed as key-value pairs."""


class SerializationError(HttpClientError, ValueError):
    """The payload cannot be serialized as JSON."""


class BodyEncodingError(HttpClientError, ValueError):
    """Wraps any failure to encode a request body."""

    def __init__(
        self,
        cause: Exception,
        *,
        payload_type: str,
        content_type: str | None,
    ) -> None:
        super().__init__(
            f"Failed to set request body: {cause} "
            f"(payload type {payload_type}, "
            f"content-type {content_type or 'unset'})"
        )
        self.cause = cause
        self.payload_type = payload_type
        self.content_type = content_type


class RequestTimeout(HttpClientError, TimeoutError):
    """The overall request deadline elapsed."""

    def __init__(self, message: str, *, elapsed_s: float) -> None:
        super().__init__(message)
        self.elapsed_s = elapsed_s


class ConnectionExhausted(HttpClientError, ConnectionError):
    """Connection-class failures outlasted the retry budget."""

    def __init__(
        self, message: str, *, retries: int, elapsed_s: float
    ) -> None:
        super().__init__(message)
        self.retries = retries
        self.elapsed_s = elapsed_s


class InvalidJsonResponse(HttpClientError, ValueError):
    """A JSON convenience call received a body that is not JSON."""


class ClientClosed(HttpClientError):
    """The client was closed and cannot issue further requests."""


class TransportClosed(HttpClientError, ConnectionError):
    """A transport handle was used after shutdown."""
