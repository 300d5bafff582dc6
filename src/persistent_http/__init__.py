"""Persistent HTTP client with connection reuse and rebuild-on-failure."""

import logging

from ._version import __version__
from .client import HttpClient
from .config import ClientConfig, TlsPolicy
from .errors import (
    AmbiguousQuery,
    BodyEncodingError,
    ClientClosed,
    ConnectionExhausted,
    HeaderConflict,
    HttpClientError,
    InvalidJsonResponse,
    RequestTimeout,
    SerializationError,
    TransportClosed,
    UnsupportedPayloadType,
)
from .logs import create_logger

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "__version__",
    "AmbiguousQuery",
    "BodyEncodingError",
    "ClientClosed",
    "ClientConfig",
    "ConnectionExhausted",
    "HeaderConflict",
    "HttpClient",
    "HttpClientError",
    "InvalidJsonResponse",
    "RequestTimeout",
    "SerializationError",
    "TlsPolicy",
    "TransportClosed",
    "UnsupportedPayloadType",
    "create_logger",
]
