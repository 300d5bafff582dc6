"""Verb-specific request assembly."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Mapping

from .body import encode_body, encode_form, is_empty
from .errors import AmbiguousQuery
from .headers import merge_headers, normalize_headers, validate_host

READ_VERBS = frozenset({"HEAD", "GET"})
WRITE_VERBS = frozenset({"POST", "PUT", "DELETE", "PATCH"})
VERBS = READ_VERBS | WRITE_VERBS


@dataclass(frozen=True)
class OutgoingRequest:
    """A fully built request, reusable as-is across retries."""

    method: str
    path: str
    headers: Mapping[str, str]
    body: bytes | None = None

    @property
    def content_length(self) -> int | None:
        value = self.headers.get("content-length")
        return int(value) if value is not None else None


def encode_query(payload: Any) -> str:
    """Encode read-verb parameters; text is taken as an encoded query."""
    if isinstance(payload, (bytes, bytearray)):
        payload = bytes(payload).decode("ascii")
    if isinstance(payload, str):
        return payload.lstrip("?")
    return encode_form(payload)


class RequestBuilder:
    """Builds OutgoingRequest objects against one configured host."""

    def __init__(
        self,
        default_headers: Mapping[str, str] | None,
        expected_host: str,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> None:
        self._expected_host = expected_host
        self._log = logger or logging.getLogger(__name__)
        self._default_headers: Mapping[str, str] = MappingProxyType({})
        self.set_default_headers(default_headers)

    @property
    def default_headers(self) -> Mapping[str, str]:
        return self._default_headers

    def set_default_headers(self, headers: Mapping[str, str] | None) -> None:
        """Replace the headers merged into every subsequent request."""
        normalized = normalize_headers(headers)
        if "host" in normalized:
            validate_host(normalized, self._expected_host)
        # Swapped as a whole so concurrent builds see old or new, never mixed.
        self._default_headers = MappingProxyType(normalized)

    def build(
        self,
        verb: str,
        path: str,
        headers: Mapping[str, str] | None = None,
        payload: Any = None,
    ) -> OutgoingRequest:
        """Assemble a request for ``verb``.

        Read verbs carry the payload in the query string; write verbs carry
        it in the body, encoded according to the negotiated content-type.

        Raises:
            ValueError: Unknown verb.
            AmbiguousQuery: ``path`` has a query and a read verb got a payload.
            HeaderConflict: An explicit Host header names another host.
            BodyEncodingError: The payload cannot be encoded.
        """
        method = verb.upper()
        if method not in VERBS:
            raise ValueError(f"unsupported HTTP verb: {verb!r}")
        if not path.startswith("/"):
            path = f"/{path}"

        final_headers = validate_host(
            merge_headers(self._default_headers, headers),
            self._expected_host,
        )

        if method in READ_VERBS:
            if is_empty(payload):
                return OutgoingRequest(
                    method, path, MappingProxyType(final_headers)
                )
            if "?" in path:
                raise AmbiguousQuery(
                    "Querystring must be sent via `params` or `path` "
                    "but not both."
                )
            return OutgoingRequest(
                method,
                f"{path}?{encode_query(payload)}",
                MappingProxyType(final_headers),
            )

        encoded = encode_body(payload, final_headers)
        if not encoded.ok:
            raise encoded.error
        body = encoded.value
        if body.strategy == "json-fallback":
            self._log.warning(
                "Unknown content-type: %s, attempting to serialize as JSON",
                final_headers.get("content-type"),
            )
        if body.content_type is not None:
            final_headers["content-type"] = body.content_type
        if body.content is not None:
            final_headers.setdefault(
                "content-length", str(body.content_length)
            )
        return OutgoingRequest(
            method, path, MappingProxyType(final_headers), body.content
        )
