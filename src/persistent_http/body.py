"""Request body negotiation.

``encode_body`` picks a serialization strategy from the payload type and the
declared ``content-type`` and returns a Result instead of raising, so the
builder decides how failures are logged and surfaced.
"""

from __future__ import annotations

import dataclasses
import json
from dataclasses import dataclass
from typing import Any, Callable, Mapping
from urllib.parse import urlencode

from .errors import (
    BodyEncodingError,
    SerializationError,
    UnsupportedPayloadType,
)
from .types import Err, Ok, Result

OCTET_STREAM = "application/octet-stream"
JSON = "application/json"
FORM_URLENCODED = "application/x-www-form-urlencoded"

RAW_TYPES = (str, bytes, bytearray, memoryview)


@dataclass(frozen=True)
class EncodedBody:
    """Serialized body plus the content-type to stamp, if any."""

    content: bytes | None
    content_type: str | None = None
    strategy: str = "none"

    @property
    def content_length(self) -> int | None:
        if self.content is None:
            return None
        return len(self.content)


NO_BODY = EncodedBody(None)


def is_empty(payload: Any) -> bool:
    """Return True for None and for sized payloads of length zero."""
    if payload is None:
        return True
    try:
        return len(payload) == 0
    except TypeError:
        return False


def find_content_type(headers: Mapping[str, str]) -> str | None:
    """Return the lowercased, stripped content-type, looked up by any case."""
    for name, value in headers.items():
        if name.lower() == "content-type":
            return str(value).strip().lower()
    return None


def dump_json(value: Any) -> bytes:
    return json.dumps(
        value, separators=(",", ":"), ensure_ascii=False
    ).encode("utf-8")


def as_mapping(obj: Any) -> dict[Any, Any]:
    """Convert ``obj`` to a plain dict.

    Tries, in order: mappings, ``model_dump()``, ``to_dict()``,
    ``_asdict()``, dataclass instances, then ``dict(obj)``.

    Raises:
        UnsupportedPayloadType: If no conversion applies.
    """
    if isinstance(obj, Mapping):
        return dict(obj)
    try:
        for attr in ("model_dump", "to_dict", "_asdict"):
            method = getattr(obj, attr, None)
            if callable(method):
                return dict(method())
        if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
            return dataclasses.asdict(obj)
        return dict(obj)
    except (TypeError, ValueError) as exc:
        raise UnsupportedPayloadType(
            "Parameters must be Hash-like key-value pairs, "
            f"got {type(obj).__name__}"
        ) from exc


def encode_form(payload: Any) -> str:
    """URL-encode key-value pairs; sequence values repeat their key."""
    pairs = payload if isinstance(payload, (list, tuple)) else as_mapping(payload)
    try:
        return urlencode(pairs, doseq=True)
    except TypeError as exc:
        raise UnsupportedPayloadType(
            "Parameters must be Hash-like key-value pairs, "
            f"got {type(payload).__name__}"
        ) from exc


def _dump_direct(obj: Any) -> bytes:
    return dump_json(obj)


def _dump_as_mapping(obj: Any) -> bytes:
    return dump_json(as_mapping(obj))


# Tried in order for payloads that are neither mappings nor sequences.
OBJECT_ENCODERS: tuple[Callable[[Any], bytes], ...] = (
    _dump_direct,
    _dump_as_mapping,
)


def serialize_json(payload: Any) -> Result[bytes, SerializationError]:
    """Serialize ``payload`` as compact UTF-8 JSON."""
    if isinstance(payload, Mapping):
        encoders: tuple[Callable[[Any], bytes], ...] = (_dump_as_mapping,)
    elif isinstance(payload, (list, tuple)):
        encoders = (_dump_direct,)
    else:
        encoders = OBJECT_ENCODERS

    failures: list[str] = []
    for encoder in encoders:
        try:
            return Ok(encoder(payload))
        except (TypeError, ValueError) as exc:
            failures.append(str(exc))
    return Err(
        SerializationError(
            f"Cannot convert {type(payload).__name__} to JSON: "
            + "; ".join(failures)
        )
    )


def _raw_body(payload: Any, content_type: str | None) -> EncodedBody:
    if isinstance(payload, str):
        content = payload.encode("utf-8")
    else:
        content = bytes(payload)
    return EncodedBody(
        content,
        content_type=None if content_type is not None else OCTET_STREAM,
        strategy="raw",
    )


def encode_body(
    payload: Any, headers: Mapping[str, str]
) -> Result[EncodedBody, BodyEncodingError]:
    """Encode ``payload`` for the content-type declared in ``headers``.

    Returns:
        Ok(EncodedBody) whose ``content_type`` is the header value to set
        (None when the existing header stands), or Err(BodyEncodingError)
        wrapping an UnsupportedPayloadType or SerializationError.
    """
    if is_empty(payload):
        return Ok(NO_BODY)

    content_type = find_content_type(headers)
    if isinstance(payload, RAW_TYPES):
        return Ok(_raw_body(payload, content_type))

    if content_type is None:
        attempted, stamp, strategy = JSON, JSON, "json"
    elif content_type.startswith(FORM_URLENCODED):
        attempted, stamp, strategy = content_type, None, "form"
    elif content_type.startswith(JSON):
        attempted, stamp, strategy = content_type, None, "json"
    else:
        attempted, stamp, strategy = content_type, None, "json-fallback"

    def failure(cause: Exception) -> Err[BodyEncodingError]:
        return Err(
            BodyEncodingError(
                cause,
                payload_type=type(payload).__name__,
                content_type=attempted,
            ),
            meta={"strategy": strategy},
        )

    if strategy == "form":
        try:
            form = encode_form(payload)
        except UnsupportedPayloadType as exc:
            return failure(exc)
        return Ok(EncodedBody(form.encode("ascii"), stamp, strategy))

    serialized = serialize_json(payload)
    if not serialized.ok:
        return failure(serialized.error)
    return Ok(EncodedBody(serialized.value, stamp, strategy))
