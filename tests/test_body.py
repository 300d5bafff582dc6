import json
from collections import namedtuple
from dataclasses import dataclass
from datetime import datetime
from types import MappingProxyType

from persistent_http.body import (
    JSON,
    NO_BODY,
    OCTET_STREAM,
    EncodedBody,
    as_mapping,
    encode_body,
    find_content_type,
    serialize_json,
)
from persistent_http.errors import (
    BodyEncodingError,
    SerializationError,
    UnsupportedPayloadType,
)


@dataclass
class User:
    name: str
    age: int


class Record:
    def __init__(self, **fields):
        self._fields = fields

    def to_dict(self):
        return dict(self._fields)


Point = namedtuple("Point", ["x", "y"])


def test_empty_payloads_produce_no_body():
    for payload in (None, {}, [], "", b""):
        result = encode_body(payload, {})
        assert result.ok
        assert result.value is NO_BODY
        assert result.value.content_length is None


def test_text_payload_is_verbatim_with_octet_stream_default():
    result = encode_body('{"name":"test"}', {})

    assert result.ok
    assert result.value == EncodedBody(b'{"name":"test"}', OCTET_STREAM, "raw")


def test_text_payload_keeps_existing_content_type():
    result = encode_body('{"name":"test"}', {"content-type": "application/json"})

    assert result.value.content == b'{"name":"test"}'
    assert result.value.content_type is None


def test_bytes_payload_is_verbatim():
    result = encode_body(bytearray(b"\x00\x01"), {})

    assert result.value.content == b"\x00\x01"
    assert result.value.content_length == 2


def test_mapping_without_content_type_is_json():
    result = encode_body({"name": "test"}, {})

    assert result.ok
    assert result.value.content == b'{"name":"test"}'
    assert result.value.content_type == JSON
    assert json.loads(result.value.content) == {"name": "test"}


def test_json_keeps_non_ascii_as_utf8():
    result = encode_body({"name": "café"}, {})

    assert result.value.content == '{"name":"café"}'.encode("utf-8")


def test_json_content_type_with_charset_is_json():
    result = encode_body([1, 2], {"Content-Type": "Application/JSON; charset=utf-8"})

    assert result.value.content == b"[1,2]"
    assert result.value.content_type is None
    assert result.value.strategy == "json"


def test_form_content_type_urlencodes_mapping():
    headers = {"content-type": "application/x-www-form-urlencoded"}

    result = encode_body({"q": "a b", "tag": ["x", "y"]}, headers)

    assert result.value.content == b"q=a+b&tag=x&tag=y"
    assert result.value.strategy == "form"


def test_form_content_type_accepts_pairs():
    headers = {"content-type": "application/x-www-form-urlencoded"}

    result = encode_body([("a", "1"), ("a", "2")], headers)

    assert result.value.content == b"a=1&a=2"


def test_form_content_type_rejects_non_key_value_payload():
    headers = {"content-type": "application/x-www-form-urlencoded"}

    result = encode_body(42, headers)

    assert not result.ok
    assert isinstance(result.error, BodyEncodingError)
    assert isinstance(result.error.cause, UnsupportedPayloadType)
    assert result.error.payload_type == "int"
    assert result.error.content_type == "application/x-www-form-urlencoded"


def test_unknown_content_type_falls_back_to_json():
    result = encode_body({"a": 1}, {"content-type": "text/csv"})

    assert result.ok
    assert result.value.content == b'{"a":1}'
    assert result.value.content_type is None
    assert result.value.strategy == "json-fallback"


def test_dataclass_payload_is_converted_to_mapping():
    result = encode_body(User("ada", 36), {})

    assert json.loads(result.value.content) == {"name": "ada", "age": 36}


def test_to_dict_payload_is_converted_to_mapping():
    result = encode_body(Record(id=7), {})

    assert json.loads(result.value.content) == {"id": 7}


def test_namedtuple_is_encoded_directly_as_sequence():
    result = encode_body(Point(1, 2), {})

    assert result.value.content == b"[1,2]"


def test_non_dict_mapping_is_encoded():
    result = encode_body(MappingProxyType({"a": 1}), {})

    assert result.value.content == b'{"a":1}'


def test_unserializable_payload_is_wrapped_error():
    result = encode_body({"when": datetime(2024, 1, 1)}, {})

    assert not result.ok
    assert isinstance(result.error, BodyEncodingError)
    assert isinstance(result.error.cause, SerializationError)
    assert result.error.payload_type == "dict"
    assert result.error.content_type == JSON
    assert "dict" in str(result.error)


def test_opaque_object_fails_serialization():
    result = serialize_json(object())

    assert not result.ok
    assert isinstance(result.error, SerializationError)


def test_serialize_json_tries_direct_encoding_first():
    assert serialize_json(5).value == b"5"


def test_as_mapping_raises_for_opaque_values():
    try:
        as_mapping(3.5)
    except UnsupportedPayloadType as exc:
        assert "float" in str(exc)
    else:
        raise AssertionError("expected UnsupportedPayloadType")


def test_find_content_type_is_case_insensitive():
    assert find_content_type({"Content-Type": " Text/Plain "}) == "text/plain"
    assert find_content_type({"accept": "*/*"}) is None
