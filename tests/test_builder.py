import json
import logging

import pytest

from persistent_http.builder import RequestBuilder, encode_query
from persistent_http.errors import (
    AmbiguousQuery,
    BodyEncodingError,
    HeaderConflict,
    UnsupportedPayloadType,
)

HOST = "api.example.com"


@pytest.fixture
def builder():
    return RequestBuilder({"User-Agent": "tests/1.0"}, HOST)


def test_get_with_query_in_path_is_unchanged(builder):
    request = builder.build("GET", "/resource?key=value")

    assert request.method == "GET"
    assert request.path == "/resource?key=value"
    assert request.body is None
    assert request.content_length is None


def test_get_params_become_query_string(builder):
    request = builder.build("get", "/search", payload={"q": "a b", "page": 2})

    assert request.method == "GET"
    assert request.path == "/search?q=a+b&page=2"
    assert request.body is None


def test_head_params_become_query_string(builder):
    request = builder.build("HEAD", "/items", payload=[("id", 1), ("id", 2)])

    assert request.path == "/items?id=1&id=2"


@pytest.mark.parametrize("verb", ["GET", "HEAD"])
def test_read_verb_rejects_query_in_path_and_params(builder, verb):
    with pytest.raises(AmbiguousQuery):
        builder.build(verb, "/resource?key=value", payload={"other": "1"})


@pytest.mark.parametrize("payload", [None, {}, ""])
def test_read_verb_accepts_query_in_path_with_empty_params(builder, payload):
    request = builder.build("GET", "/resource?key=value", payload=payload)

    assert request.path == "/resource?key=value"


def test_read_verb_rejects_non_key_value_params(builder):
    with pytest.raises(UnsupportedPayloadType):
        builder.build("GET", "/resource", payload=12)


def test_encode_query_accepts_preencoded_text():
    assert encode_query("?a=1&b=2") == "a=1&b=2"
    assert encode_query(b"a=1") == "a=1"


def test_post_mapping_defaults_to_json(builder):
    request = builder.build("POST", "/resource", payload={"name": "test"})

    assert request.body == b'{"name":"test"}'
    assert json.loads(request.body) == {"name": "test"}
    assert request.headers["content-type"] == "application/json"
    assert request.headers["content-length"] == str(len('{"name":"test"}'))
    assert request.content_length == 15


def test_post_preencoded_string_is_not_double_encoded(builder):
    request = builder.build("POST", "/resource", payload='{"name":"test"}')

    assert request.body == b'{"name":"test"}'
    assert request.headers["content-type"] == "application/octet-stream"


def test_post_preencoded_string_with_json_header(builder):
    request = builder.build(
        "POST",
        "/resource",
        headers={"Content-Type": "application/json"},
        payload='{"name":"test"}',
    )

    assert request.body == b'{"name":"test"}'
    assert request.headers["content-type"] == "application/json"


def test_explicit_content_length_is_kept(builder):
    request = builder.build(
        "PUT",
        "/resource",
        headers={"Content-Length": "99"},
        payload={"a": 1},
    )

    assert request.headers["content-length"] == "99"


def test_delete_without_payload_has_no_body(builder):
    request = builder.build("DELETE", "/resource")

    assert request.body is None
    assert "content-length" not in request.headers
    assert "content-type" not in request.headers


def test_delete_accepts_body(builder):
    request = builder.build("DELETE", "/resource", payload={"confirm": True})

    assert request.body == b'{"confirm":true}'


def test_patch_form_body(builder):
    request = builder.build(
        "PATCH",
        "/resource",
        headers={"content-type": "application/x-www-form-urlencoded"},
        payload={"status": "inactive"},
    )

    assert request.body == b"status=inactive"
    assert request.headers["content-type"] == "application/x-www-form-urlencoded"


def test_unknown_content_type_logs_warning(builder, caplog):
    with caplog.at_level(logging.WARNING):
        request = builder.build(
            "POST",
            "/resource",
            headers={"Content-Type": "text/csv"},
            payload={"a": 1},
        )

    assert request.body == b'{"a":1}'
    assert request.headers["content-type"] == "text/csv"
    assert "Unknown content-type: text/csv" in caplog.text


def test_body_encoding_failure_is_raised(builder):
    with pytest.raises(BodyEncodingError) as excinfo:
        builder.build("POST", "/resource", payload={"bad": object()})

    assert "Failed to set request body" in str(excinfo.value)


def test_headers_are_merged_with_host(builder):
    request = builder.build("GET", "/", headers={"user-agent": "override", "X-A": "1"})

    assert dict(request.headers) == {
        "user-agent": "override",
        "x-a": "1",
        "host": HOST,
    }


def test_host_conflict_fails_build(builder):
    with pytest.raises(HeaderConflict):
        builder.build("GET", "/", headers={"Host": "other.example.com"})


def test_path_gets_leading_slash(builder):
    assert builder.build("GET", "users").path == "/users"


def test_unknown_verb_is_rejected(builder):
    with pytest.raises(ValueError):
        builder.build("TRACE", "/")


def test_set_default_headers_replaces_defaults(builder):
    builder.set_default_headers({"Authorization": "Bearer t"})

    request = builder.build("GET", "/")

    assert dict(builder.default_headers) == {"authorization": "Bearer t"}
    assert "user-agent" not in request.headers
    assert request.headers["authorization"] == "Bearer t"


def test_set_default_headers_validates_host(builder):
    with pytest.raises(HeaderConflict):
        builder.set_default_headers({"Host": "other.example.com"})


def test_request_headers_are_read_only(builder):
    request = builder.build("GET", "/")

    with pytest.raises(TypeError):
        request.headers["x"] = "y"  # type: ignore[index]
