from __future__ import annotations

import httpx
import pytest

from axme_gateway.exceptions import (
    AxmeAuthError,
    AxmeError,
    AxmeHttpError,
    AxmeRateLimitError,
    AxmeServerError,
    AxmeValidationError,
    extract_error_message,
    http_error_from_response,
    parse_retry_after,
    rpc_error_from_payload,
)


@pytest.mark.parametrize(
    ("status_code", "expected_exception"),
    [
        (400, AxmeValidationError),
        (401, AxmeAuthError),
        (403, AxmeAuthError),
        (404, AxmeHttpError),
        (405, AxmeHttpError),
        (409, AxmeValidationError),
        (413, AxmeValidationError),
        (418, AxmeHttpError),
        (422, AxmeValidationError),
        (429, AxmeRateLimitError),
        (500, AxmeServerError),
        (502, AxmeServerError),
        (599, AxmeServerError),
    ],
)
def test_status_code_maps_to_exactly_one_error_kind(status_code: int, expected_exception: type[Exception]) -> None:
    error = http_error_from_response(httpx.Response(status_code, json={"message": "boom"}))
    assert type(error) is expected_exception
    assert isinstance(error, AxmeError)
    assert error.status_code == status_code
    assert error.message == "boom"
    assert str(error) == f"HTTP {status_code}: boom"


def test_headers_supply_request_trace_and_retry_after() -> None:
    response = httpx.Response(
        429,
        json={"error": "rate limited"},
        headers={"x-request-id": "req-1", "trace-id": "trace-9", "Retry-After": "7"},
    )
    error = http_error_from_response(response)
    assert isinstance(error, AxmeRateLimitError)
    assert error.request_id == "req-1"
    assert error.trace_id == "trace-9"
    assert error.retry_after == 7


def test_request_id_falls_back_to_unprefixed_header() -> None:
    error = http_error_from_response(httpx.Response(500, text="oops", headers={"request-id": "req-2"}))
    assert error.request_id == "req-2"
    assert error.trace_id is None
    assert error.retry_after is None
    assert error.body is None
    assert error.message == "oops"


@pytest.mark.parametrize(
    ("body", "expected"),
    [
        ("plain string body", "plain string body"),
        ("", "raw"),
        ({"error": "short error"}, "short error"),
        ({"error": "", "message": "top-level"}, "top-level"),
        ({"error": {"code": "x", "message": "nested"}, "message": "top-level"}, "nested"),
        ({"error": {"code": "x"}, "message": "top-level"}, "top-level"),
        ({"detail": "unused"}, "raw"),
        ([1, 2], "raw"),
        (None, "raw"),
    ],
)
def test_extract_error_message_priority(body: object, expected: str) -> None:
    assert extract_error_message(body, "raw") == expected


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (None, None),
        ("20", 20),
        (" 3 ", 3),
        ("-4", -4),
        ("soon", None),
        ("1.5", None),
        ("+20", None),
        ("2_0", None),
        ("\u0662\u0660", None),
    ],
)
def test_parse_retry_after(value: str | None, expected: int | None) -> None:
    assert parse_retry_after(value) == expected


@pytest.mark.parametrize(
    ("code", "expected_exception", "status_code"),
    [
        (-32001, AxmeAuthError, 403),
        (-32003, AxmeAuthError, 403),
        (-32004, AxmeRateLimitError, 429),
        (-32602, AxmeValidationError, 422),
        (-32603, AxmeServerError, 502),
        (-32000, AxmeServerError, 502),
        (-1, AxmeHttpError, 400),
    ],
)
def test_rpc_error_codes_map_to_typed_errors(code: int, expected_exception: type[Exception], status_code: int) -> None:
    error = rpc_error_from_payload({"jsonrpc": "2.0", "id": "1", "error": {"code": code, "message": "nope", "data": 1}})
    assert type(error) is expected_exception
    assert error.status_code == status_code
    assert error.body == {"code": code, "message": "nope", "data": 1}


def test_rpc_error_defaults_for_missing_code_and_message() -> None:
    error = rpc_error_from_payload({"error": {}})
    assert isinstance(error, AxmeServerError)
    assert error.message == "MCP RPC error"
    assert error.body["code"] == -32000


def test_rpc_error_that_is_not_an_object_is_a_shape_violation() -> None:
    error = rpc_error_from_payload({"error": "boom"})
    assert isinstance(error, AxmeServerError)
    assert error.status_code == 502
