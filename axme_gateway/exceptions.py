"""Typed errors raised by the gateway client and the classifiers that pick them."""

from __future__ import annotations

import re
from typing import Any

import httpx

RPC_AUTH_CODES = frozenset({-32001, -32003})
RPC_RATE_LIMIT_CODE = -32004
RPC_INVALID_PARAMS_CODE = -32602
RPC_SERVER_ERROR_FLOOR = -32000
# ASCII digits with an optional minus sign.
_RETRY_AFTER_PATTERN = re.compile(r"-?[0-9]+\Z")


class AxmeError(Exception):
    """Base class for every error raised by the client."""


class AxmeHttpError(AxmeError):
    """A non-success gateway response, or a response that broke the contract."""

    def __init__(
        self,
        status_code: int,
        message: str,
        *,
        body: Any | None = None,
        request_id: str | None = None,
        trace_id: str | None = None,
        retry_after: int | None = None,
    ) -> None:
        super().__init__(f"HTTP {status_code}: {message}")
        self.status_code = status_code
        self.message = message
        self.body = body
        self.request_id = request_id
        self.trace_id = trace_id
        self.retry_after = retry_after


class AxmeAuthError(AxmeHttpError):
    """Credential rejected (401) or not allowed (403)."""


class AxmeValidationError(AxmeHttpError):
    """The gateway refused the request as malformed or conflicting."""


class AxmeRateLimitError(AxmeHttpError):
    """Too many requests; ``retry_after`` holds the server hint in seconds."""


class AxmeServerError(AxmeHttpError):
    """Gateway-side failure, including responses with an unexpected shape."""


def parse_retry_after(value: str | None) -> int | None:
    if value is None:
        return None
    value = value.strip()
    if not _RETRY_AFTER_PATTERN.match(value):
        return None
    return int(value, 10)


def error_class_for_status(status_code: int) -> type[AxmeHttpError]:
    # First match wins; 413 stays a validation error.
    if status_code in (401, 403):
        return AxmeAuthError
    if status_code in (400, 409, 413, 422):
        return AxmeValidationError
    if status_code == 429:
        return AxmeRateLimitError
    if status_code >= 500:
        return AxmeServerError
    return AxmeHttpError


def extract_error_message(body: Any, fallback: str) -> str:
    """Pick the most specific human-readable message out of an error body.

    Order: a bare JSON string, ``error`` as a string, ``error.message``,
    top-level ``message``, then ``fallback`` (the raw response text).
    """
    if isinstance(body, str):
        return body or fallback
    if not isinstance(body, dict):
        return fallback
    error_value = body.get("error")
    if isinstance(error_value, str) and error_value:
        return error_value
    if isinstance(error_value, dict) and isinstance(error_value.get("message"), str):
        return error_value["message"]
    if isinstance(body.get("message"), str):
        return body["message"]
    return fallback


def http_error_from_response(response: httpx.Response) -> AxmeHttpError:
    """Classify a failed response. The body must already be read."""
    text = response.text
    try:
        body: Any | None = response.json()
    except ValueError:
        body = None
    headers = response.headers
    error_cls = error_class_for_status(response.status_code)
    return error_cls(
        response.status_code,
        extract_error_message(body, text),
        body=body,
        request_id=headers.get("x-request-id") or headers.get("request-id"),
        trace_id=headers.get("x-trace-id") or headers.get("trace-id"),
        retry_after=parse_retry_after(headers.get("retry-after")),
    )


def rpc_error_from_payload(payload: dict[str, Any]) -> AxmeHttpError:
    """Classify the ``error`` member of a JSON-RPC response, ignoring HTTP status."""
    error = payload.get("error")
    if not isinstance(error, dict):
        return AxmeServerError(502, "invalid MCP response: error is not object", body=payload)
    code = error.get("code")
    if not isinstance(code, int) or isinstance(code, bool):
        code = RPC_SERVER_ERROR_FLOOR
    message = error.get("message")
    if not isinstance(message, str) or not message:
        message = "MCP RPC error"
    body = {"code": code, "message": message, "data": error.get("data")}
    if code in RPC_AUTH_CODES:
        return AxmeAuthError(403, message, body=body)
    if code == RPC_RATE_LIMIT_CODE:
        return AxmeRateLimitError(429, message, body=body)
    if code == RPC_INVALID_PARAMS_CODE:
        return AxmeValidationError(422, message, body=body)
    if code <= RPC_SERVER_ERROR_FLOOR:
        return AxmeServerError(502, message, body=body)
    return AxmeHttpError(400, message, body=body)
