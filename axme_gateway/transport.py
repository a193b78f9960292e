"""Request engine: URL/header construction, the retry loop and response parsing."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
import logging
from typing import Any, AsyncIterator, Awaitable, Callable
from uuid import uuid4

import httpx

from .config import AxmeClientConfig
from .exceptions import AxmeServerError, http_error_from_response, parse_retry_after

logger = logging.getLogger(__name__)

SleepFunc = Callable[[float], Awaitable[Any]]


class RequestEngine:
    def __init__(
        self,
        config: AxmeClientConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
        sleep: SleepFunc | None = None,
    ) -> None:
        self.config = config
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=config.timeout_seconds)
        self._sleep = sleep or asyncio.sleep

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._http.aclose()

    def resolve_url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        if not path.startswith("/"):
            path = "/" + path
        return self.config.base_url + path

    def resolve_trace_id(self, trace_id: str | None) -> str | None:
        if trace_id:
            return trace_id
        if self.config.auto_trace_id:
            return str(uuid4())
        return None

    def build_headers(self, *, idempotency_key: str | None = None, trace_id: str | None = None) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
        }
        if idempotency_key is not None:
            headers["Idempotency-Key"] = idempotency_key
        resolved_trace_id = self.resolve_trace_id(trace_id)
        if resolved_trace_id is not None:
            headers["X-Trace-Id"] = resolved_trace_id
        return headers

    async def request_json(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        json_body: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
        trace_id: str | None = None,
        retryable: bool,
    ) -> dict[str, Any]:
        """Run one logical call, retrying only when ``retryable`` is set.

        Callers decide ``retryable``: reads always, POSTs only with an
        idempotency key. Non-2xx responses surface as typed errors and
        transport errors are re-raised unchanged once the budget is spent.
        """
        url = self.resolve_url(path)
        attempts = 1 + (self.config.max_retries if retryable else 0)
        for attempt_idx in range(attempts):
            is_last = attempt_idx >= attempts - 1
            # Built per attempt, so an unpinned trace id changes between retries.
            headers = self.build_headers(idempotency_key=idempotency_key, trace_id=trace_id)
            logger.debug("%s %s (attempt %d/%d)", method, url, attempt_idx + 1, attempts)
            try:
                response = await self._http.request(
                    method,
                    url,
                    params=params,
                    json=json_body,
                    headers=headers,
                )
            except httpx.TransportError as exc:
                if is_last:
                    raise
                logger.warning(
                    "%s %s failed: %s, retrying (attempt %d/%d)", method, url, exc, attempt_idx + 1, attempts
                )
                await self.sleep_before_retry(attempt_idx)
                continue

            if retryable and not is_last and is_retryable_status(response.status_code):
                retry_after = parse_retry_after(response.headers.get("retry-after"))
                logger.warning(
                    "%s %s returned %d, retrying (attempt %d/%d)",
                    method,
                    url,
                    response.status_code,
                    attempt_idx + 1,
                    attempts,
                )
                await self.sleep_before_retry(attempt_idx, retry_after=retry_after)
                continue
            return parse_json_response(response)

        raise RuntimeError("unreachable retry loop state")

    @asynccontextmanager
    async def open_stream(
        self,
        path: str,
        *,
        params: dict[str, str] | None = None,
        trace_id: str | None = None,
    ) -> AsyncIterator[httpx.Response]:
        """Open a single, never retried, streaming GET."""
        url = self.resolve_url(path)
        headers = self.build_headers(trace_id=trace_id)
        headers["Accept"] = "text/event-stream"
        logger.debug("GET %s (stream)", url)
        async with self._http.stream("GET", url, params=params, headers=headers) as response:
            if not response.is_success:
                await response.aread()
                raise http_error_from_response(response)
            yield response

    async def sleep_before_retry(self, attempt_idx: int, *, retry_after: int | None = None) -> None:
        if retry_after is not None:
            await self._sleep(max(0, retry_after))
            return
        await self._sleep(max(0.0, self.config.retry_backoff_seconds * (2**attempt_idx)))

    async def sleep(self, seconds: float) -> None:
        await self._sleep(max(0.0, seconds))


def is_retryable_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


def parse_json_response(response: httpx.Response) -> dict[str, Any]:
    if not response.is_success:
        raise http_error_from_response(response)
    if not response.content:
        return {}
    try:
        body = response.json()
    except ValueError as exc:
        raise AxmeServerError(
            502,
            "invalid response: body is not JSON",
            body=response.text,
            request_id=response.headers.get("x-request-id"),
        ) from exc
    if not isinstance(body, dict):
        raise AxmeServerError(
            502,
            "invalid response: body is not object",
            body=body,
            request_id=response.headers.get("x-request-id"),
        )
    return body
