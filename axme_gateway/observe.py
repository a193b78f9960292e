"""Intent lifecycle observation over the SSE stream with a polling fallback."""

from __future__ import annotations

from contextlib import aclosing
import json
import logging
import time
from typing import Any, AsyncIterator, Callable

from .exceptions import AxmeHttpError, AxmeServerError
from .sse import iter_sse_events
from .transport import RequestEngine

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = frozenset({"COMPLETED", "FAILED", "CANCELED"})
TERMINAL_EVENT_TYPES = frozenset({"intent.completed", "intent.failed", "intent.canceled"})
INTENT_EVENT_PREFIX = "intent."
STREAM_TIMEOUT_EVENT = "stream.timeout"
# Gateways without the stream endpoint answer with one of these.
STREAM_UNAVAILABLE_STATUSES = frozenset({404, 405, 501})


def is_terminal_intent_event(event: dict[str, Any]) -> bool:
    status = event.get("status")
    if isinstance(status, str) and status in TERMINAL_STATUSES:
        return True
    event_type = event.get("event_type")
    return isinstance(event_type, str) and event_type in TERMINAL_EVENT_TYPES


def event_seq(event: dict[str, Any]) -> int | None:
    raw_seq = event.get("seq")
    if isinstance(raw_seq, int) and not isinstance(raw_seq, bool) and raw_seq >= 0:
        return raw_seq
    return None


def max_seen_seq(cursor: int, event: dict[str, Any]) -> int:
    seq = event_seq(event)
    return cursor if seq is None else max(cursor, seq)


class _EventCursor:
    """Resume position plus the last yielded seq, used to drop replays."""

    def __init__(self, position: int) -> None:
        self.position = position
        self.last_yielded: int | None = None

    def advance(self, event: dict[str, Any]) -> bool:
        seq = event_seq(event)
        if seq is None:
            return True
        if self.last_yielded is not None and seq <= self.last_yielded:
            return False
        self.position = max_seen_seq(self.position, event)
        self.last_yielded = seq
        return True


class IntentObserver:
    """Merges the push (SSE) and pull (polling) event paths behind one cursor."""

    def __init__(self, engine: RequestEngine, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._engine = engine
        self._clock = clock

    async def list_events(
        self,
        intent_id: str,
        *,
        since: int | None = None,
        trace_id: str | None = None,
    ) -> dict[str, Any]:
        params: dict[str, str] | None = None
        if since is not None:
            if since < 0:
                raise ValueError("since must be >= 0")
            params = {"since": str(since)}
        return await self._engine.request_json(
            "GET",
            f"/v1/intents/{intent_id}/events",
            params=params,
            trace_id=trace_id,
            retryable=True,
        )

    async def observe(
        self,
        intent_id: str,
        *,
        since: int = 0,
        wait_seconds: int = 15,
        poll_interval_seconds: float = 1.0,
        timeout_seconds: float | None = None,
        trace_id: str | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        """Yield lifecycle events in ``seq`` order until a terminal one.

        Raises ``TimeoutError`` once ``timeout_seconds`` have elapsed. The
        deadline is checked between requests, never mid-request.
        """
        if since < 0:
            raise ValueError("since must be >= 0")
        if wait_seconds < 1:
            raise ValueError("wait_seconds must be >= 1")
        if poll_interval_seconds < 0:
            raise ValueError("poll_interval_seconds must be >= 0")
        if timeout_seconds is not None and timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0 when provided")

        deadline = (self._clock() + timeout_seconds) if timeout_seconds is not None else None
        cursor = _EventCursor(since)

        while True:
            stream_wait_seconds = self._stream_wait(intent_id, wait_seconds, deadline)

            try:
                stream = self._stream_events(
                    intent_id,
                    since=cursor.position,
                    wait_seconds=stream_wait_seconds,
                    trace_id=trace_id,
                )
                async with aclosing(stream):
                    async for event in stream:
                        if not cursor.advance(event):
                            continue
                        yield event
                        if is_terminal_intent_event(event):
                            return
            except AxmeHttpError as exc:
                if exc.status_code not in STREAM_UNAVAILABLE_STATUSES:
                    raise
                logger.debug("event stream unavailable for intent %s (HTTP %d), polling", intent_id, exc.status_code)

            # Also runs after a stream that ended without a terminal event.
            polled = await self.list_events(
                intent_id,
                since=cursor.position if cursor.position > 0 else None,
                trace_id=trace_id,
            )
            events = polled.get("events")
            if not isinstance(events, list):
                raise AxmeServerError(502, "invalid intent events payload: events must be list", body=polled)
            yielded = False
            for event in events:
                if not isinstance(event, dict) or not cursor.advance(event):
                    continue
                yielded = True
                yield event
                if is_terminal_intent_event(event):
                    return
            # Empty pages and pages of replays both wait out the interval.
            if not yielded:
                await self._sleep_before_poll(intent_id, poll_interval_seconds, deadline)

    async def wait_for(
        self,
        intent_id: str,
        *,
        since: int = 0,
        wait_seconds: int = 15,
        poll_interval_seconds: float = 1.0,
        timeout_seconds: float | None = None,
        trace_id: str | None = None,
    ) -> dict[str, Any]:
        async for event in self.observe(
            intent_id,
            since=since,
            wait_seconds=wait_seconds,
            poll_interval_seconds=poll_interval_seconds,
            timeout_seconds=timeout_seconds,
            trace_id=trace_id,
        ):
            if is_terminal_intent_event(event):
                return event
        raise RuntimeError(f"intent observation finished without terminal event for {intent_id}")

    async def _stream_events(
        self,
        intent_id: str,
        *,
        since: int,
        wait_seconds: int,
        trace_id: str | None,
    ) -> AsyncIterator[dict[str, Any]]:
        async with self._engine.open_stream(
            f"/v1/intents/{intent_id}/events/stream",
            params={"since": str(since), "wait_seconds": str(wait_seconds)},
            trace_id=trace_id,
        ) as response:
            async for sse in iter_sse_events(response.aiter_lines()):
                if sse.event == STREAM_TIMEOUT_EVENT:
                    return
                if not sse.event or not sse.event.startswith(INTENT_EVENT_PREFIX):
                    continue
                try:
                    payload = json.loads(sse.data)
                except ValueError:
                    payload = None
                if not isinstance(payload, dict):
                    logger.debug("skipping %s stream event id=%s: data is not a JSON object", sse.event, sse.id)
                    continue
                yield payload

    def _stream_wait(self, intent_id: str, wait_seconds: int, deadline: float | None) -> int:
        if deadline is None:
            return wait_seconds
        seconds_left = deadline - self._clock()
        if seconds_left <= 0:
            raise TimeoutError(f"timed out while observing intent {intent_id}")
        return max(1, min(wait_seconds, int(seconds_left)))

    async def _sleep_before_poll(self, intent_id: str, interval: float, deadline: float | None) -> None:
        if deadline is None:
            await self._engine.sleep(interval)
            return
        seconds_left = deadline - self._clock()
        if seconds_left <= 0:
            raise TimeoutError(f"timed out while observing intent {intent_id}")
        await self._engine.sleep(min(interval, seconds_left))
