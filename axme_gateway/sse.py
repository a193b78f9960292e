"""Incremental parser for ``text/event-stream`` bodies."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import AsyncIterable, AsyncIterator


@dataclass
class ServerSentEvent:
    event: str | None = None
    data_lines: list[str] = field(default_factory=list)
    id: str | None = None

    @property
    def data(self) -> str:
        return "\n".join(self.data_lines)


async def iter_sse_events(lines: AsyncIterable[str]) -> AsyncIterator[ServerSentEvent]:
    """Group decoded lines into events.

    A blank line dispatches the pending block; ``:`` lines are comments.
    Blocks without data are dropped. A trailing block without a terminating
    blank line is discarded.
    """
    current = ServerSentEvent()
    async for raw_line in lines:
        line = raw_line.rstrip("\r")
        if line == "":
            if current.data_lines:
                yield current
            current = ServerSentEvent()
            continue
        if line.startswith(":"):
            continue
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "event":
            current.event = value.strip()
        elif name == "data":
            current.data_lines.append(value)
        elif name == "id":
            current.id = value
