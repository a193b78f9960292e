from __future__ import annotations

from typing import Any, Callable

import httpx
import pytest

from axme_gateway import AxmeClient, AxmeClientConfig
from axme_gateway.mcp import default_tool_schemas

BASE_URL = "https://api.axme.test"


class FakeTimer:
    """Monotonic clock that only moves when the client sleeps."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def timer() -> FakeTimer:
    return FakeTimer()


@pytest.fixture(autouse=True)
def _reset_tool_schemas():
    default_tool_schemas.clear()
    yield
    default_tool_schemas.clear()


@pytest.fixture
def make_client(timer: FakeTimer) -> Callable[..., AxmeClient]:
    def factory(handler: Callable[[httpx.Request], httpx.Response], **config_overrides: Any) -> AxmeClient:
        options: dict[str, Any] = {"base_url": BASE_URL, "api_key": "token"}
        options.update(config_overrides)
        cfg = AxmeClientConfig(**options)
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return AxmeClient(cfg, http_client=http_client, sleep=timer.sleep, clock=timer.monotonic)

    return factory
